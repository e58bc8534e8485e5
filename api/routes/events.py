"""
Invalidation event endpoints.

HTTP twin of the Redis Streams consumer for deployments (and tests)
without Redis. Both events are idempotent.
"""
from typing import Any, Dict, Optional
import logging

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from api.dependencies import get_aggregation_cache, get_permission_service
from core.application.services import AggregationCache, PermissionContextService
from core.domain.events import CacheInvalidationEvent, PermissionInvalidationEvent


logger = logging.getLogger(__name__)
router = APIRouter(prefix="/events", tags=["events"])


class PermissionInvalidationBody(BaseModel):
    tenant_id: str = Field(..., min_length=1)
    actor_id: Optional[str] = Field(default=None, description="Omit to evict the whole tenant")
    reason: str = ""
    timestamp: Optional[str] = None


class CacheInvalidationBody(BaseModel):
    cache_key_prefix: str = Field(..., min_length=1)


@router.post("/permissions", status_code=status.HTTP_200_OK, summary="Permission invalidation")
async def invalidate_permissions(
    body: PermissionInvalidationBody,
    service: PermissionContextService = Depends(get_permission_service),
) -> Dict[str, Any]:
    try:
        event = PermissionInvalidationEvent.from_dict(body.model_dump())
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    evicted = await service.handle_invalidation(event)
    logger.info(f"Permission invalidation via HTTP: tenant={event.tenant_id} actor={event.actor_id} evicted={evicted}")
    return {"tenant_id": event.tenant_id, "actor_id": event.actor_id, "evicted": evicted}


@router.post("/cache", status_code=status.HTTP_200_OK, summary="Aggregation cache invalidation")
async def invalidate_cache(
    body: CacheInvalidationBody,
    cache: AggregationCache = Depends(get_aggregation_cache),
) -> Dict[str, Any]:
    removed = await cache.handle_invalidation(CacheInvalidationEvent(cache_key_prefix=body.cache_key_prefix))
    return {"cache_key_prefix": body.cache_key_prefix, "removed": removed}
