"""
Execution monitoring endpoints.

Status, history, cancellation and operator listings of workflow
executions. Reads return the last persisted state and never wait for a
running execution.
"""
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status

from api.dependencies import get_aggregation_cache, get_status_service
from core.application.services import AggregationCache, ExecutionStatusService
from core.application.services.execution_service import OverdueExecution
from core.domain.enums import ExecutionStatus


router = APIRouter(prefix="/executions", tags=["executions"])

SUMMARY_TTL_SECONDS = 5.0


def _parse_statuses(raw: Optional[List[str]]) -> Optional[List[ExecutionStatus]]:
    if not raw:
        return None
    try:
        return [ExecutionStatus(value.lower()) for value in raw]
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid status filter: {raw}. Valid: {[s.value for s in ExecutionStatus]}",
        )


@router.get(
    "",
    status_code=status.HTTP_200_OK,
    summary="List executions",
    description="Newest first. Filter by tenant and status.",
)
async def list_executions(
    tenant_id: Optional[str] = Query(default=None),
    status_filter: Optional[List[str]] = Query(default=None, alias="status"),
    limit: int = Query(default=100, ge=1, le=1000),
    service: ExecutionStatusService = Depends(get_status_service),
) -> Dict[str, Any]:
    executions = await service.list_executions(
        tenant_id=tenant_id, statuses=_parse_statuses(status_filter), limit=limit
    )
    return {
        "count": len(executions),
        "executions": [e.to_dict() for e in executions],
    }


@router.get(
    "/summary",
    status_code=status.HTTP_200_OK,
    summary="Execution counts per status",
    description="Cached aggregate for dashboards; invalidate with POST /events/cache.",
)
async def execution_summary(
    tenant_id: str = Query(...),
    service: ExecutionStatusService = Depends(get_status_service),
    cache: AggregationCache = Depends(get_aggregation_cache),
) -> Dict[str, Any]:
    def count(execution_status: ExecutionStatus):
        async def _count() -> int:
            found = await service.list_executions(tenant_id=tenant_id, statuses=[execution_status], limit=10_000)
            return len(found)
        return _count

    counts = await cache.gather(
        f"executions:{tenant_id}:summary",
        SUMMARY_TTL_SECONDS,
        {s.value: count(s) for s in ExecutionStatus},
    )
    return {"tenant_id": tenant_id, "counts": counts, "total": sum(counts.values())}


def _overdue_body(overdue: List[OverdueExecution]) -> Dict[str, Any]:
    return {
        "count": len(overdue),
        "executions": [
            {"execution_id": str(item.execution.execution_id), "age_seconds": round(item.age_seconds, 3)}
            for item in overdue
        ],
    }


@router.get(
    "/overdue",
    status_code=status.HTTP_200_OK,
    summary="Over-age executions",
    description="Non-terminal executions older than the maximum age. Read-only.",
)
async def overdue_executions(
    max_age_seconds: Optional[float] = Query(default=None, gt=0),
    service: ExecutionStatusService = Depends(get_status_service),
) -> Dict[str, Any]:
    return _overdue_body(await service.find_overdue(max_age_seconds))


@router.post(
    "/overdue/alerts",
    status_code=status.HTTP_200_OK,
    summary="Alert on over-age executions",
    description="Sends one operator alert per over-age execution. Executions are never terminated.",
)
async def alert_overdue_executions(
    max_age_seconds: Optional[float] = Query(default=None, gt=0),
    service: ExecutionStatusService = Depends(get_status_service),
) -> Dict[str, Any]:
    return _overdue_body(await service.check_overdue(max_age_seconds))


@router.get(
    "/{execution_id}",
    status_code=status.HTTP_200_OK,
    summary="Get execution status",
    description="""
    State, step cursor, last error, compensation status and timestamps.

    Requires `X-Tenant-ID` and `X-Actor-ID`; executions of other tenants
    are reported as not found.
    """,
    responses={401: {"description": "Tenant context could not be resolved"}, 404: {"description": "Not found"}},
)
async def get_execution_status(
    execution_id: str,
    x_tenant_id: str = Header(default="", alias="X-Tenant-ID"),
    x_actor_id: str = Header(default="", alias="X-Actor-ID"),
    service: ExecutionStatusService = Depends(get_status_service),
) -> Dict[str, Any]:
    dto = await service.get_status(execution_id, tenant_id=x_tenant_id, actor_id=x_actor_id)
    return dto.to_dict()


@router.get(
    "/{execution_id}/history",
    status_code=status.HTTP_200_OK,
    summary="Get execution history",
    description="Every activity invocation (one per attempt) and every compensation record.",
    responses={401: {"description": "Tenant context could not be resolved"}, 404: {"description": "Not found"}},
)
async def get_execution_history(
    execution_id: str,
    x_tenant_id: str = Header(default="", alias="X-Tenant-ID"),
    x_actor_id: str = Header(default="", alias="X-Actor-ID"),
    service: ExecutionStatusService = Depends(get_status_service),
) -> Dict[str, Any]:
    history = await service.get_history(execution_id, tenant_id=x_tenant_id, actor_id=x_actor_id)
    return history.to_dict()


@router.post(
    "/{execution_id}/cancel",
    status_code=status.HTTP_200_OK,
    summary="Cancel an execution",
    description="""
    Requires the permission that submitting the workflow requires.

    Rejected for terminal executions. A PENDING execution no worker holds
    is cancelled immediately; otherwise cancellation takes effect at the
    next step boundary after completed steps are compensated.
    """,
    responses={
        401: {"description": "Tenant context could not be resolved"},
        403: {"description": "Permission denied"},
        404: {"description": "Not found"},
    },
)
async def cancel_execution(
    execution_id: str,
    x_tenant_id: str = Header(default="", alias="X-Tenant-ID"),
    x_actor_id: str = Header(default="", alias="X-Actor-ID"),
    service: ExecutionStatusService = Depends(get_status_service),
) -> Dict[str, Any]:
    result = await service.cancel(execution_id, tenant_id=x_tenant_id, actor_id=x_actor_id)
    return result.to_dict()
