"""
Operation submission endpoint.

Single entry point of the platform: simple operations are answered
directly, complex ones are accepted and run as durable workflows.
"""
from typing import Any, Dict, Optional
import logging

from fastapi import APIRouter, Depends, Header, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from api.dependencies import get_gateway
from core.application.services import Gateway
from core.domain.entities import OperationRequest


logger = logging.getLogger(__name__)
router = APIRouter()


class OperationSubmission(BaseModel):
    """Body of POST /operations."""

    method: str = Field(..., description="HTTP method of the platform operation", examples=["POST"])
    path: str = Field(..., description="Resource path", examples=["/api/v1/tenants"])
    payload: Dict[str, Any] = Field(default_factory=dict)
    idempotency_key: Optional[str] = Field(
        default=None, description="Required for complex operations; overrides the Idempotency-Key header"
    )


@router.post(
    "",
    summary="Submit an operation",
    description="""
    Classify and execute a platform operation.

    - Simple operations return **200** with the owning service's result.
    - Complex operations return **202** with `execution_id` and `status_url`.
      Resubmitting with the same idempotency key returns the same execution.
    """,
    responses={
        200: {"description": "Direct result"},
        202: {"description": "Workflow accepted"},
        400: {"description": "Malformed request"},
        401: {"description": "Tenant context could not be resolved"},
        403: {"description": "Permission denied"},
        503: {"description": "Execution could not be persisted; safe to resubmit"},
    },
)
async def submit_operation(
    submission: OperationSubmission,
    x_tenant_id: str = Header(default="", alias="X-Tenant-ID"),
    x_actor_id: str = Header(default="", alias="X-Actor-ID"),
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key"),
    gateway: Gateway = Depends(get_gateway),
):
    """
    Submit one operation.

    **Headers:**
    - `X-Tenant-ID`: Tenant the operation runs in
    - `X-Actor-ID`: Authenticated actor
    - `Idempotency-Key`: Caller-chosen key for complex operations
    """
    request = OperationRequest(
        method=submission.method,
        path=submission.path,
        tenant_id=x_tenant_id,
        actor_id=x_actor_id,
        payload=submission.payload,
        idempotency_key=submission.idempotency_key or idempotency_key,
    )

    result = await gateway.submit(request)

    if result.accepted:
        return JSONResponse(
            status_code=status.HTTP_202_ACCEPTED,
            content={
                "execution_id": result.execution_id,
                "status_url": result.status_url,
                "operation_type": result.classification.operation_type,
            },
        )

    return JSONResponse(
        status_code=status.HTTP_200_OK,
        content={
            "service": result.classification.service,
            "result": result.result,
        },
    )
