"""
Gateway - the single entry point for operations.

Classifies the request, resolves and checks tenant context, then either
forwards to the owning domain service or hands the operation to the
workflow dispatcher.
"""
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Optional

from core.application.interfaces import IDirectServiceClient
from core.application.services.classifier import Classification, ClassifiedRequest, RequestClassifier
from core.application.services.permission_service import PermissionContextService
from core.domain.entities import OperationRequest
from core.domain.exceptions import AuthorizationError

if TYPE_CHECKING:
    from orchestration.dispatcher import WorkflowDispatcher
    from orchestration.workflow import WorkflowRegistry

logger = logging.getLogger(__name__)

STATUS_URL_TEMPLATE = "/executions/{execution_id}"


@dataclass(frozen=True)
class SubmissionResult:
    """Outcome of a gateway submission."""

    status_code: int
    classification: Classification
    result: Any = None
    execution_id: Optional[str] = None
    status_url: Optional[str] = None

    @property
    def accepted(self) -> bool:
        return self.status_code == 202


class Gateway:
    """Routes an operation to a direct call or a durable workflow."""

    def __init__(
        self,
        classifier: RequestClassifier,
        permission_service: PermissionContextService,
        dispatcher: "WorkflowDispatcher",
        workflows: "WorkflowRegistry",
        direct_client: IDirectServiceClient,
        status_url_template: str = STATUS_URL_TEMPLATE,
    ) -> None:
        self._classifier = classifier
        self._permissions = permission_service
        self._dispatcher = dispatcher
        self._workflows = workflows
        self._direct = direct_client
        self._status_url_template = status_url_template

    async def submit(self, request: OperationRequest) -> SubmissionResult:
        """
        Handle one operation.

        Args:
            request: Inbound operation (never mutated)

        Returns:
            SubmissionResult with 200 and the direct result, or 202 with the
            execution id and status URL

        Raises:
            ClassificationError: Malformed request or unknown workflow
            AuthorizationError: Context unresolvable (unauthorized) or denied (forbidden)
            DispatcherError: The execution could not be persisted
        """
        classified = await self.classify(request)
        classification = classified.classification

        if not classification.is_complex:
            result = await self._direct.call(classification.service, request, classified.context)
            return SubmissionResult(status_code=200, classification=classification, result=result)

        execution_id = await self._dispatcher.start(
            classified.context,
            classification.operation_type,
            classification.bind_payload(request.payload_dict()),
            request.idempotency_key,
        )
        logger.info(
            f"Accepted {classification.operation_type} for tenant {request.tenant_id} "
            f"as execution {execution_id}"
        )
        return SubmissionResult(
            status_code=202,
            classification=classification,
            execution_id=str(execution_id),
            status_url=self._status_url_template.format(execution_id=execution_id),
        )

    async def classify(self, request: OperationRequest) -> ClassifiedRequest:
        """Classify, resolve context and authorize without executing anything."""
        classification = self._classifier.classify(request)
        context = await self._permissions.resolve(request.actor_id, request.tenant_id)

        if classification.is_complex:
            definition = self._workflows.get(classification.operation_type)
            resource, action, high = definition.resource, definition.action, definition.high_privilege
        else:
            resource, action, high = classification.resource, classification.action, False

        allowed = await self._permissions.authorize(context, resource, action, high_privilege=high)
        if not allowed:
            logger.warning(
                f"Denied {request.method} {request.path}: actor {request.actor_id} "
                f"lacks {resource}:{action} in tenant {request.tenant_id}"
            )
            raise AuthorizationError(f"Actor {request.actor_id} may not {action} {resource}")

        return ClassifiedRequest(request=request, context=context, classification=classification)
