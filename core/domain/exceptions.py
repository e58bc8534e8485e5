"""
Orchestration error taxonomy.

Classification and authorization errors are returned synchronously to the
caller. Activity and compensation errors are recorded on the execution and
surfaced through the status API.
"""
from typing import Optional


class OrchestrationError(Exception):
    """Base class for every error raised by the orchestration core."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ClassificationError(OrchestrationError):
    """Malformed request. Always fatal to the request."""


class AuthorizationError(OrchestrationError):
    """
    Access denied or tenant context could not be resolved.

    Never retried. ``reason`` is ``"unauthorized"`` when the context itself
    could not be resolved and ``"forbidden"`` when the decision was a deny.
    """

    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"

    def __init__(self, message: str, reason: str = FORBIDDEN):
        super().__init__(message)
        self.reason = reason


class ActivityError(OrchestrationError):
    """Base for errors raised from inside an activity adapter."""


class RetryableActivityError(ActivityError):
    """Transient failure, retried according to the step's retry policy."""


class FatalActivityError(ActivityError):
    """Business-rule violation. Triggers compensation without retry."""


class TenantIsolationError(FatalActivityError):
    """An adapter was asked to touch data owned by another tenant."""


class CompensationError(OrchestrationError):
    """A compensating action exhausted its retries."""

    def __init__(self, message: str, step_index: int, adapter_name: str):
        super().__init__(message)
        self.step_index = step_index
        self.adapter_name = adapter_name


class DispatcherError(OrchestrationError):
    """
    Failure to persist a new execution.

    Safe to resubmit the whole request: no partial state exists yet.
    """


class LeaseLostError(OrchestrationError):
    """A save came from a worker whose lease another worker has since taken over."""

    def __init__(self, execution_id: str, owner: Optional[str], holder: Optional[str]):
        super().__init__(f"Execution {execution_id} is leased to {holder}, not {owner}")
        self.execution_id = execution_id
        self.owner = owner
        self.holder = holder


class ExecutionNotFoundError(OrchestrationError):
    """No execution exists for the given id."""

    def __init__(self, execution_id: str, message: Optional[str] = None):
        super().__init__(message or f"Execution {execution_id} not found")
        self.execution_id = execution_id


class DirectServiceError(OrchestrationError):
    """The domain service owning a simple operation answered with an error."""

    def __init__(self, message: str, status: int):
        super().__init__(message)
        self.status = status
