"""Workflow definitions - RetryPolicy, WorkflowStep, WorkflowDefinition, WorkflowRegistry."""

from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from typing import Any

from core.domain.exceptions import ClassificationError

# Builds a step's input from the execution payload and the outputs of the
# steps that already succeeded.
InputTransform = Callable[[dict[str, Any], list[Any]], dict[str, Any]]


def pass_payload(payload: dict[str, Any], outputs: list[Any]) -> dict[str, Any]:
    """Default transform: every step sees the original payload."""
    return dict(payload)


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff with a per-attempt timeout."""

    max_attempts: int = 3
    initial_interval_seconds: float = 1.0
    backoff_coefficient: float = 2.0
    max_interval_seconds: float = 60.0
    attempt_timeout_seconds: float = 30.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.attempt_timeout_seconds <= 0:
            raise ValueError("attempt_timeout_seconds must be positive")

    @classmethod
    def no_retry(cls, attempt_timeout_seconds: float = 30.0) -> "RetryPolicy":
        return cls(max_attempts=1, attempt_timeout_seconds=attempt_timeout_seconds)

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number ``attempt`` (1-based)."""
        if attempt <= 0:
            return 0.0
        delay = self.initial_interval_seconds * (self.backoff_coefficient ** (attempt - 1))
        return min(delay, self.max_interval_seconds)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class WorkflowStep:
    """A single step: an adapter, how to build its input, and how to undo it."""

    name: str
    adapter: str
    compensation: str | None = None
    input_transform: InputTransform = pass_payload
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    compensation_retry_policy: RetryPolicy = field(default_factory=RetryPolicy)


def outputs_by_step(steps: tuple[WorkflowStep, ...], outputs: list[Any]) -> dict[str, Any]:
    """Default result: step name -> step output."""
    return {step.name: output for step, output in zip(steps, outputs)}


@dataclass(frozen=True)
class WorkflowDefinition:
    """
    Declared ordered steps of a complex operation.

    ``resource``/``action`` is the permission required to submit it and, for
    high-privilege operations, re-checked before every step.
    """

    operation_type: str
    steps: tuple[WorkflowStep, ...]
    resource: str
    action: str
    high_privilege: bool = False
    description: str = ""

    def __post_init__(self) -> None:
        if not self.steps:
            raise ValueError(f"Workflow {self.operation_type} declares no steps")
        object.__setattr__(self, "steps", tuple(self.steps))

    def build_result(self, outputs: list[Any]) -> dict[str, Any]:
        return outputs_by_step(self.steps, outputs)

    def adapter_names(self) -> set[str]:
        names = set()
        for step in self.steps:
            names.add(step.adapter)
            if step.compensation:
                names.add(step.compensation)
        return names


class WorkflowRegistry:
    """Operation type -> workflow definition, filled at process start."""

    def __init__(self) -> None:
        self._definitions: dict[str, WorkflowDefinition] = {}

    def register(self, definition: WorkflowDefinition) -> None:
        if definition.operation_type in self._definitions:
            raise ValueError(f"Workflow already registered: {definition.operation_type}")
        self._definitions[definition.operation_type] = definition

    def get(self, operation_type: str) -> WorkflowDefinition:
        """
        Raises:
            ClassificationError: If the operation type is not declared
        """
        try:
            return self._definitions[operation_type]
        except KeyError:
            raise ClassificationError(f"Unknown operation type: {operation_type}") from None

    def __contains__(self, operation_type: object) -> bool:
        return operation_type in self._definitions

    def names(self) -> list[str]:
        return sorted(self._definitions)

    def all(self) -> list[WorkflowDefinition]:
        return list(self._definitions.values())
