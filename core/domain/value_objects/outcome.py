"""
Activity outcomes.

Every adapter invocation resolves to exactly one of the three variants.
"""
from dataclasses import dataclass
from typing import Any, Union


@dataclass(frozen=True)
class Success:
    """Step finished; ``value`` becomes the step output."""

    value: Any = None

    @property
    def kind(self) -> str:
        return "success"


@dataclass(frozen=True)
class RetryableFailure:
    """Transient failure; the coordinator retries per policy."""

    reason: str

    @property
    def kind(self) -> str:
        return "retryable_failure"


@dataclass(frozen=True)
class FatalFailure:
    """Business-rule violation; compensation starts immediately."""

    reason: str

    @property
    def kind(self) -> str:
        return "fatal_failure"


Outcome = Union[Success, RetryableFailure, FatalFailure]
