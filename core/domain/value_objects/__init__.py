"""Domain value objects."""

from .execution_id import ExecutionID
from .outcome import FatalFailure, Outcome, RetryableFailure, Success
from .permission import Permission

__all__ = [
    "ExecutionID",
    "FatalFailure",
    "Outcome",
    "Permission",
    "RetryableFailure",
    "Success",
]
