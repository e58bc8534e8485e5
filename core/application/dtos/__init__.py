"""Application DTOs."""

from .execution_dto import (
    CancelResultDTO,
    CompensationDTO,
    ExecutionHistoryDTO,
    ExecutionStatusDTO,
    InvocationDTO,
)

__all__ = [
    "CancelResultDTO",
    "CompensationDTO",
    "ExecutionHistoryDTO",
    "ExecutionStatusDTO",
    "InvocationDTO",
]
