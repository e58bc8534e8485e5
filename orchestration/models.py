"""Orchestration models - StepResult."""

from dataclasses import dataclass


@dataclass
class StepResult:
    """Result of running one adapter under its retry policy."""

    name: str
    step_index: int
    success: bool
    attempts: int
    duration_ms: int
    error: str | None = None
    output: object = None
    fatal: bool = False
