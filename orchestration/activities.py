"""
Activity adapter registry.

Adapters are looked up by name, never by reference, so a new domain only
adds registry entries and the coordinator's control flow stays untouched.
"""

from collections.abc import Awaitable, Callable
from typing import Any, Protocol, runtime_checkable

from core.domain.value_objects import ExecutionID, Outcome
from tenantflow_sdk.logging import get_logger

# (tenant_id, execution_id, step_index, input) -> Outcome
ActivityFn = Callable[[str, ExecutionID, int, dict[str, Any]], Awaitable[Outcome]]


@runtime_checkable
class ActivityAdapter(Protocol):
    """Object form of an adapter."""

    name: str

    async def invoke(
        self, tenant_id: str, execution_id: ExecutionID, step_index: int, input_: dict[str, Any]
    ) -> Outcome:
        ...


class AdapterRegistry:
    """Adapter name -> callable."""

    def __init__(self) -> None:
        self._adapters: dict[str, ActivityFn] = {}
        self._logger = get_logger("orchestration.adapters")

    def register(self, name: str, adapter: ActivityAdapter | ActivityFn) -> None:
        """Register an adapter object (anything with ``invoke``) or a bare function."""
        if name in self._adapters:
            raise ValueError(f"Adapter already registered: {name}")
        fn = adapter.invoke if isinstance(adapter, ActivityAdapter) else adapter
        self._adapters[name] = fn
        self._logger.debug(f"adapter_registered name={name}")

    def register_all(self, adapters: list[ActivityAdapter]) -> None:
        for adapter in adapters:
            self.register(adapter.name, adapter)

    def get(self, name: str) -> ActivityFn:
        """
        Raises:
            LookupError: If no adapter is registered under ``name``
        """
        try:
            return self._adapters[name]
        except KeyError:
            raise LookupError(f"No activity adapter registered as {name!r}") from None

    def __contains__(self, name: object) -> bool:
        return name in self._adapters

    def names(self) -> list[str]:
        return sorted(self._adapters)

    def ensure_registered(self, names: set[str]) -> None:
        """Fail fast at startup when a workflow references a missing adapter."""
        missing = sorted(n for n in names if n not in self._adapters)
        if missing:
            raise ValueError(f"Workflows reference unregistered adapters: {missing}")
