"""Lifecycle event bus - EventBusProtocol and InMemoryEventBus.

The saga coordinator publishes ``execution.*`` events here; subscribers
observe progress and never influence it.
"""

from collections.abc import Awaitable, Callable
from typing import Protocol

from tenantflow_sdk.logging import get_logger

from .events import Event

EventHandler = Callable[[Event], Awaitable[None]]

# Subscribing to this name receives every event.
ALL_EVENTS = "*"


class EventBusProtocol(Protocol):
    """Where the coordinator sends execution lifecycle events."""

    async def publish(self, event: Event) -> None:
        """Deliver one lifecycle event.

        Args:
            event: Event to deliver
        """
        ...

    def subscribe(self, event_name: str, handler: EventHandler) -> None:
        """Register a handler for one event name.

        Args:
            event_name: e.g. ``execution.completed``, or ``"*"`` for all
            handler: Async handler function
        """
        ...


class InMemoryEventBus(EventBusProtocol):
    """Process-local fan-out to async handlers, in subscription order."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = {}
        self._logger = get_logger("orchestration.event_bus")

    def subscribe(self, event_name: str, handler: EventHandler) -> None:
        self._handlers.setdefault(event_name, []).append(handler)

    async def publish(self, event: Event) -> None:
        """Call every handler of ``event.name`` and every wildcard handler.

        A failing handler is logged and skipped; the remaining handlers
        still run and the coordinator never sees the error.
        """
        handlers = self._handlers.get(event.name, []) + self._handlers.get(ALL_EVENTS, [])
        if not handlers:
            return

        self._logger.debug(
            f"[{event.metadata.execution_id}] event={event.name} "
            f"tenant={event.metadata.tenant_id} handlers={len(handlers)}"
        )

        for handler in handlers:
            try:
                await handler(event)
            except Exception as exc:
                self._logger.error(
                    f"[{event.metadata.execution_id}] handler_error event={event.name} "
                    f"handler={handler!r} error={exc}",
                    exc_info=True,
                )
