"""Typed publish/subscribe bus for agent run status events."""

import inspect
from collections import defaultdict
from collections.abc import Awaitable, Callable
from typing import Any

from hopeit.dataobjects import dataclass, dataobject, field
from hopeit.server.logger import engine_logger, extra_logger

logger = engine_logger()
extra = extra_logger()

__all__ = [
    "AgentEvent",
    "EventBus",
    "RunCompleted",
    "RunFailed",
    "ToolCallFailed",
    "ToolCallStarted",
    "ToolCallSucceeded",
]


@dataobject
@dataclass
class ToolCallStarted:
    run_id: str
    tool_name: str
    iteration: int
    arguments: dict[str, Any] = field(default_factory=dict)


@dataobject
@dataclass
class ToolCallSucceeded:
    run_id: str
    tool_name: str
    result: str


@dataobject
@dataclass
class ToolCallFailed:
    run_id: str
    tool_name: str
    error: str
    code: str


@dataobject
@dataclass
class RunCompleted:
    run_id: str
    summary: str
    command: str | None = None


@dataobject
@dataclass
class RunFailed:
    """Emitted for failed and aborted runs alike; ``state`` tells them apart."""

    run_id: str
    reason: str
    state: str


AgentEvent = ToolCallStarted | ToolCallSucceeded | ToolCallFailed | RunCompleted | RunFailed
Handler = Callable[[Any], Awaitable[None] | None]


class EventBus:
    """
    Delivers events to handlers subscribed by event type.

    Handlers run in subscription order. A failing handler is logged and does
    not prevent delivery to the others nor interrupt the publisher.
    """

    def __init__(self) -> None:
        self._handlers: dict[type, list[Handler]] = defaultdict(list)
        self._catch_all: list[Handler] = []

    def subscribe(self, event_type: type, handler: Handler) -> Callable[[], None]:
        """Register ``handler`` for ``event_type``. Returns a function that unsubscribes it."""
        self._handlers[event_type].append(handler)
        return lambda: self._remove(self._handlers[event_type], handler)

    def subscribe_all(self, handler: Handler) -> Callable[[], None]:
        self._catch_all.append(handler)
        return lambda: self._remove(self._catch_all, handler)

    async def publish(self, event: AgentEvent) -> None:
        for handler in [*self._handlers.get(type(event), []), *self._catch_all]:
            try:
                outcome = handler(event)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as exc:
                logger.error(
                    __name__,
                    "agent_event_handler_failed",
                    extra=extra(event=type(event).__name__, error=repr(exc)),
                )

    @staticmethod
    def _remove(handlers: list[Handler], handler: Handler) -> None:
        if handler in handlers:
            handlers.remove(handler)
