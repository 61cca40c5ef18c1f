"""Unit tests for the agent event bus."""

from typing import Any

import pytest

from aether_agents.agent_toolkit.events import (
    EventBus,
    RunCompleted,
    ToolCallFailed,
    ToolCallStarted,
)


@pytest.mark.asyncio
async def test_handlers_receive_events_by_type() -> None:
    bus = EventBus()
    started: list[Any] = []
    everything: list[Any] = []

    async def on_started(event: ToolCallStarted) -> None:
        started.append(event)

    bus.subscribe(ToolCallStarted, on_started)
    bus.subscribe_all(everything.append)

    await bus.publish(ToolCallStarted(run_id="r", tool_name="t", iteration=1))
    await bus.publish(RunCompleted(run_id="r", summary="done"))

    assert [event.tool_name for event in started] == ["t"]
    assert [type(event) for event in everything] == [ToolCallStarted, RunCompleted]


@pytest.mark.asyncio
async def test_failing_handler_does_not_stop_delivery() -> None:
    bus = EventBus()
    received: list[Any] = []

    def broken(_event: Any) -> None:
        raise RuntimeError("handler bug")

    bus.subscribe(ToolCallFailed, broken)
    bus.subscribe(ToolCallFailed, received.append)

    await bus.publish(ToolCallFailed(run_id="r", tool_name="t", error="boom", code="MCP_UNKNOWN"))

    assert len(received) == 1


@pytest.mark.asyncio
async def test_unsubscribe() -> None:
    bus = EventBus()
    received: list[Any] = []
    unsubscribe = bus.subscribe(RunCompleted, received.append)

    unsubscribe()
    unsubscribe()
    await bus.publish(RunCompleted(run_id="r", summary="done"))

    assert received == []
