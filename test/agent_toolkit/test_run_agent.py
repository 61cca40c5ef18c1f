"""Tests for the run_agent event steps and the agent runtime."""

from datetime import UTC, datetime
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from mcp.server.fastmcp import FastMCP
from pytest import MonkeyPatch

from aether_agents.agent_toolkit.api import run_agent
from aether_agents.agent_toolkit.app.session import AgentSession, RunState, TerminationReason
from aether_agents.agent_toolkit.app.steps import agent_loop
from aether_agents.agent_toolkit.app.steps.agent_loop import AgentLoopPayload, AgentLoopResult
from aether_agents.agent_toolkit.mcp import agent_tools
from aether_agents.agent_toolkit.runtime import AgentRuntime
from aether_agents.agent_toolkit.settings import AgentSettings
from aether_agents.mcp_client.client import ClientFactory
from aether_agents.mcp_client.models import ConnectionStatus, MCPServerConfig, Transport
from aether_agents.mcp_client.settings import MCPClientSettings
from aether_agents.model_client.models import (
    CompletionRequest,
    CompletionResponse,
    Conversation,
    Message,
    Role,
)


@pytest.fixture(autouse=True)
def quiet_loggers(monkeypatch: MonkeyPatch) -> None:
    for module in (run_agent, agent_loop, agent_tools):
        monkeypatch.setattr(module, "logger", MagicMock())


def _calculator() -> FastMCP:
    server = FastMCP("calculator")

    @server.tool()
    def add(a: int, b: int) -> int:
        """Add two integers."""
        return a + b

    return server


def _reply(text: str) -> CompletionResponse:
    message = Message(role=Role.ASSISTANT, content=text)
    return CompletionResponse(
        response_id="resp",
        model="test-model",
        created_at=datetime.now(UTC),
        message=message,
        conversation=Conversation(conversation_id="c", messages=[message]),
    )


def _context(agent_settings: AgentSettings) -> MagicMock:
    def settings(*, key: str, datatype: type) -> Any:
        return {"agent": agent_settings, "mcp_client": MCPClientSettings()}[key]

    context = MagicMock()
    context.settings.side_effect = settings
    context.env = {}
    return context


def _runtime(model: Any) -> AgentRuntime:
    settings = MCPClientSettings(
        servers=[MCPServerConfig(name="calculator", transport=Transport.IN_MEMORY)]
    )
    factory = ClientFactory(in_memory_servers={"calculator": _calculator})
    return AgentRuntime.from_settings(
        settings,
        AgentSettings(system_prompt="You add numbers."),
        {},
        factory=factory,
        model=model,
    )


@pytest.mark.asyncio
async def test_init_run_builds_loop_payload() -> None:
    agent_settings = AgentSettings(
        agent_name="calc-agent",
        system_prompt="Default prompt.",
        max_iterations=5,
        allowed_tools=["calculator__add"],
    )

    payload = await run_agent.init_run(
        run_agent.AgentRequest(user_message="What is 2 + 3?"), _context(agent_settings)
    )

    assert isinstance(payload, AgentLoopPayload)
    assert payload.system_prompt == "Default prompt."
    assert payload.agent_id == "calc-agent"
    assert payload.allowed_tools == ["calculator__add"]
    assert payload.loop_config.max_iterations == 5
    assert [message.content for message in payload.conversation.messages] == ["What is 2 + 3?"]


@pytest.mark.asyncio
async def test_init_run_request_prompt_overrides_settings() -> None:
    previous = Conversation(
        conversation_id="conv-7", messages=[Message(role=Role.USER, content="Hi")]
    )

    payload = await run_agent.init_run(
        run_agent.AgentRequest(
            user_message="Again", conversation=previous, system_prompt="Custom prompt."
        ),
        _context(AgentSettings()),
    )

    assert payload.system_prompt == "Custom prompt."
    assert payload.conversation.conversation_id == "conv-7"
    assert len(payload.conversation.messages) == 2


@pytest.mark.asyncio
async def test_result_flattens_loop_outcome() -> None:
    session = AgentSession()
    session.start()
    session.record_success()
    session.warn("careful")
    session.complete()
    loop_result = AgentLoopResult(
        conversation=Conversation(conversation_id="c", messages=[]),
        session=session,
        final_answer="5",
    )

    response = await run_agent.result(loop_result, MagicMock())

    assert response.state == "completed"
    assert response.reason == TerminationReason.TASK_COMPLETED.value
    assert response.final_answer == "5"
    assert response.iterations == 1
    assert response.warnings == ["careful"]


@pytest.mark.asyncio
async def test_run_agent_loop_uses_shared_runtime(monkeypatch: MonkeyPatch) -> None:
    runtime = MagicMock()
    expected = MagicMock()
    runtime.run = AsyncMock(return_value=expected)
    monkeypatch.setattr(run_agent, "_runtime", runtime)
    payload = MagicMock()
    context = MagicMock()

    outcome = await run_agent.run_agent_loop(payload, context)

    assert outcome is expected
    runtime.run.assert_awaited_once_with(payload, context)


@pytest.mark.asyncio
async def test_run_agent_loop_requires_initialized_runtime(monkeypatch: MonkeyPatch) -> None:
    monkeypatch.setattr(run_agent, "_runtime", None)

    with pytest.raises(RuntimeError):
        await run_agent.run_agent_loop(MagicMock(), MagicMock())


@pytest.mark.asyncio
async def test_init_event_builds_runtime_once(monkeypatch: MonkeyPatch) -> None:
    monkeypatch.setattr(run_agent, "_runtime", None)
    context = _context(AgentSettings())

    await run_agent.__init_event__(context)
    first = run_agent._runtime
    await run_agent.__init_event__(context)

    assert first is not None
    assert run_agent._runtime is first
    assert first.started
    await first.stop()


@pytest.mark.asyncio
async def test_runtime_runs_real_tool_and_releases_connections() -> None:
    async def model(request: CompletionRequest, _context: Any) -> CompletionResponse:
        last = request.conversation.messages[-1]
        if last.role is Role.USER and "<tool_use_result>" in last.content:
            return _reply(
                "<tool_use><name>attempt_completion</name>"
                '<arguments>{"result": "2 + 3 = 5"}</arguments></tool_use>'
            )
        return _reply(
            '<tool_use><name>add</name><arguments>{"a": 2, "b": 3}</arguments></tool_use>'
        )

    runtime = _runtime(model)
    connection = runtime.catalog.connection("calculator")
    payload = await run_agent.init_run(
        run_agent.AgentRequest(user_message="What is 2 + 3?"),
        _context(AgentSettings(system_prompt="You add numbers.")),
    )

    async with runtime:
        assert connection.refcount == 1
        result = await runtime.run(payload, MagicMock())
        assert connection.refcount == 1
        assert connection.status is ConnectionStatus.CONNECTED

    assert connection.refcount == 0
    assert connection.status is ConnectionStatus.DISCONNECTED
    assert result.state is RunState.COMPLETED
    assert result.final_answer == "2 + 3 = 5"
    assert result.tool_call_log[0].response.success
    assert "5" in result.conversation.messages[3].content
    assert "<name>calculator__add</name>" in result.conversation.messages[0].content


@pytest.mark.asyncio
async def test_runtime_run_without_start_opens_and_closes() -> None:
    runtime = _runtime(AsyncMock(return_value=_reply("No tools needed.")))
    connection = runtime.catalog.connection("calculator")
    payload = AgentLoopPayload(
        conversation=Conversation(
            conversation_id="c", messages=[Message(role=Role.USER, content="hi")]
        )
    )

    result = await runtime.run(payload, MagicMock())

    assert result.final_answer == "No tools needed."
    assert connection.refcount == 0
    assert connection.status is ConnectionStatus.DISCONNECTED
