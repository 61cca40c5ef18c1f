"""Run one agent task: compile the prompt, loop over tool calls, report the outcome."""

from hopeit.app.api import event_api
from hopeit.app.context import EventContext
from hopeit.app.logger import app_extra_logger
from hopeit.dataobjects import dataclass, dataobject, field

from aether_agents.agent_toolkit.app.steps.agent_loop import (
    AgentLoopConfig,
    AgentLoopPayload,
    AgentLoopResult,
)
from aether_agents.agent_toolkit.runtime import AgentRuntime
from aether_agents.agent_toolkit.settings import SETTINGS_KEY as AGENT_SETTINGS_KEY
from aether_agents.agent_toolkit.settings import AgentSettings
from aether_agents.mcp_client.models import ToolCallRecord
from aether_agents.mcp_client.settings import SETTINGS_KEY as MCP_SETTINGS_KEY
from aether_agents.mcp_client.settings import MCPClientSettings
from aether_agents.model_client.conversation import build_conversation
from aether_agents.model_client.models import CompletionConfig, Conversation

logger, extra = app_extra_logger()

__steps__ = ["init_run", "run_agent_loop", "result"]


@dataobject
@dataclass
class AgentRequest:
    """Task for the agent, optionally continuing an existing conversation."""

    user_message: str
    conversation: Conversation | None = None
    system_prompt: str | None = None
    completion_config: CompletionConfig | None = None


@dataobject
@dataclass
class AgentResponse:
    """Outcome of the run and the conversation including partial progress."""

    conversation: Conversation
    state: str
    reason: str | None = None
    final_answer: str | None = None
    command: str | None = None
    iterations: int = 0
    warnings: list[str] = field(default_factory=list)
    tool_calls: list[ToolCallRecord] = field(default_factory=list)


__api__ = event_api(
    summary="aether_agents: run agent",
    payload=(AgentRequest, "Agent task description"),
    responses={200: (AgentResponse, "Run outcome")},
)

_runtime: AgentRuntime | None = None


async def __init_event__(context: EventContext) -> None:
    """Build and start the runtime shared by every run of this event."""
    global _runtime
    if _runtime is not None:
        return
    _runtime = AgentRuntime.from_settings(
        context.settings(key=MCP_SETTINGS_KEY, datatype=MCPClientSettings),
        context.settings(key=AGENT_SETTINGS_KEY, datatype=AgentSettings),
        context.env,
    )
    await _runtime.start()
    logger.info(context, "agent_runtime_ready")


async def init_run(payload: AgentRequest, context: EventContext) -> AgentLoopPayload:
    """Build the conversation and loop configuration for the task."""
    settings = context.settings(key=AGENT_SETTINGS_KEY, datatype=AgentSettings)
    conversation = build_conversation(payload.conversation, user_message=payload.user_message)
    return AgentLoopPayload(
        conversation=conversation,
        system_prompt=payload.system_prompt or settings.system_prompt,
        completion_config=payload.completion_config or CompletionConfig(),
        loop_config=AgentLoopConfig.from_settings(settings),
        agent_id=settings.agent_name,
        allowed_tools=settings.allowed_tools,
    )


async def run_agent_loop(payload: AgentLoopPayload, context: EventContext) -> AgentLoopResult:
    if _runtime is None:
        raise RuntimeError("Agent runtime is not initialized")
    return await _runtime.run(payload, context)


async def result(payload: AgentLoopResult, context: EventContext) -> AgentResponse:
    """Flatten the loop result into the API response."""
    session = payload.session
    logger.info(
        context,
        "agent_run_result",
        extra=extra(state=session.state.value, reason=payload.reason),
    )
    return AgentResponse(
        conversation=payload.conversation,
        state=session.state.value,
        reason=payload.reason,
        final_answer=payload.final_answer,
        command=payload.command,
        iterations=session.iteration_count,
        warnings=list(session.warnings),
        tool_calls=payload.tool_call_log,
    )
