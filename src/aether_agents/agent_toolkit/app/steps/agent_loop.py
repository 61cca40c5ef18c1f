"""
Agent loop: model turn, one tool call, result fed back, repeat.

Each round the model sees the whole conversation and may answer with at most
one ``<tool_use>`` block. The run ends when the model answers without a
tool, calls ``attempt_completion``, reaches one of the session limits or is
cancelled. Cancellation is checked before each model call and again before
any tool requested by that turn runs.
"""

from collections.abc import Awaitable, Callable, Sequence

from hopeit.app.context import EventContext
from hopeit.server.logger import engine_logger, extra_logger
from hopeit.dataobjects import dataclass, dataobject, field

from aether_agents.agent_toolkit.agents.prompts import AgentLimits, compile_system_prompt
from aether_agents.agent_toolkit.agents.sections import compile_compact_prompt
from aether_agents.agent_toolkit.agents.tool_use import (
    COMPLETION_TOOL,
    TOOL_USE_RESULT_STOP,
    ParsedToolUse,
    ToolUseSyntaxError,
    find_tool_uses,
    format_tool_result,
    has_tool_use_tag,
    parse_arguments,
)
from aether_agents.agent_toolkit.app.session import (
    AgentSession,
    CancellationToken,
    RunState,
    TerminationReason,
)
from aether_agents.agent_toolkit.events import (
    EventBus,
    RunCompleted,
    RunFailed,
    ToolCallFailed,
    ToolCallStarted,
    ToolCallSucceeded,
)
from aether_agents.agent_toolkit.mcp.agent_tools import (
    execute_tool_call,
    format_tool_output,
    resolve_tools,
)
from aether_agents.agent_toolkit.settings import AgentSettings, PromptStyle
from aether_agents.mcp_client.catalog import ToolCatalog
from aether_agents.mcp_client.errors import MCPError, MCPErrorCode
from aether_agents.mcp_client.models import (
    ToolCallRecord,
    ToolCallRequestLog,
    ToolDescriptor,
    ToolExecutionResult,
    ToolExecutionStatus,
)
from aether_agents.model_client.api import generate as model_generate
from aether_agents.model_client.client import ModelClientError
from aether_agents.model_client.conversation import replace_system_prompt
from aether_agents.model_client.models import (
    CompletionConfig,
    CompletionRequest,
    CompletionResponse,
    Conversation,
    Message,
    Role,
)

logger = engine_logger()
extra = extra_logger()

__all__ = [
    "AgentLoop",
    "AgentLoopConfig",
    "AgentLoopPayload",
    "AgentLoopResult",
    "ModelInvoker",
]

ModelInvoker = Callable[[CompletionRequest, EventContext], Awaitable[CompletionResponse]]


@dataobject
@dataclass
class AgentLoopConfig:
    """Limits and prompt options of one run."""

    max_iterations: int = 25
    max_consecutive_errors: int = 3
    tool_timeout_seconds: float | None = None
    prompt_style: PromptStyle = PromptStyle.FULL
    agentic: bool | None = None
    cwd: str = "."
    os_type: str = "linux"

    @classmethod
    def from_settings(cls, settings: AgentSettings) -> "AgentLoopConfig":
        return cls(
            max_iterations=settings.max_iterations,
            max_consecutive_errors=settings.max_consecutive_errors,
            tool_timeout_seconds=settings.tool_timeout_seconds,
            prompt_style=settings.prompt_style,
            agentic=settings.agentic,
            cwd=settings.cwd,
            os_type=settings.os_type,
        )

    @property
    def limits(self) -> AgentLimits:
        return AgentLimits(
            max_iterations=self.max_iterations,
            max_consecutive_errors=self.max_consecutive_errors,
        )


@dataobject
@dataclass
class AgentLoopPayload:
    """Conversation so far plus the user authored system prompt."""

    conversation: Conversation
    system_prompt: str = ""
    completion_config: CompletionConfig = field(default_factory=CompletionConfig)
    loop_config: AgentLoopConfig = field(default_factory=AgentLoopConfig)
    agent_id: str = "agent"
    allowed_tools: list[str] | None = None


@dataobject
@dataclass
class AgentLoopResult:
    """Outcome of a run. The conversation keeps partial progress on failure."""

    conversation: Conversation
    session: AgentSession
    final_answer: str | None = None
    command: str | None = None
    tool_call_log: list[ToolCallRecord] = field(default_factory=list)

    @property
    def state(self) -> RunState:
        return self.session.state

    @property
    def reason(self) -> str | None:
        return self.session.reason.value if self.session.reason else None


async def _generate(request: CompletionRequest, context: EventContext) -> CompletionResponse:
    return await model_generate.generate(request, context)


class AgentLoop:
    """Drives tool rounds against a shared ToolCatalog."""

    def __init__(
        self,
        catalog: ToolCatalog,
        *,
        model: ModelInvoker | None = None,
        events: EventBus | None = None,
    ) -> None:
        self._catalog = catalog
        self._model = model or _generate
        self._events = events or EventBus()

    @property
    def events(self) -> EventBus:
        return self._events

    async def run(
        self,
        payload: AgentLoopPayload,
        context: EventContext,
        *,
        tools: Sequence[ToolDescriptor] | None = None,
        cancel: CancellationToken | None = None,
    ) -> AgentLoopResult:
        """Run until completion, failure or abort. Limit breaches never raise."""
        config = payload.loop_config
        session = AgentSession(
            max_iterations=config.max_iterations,
            max_consecutive_errors=config.max_consecutive_errors,
        )
        run_id = payload.conversation.conversation_id
        if tools is None:
            tools = await resolve_tools(
                self._catalog,
                context,
                agent_id=payload.agent_id,
                allowed_tools=payload.allowed_tools,
            )
        snapshot = list(tools)

        conversation = payload.conversation
        system_prompt = self._compile_prompt(payload.system_prompt, snapshot, config)
        if system_prompt:
            conversation = replace_system_prompt(conversation, system_prompt)
        completion_config = _with_stop_sequence(payload.completion_config)

        result = AgentLoopResult(conversation=conversation, session=session)
        session.start()
        logger.info(
            context,
            "agent_run_started",
            extra=extra(run_id=run_id, agent_id=payload.agent_id, tool_count=len(snapshot)),
        )

        while not session.finished:
            if cancel is not None and cancel.cancelled:
                session.abort()
                break

            try:
                response = await self._model(
                    CompletionRequest(conversation=result.conversation, config=completion_config),
                    context,
                )
            except ModelClientError as exc:
                logger.error(
                    context,
                    "agent_model_error",
                    extra=extra(run_id=run_id, status=exc.status, error=exc.message),
                )
                session.warn(f"Model invocation failed: {exc.message}")
                session.fail(TerminationReason.MODEL_ERROR)
                break

            if cancel is not None and cancel.cancelled:
                result.conversation = result.conversation.with_message(
                    Message(role=Role.ASSISTANT, content=response.message.content)
                )
                session.abort()
                break

            await self._handle_turn(
                run_id,
                response.message.content,
                snapshot,
                result,
                context,
                timeout_seconds=config.tool_timeout_seconds,
            )

        await self._publish_outcome(run_id, result, context)
        return result

    def _compile_prompt(
        self, user_prompt: str, tools: list[ToolDescriptor], config: AgentLoopConfig
    ) -> str:
        if config.prompt_style is PromptStyle.COMPACT:
            return compile_compact_prompt(
                user_prompt,
                tools,
                agentic=config.agentic,
                limits=config.limits,
                cwd=config.cwd,
                os_type=config.os_type,
            )
        return compile_system_prompt(
            user_prompt, tools, agentic=config.agentic, limits=config.limits
        )

    async def _handle_turn(
        self,
        run_id: str,
        text: str,
        tools: list[ToolDescriptor],
        result: AgentLoopResult,
        context: EventContext,
        timeout_seconds: float | None = None,
    ) -> None:
        session = result.session
        uses = find_tool_uses(text)

        if not uses:
            result.conversation = result.conversation.with_message(
                Message(role=Role.ASSISTANT, content=text)
            )
            if has_tool_use_tag(text):
                error = MCPError.tool_call(
                    "Malformed <tool_use> block: expected <name> and <arguments> "
                    "inside a closed <tool_use> tag",
                    "unknown",
                )
                await self._fail_round(run_id, "unknown", error, result, context)
                return
            result.final_answer = text
            session.complete(TerminationReason.DIRECT_ANSWER)
            return

        tool_use = uses[0]
        if len(uses) > 1:
            warning = (
                f"Model requested {len(uses)} tools in one turn; "
                f"only '{tool_use.name}' was executed"
            )
            session.warn(warning)
            logger.warning(
                context,
                "agent_multiple_tool_uses",
                extra=extra(run_id=run_id, count=len(uses), executed=tool_use.name),
            )
            text = text[: tool_use.end]
        result.conversation = result.conversation.with_message(
            Message(role=Role.ASSISTANT, content=text)
        )

        if tool_use.malformed:
            name = tool_use.name or "unknown"
            error = MCPError.tool_call(tool_use.error or "Malformed <tool_use> block", name)
            await self._fail_round(run_id, name, error, result, context)
            return

        tool = self._catalog.resolve(tool_use.name, tools)
        if tool_use.name == COMPLETION_TOOL or (tool is not None and tool.name == COMPLETION_TOOL):
            await self._complete(run_id, tool_use, result, context)
            return

        if tool is None:
            error = MCPError.tool_not_found(tool_use.name)
            await self._fail_round(run_id, tool_use.name, error, result, context)
            return

        try:
            arguments = parse_arguments(tool_use.raw_arguments)
        except ToolUseSyntaxError as exc:
            error = MCPError.tool_call(str(exc), tool_use.name, server_name=tool.server_name)
            await self._fail_round(run_id, tool_use.name, error, result, context)
            return

        await self._events.publish(
            ToolCallStarted(
                run_id=run_id,
                tool_name=tool.id,
                iteration=session.iteration_count + 1,
                arguments=arguments,
            )
        )
        record = await execute_tool_call(
            self._catalog,
            context,
            tool=tool,
            arguments=arguments,
            timeout_seconds=timeout_seconds,
        )
        result.tool_call_log.append(record)
        output = format_tool_output(record.response)

        if record.response.success:
            await self._events.publish(
                ToolCallSucceeded(run_id=run_id, tool_name=tool.id, result=output)
            )
            session.record_success()
        else:
            await self._events.publish(
                ToolCallFailed(
                    run_id=run_id,
                    tool_name=tool.id,
                    error=record.response.error_message or "Unknown error",
                    code=record.response.error_code or MCPErrorCode.TOOL_CALL_FAILED.value,
                )
            )
            session.record_failure()

        self._append_result(result, tool_use.name, output)

    async def _complete(
        self,
        run_id: str,
        tool_use: ParsedToolUse,
        result: AgentLoopResult,
        context: EventContext,
    ) -> None:
        try:
            arguments = parse_arguments(tool_use.raw_arguments)
        except ToolUseSyntaxError as exc:
            error = MCPError.tool_call(str(exc), COMPLETION_TOOL)
            await self._fail_round(run_id, tool_use.name, error, result, context)
            return
        if not isinstance(arguments.get("result"), str):
            error = MCPError.tool_call(
                "attempt_completion requires a string 'result' argument", COMPLETION_TOOL
            )
            await self._fail_round(run_id, tool_use.name, error, result, context)
            return

        command = arguments.get("command")
        result.final_answer = arguments["result"]
        result.command = command if isinstance(command, str) and command else None
        result.session.complete(TerminationReason.TASK_COMPLETED)

    async def _fail_round(
        self,
        run_id: str,
        tool_name: str,
        error: MCPError,
        result: AgentLoopResult,
        context: EventContext,
    ) -> None:
        logger.warning(
            context,
            "agent_tool_round_failed",
            extra=extra(run_id=run_id, tool_name=tool_name, code=error.code.value),
        )
        result.tool_call_log.append(
            ToolCallRecord(
                request=ToolCallRequestLog(tool_call_id="", tool_name=tool_name),
                response=ToolExecutionResult(
                    tool_name=tool_name,
                    status=ToolExecutionStatus.ERROR,
                    error_message=error.message,
                    error_code=error.code.value,
                ),
            )
        )
        await self._events.publish(
            ToolCallFailed(
                run_id=run_id, tool_name=tool_name, error=error.message, code=error.code.value
            )
        )
        result.session.record_failure()
        self._append_result(result, tool_name, f"Error: {error.message}")

    @staticmethod
    def _append_result(result: AgentLoopResult, tool_name: str, output: str) -> None:
        result.conversation = result.conversation.with_message(
            Message(role=Role.USER, content=format_tool_result(tool_name, output))
        )

    async def _publish_outcome(
        self, run_id: str, result: AgentLoopResult, context: EventContext
    ) -> None:
        session = result.session
        if session.completed:
            await self._events.publish(
                RunCompleted(run_id=run_id, summary=result.final_answer or "", command=result.command)
            )
        else:
            await self._events.publish(
                RunFailed(run_id=run_id, reason=result.reason or "", state=session.state.value)
            )
        logger.info(
            context,
            "agent_run_finished",
            extra=extra(
                run_id=run_id,
                state=session.state.value,
                reason=result.reason,
                iterations=session.iteration_count,
                warnings=len(session.warnings),
            ),
        )


def _with_stop_sequence(config: CompletionConfig) -> CompletionConfig:
    stop = list(config.stop or [])
    if TOOL_USE_RESULT_STOP not in stop:
        stop.append(TOOL_USE_RESULT_STOP)
    return CompletionConfig(
        model=config.model,
        temperature=config.temperature,
        max_output_tokens=config.max_output_tokens,
        response_format=config.response_format,
        stop=stop,
    )
