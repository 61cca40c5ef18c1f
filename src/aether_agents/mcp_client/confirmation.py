"""User confirmation gate for sensitive tool calls."""

import asyncio
import uuid
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any, NamedTuple

from hopeit.dataobjects import dataclass, dataobject, field
from hopeit.server.logger import engine_logger, extra_logger

from aether_agents.mcp_client.errors import MCPError

logger = engine_logger()
extra = extra_logger()

DEFAULT_CONFIRMATION_TIMEOUT_SECONDS = 60.0


class RiskLevel(str, Enum):
    """How destructive a tool call can be."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataobject
@dataclass
class ConfirmationRequest:
    """Request presented to the user before running a registered tool."""

    request_id: str
    server_name: str
    tool_name: str
    risk: RiskLevel
    summary: str
    arguments: dict[str, Any] = field(default_factory=dict)


SummaryBuilder = Callable[[dict[str, Any]], str]
Approver = Callable[[ConfirmationRequest], Awaitable[bool]]


class _Entry(NamedTuple):
    risk: RiskLevel
    summary_builder: SummaryBuilder | None = None


class ConfirmationGate:
    """
    Holds the registry of tools needing user approval.

    Unregistered tools always pass. A registered tool passes only when the
    approver answers True within ``timeout_seconds``; no approver, a timeout,
    or a rejection raise a ToolCall ``MCPError``.
    """

    def __init__(
        self,
        approver: Approver | None = None,
        *,
        timeout_seconds: float = DEFAULT_CONFIRMATION_TIMEOUT_SECONDS,
    ) -> None:
        self._approver = approver
        self._timeout_seconds = timeout_seconds
        self._registry: dict[str, _Entry] = {}

    def register(
        self,
        tool_name: str,
        risk: RiskLevel = RiskLevel.MEDIUM,
        summary_builder: SummaryBuilder | None = None,
    ) -> None:
        self._registry[tool_name] = _Entry(risk=risk, summary_builder=summary_builder)

    def unregister(self, tool_name: str) -> None:
        self._registry.pop(tool_name, None)

    def needs_confirmation(self, tool_name: str) -> bool:
        return tool_name in self._registry

    def risk_level(self, tool_name: str) -> RiskLevel:
        entry = self._registry.get(tool_name)
        return entry.risk if entry else RiskLevel.MEDIUM

    async def check(self, server_name: str, tool_name: str, arguments: dict[str, Any]) -> None:
        """Return when the call may proceed, raise ``MCPError`` otherwise."""
        entry = self._registry.get(tool_name)
        if entry is None:
            return

        request = ConfirmationRequest(
            request_id=str(uuid.uuid4()),
            server_name=server_name,
            tool_name=tool_name,
            risk=entry.risk,
            summary=(
                entry.summary_builder(arguments)
                if entry.summary_builder
                else _default_summary(tool_name, arguments)
            ),
            arguments=arguments,
        )
        approved = False
        if self._approver is not None:
            try:
                approved = await asyncio.wait_for(
                    self._approver(request), timeout=self._timeout_seconds
                )
            except TimeoutError:
                logger.warning(
                    __name__,
                    "tool_confirmation_expired",
                    extra=extra(tool_name=tool_name, request_id=request.request_id),
                )

        logger.info(
            __name__,
            "tool_confirmation_answered",
            extra=extra(tool_name=tool_name, risk=entry.risk.value, approved=approved),
        )
        if not approved:
            raise MCPError.tool_call(
                f"User rejected the call to tool '{tool_name}'",
                tool_name,
                server_name=server_name,
            )


def _default_summary(tool_name: str, arguments: dict[str, Any]) -> str:
    if not arguments:
        return f"Run {tool_name}"
    listed = ", ".join(f"{key}={value!r}" for key, value in list(arguments.items())[:3])
    return f"Run {tool_name} with {listed}"
