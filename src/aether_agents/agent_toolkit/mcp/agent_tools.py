"""Utilities to help agents list and invoke MCP tools through a ToolCatalog."""

from __future__ import annotations

import uuid
from typing import Any

from hopeit.app.context import EventContext
from hopeit.server.logger import engine_logger, extra_logger
from hopeit.dataobjects.payload import Payload

from aether_agents.mcp_client.catalog import ToolCatalog
from aether_agents.mcp_client.errors import MCPError
from aether_agents.mcp_client.models import (
    ToolCallRecord,
    ToolCallRequestLog,
    ToolDescriptor,
    ToolExecutionResult,
    ToolExecutionStatus,
)

logger = engine_logger()
extra = extra_logger()

__all__ = [
    "resolve_tools",
    "execute_tool_call",
    "format_tool_output",
    "ToolCallRecord",
    "ToolCallRequestLog",
]


async def resolve_tools(
    catalog: ToolCatalog,
    context: EventContext,
    *,
    agent_id: str,
    allowed_tools: list[str] | None = None,
) -> list[ToolDescriptor]:
    """Snapshot the catalog tools, keeping only ``allowed_tools`` (by id or name) when given."""
    tools = await catalog.list_tools()
    if allowed_tools is not None:
        allowed = set(allowed_tools)
        tools = [tool for tool in tools if tool.id in allowed or tool.name in allowed]

    logger.info(
        context,
        "agent_tools_resolved",
        extra=extra(agent_id=agent_id, tool_count=len(tools), catalog_version=catalog.version),
    )
    return tools


async def execute_tool_call(
    catalog: ToolCatalog,
    context: EventContext,
    *,
    tool: ToolDescriptor,
    arguments: dict[str, Any],
    call_id: str | None = None,
    timeout_seconds: float | None = None,
) -> ToolCallRecord:
    """
    Call ``tool`` and capture request and response.

    Classified failures are folded into an error-status result carrying the
    ``MCPError`` code, so the caller always gets a record back.
    """
    call_id = call_id or f"call_{uuid.uuid4().hex[-10:]}"
    request_log = ToolCallRequestLog(tool_call_id=call_id, tool_name=tool.id, arguments=arguments)
    try:
        result = await catalog.call_tool(
            tool, arguments, timeout_seconds=timeout_seconds, call_id=call_id
        )
    except MCPError as exc:
        logger.warning(
            context,
            "agent_tool_call_failed",
            extra=extra(tool_name=tool.id, code=exc.code.value, error=exc.describe()),
        )
        result = ToolExecutionResult(
            tool_name=tool.name,
            status=ToolExecutionStatus.ERROR,
            error_message=exc.message,
            error_code=exc.code.value,
            call_id=call_id,
            server_name=tool.server_name,
        )
    return ToolCallRecord(request=request_log, response=result)


def format_tool_output(result: ToolExecutionResult) -> str:
    """Text fed back to the model: structured content first, then text blocks."""
    if not result.success:
        return f"Error: {result.error_message or 'Unknown error'}"
    if result.structured_content is not None:
        return Payload.to_json(result.structured_content, indent=2)
    return result.text()
