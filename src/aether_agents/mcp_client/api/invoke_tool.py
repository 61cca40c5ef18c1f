"""Invoke an MCP tool and return its result."""

from hopeit.app.api import event_api
from hopeit.app.context import EventContext
from hopeit.app.logger import app_extra_logger

from aether_agents.mcp_client.errors import MCPError
from aether_agents.mcp_client.models import ToolExecutionResult, ToolInvocation
from aether_agents.mcp_client.settings import SETTINGS_KEY, MCPClientSettings, build_catalog

__steps__ = ["invoke_tool"]

__api__ = event_api(
    summary="aether_agents MCP client: invoke tool",
    payload=(ToolInvocation, "Tool invocation payload"),
    responses={
        200: (ToolExecutionResult, "Tool execution result"),
        404: (str, "Tool not found"),
        500: (str, "MCP client error"),
    },
)

logger, extra = app_extra_logger()


async def invoke_tool(payload: ToolInvocation, context: EventContext) -> ToolExecutionResult:
    """Resolve the requested tool by id or name and call it on its server."""
    settings = context.settings(key=SETTINGS_KEY, datatype=MCPClientSettings)
    catalog = build_catalog(settings, context.env)

    try:
        async with catalog:
            tools = await catalog.list_tools()
            tool = catalog.resolve(payload.name, tools)
            if tool is None:
                raise MCPError.tool_not_found(payload.name)
            result = await catalog.call_tool(tool, payload.arguments, call_id=payload.call_id)
    except MCPError as exc:
        logger.error(
            context,
            "mcp_invoke_tool_error",
            extra=extra(tool_name=payload.name, code=exc.code.value, error=exc.describe()),
        )
        raise

    logger.info(
        context,
        "mcp_invoke_tool_success",
        extra=extra(tool_name=payload.name, status=result.status.value),
    )
    return result
