"""List tools of every configured MCP server."""

from hopeit.app.api import event_api
from hopeit.app.context import EventContext
from hopeit.app.logger import app_extra_logger

from aether_agents.mcp_client.errors import MCPError
from aether_agents.mcp_client.models import ToolDescriptor
from aether_agents.mcp_client.settings import SETTINGS_KEY, MCPClientSettings, build_catalog

__steps__ = ["list_tools"]

__api__ = event_api(
    summary="aether_agents MCP client: list tools",
    responses={
        200: (list[ToolDescriptor], "Available tools"),
        500: (str, "MCP client error"),
    },
)

logger, extra = app_extra_logger()


async def list_tools(payload: None, context: EventContext) -> list[ToolDescriptor]:
    """Return tool descriptors aggregated from the configured MCP servers."""
    settings = context.settings(key=SETTINGS_KEY, datatype=MCPClientSettings)
    catalog = build_catalog(settings, context.env)

    try:
        async with catalog:
            tools = await catalog.list_tools()
    except MCPError as exc:
        logger.error(
            context, "mcp_list_tools_error", extra=extra(code=exc.code.value, error=exc.describe())
        )
        raise

    logger.info(context, "mcp_list_tools_success", extra=extra(tool_count=len(tools)))
    return tools
