"""aether_agents MCP client plugin."""

from aether_agents.mcp_client.catalog import (
    FILE_EDITOR_SERVER,
    FILE_EDITOR_TOOL_NAMES,
    ServerConnection,
    ToolCatalog,
    has_file_editor_tools,
)
from aether_agents.mcp_client.client import ClientFactory, MCPClient
from aether_agents.mcp_client.errors import ErrorClassifier, MCPError, MCPErrorCode, classify_error
from aether_agents.mcp_client.models import (
    ConnectionStatus,
    MCPServerConfig,
    ToolCallRecord,
    ToolCallRequestLog,
    ToolDescriptor,
    ToolExecutionResult,
    ToolExecutionStatus,
    ToolInvocation,
    Transport,
)

__all__ = [
    "FILE_EDITOR_SERVER",
    "FILE_EDITOR_TOOL_NAMES",
    "ClientFactory",
    "ConnectionStatus",
    "ErrorClassifier",
    "MCPClient",
    "MCPError",
    "MCPErrorCode",
    "MCPServerConfig",
    "ServerConnection",
    "ToolCallRecord",
    "ToolCallRequestLog",
    "ToolCatalog",
    "ToolDescriptor",
    "ToolExecutionResult",
    "ToolExecutionStatus",
    "ToolInvocation",
    "Transport",
    "classify_error",
    "has_file_editor_tools",
]
