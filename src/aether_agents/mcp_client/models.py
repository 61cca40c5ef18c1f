"""Typed data objects for the MCP client plugin."""

import json
from enum import Enum
from typing import Any

from hopeit.dataobjects import dataclass, dataobject, field


class Transport(str, Enum):
    """Supported MCP transport mechanisms."""

    IN_MEMORY = "inMemory"
    SSE = "sse"
    STREAMABLE_HTTP = "streamableHttp"
    STDIO = "stdio"
    HTTP_STREAM = "httpStream"
    """Deprecated alias of STREAMABLE_HTTP kept for older configurations."""


class ConnectionStatus(str, Enum):
    """Lifecycle status of a server connection."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


class ToolExecutionStatus(str, Enum):
    """Outcome of a tool invocation."""

    SUCCESS = "success"
    ERROR = "error"


@dataobject
@dataclass
class ToolDescriptor:
    """Definition for a tool the client can call."""

    id: str
    """Catalog-wide unique identifier the model uses to address the tool."""
    name: str
    """The programmatic name of the tool as exposed by its server."""
    description: str | None
    """A human-readable description of the tool."""
    input_schema: dict[str, Any] | None = None
    """A JSON Schema object defining the expected parameters for the tool."""
    server_name: str = ""
    """Name of the server exposing the tool."""


@dataobject
@dataclass
class PromptDescriptor:
    """Prompt template advertised by a server."""

    name: str
    description: str | None = None
    arguments: list[dict[str, Any]] = field(default_factory=list)


@dataobject
@dataclass
class ResourceDescriptor:
    """Resource advertised by a server."""

    uri: str
    name: str
    description: str | None = None
    mime_type: str | None = None


@dataobject
@dataclass
class ToolInvocation:
    """Payload to invoke a tool."""

    name: str
    arguments: dict[str, Any] = field(default_factory=dict)
    call_id: str | None = None
    session_id: str | None = None


@dataobject
@dataclass
class ToolExecutionResult:
    """Result of calling a tool through MCP."""

    tool_name: str
    status: ToolExecutionStatus
    content: list[dict[str, Any]] = field(default_factory=list)
    structured_content: dict[str, Any] | list[Any] | None = None
    error_message: str | None = None
    error_code: str | None = None
    """MCPError code when the call failed before the tool produced a result."""
    call_id: str | None = None
    server_name: str | None = None

    @property
    def success(self) -> bool:
        return self.status is ToolExecutionStatus.SUCCESS

    def text(self) -> str:
        """Render the result as text to be fed back to the model."""
        if not self.success:
            return self.error_message or "Unknown error"
        if self.structured_content is not None:
            return json.dumps(self.structured_content, ensure_ascii=False)
        texts = [str(item.get("text", "")) for item in self.content if item.get("type") == "text"]
        if texts and len(texts) == len(self.content):
            return "\n".join(texts)
        return json.dumps(self.content, ensure_ascii=False)


@dataobject
@dataclass
class ToolCallRequestLog:
    """Captured request details for a tool call."""

    tool_call_id: str
    tool_name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataobject
@dataclass
class ToolCallRecord:
    """Aggregated tool call request and response for logging/telemetry."""

    request: ToolCallRequestLog
    response: ToolExecutionResult


@dataobject
@dataclass
class MCPServerConfig:
    """Configuration required to communicate with an MCP server."""

    name: str
    transport: Transport = Transport.STDIO
    command: str | None = None
    args: list[str] = field(default_factory=list)
    env: dict[str, str] = field(default_factory=dict)
    cwd: str | None = None
    url: str | None = None
    host: str | None = None
    port: int | None = None
    headers: dict[str, str] = field(default_factory=dict)
    timeout_seconds: float = 60.0
    max_retries: int = 3
    reconnect_delay_seconds: float = 3.0
    tool_cache_seconds: float = 30.0
    list_timeout_seconds: float = 10.0
    sse_read_timeout_seconds: float = 300.0
    enabled: bool = True

    def transport_enum(self) -> Transport:
        """Return the transport as enum."""
        transport = (
            self.transport if isinstance(self.transport, Transport) else Transport(self.transport)
        )
        if transport is Transport.HTTP_STREAM:
            return Transport.STREAMABLE_HTTP
        return transport

    def resolve_url(self) -> str | None:
        """Return the configured URL, building one from host and port when missing."""
        if self.url:
            return self.url
        if self.host and self.port is not None:
            return f"http://{self.host}:{int(self.port)}/mcp"
        return None
