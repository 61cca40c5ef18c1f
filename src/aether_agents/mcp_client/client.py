"""MCP clients exposing one capability surface over every supported transport."""

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from contextlib import AsyncExitStack
from typing import Any, Protocol, cast

from hopeit.server.logger import engine_logger, extra_logger
from mcp import ClientSession, McpError, StdioServerParameters, stdio_client, types
from mcp.client.sse import sse_client
from mcp.client.streamable_http import streamablehttp_client
from mcp.server.fastmcp import FastMCP
from mcp.server.lowlevel import Server
from mcp.shared.memory import create_connected_server_and_client_session

from aether_agents.mcp_client.errors import ErrorClassifier, MCPError
from aether_agents.mcp_client.models import (
    MCPServerConfig,
    PromptDescriptor,
    ResourceDescriptor,
    ToolDescriptor,
    ToolExecutionResult,
    ToolExecutionStatus,
    Transport,
)

logger = engine_logger()
extra = extra_logger()

__all__ = [
    "AdapterClient",
    "ClientAdapter",
    "ClientFactory",
    "InMemoryClient",
    "MCPClient",
    "SSEClient",
    "SessionClient",
    "StdioClient",
    "StreamableHTTPClient",
]


class MCPClient(ABC):
    """Capability surface shared by every transport."""

    transport: Transport

    def __init__(self, config: MCPServerConfig, classifier: ErrorClassifier | None = None) -> None:
        self._config = config
        self._classifier = classifier or ErrorClassifier()

    @property
    def name(self) -> str:
        return self._config.name

    @property
    def config(self) -> MCPServerConfig:
        return self._config

    @abstractmethod
    async def connect(self) -> None:
        """Establish the underlying channel."""

    @abstractmethod
    async def close(self) -> None:
        """Release the underlying channel."""

    @abstractmethod
    async def ping(self) -> None:
        """Best-effort health check."""

    @abstractmethod
    async def list_tools(self) -> list[ToolDescriptor]:
        """Return the tools exposed by the server."""

    @abstractmethod
    async def call_tool(
        self,
        name: str,
        arguments: Mapping[str, Any] | None = None,
        *,
        meta: dict[str, Any] | None = None,
        timeout_seconds: float | None = None,
    ) -> ToolExecutionResult:
        """Invoke a tool by name passing the provided arguments."""

    @abstractmethod
    async def list_prompts(self) -> list[PromptDescriptor]:
        """Return the prompts exposed by the server."""

    @abstractmethod
    async def list_resources(self) -> list[ResourceDescriptor]:
        """Return the resources exposed by the server."""

    def _call_timeout(self, timeout_seconds: float | None) -> float:
        return self._config.timeout_seconds if timeout_seconds is None else timeout_seconds

    def _classify(self, exc: BaseException, *, timeout_ms: int = 0) -> MCPError:
        return self._classifier.classify(_leaf_error(exc), self.name, timeout_ms=timeout_ms)

    def _tool_from_mcp(self, tool: types.Tool) -> ToolDescriptor:
        input_schema_raw = tool.inputSchema
        if input_schema_raw is None:
            input_schema: dict[str, Any] | None = None
        elif hasattr(input_schema_raw, "model_dump"):
            input_schema = cast(dict[str, Any], input_schema_raw.model_dump(mode="json"))
        elif isinstance(input_schema_raw, dict):
            input_schema = input_schema_raw
        else:
            input_schema = {}

        return ToolDescriptor(
            id=tool.name,
            name=tool.name,
            description=tool.description,
            input_schema=input_schema,
            server_name=self.name,
        )

    def _tool_result_from_mcp(
        self, tool_name: str, result: types.CallToolResult
    ) -> ToolExecutionResult:
        content: list[dict[str, Any]] = []
        for item in result.content:
            if hasattr(item, "model_dump"):
                content.append(item.model_dump(mode="json"))
            else:
                content.append({"type": item.__class__.__name__})

        structured: dict[str, Any] | list[Any] | None
        structured_raw = getattr(result, "structuredContent", None)
        if structured_raw is None:
            structured = None
        elif hasattr(structured_raw, "model_dump"):
            structured = cast(dict[str, Any] | list[Any], structured_raw.model_dump(mode="json"))
        else:
            structured = cast(dict[str, Any] | list[Any], structured_raw)

        error_message: str | None = None
        if result.isError:
            for item in result.content:
                if isinstance(item, types.TextContent):
                    error_message = item.text
                    break
            error_message = error_message or f"Tool '{tool_name}' reported an error"

        return ToolExecutionResult(
            tool_name=tool_name,
            status=ToolExecutionStatus.ERROR if result.isError else ToolExecutionStatus.SUCCESS,
            content=content,
            structured_content=structured,
            error_message=error_message,
            server_name=self.name,
        )

    @staticmethod
    def _prompt_from_mcp(prompt: types.Prompt) -> PromptDescriptor:
        return PromptDescriptor(
            name=prompt.name,
            description=prompt.description,
            arguments=[arg.model_dump(mode="json") for arg in prompt.arguments or []],
        )

    @staticmethod
    def _resource_from_mcp(resource: types.Resource) -> ResourceDescriptor:
        return ResourceDescriptor(
            uri=str(resource.uri),
            name=resource.name,
            description=resource.description,
            mime_type=resource.mimeType,
        )


class SessionClient(MCPClient):
    """Client holding one long lived MCP SDK session."""

    def __init__(
        self,
        config: MCPServerConfig,
        env: Mapping[str, str] | None = None,
        classifier: ErrorClassifier | None = None,
    ) -> None:
        super().__init__(config, classifier)
        self._env = dict(env or {})
        self._stack: AsyncExitStack | None = None
        self._session: ClientSession | None = None

    @abstractmethod
    async def _open_session(self, stack: AsyncExitStack) -> ClientSession:
        """Open transport streams on ``stack`` and return an initialized session."""

    @property
    def connected(self) -> bool:
        return self._session is not None

    async def connect(self) -> None:
        if self._session is not None:
            return

        stack = AsyncExitStack()
        try:
            self._session = await self._open_session(stack)
        except BaseException as exc:
            await stack.aclose()
            if isinstance(exc, MCPError) or not isinstance(exc, Exception):
                raise
            if isinstance(exc, McpError):
                raise MCPError.initialization_failed(
                    f"MCP handshake with '{self.name}' failed: {exc.error.message}",
                    server_name=self.name,
                    cause=exc,
                ) from exc
            timeout_ms = int(self._config.list_timeout_seconds * 1000)
            raise self._classify(exc, timeout_ms=timeout_ms) from exc

        self._stack = stack
        logger.info(
            __name__,
            "mcp_client_connected",
            extra=extra(server=self.name, transport=self.transport.value),
        )

    async def close(self) -> None:
        stack, self._stack, self._session = self._stack, None, None
        if stack is None:
            return
        try:
            await stack.aclose()
        except MCPError:
            raise
        except Exception as exc:
            raise self._classify(exc) from exc
        logger.info(__name__, "mcp_client_closed", extra=extra(server=self.name))

    async def ping(self) -> None:
        session = self._require_session()
        try:
            await asyncio.wait_for(session.send_ping(), timeout=self._config.list_timeout_seconds)
        except Exception as exc:
            timeout_ms = int(self._config.list_timeout_seconds * 1000)
            raise self._classify(exc, timeout_ms=timeout_ms) from exc

    async def list_tools(self) -> list[ToolDescriptor]:
        session = self._require_session()
        tools: list[types.Tool] = []
        cursor: str | None = None
        try:
            while True:
                request = session.list_tools(cursor=cursor) if cursor else session.list_tools()
                result = await asyncio.wait_for(
                    request, timeout=self._config.list_timeout_seconds
                )
                tools.extend(result.tools)
                cursor = getattr(result, "nextCursor", None)
                if not cursor:
                    break
        except TimeoutError as exc:
            raise MCPError.timeout(
                f"Timed out listing tools of '{self.name}'",
                int(self._config.list_timeout_seconds * 1000),
                server_name=self.name,
                cause=exc,
            ) from exc
        except McpError as exc:
            raise MCPError.transport(
                f"MCP protocol error while listing tools: {exc.error.message}",
                self.transport.value,
                server_name=self.name,
                cause=exc,
            ) from exc
        except MCPError:
            raise
        except Exception as exc:
            raise self._classify(exc) from exc

        return [self._tool_from_mcp(tool) for tool in tools]

    async def call_tool(
        self,
        name: str,
        arguments: Mapping[str, Any] | None = None,
        *,
        meta: dict[str, Any] | None = None,
        timeout_seconds: float | None = None,
    ) -> ToolExecutionResult:
        session = self._require_session()
        timeout = self._call_timeout(timeout_seconds)
        args = dict(arguments or {})
        request = (
            session.call_tool(name, args, meta=meta) if meta else session.call_tool(name, args)
        )
        try:
            result = await asyncio.wait_for(request, timeout=timeout)
        except TimeoutError as exc:
            raise MCPError.timeout(
                f"Timed out calling tool '{name}'",
                int(timeout * 1000),
                server_name=self.name,
                cause=exc,
            ) from exc
        except McpError as exc:
            raise MCPError.tool_call(
                f"MCP protocol error calling tool '{name}': {exc.error.message}",
                name,
                server_name=self.name,
                cause=exc,
            ) from exc
        except MCPError:
            raise
        except Exception as exc:
            raise self._classify(exc, timeout_ms=int(timeout * 1000)) from exc

        return self._tool_result_from_mcp(name, result)

    async def list_prompts(self) -> list[PromptDescriptor]:
        session = self._require_session()
        try:
            result = await asyncio.wait_for(
                session.list_prompts(), timeout=self._config.list_timeout_seconds
            )
        except McpError as exc:
            if exc.error.code == types.METHOD_NOT_FOUND:
                return []
            raise self._classify(exc) from exc
        except MCPError:
            raise
        except Exception as exc:
            raise self._classify(exc) from exc
        return [self._prompt_from_mcp(prompt) for prompt in result.prompts]

    async def list_resources(self) -> list[ResourceDescriptor]:
        session = self._require_session()
        try:
            result = await asyncio.wait_for(
                session.list_resources(), timeout=self._config.list_timeout_seconds
            )
        except McpError as exc:
            if exc.error.code == types.METHOD_NOT_FOUND:
                return []
            raise self._classify(exc) from exc
        except MCPError:
            raise
        except Exception as exc:
            raise self._classify(exc) from exc
        return [self._resource_from_mcp(resource) for resource in result.resources]

    def _require_session(self) -> ClientSession:
        if self._session is None:
            raise MCPError.connection_closed(
                f"Server '{self.name}' is not connected", server_name=self.name
            )
        return self._session

    async def _initialize(self, stack: AsyncExitStack, read: Any, write: Any) -> ClientSession:
        session = await stack.enter_async_context(ClientSession(read, write))
        await asyncio.wait_for(session.initialize(), timeout=self._config.list_timeout_seconds)
        return session


class StdioClient(SessionClient):
    """Launches the server as a subprocess speaking MCP over stdin/stdout."""

    transport = Transport.STDIO

    async def _open_session(self, stack: AsyncExitStack) -> ClientSession:
        command = self._config.command
        if not command:
            raise MCPError.invalid_params(
                "STDIO transport requires a command to launch the server", server_name=self.name
            )
        params = StdioServerParameters(
            command=command,
            args=self._config.args,
            env=self._env or None,
            cwd=self._config.cwd,
        )
        read, write = await stack.enter_async_context(stdio_client(params))
        return await self._initialize(stack, read, write)


class SSEClient(SessionClient):
    """Server-Sent Events transport."""

    transport = Transport.SSE

    async def _open_session(self, stack: AsyncExitStack) -> ClientSession:
        url = self._config.resolve_url()
        if not url:
            raise MCPError.invalid_params(
                "SSE transport requires either a URL or host and port", server_name=self.name
            )
        read, write = await stack.enter_async_context(
            sse_client(
                url,
                headers=self._config.headers or None,
                timeout=self._config.list_timeout_seconds,
                sse_read_timeout=self._config.sse_read_timeout_seconds,
            )
        )
        return await self._initialize(stack, read, write)


class StreamableHTTPClient(SessionClient):
    """Streamable HTTP transport."""

    transport = Transport.STREAMABLE_HTTP

    async def _open_session(self, stack: AsyncExitStack) -> ClientSession:
        url = self._config.resolve_url()
        if not url:
            raise MCPError.invalid_params(
                "HTTP transport requires either a URL or host and port", server_name=self.name
            )
        read, write, _ = await stack.enter_async_context(
            streamablehttp_client(
                url,
                headers=self._config.headers or None,
                timeout=self._config.list_timeout_seconds,
                sse_read_timeout=self._config.sse_read_timeout_seconds,
            )
        )
        return await self._initialize(stack, read, write)


ServerFactory = Callable[[], "Server[Any] | FastMCP"]


class InMemoryClient(SessionClient):
    """Connects to a server running in the same process through memory streams."""

    transport = Transport.IN_MEMORY

    def __init__(
        self,
        config: MCPServerConfig,
        server_factory: ServerFactory,
        classifier: ErrorClassifier | None = None,
    ) -> None:
        super().__init__(config, classifier=classifier)
        self._server_factory = server_factory

    async def _open_session(self, stack: AsyncExitStack) -> ClientSession:
        server = self._server_factory()
        if isinstance(server, FastMCP):
            server = server._mcp_server
        return await stack.enter_async_context(create_connected_server_and_client_session(server))


class ClientAdapter(Protocol):
    """Minimal surface of a transport bridge lacking an MCP client session."""

    async def initialize(self) -> None: ...

    async def close(self) -> None: ...

    async def list_tools(self) -> list[types.Tool]: ...

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> types.CallToolResult: ...

    async def list_prompts(self) -> list[types.Prompt]: ...

    async def list_resources(self) -> list[types.Resource]: ...


class AdapterClient(MCPClient):
    """
    Re-exposes a ClientAdapter with the full MCPClient surface.

    Adapters are handed over already initialized, so ``connect`` and ``ping``
    have no equivalent and succeed without doing anything.
    """

    transport = Transport.STDIO

    def __init__(
        self,
        config: MCPServerConfig,
        adapter: ClientAdapter,
        classifier: ErrorClassifier | None = None,
    ) -> None:
        super().__init__(config, classifier)
        self._adapter = adapter

    async def connect(self) -> None:
        return None

    async def ping(self) -> None:
        return None

    async def close(self) -> None:
        try:
            await self._adapter.close()
        except MCPError:
            raise
        except Exception as exc:
            raise self._classify(exc) from exc

    async def list_tools(self) -> list[ToolDescriptor]:
        try:
            tools = await self._adapter.list_tools()
        except MCPError:
            raise
        except Exception as exc:
            raise self._classify(exc) from exc
        return [self._tool_from_mcp(tool) for tool in tools]

    async def call_tool(
        self,
        name: str,
        arguments: Mapping[str, Any] | None = None,
        *,
        meta: dict[str, Any] | None = None,
        timeout_seconds: float | None = None,
    ) -> ToolExecutionResult:
        timeout = self._call_timeout(timeout_seconds)
        try:
            result = await asyncio.wait_for(
                self._adapter.call_tool(name, dict(arguments or {})), timeout=timeout
            )
        except TimeoutError as exc:
            raise MCPError.timeout(
                f"Timed out calling tool '{name}'",
                int(timeout * 1000),
                server_name=self.name,
                cause=exc,
            ) from exc
        except MCPError:
            raise
        except Exception as exc:
            raise self._classify(exc, timeout_ms=int(timeout * 1000)) from exc
        return self._tool_result_from_mcp(name, result)

    async def list_prompts(self) -> list[PromptDescriptor]:
        try:
            prompts = await self._adapter.list_prompts()
        except MCPError:
            raise
        except Exception as exc:
            raise self._classify(exc) from exc
        return [self._prompt_from_mcp(prompt) for prompt in prompts]

    async def list_resources(self) -> list[ResourceDescriptor]:
        try:
            resources = await self._adapter.list_resources()
        except MCPError:
            raise
        except Exception as exc:
            raise self._classify(exc) from exc
        return [self._resource_from_mcp(resource) for resource in resources]


AdapterFactory = Callable[[MCPServerConfig], ClientAdapter]

_SESSION_CLIENTS: dict[Transport, type[SessionClient]] = {
    Transport.STDIO: StdioClient,
    Transport.SSE: SSEClient,
    Transport.STREAMABLE_HTTP: StreamableHTTPClient,
}


class ClientFactory:
    """Selects the client implementation for a server configuration."""

    def __init__(
        self,
        *,
        in_memory_servers: Mapping[str, ServerFactory] | None = None,
        adapters: Mapping[str, AdapterFactory] | None = None,
        classifier: ErrorClassifier | None = None,
    ) -> None:
        self._in_memory_servers = dict(in_memory_servers or {})
        self._adapters = dict(adapters or {})
        self._classifier = classifier or ErrorClassifier()

    def register_in_memory_server(self, name: str, factory: ServerFactory) -> None:
        self._in_memory_servers[name] = factory

    def register_adapter(self, name: str, factory: AdapterFactory) -> None:
        self._adapters[name] = factory

    def create(self, config: MCPServerConfig, env: Mapping[str, str] | None = None) -> MCPClient:
        """Return a client for ``config``; adapters registered by server name take precedence."""
        adapter_factory = self._adapters.get(config.name)
        if adapter_factory is not None:
            return AdapterClient(config, adapter_factory(config), classifier=self._classifier)

        transport = config.transport_enum()
        if transport is Transport.IN_MEMORY:
            server_factory = self._in_memory_servers.get(config.name)
            if server_factory is None:
                raise MCPError.server_not_found(config.name)
            return InMemoryClient(config, server_factory, classifier=self._classifier)

        client_type = _SESSION_CLIENTS.get(transport)
        if client_type is None:
            raise MCPError.transport(
                f"Transport '{transport.value}' not supported", transport.value,
                server_name=config.name,
            )
        return client_type(config, env=env, classifier=self._classifier)


def _leaf_error(exc: BaseException) -> BaseException:
    """Unwrap single-member exception groups raised by anyio task groups."""
    while isinstance(exc, BaseExceptionGroup) and len(exc.exceptions) == 1:
        exc = exc.exceptions[0]
    return exc
