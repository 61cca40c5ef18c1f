"""
Tool catalog: shared server connections and the aggregated tool set.

A ``ToolCatalog`` owns one ``ServerConnection`` per configured server. Runs
share connections through reference counting, so one run releasing a server
never closes it under another run. Tool ids are unique within a catalog
snapshot and are the names the model uses in ``<tool_use>`` blocks.
"""

import asyncio
import re
from collections import Counter
from collections.abc import Iterable, Mapping, Sequence
from time import monotonic
from typing import Any

from hopeit.server.logger import engine_logger, extra_logger

from aether_agents.mcp_client.client import MCPClient
from aether_agents.mcp_client.confirmation import ConfirmationGate
from aether_agents.mcp_client.errors import ErrorClassifier, MCPError, MCPErrorCode
from aether_agents.mcp_client.models import (
    ConnectionStatus,
    MCPServerConfig,
    ToolDescriptor,
    ToolExecutionResult,
    Transport,
)

logger = engine_logger()
extra = extra_logger()

__all__ = [
    "FILE_EDITOR_SERVER",
    "FILE_EDITOR_TOOL_NAMES",
    "TOOL_ID_MAX_LENGTH",
    "ServerConnection",
    "ToolCatalog",
    "has_file_editor_tools",
    "make_tool_id",
]

FILE_EDITOR_SERVER = "@aether/file-editor"
FILE_EDITOR_TOOL_NAMES = frozenset(
    {
        "list_workspaces",
        "get_workspace_files",
        "read_file",
        "write_to_file",
        "insert_content",
        "replace_in_file",
        "apply_diff",
        "attempt_completion",
    }
)
TOOL_ID_MAX_LENGTH = 63

_RETRIABLE_CODES = frozenset({MCPErrorCode.CONNECTION_FAILED, MCPErrorCode.CONNECTION_TIMEOUT})
_INVALID_ID_CHARS = re.compile(r"[^A-Za-z0-9_-]")


def has_file_editor_tools(tools: Iterable[ToolDescriptor]) -> bool:
    """True when any tool is a file-editing primitive or comes from the file editor server."""
    return any(
        tool.name in FILE_EDITOR_TOOL_NAMES or tool.server_name == FILE_EDITOR_SERVER
        for tool in tools
    )


def sanitize_tool_name(name: str) -> str:
    return _INVALID_ID_CHARS.sub("_", name)


def make_tool_id(server_name: str, tool_name: str) -> str:
    """Server prefixed id, restricted to ``[A-Za-z0-9_-]`` and 63 characters."""
    tool_id = f"{sanitize_tool_name(server_name)}__{sanitize_tool_name(tool_name)}"
    return tool_id[:TOOL_ID_MAX_LENGTH]


class ServerConnection:
    """Reference counted connection to one MCP server."""

    def __init__(self, config: MCPServerConfig, client: MCPClient) -> None:
        self._config = config
        self._client = client
        self._status = ConnectionStatus.DISCONNECTED
        self._refcount = 0
        self._lock = asyncio.Lock()
        self._tools_cache: tuple[float, list[ToolDescriptor]] | None = None
        self._listeners: list[Any] = []

    @property
    def name(self) -> str:
        return self._config.name

    @property
    def transport(self) -> Transport:
        return self._config.transport_enum()

    @property
    def config(self) -> MCPServerConfig:
        return self._config

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def refcount(self) -> int:
        return self._refcount

    @property
    def active(self) -> bool:
        """Whether the underlying client is open."""
        return self._refcount > 0 and self._status in (
            ConnectionStatus.CONNECTED,
            ConnectionStatus.ERROR,
        )

    def on_change(self, listener: Any) -> None:
        """Register a zero-argument callable invoked after connect and disconnect."""
        self._listeners.append(listener)

    async def acquire(self) -> None:
        """Take a reference, connecting on the first one."""
        async with self._lock:
            if self._refcount == 0:
                await self._connect_with_retries()
            self._refcount += 1

    async def release(self) -> None:
        """Drop a reference, closing on the last one."""
        async with self._lock:
            if self._refcount == 0:
                return
            self._refcount -= 1
            if self._refcount == 0:
                await self._disconnect()

    async def close(self) -> None:
        """Close regardless of outstanding references."""
        async with self._lock:
            if self._refcount == 0 and self._status is ConnectionStatus.DISCONNECTED:
                return
            self._refcount = 0
            await self._disconnect()

    async def list_tools(self) -> list[ToolDescriptor]:
        self._require_active()
        now = monotonic()
        if self._tools_cache is not None:
            cached_at, tools = self._tools_cache
            if now - cached_at < self._config.tool_cache_seconds:
                return tools

        try:
            tools = await self._client.list_tools()
        except MCPError:
            self._status = ConnectionStatus.ERROR
            raise
        self._status = ConnectionStatus.CONNECTED
        self._tools_cache = (now, tools)
        return tools

    async def call_tool(
        self,
        name: str,
        arguments: Mapping[str, Any] | None = None,
        *,
        timeout_seconds: float | None = None,
    ) -> ToolExecutionResult:
        self._require_active()
        return await self._client.call_tool(name, arguments, timeout_seconds=timeout_seconds)

    async def _connect_with_retries(self) -> None:
        self._status = ConnectionStatus.CONNECTING
        attempts = max(1, self._config.max_retries)
        for attempt in range(1, attempts + 1):
            try:
                await self._client.connect()
                break
            except MCPError as exc:
                retriable = exc.code in _RETRIABLE_CODES and attempt < attempts
                logger.warning(
                    __name__,
                    "mcp_server_connect_failed",
                    extra=extra(
                        server=self.name,
                        attempt=attempt,
                        code=exc.code.value,
                        error=exc.message,
                        retrying=retriable,
                    ),
                )
                if not retriable:
                    self._status = ConnectionStatus.ERROR
                    raise
                await asyncio.sleep(self._config.reconnect_delay_seconds)

        self._status = ConnectionStatus.CONNECTED
        self._tools_cache = None
        logger.info(
            __name__,
            "mcp_server_connected",
            extra=extra(server=self.name, transport=self.transport.value),
        )
        self._notify()

    async def _disconnect(self) -> None:
        try:
            await self._client.close()
        finally:
            self._status = ConnectionStatus.DISCONNECTED
            self._tools_cache = None
            logger.info(__name__, "mcp_server_disconnected", extra=extra(server=self.name))
            self._notify()

    def _require_active(self) -> None:
        if not self.active:
            raise MCPError.connection_closed(
                f"Server '{self.name}' is not connected", server_name=self.name
            )

    def _notify(self) -> None:
        for listener in self._listeners:
            listener()


class ToolCatalog:
    """Aggregates tools of every connected server into one addressable set."""

    def __init__(
        self,
        connections: Iterable[ServerConnection] = (),
        *,
        prefix_tool_ids: bool = True,
        confirmation: ConfirmationGate | None = None,
        classifier: ErrorClassifier | None = None,
    ) -> None:
        self._connections: dict[str, ServerConnection] = {}
        self._prefix_tool_ids = prefix_tool_ids
        self._confirmation = confirmation
        self._classifier = classifier or ErrorClassifier()
        self._version = 0
        for connection in connections:
            self.add_server(connection)

    @property
    def version(self) -> int:
        """Incremented whenever the set of connected servers changes."""
        return self._version

    @property
    def confirmation(self) -> ConfirmationGate | None:
        return self._confirmation

    def add_server(self, connection: ServerConnection) -> None:
        if connection.name in self._connections:
            raise MCPError.invalid_params(
                f"Server '{connection.name}' is already registered",
                server_name=connection.name,
            )
        self._connections[connection.name] = connection
        connection.on_change(self._bump_version)
        self._bump_version()

    async def remove_server(self, name: str) -> None:
        connection = self.connection(name)
        del self._connections[name]
        self._bump_version()
        await connection.close()

    def connection(self, name: str) -> ServerConnection:
        try:
            return self._connections[name]
        except KeyError as exc:
            raise MCPError.server_not_found(name) from exc

    def connections(self) -> list[ServerConnection]:
        return list(self._connections.values())

    async def connect_all(self) -> list[MCPError]:
        """Acquire every enabled server. Failures are logged and returned, not raised."""
        failures: list[MCPError] = []
        for connection in self._connections.values():
            if not connection.config.enabled:
                continue
            try:
                await connection.acquire()
            except MCPError as exc:
                logger.error(
                    __name__,
                    "mcp_server_unavailable",
                    extra=extra(server=connection.name, code=exc.code.value, error=exc.message),
                )
                failures.append(exc)
        return failures

    async def close_all(self) -> None:
        for connection in self._connections.values():
            try:
                await connection.close()
            except MCPError as exc:
                logger.warning(
                    __name__,
                    "mcp_server_close_failed",
                    extra=extra(server=connection.name, code=exc.code.value, error=exc.message),
                )

    async def __aenter__(self) -> "ToolCatalog":
        await self.connect_all()
        return self

    async def __aexit__(self, *_exc: Any) -> None:
        await self.close_all()

    async def list_tools(self) -> list[ToolDescriptor]:
        """Snapshot of all tools, in server registration order, with unique ids."""
        per_server: list[tuple[str, list[ToolDescriptor]]] = []
        for connection in self._connections.values():
            if not connection.active:
                continue
            try:
                tools = await connection.list_tools()
            except MCPError as exc:
                logger.warning(
                    __name__,
                    "mcp_list_tools_skipped",
                    extra=extra(server=connection.name, code=exc.code.value, error=exc.message),
                )
                continue
            per_server.append((connection.name, tools))
        return _assign_ids(per_server, prefix=self._prefix_tool_ids)

    def resolve(self, name: str, tools: Sequence[ToolDescriptor]) -> ToolDescriptor | None:
        """Find a tool by id, then by unique bare name, then by sanitized name."""
        name = name.strip()
        for tool in tools:
            if tool.id == name:
                return tool
        by_name = [tool for tool in tools if tool.name == name]
        if len(by_name) == 1:
            return by_name[0]
        sanitized = sanitize_tool_name(name)
        by_sanitized = [
            tool for tool in tools if tool.id == sanitized or sanitize_tool_name(tool.name) == sanitized
        ]
        if len(by_sanitized) == 1:
            return by_sanitized[0]
        return None

    async def call_tool(
        self,
        tool: ToolDescriptor,
        arguments: Mapping[str, Any] | None = None,
        *,
        timeout_seconds: float | None = None,
        call_id: str | None = None,
    ) -> ToolExecutionResult:
        """Dispatch to the owning server. Every failure is raised as ``MCPError``."""
        args = dict(arguments or {})
        try:
            connection = self.connection(tool.server_name)
            if self._confirmation is not None:
                await self._confirmation.check(connection.name, tool.name, args)
            result = await connection.call_tool(tool.name, args, timeout_seconds=timeout_seconds)
        except MCPError:
            raise
        except Exception as exc:
            raise self._classifier.classify(exc, tool.server_name) from exc

        result.call_id = call_id
        return result

    def _bump_version(self) -> None:
        self._version += 1


def _assign_ids(
    per_server: Sequence[tuple[str, list[ToolDescriptor]]], *, prefix: bool
) -> list[ToolDescriptor]:
    counts = Counter(tool.name for _, tools in per_server for tool in tools)
    used: set[str] = set()
    assigned: list[ToolDescriptor] = []
    for server_name, tools in per_server:
        for tool in tools:
            if prefix or counts[tool.name] > 1:
                candidate = make_tool_id(server_name, tool.name)
            else:
                candidate = tool.name
            tool_id, suffix = candidate, 2
            while tool_id in used:
                tail = f"_{suffix}"
                tool_id = candidate[: TOOL_ID_MAX_LENGTH - len(tail)] + tail
                suffix += 1
            used.add(tool_id)
            assigned.append(
                ToolDescriptor(
                    id=tool_id,
                    name=tool.name,
                    description=tool.description,
                    input_schema=tool.input_schema,
                    server_name=server_name,
                )
            )
    return assigned
