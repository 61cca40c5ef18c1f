"""Unit tests for the per-transport MCP clients."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest
from mcp import McpError, types
from mcp.server.fastmcp import FastMCP

from aether_agents.mcp_client.client import (
    AdapterClient,
    ClientFactory,
    InMemoryClient,
    SSEClient,
    StdioClient,
    StreamableHTTPClient,
)
from aether_agents.mcp_client.errors import MCPError, MCPErrorCode
from aether_agents.mcp_client.models import MCPServerConfig, ToolExecutionStatus, Transport


def _demo_server() -> FastMCP:
    server = FastMCP("demo")

    @server.tool()
    def add(a: int, b: int) -> int:
        """Add two numbers."""
        return a + b

    @server.tool()
    def fail() -> str:
        """Always fails."""
        raise ValueError("boom")

    return server


class PagedSession:
    """Session stub returning tools across two pages."""

    def __init__(self) -> None:
        self.cursors: list[str | None] = []

    async def list_tools(self, cursor: str | None = None) -> types.ListToolsResult:
        self.cursors.append(cursor)
        if cursor is None:
            tool = types.Tool(name="first", description="page one", inputSchema={"type": "object"})
            return types.ListToolsResult(tools=[tool], nextCursor="page-2")
        tool = types.Tool(name="second", description="page two", inputSchema={"type": "object"})
        return types.ListToolsResult(tools=[tool])


class SlowSession:
    async def call_tool(self, *_args: Any, **_kwargs: Any) -> types.CallToolResult:
        await asyncio.sleep(1.0)
        raise AssertionError("call should have timed out")


class ProtocolErrorSession:
    async def call_tool(self, *_args: Any, **_kwargs: Any) -> types.CallToolResult:
        raise McpError(types.ErrorData(code=types.INVALID_PARAMS, message="bad params"))


class FakeAdapter:
    """ClientAdapter stub recording calls."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.closed = False

    async def initialize(self) -> None:
        return None

    async def close(self) -> None:
        self.closed = True

    async def list_tools(self) -> list[types.Tool]:
        return [types.Tool(name="native", description="native tool", inputSchema={"type": "object"})]

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> types.CallToolResult:
        self.calls.append((name, arguments))
        return types.CallToolResult(content=[types.TextContent(type="text", text="done")])

    async def list_prompts(self) -> list[types.Prompt]:
        return [types.Prompt(name="greet", description="Say hi")]

    async def list_resources(self) -> list[types.Resource]:
        return []


@pytest.mark.asyncio
async def test_in_memory_client_lists_and_calls_tools() -> None:
    config = MCPServerConfig(name="demo", transport=Transport.IN_MEMORY)
    client = InMemoryClient(config, _demo_server)

    await client.connect()
    try:
        tools = await client.list_tools()
        assert sorted(tool.name for tool in tools) == ["add", "fail"]
        assert {tool.server_name for tool in tools} == {"demo"}
        add_tool = next(tool for tool in tools if tool.name == "add")
        assert add_tool.input_schema is not None
        assert add_tool.input_schema["properties"]["a"]["type"] == "integer"

        result = await client.call_tool("add", {"a": 2, "b": 3})
        assert result.status is ToolExecutionStatus.SUCCESS
        assert "5" in result.text()

        failed = await client.call_tool("fail", {})
        assert failed.status is ToolExecutionStatus.ERROR
        assert failed.error_message is not None
        assert "boom" in failed.error_message

        await client.ping()
    finally:
        await client.close()

    assert client.connected is False


@pytest.mark.asyncio
async def test_calls_on_disconnected_client_raise_connection_closed() -> None:
    client = StdioClient(MCPServerConfig(name="idle", command="python"))

    with pytest.raises(MCPError) as err:
        await client.call_tool("echo", {})

    assert err.value.code is MCPErrorCode.CONNECTION_CLOSED
    assert err.value.server_name == "idle"


@pytest.mark.asyncio
async def test_call_tool_timeout_carries_configured_bound() -> None:
    client = StdioClient(MCPServerConfig(name="slow", command="python", timeout_seconds=0.01))
    client._session = SlowSession()  # type: ignore[assignment]

    with pytest.raises(MCPError) as err:
        await client.call_tool("echo", {"value": 1})

    assert err.value.code is MCPErrorCode.CONNECTION_TIMEOUT
    assert err.value.timeout_ms == 10
    assert isinstance(err.value.cause, TimeoutError)


@pytest.mark.asyncio
async def test_call_tool_timeout_override() -> None:
    client = StdioClient(MCPServerConfig(name="slow", command="python"))
    client._session = SlowSession()  # type: ignore[assignment]

    with pytest.raises(MCPError) as err:
        await client.call_tool("echo", {}, timeout_seconds=0.02)

    assert err.value.timeout_ms == 20


@pytest.mark.asyncio
async def test_protocol_error_is_a_tool_call_error() -> None:
    client = StdioClient(MCPServerConfig(name="strict", command="python"))
    client._session = ProtocolErrorSession()  # type: ignore[assignment]

    with pytest.raises(MCPError) as err:
        await client.call_tool("echo", {})

    assert err.value.code is MCPErrorCode.TOOL_CALL_FAILED
    assert err.value.tool_name == "echo"
    assert "bad params" in err.value.message


@pytest.mark.asyncio
async def test_list_tools_follows_pagination() -> None:
    client = StdioClient(MCPServerConfig(name="paged", command="python"))
    session = PagedSession()
    client._session = session  # type: ignore[assignment]

    tools = await client.list_tools()

    assert [tool.name for tool in tools] == ["first", "second"]
    assert session.cursors == [None, "page-2"]


@pytest.mark.asyncio
async def test_stdio_without_command_is_invalid() -> None:
    client = StdioClient(MCPServerConfig(name="broken"))

    with pytest.raises(MCPError) as err:
        await client.connect()

    assert err.value.code is MCPErrorCode.INVALID_PARAMS
    assert client.connected is False


@pytest.mark.asyncio
async def test_adapter_client_exposes_full_surface() -> None:
    adapter = FakeAdapter()
    client = AdapterClient(MCPServerConfig(name="bridge"), adapter)

    await client.connect()
    await client.ping()
    tools = await client.list_tools()
    result = await client.call_tool("native", {"x": 1})
    prompts = await client.list_prompts()
    resources = await client.list_resources()
    await client.close()

    assert [tool.name for tool in tools] == ["native"]
    assert tools[0].server_name == "bridge"
    assert result.success
    assert result.text() == "done"
    assert adapter.calls == [("native", {"x": 1})]
    assert [prompt.name for prompt in prompts] == ["greet"]
    assert resources == []
    assert adapter.closed is True


@pytest.mark.asyncio
async def test_adapter_client_classifies_raw_errors() -> None:
    adapter = FakeAdapter()

    async def broken_call(_name: str, _arguments: dict[str, Any]) -> types.CallToolResult:
        raise RuntimeError("bridge connect refused")

    adapter.call_tool = broken_call  # type: ignore[method-assign]
    client = AdapterClient(MCPServerConfig(name="bridge"), adapter)

    with pytest.raises(MCPError) as err:
        await client.call_tool("native", {})

    assert err.value.code is MCPErrorCode.CONNECTION_FAILED
    assert err.value.server_name == "bridge"


def test_factory_selects_client_per_transport() -> None:
    factory = ClientFactory(in_memory_servers={"demo": _demo_server})

    assert isinstance(factory.create(MCPServerConfig(name="a", command="python")), StdioClient)
    assert isinstance(
        factory.create(MCPServerConfig(name="b", transport=Transport.SSE, url="http://x/sse")),
        SSEClient,
    )
    legacy = factory.create(
        MCPServerConfig(name="c", transport=Transport.HTTP_STREAM, host="localhost", port=8000)
    )
    assert isinstance(legacy, StreamableHTTPClient)
    assert legacy.config.resolve_url() == "http://localhost:8000/mcp"
    assert isinstance(
        factory.create(MCPServerConfig(name="demo", transport=Transport.IN_MEMORY)),
        InMemoryClient,
    )


def test_factory_prefers_registered_adapter() -> None:
    factory = ClientFactory()
    factory.register_adapter("native", lambda _config: FakeAdapter())

    client = factory.create(MCPServerConfig(name="native", command="python"))

    assert isinstance(client, AdapterClient)


def test_factory_rejects_unknown_in_memory_server() -> None:
    factory = ClientFactory()

    with pytest.raises(MCPError) as err:
        factory.create(MCPServerConfig(name="ghost", transport=Transport.IN_MEMORY))

    assert err.value.code is MCPErrorCode.SERVER_NOT_FOUND
