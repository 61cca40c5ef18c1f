"""Composition root wiring catalog, event bus and agent loop."""

from collections.abc import Mapping
from typing import Any

from hopeit.app.context import EventContext
from hopeit.server.logger import engine_logger, extra_logger

from aether_agents.agent_toolkit.app.session import CancellationToken
from aether_agents.agent_toolkit.app.steps.agent_loop import (
    AgentLoop,
    AgentLoopPayload,
    AgentLoopResult,
    ModelInvoker,
)
from aether_agents.agent_toolkit.events import EventBus
from aether_agents.agent_toolkit.settings import AgentSettings
from aether_agents.mcp_client.catalog import ServerConnection, ToolCatalog
from aether_agents.mcp_client.client import ClientFactory
from aether_agents.mcp_client.confirmation import ConfirmationGate
from aether_agents.mcp_client.errors import MCPError
from aether_agents.mcp_client.settings import MCPClientSettings, build_catalog

logger = engine_logger()
extra = extra_logger()

__all__ = ["AgentRuntime"]


class AgentRuntime:
    """
    Owns the objects shared by every run of an application.

    ``start`` takes a long lived reference on each server. Every ``run``
    takes its own reference on the servers it uses, so stopping the runtime
    or removing a server never closes a connection under a run in flight.
    """

    def __init__(
        self,
        catalog: ToolCatalog,
        *,
        agent_settings: AgentSettings | None = None,
        model: ModelInvoker | None = None,
        events: EventBus | None = None,
    ) -> None:
        self.catalog = catalog
        self.agent_settings = agent_settings or AgentSettings()
        self.events = events or EventBus()
        self.loop = AgentLoop(catalog, model=model, events=self.events)
        self._held: list[ServerConnection] = []
        self._started = False

    @classmethod
    def from_settings(
        cls,
        mcp_settings: MCPClientSettings,
        agent_settings: AgentSettings,
        context_env: Mapping[str, Any],
        *,
        factory: ClientFactory | None = None,
        confirmation: ConfirmationGate | None = None,
        model: ModelInvoker | None = None,
        events: EventBus | None = None,
    ) -> "AgentRuntime":
        catalog = build_catalog(
            mcp_settings, context_env, factory=factory, confirmation=confirmation
        )
        return cls(catalog, agent_settings=agent_settings, model=model, events=events)

    @property
    def started(self) -> bool:
        return self._started

    async def start(self) -> None:
        if self._started:
            return
        self._held = await self._acquire_all()
        self._started = True
        logger.info(
            __name__,
            "agent_runtime_started",
            extra=extra(
                servers=len(self.catalog.connections()),
                connected=[connection.name for connection in self._held],
            ),
        )

    async def stop(self) -> None:
        if not self._started:
            return
        self._started = False
        held, self._held = self._held, []
        for connection in held:
            await connection.release()
        logger.info(__name__, "agent_runtime_stopped")

    async def __aenter__(self) -> "AgentRuntime":
        await self.start()
        return self

    async def __aexit__(self, *_exc: Any) -> None:
        await self.stop()

    async def run(
        self,
        payload: AgentLoopPayload,
        context: EventContext,
        *,
        cancel: CancellationToken | None = None,
    ) -> AgentLoopResult:
        """Run one agent task holding a reference on every reachable server."""
        acquired = await self._acquire_all()
        try:
            return await self.loop.run(payload, context, cancel=cancel)
        finally:
            for connection in acquired:
                await connection.release()

    async def _acquire_all(self) -> list[ServerConnection]:
        acquired: list[ServerConnection] = []
        for connection in self.catalog.connections():
            if not connection.config.enabled:
                continue
            try:
                await connection.acquire()
            except MCPError as exc:
                logger.warning(
                    __name__,
                    "agent_server_unavailable",
                    extra=extra(server=connection.name, code=exc.code.value, error=exc.message),
                )
                continue
            acquired.append(connection)
        return acquired
