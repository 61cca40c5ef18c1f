"""Settings helpers for the MCP client plugin."""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

from hopeit.dataobjects import dataclass, dataobject, field

from .client import ClientFactory
from .confirmation import ConfirmationGate
from .catalog import ServerConnection, ToolCatalog
from .errors import DEFAULT_CONNECT_KEYWORDS, DEFAULT_TIMEOUT_KEYWORDS, ErrorClassifier
from .models import MCPServerConfig

SETTINGS_KEY = "mcp_client"
_PLACEHOLDER_RE = re.compile(r"^\$\{(?P<name>[A-Z0-9_]+)\}$")


@dataobject
@dataclass
class MCPClientSettings:
    """Servers to connect to and how their tools are exposed."""

    servers: list[MCPServerConfig] = field(default_factory=list)
    prefix_tool_ids: bool = True
    timeout_keywords: list[str] = field(default_factory=lambda: list(DEFAULT_TIMEOUT_KEYWORDS))
    connect_keywords: list[str] = field(default_factory=lambda: list(DEFAULT_CONNECT_KEYWORDS))

    def classifier(self) -> ErrorClassifier:
        return ErrorClassifier(self.timeout_keywords, self.connect_keywords)


def load_settings(context_settings: Mapping[str, Any]) -> MCPClientSettings:
    """Load configuration from context settings mapping."""
    try:
        raw_settings = context_settings[SETTINGS_KEY]
    except KeyError as exc:
        raise KeyError(f"Missing '{SETTINGS_KEY}' entry in context settings.") from exc

    if isinstance(raw_settings, MCPClientSettings):
        return raw_settings
    if not isinstance(raw_settings, Mapping):
        raise TypeError(
            f"{SETTINGS_KEY} settings must be mapping-like, received {type(raw_settings).__name__}",
        )

    kwargs = dict(raw_settings)
    kwargs["servers"] = [
        server if isinstance(server, MCPServerConfig) else MCPServerConfig(**server)
        for server in kwargs.get("servers", [])
    ]
    return MCPClientSettings(**kwargs)


def build_environment(config: MCPServerConfig, context_env: Mapping[str, Any]) -> dict[str, str]:
    """Resolve environment variables combining server config and context env."""
    resolved: dict[str, str] = {}
    for key, value in config.env.items():
        if isinstance(value, str):
            match = _PLACEHOLDER_RE.match(value)
            if match:
                env_value = context_env.get(match.group("name"))
                if isinstance(env_value, str):
                    resolved[key] = env_value
                continue
        if isinstance(value, (str, int, float)):
            resolved[key] = str(value)
    return resolved


def build_catalog(
    settings: MCPClientSettings,
    context_env: Mapping[str, Any],
    *,
    factory: ClientFactory | None = None,
    confirmation: ConfirmationGate | None = None,
) -> ToolCatalog:
    """Create a catalog with one disconnected ServerConnection per enabled server."""
    classifier = settings.classifier()
    factory = factory or ClientFactory(classifier=classifier)
    connections = [
        ServerConnection(server, factory.create(server, build_environment(server, context_env)))
        for server in settings.servers
        if server.enabled
    ]
    return ToolCatalog(
        connections,
        prefix_tool_ids=settings.prefix_tool_ids,
        confirmation=confirmation,
        classifier=classifier,
    )
