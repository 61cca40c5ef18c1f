"""Dataclasses that configure agent behaviour."""

from enum import Enum

from hopeit.dataobjects import dataclass, dataobject

SETTINGS_KEY = "agent"


class PromptStyle(str, Enum):
    """System prompt profile."""

    FULL = "full"
    COMPACT = "compact"


@dataobject
@dataclass
class AgentSettings:
    """Configurable defaults for agent runs."""

    agent_name: str = "aether-agent"
    system_prompt: str = "You are a helpful assistant."
    prompt_style: PromptStyle = PromptStyle.FULL
    max_iterations: int = 25
    max_consecutive_errors: int = 3
    tool_timeout_seconds: float | None = None
    allowed_tools: list[str] | None = None
    agentic: bool | None = None
    cwd: str = "."
    os_type: str = "linux"
