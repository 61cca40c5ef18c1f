"""aether_agents model client plugin."""

from .client import AsyncModelClient, ModelClientError
from .conversation import build_conversation, replace_system_prompt
from .models import (
    CompletionConfig,
    CompletionRequest,
    CompletionResponse,
    Conversation,
    Message,
    Role,
    Usage,
)
from .settings import ModelClientSettings

__all__ = [
    "AsyncModelClient",
    "build_conversation",
    "CompletionConfig",
    "CompletionRequest",
    "CompletionResponse",
    "Conversation",
    "Message",
    "ModelClientError",
    "ModelClientSettings",
    "replace_system_prompt",
    "Role",
    "Usage",
]
