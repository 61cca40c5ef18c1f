"""Typed data objects used by the model client plugin."""

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from hopeit.dataobjects import dataclass, dataobject, field


class Role(str, Enum):
    """Supported message roles."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


@dataobject
@dataclass
class Message:
    """Single message within a conversation."""

    role: Role
    content: str
    metadata: dict[str, Any] = field(default_factory=dict)


@dataobject
@dataclass
class Conversation:
    """Ordered list of messages forming the conversation context."""

    conversation_id: str
    messages: list[Message]
    agent_id: str | None = None
    session_id: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def with_message(self, message: Message) -> "Conversation":
        """Return a new conversation with an additional message."""
        return Conversation(
            conversation_id=self.conversation_id,
            messages=[*self.messages, message],
            agent_id=self.agent_id,
            session_id=self.session_id,
            created_at=self.created_at,
        )

    @property
    def system_prompt(self) -> str | None:
        """Content of the leading system message, if any."""
        if self.messages and self.messages[0].role is Role.SYSTEM:
            return self.messages[0].content
        return None


@dataobject
@dataclass
class Usage:
    """Token usage details reported by the provider."""

    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


@dataobject
@dataclass
class CompletionConfig:
    """Configuration overrides for a completion request."""

    model: str | None = None
    temperature: float | None = None
    max_output_tokens: int | None = None
    response_format: dict[str, Any] | None = None
    stop: list[str] | None = None


@dataobject
@dataclass
class CompletionRequest:
    """Input payload for the generate event."""

    conversation: Conversation
    config: CompletionConfig | None = None


@dataobject
@dataclass
class CompletionResponse:
    """Normalized completion response."""

    response_id: str
    model: str
    created_at: datetime
    message: Message
    conversation: Conversation
    usage: Usage | None = None
    finish_reason: str | None = None


def message_to_openai_dict(message: Message) -> dict[str, Any]:
    """Convert a Message into the OpenAI-compatible dict structure."""
    return {
        "role": message.role.value,
        "content": message.content,
    }


def message_from_openai_dict(data: dict[str, Any]) -> Message:
    """Convert an OpenAI-compatible message dict into a Message object."""
    role = Role(data.get("role", Role.ASSISTANT.value))
    content = data.get("content") or ""
    metadata_raw = data.get("metadata")
    metadata = metadata_raw if isinstance(metadata_raw, dict) else {}
    return Message(role=role, content=content, metadata=metadata)
