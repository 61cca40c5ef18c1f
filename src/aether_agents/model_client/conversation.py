"""Helpers to build chat conversations for model completion requests."""

from __future__ import annotations

import uuid

from aether_agents.model_client.models import Conversation, Message, Role

__all__ = ["build_conversation", "replace_system_prompt"]


def build_conversation(
    existing: Conversation | None,
    *,
    user_message: str,
    system_prompt: str | None = None,
) -> Conversation:
    """Return a conversation ensuring the optional system prompt and user message are present."""
    base_messages = list(existing.messages) if existing else []
    if not base_messages and system_prompt:
        base_messages.append(Message(role=Role.SYSTEM, content=system_prompt))

    base_messages.append(Message(role=Role.USER, content=user_message))
    return Conversation(
        conversation_id=existing.conversation_id if existing else str(uuid.uuid4()),
        messages=base_messages,
        agent_id=existing.agent_id if existing else None,
        session_id=existing.session_id if existing else None,
    )


def replace_system_prompt(conversation: Conversation, system_prompt: str) -> Conversation:
    """Return a copy whose leading system message holds ``system_prompt``."""
    messages = list(conversation.messages)
    system_message = Message(role=Role.SYSTEM, content=system_prompt)
    if messages and messages[0].role is Role.SYSTEM:
        messages[0] = system_message
    else:
        messages.insert(0, system_message)
    return Conversation(
        conversation_id=conversation.conversation_id,
        messages=messages,
        agent_id=conversation.agent_id,
        session_id=conversation.session_id,
        created_at=conversation.created_at,
    )
