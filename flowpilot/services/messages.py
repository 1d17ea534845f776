from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, Field


class ConversationMessage(BaseModel):
    conversation_ref: str
    content: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


@runtime_checkable
class MessageSink(Protocol):
    async def append_message(self, *, conversation_ref: str, content: str, metadata: dict[str, Any]) -> None:
        ...


class NullMessageSink:
    async def append_message(self, *, conversation_ref: str, content: str, metadata: dict[str, Any]) -> None:  # noqa: ARG002
        return None


class InMemoryMessageSink:
    def __init__(self) -> None:
        self.messages: list[ConversationMessage] = []

    async def append_message(self, *, conversation_ref: str, content: str, metadata: dict[str, Any]) -> None:
        self.messages.append(
            ConversationMessage(conversation_ref=conversation_ref, content=content, metadata=dict(metadata))
        )

    def for_conversation(self, conversation_ref: str) -> list[ConversationMessage]:
        return [message for message in self.messages if message.conversation_ref == conversation_ref]


__all__ = ["ConversationMessage", "InMemoryMessageSink", "MessageSink", "NullMessageSink"]
