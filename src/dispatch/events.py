"""
Request and event types for the dispatch pipeline.

Added 2026-10-19: ChatRequest plus the three-member ChatEvent union.
Following PROJECT_RULES.md: Single responsibility, type-safe models.

ChatEvent is a closed union discriminated by ``kind``. Callers branch on
``event.kind`` / ``event.is_terminal`` rather than on the concrete class.
"""

from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator

from common.models import Message, Role


class MessageSnapshot(BaseModel):
    """Read-only copy of a conversation turn, as carried by a request."""

    model_config = ConfigDict(frozen=True)

    id: str
    role: Role
    content: str
    timestamp: datetime


class ChatRequest(BaseModel):
    """One logical chat turn submitted to the pipeline. Immutable once built."""

    model_config = ConfigDict(frozen=True)

    session_id: str = Field(min_length=1)
    message_id: str = Field(min_length=1, description="Caller-assigned id of the reply")
    messages: Tuple[MessageSnapshot, ...] = Field(
        default=(), description="Prior conversation turns"
    )
    model: str
    temperature: float = Field(default=0.7, ge=0, le=2)
    system_prompt: Optional[str] = None

    @field_validator("messages", mode="before")
    @classmethod
    def _snapshot_messages(cls, messages: Any) -> Any:
        # Later edits to the caller's session must not leak into a submitted request
        return tuple(
            message.model_dump() if isinstance(message, Message) else message
            for message in messages
        )

    @property
    def key(self) -> Tuple[str, str]:
        return (self.session_id, self.message_id)

    def to_provider_messages(self) -> List[Dict[str, str]]:
        """Role/content dicts in conversation order, without the system prompt."""
        return [{"role": m.role.value, "content": m.content} for m in self.messages]


class _EventBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    session_id: str
    message_id: str

    @property
    def key(self) -> Tuple[str, str]:
        return (self.session_id, self.message_id)


class ChatResponseChunk(_EventBase):
    """Incremental content; ``content`` is appended, never a replacement."""

    kind: Literal["chunk"] = "chunk"
    content: str
    is_final: bool = False

    @property
    def is_terminal(self) -> bool:
        return self.is_final


class ChatError(_EventBase):
    """Terminal failure of one dispatch."""

    kind: Literal["error"] = "error"
    error: str = Field(min_length=1)

    @property
    def is_terminal(self) -> bool:
        return True


class ChatCancelled(_EventBase):
    """Terminal outcome of a dispatch stopped at the caller's request."""

    kind: Literal["cancelled"] = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return True


ChatEvent = Annotated[
    Union[ChatResponseChunk, ChatError, ChatCancelled], Field(discriminator="kind")
]

chat_event_adapter: TypeAdapter[ChatEvent] = TypeAdapter(ChatEvent)
