"""
Shared conversation models for the chat dispatch project.

Following PROJECT_RULES.md:
- Single responsibility per file
- Pydantic models for data validation
- Type hints throughout
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

PREVIEW_LENGTH = 100


def _new_id() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Role(str, Enum):
    """Author of a conversation turn."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class Message(BaseModel):
    """One conversation turn."""

    id: str = Field(default_factory=_new_id)
    role: Role
    content: str = ""
    timestamp: datetime = Field(default_factory=_now)
    is_streaming: bool = Field(default=False, description="Content is still being streamed")

    @classmethod
    def new_streaming(cls, role: Role) -> "Message":
        """Create an empty message that fills in as response chunks arrive."""
        return cls(role=role, is_streaming=True)

    def append_content(self, fragment: str) -> None:
        self.content += fragment

    def complete_streaming(self) -> None:
        self.is_streaming = False


class ChatSession(BaseModel):
    """A titled conversation with its message history."""

    id: str = Field(default_factory=_new_id)
    title: str
    messages: List[Message] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)
    preview: Optional[str] = Field(default=None, description="Sidebar preview text")
    is_archived: bool = False

    def add_message(self, role: Role, content: str) -> Message:
        return self.append(Message(role=role, content=content))

    def append(self, message: Message) -> Message:
        self.messages.append(message)
        self.touch()
        self._update_preview()
        return message

    def find_message(self, message_id: str) -> Optional[Message]:
        for message in self.messages:
            if message.id == message_id:
                return message
        return None

    def touch(self) -> None:
        self.updated_at = _now()

    def _update_preview(self) -> None:
        """Use the first user message as the preview, once."""
        if self.preview is not None:
            return
        first_user = next((m for m in self.messages if m.role == Role.USER), None)
        if first_user is None:
            return
        preview = first_user.content[:PREVIEW_LENGTH]
        self.preview = f"{preview}..." if len(first_user.content) > PREVIEW_LENGTH else preview

    def set_title(self, title: str) -> None:
        self.title = title
        self.touch()

    def archive(self) -> None:
        self.is_archived = True
        self.touch()

    def unarchive(self) -> None:
        self.is_archived = False
        self.touch()


class Theme(str, Enum):
    """Color theme preference."""

    LIGHT = "light"
    DARK = "dark"
    AUTO = "auto"


class AppSettings(BaseModel):
    """
    User-editable application settings.

    API keys are not stored here; they come from the environment only.
    """

    theme: Theme = Theme.DARK
    model: str = "gpt-4"
    temperature: float = Field(default=0.7, ge=0, le=2)
    system_prompt: Optional[str] = None
    sidebar_collapsed: bool = False
    window_width: Optional[int] = None
    window_height: Optional[int] = None
