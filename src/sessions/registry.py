"""
In-memory session registry.

Plain CRUD over a dict plus the two seams the pipeline's caller needs:
turning a user message into a ChatRequest, and folding drained events back
into the streaming assistant message. Not safe for use from several threads.
"""

from typing import Dict, List, Optional

from common.logging import get_logger
from common.models import AppSettings, ChatSession, Message, Role
from dispatch.events import ChatEvent, ChatRequest

logger = get_logger(__name__)


class SessionManager:
    """Owns chat sessions and tracks the active one."""

    def __init__(self, sessions: Optional[List[ChatSession]] = None):
        self.sessions: Dict[str, ChatSession] = {s.id: s for s in sessions or []}
        self.active_session_id: Optional[str] = None

    def create_session(self, title: str) -> str:
        """Create a session, make it active and return its id."""
        session = ChatSession(title=title)
        self.sessions[session.id] = session
        self.active_session_id = session.id
        return session.id

    def get_session(self, session_id: str) -> Optional[ChatSession]:
        return self.sessions.get(session_id)

    def set_active_session(self, session_id: str) -> None:
        """Unknown ids are ignored."""
        if session_id in self.sessions:
            self.active_session_id = session_id

    def get_active_session(self) -> Optional[ChatSession]:
        if self.active_session_id is None:
            return None
        return self.sessions.get(self.active_session_id)

    def list_sessions(self) -> List[ChatSession]:
        """Most recently updated first."""
        return sorted(self.sessions.values(), key=lambda s: s.updated_at, reverse=True)

    def delete_session(self, session_id: str) -> bool:
        if self.active_session_id == session_id:
            self.active_session_id = None
        return self.sessions.pop(session_id, None) is not None

    def begin_turn(self, session_id: str, text: str, settings: AppSettings) -> ChatRequest:
        """
        Record a user message and an empty streaming reply, and build the request.

        The request carries the history up to and including the new user
        message; its message id is the id of the streaming reply.

        Raises:
            KeyError: If the session does not exist
        """
        session = self.sessions[session_id]
        session.add_message(Role.USER, text)
        history = list(session.messages)
        reply = session.append(Message.new_streaming(Role.ASSISTANT))

        return ChatRequest(
            session_id=session.id,
            message_id=reply.id,
            messages=history,
            model=settings.model,
            temperature=settings.temperature,
            system_prompt=settings.system_prompt,
        )

    def apply_event(self, event: ChatEvent) -> Optional[Message]:
        """
        Fold a drained event into the message it belongs to.

        Returns:
            The updated message, or None if its session or message is gone
        """
        session = self.sessions.get(event.session_id)
        message = session.find_message(event.message_id) if session else None
        if session is None or message is None:
            logger.debug(
                event="event_for_unknown_message",
                session_id=event.session_id,
                message_id=event.message_id,
                kind=event.kind,
            )
            return None

        if event.kind == "chunk":
            message.append_content(event.content)
        elif event.kind == "error" and not message.content:
            message.append_content(f"[error] {event.error}")

        if event.is_terminal:
            message.complete_streaming()
            session.touch()
        return message
