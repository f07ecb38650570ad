"""
Per-dispatch event sink handed to backends.

The sink stamps the dispatch's ids on convenience emits, rejects events that
belong to another dispatch, and lets exactly one terminal event through.
"""

from typing import Awaitable, Callable

from common.logging import get_logger
from dispatch.events import ChatCancelled, ChatError, ChatEvent, ChatRequest, ChatResponseChunk

logger = get_logger(__name__)

Forwarder = Callable[[ChatEvent], Awaitable[None]]


class EventSink:
    """Write end of the shared output, bound to one request."""

    def __init__(self, request: ChatRequest, forward: Forwarder):
        self.session_id = request.session_id
        self.message_id = request.message_id
        self._forward = forward
        self.emitted = 0
        self.finished = False

    async def emit(self, event: ChatEvent) -> None:
        """
        Forward an event to the shared output, suspending while it is full.

        Raises:
            ValueError: If the event carries another dispatch's ids
        """
        if event.key != (self.session_id, self.message_id):
            raise ValueError(
                f"Event for {event.session_id}/{event.message_id} emitted by dispatch "
                f"{self.session_id}/{self.message_id}"
            )

        if self.finished:
            logger.warning(
                event="event_after_terminal_dropped",
                session_id=self.session_id,
                message_id=self.message_id,
                kind=event.kind,
            )
            return

        if event.is_terminal:
            self.finished = True
        self.emitted += 1
        await self._forward(event)

    async def chunk(self, content: str, is_final: bool = False) -> None:
        await self.emit(
            ChatResponseChunk(
                session_id=self.session_id,
                message_id=self.message_id,
                content=content,
                is_final=is_final,
            )
        )

    async def error(self, description: str) -> None:
        await self.emit(
            ChatError(
                session_id=self.session_id,
                message_id=self.message_id,
                error=description or "unknown backend failure",
            )
        )

    async def cancelled(self) -> None:
        await self.emit(ChatCancelled(session_id=self.session_id, message_id=self.message_id))
