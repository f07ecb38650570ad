"""
Deterministic backend that replays a fixed sequence of chunks.

Used by tests and by the CLI's offline mode (``--backend scripted``).
"""

from typing import Optional, Sequence

from backends.base import BackendError, ChatBackend
from common.logging import get_logger
from dispatch.cancellation import CancellationToken
from dispatch.events import ChatRequest
from dispatch.sink import EventSink

logger = get_logger(__name__)


def default_chunks(count: int) -> list[str]:
    return [f"chunk {i} " for i in range(count)]


class ScriptedBackend(ChatBackend):
    """
    Emit ``chunks`` with ``delay`` seconds between them, the last one final.

    Args:
        chunks: Fragments to emit. Defaults to "chunk 0 " ... "chunk 4 ".
        delay: Pause after each non-final chunk; cancellation wakes it early.
        fail_with: Raise BackendError with this message before emitting anything.
        error_after: Emit an Error event after this many chunks instead of finishing.
    """

    name = "scripted"

    def __init__(
        self,
        chunks: Optional[Sequence[str]] = None,
        delay: float = 0.01,
        fail_with: Optional[str] = None,
        error_after: Optional[int] = None,
    ):
        self.chunks = list(chunks) if chunks is not None else default_chunks(5)
        if not self.chunks:
            raise ValueError("ScriptedBackend needs at least one chunk")
        self.delay = delay
        self.fail_with = fail_with
        self.error_after = error_after
        self.calls = 0

    async def send_request(
        self, request: ChatRequest, events: EventSink, cancel: CancellationToken
    ) -> None:
        self.calls += 1
        if self.fail_with is not None:
            raise BackendError(self.fail_with)

        last = len(self.chunks) - 1
        for i, content in enumerate(self.chunks):
            if cancel.is_cancelled:
                await events.cancelled()
                return

            if self.error_after is not None and i == self.error_after:
                await events.error(f"scripted failure after {i} chunks")
                return

            await events.chunk(content, is_final=i == last)

            if i < last and await cancel.sleep(self.delay):
                logger.debug(
                    event="scripted_cancel_observed",
                    session_id=request.session_id,
                    message_id=request.message_id,
                    chunks_sent=i + 1,
                )
                await events.cancelled()
                return
