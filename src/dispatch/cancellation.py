"""
Cooperative cancellation for in-flight dispatches.

The caller holds a CancellationHandle (send side); the backend receives the
matching CancellationToken (receive side). Cancellation is a signal only:
nothing is preempted, and a backend that never looks at its token is never
stopped. Backends must check the token at least between emitted chunks.
"""

import asyncio
from typing import Optional

from common.logging import get_logger

logger = get_logger(__name__)


class CancellationToken:
    """Receive-only view of one dispatch's cancellation signal."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop or asyncio.get_running_loop()
        self._event = asyncio.Event()
        self._closed = False

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def closed(self) -> bool:
        """True once the dispatch has reached its terminal event."""
        return self._closed

    async def wait(self) -> None:
        """Suspend until cancellation is requested."""
        await self._event.wait()

    async def sleep(self, seconds: float) -> bool:
        """
        Sleep for ``seconds``, waking early if cancellation is requested.

        Returns:
            True if cancellation was requested before or during the sleep
        """
        if self.is_cancelled:
            return True
        if seconds <= 0:
            await asyncio.sleep(0)
            return self.is_cancelled
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True

    def close(self) -> None:
        self._closed = True

    def _request(self) -> bool:
        """Set the signal on the owning loop. False if that loop is already closed."""
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is self._loop:
            self._event.set()
            return True

        # Called from another thread, e.g. a UI thread
        try:
            self._loop.call_soon_threadsafe(self._event.set)
        except RuntimeError:
            # Loop already closed
            self._closed = True
            return False
        return True


class CancellationHandle:
    """Caller-held, one-shot capability to stop a single dispatch."""

    def __init__(self, token: CancellationToken, session_id: str, message_id: str):
        self._token = token
        self.session_id = session_id
        self.message_id = message_id
        self._sent = False

    @property
    def done(self) -> bool:
        """True once the dispatch has ended; cancelling is then a no-op."""
        return self._token.closed

    def cancel(self) -> bool:
        """
        Request cancellation of the dispatch.

        Never raises. Cancelling a finished or already-cancelled dispatch is a
        harmless no-op.

        Returns:
            True if the notice was sent to a running dispatch, False otherwise
        """
        if self._token.closed or self._sent:
            logger.debug(
                event="cancel_ignored",
                session_id=self.session_id,
                message_id=self.message_id,
                reason="dispatch_finished" if self._token.closed else "already_cancelled",
            )
            return False

        self._sent = True
        if not self._token._request():
            logger.debug(
                event="cancel_ignored",
                session_id=self.session_id,
                message_id=self.message_id,
                reason="loop_closed",
            )
            return False

        logger.info(
            event="cancel_requested",
            session_id=self.session_id,
            message_id=self.message_id,
        )
        return True
