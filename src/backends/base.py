"""
Backend interface for conversational engines.

Following PROJECT_RULES.md:
- Single responsibility: Define the backend contract
- Type safety with Pydantic models
- Async design for I/O operations
"""

from abc import ABC, abstractmethod

from dispatch.cancellation import CancellationToken
from dispatch.events import ChatRequest
from dispatch.sink import EventSink


class BackendError(Exception):
    """A backend could not run a request, or failed in a way it cannot express as an event."""


class ChatBackend(ABC):
    """
    Capability implemented by every conversational engine.

    Contract for ``send_request``:
    - Emit zero or more non-final chunks through ``events``, in order.
    - End with exactly one terminal outcome: a final chunk, a Cancelled
      event, an Error event, or a raised exception.
    - Check ``cancel`` at least between chunks. Once it is set, emit no more
      chunks and emit Cancelled instead of completing. Cancellation latency is
      bounded only by how often the backend checks.
    - Raise (preferably BackendError) only when the request could not run at
      all; the pipeline turns the exception into a single Error event.
    """

    name: str = "backend"

    @abstractmethod
    async def send_request(
        self, request: ChatRequest, events: EventSink, cancel: CancellationToken
    ) -> None:
        """Stream the reply to ``request`` into ``events``."""
