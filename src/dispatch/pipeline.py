"""
Dispatch pipeline for running chat requests against a backend.

Added 2026-10-19: Core pipeline with per-request tasks and a shared output.
Following PROJECT_RULES.md:
- Async I/O for all operations
- Timeout handling with explicit errors
- Structured logging with elapsed_ms
- Single responsibility per class

Every submitted request runs on its own task. All tasks write into one
bounded queue that the caller drains; a full queue suspends producers. Each
dispatch ends with exactly one terminal event: a final chunk, an Error or a
Cancelled. Backend exceptions never escape a dispatch task.
"""

import asyncio
from typing import Any, AsyncIterator, Optional, Set

from backends.base import ChatBackend
from common.config import PipelineConfig
from common.logging import TimedLogger, get_logger
from dispatch.cancellation import CancellationHandle, CancellationToken
from dispatch.events import ChatEvent, ChatRequest
from dispatch.sink import EventSink

logger = get_logger(__name__)

# Marks the end of the output after shutdown
_END = object()


class DispatchPipeline:
    """
    Accepts chat requests and fans their events into one shared output.

    Responsibilities:
    - Start one independent task per request
    - Relay backend events, preserving per-request order
    - Turn backend failures into a single Error event
    - Hand out a cancellation handle per request
    """

    def __init__(self, backend: ChatBackend, config: Optional[PipelineConfig] = None):
        self.backend = backend
        self.config = config or PipelineConfig()
        self._output: "asyncio.Queue[Any]" = asyncio.Queue(
            maxsize=self.config.event_queue_capacity
        )
        self._tasks: Set[asyncio.Task] = set()
        self._slots: Optional[asyncio.Semaphore] = None
        if self.config.max_concurrent_dispatches is not None:
            self._slots = asyncio.Semaphore(self.config.max_concurrent_dispatches)
        self._closed = False
        self._exhausted = False
        self._end_task: Optional[asyncio.Task] = None

        logger.info(
            event="pipeline_initialized",
            backend=backend.name,
            event_queue_capacity=self.config.event_queue_capacity,
            max_concurrent_dispatches=self.config.max_concurrent_dispatches,
            dispatch_timeout=self.config.dispatch_timeout,
        )

    @property
    def in_flight(self) -> int:
        """Number of dispatches that have not finished yet."""
        return len(self._tasks)

    @property
    def closed(self) -> bool:
        return self._closed

    def submit(self, request: ChatRequest) -> CancellationHandle:
        """
        Start a dispatch for ``request`` and return its cancellation handle.

        Returns immediately; no event is guaranteed to exist yet. Must be
        called while the event loop is running. The caller guarantees that
        the (session_id, message_id) pair is unique among in-flight requests.
        """
        loop = asyncio.get_running_loop()
        token = CancellationToken(loop)
        handle = CancellationHandle(token, request.session_id, request.message_id)

        if self._closed:
            logger.warning(
                event="submit_after_shutdown",
                session_id=request.session_id,
                message_id=request.message_id,
            )
            token.close()
            return handle

        sink = EventSink(request, self._forward)
        task = loop.create_task(
            self._run_dispatch(request, sink, token),
            name=f"dispatch:{request.session_id}:{request.message_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        # Also covers tasks cancelled before they started running
        task.add_done_callback(lambda _task: token.close())

        logger.info(
            event="dispatch_submitted",
            session_id=request.session_id,
            message_id=request.message_id,
            model=request.model,
            message_count=len(request.messages),
            in_flight=len(self._tasks),
        )
        return handle

    async def events(self) -> AsyncIterator[ChatEvent]:
        """
        Yield every event from every dispatch, in arrival order.

        There is one output per pipeline and it should have a single consumer.
        Iteration ends after shutdown, once everything queued before it has
        been yielded.
        """
        while not self._exhausted:
            event = await self._output.get()
            if event is _END:
                self._exhausted = True
                return
            yield event

    async def shutdown(self) -> None:
        """Close the output and abort dispatches that are still running."""
        if self._closed:
            return
        self._closed = True

        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        try:
            self._output.put_nowait(_END)
        except asyncio.QueueFull:
            # Lands once the consumer makes room
            self._end_task = asyncio.get_running_loop().create_task(self._output.put(_END))

        logger.info(event="pipeline_shutdown", aborted_dispatches=len(tasks))

    async def __aenter__(self) -> "DispatchPipeline":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.shutdown()

    async def _forward(self, event: ChatEvent) -> None:
        if self._closed:
            logger.warning(
                event="event_dropped",
                reason="output_closed",
                session_id=event.session_id,
                message_id=event.message_id,
                kind=event.kind,
            )
            return
        await self._output.put(event)

    async def _run_dispatch(
        self, request: ChatRequest, sink: EventSink, token: CancellationToken
    ) -> None:
        try:
            with TimedLogger(
                logger,
                "dispatch_finished",
                session_id=request.session_id,
                message_id=request.message_id,
            ):
                if self._slots is None:
                    await self._invoke_backend(request, sink, token)
                else:
                    async with self._slots:
                        await self._invoke_backend(request, sink, token)
        finally:
            token.close()

    async def _invoke_backend(
        self, request: ChatRequest, sink: EventSink, token: CancellationToken
    ) -> None:
        if token.is_cancelled:
            # Cancelled while waiting for a concurrency slot
            await sink.cancelled()
            return

        timeout = self.config.dispatch_timeout
        try:
            call = self.backend.send_request(request, sink, token)
            if timeout is None:
                await call
            else:
                await asyncio.wait_for(call, timeout=timeout)
        except asyncio.CancelledError:
            raise
        except asyncio.TimeoutError as e:
            if timeout is None:
                await self._fail(request, sink, e)
            else:
                logger.warning(
                    event="dispatch_timeout",
                    session_id=request.session_id,
                    message_id=request.message_id,
                    timeout=timeout,
                )
                await self._finish_with_error(sink, f"Dispatch timed out after {timeout}s")
            return
        except Exception as e:
            await self._fail(request, sink, e)
            return

        if not sink.finished:
            logger.warning(
                event="backend_missing_terminal",
                session_id=request.session_id,
                message_id=request.message_id,
                backend=self.backend.name,
                events_emitted=sink.emitted,
                cancelled=token.is_cancelled,
            )
            if token.is_cancelled:
                await sink.cancelled()
            else:
                await sink.error("Backend finished without a terminal event")

    async def _fail(self, request: ChatRequest, sink: EventSink, error: BaseException) -> None:
        logger.error(
            event="backend_failed",
            session_id=request.session_id,
            message_id=request.message_id,
            backend=self.backend.name,
            error=str(error),
            error_type=type(error).__name__,
        )
        await self._finish_with_error(sink, str(error) or type(error).__name__)

    async def _finish_with_error(self, sink: EventSink, description: str) -> None:
        if sink.finished:
            logger.warning(
                event="failure_after_terminal",
                session_id=sink.session_id,
                message_id=sink.message_id,
                error=description,
            )
            return
        await sink.error(description)
