"""
Anthropic backend for Claude streaming messages.

Following PROJECT_RULES.md:
- Async I/O for all operations
- Single responsibility: Anthropic API integration
- Structured logging with elapsed_ms
- Never log secrets, API keys or message content
"""

from typing import Any, Dict, List, Optional

import anthropic
from anthropic import AsyncAnthropic

from backends.base import BackendError, ChatBackend
from common.logging import TimedLogger, get_logger
from common.models import Role
from dispatch.cancellation import CancellationToken
from dispatch.events import ChatRequest
from dispatch.sink import EventSink

logger = get_logger(__name__)


class AnthropicBackend(ChatBackend):
    """Streams replies from the Anthropic messages API."""

    name = "anthropic"

    def __init__(self, api_key: str, max_tokens: int = 4096):
        if not api_key:
            raise ValueError("API key required for anthropic backend")

        self.client = AsyncAnthropic(api_key=api_key)
        self.max_tokens = max_tokens

        logger.info(event="anthropic_backend_initialized", max_tokens=max_tokens)

    def _build_params(self, request: ChatRequest) -> Dict[str, Any]:
        # System turns travel in the separate ``system`` parameter
        system_message: Optional[str] = request.system_prompt
        messages: List[Dict[str, str]] = []
        for message in request.messages:
            if message.role == Role.SYSTEM:
                system_message = message.content
            else:
                messages.append({"role": message.role.value, "content": message.content})

        params: Dict[str, Any] = {
            "model": request.model,
            "messages": messages,
            "temperature": min(request.temperature, 1.0),
            "max_tokens": self.max_tokens,
        }
        if system_message:
            params["system"] = system_message
        return params

    async def send_request(
        self, request: ChatRequest, events: EventSink, cancel: CancellationToken
    ) -> None:
        """Stream a message, checking for cancellation between stream events."""
        params = self._build_params(request)

        with TimedLogger(
            logger,
            "anthropic_chat_completion",
            model=request.model,
            message_count=len(params["messages"]),
        ):
            try:
                async with self.client.messages.stream(**params) as stream:
                    async for event in stream:
                        if cancel.is_cancelled:
                            logger.info(
                                event="anthropic_stream_cancelled",
                                session_id=request.session_id,
                                message_id=request.message_id,
                            )
                            await events.cancelled()
                            return

                        if event.type == "content_block_delta":
                            text_content = getattr(event.delta, "text", None)
                            if text_content:
                                await events.chunk(text_content)

                        elif event.type == "message_stop":
                            await events.chunk("", is_final=True)
                            return

            except anthropic.APIConnectionError as e:
                raise BackendError(f"anthropic connection failed: {e}") from e
            except anthropic.RateLimitError as e:
                logger.error(event="anthropic_rate_limit", error=str(e))
                await events.error("Rate limit exceeded")
                return
            except anthropic.APIError as e:
                logger.error(event="anthropic_api_error", error=str(e))
                await events.error(str(e) or "API error")
                return

        if cancel.is_cancelled:
            await events.cancelled()
        else:
            await events.chunk("", is_final=True)
