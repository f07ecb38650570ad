"""
OpenAI backend for streaming chat completions.

Following PROJECT_RULES.md:
- Async I/O for all operations
- Single responsibility: OpenAI API integration
- Structured logging with elapsed_ms
- Never log secrets, API keys or message content

Also serves OpenAI-compatible providers (OpenRouter) through ``base_url``.
"""

from typing import Any, Dict, List, Optional

import openai
from openai import AsyncOpenAI

from backends.base import BackendError, ChatBackend
from common.logging import TimedLogger, get_logger
from dispatch.cancellation import CancellationToken
from dispatch.events import ChatRequest
from dispatch.sink import EventSink

logger = get_logger(__name__)


class OpenAIBackend(ChatBackend):
    """Streams replies from the OpenAI chat completions API."""

    def __init__(
        self,
        api_key: str,
        base_url: Optional[str] = None,
        max_tokens: Optional[int] = None,
        name: str = "openai",
    ):
        """
        Initialize the OpenAI client.

        Args:
            api_key: Provider API key (from the environment, never config files)
            base_url: Override for OpenAI-compatible providers
            max_tokens: Optional completion length limit
            name: Provider name used in logs
        """
        if not api_key:
            raise ValueError(f"API key required for {name} backend")

        self.client = AsyncOpenAI(api_key=api_key, base_url=base_url)
        self.max_tokens = max_tokens
        self.name = name

        logger.info(
            event="openai_backend_initialized",
            provider=name,
            custom_base_url=base_url is not None,
        )

    def _build_params(self, request: ChatRequest) -> Dict[str, Any]:
        messages: List[Dict[str, str]] = []
        if request.system_prompt:
            messages.append({"role": "system", "content": request.system_prompt})
        messages.extend(request.to_provider_messages())

        params: Dict[str, Any] = {
            "model": request.model,
            "messages": messages,
            "temperature": request.temperature,
            "stream": True,
        }
        if self.max_tokens:
            params["max_tokens"] = self.max_tokens
        return params

    async def send_request(
        self, request: ChatRequest, events: EventSink, cancel: CancellationToken
    ) -> None:
        """Stream a chat completion, checking for cancellation between chunks."""
        params = self._build_params(request)

        with TimedLogger(
            logger,
            "openai_chat_completion",
            provider=self.name,
            model=request.model,
            message_count=len(params["messages"]),
        ):
            try:
                stream = await self.client.chat.completions.create(**params)
            except openai.APIError as e:
                raise BackendError(f"{self.name} request failed: {e}") from e

            chunk_count = 0
            try:
                async for chunk in stream:
                    if cancel.is_cancelled:
                        logger.info(
                            event="openai_stream_cancelled",
                            provider=self.name,
                            session_id=request.session_id,
                            message_id=request.message_id,
                            chunks_forwarded=chunk_count,
                        )
                        await events.cancelled()
                        return

                    if not chunk.choices:
                        continue

                    choice = chunk.choices[0]
                    content = choice.delta.content if choice.delta else None

                    if choice.finish_reason:
                        await events.chunk(content or "", is_final=True)
                        logger.info(
                            event="openai_stream_complete",
                            provider=self.name,
                            finish_reason=choice.finish_reason,
                            total_chunks=chunk_count + 1,
                        )
                        return

                    if content:
                        chunk_count += 1
                        await events.chunk(content)

            except openai.APITimeoutError as e:
                logger.error(event="openai_timeout", provider=self.name, error=str(e))
                await events.error("API timeout")
                return
            except openai.RateLimitError as e:
                logger.error(event="openai_rate_limit", provider=self.name, error=str(e))
                await events.error("Rate limit exceeded")
                return
            except openai.APIError as e:
                logger.error(event="openai_api_error", provider=self.name, error=str(e))
                await events.error(str(e) or "API error")
                return
            finally:
                await stream.close()

            if cancel.is_cancelled:
                await events.cancelled()
                return

            # Stream ended without a finish_reason
            await events.chunk("", is_final=True)
