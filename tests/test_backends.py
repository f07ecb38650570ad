"""
Tests for backend construction and the live backends' stream handling.

Provider clients are replaced with unittest.mock fakes; no network access.
"""

import asyncio
from types import SimpleNamespace
from typing import List
from unittest.mock import AsyncMock, MagicMock

import openai
import pytest

from backends.anthropic_backend import AnthropicBackend
from backends.factory import create_backend
from backends.openai_backend import OpenAIBackend
from backends.scripted import ScriptedBackend
from common.config import BackendConfig
from common.models import Message, Role
from dispatch.events import ChatEvent, ChatRequest
from dispatch.pipeline import DispatchPipeline


def make_request(system_prompt=None, messages=None) -> ChatRequest:
    return ChatRequest(
        session_id="s1",
        message_id="m1",
        messages=messages or [Message(role=Role.USER, content="Hello")],
        model="test-model",
        temperature=0.5,
        system_prompt=system_prompt,
    )


async def run(backend, request: ChatRequest, cancel_after: int = 0) -> List[ChatEvent]:
    """Dispatch one request and collect its events until the terminal one."""
    pipeline = DispatchPipeline(backend)
    handle = pipeline.submit(request)
    events: List[ChatEvent] = []

    async def _collect() -> None:
        async for event in pipeline.events():
            events.append(event)
            if cancel_after and len(events) == cancel_after:
                handle.cancel()
            if event.is_terminal:
                return

    await asyncio.wait_for(_collect(), timeout=2.0)
    await pipeline.shutdown()
    return events


def openai_chunk(content=None, finish_reason=None):
    return SimpleNamespace(
        choices=[SimpleNamespace(delta=SimpleNamespace(content=content), finish_reason=finish_reason)]
    )


class FakeOpenAIStream:
    def __init__(self, chunks, delay: float = 0, error: Exception = None):
        self._chunks = chunks
        self._delay = delay
        self._error = error
        self.closed = False

    def __aiter__(self):
        return self._generate()

    async def _generate(self):
        for chunk in self._chunks:
            await asyncio.sleep(self._delay)
            yield chunk
        if self._error is not None:
            raise self._error

    async def close(self):
        self.closed = True


def openai_backend_with(stream) -> OpenAIBackend:
    backend = OpenAIBackend(api_key="test-key")
    backend.client = MagicMock()
    backend.client.chat.completions.create = AsyncMock(return_value=stream)
    return backend


class FakeAnthropicStream:
    def __init__(self, events):
        self._events = events

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False

    def __aiter__(self):
        return self._generate()

    async def _generate(self):
        for event in self._events:
            yield event


def test_create_scripted_backend():
    backend = create_backend(BackendConfig(active="scripted", scripted_chunk_count=3))

    assert isinstance(backend, ScriptedBackend)
    assert backend.chunks == ["chunk 0 ", "chunk 1 ", "chunk 2 "]


def test_create_backend_unknown_name():
    with pytest.raises(ValueError, match="Unknown backend"):
        create_backend(BackendConfig(active="nonexistent"))


def test_create_backend_requires_api_key(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    with pytest.raises(ValueError, match="OPENAI_API_KEY"):
        create_backend(BackendConfig(active="openai"))


def test_create_live_backends(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "test-key")
    monkeypatch.setenv("OPENROUTER_API_KEY", "test-key")
    monkeypatch.setenv("ANTHROPIC_API_KEY", "test-key")

    assert create_backend(BackendConfig(active="openai")).name == "openai"
    assert create_backend(BackendConfig(active="OpenRouter")).name == "openrouter"
    assert isinstance(create_backend(BackendConfig(active="anthropic")), AnthropicBackend)


def test_scripted_backend_needs_chunks():
    with pytest.raises(ValueError):
        ScriptedBackend(chunks=[])


@pytest.mark.asyncio
async def test_openai_streams_chunks_then_final():
    stream = FakeOpenAIStream(
        [
            openai_chunk("Hel"),
            openai_chunk(None),
            openai_chunk("lo"),
            openai_chunk(None, finish_reason="stop"),
        ]
    )
    backend = openai_backend_with(stream)

    events = await run(backend, make_request(system_prompt="Be brief"))

    assert [e.content for e in events] == ["Hel", "lo", ""]
    assert [e.is_final for e in events] == [False, False, True]
    assert stream.closed

    params = backend.client.chat.completions.create.call_args.kwargs
    assert params["model"] == "test-model"
    assert params["temperature"] == 0.5
    assert params["stream"] is True
    assert params["messages"][0] == {"role": "system", "content": "Be brief"}
    assert params["messages"][1] == {"role": "user", "content": "Hello"}
    assert "max_tokens" not in params


@pytest.mark.asyncio
async def test_openai_stream_without_finish_reason_still_finishes():
    backend = openai_backend_with(FakeOpenAIStream([openai_chunk("Hi")]))

    events = await run(backend, make_request())

    assert [e.kind for e in events] == ["chunk", "chunk"]
    assert events[-1].is_final


@pytest.mark.asyncio
async def test_openai_request_failure_becomes_error_event():
    backend = OpenAIBackend(api_key="test-key")
    backend.client = MagicMock()
    backend.client.chat.completions.create = AsyncMock(
        side_effect=openai.APIError("upstream unavailable", None, body=None)
    )

    events = await run(backend, make_request())

    assert len(events) == 1
    assert events[0].kind == "error"
    assert "openai request failed" in events[0].error
    assert events[0].key == ("s1", "m1")


@pytest.mark.asyncio
async def test_openai_mid_stream_error():
    stream = FakeOpenAIStream(
        [openai_chunk("partial")], error=openai.APIError("stream broke", None, body=None)
    )
    backend = openai_backend_with(stream)

    events = await run(backend, make_request())

    assert [e.kind for e in events] == ["chunk", "error"]
    assert "stream broke" in events[-1].error
    assert stream.closed


@pytest.mark.asyncio
async def test_openai_cancel_closes_stream():
    stream = FakeOpenAIStream([openai_chunk(f"t{i} ") for i in range(20)], delay=0.01)
    backend = openai_backend_with(stream)

    events = await run(backend, make_request(), cancel_after=1)

    assert events[-1].kind == "cancelled"
    assert not any(e.kind == "chunk" and e.is_final for e in events)
    assert len(events) < 20
    assert stream.closed


def test_anthropic_params_move_system_turns():
    backend = AnthropicBackend(api_key="test-key", max_tokens=256)
    request = ChatRequest(
        session_id="s1",
        message_id="m1",
        messages=[
            Message(role=Role.SYSTEM, content="From history"),
            Message(role=Role.USER, content="Hello"),
        ],
        model="claude-test",
        temperature=1.5,
    )

    params = backend._build_params(request)

    assert params["system"] == "From history"
    assert params["messages"] == [{"role": "user", "content": "Hello"}]
    assert params["temperature"] == 1.0
    assert params["max_tokens"] == 256


@pytest.mark.asyncio
async def test_anthropic_streams_text_deltas():
    backend = AnthropicBackend(api_key="test-key")
    backend.client = MagicMock()
    backend.client.messages.stream = MagicMock(
        return_value=FakeAnthropicStream(
            [
                SimpleNamespace(type="message_start"),
                SimpleNamespace(type="content_block_delta", delta=SimpleNamespace(text="Hi ")),
                SimpleNamespace(type="content_block_delta", delta=SimpleNamespace(text="there")),
                SimpleNamespace(type="message_stop"),
            ]
        )
    )

    events = await run(backend, make_request(system_prompt="Be brief"))

    assert [e.content for e in events] == ["Hi ", "there", ""]
    assert events[-1].is_final
    assert backend.client.messages.stream.call_args.kwargs["system"] == "Be brief"
