"""
Tests for the session registry and YAML persistence.

Added 2026-10-19: Tests for SessionManager turns and YamlStore round trips.
"""

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from common.models import AppSettings, ChatSession, Role, Theme
from dispatch.events import ChatCancelled, ChatError, ChatResponseChunk
from sessions.registry import SessionManager
from sessions.store import YamlStore


def test_create_session_becomes_active():
    manager = SessionManager()

    session_id = manager.create_session("First")

    assert manager.get_session(session_id).title == "First"
    assert manager.get_active_session().id == session_id


def test_set_active_ignores_unknown_ids():
    manager = SessionManager()
    session_id = manager.create_session("First")

    manager.set_active_session("missing")

    assert manager.active_session_id == session_id


def test_list_sessions_most_recent_first():
    manager = SessionManager()
    old_id = manager.create_session("Old")
    new_id = manager.create_session("New")
    now = datetime.now(timezone.utc)
    manager.get_session(old_id).updated_at = now - timedelta(hours=1)
    manager.get_session(new_id).updated_at = now

    assert [s.id for s in manager.list_sessions()] == [new_id, old_id]

    manager.get_session(old_id).updated_at = now + timedelta(hours=1)
    assert [s.id for s in manager.list_sessions()] == [old_id, new_id]


def test_delete_session_clears_active():
    manager = SessionManager()
    session_id = manager.create_session("Doomed")

    assert manager.delete_session(session_id) is True
    assert manager.get_active_session() is None
    assert manager.delete_session(session_id) is False


def test_begin_turn_builds_request():
    manager = SessionManager()
    session_id = manager.create_session("Chat")
    settings = AppSettings(model="gpt-4o-mini", temperature=0.2, system_prompt="Be brief")

    request = manager.begin_turn(session_id, "Hello", settings)

    session = manager.get_session(session_id)
    user, reply = session.messages
    assert user.role == Role.USER and user.content == "Hello"
    assert reply.role == Role.ASSISTANT and reply.is_streaming

    assert request.key == (session_id, reply.id)
    assert [m.content for m in request.messages] == ["Hello"]
    assert request.model == "gpt-4o-mini"
    assert request.temperature == 0.2
    assert request.system_prompt == "Be brief"


def test_begin_turn_unknown_session():
    with pytest.raises(KeyError):
        SessionManager().begin_turn("missing", "Hello", AppSettings())


def test_apply_event_streams_into_reply():
    manager = SessionManager()
    session_id = manager.create_session("Chat")
    request = manager.begin_turn(session_id, "Hello", AppSettings())
    sid, mid = request.key

    manager.apply_event(ChatResponseChunk(session_id=sid, message_id=mid, content="Hi "))
    message = manager.apply_event(
        ChatResponseChunk(session_id=sid, message_id=mid, content="there", is_final=True)
    )

    assert message.content == "Hi there"
    assert not message.is_streaming


def test_apply_error_keeps_partial_content():
    manager = SessionManager()
    session_id = manager.create_session("Chat")
    sid, mid = manager.begin_turn(session_id, "Hello", AppSettings()).key

    manager.apply_event(ChatResponseChunk(session_id=sid, message_id=mid, content="partial"))
    message = manager.apply_event(ChatError(session_id=sid, message_id=mid, error="boom"))

    assert message.content == "partial"
    assert not message.is_streaming


def test_apply_error_on_empty_reply_records_it():
    manager = SessionManager()
    session_id = manager.create_session("Chat")
    sid, mid = manager.begin_turn(session_id, "Hello", AppSettings()).key

    message = manager.apply_event(ChatError(session_id=sid, message_id=mid, error="boom"))

    assert message.content == "[error] boom"


def test_apply_cancelled_completes_reply():
    manager = SessionManager()
    session_id = manager.create_session("Chat")
    sid, mid = manager.begin_turn(session_id, "Hello", AppSettings()).key

    message = manager.apply_event(ChatCancelled(session_id=sid, message_id=mid))

    assert message.content == ""
    assert not message.is_streaming


def test_apply_event_for_unknown_message():
    manager = SessionManager()
    session_id = manager.create_session("Chat")

    assert manager.apply_event(ChatCancelled(session_id="missing", message_id="m1")) is None
    assert manager.apply_event(ChatCancelled(session_id=session_id, message_id="m1")) is None


def test_store_session_round_trip(tmp_path: Path):
    store = YamlStore(tmp_path)
    session = ChatSession(title="Saved")
    session.add_message(Role.USER, "Hello")
    session.add_message(Role.ASSISTANT, "Hi!")

    assert store.save_session(session) is True
    loaded = store.load_session(session.id)

    assert loaded == session
    assert (tmp_path / "sessions" / f"{session.id}.yaml").exists()


def test_store_load_all_and_delete(tmp_path: Path):
    store = YamlStore(tmp_path)
    first = ChatSession(title="One")
    second = ChatSession(title="Two")
    store.save_session(first)
    store.save_session(second)

    assert {s.id for s in store.load_all_sessions()} == {first.id, second.id}

    assert store.delete_session(first.id) is True
    assert store.delete_session(first.id) is False
    assert [s.id for s in store.load_all_sessions()] == [second.id]


def test_store_missing_session(tmp_path: Path):
    assert YamlStore(tmp_path).load_session("missing") is None


def test_store_rejects_path_like_ids(tmp_path: Path):
    store = YamlStore(tmp_path)

    with pytest.raises(ValueError):
        store.load_session("../escape")
    with pytest.raises(ValueError):
        store.load_session("")


def test_store_skips_corrupt_files(tmp_path: Path):
    store = YamlStore(tmp_path)
    good = ChatSession(title="Good")
    store.save_session(good)
    (tmp_path / "sessions" / "broken.yaml").write_text("title: [unclosed", encoding="utf-8")
    (tmp_path / "sessions" / "invalid.yaml").write_text("messages: 3\n", encoding="utf-8")

    assert store.load_session("broken") is None
    assert store.load_session("invalid") is None
    assert [s.id for s in store.load_all_sessions()] == [good.id]


def test_store_settings_round_trip(tmp_path: Path):
    store = YamlStore(tmp_path)
    assert store.load_settings() is None

    settings = AppSettings(theme=Theme.LIGHT, model="gpt-4o", window_width=1200)
    assert store.save_settings(settings) is True

    assert store.load_settings() == settings
