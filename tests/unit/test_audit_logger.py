"""Tests for the event audit log and the event logger."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from concierge.conversation.store import InMemoryConversationStore
from concierge.events.audit import EventAuditLog
from concierge.events.logger import EventLogger
from concierge.models import EventStatus, EventType
from tests.conftest import make_event


def test_write_appends_json_line(tmp_path: Path) -> None:
    log_file = tmp_path / "events.jsonl"
    audit = EventAuditLog(log_path=str(log_file))
    audit.write(make_event(id=1, status=EventStatus.SENT, event_type=EventType.MESSAGE_SENT))

    lines = log_file.read_text().strip().split("\n")
    assert len(lines) == 1
    parsed = json.loads(lines[0])
    assert parsed["event_type"] == "message_sent"
    assert parsed["status"] == "sent"
    assert parsed["id"] == 1
    assert " " not in lines[0].split('"message_text"')[0]


def test_write_creates_parent_dir(tmp_path: Path) -> None:
    log_file = tmp_path / "subdir" / "events.jsonl"
    EventAuditLog(log_path=str(log_file)).write(make_event())
    assert log_file.exists()


def test_read_all_in_order(tmp_path: Path) -> None:
    audit = EventAuditLog(log_path=str(tmp_path / "events.jsonl"))
    assert audit.read_all() == []
    for i in range(3):
        audit.write(make_event(message_text=f"msg-{i}"))
    assert [e["message_text"] for e in audit.read_all()] == ["msg-0", "msg-1", "msg-2"]


# --- Rotation tests ---


def test_rotation_triggers_at_threshold(tmp_path: Path) -> None:
    log_file = tmp_path / "events.jsonl"
    audit = EventAuditLog(log_path=str(log_file), max_bytes=100, backup_count=3)
    for i in range(20):
        audit.write(make_event(message_text=f"event-{i}"))
    assert (tmp_path / "events.jsonl.1").exists()


def test_rotation_deletes_oldest(tmp_path: Path) -> None:
    log_file = tmp_path / "events.jsonl"
    audit = EventAuditLog(log_path=str(log_file), max_bytes=50, backup_count=2)
    for i in range(50):
        audit.write(make_event(message_text=f"event-{i}"))
    assert (tmp_path / "events.jsonl.2").exists()
    assert not (tmp_path / "events.jsonl.3").exists()


def test_rotation_configurable_via_env(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("EVENT_AUDIT_LOG_MAX_BYTES", "500")
    monkeypatch.setenv("EVENT_AUDIT_LOG_BACKUP_COUNT", "7")
    audit = EventAuditLog.from_env(str(tmp_path / "events.jsonl"))
    assert audit._max_bytes == 500
    assert audit._backup_count == 7


# --- Event logger ---


class TestEventLogger:
    @pytest.mark.asyncio
    async def test_record_persists_and_audits(self, tmp_path: Path) -> None:
        store = InMemoryConversationStore()
        audit = EventAuditLog(log_path=str(tmp_path / "events.jsonl"))
        stored = await EventLogger(store, audit).record(make_event())
        assert stored is not None
        assert stored.id is not None
        assert audit.read_all()[0]["id"] == stored.id
        assert await store.get_recent_events() == [stored]

    @pytest.mark.asyncio
    async def test_store_failure_is_swallowed(self) -> None:
        store = AsyncMock()
        store.create_event.side_effect = RuntimeError("disk full")
        audit = MagicMock()
        assert await EventLogger(store, audit).record(make_event()) is None
        audit.write.assert_not_called()

    @pytest.mark.asyncio
    async def test_audit_failure_keeps_stored_event(self) -> None:
        audit = MagicMock()
        audit.write.side_effect = OSError("read-only")
        stored = await EventLogger(InMemoryConversationStore(), audit).record(make_event())
        assert stored is not None

    @pytest.mark.asyncio
    async def test_background_records_drained(self) -> None:
        store = InMemoryConversationStore()
        events = EventLogger(store)
        for i in range(3):
            events.record_in_background(make_event(message_text=f"m{i}"))
        await events.drain()
        assert len(await store.get_recent_events()) == 3
