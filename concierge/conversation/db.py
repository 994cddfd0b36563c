"""SQLite persistence for webhook events and analysis markers.

This module provides:
- EventDB, a thin connection wrapper (WAL mode, parameterized queries)
- SQLiteConversationStore, the ``ConversationStore`` backed by EventDB; its
  queries run in worker threads so the event loop is never blocked
"""

from __future__ import annotations

import asyncio
import json
import sqlite3
import threading
from pathlib import Path
from typing import Any

from concierge.conversation.store import event_to_turn
from concierge.models import ConversationTurn, EventType, WebhookEvent

SCHEMA_SQL = """
-- Inbound and outbound DM events
CREATE TABLE IF NOT EXISTS webhook_events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    event_type TEXT NOT NULL,
    sender_id TEXT NOT NULL,
    recipient_id TEXT NOT NULL,
    message_text TEXT,
    response_text TEXT,
    status TEXT NOT NULL DEFAULT 'processed',
    intent TEXT,
    entities_json TEXT,
    deep_link TEXT,
    latency_ms INTEGER,
    deep_link_clicked INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_events_sender ON webhook_events(sender_id, created_at);
CREATE INDEX IF NOT EXISTS idx_events_recipient ON webhook_events(recipient_id, created_at);

-- Media already run through image analysis, per conversation
CREATE TABLE IF NOT EXISTS analyzed_media (
    user_id TEXT NOT NULL,
    media_key TEXT NOT NULL,
    PRIMARY KEY (user_id, media_key)
);
"""


class EventDB:
    """SQLite connection wrapper with schema initialization on first use."""

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.Lock()
        self._initialize()

    def _initialize(self) -> None:
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)

        self._conn = sqlite3.connect(self._db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(SCHEMA_SQL)
        self._conn.commit()

    def _require_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise sqlite3.ProgrammingError("Database connection is closed")
        return self._conn

    def execute(self, sql: str, params: tuple[Any, ...] = ()) -> sqlite3.Cursor:
        with self._lock:
            conn = self._require_conn()
            cursor = conn.execute(sql, params)
            conn.commit()
            return cursor

    def executemany(self, sql: str, rows: list[tuple[Any, ...]]) -> None:
        with self._lock:
            conn = self._require_conn()
            conn.executemany(sql, rows)
            conn.commit()

    def fetch_all(self, sql: str, params: tuple[Any, ...] = ()) -> list[dict[str, Any]]:
        with self._lock:
            cursor = self._require_conn().execute(sql, params)
            return [dict(row) for row in cursor.fetchall()]

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None


def _row_to_event(row: dict[str, Any]) -> WebhookEvent:
    entities = json.loads(row["entities_json"]) if row["entities_json"] else None
    return WebhookEvent(
        id=row["id"],
        event_type=row["event_type"],
        sender_id=row["sender_id"],
        recipient_id=row["recipient_id"],
        message_text=row["message_text"],
        response_text=row["response_text"],
        status=row["status"],
        intent=row["intent"],
        entities=entities,
        deep_link=row["deep_link"],
        latency_ms=row["latency_ms"],
        deep_link_clicked=bool(row["deep_link_clicked"]),
        created_at=row["created_at"],
    )


class SQLiteConversationStore:
    """``ConversationStore`` persisted in a local SQLite file."""

    def __init__(self, db_path: str) -> None:
        self._db = EventDB(db_path)

    async def create_event(self, event: WebhookEvent) -> WebhookEvent:
        cursor = await asyncio.to_thread(
            self._db.execute,
            """INSERT INTO webhook_events
               (event_type, sender_id, recipient_id, message_text, response_text,
                status, intent, entities_json, deep_link, latency_ms,
                deep_link_clicked, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                event.event_type.value,
                event.sender_id,
                event.recipient_id,
                event.message_text,
                event.response_text,
                event.status.value,
                event.intent,
                json.dumps(event.entities) if event.entities is not None else None,
                event.deep_link,
                event.latency_ms,
                int(event.deep_link_clicked),
                event.created_at,
            ),
        )
        return event.model_copy(update={"id": cursor.lastrowid})

    async def get_conversation_context(
        self, user_id: str, limit: int = 10,
    ) -> list[ConversationTurn]:
        rows = await asyncio.to_thread(
            self._db.fetch_all,
            """SELECT * FROM webhook_events
               WHERE (sender_id = ? AND event_type = ?)
                  OR (recipient_id = ? AND event_type = ?)
               ORDER BY created_at DESC, id DESC
               LIMIT ?""",
            (
                user_id, EventType.MESSAGE_RECEIVED.value,
                user_id, EventType.MESSAGE_SENT.value,
                limit,
            ),
        )
        turns: list[ConversationTurn] = []
        for row in rows:
            turn = event_to_turn(_row_to_event(row), user_id)
            if turn is not None:
                turns.append(turn)
        return turns

    async def mark_deep_link_clicked(self, event_id: int) -> bool:
        cursor = await asyncio.to_thread(
            self._db.execute,
            "UPDATE webhook_events SET deep_link_clicked = 1 WHERE id = ?",
            (event_id,),
        )
        return cursor.rowcount > 0

    async def get_recent_events(self, limit: int = 50) -> list[WebhookEvent]:
        rows = await asyncio.to_thread(
            self._db.fetch_all,
            "SELECT * FROM webhook_events ORDER BY created_at DESC, id DESC LIMIT ?",
            (limit,),
        )
        return [_row_to_event(row) for row in rows]

    async def get_analyzed_media(self, user_id: str) -> set[str]:
        rows = await asyncio.to_thread(
            self._db.fetch_all,
            "SELECT media_key FROM analyzed_media WHERE user_id = ?", (user_id,),
        )
        return {row["media_key"] for row in rows}

    async def mark_media_analyzed(self, user_id: str, keys: set[str]) -> None:
        await asyncio.to_thread(
            self._db.executemany,
            "INSERT OR IGNORE INTO analyzed_media (user_id, media_key) VALUES (?, ?)",
            [(user_id, key) for key in sorted(keys)],
        )

    def close(self) -> None:
        self._db.close()
