"""Conversation store interface and the in-memory implementation.

The gateway never issues queries itself; it depends only on the
``ConversationStore`` protocol. ``get_conversation_context`` returns turn
entries newest-first (bounded by ``limit``); callers reorder for presentation.
"""

from __future__ import annotations

import itertools
from typing import Protocol

from concierge.models import ConversationTurn, EventType, WebhookEvent


class ConversationStore(Protocol):
    async def create_event(self, event: WebhookEvent) -> WebhookEvent: ...

    async def get_conversation_context(
        self, user_id: str, limit: int = 10,
    ) -> list[ConversationTurn]: ...

    async def mark_deep_link_clicked(self, event_id: int) -> bool: ...

    async def get_recent_events(self, limit: int = 50) -> list[WebhookEvent]: ...

    async def get_analyzed_media(self, user_id: str) -> set[str]: ...

    async def mark_media_analyzed(self, user_id: str, keys: set[str]) -> None: ...


def event_to_turn(event: WebhookEvent, user_id: str) -> ConversationTurn | None:
    """Map a stored event to the user's or the assistant's half of a turn."""
    if event.event_type == EventType.MESSAGE_RECEIVED and event.sender_id == user_id:
        return ConversationTurn(user_text=event.message_text)
    if event.event_type == EventType.MESSAGE_SENT and event.recipient_id == user_id:
        return ConversationTurn(
            assistant_text=event.response_text or event.message_text,
            intent=event.intent,
        )
    return None


class InMemoryConversationStore:
    """Process-local store. Contents are lost on restart."""

    def __init__(self) -> None:
        self._events: dict[int, WebhookEvent] = {}
        self._ids = itertools.count(1)
        self._analyzed: dict[str, set[str]] = {}

    async def create_event(self, event: WebhookEvent) -> WebhookEvent:
        stored = event.model_copy(update={"id": next(self._ids)})
        self._events[stored.id] = stored  # type: ignore[index]
        return stored

    def _newest_first(self) -> list[WebhookEvent]:
        return sorted(
            self._events.values(),
            key=lambda e: (e.created_at, e.id or 0),
            reverse=True,
        )

    async def get_conversation_context(
        self, user_id: str, limit: int = 10,
    ) -> list[ConversationTurn]:
        turns: list[ConversationTurn] = []
        for event in self._newest_first():
            turn = event_to_turn(event, user_id)
            if turn is None:
                continue
            turns.append(turn)
            if len(turns) >= limit:
                break
        return turns

    async def mark_deep_link_clicked(self, event_id: int) -> bool:
        event = self._events.get(event_id)
        if event is None:
            return False
        self._events[event_id] = event.model_copy(update={"deep_link_clicked": True})
        return True

    async def get_recent_events(self, limit: int = 50) -> list[WebhookEvent]:
        return self._newest_first()[:limit]

    async def get_analyzed_media(self, user_id: str) -> set[str]:
        return set(self._analyzed.get(user_id, set()))

    async def mark_media_analyzed(self, user_id: str, keys: set[str]) -> None:
        self._analyzed.setdefault(user_id, set()).update(keys)
