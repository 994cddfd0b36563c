"""Conversation context reconstruction and the topic-continuity signal."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from concierge.models import TRIVIAL_INTENTS, ConversationTurn

if TYPE_CHECKING:
    from concierge.conversation.store import ConversationStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TopicContinuity:
    same_topic_count: int = 0
    current_topic: str | None = None


@dataclass
class ConversationContext:
    """Turn entries oldest-first, plus the derived topic signal."""

    turns: list[ConversationTurn] = field(default_factory=list)
    topic: TopicContinuity = field(default_factory=TopicContinuity)


def topic_continuity(turns: list[ConversationTurn]) -> TopicContinuity:
    """Count consecutive most-recent turns that share one non-trivial intent.

    ``turns`` is oldest-first. Only entries that carry an intent (assistant
    halves) take part; the scan runs backwards from the newest one and stops
    at the first intent that differs. A trivial newest intent yields no topic.
    """
    current: str | None = None
    count = 0
    for turn in reversed(turns):
        if turn.intent is None:
            continue
        if current is None:
            if turn.intent in TRIVIAL_INTENTS:
                break
            current = turn.intent
            count = 1
        elif turn.intent == current:
            count += 1
        else:
            break
    return TopicContinuity(same_topic_count=count, current_topic=current)


class ConversationContextBuilder:
    """Loads a user's recent turns from the store and orders them for the model."""

    def __init__(self, store: ConversationStore, limit: int = 10) -> None:
        self._store = store
        self._limit = limit

    async def build(self, user_id: str) -> ConversationContext:
        try:
            newest_first = await self._store.get_conversation_context(user_id, self._limit)
        except Exception:  # persistence errors are non-fatal
            logger.exception("Failed to load conversation context for %s", user_id)
            return ConversationContext()

        turns = list(reversed(newest_first))
        topic = topic_continuity(turns)
        if topic.current_topic:
            # Exposed for routing decisions but not acted on.
            logger.debug(
                "User %s has %d consecutive turns on %s",
                user_id, topic.same_topic_count, topic.current_topic,
            )
        return ConversationContext(turns=turns, topic=topic)
