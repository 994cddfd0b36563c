"""Event logger: persists webhook events without ever failing the caller."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from concierge.conversation.store import ConversationStore
    from concierge.events.audit import EventAuditLog
    from concierge.models import WebhookEvent

logger = logging.getLogger(__name__)


class EventLogger:
    def __init__(
        self,
        store: ConversationStore,
        audit_log: EventAuditLog | None = None,
    ) -> None:
        self._store = store
        self._audit = audit_log
        self._pending: set[asyncio.Task[WebhookEvent | None]] = set()

    async def record(self, event: WebhookEvent) -> WebhookEvent | None:
        """Persist ``event``; returns the stored record or None on failure."""
        try:
            stored = await self._store.create_event(event)
        except Exception:
            logger.exception(
                "Failed to persist %s event for %s", event.event_type.value, event.sender_id,
            )
            return None

        if self._audit is not None:
            try:
                self._audit.write(stored)
            except OSError:
                logger.exception("Failed to append event %s to audit log", stored.id)
        return stored

    def record_in_background(self, event: WebhookEvent) -> asyncio.Task[WebhookEvent | None]:
        """Schedule ``record`` without waiting for it."""
        task = asyncio.create_task(self.record(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self) -> None:
        """Wait for every background write scheduled so far."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
