"""Ingest pipeline: one inbound event in, one delivered reply out.

Stages per event:
1. Record the inbound event (scheduled, not awaited)
2. Presence signals (seen, typing), best-effort
3. Conversation context
4. Model orchestration
5. Delivery
6. Record the outcome (``message_sent`` or ``message_failed``)

Turns from one user are serialized in arrival order; different users run
concurrently.
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from concierge.brain.directive import parse_reply
from concierge.delivery.messenger import DeliveryError
from concierge.models import EventStatus, EventType, WebhookEvent
from concierge.webhook.models import InboundEvent, PipelineResult

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from concierge.brain.orchestrator import ModelOrchestrator
    from concierge.conversation.context import ConversationContextBuilder
    from concierge.delivery.messenger import OutboundMessenger
    from concierge.events.logger import EventLogger
    from concierge.webhook.instagram import InstagramWebhook

logger = logging.getLogger(__name__)


def _inbound_text(event: InboundEvent) -> str:
    if event.text:
        return event.text
    if event.attachments:
        kinds = ", ".join(a.type for a in event.attachments)
        return f"[attachment: {kinds}]"
    return ""


class MessagePipeline:
    def __init__(
        self,
        webhook: InstagramWebhook,
        orchestrator: ModelOrchestrator,
        context_builder: ConversationContextBuilder,
        messenger: OutboundMessenger,
        event_logger: EventLogger,
        page_token: str = "",
    ) -> None:
        self._webhook = webhook
        self._orchestrator = orchestrator
        self._context = context_builder
        self._messenger = messenger
        self._events = event_logger
        self._page_token = page_token
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiting: dict[str, int] = {}
        self._tasks: set[asyncio.Task[PipelineResult | None]] = set()

    @asynccontextmanager
    async def _user_turn(self, user_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(user_id, asyncio.Lock())
        self._waiting[user_id] = self._waiting.get(user_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiting[user_id] -= 1
            if not self._waiting[user_id]:
                del self._waiting[user_id]
                self._locks.pop(user_id, None)

    def dispatch(self, payload: dict[str, Any]) -> list[asyncio.Task[PipelineResult | None]]:
        """Schedule one independent task per message event in ``payload``."""
        tasks = []
        for event in self._webhook.extract_events(payload):
            task = asyncio.create_task(self._run(event))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            tasks.append(task)
        return tasks

    async def drain(self) -> None:
        """Wait for every scheduled event task and its background writes."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        await self._events.drain()

    async def _run(self, event: InboundEvent) -> PipelineResult | None:
        try:
            return await self.process(event)
        except Exception:
            logger.exception("Unhandled error processing message from %s", event.sender_id)
            return None

    async def process(self, event: InboundEvent) -> PipelineResult:
        if event.is_echo:
            return PipelineResult(status="skipped", error="echo")
        if not event.sender_id:
            return PipelineResult(status="skipped", error="missing sender")

        async with self._user_turn(event.sender_id):
            start = time.monotonic()
            try:
                return await self._process(event, start)
            except Exception as exc:
                logger.exception(
                    "Unhandled error processing message from %s", event.sender_id,
                )
                await self._events.record(self._outcome(
                    event, EventType.MESSAGE_FAILED, EventStatus.FAILED,
                    text="Processing failed", start=start,
                ))
                return PipelineResult(status="failed", error=str(exc))

    async def _process(self, event: InboundEvent, start: float) -> PipelineResult:
        user_text = _inbound_text(event)
        logger.info("Processing message %s from %s", event.mid, event.sender_id)

        self._events.record_in_background(WebhookEvent(
            event_type=EventType.MESSAGE_RECEIVED,
            sender_id=event.sender_id,
            recipient_id=event.recipient_id,
            message_text=user_text,
            status=EventStatus.PROCESSED,
        ))

        if not self._page_token:
            logger.error("Page access token is not configured; cannot reply to %s",
                         event.sender_id)
            await self._events.record(self._outcome(
                event, EventType.MESSAGE_FAILED, EventStatus.FAILED,
                text="Page access token is not configured", start=start,
            ))
            return PipelineResult(status="failed", error="missing page access token")

        await self._presence(event.sender_id)

        context = await self._context.build(event.sender_id)
        history = context.turns
        # The inbound write above may already be visible; don't repeat it.
        if history and history[-1].user_text == user_text:
            history = history[:-1]

        reply = await self._orchestrator.respond(
            event.text or "", history, event.attachments, event.sender_id,
        )
        parsed = parse_reply(reply)

        try:
            await self._messenger.send(event.sender_id, reply, self._page_token)
        except DeliveryError as exc:
            logger.error("Delivery to %s failed: %s", event.sender_id, exc)
            await self._events.record(self._outcome(
                event, EventType.MESSAGE_FAILED, EventStatus.FAILED,
                text=parsed.text, start=start, directive=parsed.directive,
            ))
            return PipelineResult(
                status="failed", reply_text=parsed.text,
                directive=parsed.directive, error=str(exc),
            )

        outcome = self._outcome(
            event, EventType.MESSAGE_SENT, EventStatus.SENT,
            text=parsed.text, start=start, directive=parsed.directive,
        )
        await self._events.record(outcome)
        logger.info("Replied to %s in %d ms", event.sender_id, outcome.latency_ms)
        return PipelineResult(
            status="sent", reply_text=parsed.text,
            directive=parsed.directive, latency_ms=outcome.latency_ms,
        )

    async def _presence(self, user_id: str) -> None:
        for signal in (self._messenger.mark_seen, self._messenger.set_typing):
            try:
                await signal(user_id, self._page_token)
            except DeliveryError as exc:
                logger.warning("Presence signal to %s failed: %s", user_id, exc)

    @staticmethod
    def _outcome(
        event: InboundEvent,
        event_type: EventType,
        status: EventStatus,
        text: str,
        start: float,
        directive: Any = None,
    ) -> WebhookEvent:
        return WebhookEvent(
            event_type=event_type,
            sender_id=event.recipient_id,
            recipient_id=event.sender_id,
            message_text=text,
            response_text=text,
            status=status,
            intent=directive.intent if directive else None,
            entities=directive.entities if directive else None,
            deep_link=directive.deep_link if directive else None,
            latency_ms=int((time.monotonic() - start) * 1000),
        )
