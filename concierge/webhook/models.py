"""Data models for the ingest pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field

from concierge.models import ActionDirective, MediaAttachment


@dataclass
class InboundEvent:
    """Normalized inbound messaging event, whichever payload shape it came in."""

    sender_id: str
    recipient_id: str
    timestamp: int = 0
    text: str | None = None
    mid: str | None = None
    attachments: list[MediaAttachment] = field(default_factory=list)
    is_echo: bool = False


@dataclass
class PipelineResult:
    """Outcome of processing one inbound event."""

    status: str  # "sent", "failed" or "skipped"
    reply_text: str | None = None
    directive: ActionDirective | None = None
    latency_ms: int | None = None
    error: str | None = None
