"""Shared Pydantic data models for the DM concierge gateway."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# --- Enums ---


class EventType(str, Enum):
    MESSAGE_RECEIVED = "message_received"
    MESSAGE_SENT = "message_sent"
    MESSAGE_FAILED = "message_failed"


class EventStatus(str, Enum):
    PROCESSED = "processed"
    SENT = "sent"
    FAILED = "failed"


class ContentType(str, Enum):
    POST = "instagram_post"
    REEL = "instagram_reel"
    STORY = "instagram_story"
    GENERIC_LINK = "generic_url"


class Intent(str, Enum):
    MOODBOARD_ADD = "moodboard.add"
    NETWORK_SUGGEST = "network.suggest"
    TASK_CREATE = "task.create"
    CONTENT_ANALYZE = "content.analyze"
    STRATEGY_RECOMMEND = "strategy.recommend"
    CHAT_GENERIC = "chat.generic"
    NONE = "none"


# Intents that never count towards topic continuity.
TRIVIAL_INTENTS = frozenset({Intent.CHAT_GENERIC.value, Intent.NONE.value})


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


# --- Conversation Models ---


class ConversationTurn(BaseModel):
    """One half of an exchange: either the user's message or the assistant's reply."""

    model_config = ConfigDict(frozen=True)

    user_text: str | None = None
    assistant_text: str | None = None
    intent: str | None = None


class WebhookEvent(BaseModel):
    """Durable record of one inbound or outbound occurrence."""

    id: int | None = None
    event_type: EventType
    sender_id: str
    recipient_id: str
    message_text: str | None = None
    response_text: str | None = None
    status: EventStatus = EventStatus.PROCESSED
    intent: str | None = None
    entities: dict[str, Any] | None = None
    deep_link: str | None = None
    latency_ms: int | None = Field(default=None, ge=0)
    deep_link_clicked: bool = False
    created_at: str = Field(default_factory=_now_iso)


# --- Extraction Models ---


class MediaAttachment(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: str
    url: str | None = None
    title: str | None = None


class ExtractedContent(BaseModel):
    """Content derived from a URL in the message. Lives for one pipeline run."""

    type: ContentType
    url: str
    post_id: str | None = None
    title: str | None = None
    description: str | None = None
    media_urls: list[str] = Field(default_factory=list)
    is_video: bool = False
    error: str | None = None

    @property
    def is_platform_content(self) -> bool:
        return self.type != ContentType.GENERIC_LINK


class PostMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    caption: str | None = None
    thumbnail_url: str | None = None
    media_url: str | None = None
    permalink: str | None = None
    author_name: str | None = None
    media_type: str | None = None
    source: str  # "graph_attachment" | "oembed"


# --- Model / Directive Models ---


class MusicContext(BaseModel):
    genre: str | None = None
    mood: str | None = None
    instruments: list[str] = Field(default_factory=list)
    setting: str | None = None
    aesthetics: list[str] = Field(default_factory=list)


class ImageAnalysisResult(BaseModel):
    """Structured vision output. Accepts the camelCase keys the model emits."""

    model_config = ConfigDict(populate_by_name=True)

    description: str
    music_context: MusicContext | None = Field(default=None, alias="musicContext")
    actionable_advice: list[str] = Field(default_factory=list, alias="actionableAdvice")
    error: str | None = None


class ActionDirective(BaseModel):
    intent: str
    entities: dict[str, Any] = Field(default_factory=dict)
    deep_link: str | None = None


class RoutingResult(BaseModel):
    """Output of a tool handler: where to send the user and what to tell them."""

    model_config = ConfigDict(extra="allow")

    success: bool = True
    action: str | None = None
    deep_link: str | None = None
    message: str | None = None
    error: str | None = None
