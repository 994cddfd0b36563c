"""Tests for shared data models."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from concierge.models import (
    ContentType,
    ConversationTurn,
    ExtractedContent,
    ImageAnalysisResult,
    Intent,
    RoutingResult,
    TRIVIAL_INTENTS,
)
from tests.conftest import make_event


def test_webhook_event_defaults() -> None:
    event = make_event()
    assert event.id is None
    assert event.deep_link_clicked is False
    assert "T" in event.created_at


def test_negative_latency_rejected() -> None:
    with pytest.raises(ValidationError):
        make_event(latency_ms=-1)


def test_event_serializes_snake_case() -> None:
    data = make_event(entities={"a": 1}).model_dump(mode="json")
    assert data["event_type"] == "message_received"
    assert data["status"] == "processed"
    assert data["entities"] == {"a": 1}


def test_conversation_turn_frozen() -> None:
    turn = ConversationTurn(user_text="hi")
    with pytest.raises(ValidationError):
        turn.user_text = "changed"  # type: ignore[misc]


def test_image_analysis_accepts_camel_case() -> None:
    result = ImageAnalysisResult.model_validate({
        "description": "stage",
        "musicContext": {"genre": "rock"},
        "actionableAdvice": ["tip"],
    })
    assert result.music_context.genre == "rock"
    assert result.actionable_advice == ["tip"]


def test_extracted_content_platform_flag() -> None:
    post = ExtractedContent(type=ContentType.REEL, url="https://www.instagram.com/reel/A/")
    link = ExtractedContent(type=ContentType.GENERIC_LINK, url="https://example.com")
    assert post.is_platform_content is True
    assert link.is_platform_content is False


def test_routing_result_keeps_handler_fields() -> None:
    result = RoutingResult(deep_link="https://dash.test/open", tip="Post daily")
    assert result.tip == "Post daily"


def test_trivial_intents() -> None:
    assert TRIVIAL_INTENTS == {Intent.CHAT_GENERIC.value, Intent.NONE.value}
