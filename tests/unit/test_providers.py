"""Tests for backend provider selection rules."""

from __future__ import annotations

import pytest

from concierge.brain.providers import POLICY_RULES, Provider, select_provider


class TestFunctionRequests:
    @pytest.mark.parametrize("text", [
        "save this to my moodboard",
        "Remind me to call the venue",
        "can you search contacts for a producer",
        "show analytics for my last release",
    ])
    def test_always_general(self, text: str) -> None:
        choice = select_provider(text, analytical_enabled=True)
        assert choice.provider == Provider.GENERAL
        assert choice.matched == ("function_request",)


def test_content_routes_general_even_if_analytical() -> None:
    choice = select_provider(
        "analyze the market trends in this post",
        has_extracted_content=True,
        analytical_enabled=True,
    )
    assert choice.provider == Provider.GENERAL
    assert select_provider("analyze", has_media=True, analytical_enabled=True).provider \
        == Provider.GENERAL


def test_disabled_routing_is_general() -> None:
    choice = select_provider("research market trends")
    assert choice.provider == Provider.GENERAL
    assert choice.reason == "analytical routing disabled"


class TestPolicyRules:
    @pytest.mark.parametrize("text", [
        "research the market for lo-fi",
        "write a bio for my press kit",
        "I need a long-term roadmap",
    ])
    def test_analytical_categories(self, text: str) -> None:
        assert select_provider(text, analytical_enabled=True).provider == Provider.ANALYTICAL

    def test_creative_needs_subject(self) -> None:
        rule = next(r for r in POLICY_RULES if r.category == "creative_writing")
        assert rule.matches("write a bio") is True
        assert rule.matches("write something") is False

    def test_actionable_advice_is_general(self) -> None:
        choice = select_provider("quick tip to grow my fanbase", analytical_enabled=True)
        assert choice.provider == Provider.GENERAL
        assert choice.matched == ("actionable_advice",)

    def test_tie_defaults_to_general(self) -> None:
        choice = select_provider("quick tip: explain playlist data", analytical_enabled=True)
        assert choice.provider == Provider.GENERAL
        assert choice.reason == "tie between providers"

    def test_no_match_defaults_to_general(self) -> None:
        choice = select_provider("hey there", analytical_enabled=True)
        assert choice.provider == Provider.GENERAL
        assert choice.reason == "default"

    def test_deterministic(self) -> None:
        text = "compare two distributors"
        assert select_provider(text, analytical_enabled=True) == select_provider(
            text, analytical_enabled=True,
        )
