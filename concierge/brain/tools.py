"""Function catalog offered to the model and the handlers that resolve calls.

Handlers return routing information (a deep link plus a short message), not
data: the dashboard does the actual work.
"""

from __future__ import annotations

import logging
import random
from typing import Any

from pydantic import ValidationError

from concierge.brain.guidance import DEFAULT_DASHBOARD_URL, dashboard_link
from concierge.models import Intent, RoutingResult

logger = logging.getLogger(__name__)

FUNCTION_INTENTS: dict[str, str] = {
    "save_to_moodboard": Intent.MOODBOARD_ADD.value,
    "search_music_contacts": Intent.NETWORK_SUGGEST.value,
    "create_reminder_task": Intent.TASK_CREATE.value,
    "get_artist_analytics": Intent.STRATEGY_RECOMMEND.value,
    "quick_music_tip": Intent.CHAT_GENERIC.value,
    "identify_user_need": Intent.NONE.value,
}


def intent_for_function(name: str) -> str:
    return FUNCTION_INTENTS.get(name, Intent.CHAT_GENERIC.value)


def _function(name: str, description: str, properties: dict[str, Any],
              required: list[str]) -> dict[str, Any]:
    return {
        "type": "function",
        "function": {
            "name": name,
            "description": description,
            "parameters": {
                "type": "object",
                "properties": properties,
                "required": required,
                "additionalProperties": False,
            },
        },
    }


TOOL_CATALOG: list[dict[str, Any]] = [
    _function(
        "save_to_moodboard",
        "Save inspiration content (posts, reels, images, links) to the user's moodboard.",
        {
            "content_url": {"type": "string"},
            "content_type": {
                "type": "string",
                "enum": ["instagram_post", "instagram_reel", "instagram_story", "image", "link"],
            },
            "caption": {"type": "string"},
            "tags": {"type": "array", "items": {"type": "string"}},
        },
        ["content_url", "content_type"],
    ),
    _function(
        "search_music_contacts",
        "Search for music industry contacts by role, location and genre.",
        {
            "role": {
                "type": "string",
                "enum": ["producer", "booker", "label", "engineer", "venue",
                         "promoter", "manager", "other"],
            },
            "location": {"type": "string"},
            "genre": {"type": "string"},
            "additional_criteria": {"type": "string"},
        },
        ["role"],
    ),
    _function(
        "create_reminder_task",
        "Create a task or reminder in the user's dashboard.",
        {
            "title": {"type": "string"},
            "due_date": {"type": "string", "description": "ISO 8601 date"},
            "notes": {"type": "string"},
            "category": {
                "type": "string",
                "enum": ["release", "promotion", "networking", "creative", "business", "other"],
            },
        },
        ["title"],
    ),
    _function(
        "quick_music_tip",
        "Provide a quick, actionable music industry tip.",
        {
            "topic": {
                "type": "string",
                "enum": ["release_strategy", "social_media", "networking", "performance",
                         "production", "promotion", "general"],
            },
            "user_context": {"type": "string"},
        },
        ["topic", "user_context"],
    ),
    _function(
        "identify_user_need",
        "Ask a clarifying question when the user's need is unclear.",
        {
            "possible_intents": {
                "type": "array",
                "items": {
                    "type": "string",
                    "enum": ["save_content", "find_contacts", "create_task", "get_advice", "other"],
                },
            },
            "clarifying_question": {"type": "string"},
        },
        ["possible_intents", "clarifying_question"],
    ),
    _function(
        "get_artist_analytics",
        "Open analytics for an artist (stats, audience, top songs, events).",
        {
            "artist_name": {"type": "string"},
            "include_sections": {
                "type": "array",
                "items": {
                    "type": "string",
                    "enum": ["stats", "audience", "songs", "events", "playlists",
                             "similar_artists", "all"],
                },
            },
        },
        ["artist_name"],
    ),
]

TIPS: dict[str, tuple[str, ...]] = {
    "release_strategy": (
        "Release singles every 6-8 weeks to keep momentum with streaming algorithms",
        "Start teasing your release 2 weeks before with behind-the-scenes content",
        "Submit to playlists at least 4 weeks before your release date",
    ),
    "social_media": (
        "Post at 7PM your audience's local time for highest engagement",
        "Use 5-7 relevant hashtags, mixing popular and niche ones",
        "Reply to every comment in the first hour to boost engagement",
    ),
    "networking": (
        "Always follow up within 48 hours of meeting someone new",
        "Offer value before asking for favors - share their work first",
        "Keep a spreadsheet of contacts with notes about how you met",
    ),
}

_CLARIFY_ACTIONS = {
    "save_content": "Save inspiration to moodboard",
    "find_contacts": "Find music industry contacts",
    "create_task": "Set a reminder",
    "get_advice": "Get music career advice",
    "other": "Browse your dashboard",
}


class ToolHandlers:
    """Maps a requested function call to a ``RoutingResult``."""

    def __init__(
        self,
        dashboard_url: str = DEFAULT_DASHBOARD_URL,
        rng: random.Random | None = None,
    ) -> None:
        self._dashboard_url = dashboard_url
        self._rng = rng or random.Random()

    def link(self, **params: str) -> str:
        return dashboard_link(self._dashboard_url, **params)

    def handle(self, name: str, args: dict[str, Any]) -> RoutingResult:
        logger.info("Handling function call %s", name)
        handler = getattr(self, f"_handle_{name}", None)
        if handler is None:
            return RoutingResult(success=False, error="Unknown function", deep_link=self.link())
        try:
            return handler(args)
        except (KeyError, TypeError, AttributeError, ValidationError) as exc:
            logger.warning("Bad arguments for %s: %s", name, exc)
            return RoutingResult(success=False, error="Invalid arguments", deep_link=self.link())

    def _handle_save_to_moodboard(self, args: dict[str, Any]) -> RoutingResult:
        return RoutingResult(
            action="route_to_moodboard",
            deep_link=self.link(widget="moodboard", action="add", url=args["content_url"]),
            message=(
                "I'll save this to your moodboard! "
                "Tap the link to view and organize your inspiration."
            ),
        )

    def _handle_search_music_contacts(self, args: dict[str, Any]) -> RoutingResult:
        role = args["role"]
        location = args.get("location")
        query = " ".join(p for p in (role, location, args.get("genre")) if p)
        where = f" in {location}" if location else ""
        return RoutingResult(
            action="route_to_networking",
            deep_link=self.link(widget="networking", search=query),
            message=f"I'll help you find {role}s{where}. Tap to see your matches.",
        )

    def _handle_create_reminder_task(self, args: dict[str, Any]) -> RoutingResult:
        title = args["title"]
        return RoutingResult(
            action="route_to_tasks",
            deep_link=self.link(widget="tasks", action="create", title=title),
            message=f'Got it! I\'ll create a reminder for "{title}". Tap to add details.',
        )

    def _handle_get_artist_analytics(self, args: dict[str, Any]) -> RoutingResult:
        artist = args["artist_name"]
        return RoutingResult(
            action="show_artist_analytics",
            deep_link=self.link(widget="analytics", artist=artist),
            message=f"Here's where you can dig into {artist}'s numbers.",
        )

    def _handle_quick_music_tip(self, args: dict[str, Any]) -> RoutingResult:
        topic = args.get("topic") or "general"
        tip = self._rng.choice(TIPS.get(topic, TIPS["release_strategy"]))
        return RoutingResult(
            deep_link=self.link(widget="learn", topic=topic),
            message=f"Quick tip: {tip}",
            tip=tip,
        )

    def _handle_identify_user_need(self, args: dict[str, Any]) -> RoutingResult:
        intents = args.get("possible_intents") or []
        return RoutingResult(
            message=args["clarifying_question"],
            needs_clarification=True,
            possible_actions=[_CLARIFY_ACTIONS.get(i, i) for i in intents],
        )
