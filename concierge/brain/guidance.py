"""Intent guidance: deep links for directives that arrive without one."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol
from urllib.parse import urlencode

from concierge.models import Intent

DEFAULT_DASHBOARD_URL = "https://app.loop.com/open"


def dashboard_link(base_url: str, **params: str) -> str:
    """Dashboard URL with the non-empty ``params`` and the DM tracking tag."""
    query = {k: v for k, v in params.items() if v}
    query["utm"] = "ig_dm"
    return f"{base_url}?{urlencode(query)}"


@dataclass(frozen=True)
class IntentGuidanceResult:
    intent: str
    deep_link: str
    guidance_message: str
    entities: dict[str, Any] = field(default_factory=dict)


class IntentGuidance(Protocol):
    async def process_intent(
        self, intent: str, entities: dict[str, Any],
    ) -> IntentGuidanceResult: ...


class DashboardGuidance:
    """Builds dashboard deep links from an intent. Performs no mutations."""

    def __init__(self, dashboard_url: str = DEFAULT_DASHBOARD_URL) -> None:
        self._dashboard_url = dashboard_url

    def _link(self, **params: str) -> str:
        return dashboard_link(self._dashboard_url, **params)

    async def process_intent(
        self, intent: str, entities: dict[str, Any],
    ) -> IntentGuidanceResult:
        if intent == Intent.MOODBOARD_ADD.value:
            return IntentGuidanceResult(
                intent=intent,
                entities=entities,
                deep_link=self._link(widget="moodboard", action="add"),
                guidance_message="Head to your Moodboard to add this inspiration",
            )
        if intent == Intent.NETWORK_SUGGEST.value:
            parts = [str(entities[k]) for k in ("role", "city", "genre") if entities.get(k)]
            return IntentGuidanceResult(
                intent=intent,
                entities=entities,
                deep_link=self._link(widget="networking", search=" ".join(parts)),
                guidance_message="Check your Networking tab for relevant contacts",
            )
        if intent == Intent.TASK_CREATE.value:
            return IntentGuidanceResult(
                intent=intent,
                entities=entities,
                deep_link=self._link(widget="tasks", action="create"),
                guidance_message="Visit your Tasks to add this reminder",
            )
        if intent == Intent.STRATEGY_RECOMMEND.value:
            return IntentGuidanceResult(
                intent=intent,
                entities=entities,
                deep_link=self._link(widget="strategy"),
                guidance_message="Open Strategy for a tailored plan",
            )
        return IntentGuidanceResult(
            intent=Intent.CHAT_GENERIC.value,
            deep_link=self._link(),
            guidance_message="Check your dashboard",
        )
