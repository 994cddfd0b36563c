"""Backend provider selection.

A pure function over the turn's inputs. Rules are evaluated in full and the
set of matched categories decides:

- any function-request rule or extracted/visual content -> general provider
- only analytical-category rules matched (and routing enabled) -> analytical
- mixed matches, no matches, or routing disabled -> general provider
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Provider(str, Enum):
    GENERAL = "general"
    ANALYTICAL = "analytical"


@dataclass(frozen=True)
class RoutingRule:
    category: str
    provider: Provider
    keywords: tuple[str, ...]
    requires_all_groups: tuple[tuple[str, ...], ...] = ()

    def matches(self, text: str) -> bool:
        if not any(k in text for k in self.keywords):
            return False
        return all(any(k in text for k in group) for group in self.requires_all_groups)


@dataclass(frozen=True)
class ProviderChoice:
    provider: Provider
    reason: str
    matched: tuple[str, ...] = ()


# Function-request rules: these turns need the tool catalog.
FUNCTION_RULES: tuple[RoutingRule, ...] = (
    RoutingRule("function_request", Provider.GENERAL, (
        "save", "remind", "moodboard", "search for contacts", "search contacts",
        "find contacts", "analytics dashboard", "get analytics", "show analytics",
    )),
)

POLICY_RULES: tuple[RoutingRule, ...] = (
    RoutingRule("analytical", Provider.ANALYTICAL, (
        "analyze", "research", "compare", "market", "trends", "data",
        "explain", "how does", "why does",
    )),
    RoutingRule(
        "creative_writing", Provider.ANALYTICAL, ("write", "create", "draft"),
        requires_all_groups=(("bio", "press", "description", "story", "content", "post"),),
    ),
    RoutingRule("strategic_planning", Provider.ANALYTICAL, (
        "plan", "roadmap", "long-term", "comprehensive", "detailed strategy",
    )),
    RoutingRule("actionable_advice", Provider.GENERAL, (
        "quick", "tip", "help", "advice", "suggestion", "recommend",
        "promote", "grow", "boost",
    )),
)


def select_provider(
    user_text: str,
    has_extracted_content: bool = False,
    has_media: bool = False,
    analytical_enabled: bool = False,
) -> ProviderChoice:
    text = (user_text or "").lower()

    function_hits = tuple(r.category for r in FUNCTION_RULES if r.matches(text))
    if function_hits:
        return ProviderChoice(Provider.GENERAL, "function request", function_hits)

    if has_extracted_content or has_media:
        return ProviderChoice(Provider.GENERAL, "extracted or visual content")

    if not analytical_enabled:
        return ProviderChoice(Provider.GENERAL, "analytical routing disabled")

    matched = [r for r in POLICY_RULES if r.matches(text)]
    categories = tuple(r.category for r in matched)
    providers = {r.provider for r in matched}
    if len(providers) == 1:
        provider = providers.pop()
        return ProviderChoice(provider, f"matched {', '.join(categories)}", categories)
    if len(providers) > 1:
        return ProviderChoice(Provider.GENERAL, "tie between providers", categories)
    return ProviderChoice(Provider.GENERAL, "default")
