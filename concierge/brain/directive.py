"""Action directive parsing and rendering.

The model embeds at most one machine-readable block in its reply::

    Great tip!

    [ACTION]
    {"intent": "task.create", "entities": {}}
    [/ACTION]

The block is stripped from user-visible text. Parse failures are logged and
the directive is treated as absent.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass

from pydantic import ValidationError

from concierge.models import ActionDirective

logger = logging.getLogger(__name__)

ACTION_OPEN = "[ACTION]"
ACTION_CLOSE = "[/ACTION]"

_ACTION_BLOCK_RE = re.compile(r"\[ACTION\](.*?)\[/ACTION\]", re.DOTALL)
_CODE_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$")


@dataclass(frozen=True)
class ParsedReply:
    text: str
    directive: ActionDirective | None = None


def visible_text(text: str) -> str:
    """Return the human-readable portion: everything before the first marker."""
    return text.split(ACTION_OPEN, 1)[0].strip()


def _parse_body(body: str) -> ActionDirective | None:
    body = _CODE_FENCE_RE.sub("", body.strip())
    try:
        data = json.loads(body)
    except json.JSONDecodeError as exc:
        logger.warning("Failed to parse action directive JSON: %s", exc)
        return None
    if not isinstance(data, dict):
        logger.warning("Action directive is not a JSON object")
        return None
    try:
        return ActionDirective.model_validate(data)
    except ValidationError as exc:
        logger.warning("Invalid action directive: %s", exc.errors()[0]["msg"])
        return None


def parse_reply(raw: str) -> ParsedReply:
    """Split a model reply into visible text and its (optional) directive."""
    match = _ACTION_BLOCK_RE.search(raw)
    if match is None:
        if ACTION_OPEN in raw:
            # Unterminated block: hide it, no directive.
            return ParsedReply(text=visible_text(raw))
        return ParsedReply(text=raw.strip())

    directive = _parse_body(match.group(1))
    text = _ACTION_BLOCK_RE.sub("", raw)
    if ACTION_OPEN in text:
        text = text.split(ACTION_OPEN, 1)[0]
    return ParsedReply(text=text.strip(), directive=directive)


def render_directive(directive: ActionDirective) -> str:
    body = json.dumps(directive.model_dump(exclude_none=True), ensure_ascii=False)
    return f"{ACTION_OPEN}\n{body}\n{ACTION_CLOSE}"


def merge_directive(raw: str, routing: ActionDirective) -> str:
    """Merge ``routing`` into any directive already in ``raw`` and re-append one block.

    Keys from ``routing`` win; ``entities`` are merged key by key.
    """
    parsed = parse_reply(raw)
    merged = routing
    if parsed.directive is not None:
        existing = parsed.directive
        merged = ActionDirective(
            intent=routing.intent or existing.intent,
            entities={**existing.entities, **routing.entities},
            deep_link=routing.deep_link or existing.deep_link,
        )
    if parsed.text:
        return f"{parsed.text}\n\n{render_directive(merged)}"
    return render_directive(merged)
