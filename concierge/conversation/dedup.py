"""Decides whether the current turn's images still need visual analysis.

Primary signal: the conversation's persisted set of analyzed media keys
(SHA-256 of the normalized URL), checked by exact membership. When no marker
set is available, prior assistant replies are scanned for vocabulary that
vision output typically contains.
"""

from __future__ import annotations

import hashlib
import re
from collections.abc import Iterable
from urllib.parse import urlsplit, urlunsplit

from concierge.brain.directive import visible_text
from concierge.models import ConversationTurn

VISION_EVIDENCE_MARKERS = frozenset({
    "venue", "studio", "stage", "instrument", "instruments", "guitar", "piano",
    "drums", "microphone", "synth", "turntables", "lighting", "neon",
    "backdrop", "architecture", "ornate", "historic", "facade",
})

_WORD_RE = re.compile(r"[a-z]+")


def normalize_media_url(url: str) -> str:
    """Lowercase scheme and host and drop the fragment; path and query are kept."""
    parts = urlsplit(url.strip())
    if not parts.scheme:
        return url.strip()
    return urlunsplit((
        parts.scheme.lower(), parts.netloc.lower(), parts.path, parts.query, "",
    ))


def media_key(url: str) -> str:
    return hashlib.sha256(normalize_media_url(url).encode()).hexdigest()


def media_keys(urls: Iterable[str]) -> set[str]:
    return {media_key(u) for u in urls if u}


def has_vision_evidence(history: list[ConversationTurn]) -> bool:
    for turn in history:
        if not turn.assistant_text:
            continue
        words = set(_WORD_RE.findall(visible_text(turn.assistant_text).lower()))
        if words & VISION_EVIDENCE_MARKERS:
            return True
    return False


class AnalysisDedupGate:
    """Pure decision function; same inputs always give the same answer."""

    def should_analyze(
        self,
        image_urls: list[str],
        history: list[ConversationTurn],
        analyzed_keys: set[str] | None = None,
    ) -> bool:
        candidates = media_keys(image_urls)
        if not candidates:
            return False
        if analyzed_keys is not None:
            return not candidates <= analyzed_keys
        return not has_vision_evidence(history)
