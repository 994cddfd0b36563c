"""URL content extraction for inbound messages.

Finds absolute URLs in message text, classifies platform post/reel/story links
by their path segments and resolves them through the oEmbed endpoint. Lookup
failures never surface to the user: a synthetic description inferred from the
URL shape is returned instead, with ``error`` set for diagnostics.
"""

from __future__ import annotations

import logging
import re
from urllib.parse import urlsplit

import httpx

from concierge.models import ContentType, ExtractedContent

logger = logging.getLogger(__name__)

GRAPH_API_BASE = "https://graph.facebook.com/v21.0"
_OEMBED_TIMEOUT_SECONDS = 6.0

_URL_RE = re.compile(r"https?://[^\s<>\"']+")
_TRAILING_PUNCTUATION = ".,;:!?)]}"

# (path pattern, content type); the id is always the last group.
_PATH_PATTERNS: tuple[tuple[re.Pattern[str], ContentType], ...] = (
    (re.compile(r"^/p/([A-Za-z0-9_-]+)"), ContentType.POST),
    (re.compile(r"^/reels?/([A-Za-z0-9_-]+)"), ContentType.REEL),
    (re.compile(r"^/tv/([A-Za-z0-9_-]+)"), ContentType.POST),
    (re.compile(r"^/stories/[^/]+/([A-Za-z0-9_-]+)"), ContentType.STORY),
)

_FALLBACK_DESCRIPTIONS = {
    ContentType.POST: (
        "Post shared - could be a photo, carousel, or video post. "
        "Perfect for your moodboard!"
    ),
    ContentType.REEL: (
        "Reel shared - likely a short video with music or creative content. "
        "Great for inspiration!"
    ),
    ContentType.STORY: (
        "Story shared - temporary content that often showcases behind-the-scenes "
        "moments or real-time updates."
    ),
}

_TYPE_LABELS = {
    ContentType.POST: "Post",
    ContentType.REEL: "Reel",
    ContentType.STORY: "Story",
}


def extract_urls(text: str) -> list[str]:
    """Return every absolute http(s) URL in ``text``, in order of appearance."""
    urls: list[str] = []
    for match in _URL_RE.finditer(text or ""):
        url = match.group(0).rstrip(_TRAILING_PUNCTUATION)
        if urlsplit(url).netloc:
            urls.append(url)
    return urls


class ContentExtractor:
    """Resolves URLs in a message into ``ExtractedContent`` records."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        app_token: str = "",
        platform_hosts: tuple[str, ...] = ("instagram.com",),
        oembed_url: str = f"{GRAPH_API_BASE}/instagram_oembed",
    ) -> None:
        self._client = client
        self._app_token = app_token
        self._platform_hosts = tuple(h.lower() for h in platform_hosts)
        self._oembed_url = oembed_url

    def _is_platform_host(self, host: str) -> bool:
        host = host.lower()
        return any(host == h or host.endswith(f".{h}") for h in self._platform_hosts)

    def _match(self, url: str) -> tuple[ContentType, str] | None:
        parts = urlsplit(url)
        if not parts.hostname or not self._is_platform_host(parts.hostname):
            return None
        for pattern, content_type in _PATH_PATTERNS:
            match = pattern.match(parts.path)
            if match:
                return content_type, match.group(1)
        return None

    def is_platform_url(self, url: str) -> bool:
        return self._match(url) is not None

    def extract_post_id(self, url: str) -> str | None:
        matched = self._match(url)
        return matched[1] if matched else None

    def classify(self, url: str) -> ContentType:
        matched = self._match(url)
        return matched[0] if matched else ContentType.GENERIC_LINK

    async def extract_platform_content(self, url: str) -> ExtractedContent:
        """Look up a platform link via oEmbed, falling back to a synthetic record."""
        content_type = self.classify(url)
        post_id = self.extract_post_id(url)

        params = {"url": url, "omitscript": "true"}
        if self._app_token:
            params["access_token"] = self._app_token

        try:
            resp = await self._client.get(
                self._oembed_url, params=params, timeout=_OEMBED_TIMEOUT_SECONDS,
            )
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning(
                "oEmbed lookup failed for %s, using fallback: %s",
                url.split("?")[0], exc,
            )
            return self._fallback(url, content_type, post_id)

        author = data.get("author_name")
        thumbnail = data.get("thumbnail_url")
        label = _TYPE_LABELS[content_type]
        return ExtractedContent(
            type=content_type,
            url=url,
            post_id=post_id,
            title=f"Post by @{author}" if author else f"Instagram {label}",
            description=data.get("title") or data.get("caption") or "Instagram content",
            media_urls=[thumbnail] if thumbnail else [],
            is_video=content_type == ContentType.REEL or data.get("type") == "video",
        )

    @staticmethod
    def _fallback(
        url: str, content_type: ContentType, post_id: str | None,
    ) -> ExtractedContent:
        label = _TYPE_LABELS[content_type]
        return ExtractedContent(
            type=content_type,
            url=url,
            post_id=post_id,
            title=f"Instagram {label} ({post_id or 'ID unavailable'})",
            description=_FALLBACK_DESCRIPTIONS[content_type],
            is_video=content_type == ContentType.REEL,
            error="Limited API access - content saved for moodboard organization",
        )

    async def process_url(self, url: str) -> ExtractedContent:
        if self.is_platform_url(url):
            return await self.extract_platform_content(url)
        return ExtractedContent(
            type=ContentType.GENERIC_LINK,
            url=url,
            title="External link",
            description="Link shared by user",
        )

    async def process_message(self, text: str) -> list[ExtractedContent]:
        """Extract content for every URL in ``text``. Lookups run sequentially."""
        results: list[ExtractedContent] = []
        for url in extract_urls(text):
            try:
                results.append(await self.process_url(url))
            except Exception as exc:  # one bad URL must not drop the others
                logger.exception("Failed to process URL %s", url.split("?")[0])
                results.append(ExtractedContent(
                    type=ContentType.GENERIC_LINK,
                    url=url,
                    error=f"Failed to process URL: {exc}",
                ))
        return results
