"""Caption and media resolution for shared posts and DM attachments.

Attachment IDs are looked up as Graph API nodes with the page credential;
permalinks go through oEmbed with the app credential. Every lookup returns
``None`` on failure.
"""

from __future__ import annotations

import logging
import re
from urllib.parse import urlsplit

import httpx

from concierge.extraction.content import GRAPH_API_BASE
from concierge.models import PostMetadata

logger = logging.getLogger(__name__)

_LOOKUP_TIMEOUT_SECONDS = 6.0
_ATTACHMENT_FIELDS = "file_url,image_url,media_url,thumbnail_url,name,mime_type"
_ATTACHMENT_ID_RE = re.compile(r"^\d+$")


def looks_like_attachment_id(value: str | None) -> bool:
    return bool(value) and _ATTACHMENT_ID_RE.match(value or "") is not None


def is_platform_permalink(value: str | None, host: str = "instagram.com") -> bool:
    if not value:
        return False
    hostname = urlsplit(value).hostname or ""
    return hostname == host or hostname.endswith(f".{host}")


class PostResolver:
    """Resolves attachment IDs and permalinks to ``PostMetadata``."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        api_base: str = GRAPH_API_BASE,
    ) -> None:
        self._client = client
        self._api_base = api_base.rstrip("/")

    async def from_attachment_id(
        self, attachment_id: str, page_token: str,
    ) -> PostMetadata | None:
        try:
            resp = await self._client.get(
                f"{self._api_base}/{attachment_id}",
                params={"fields": _ATTACHMENT_FIELDS, "access_token": page_token},
                timeout=_LOOKUP_TIMEOUT_SECONDS,
            )
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Attachment lookup failed for %s: %s", attachment_id, exc)
            return None

        media_url = data.get("image_url") or data.get("media_url") or data.get("file_url")
        thumbnail_url = data.get("thumbnail_url") or media_url
        if not media_url and not thumbnail_url:
            logger.info("No media URL found for attachment %s", attachment_id)
            return None

        mime_type = data.get("mime_type") or ""
        return PostMetadata(
            caption=data.get("name") or None,
            thumbnail_url=thumbnail_url,
            media_url=media_url,
            media_type="IMAGE" if mime_type.startswith("image/") else "VIDEO",
            source="graph_attachment",
        )

    async def from_permalink(
        self, permalink: str, app_token: str,
    ) -> PostMetadata | None:
        clean = permalink.split("?")[0]
        try:
            resp = await self._client.get(
                f"{self._api_base}/instagram_oembed",
                params={"url": permalink, "access_token": app_token, "omitscript": "true"},
                timeout=_LOOKUP_TIMEOUT_SECONDS,
            )
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("oEmbed resolve failed for %s: %s", clean, exc)
            return None

        # oEmbed carries the caption in ``title``; reels still return a thumbnail.
        return PostMetadata(
            caption=data.get("title") or None,
            thumbnail_url=data.get("thumbnail_url") or None,
            permalink=permalink if data.get("provider_url") else None,
            author_name=data.get("author_name") or None,
            media_type="IMAGE",
            source="oembed",
        )

    async def resolve(
        self,
        url_or_id: str,
        page_token: str | None = None,
        app_token: str | None = None,
    ) -> PostMetadata | None:
        if looks_like_attachment_id(url_or_id) and page_token:
            return await self.from_attachment_id(url_or_id, page_token)
        if is_platform_permalink(url_or_id) and app_token:
            return await self.from_permalink(url_or_id, app_token)
        logger.debug("Cannot resolve %s: missing credential or unrecognized format",
                     url_or_id.split("?")[0])
        return None
