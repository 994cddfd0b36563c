"""Media accessibility proxy.

Turns private or platform-internal media references into something the model
backend can consume: known-public URLs and data URLs pass through, attachment
IDs are resolved to a media URL, and everything else is fetched (bounded time
and size, image content types only) and embedded as a ``data:`` URL. The
caller always gets a URL or ``None``; this module never raises.
"""

from __future__ import annotations

import base64
import hashlib
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING
from urllib.parse import urlsplit

import httpx

from concierge.extraction.posts import looks_like_attachment_id

if TYPE_CHECKING:
    from concierge.extraction.posts import PostResolver

logger = logging.getLogger(__name__)

DEFAULT_PUBLIC_DOMAINS = (
    "images.unsplash.com",
    "cdn.pixabay.com",
    "i.imgur.com",
    "raw.githubusercontent.com",
    "picsum.photos",
)

# Hosts that accept the page credential as a bearer token.
_AUTHENTICATED_HOSTS = ("instagram.com", "cdninstagram.com", "fbcdn.net", "graph.facebook.com")

_CACHE_TTL_SECONDS = 600
_MAX_BYTES = 10 * 1024 * 1024
_MAX_DATA_URL_CHARS = 6000 * 1024
_FETCH_TIMEOUT_SECONDS = 10.0
_USER_AGENT = "concierge-gateway/1.0"


class MediaFetchError(Exception):
    """Raised internally when media bytes cannot be fetched."""


def detect_mime_type(data: bytes) -> str:
    """Detect the image format from magic bytes. Unknown formats default to JPEG."""
    if data[:4] == b"\x89PNG":
        return "image/png"
    if data[:3] == b"\xff\xd8\xff":
        return "image/jpeg"
    if data[:4] == b"GIF8":
        return "image/gif"
    if data[:4] == b"RIFF":
        return "image/webp"
    return "image/jpeg"


def _host_matches(host: str, domains: tuple[str, ...]) -> bool:
    return any(host == d or host.endswith(f".{d}") for d in domains)


@dataclass
class _CacheEntry:
    data_url: str
    expires_at: float


class MediaProxy:
    """Converts media references into model-consumable URLs with a short TTL cache."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        resolver: PostResolver | None = None,
        public_domains: tuple[str, ...] = DEFAULT_PUBLIC_DOMAINS,
        cache_ttl_seconds: int = _CACHE_TTL_SECONDS,
        max_bytes: int = _MAX_BYTES,
        max_data_url_chars: int = _MAX_DATA_URL_CHARS,
        timeout: float = _FETCH_TIMEOUT_SECONDS,
    ) -> None:
        self._client = client
        self._resolver = resolver
        self._public_domains = public_domains
        self._cache_ttl_seconds = cache_ttl_seconds
        self._max_bytes = max_bytes
        self._max_data_url_chars = max_data_url_chars
        self._timeout = timeout
        self._cache: dict[str, _CacheEntry] = {}

    def is_public_url(self, url: str) -> bool:
        if url.startswith("data:image/"):
            return True
        host = urlsplit(url).hostname or ""
        return bool(host) and _host_matches(host, self._public_domains)

    @staticmethod
    def cache_key(url: str) -> str:
        return hashlib.sha256(url.encode()).hexdigest()

    async def make_accessible(
        self, url_or_id: str, access_token: str | None = None,
    ) -> str | None:
        """Return a public or data URL for ``url_or_id``, or ``None`` (fail closed)."""
        try:
            return await self._make_accessible(url_or_id, access_token)
        except Exception:  # contract: never raise to the caller
            logger.exception("Unexpected error proxying media")
            return None

    async def _make_accessible(
        self, url_or_id: str, access_token: str | None,
    ) -> str | None:
        if not url_or_id:
            return None
        if self.is_public_url(url_or_id):
            return url_or_id

        url = url_or_id
        if looks_like_attachment_id(url_or_id):
            if not (access_token and self._resolver):
                logger.info("Cannot resolve attachment %s without a credential", url_or_id)
                return None
            meta = await self._resolver.from_attachment_id(url_or_id, access_token)
            url = (meta.media_url or meta.thumbnail_url) if meta else None
            if not url:
                return None
            if self.is_public_url(url):
                return url

        key = self.cache_key(url)
        cached = self._cache.get(key)
        if cached and cached.expires_at > time.time():
            logger.debug("Using cached data URL for media")
            return cached.data_url

        try:
            data = await self._fetch_with_fallback(url, access_token)
        except MediaFetchError as exc:
            logger.warning("Could not fetch media %s: %s", url.split("?")[0], exc)
            return None

        encoded = base64.b64encode(data).decode("ascii")
        data_url = f"data:{detect_mime_type(data)};base64,{encoded}"
        if len(data_url) > self._max_data_url_chars:
            logger.warning(
                "Embedded media too large (%dKB), rejecting", len(data_url) // 1024,
            )
            return None

        self._cache[key] = _CacheEntry(
            data_url=data_url, expires_at=time.time() + self._cache_ttl_seconds,
        )
        logger.info("Converted media to data URL (%dKB)", len(encoded) // 1024)
        return data_url

    async def _fetch_with_fallback(self, url: str, access_token: str | None) -> bytes:
        host = urlsplit(url).hostname or ""
        use_auth = bool(access_token) and _host_matches(host, _AUTHENTICATED_HOSTS)
        try:
            return await self._fetch(url, access_token if use_auth else None)
        except MediaFetchError:
            if not use_auth:
                raise
            logger.info("Retrying media fetch without platform authentication")
            return await self._fetch(url, None)

    async def _fetch(self, url: str, access_token: str | None) -> bytes:
        headers = {"User-Agent": _USER_AGENT}
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"

        try:
            async with self._client.stream(
                "GET", url, headers=headers, timeout=self._timeout,
            ) as resp:
                if resp.status_code >= 400:
                    raise MediaFetchError(f"HTTP {resp.status_code}")

                content_type = resp.headers.get("content-type", "").lower()
                if not content_type.startswith("image/"):
                    raise MediaFetchError(f"not an image: {content_type or 'unknown'}")

                declared = resp.headers.get("content-length")
                if declared and declared.isdigit() and int(declared) > self._max_bytes:
                    raise MediaFetchError(f"declared size {declared} exceeds limit")

                buf = bytearray()
                async for chunk in resp.aiter_bytes():
                    buf.extend(chunk)
                    if len(buf) > self._max_bytes:
                        raise MediaFetchError("size limit exceeded")
                return bytes(buf)
        except httpx.HTTPError as exc:
            raise MediaFetchError(str(exc)) from exc

    def cleanup_cache(self) -> int:
        """Drop expired cache entries; returns how many were removed."""
        now = time.time()
        expired = [k for k, entry in self._cache.items() if entry.expires_at <= now]
        for key in expired:
            del self._cache[key]
        if expired:
            logger.info("Cleaned up %d expired media cache entries", len(expired))
        return len(expired)

    def cache_stats(self) -> dict[str, int]:
        total = sum(len(entry.data_url) for entry in self._cache.values())
        return {"entries": len(self._cache), "total_size_kb": round(total / 1024)}
