"""Outbound delivery through the platform Send API.

Every call (message, seen marker, typing indicator) goes through the same
rate-limit check and retry loop: 4xx responses fail immediately, 5xx and
transport errors are retried with exponential backoff.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

import httpx

from concierge.brain.directive import parse_reply
from concierge.brain.guidance import DEFAULT_DASHBOARD_URL
from concierge.extraction.content import GRAPH_API_BASE

if TYPE_CHECKING:
    from concierge.delivery.rate_limiter import SlidingWindowRateLimiter

logger = logging.getLogger(__name__)

_MAX_ATTEMPTS = 3
_BASE_DELAY_SECONDS = 1.0
_SEND_TIMEOUT_SECONDS = 10.0
_QUICK_REPLY_TITLE_LIMIT = 20


class DeliveryError(Exception):
    """Raised when an outbound call fails for good."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RateLimitExceededError(DeliveryError):
    """Raised before any network call when the sliding window is full."""


class OutboundMessenger:
    """Sends replies and presence signals to a platform user."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        rate_limiter: SlidingWindowRateLimiter,
        api_base: str = GRAPH_API_BASE,
        default_deep_link: str = DEFAULT_DASHBOARD_URL,
        quick_reply_title: str = "Open Loop Dashboard",
        max_attempts: int = _MAX_ATTEMPTS,
        base_delay: float = _BASE_DELAY_SECONDS,
        timeout: float = _SEND_TIMEOUT_SECONDS,
    ) -> None:
        self._client = client
        self._rate_limiter = rate_limiter
        self._api_base = api_base.rstrip("/")
        self._default_deep_link = default_deep_link
        self._quick_reply_title = quick_reply_title[:_QUICK_REPLY_TITLE_LIMIT]
        self._max_attempts = max(1, max_attempts)
        self._base_delay = base_delay
        self._timeout = timeout

    def build_message(self, recipient_id: str, text: str) -> dict[str, Any]:
        """Strip the directive and attach one quick reply pointing at its deep link."""
        parsed = parse_reply(text)
        deep_link = self._default_deep_link
        if parsed.directive is not None and parsed.directive.deep_link:
            deep_link = parsed.directive.deep_link
        return {
            "recipient": {"id": recipient_id},
            "messaging_type": "RESPONSE",
            "message": {
                "text": parsed.text,
                "quick_replies": [{
                    "content_type": "text",
                    "title": self._quick_reply_title,
                    "payload": deep_link,
                }],
            },
        }

    async def send(self, recipient_id: str, text: str, access_token: str) -> dict[str, Any]:
        return await self._post(self.build_message(recipient_id, text), access_token)

    async def mark_seen(self, recipient_id: str, access_token: str) -> dict[str, Any]:
        return await self._post(
            {"recipient": {"id": recipient_id}, "sender_action": "mark_seen"},
            access_token,
        )

    async def set_typing(
        self, recipient_id: str, access_token: str, on: bool = True,
    ) -> dict[str, Any]:
        return await self._post(
            {
                "recipient": {"id": recipient_id},
                "sender_action": "typing_on" if on else "typing_off",
            },
            access_token,
        )

    async def _post(self, payload: dict[str, Any], access_token: str) -> dict[str, Any]:
        if not self._rate_limiter.can_make_request():
            raise RateLimitExceededError("Outbound rate limit exceeded")
        self._rate_limiter.record_request()

        url = f"{self._api_base}/me/messages"
        last_error = DeliveryError("Send API request failed")
        for attempt in range(1, self._max_attempts + 1):
            try:
                resp = await self._client.post(
                    url,
                    params={"access_token": access_token},
                    json=payload,
                    timeout=self._timeout,
                )
            except httpx.HTTPError as exc:
                last_error = DeliveryError(f"Send API request failed: {exc}")
            else:
                if resp.status_code < 400:
                    return self._json_or_empty(resp)
                error = DeliveryError(
                    f"Send API returned {resp.status_code}: {resp.text[:200]}",
                    status_code=resp.status_code,
                )
                if resp.status_code < 500:
                    raise error
                last_error = error

            logger.warning(
                "Send attempt %d/%d failed: %s", attempt, self._max_attempts, last_error,
            )
            if attempt < self._max_attempts:
                await asyncio.sleep(self._base_delay * 2 ** (attempt - 1))

        raise last_error

    @staticmethod
    def _json_or_empty(resp: httpx.Response) -> dict[str, Any]:
        try:
            data = resp.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}
