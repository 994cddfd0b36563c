"""Instagram messaging webhook: signature check, subscription handshake and
payload normalization.

Both delivery shapes are accepted: ``entry[].messaging[]`` events and
``entry[].changes[].value`` events, normalized into ``InboundEvent``.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from typing import Any

from concierge.models import MediaAttachment
from concierge.webhook.models import InboundEvent

logger = logging.getLogger(__name__)


class InstagramWebhook:
    def __init__(self, app_secret: str, verify_token: str) -> None:
        self._app_secret = app_secret
        self._verify_token = verify_token

    @property
    def signature_required(self) -> bool:
        return bool(self._app_secret)

    def verify_signature(self, headers: dict[str, str], body: bytes) -> bool:
        """Verify the ``X-Hub-Signature-256`` HMAC of the raw body.

        Uses a constant-time comparison.
        """
        signature = headers.get("x-hub-signature-256", "")
        if not signature.startswith("sha256="):
            return False

        expected = hmac.new(
            self._app_secret.encode(), body, hashlib.sha256,
        ).hexdigest()
        return hmac.compare_digest(signature[7:], expected)

    def handle_verification(self, params: dict[str, str]) -> dict[str, Any]:
        """Answer the subscription handshake (GET).

        Returns the challenge on a valid subscribe, 403 on a wrong token and
        400 when mode or token is missing.
        """
        mode = params.get("hub.mode")
        token = params.get("hub.verify_token")
        if not mode or token is None:
            return {"status_code": 400, "error": "Missing hub.mode or hub.verify_token"}

        if mode == "subscribe" and self._verify_token and hmac.compare_digest(
            token.encode(), self._verify_token.encode(),
        ):
            return {"status_code": 200, "content": params.get("hub.challenge", "")}
        return {"status_code": 403, "error": "Invalid verify token"}

    def extract_events(
        self, payload: dict[str, Any], include_echoes: bool = False,
    ) -> list[InboundEvent]:
        """Normalize every message event in ``payload``.

        Events without a ``message`` (reads, deliveries, reactions) are
        ignored. Echoes of our own sends are dropped unless ``include_echoes``.
        """
        if payload.get("object") != "instagram":
            return []

        events: list[InboundEvent] = []
        for entry in payload.get("entry") or []:
            raw_events = list(entry.get("messaging") or [])
            for change in entry.get("changes") or []:
                value = change.get("value")
                if isinstance(value, dict):
                    raw_events.append(value)

            for raw in raw_events:
                event = _normalize(raw)
                if event is None:
                    continue
                if event.is_echo and not include_echoes:
                    logger.debug("Discarding echo message %s", event.mid)
                    continue
                events.append(event)
        return events


def _normalize(raw: dict[str, Any]) -> InboundEvent | None:
    message = raw.get("message")
    if not isinstance(message, dict):
        return None

    attachments = []
    for item in message.get("attachments") or []:
        payload = item.get("payload") or {}
        attachments.append(MediaAttachment(
            type=item.get("type") or "unknown",
            url=payload.get("url"),
            title=item.get("title") or payload.get("title"),
        ))

    try:
        timestamp = int(raw.get("timestamp") or 0)
    except (TypeError, ValueError):
        timestamp = 0

    return InboundEvent(
        sender_id=str((raw.get("sender") or {}).get("id", "")),
        recipient_id=str((raw.get("recipient") or {}).get("id", "")),
        timestamp=timestamp,
        text=message.get("text"),
        mid=message.get("mid"),
        attachments=attachments,
        is_echo=bool(message.get("is_echo")),
    )
