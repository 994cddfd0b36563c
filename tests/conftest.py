"""Shared test fixtures for the DM concierge gateway."""

from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any

import httpx
import pytest

from concierge.brain.backend import BackendError, BackendReply, ToolCall
from concierge.config import GatewaySettings
from concierge.models import (
    ConversationTurn,
    EventStatus,
    EventType,
    WebhookEvent,
)

# Smallest valid PNG header plus padding; enough for magic-byte detection.
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32
JPEG_BYTES = b"\xff\xd8\xff\xe0" + b"\x00" * 32


# --- Factory functions for test data ---


def make_event(**kwargs: Any) -> WebhookEvent:
    """Factory for WebhookEvent with sensible defaults."""
    defaults: dict[str, object] = {
        "event_type": EventType.MESSAGE_RECEIVED,
        "sender_id": "user-1",
        "recipient_id": "page-1",
        "message_text": "hello",
        "status": EventStatus.PROCESSED,
    }
    defaults.update(kwargs)
    return WebhookEvent(**defaults)  # type: ignore[arg-type]


def make_turn(**kwargs: Any) -> ConversationTurn:
    return ConversationTurn(**kwargs)


def make_settings(**kwargs: Any) -> GatewaySettings:
    defaults: dict[str, object] = {
        "verify_token": "verify-me",
        "page_token": "page-token",
        "openai_api_key": "sk-test",
        "openai_base_url": "https://llm.test/v1",
    }
    defaults.update(kwargs)
    return GatewaySettings(**defaults)  # type: ignore[arg-type]


def chat_completion(
    content: str | None = None,
    tool_calls: list[dict[str, Any]] | None = None,
    model: str = "gpt-4o",
) -> dict[str, Any]:
    """Build an OpenAI-compatible chat completion response body."""
    message: dict[str, Any] = {"role": "assistant", "content": content}
    if tool_calls:
        message["tool_calls"] = tool_calls
    return {
        "model": model,
        "choices": [{"index": 0, "message": message, "finish_reason": "stop"}],
    }


def tool_call(name: str, arguments: dict[str, Any], call_id: str = "call_1") -> dict[str, Any]:
    return {
        "id": call_id,
        "type": "function",
        "function": {"name": name, "arguments": json.dumps(arguments)},
    }


def instagram_payload(
    text: str | None = "hello",
    sender: str = "user-1",
    recipient: str = "page-1",
    is_echo: bool = False,
    attachments: list[dict[str, Any]] | None = None,
    mid: str = "mid.1",
) -> dict[str, Any]:
    message: dict[str, Any] = {"mid": mid}
    if text is not None:
        message["text"] = text
    if is_echo:
        message["is_echo"] = True
    if attachments:
        message["attachments"] = attachments
    return {
        "object": "instagram",
        "entry": [{
            "id": recipient,
            "time": 1700000000,
            "messaging": [{
                "sender": {"id": sender},
                "recipient": {"id": recipient},
                "timestamp": 1700000000000,
                "message": message,
            }],
        }],
    }


class FakeBackend:
    """Stands in for ChatBackend: returns scripted replies and records calls."""

    def __init__(
        self,
        replies: list[BackendReply | BaseException] | None = None,
        name: str = "general",
    ) -> None:
        self.name = name
        self._replies = list(replies or [])
        self.calls: list[dict[str, Any]] = []

    async def complete(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        tool_choice: Any = None,
    ) -> BackendReply:
        self.calls.append({"messages": messages, "tools": tools, "tool_choice": tool_choice})
        if not self._replies:
            raise BackendError("no scripted reply")
        reply = self._replies.pop(0)
        if isinstance(reply, BaseException):
            raise reply
        return reply


def text_reply(content: str) -> BackendReply:
    return BackendReply(content=content)


def tool_reply(name: str, arguments: dict[str, Any], content: str | None = None) -> BackendReply:
    return BackendReply(content=content, tool_calls=[ToolCall(name=name, arguments=arguments)])


@pytest.fixture
def fake_backend() -> Callable[..., FakeBackend]:
    return FakeBackend


@pytest.fixture
def mock_transport_client() -> Callable[..., httpx.AsyncClient]:
    """Build an AsyncClient whose requests are answered by ``handler``."""

    def _create(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    return _create
