"""OpenAI-compatible chat-completions backend over httpx."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

logger = logging.getLogger(__name__)


class BackendError(Exception):
    """Raised when the model backend cannot produce a reply."""


class MissingCredentialError(BackendError):
    """Raised when the backend has no API key configured."""


@dataclass(frozen=True)
class ToolCall:
    name: str
    arguments: dict[str, Any]
    id: str | None = None


@dataclass
class BackendReply:
    content: str | None
    tool_calls: list[ToolCall] = field(default_factory=list)
    model: str | None = None


def _parse_arguments(raw: Any) -> dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except (TypeError, json.JSONDecodeError):
        logger.warning("Discarding unparseable tool arguments")
        return {}
    return parsed if isinstance(parsed, dict) else {}


def _extract_tool_calls(message: dict[str, Any]) -> list[ToolCall]:
    calls: list[ToolCall] = []
    raw_calls = message.get("tool_calls")
    for raw in raw_calls if isinstance(raw_calls, list) else []:
        func = raw.get("function") if isinstance(raw, dict) else None
        name = func.get("name") if isinstance(func, dict) else None
        if not name or not isinstance(name, str):
            logger.warning("Skipping malformed tool call")
            continue
        calls.append(ToolCall(
            name=name, arguments=_parse_arguments(func.get("arguments")), id=raw.get("id"),
        ))
    # Legacy single function_call shape
    legacy = message.get("function_call")
    if not calls and isinstance(legacy, dict) and legacy.get("name"):
        calls.append(ToolCall(
            name=legacy["name"], arguments=_parse_arguments(legacy.get("arguments")),
        ))
    return calls


class ChatBackend:
    """One remote model provider reachable through ``/chat/completions``."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: str,
        api_key: str,
        model: str,
        name: str = "general",
        timeout: float = 10.0,
        max_tokens: int = 500,
        temperature: float = 0.7,
    ) -> None:
        self._client = client
        self._base_url = base_url
        self._api_key = api_key
        self.model = model
        self.name = name
        self._timeout = timeout
        self._max_tokens = max_tokens
        self._temperature = temperature

    async def complete(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        tool_choice: str | dict[str, Any] | None = None,
    ) -> BackendReply:
        if not self._api_key:
            raise MissingCredentialError(f"API key is not configured for {self.name} backend")

        body: dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "max_tokens": self._max_tokens,
            "temperature": self._temperature,
        }
        if tools:
            body["tools"] = tools
            if tool_choice is not None:
                body["tool_choice"] = tool_choice

        url = f"{self._base_url.rstrip('/')}/chat/completions"
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

        try:
            resp = await self._client.post(
                url, json=body, headers=headers, timeout=self._timeout,
            )
        except httpx.TimeoutException as exc:
            raise BackendError(f"{self.name} backend timed out") from exc
        except httpx.HTTPError as exc:
            raise BackendError(f"{self.name} backend unavailable: {exc}") from exc

        if resp.status_code >= 400:
            raise BackendError(
                f"{self.name} backend returned {resp.status_code}: {resp.text[:200]}"
            )

        try:
            payload = resp.json()
            choice = payload["choices"][0]
            message = choice.get("message") or {}
            content = message.get("content")
        except (json.JSONDecodeError, KeyError, IndexError, TypeError, AttributeError) as exc:
            raise BackendError(f"Malformed response from model {self.model}") from exc
        if content is not None and not isinstance(content, str):
            raise BackendError(f"Malformed response from model {self.model}")

        reply = BackendReply(
            content=content,
            tool_calls=_extract_tool_calls(message),
            model=payload.get("model", self.model),
        )
        logger.debug(
            "%s backend replied (model=%s, finish=%s, tool_calls=%d)",
            self.name, reply.model, choice.get("finish_reason"), len(reply.tool_calls),
        )
        return reply
