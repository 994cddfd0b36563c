"""Tests for the OpenAI-compatible chat backend."""

from __future__ import annotations

import json

import httpx
import pytest

from concierge.brain.backend import BackendError, ChatBackend, MissingCredentialError
from tests.conftest import chat_completion, tool_call


def _backend(handler, api_key: str = "sk-test") -> ChatBackend:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ChatBackend(client, "https://llm.test/v1/", api_key, "gpt-4o", name="general")


class TestComplete:
    @pytest.mark.asyncio
    async def test_text_reply(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=chat_completion("hello there"))

        reply = await _backend(handler).complete([{"role": "user", "content": "hi"}])
        assert reply.content == "hello there"
        assert reply.tool_calls == []
        assert str(seen[0].url) == "https://llm.test/v1/chat/completions"
        assert seen[0].headers["authorization"] == "Bearer sk-test"
        body = json.loads(seen[0].content)
        assert body["model"] == "gpt-4o"
        assert "tools" not in body

    @pytest.mark.asyncio
    async def test_tools_sent_and_calls_parsed(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=chat_completion(
                None, [tool_call("create_reminder_task", {"title": "Mix EP"})],
            ))

        tools = [{"type": "function", "function": {"name": "create_reminder_task"}}]
        reply = await _backend(handler).complete([], tools=tools, tool_choice="auto")
        assert reply.content is None
        assert reply.tool_calls[0].name == "create_reminder_task"
        assert reply.tool_calls[0].arguments == {"title": "Mix EP"}
        body = json.loads(seen[0].content)
        assert body["tools"] == tools
        assert body["tool_choice"] == "auto"

    @pytest.mark.asyncio
    async def test_legacy_function_call(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            payload = chat_completion(None)
            payload["choices"][0]["message"]["function_call"] = {
                "name": "quick_music_tip", "arguments": '{"topic": "networking"}',
            }
            return httpx.Response(200, json=payload)

        reply = await _backend(handler).complete([])
        assert reply.tool_calls[0].name == "quick_music_tip"
        assert reply.tool_calls[0].arguments == {"topic": "networking"}

    @pytest.mark.asyncio
    async def test_unparseable_arguments_become_empty(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            call = {"id": "c", "type": "function",
                    "function": {"name": "quick_music_tip", "arguments": "{oops"}}
            return httpx.Response(200, json=chat_completion(None, [call]))

        reply = await _backend(handler).complete([])
        assert reply.tool_calls[0].arguments == {}

    @pytest.mark.asyncio
    async def test_malformed_tool_calls_skipped(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=chat_completion("ok", [
                "oops", {"function": "quick_music_tip"}, {"function": {"name": 7}},
                tool_call("quick_music_tip", {"topic": "networking"}),
            ]))

        reply = await _backend(handler).complete([])
        assert reply.content == "ok"
        assert [c.name for c in reply.tool_calls] == ["quick_music_tip"]


class TestErrors:
    @pytest.mark.asyncio
    async def test_missing_api_key(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        with pytest.raises(MissingCredentialError, match="API key"):
            await _backend(handler, api_key="").complete([])

    @pytest.mark.asyncio
    async def test_http_error_status(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404, json={"error": {"message": "The model does not exist"}})

        with pytest.raises(BackendError, match="404"):
            await _backend(handler).complete([])

    @pytest.mark.asyncio
    async def test_timeout(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(BackendError, match="timed out"):
            await _backend(handler).complete([])

    @pytest.mark.asyncio
    async def test_malformed_response_mentions_model(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"choices": []})

        with pytest.raises(BackendError, match="model"):
            await _backend(handler).complete([])

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [
        {"choices": ["oops"]},
        {"choices": [{"message": "oops"}]},
        {"choices": [{"message": {"content": {"text": "hi"}}}]},
        ["choices"],
        "choices",
    ])
    async def test_unexpected_shapes_raise_backend_error(self, payload: object) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=payload)

        with pytest.raises(BackendError, match="Malformed response"):
            await _backend(handler).complete([])
