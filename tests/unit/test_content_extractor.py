"""Tests for URL content extraction."""

from __future__ import annotations

import httpx
import pytest

from concierge.extraction.content import ContentExtractor, extract_urls
from concierge.models import ContentType


def _oembed_handler(status: int = 200, body: dict | None = None):
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(status, json=body or {})

    return handler, seen


def _make_extractor(handler, **kwargs) -> ContentExtractor:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ContentExtractor(client, **kwargs)


class TestExtractUrls:
    def test_finds_urls_in_order(self) -> None:
        text = "see https://a.example/x and http://b.example/y"
        assert extract_urls(text) == ["https://a.example/x", "http://b.example/y"]

    def test_trims_trailing_punctuation(self) -> None:
        assert extract_urls("look (https://a.example/p/1).") == ["https://a.example/p/1"]

    def test_no_urls(self) -> None:
        assert extract_urls("no links here") == []
        assert extract_urls("") == []


class TestClassification:
    def setup_method(self) -> None:
        handler, _ = _oembed_handler()
        self.extractor = _make_extractor(handler)

    @pytest.mark.parametrize(("url", "expected_type", "post_id"), [
        ("https://www.instagram.com/p/ABC123/", ContentType.POST, "ABC123"),
        ("https://instagram.com/reel/Xy_9-z/", ContentType.REEL, "Xy_9-z"),
        ("https://www.instagram.com/reels/R1/", ContentType.REEL, "R1"),
        ("https://www.instagram.com/tv/TV1", ContentType.POST, "TV1"),
        ("https://www.instagram.com/stories/someartist/3141592/", ContentType.STORY, "3141592"),
    ])
    def test_platform_urls(self, url: str, expected_type: ContentType, post_id: str) -> None:
        assert self.extractor.is_platform_url(url) is True
        assert self.extractor.classify(url) == expected_type
        assert self.extractor.extract_post_id(url) == post_id

    def test_profile_url_is_not_content(self) -> None:
        url = "https://www.instagram.com/someartist/"
        assert self.extractor.is_platform_url(url) is False
        assert self.extractor.classify(url) == ContentType.GENERIC_LINK
        assert self.extractor.extract_post_id(url) is None

    def test_lookalike_host_rejected(self) -> None:
        assert self.extractor.is_platform_url("https://notinstagram.com/p/ABC/") is False

    def test_post_id_round_trips(self) -> None:
        for post_id in ("A", "abc_DEF-123", "0"):
            url = f"https://www.instagram.com/p/{post_id}/"
            assert self.extractor.extract_post_id(url) == post_id


class TestProcessMessage:
    @pytest.mark.asyncio
    async def test_configured_host_post_scenario(self) -> None:
        handler, _ = _oembed_handler(status=500)
        extractor = _make_extractor(handler, platform_hosts=("platform.example",))
        results = await extractor.process_message(
            "check this out https://platform.example/p/ABC123",
        )
        assert len(results) == 1
        assert results[0].type == ContentType.POST
        assert results[0].post_id == "ABC123"

    @pytest.mark.asyncio
    async def test_oembed_success(self) -> None:
        handler, seen = _oembed_handler(body={
            "author_name": "artist",
            "title": "New single out now",
            "thumbnail_url": "https://cdn.example/thumb.jpg",
        })
        extractor = _make_extractor(handler, app_token="app|secret")
        [item] = await extractor.process_message("https://www.instagram.com/p/ABC/")
        assert item.title == "Post by @artist"
        assert item.description == "New single out now"
        assert item.media_urls == ["https://cdn.example/thumb.jpg"]
        assert item.error is None
        assert seen[0].url.params["access_token"] == "app|secret"
        assert seen[0].url.params["omitscript"] == "true"

    @pytest.mark.asyncio
    async def test_no_app_token_omits_access_token(self) -> None:
        handler, seen = _oembed_handler(body={"title": "x"})
        extractor = _make_extractor(handler)
        await extractor.process_message("https://www.instagram.com/p/ABC/")
        assert "access_token" not in seen[0].url.params

    @pytest.mark.asyncio
    async def test_lookup_failure_falls_back(self) -> None:
        handler, _ = _oembed_handler(status=400)
        extractor = _make_extractor(handler)
        [item] = await extractor.process_message("https://www.instagram.com/reel/R1/")
        assert item.type == ContentType.REEL
        assert item.is_video is True
        assert item.error is not None
        assert "Reel" in item.description
        assert item.title == "Instagram Reel (R1)"

    @pytest.mark.asyncio
    async def test_generic_link(self) -> None:
        handler, seen = _oembed_handler()
        extractor = _make_extractor(handler)
        [item] = await extractor.process_message("read https://blog.example/post")
        assert item.type == ContentType.GENERIC_LINK
        assert item.is_platform_content is False
        assert item.title == "External link"
        assert seen == []

    @pytest.mark.asyncio
    async def test_preserves_order(self) -> None:
        handler, _ = _oembed_handler(body={"title": "t"})
        extractor = _make_extractor(handler)
        results = await extractor.process_message(
            "https://blog.example/a https://www.instagram.com/p/P1/ https://blog.example/b",
        )
        assert [r.url for r in results] == [
            "https://blog.example/a",
            "https://www.instagram.com/p/P1/",
            "https://blog.example/b",
        ]

    @pytest.mark.asyncio
    async def test_unexpected_error_degrades_one_url(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise RuntimeError("boom")

        extractor = _make_extractor(handler)
        results = await extractor.process_message(
            "https://www.instagram.com/p/P1/ https://blog.example/b",
        )
        assert results[0].type == ContentType.GENERIC_LINK
        assert results[0].error is not None
        assert results[1].title == "External link"
