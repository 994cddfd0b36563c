"""Image analysis through a vision-capable chat backend."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from concierge.brain.backend import BackendError
from concierge.models import ImageAnalysisResult, MusicContext

if TYPE_CHECKING:
    from concierge.brain.backend import ChatBackend
    from concierge.extraction.media_proxy import MediaProxy

logger = logging.getLogger(__name__)

MAX_DESCRIPTION_CHARS = 1000
MAX_ADVICE_ITEMS = 5

IMAGE_ANALYSIS_TOOL: dict[str, Any] = {
    "type": "function",
    "function": {
        "name": "process_image_analysis",
        "description": "Process image analysis for music artist branding and career development",
        "parameters": {
            "type": "object",
            "properties": {
                "description": {
                    "type": "string",
                    "description": "Detailed description of what's in the image",
                },
                "musicContext": {
                    "type": "object",
                    "properties": {
                        "genre": {"type": "string"},
                        "mood": {"type": "string"},
                        "instruments": {"type": "array", "items": {"type": "string"}},
                        "setting": {"type": "string"},
                        "aesthetics": {"type": "array", "items": {"type": "string"}},
                    },
                },
                "actionableAdvice": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "3-5 specific actionable pieces of advice for the artist",
                },
            },
            "required": ["description", "actionableAdvice"],
        },
    },
}

_FORCE_ANALYSIS_TOOL = {"type": "function", "function": {"name": "process_image_analysis"}}


def _build_prompt(context: str | None) -> str:
    prompt = (
        "Look at this image and give helpful feedback for a music artist: visual "
        "branding, performance or studio setup, fan engagement and genre or mood. "
        "Keep it short and music-focused."
    )
    if context:
        prompt += f"\n\nContext: {context}"
    return prompt


def placeholder_result(error: str) -> ImageAnalysisResult:
    return ImageAnalysisResult(
        description="Unable to analyze image at this time", error=error,
    )


def _bounded(result: ImageAnalysisResult) -> ImageAnalysisResult:
    return result.model_copy(update={
        "description": result.description[:MAX_DESCRIPTION_CHARS],
        "actionable_advice": result.actionable_advice[:MAX_ADVICE_ITEMS],
    })


class VisionAnalyzer:
    """Runs the vision capability over model-consumable image URLs."""

    def __init__(self, backend: ChatBackend, proxy: MediaProxy) -> None:
        self._backend = backend
        self._proxy = proxy

    async def analyze(
        self,
        image_url: str,
        context: str | None = None,
        access_token: str | None = None,
    ) -> ImageAnalysisResult:
        accessible = await self._proxy.make_accessible(image_url, access_token)
        if accessible is None:
            return placeholder_result("Image could not be made accessible")

        messages = [{
            "role": "user",
            "content": [
                {"type": "text", "text": _build_prompt(context)},
                {"type": "image_url", "image_url": {"url": accessible, "detail": "high"}},
            ],
        }]
        try:
            reply = await self._backend.complete(
                messages, tools=[IMAGE_ANALYSIS_TOOL], tool_choice=_FORCE_ANALYSIS_TOOL,
            )
        except BackendError as exc:
            logger.warning("Image analysis failed: %s", exc)
            return placeholder_result(str(exc))

        if reply.tool_calls:
            try:
                return _bounded(ImageAnalysisResult.model_validate(reply.tool_calls[0].arguments))
            except ValidationError:
                logger.warning("Vision function arguments did not validate")

        # Model answered in prose instead of calling the function.
        text = reply.content or "No analysis returned"
        try:
            return _bounded(ImageAnalysisResult(description=text))
        except ValidationError:
            logger.warning("Vision reply was neither a function call nor text")
            return placeholder_result("Malformed analysis reply")

    async def analyze_many(
        self,
        image_urls: list[str],
        context: str | None = None,
        access_token: str | None = None,
    ) -> list[ImageAnalysisResult]:
        unique = list(dict.fromkeys(image_urls))
        return list(await asyncio.gather(
            *(self.analyze(url, context, access_token) for url in unique)
        ))


def summarize(results: list[ImageAnalysisResult]) -> ImageAnalysisResult:
    """Combine per-image results into one, keeping the top five distinct tips."""
    valid = [r for r in results if not r.error]
    if not valid:
        return ImageAnalysisResult(
            description="Unable to analyze any of the shared images",
            error="All image analyses failed",
        )
    if len(valid) == 1:
        return valid[0]

    advice = list(dict.fromkeys(a for r in valid for a in r.actionable_advice))
    combined = MusicContext()
    for result in valid:
        ctx = result.music_context
        if ctx is None:
            continue
        combined = combined.model_copy(update={
            "genre": ctx.genre or combined.genre,
            "mood": ctx.mood or combined.mood,
            "setting": ctx.setting or combined.setting,
            "instruments": combined.instruments + ctx.instruments,
            "aesthetics": combined.aesthetics + ctx.aesthetics,
        })

    has_context = combined != MusicContext()
    return ImageAnalysisResult(
        description=(
            f"Analysis of {len(valid)} image(s): "
            + " | ".join(r.description for r in valid)
        ),
        music_context=combined if has_context else None,
        actionable_advice=advice[:MAX_ADVICE_ITEMS],
    )
