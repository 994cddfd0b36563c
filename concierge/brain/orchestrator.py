"""Turn orchestration: from a user's message to the assistant's reply text.

The reply may carry one trailing ``[ACTION]`` directive block; delivery strips
it before the text reaches the user.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from concierge.brain.backend import MissingCredentialError
from concierge.brain.directive import merge_directive, parse_reply
from concierge.brain.prompts import build_messages
from concierge.brain.providers import Provider, select_provider
from concierge.brain.tools import TOOL_CATALOG, intent_for_function
from concierge.brain.vision import summarize
from concierge.conversation.dedup import media_keys
from concierge.extraction.posts import is_platform_permalink, looks_like_attachment_id
from concierge.models import (
    ActionDirective,
    ConversationTurn,
    ExtractedContent,
    ImageAnalysisResult,
    MediaAttachment,
)

if TYPE_CHECKING:
    from concierge.brain.backend import BackendReply, ChatBackend
    from concierge.brain.guidance import IntentGuidance
    from concierge.brain.tools import ToolHandlers
    from concierge.brain.vision import VisionAnalyzer
    from concierge.conversation.dedup import AnalysisDedupGate
    from concierge.conversation.store import ConversationStore
    from concierge.extraction.content import ContentExtractor
    from concierge.extraction.posts import PostResolver

logger = logging.getLogger(__name__)

FALLBACK_MISSING_CREDENTIAL = (
    "Hey, it's {name}! I'm not fully set up yet, so I can't give you a proper "
    "answer right now. Please try again a little later."
)
FALLBACK_MODEL_ISSUE = (
    "Hey, it's {name}! I'm having a problem with my AI model at the moment. "
    "Give me a minute and send that again."
)
FALLBACK_GENERIC = (
    "Hey, it's {name}! I got your message but something went wrong on my end. "
    "Please try again in a moment."
)

# Attachment types that carry a directly viewable image.
_IMAGE_ATTACHMENT_TYPES = frozenset({"image", "story_mention"})


def fallback_reply(error: BaseException | None, assistant_name: str = "MC") -> str:
    """Pick the branded fallback sentence for a failed model turn."""
    message = str(error or "").lower()
    if isinstance(error, MissingCredentialError) or "api key" in message:
        template = FALLBACK_MISSING_CREDENTIAL
    elif "model" in message:
        template = FALLBACK_MODEL_ISSUE
    else:
        template = FALLBACK_GENERIC
    return template.format(name=assistant_name)


class ModelOrchestrator:
    """Runs extraction, analysis, prompting and the model call for one turn."""

    def __init__(
        self,
        extractor: ContentExtractor,
        resolver: PostResolver,
        vision: VisionAnalyzer,
        gate: AnalysisDedupGate,
        backends: dict[Provider, ChatBackend],
        tools: ToolHandlers,
        guidance: IntentGuidance,
        store: ConversationStore | None = None,
        assistant_name: str = "MC",
        analytical_routing: bool = False,
        page_token: str = "",
        app_token: str = "",
    ) -> None:
        if Provider.GENERAL not in backends:
            raise ValueError("A general backend is required")
        self._extractor = extractor
        self._resolver = resolver
        self._vision = vision
        self._gate = gate
        self._backends = backends
        self._tools = tools
        self._guidance = guidance
        self._store = store
        self._assistant_name = assistant_name
        self._analytical_routing = analytical_routing
        self._page_token = page_token
        self._app_token = app_token

    async def respond(
        self,
        user_text: str,
        history: list[ConversationTurn],
        media_attachments: list[MediaAttachment] | None = None,
        user_id: str | None = None,
    ) -> str:
        attachments = list(media_attachments or [])

        extracted = await self._extractor.process_message(user_text or "")
        extracted = [await self._enrich_extracted(item) for item in extracted]
        attachments, attachment_images = await self._resolve_attachments(attachments)

        image_urls = list(dict.fromkeys(
            attachment_images + [u for item in extracted for u in item.media_urls]
        ))
        analysis = await self._analyze_images(image_urls, user_text, history, user_id)

        messages = build_messages(
            self._assistant_name, history, user_text or "",
            extracted=extracted, attachments=attachments, analysis=analysis,
        )

        choice = select_provider(
            user_text,
            has_extracted_content=bool(extracted),
            has_media=bool(image_urls),
            analytical_enabled=(
                self._analytical_routing and Provider.ANALYTICAL in self._backends
            ),
        )
        logger.info("Provider %s selected (%s)", choice.provider.value, choice.reason)
        backend = self._backends[choice.provider]
        use_tools = choice.provider == Provider.GENERAL

        try:
            reply = await backend.complete(
                messages,
                tools=TOOL_CATALOG if use_tools else None,
                tool_choice="auto" if use_tools else None,
            )
        except Exception as exc:  # "always a reply": absorb every model failure
            logger.warning("Model call failed: %s", exc)
            return fallback_reply(exc, self._assistant_name)

        try:
            raw = self._fold_reply(reply)
        except Exception as exc:
            logger.warning("Could not fold model reply: %s", exc)
            return fallback_reply(None, self._assistant_name)
        if not parse_reply(raw).text:
            logger.warning("Model returned no visible content")
            return fallback_reply(None, self._assistant_name)
        return await self._finalize_directive(raw)

    async def _enrich_extracted(self, item: ExtractedContent) -> ExtractedContent:
        if not item.is_platform_content or item.media_urls or not self._app_token:
            return item
        metadata = await self._resolver.resolve(item.url, app_token=self._app_token)
        if metadata is None:
            return item
        update: dict[str, object] = {}
        if metadata.caption:
            update["description"] = metadata.caption
        if metadata.thumbnail_url:
            update["media_urls"] = [metadata.thumbnail_url]
        return item.model_copy(update=update)

    async def _resolve_attachments(
        self, attachments: list[MediaAttachment],
    ) -> tuple[list[MediaAttachment], list[str]]:
        resolved: list[MediaAttachment] = []
        images: list[str] = []
        for attachment in attachments:
            url = attachment.url
            if not url:
                resolved.append(attachment)
                continue
            if looks_like_attachment_id(url) or is_platform_permalink(url):
                metadata = await self._resolver.resolve(
                    url, page_token=self._page_token, app_token=self._app_token,
                )
                if metadata is not None:
                    image = metadata.thumbnail_url or metadata.media_url
                    if image:
                        images.append(image)
                    if metadata.caption and not attachment.title:
                        attachment = attachment.model_copy(update={"title": metadata.caption})
                elif attachment.type in _IMAGE_ATTACHMENT_TYPES:
                    # Let the media proxy try the id/permalink itself.
                    images.append(url)
            elif attachment.type in _IMAGE_ATTACHMENT_TYPES:
                images.append(url)
            resolved.append(attachment)
        return resolved, images

    async def _analyze_images(
        self,
        image_urls: list[str],
        user_text: str,
        history: list[ConversationTurn],
        user_id: str | None,
    ) -> ImageAnalysisResult | None:
        analyzed_keys: set[str] | None = None
        if self._store is not None and user_id:
            try:
                analyzed_keys = await self._store.get_analyzed_media(user_id)
            except Exception:
                logger.exception("Failed to load analyzed media for %s", user_id)

        if not self._gate.should_analyze(image_urls, history, analyzed_keys):
            if image_urls:
                logger.info("Skipping image analysis: media already covered")
            return None

        results = await self._vision.analyze_many(
            image_urls, context=user_text or None, access_token=self._page_token or None,
        )
        done = [url for url, result in zip(image_urls, results) if not result.error]
        if done and self._store is not None and user_id:
            try:
                await self._store.mark_media_analyzed(user_id, media_keys(done))
            except Exception:
                logger.exception("Failed to persist analyzed media for %s", user_id)
        return summarize(results)

    def _fold_reply(self, reply: BackendReply) -> str:
        content = (reply.content or "").strip()
        if not reply.tool_calls:
            return content

        call = reply.tool_calls[0]
        if len(reply.tool_calls) > 1:
            logger.info("Ignoring %d extra function calls", len(reply.tool_calls) - 1)
        routing = self._tools.handle(call.name, call.arguments)
        text = "\n\n".join(p for p in (content, routing.message) if p)
        directive = ActionDirective(
            intent=intent_for_function(call.name),
            entities=call.arguments,
            deep_link=routing.deep_link,
        )
        return merge_directive(text, directive)

    async def _finalize_directive(self, raw: str) -> str:
        directive = parse_reply(raw).directive
        if directive is None or directive.deep_link:
            return raw
        try:
            guidance = await self._guidance.process_intent(directive.intent, directive.entities)
        except Exception:
            logger.exception("Intent guidance failed for %s", directive.intent)
            return raw
        return merge_directive(raw, directive.model_copy(update={"deep_link": guidance.deep_link}))
