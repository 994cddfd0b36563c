"""FastAPI application: webhook endpoints and the dashboard API."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

import httpx
from fastapi import FastAPI, Query, Request, Response
from fastapi.responses import JSONResponse, PlainTextResponse

from concierge.auth_middleware import AdminAuthMiddleware
from concierge.brain.backend import ChatBackend
from concierge.brain.guidance import DashboardGuidance
from concierge.brain.orchestrator import ModelOrchestrator
from concierge.brain.providers import Provider
from concierge.brain.tools import ToolHandlers
from concierge.brain.vision import VisionAnalyzer
from concierge.config import GatewaySettings
from concierge.conversation.context import ConversationContextBuilder
from concierge.conversation.db import SQLiteConversationStore
from concierge.conversation.dedup import AnalysisDedupGate
from concierge.conversation.store import ConversationStore, InMemoryConversationStore
from concierge.delivery.messenger import OutboundMessenger
from concierge.delivery.rate_limiter import SlidingWindowRateLimiter
from concierge.events.audit import EventAuditLog
from concierge.events.logger import EventLogger
from concierge.extraction.content import ContentExtractor
from concierge.extraction.media_proxy import MediaProxy
from concierge.extraction.posts import PostResolver
from concierge.webhook.instagram import InstagramWebhook
from concierge.webhook.pipeline import MessagePipeline

logger = logging.getLogger(__name__)


@dataclass
class Gateway:
    """Wired components shared by the routes."""

    settings: GatewaySettings
    store: ConversationStore
    webhook: InstagramWebhook
    pipeline: MessagePipeline
    rate_limiter: SlidingWindowRateLimiter
    media_proxy: MediaProxy


def open_store(database_path: str | None) -> ConversationStore:
    if database_path:
        return SQLiteConversationStore(database_path)
    logger.warning("DATABASE_PATH not set; events are kept in memory only")
    return InMemoryConversationStore()


def build_gateway(
    settings: GatewaySettings,
    client: httpx.AsyncClient,
    store: ConversationStore,
    audit_log: EventAuditLog | None = None,
) -> Gateway:
    timeout = settings.model_timeout_seconds
    backends = {
        Provider.GENERAL: ChatBackend(
            client, settings.openai_base_url, settings.openai_api_key,
            settings.openai_model, name="general", timeout=timeout,
        ),
    }
    if settings.analytical_configured:
        backends[Provider.ANALYTICAL] = ChatBackend(
            client, settings.analytical_base_url, settings.analytical_api_key,
            settings.analytical_model, name="analytical", timeout=timeout,
            max_tokens=1000,
        )
    vision_backend = ChatBackend(
        client, settings.openai_base_url, settings.openai_api_key,
        settings.vision_model, name="vision", timeout=timeout, max_tokens=800,
        temperature=0.3,
    )

    resolver = PostResolver(client)
    media_proxy = MediaProxy(client, resolver=resolver)
    orchestrator = ModelOrchestrator(
        extractor=ContentExtractor(client, app_token=settings.app_token),
        resolver=resolver,
        vision=VisionAnalyzer(vision_backend, media_proxy),
        gate=AnalysisDedupGate(),
        backends=backends,
        tools=ToolHandlers(settings.dashboard_url),
        guidance=DashboardGuidance(settings.dashboard_url),
        store=store,
        assistant_name=settings.assistant_name,
        analytical_routing=settings.analytical_routing,
        page_token=settings.page_token,
        app_token=settings.app_token,
    )

    rate_limiter = SlidingWindowRateLimiter(
        max_requests=settings.rate_limit_max_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )
    webhook = InstagramWebhook(settings.app_secret, settings.verify_token)
    pipeline = MessagePipeline(
        webhook=webhook,
        orchestrator=orchestrator,
        context_builder=ConversationContextBuilder(store, limit=settings.history_limit),
        messenger=OutboundMessenger(
            client, rate_limiter, default_deep_link=settings.dashboard_url,
        ),
        event_logger=EventLogger(store, audit_log),
        page_token=settings.page_token,
    )
    return Gateway(
        settings=settings,
        store=store,
        webhook=webhook,
        pipeline=pipeline,
        rate_limiter=rate_limiter,
        media_proxy=media_proxy,
    )


def create_app_from_env() -> FastAPI:
    """Factory for uvicorn --factory: reads config from environment variables."""
    settings = GatewaySettings.from_env()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    audit_log = (
        EventAuditLog.from_env(settings.event_audit_log_path)
        if settings.event_audit_log_path else None
    )
    return create_app(settings, audit_log=audit_log)


def create_app(
    settings: GatewaySettings,
    client: httpx.AsyncClient | None = None,
    store: ConversationStore | None = None,
    audit_log: EventAuditLog | None = None,
) -> FastAPI:
    """Create the gateway app. A client or store passed in is not closed by the app."""
    owns_client = client is None
    http_client = client or httpx.AsyncClient(follow_redirects=True)
    event_store = store or open_store(settings.database_path)
    gateway = build_gateway(settings, http_client, event_store, audit_log)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        await gateway.pipeline.drain()
        if owns_client:
            await http_client.aclose()
        if store is None and isinstance(event_store, SQLiteConversationStore):
            event_store.close()

    app = FastAPI(docs_url=None, redoc_url=None, lifespan=lifespan)
    app.state.gateway = gateway

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/webhook")
    async def verify_subscription(request: Request) -> Response:
        result = gateway.webhook.handle_verification(dict(request.query_params))
        if result["status_code"] == 200:
            logger.info("Webhook subscription verified")
            return PlainTextResponse(result["content"])
        logger.warning("Webhook verification rejected: %s", result["error"])
        return JSONResponse({"error": result["error"]}, status_code=result["status_code"])

    @app.post("/webhook")
    async def receive_webhook(request: Request) -> Response:
        body = await request.body()
        if gateway.webhook.signature_required and not gateway.webhook.verify_signature(
            dict(request.headers), body,
        ):
            logger.warning("Rejected webhook with invalid signature")
            return JSONResponse({"error": "Invalid signature"}, status_code=403)

        try:
            payload = await request.json()
        except ValueError:
            return JSONResponse({"error": "Invalid JSON"}, status_code=400)
        if not isinstance(payload, dict):
            return JSONResponse({"error": "Invalid payload"}, status_code=400)

        tasks = gateway.pipeline.dispatch(payload)
        if tasks:
            logger.info("Scheduled %d message event(s)", len(tasks))
        return PlainTextResponse("EVENT_RECEIVED")

    @app.get("/api/webhook-events")
    async def list_events(limit: int = Query(50, ge=1, le=500)) -> Response:
        try:
            events = await gateway.store.get_recent_events(limit)
        except Exception:
            logger.exception("Failed to fetch webhook events")
            return JSONResponse({"error": "Failed to fetch webhook events"}, status_code=500)
        return JSONResponse([e.model_dump(mode="json") for e in events])

    @app.post("/api/webhook-events/{event_id}/deep-link-clicked")
    async def deep_link_clicked(event_id: int) -> Response:
        if not await gateway.store.mark_deep_link_clicked(event_id):
            return JSONResponse({"error": "Event not found"}, status_code=404)
        return JSONResponse({"id": event_id, "deep_link_clicked": True})

    @app.get("/api/status")
    async def status() -> dict[str, object]:
        s = gateway.settings
        gateway.media_proxy.cleanup_cache()
        return {
            "server": "running",
            "credentials": {
                "verify_token": bool(s.verify_token),
                "page_token": bool(s.page_token),
                "app_secret": bool(s.app_secret),
                "app_token": bool(s.app_token),
                "openai_api_key": bool(s.openai_api_key),
                "analytical": s.analytical_configured,
            },
            "rate_limiter": {
                "remaining": gateway.rate_limiter.remaining(),
                "max_requests": gateway.rate_limiter.max_requests,
            },
            "media_cache": gateway.media_proxy.cache_stats(),
        }

    if settings.admin_token:
        app.add_middleware(AdminAuthMiddleware, token=settings.admin_token)

    return app
