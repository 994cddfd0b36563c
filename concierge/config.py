"""Runtime configuration read from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass

_TRUTHY = {"1", "true", "yes", "on"}


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in _TRUTHY


@dataclass
class GatewaySettings:
    verify_token: str = ""
    page_token: str = ""
    app_secret: str = ""
    app_token: str = ""

    openai_api_key: str = ""
    openai_base_url: str = "https://api.openai.com/v1"
    openai_model: str = "gpt-4o"
    vision_model: str = "gpt-4o"

    analytical_api_key: str = ""
    analytical_base_url: str = ""
    analytical_model: str = ""
    analytical_routing: bool = False

    model_timeout_seconds: float = 10.0

    database_path: str | None = None
    event_audit_log_path: str | None = None
    admin_token: str | None = None

    rate_limit_max_requests: int = 600
    rate_limit_window_seconds: int = 3600

    dashboard_url: str = "https://app.loop.com/open"
    history_limit: int = 10
    assistant_name: str = "MC"
    log_level: str = "INFO"

    @property
    def analytical_configured(self) -> bool:
        return bool(
            self.analytical_api_key and self.analytical_base_url and self.analytical_model
        )

    @classmethod
    def from_env(cls) -> GatewaySettings:
        """Create settings from environment variables."""
        app_token = os.environ.get("FB_APP_TOKEN", "")
        if not app_token:
            app_id = os.environ.get("FB_APP_ID", "")
            app_secret = os.environ.get("FB_APP_SECRET", "")
            if app_id and app_secret:
                app_token = f"{app_id}|{app_secret}"

        return cls(
            verify_token=os.environ.get("IG_VERIFY_TOKEN", ""),
            page_token=os.environ.get("IG_PAGE_TOKEN", ""),
            app_secret=os.environ.get("IG_APP_SECRET", ""),
            app_token=app_token,
            openai_api_key=os.environ.get("OPENAI_API_KEY", ""),
            openai_base_url=os.environ.get("OPENAI_BASE_URL", "https://api.openai.com/v1"),
            openai_model=os.environ.get("OPENAI_MODEL", "gpt-4o"),
            vision_model=os.environ.get("VISION_MODEL", "gpt-4o"),
            analytical_api_key=os.environ.get("ANALYTICAL_API_KEY", ""),
            analytical_base_url=os.environ.get("ANALYTICAL_BASE_URL", ""),
            analytical_model=os.environ.get("ANALYTICAL_MODEL", ""),
            analytical_routing=_env_bool("ANALYTICAL_ROUTING"),
            model_timeout_seconds=float(os.environ.get("MODEL_TIMEOUT_SECONDS", "10")),
            database_path=os.environ.get("DATABASE_PATH") or None,
            event_audit_log_path=os.environ.get("EVENT_AUDIT_LOG_PATH") or None,
            admin_token=os.environ.get("ADMIN_TOKEN") or None,
            rate_limit_max_requests=int(os.environ.get("RATE_LIMIT_MAX_REQUESTS", "600")),
            rate_limit_window_seconds=int(os.environ.get("RATE_LIMIT_WINDOW_SECONDS", "3600")),
            dashboard_url=os.environ.get("DASHBOARD_URL", "https://app.loop.com/open"),
            history_limit=int(os.environ.get("HISTORY_LIMIT", "10")),
            assistant_name=os.environ.get("ASSISTANT_NAME", "MC"),
            log_level=os.environ.get("LOG_LEVEL", "INFO"),
        )
