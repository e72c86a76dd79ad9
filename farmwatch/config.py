from __future__ import annotations

import os
from dataclasses import dataclass
from typing import List, Literal


def _get_bool(name: str, default: bool = False) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return v.strip().lower() in {"1", "true", "yes", "y", "on"}


def _get_float(name: str, default: float) -> float:
    v = os.getenv(name)
    if v is None or v.strip() == "":
        return default
    return float(v)


def _get_int(name: str, default: int) -> int:
    v = os.getenv(name)
    if v is None or v.strip() == "":
        return default
    return int(v)


def _get_list(name: str, default: List[str]) -> List[str]:
    v = os.getenv(name)
    if v is None or v.strip() == "":
        return default
    return [s.strip() for s in v.split(",") if s.strip()]


def _get_optional_str(name: str) -> str | None:
    v = os.getenv(name)
    if v is None:
        return None
    vv = v.strip()
    return vv or None


ClientAuthMode = Literal["body", "basic"]


@dataclass(frozen=True)
class Settings:
    app_env: str
    log_level: str
    log_format: str
    gcp_project_id: str | None

    database_url: str
    auto_migrate: bool

    # Background jobs
    enable_scheduler: bool

    # API surface toggles
    enable_docs: bool
    cors_allow_origins: List[str]

    # Identity provider (service account used for shadow reads)
    oauth_token_url: str
    oauth_client_id: str | None
    oauth_client_secret: str | None
    oauth_client_auth_mode: ClientAuthMode
    service_username: str | None
    service_password: str | None
    token_refresh_margin_s: int

    # Device shadow service
    nx_graphql_url: str
    http_timeout_s: float

    # Poll driver
    poll_interval_s: int
    poll_schedule_tz: str
    poll_concurrency: int
    stale_run_after_s: int
    default_window_minutes: int

    # Demo bootstrap (dev-only by default)
    bootstrap_demo_devices: bool


def load_settings() -> Settings:
    app_env = (os.getenv("APP_ENV", "dev").strip() or "dev").lower()

    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        if app_env == "dev":
            database_url = "sqlite+pysqlite:///./farmwatch.db"
        else:
            raise RuntimeError("DATABASE_URL must be set when APP_ENV is not 'dev'")

    client_auth_mode_raw = os.getenv("OAUTH_CLIENT_AUTH_MODE", "body").strip().lower() or "body"
    if client_auth_mode_raw not in {"body", "basic"}:
        raise RuntimeError("OAUTH_CLIENT_AUTH_MODE must be one of: body, basic")
    client_auth_mode: ClientAuthMode = client_auth_mode_raw  # type: ignore[assignment]

    log_format = os.getenv("LOG_FORMAT", "text").strip().lower() or "text"
    if log_format not in {"text", "json"}:
        raise RuntimeError("LOG_FORMAT must be one of: text, json")

    poll_interval_s = _get_int("POLL_INTERVAL_S", 300)
    if poll_interval_s <= 0:
        raise RuntimeError("POLL_INTERVAL_S must be > 0")

    default_window_minutes = _get_int("DEFAULT_WINDOW_MINUTES", 60)
    if default_window_minutes <= 0:
        raise RuntimeError("DEFAULT_WINDOW_MINUTES must be > 0")

    cors_default = ["*"] if app_env == "dev" else []

    gcp_project_id = (
        _get_optional_str("GCP_PROJECT_ID")
        or _get_optional_str("GOOGLE_CLOUD_PROJECT")
        or _get_optional_str("GCLOUD_PROJECT")
    )

    return Settings(
        app_env=app_env,
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        log_format=log_format,
        gcp_project_id=gcp_project_id,
        database_url=database_url,
        auto_migrate=_get_bool("AUTO_MIGRATE", app_env == "dev"),
        enable_scheduler=_get_bool("ENABLE_SCHEDULER", app_env == "dev"),
        enable_docs=_get_bool("ENABLE_DOCS", app_env == "dev"),
        cors_allow_origins=_get_list("CORS_ALLOW_ORIGINS", cors_default),
        oauth_token_url=(
            os.getenv("OAUTH_TOKEN_URL", "https://auth.nexiiot.io/oauth/token").strip()
            or "https://auth.nexiiot.io/oauth/token"
        ),
        oauth_client_id=_get_optional_str("OAUTH_CLIENT_ID"),
        oauth_client_secret=_get_optional_str("OAUTH_CLIENT_SECRET"),
        oauth_client_auth_mode=client_auth_mode,
        service_username=_get_optional_str("SERVICE_USERNAME"),
        service_password=_get_optional_str("SERVICE_PASSWORD"),
        token_refresh_margin_s=max(0, _get_int("TOKEN_REFRESH_MARGIN_S", 60)),
        nx_graphql_url=(
            os.getenv("NX_GRAPHQL_URL", "https://gqlv2.nexiiot.io/graphql").strip()
            or "https://gqlv2.nexiiot.io/graphql"
        ),
        http_timeout_s=_get_float("HTTP_TIMEOUT_S", 10.0),
        poll_interval_s=poll_interval_s,
        poll_schedule_tz=(os.getenv("POLL_SCHEDULE_TZ", "Asia/Bangkok").strip() or "Asia/Bangkok"),
        poll_concurrency=max(1, _get_int("POLL_CONCURRENCY", 1)),
        stale_run_after_s=max(60, _get_int("STALE_RUN_AFTER_S", 900)),
        default_window_minutes=default_window_minutes,
        bootstrap_demo_devices=_get_bool("BOOTSTRAP_DEMO_DEVICES", app_env == "dev"),
    )


settings = load_settings()
