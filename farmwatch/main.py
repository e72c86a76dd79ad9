from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any

from apscheduler.schedulers.background import BackgroundScheduler
from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from .config import Settings, settings as global_settings
from .db import engine
from .migrations import maybe_run_startup_migrations
from .observability import RequestContextMiddleware, configure_logging, get_request_id
from .routes.progress import router as progress_router
from .seed import seed_demo_devices
from .services.errors import RunInProgress
from .services.runtime import get_runtime
from .version import __version__


logger = logging.getLogger("farmwatch")


def create_app(_settings: Settings | None = None) -> FastAPI:
    # Tests inject a Settings object without reloading modules.
    settings = _settings or global_settings

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        _setup_logging(settings)
        _init_db()
        _bootstrap_demo_devices(settings)
        if settings.enable_scheduler:
            _start_scheduler(settings)
        else:
            logger.info("Scheduler disabled (ENABLE_SCHEDULER=false)")
        yield
        _stop_scheduler()

    docs_url = "/docs" if settings.enable_docs else None
    openapi_url = "/openapi.json" if settings.enable_docs else None

    app = FastAPI(
        title="Farmwatch Readiness API",
        version=__version__,
        lifespan=lifespan,
        docs_url=docs_url,
        redoc_url=None,
        openapi_url=openapi_url,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=False,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )
    app.add_middleware(RequestContextMiddleware)

    @app.get("/healthz", include_in_schema=False)
    def healthz():
        return {"ok": True, "version": __version__, "env": settings.app_env}

    @app.exception_handler(HTTPException)
    async def _http_exception_handler(request: Request, exc: HTTPException):
        rid = get_request_id() or "unknown"

        # Routes may pass a full {ok:false, error, ...} envelope as the detail.
        payload: dict[str, Any]
        if isinstance(exc.detail, dict) and "error" in exc.detail:
            payload = {"ok": False, **exc.detail}
        else:
            payload = {"ok": False, "error": str(exc.detail)}
        payload.setdefault("request_id", rid)

        headers = dict(exc.headers or {})
        headers.setdefault("X-Request-ID", rid)
        return JSONResponse(status_code=exc.status_code, content=payload, headers=headers)

    @app.exception_handler(RequestValidationError)
    async def _validation_exception_handler(request: Request, exc: RequestValidationError):
        rid = get_request_id() or "unknown"
        return JSONResponse(
            status_code=400,
            content={
                "ok": False,
                "error": "Request validation failed",
                "details": exc.errors(),
                "request_id": rid,
            },
            headers={"X-Request-ID": rid},
        )

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        rid = get_request_id() or "unknown"
        logger.exception(
            "unhandled_exception",
            extra={"fields": {"path": str(request.url.path), "method": request.method}},
        )
        return JSONResponse(
            status_code=500,
            content={"ok": False, "error": "Internal server error", "request_id": rid},
            headers={"X-Request-ID": rid},
        )

    app.include_router(progress_router)

    return app


def _setup_logging(settings: Settings) -> None:
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    configure_logging(level=level, log_format=settings.log_format, gcp_project_id=settings.gcp_project_id)
    logger.info("Logging initialized (level=%s)", settings.log_level)


def _init_db() -> None:
    maybe_run_startup_migrations(engine=engine)
    logger.info("DB init complete")


def _bootstrap_demo_devices(settings: Settings) -> None:
    if not settings.bootstrap_demo_devices:
        return
    try:
        seed_demo_devices(get_runtime().store)
    except SQLAlchemyError:
        # Migrations may run out-of-band (AUTO_MIGRATE=false); don't block startup.
        logger.warning("Skipping demo device bootstrap; database schema not ready")


_scheduler: BackgroundScheduler | None = None


def _start_scheduler(settings: Settings) -> None:
    global _scheduler
    scheduler = BackgroundScheduler(timezone=settings.poll_schedule_tz)

    scheduler.add_job(
        func=poll_job,
        trigger="interval",
        seconds=settings.poll_interval_s,
        id="poll_nexiiot",
        max_instances=1,
        replace_existing=True,
        coalesce=True,
    )

    scheduler.start()
    _scheduler = scheduler
    logger.info(
        "Scheduler started (poll_interval_s=%s, tz=%s)", settings.poll_interval_s, settings.poll_schedule_tz
    )


def _stop_scheduler() -> None:
    global _scheduler
    if _scheduler:
        _scheduler.shutdown(wait=False)
        _scheduler = None
        logger.info("Scheduler stopped")


def poll_job() -> None:
    try:
        get_runtime().driver.run_once()
    except RunInProgress as exc:
        logger.warning("poll_skipped", extra={"fields": {"reason": str(exc)}})
    except Exception:
        logger.exception("poll_nexiiot failed")


# ASGI entrypoint
app = create_app()
