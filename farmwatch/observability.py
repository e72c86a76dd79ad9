from __future__ import annotations

import json
import logging
import os
import time
import uuid
from contextvars import ContextVar
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response


# -----------------------------
# Request context (request_id, trace)
# -----------------------------


request_id_ctx: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
trace_id_ctx: ContextVar[Optional[str]] = ContextVar("trace_id", default=None)


def _utc_iso(ts: float | None = None) -> str:
    dt = datetime.fromtimestamp(ts or time.time(), tz=timezone.utc)
    return dt.isoformat()


def get_request_id() -> Optional[str]:
    return request_id_ctx.get()


def get_trace_id() -> Optional[str]:
    return trace_id_ctx.get()


def _extract_request_id(request: Request) -> str:
    rid = request.headers.get("X-Request-ID") or request.headers.get("X-Correlation-ID")
    if rid:
        return rid.strip()
    return uuid.uuid4().hex


def parse_cloud_trace_context(raw: str) -> str | None:
    """Return the trace id from `X-Cloud-Trace-Context: TRACE_ID/SPAN_ID;o=1`."""

    head = (raw or "").strip().split(";", 1)[0]
    trace_id = head.split("/", 1)[0].strip()
    return trace_id or None


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Attach a request_id (and Cloud Trace id when present) to each request.

    The id is echoed back as X-Request-ID and one structured log record is
    emitted per request on the "farmwatch.http" logger.
    """

    async def dispatch(self, request: Request, call_next: Callable[[Request], Any]) -> Response:
        rid = _extract_request_id(request)
        trace_id = parse_cloud_trace_context(request.headers.get("X-Cloud-Trace-Context") or "")

        token_rid = request_id_ctx.set(rid)
        token_trace = trace_id_ctx.set(trace_id)

        start = time.perf_counter()
        try:
            try:
                response = await call_next(request)
            except Exception:
                duration_ms = int((time.perf_counter() - start) * 1000)
                logging.getLogger("farmwatch.http").exception(
                    "request_error",
                    extra={
                        "httpRequest": _http_request_payload(request, status=500, duration_ms=duration_ms),
                        "fields": {"duration_ms": duration_ms},
                    },
                )
                raise

            response.headers["X-Request-ID"] = rid

            duration_ms = int((time.perf_counter() - start) * 1000)
            logging.getLogger("farmwatch.http").info(
                "request",
                extra={
                    "httpRequest": _http_request_payload(
                        request, status=response.status_code, duration_ms=duration_ms
                    ),
                    "fields": {"duration_ms": duration_ms},
                },
            )
            return response
        finally:
            request_id_ctx.reset(token_rid)
            trace_id_ctx.reset(token_trace)


def _http_request_payload(request: Request, *, status: int, duration_ms: int) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "requestMethod": request.method,
        "requestUrl": request.url.path,
        "status": status,
        "latency": f"{duration_ms / 1000:.3f}s",
    }
    if request.client:
        payload["remoteIp"] = request.client.host
    user_agent = request.headers.get("user-agent")
    if user_agent:
        payload["userAgent"] = user_agent
    return payload


# -----------------------------
# Logging
# -----------------------------


class ContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:  # pragma: no cover
        record.request_id = get_request_id()
        record.trace_id = get_trace_id()
        return True


@dataclass
class JsonLogConfig:
    service_name: str = "farmwatch"
    gcp_project_id: str | None = None


class JsonFormatter(logging.Formatter):
    """JSON formatter compatible with Cloud Logging structured logs.

    Structured call-site data goes in `extra={"fields": {...}}` and is emitted
    under "fields"; poll runs rely on this for one line per device outcome.
    """

    def __init__(self, config: JsonLogConfig) -> None:
        super().__init__()
        self.config = config

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": _utc_iso(record.created),
            "severity": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self.config.service_name,
        }

        rid = getattr(record, "request_id", None)
        if rid:
            payload["request_id"] = rid

        trace_id = getattr(record, "trace_id", None)
        if trace_id and self.config.gcp_project_id:
            payload["logging.googleapis.com/trace"] = f"projects/{self.config.gcp_project_id}/traces/{trace_id}"
        elif trace_id:
            payload["trace_id"] = trace_id

        fields = getattr(record, "fields", None)
        if isinstance(fields, dict):
            payload["fields"] = fields

        http_request = getattr(record, "httpRequest", None)
        if isinstance(http_request, dict):
            payload["httpRequest"] = http_request

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(payload, separators=(",", ":"), ensure_ascii=False, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable lines; appends the structured `fields` payload when present."""

    def __init__(self) -> None:
        super().__init__("%(asctime)s %(levelname)s %(name)s - %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        fields = getattr(record, "fields", None)
        if isinstance(fields, dict) and fields:
            line += " " + " ".join(f"{k}={v}" for k, v in fields.items())
        return line


def _detect_gcp_project_id(explicit: str | None = None) -> str | None:
    if explicit:
        return explicit
    for name in ("GCP_PROJECT_ID", "GOOGLE_CLOUD_PROJECT", "GCLOUD_PROJECT"):
        v = os.getenv(name)
        if v and v.strip():
            return v.strip()
    return None


def configure_logging(*, level: int, log_format: str, gcp_project_id: str | None = None) -> None:
    """Configure app logging.

    - log_format="json": structured JSON for Cloud Logging
    - log_format="text": standard human-readable
    """

    root = logging.getLogger()
    root.setLevel(level)

    # Replace handlers to avoid duplicate logs when called multiple times.
    root.handlers.clear()

    handler = logging.StreamHandler()
    handler.addFilter(ContextFilter())
    if log_format.strip().lower() == "json":
        handler.setFormatter(
            JsonFormatter(JsonLogConfig(gcp_project_id=_detect_gcp_project_id(gcp_project_id)))
        )
    else:
        handler.setFormatter(TextFormatter())

    root.addHandler(handler)
