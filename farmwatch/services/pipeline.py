from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from .credentials import CredentialCache
from .errors import ErrorKind, PersistenceError, PipelineError, ShadowFetchError
from .readiness import ProgressState, advance, with_values
from .shadow import ShadowClient
from .store import ProgressStore
from .thresholds import evaluate, resolve_values


logger = logging.getLogger("farmwatch.pipeline")


@dataclass(frozen=True)
class PipelineOutcome:
    device_id: str
    ok: bool
    state: ProgressState | None = None
    persisted: bool = False
    error_kind: ErrorKind | None = None
    error: str | None = None
    values: dict[str, Any] = field(default_factory=dict)

    def digest(self) -> dict[str, Any]:
        """Per-device entry for the run summary."""

        if self.ok and self.state is not None:
            return {
                "ok": True,
                "percent": round(self.state.percent, 2),
                "level": self.state.level,
                "goodNow": self.state.good_now,
                "updatedAt": self.state.updated_at.isoformat(),
            }
        return {
            "ok": False,
            "error": self.error or "unknown error",
            "errorKind": (self.error_kind or ErrorKind.INTERNAL).value,
        }


class DevicePipeline:
    """config -> token -> shadow -> evaluate -> advance -> persist, for one device.

    Stage failures come back as a failed PipelineOutcome; nothing is written in
    that case, so the stored progress stays as it was.
    """

    def __init__(self, *, store: ProgressStore, credentials: CredentialCache, shadow: ShadowClient) -> None:
        self.store = store
        self.credentials = credentials
        self.shadow = shadow

    def run(self, device_id: str, *, now: datetime, persist: bool = True) -> PipelineOutcome:
        try:
            return self._run(device_id, now=now, persist=persist)
        except PipelineError as exc:
            return PipelineOutcome(device_id=device_id, ok=False, error_kind=exc.kind, error=str(exc))
        except SQLAlchemyError as exc:
            logger.exception("pipeline_store_failed", extra={"fields": {"device_id": device_id}})
            err = PersistenceError(f"store error: {type(exc).__name__}")
            return PipelineOutcome(device_id=device_id, ok=False, error_kind=err.kind, error=str(err))
        except Exception as exc:
            logger.exception("pipeline_unexpected_error", extra={"fields": {"device_id": device_id}})
            return PipelineOutcome(
                device_id=device_id,
                ok=False,
                error_kind=ErrorKind.INTERNAL,
                error=f"{type(exc).__name__}: {exc}",
            )

    def _run(self, device_id: str, *, now: datetime, persist: bool) -> PipelineOutcome:
        config = self.store.get_device_config(device_id)
        credential = self.credentials.get_token()

        try:
            snapshot = self.shadow.fetch_shadow(config.external_device_id, credential)
        except ShadowFetchError as exc:
            if exc.status == 401:
                # Token was revoked upstream; make the next device re-authenticate.
                self.credentials.invalidate(credential)
            raise

        verdict = evaluate(snapshot, config.thresholds, config.variable_map)
        values = resolve_values(snapshot, config.thresholds, config.variable_map)

        prev = self.store.get_progress(device_id)
        state = with_values(
            advance(
                prev,
                device_id=device_id,
                verdict=verdict,
                now=now,
                window_minutes=config.window_minutes,
            ),
            values,
        )

        if persist:
            self.store.save_progress(state)

        return PipelineOutcome(device_id=device_id, ok=True, state=state, persisted=persist, values=values)
