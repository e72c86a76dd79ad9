from __future__ import annotations

from typing import Any, Mapping

from ..db import SessionScope
from ..device_config import DeviceConfig, build_device_config
from ..models import (
    POLL_RUN_KEY,
    PROGRESS_SCHEMA_VERSION,
    RUN_SCHEMA_VERSION,
    DeviceConfigRow,
    PollRunRow,
    ProgressRow,
)
from .errors import ConfigMissing
from .readiness import ProgressState, normalize_utc, percent_to_level
from .run_summary import RunSummary


def _opt_utc(value):
    return normalize_utc(value) if value is not None else None


class ProgressStore:
    """Persistence sink for device configs, progress records and run summaries.

    Each write happens in its own short transaction so a failing device never
    rolls back another device's progress.
    """

    def __init__(self, session_scope: SessionScope, *, default_window_minutes: int = 60) -> None:
        self._session_scope = session_scope
        self.default_window_minutes = default_window_minutes

    # --- devices ---

    def list_device_ids(self, *, enabled_only: bool = True) -> list[str]:
        with self._session_scope() as session:
            q = session.query(DeviceConfigRow.device_id)
            if enabled_only:
                q = q.filter(DeviceConfigRow.enabled.is_(True))
            return [device_id for (device_id,) in q.order_by(DeviceConfigRow.device_id.asc()).all()]

    def get_device_config(self, device_id: str) -> DeviceConfig:
        with self._session_scope() as session:
            row = session.get(DeviceConfigRow, device_id)
            if row is None:
                raise ConfigMissing(device_id)
            return build_device_config(
                device_id=row.device_id,
                external_device_id=row.external_device_id,
                variable_map=row.variable_map,
                thresholds=row.thresholds,
                window_minutes=row.window_minutes,
                default_window_minutes=self.default_window_minutes,
                enabled=row.enabled,
                display_name=row.display_name,
            )

    def upsert_device_config(
        self,
        device_id: str,
        *,
        external_device_id: str | None = None,
        variable_map: Mapping[str, str] | None = None,
        thresholds: Mapping[str, Mapping[str, float]] | None = None,
        window_minutes: int | None = None,
        enabled: bool = True,
        display_name: str | None = None,
    ) -> None:
        # Validate before writing so bad configs never reach the engine.
        build_device_config(
            device_id=device_id,
            external_device_id=external_device_id,
            variable_map=variable_map,
            thresholds=thresholds,
            window_minutes=window_minutes,
            default_window_minutes=self.default_window_minutes,
        )
        with self._session_scope() as session:
            row = session.get(DeviceConfigRow, device_id)
            if row is None:
                row = DeviceConfigRow(device_id=device_id)
                session.add(row)
            row.external_device_id = external_device_id
            row.variable_map = dict(variable_map or {})
            row.thresholds = {k: dict(v) for k, v in (thresholds or {}).items()}
            row.window_minutes = window_minutes
            row.enabled = enabled
            row.display_name = display_name

    # --- progress ---

    def get_progress(self, device_id: str) -> ProgressState | None:
        with self._session_scope() as session:
            row = session.get(ProgressRow, device_id)
            if row is None:
                return None
            good_since = _opt_utc(row.good_since)
            percent = float(row.percent or 0.0) if good_since is not None else 0.0
            return ProgressState(
                device_id=row.device_id,
                good_now=bool(row.good_now),
                good_since=good_since,
                percent=percent,
                level=percent_to_level(percent),
                window_minutes=int(row.window_minutes),
                updated_at=normalize_utc(row.updated_at),
                last_values=dict(row.last_values or {}),
            )

    def save_progress(self, state: ProgressState) -> None:
        with self._session_scope() as session:
            row = session.get(ProgressRow, state.device_id)
            if row is None:
                row = ProgressRow(device_id=state.device_id)
                session.add(row)
            row.good_now = state.good_now
            row.good_since = state.good_since
            row.percent = state.percent
            row.level = state.level
            row.window_minutes = state.window_minutes
            row.last_values = _jsonable(state.last_values)
            row.schema_version = PROGRESS_SCHEMA_VERSION
            row.updated_at = state.updated_at

    # --- runs ---

    def get_run(self) -> RunSummary | None:
        with self._session_scope() as session:
            row = session.get(PollRunRow, POLL_RUN_KEY)
            if row is None:
                return None
            return RunSummary(
                run_id=row.run_id,
                status="running" if row.status == "running" else "idle",
                started_at=normalize_utc(row.started_at),
                finished_at=_opt_utc(row.finished_at),
                ok_count=int(row.ok_count or 0),
                err_count=int(row.err_count or 0),
                per_device=dict(row.per_device or {}),
            )

    def save_run(self, summary: RunSummary) -> None:
        with self._session_scope() as session:
            row = session.get(PollRunRow, POLL_RUN_KEY)
            if row is None:
                row = PollRunRow(run_key=POLL_RUN_KEY)
                session.add(row)
            row.run_id = summary.run_id
            row.status = summary.status
            row.started_at = summary.started_at
            row.finished_at = summary.finished_at
            row.ok_count = summary.ok_count
            row.err_count = summary.err_count
            row.per_device = _jsonable(summary.per_device)
            row.schema_version = RUN_SCHEMA_VERSION


def _jsonable(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)
