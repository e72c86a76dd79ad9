from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .services.pipeline import PipelineOutcome
from .services.readiness import ProgressState
from .services.run_summary import RunSummary


class _CamelModel(BaseModel):
    # Wire format is camelCase to match the progress/run documents consumed by the web UI.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ProgressOut(_CamelModel):
    device_id: str
    good_now: bool
    good_since: Optional[datetime]
    percent: float = Field(..., ge=0, le=100)
    level: str
    window_minutes: int
    last_values: Dict[str, Any] = Field(default_factory=dict)
    updated_at: datetime

    @classmethod
    def from_state(cls, state: ProgressState) -> "ProgressOut":
        return cls(
            device_id=state.device_id,
            good_now=state.good_now,
            good_since=state.good_since,
            percent=round(state.percent, 2),
            level=state.level,
            window_minutes=state.window_minutes,
            last_values=dict(state.last_values),
            updated_at=state.updated_at,
        )


class RecomputeOut(_CamelModel):
    ok: Literal[True] = True
    device_id: str
    dry_run: bool
    persisted: bool
    progress: ProgressOut


class RunSummaryOut(_CamelModel):
    exists: Literal[True] = True
    run_id: str
    status: Literal["running", "idle"]
    started_at: datetime
    finished_at: Optional[datetime]
    ok_count: int
    err_count: int
    per_device: Dict[str, Dict[str, Any]] = Field(default_factory=dict)

    @classmethod
    def from_summary(cls, summary: RunSummary) -> "RunSummaryOut":
        return cls(
            run_id=summary.run_id,
            status=summary.status,
            started_at=summary.started_at,
            finished_at=summary.finished_at,
            ok_count=summary.ok_count,
            err_count=summary.err_count,
            per_device=dict(summary.per_device),
        )


def recompute_out(outcome: PipelineOutcome, *, dry_run: bool) -> RecomputeOut:
    if not outcome.ok or outcome.state is None:
        raise ValueError(f"recompute for {outcome.device_id} has no progress to report")
    return RecomputeOut(
        device_id=outcome.device_id,
        dry_run=dry_run,
        persisted=outcome.persisted,
        progress=ProgressOut.from_state(outcome.state),
    )
