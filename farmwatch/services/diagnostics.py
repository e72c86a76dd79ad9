from __future__ import annotations

import logging
from datetime import datetime

from .pipeline import DevicePipeline, PipelineOutcome
from .poll import utcnow
from .readiness import ProgressState, normalize_utc
from .run_summary import RunSummary
from .store import ProgressStore


logger = logging.getLogger("farmwatch.diagnostics")


class DiagnosticFacade:
    def __init__(self, *, store: ProgressStore, pipeline: DevicePipeline) -> None:
        self.store = store
        self.pipeline = pipeline

    def recompute_one(self, device_id: str, *, dry_run: bool, now: datetime | None = None) -> PipelineOutcome:
        """Run one device through the pipeline on demand.

        With `dry_run` the would-be state is returned and nothing is persisted.
        """

        ts = normalize_utc(now) if now is not None else utcnow()
        outcome = self.pipeline.run(device_id, now=ts, persist=not dry_run)
        logger.info(
            "recompute",
            extra={
                "fields": {
                    "device_id": device_id,
                    "dry_run": dry_run,
                    "ok": outcome.ok,
                    "error_kind": outcome.error_kind.value if outcome.error_kind else None,
                }
            },
        )
        return outcome

    def get_progress(self, device_id: str) -> ProgressState | None:
        return self.store.get_progress(device_id)

    def get_run_status(self) -> RunSummary | None:
        return self.store.get_run()
