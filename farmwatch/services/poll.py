from __future__ import annotations

import logging
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone

from .errors import RunInProgress
from .pipeline import DevicePipeline, PipelineOutcome
from .readiness import normalize_utc
from .run_summary import RunSummary
from .store import ProgressStore


logger = logging.getLogger("farmwatch.poll")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PollDriver:
    """Runs every enabled device through the pipeline and records a run summary.

    - A `running` summary is written before any device is touched and the final
      `idle` summary after the last one, so a crashed run stays visible.
    - Devices run on a bounded thread pool (`concurrency=1` is sequential).
    - A run refuses to start while a previous one is still `running` and
      younger than `stale_run_after_s`.
    """

    def __init__(
        self,
        *,
        store: ProgressStore,
        pipeline: DevicePipeline,
        concurrency: int = 1,
        stale_run_after_s: int = 900,
    ) -> None:
        self.store = store
        self.pipeline = pipeline
        self.concurrency = max(1, int(concurrency))
        self.stale_run_after_s = stale_run_after_s

    def run_once(self, now: datetime | None = None) -> RunSummary:
        started_at = normalize_utc(now) if now is not None else utcnow()
        self._guard_overlap(started_at)

        summary = RunSummary(run_id=uuid.uuid4().hex, status="running", started_at=started_at)
        self.store.save_run(summary)

        device_ids = self.store.list_device_ids(enabled_only=True)
        logger.info(
            "poll_run_started",
            extra={
                "fields": {
                    "run_id": summary.run_id,
                    "devices": len(device_ids),
                    "concurrency": self.concurrency,
                }
            },
        )

        t0 = time.perf_counter()
        for outcome in self._process(device_ids, started_at):
            summary.per_device[outcome.device_id] = outcome.digest()
            if outcome.ok:
                summary.ok_count += 1
            else:
                summary.err_count += 1
            _log_outcome(summary.run_id, outcome)

        summary.status = "idle"
        summary.finished_at = utcnow() if now is None else started_at
        self.store.save_run(summary)

        logger.info(
            "poll_run_finished",
            extra={
                "fields": {
                    "run_id": summary.run_id,
                    "ok_count": summary.ok_count,
                    "err_count": summary.err_count,
                    "duration_ms": int((time.perf_counter() - t0) * 1000),
                }
            },
        )
        return summary

    def _guard_overlap(self, now: datetime) -> None:
        previous = self.store.get_run()
        if previous is None or previous.status != "running":
            return
        age_s = (now - previous.started_at).total_seconds()
        if age_s < self.stale_run_after_s:
            raise RunInProgress(
                f"poll run {previous.run_id} is still running (started {int(age_s)}s ago)"
            )
        logger.warning(
            "poll_run_stale_superseded",
            extra={"fields": {"run_id": previous.run_id, "age_s": int(age_s)}},
        )

    def _process(self, device_ids: list[str], now: datetime) -> list[PipelineOutcome]:
        if self.concurrency == 1 or len(device_ids) <= 1:
            return [self.pipeline.run(device_id, now=now) for device_id in device_ids]

        with ThreadPoolExecutor(max_workers=self.concurrency, thread_name_prefix="poll") as pool:
            # map() preserves input order; each pipeline.run() traps its own errors.
            return list(pool.map(lambda device_id: self.pipeline.run(device_id, now=now), device_ids))


def _log_outcome(run_id: str, outcome: PipelineOutcome) -> None:
    if outcome.ok and outcome.state is not None:
        logger.info(
            "poll_device_ok",
            extra={
                "fields": {
                    "run_id": run_id,
                    "device_id": outcome.device_id,
                    "good_now": outcome.state.good_now,
                    "percent": round(outcome.state.percent, 2),
                    "level": outcome.state.level,
                }
            },
        )
        return

    logger.warning(
        "poll_device_failed",
        extra={
            "fields": {
                "run_id": run_id,
                "device_id": outcome.device_id,
                "error_kind": outcome.error_kind.value if outcome.error_kind else None,
                "error": outcome.error,
            }
        },
    )
