from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, HTTPException, Query

from ..schemas import ProgressOut, RecomputeOut, RunSummaryOut, recompute_out
from ..services.errors import ErrorKind
from ..services.runtime import get_runtime

router = APIRouter(prefix="/api/v1", tags=["progress"])


_ERROR_STATUS: dict[ErrorKind, int] = {
    ErrorKind.CONFIG_MISSING: 404,
    ErrorKind.CONFIG_INVALID: 422,
    ErrorKind.AUTH: 502,
    ErrorKind.SHADOW_FETCH: 502,
    ErrorKind.PERSISTENCE: 503,
    ErrorKind.INTERNAL: 500,
}


def _require_device_id(device_id: Optional[str]) -> str:
    v = (device_id or "").strip()
    if not v:
        raise HTTPException(status_code=400, detail="deviceId required")
    return v


@router.get("/progress", response_model=ProgressOut)
def get_progress(
    device_id: Optional[str] = Query(None, alias="deviceId", max_length=128),
) -> ProgressOut:
    did = _require_device_id(device_id)
    state = get_runtime().diagnostics.get_progress(did)
    if state is None:
        raise HTTPException(status_code=404, detail="progress not found")
    return ProgressOut.from_state(state)


@router.api_route("/recompute", methods=["GET", "POST"], response_model=RecomputeOut)
def recompute(
    device_id: Optional[str] = Query(None, alias="deviceId", max_length=128),
    dry_run: bool = Query(False, alias="dryRun"),
) -> RecomputeOut:
    """Recompute one device now.

    - dryRun=true returns the would-be progress without writing anything.
    - Pipeline failures map to 404 (unknown device), 422 (bad config),
      502 (identity provider / shadow service) or 5xx.
    """

    did = _require_device_id(device_id)
    outcome = get_runtime().diagnostics.recompute_one(did, dry_run=dry_run)
    if not outcome.ok:
        kind = outcome.error_kind or ErrorKind.INTERNAL
        raise HTTPException(
            status_code=_ERROR_STATUS.get(kind, 500),
            detail={"ok": False, "error": outcome.error or "recompute failed", "errorKind": kind.value},
        )
    return recompute_out(outcome, dry_run=dry_run)


@router.get("/run-status")
def get_run_status() -> dict[str, Any]:
    summary = get_runtime().diagnostics.get_run_status()
    if summary is None:
        return {"exists": False}
    return RunSummaryOut.from_summary(summary).model_dump(by_alias=True, mode="json")
