from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal


RunStatus = Literal["running", "idle"]


@dataclass
class RunSummary:
    run_id: str
    status: RunStatus
    started_at: datetime
    finished_at: datetime | None = None
    ok_count: int = 0
    err_count: int = 0
    # device_id -> {"ok": True, "percent", "level", "updatedAt"}
    #            | {"ok": False, "error", "errorKind"}
    per_device: dict[str, dict[str, Any]] = field(default_factory=dict)
