from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any


# Ordered (lower bound percent, tier) pairs, highest first.
LEVEL_TIERS: tuple[tuple[float, str], ...] = (
    (100.0, "L4"),
    (75.0, "L3"),
    (50.0, "L2"),
    (25.0, "L1"),
    (0.0, "L0"),
)
LOWEST_LEVEL = LEVEL_TIERS[-1][1]


def clamp_percent(value: float) -> float:
    return max(0.0, min(100.0, float(value)))


def percent_to_level(percent: float) -> str:
    """Map a readiness percent to its tier.

    L0 [0, 25), L1 [25, 50), L2 [50, 75), L3 [75, 100), L4 at 100.
    """

    p = clamp_percent(percent)
    for lower, level in LEVEL_TIERS:
        if p >= lower:
            return level
    return LOWEST_LEVEL


def normalize_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class ProgressState:
    device_id: str
    good_now: bool
    good_since: datetime | None
    percent: float
    level: str
    window_minutes: int
    updated_at: datetime
    last_values: dict[str, Any] = field(default_factory=dict)


def advance(
    prev: ProgressState | None,
    *,
    device_id: str,
    verdict: bool,
    now: datetime,
    window_minutes: int,
) -> ProgressState:
    """Compute the next readiness state from the previous one and the latest verdict.

    Pure: the same (prev, verdict, now, window_minutes) always yields the same state.
    """

    if window_minutes <= 0:
        raise ValueError("window_minutes must be > 0")

    now = normalize_utc(now)

    if not verdict:
        return ProgressState(
            device_id=device_id,
            good_now=False,
            good_since=None,
            percent=0.0,
            level=LOWEST_LEVEL,
            window_minutes=window_minutes,
            updated_at=now,
        )

    if prev is None or not prev.good_now or prev.good_since is None:
        good_since = now
    else:
        good_since = normalize_utc(prev.good_since)

    elapsed_minutes = (now - good_since).total_seconds() / 60.0
    percent = clamp_percent(elapsed_minutes / window_minutes * 100.0)

    return ProgressState(
        device_id=device_id,
        good_now=True,
        good_since=good_since,
        percent=percent,
        level=percent_to_level(percent),
        window_minutes=window_minutes,
        updated_at=now,
    )


def with_values(state: ProgressState, values: dict[str, Any]) -> ProgressState:
    return replace(state, last_values=dict(values))
