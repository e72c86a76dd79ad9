from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from farmwatch.services.readiness import ProgressState, advance, percent_to_level


T0 = datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc)


def _step(prev: ProgressState | None, verdict: bool, now: datetime, window: int = 60) -> ProgressState:
    return advance(prev, device_id="dev-1", verdict=verdict, now=now, window_minutes=window)


def test_first_good_observation_starts_window() -> None:
    state = _step(None, True, T0)
    assert state.good_now is True
    assert state.good_since == T0
    assert state.percent == 0.0
    assert state.level == "L0"


def test_half_window_is_fifty_percent() -> None:
    first = _step(None, True, T0)
    state = _step(first, True, T0 + timedelta(minutes=30))
    assert state.good_since == T0
    assert state.percent == pytest.approx(50.0)
    assert state.level == "L2"


def test_percent_caps_at_one_hundred() -> None:
    first = _step(None, True, T0)
    state = _step(first, True, T0 + timedelta(minutes=90))
    assert state.percent == 100.0
    assert state.level == "L4"


def test_bad_observation_resets_window() -> None:
    first = _step(None, True, T0)
    mid = _step(first, True, T0 + timedelta(minutes=45))
    reset = _step(mid, False, T0 + timedelta(minutes=50))
    assert reset.good_now is False
    assert reset.good_since is None
    assert reset.percent == 0.0
    assert reset.level == "L0"

    again = _step(reset, True, T0 + timedelta(minutes=55))
    assert again.good_since == T0 + timedelta(minutes=55)
    assert again.percent == 0.0


def test_percent_is_monotonic_while_good() -> None:
    state = _step(None, True, T0)
    last = state.percent
    for minutes in (5, 10, 20, 40, 59, 60, 75):
        state = _step(state, True, T0 + timedelta(minutes=minutes))
        assert state.percent >= last
        last = state.percent


def test_advance_is_idempotent_for_same_inputs() -> None:
    prev = _step(None, True, T0)
    now = T0 + timedelta(minutes=20)
    assert _step(prev, True, now) == _step(prev, True, now)


def test_window_change_rescales_percent() -> None:
    prev = _step(None, True, T0)
    state = _step(prev, True, T0 + timedelta(minutes=30), window=120)
    assert state.percent == pytest.approx(25.0)
    assert state.window_minutes == 120


def test_clock_going_backwards_never_goes_negative() -> None:
    prev = _step(None, True, T0)
    state = _step(prev, True, T0 - timedelta(minutes=5))
    assert state.percent == 0.0


def test_naive_timestamps_are_treated_as_utc() -> None:
    state = _step(None, True, datetime(2026, 3, 1, 10, 0))
    assert state.good_since == T0


def test_non_positive_window_is_rejected() -> None:
    with pytest.raises(ValueError):
        _step(None, True, T0, window=0)


@pytest.mark.parametrize(
    "percent,level",
    [
        (0, "L0"),
        (24.99, "L0"),
        (25, "L1"),
        (49.9, "L1"),
        (50, "L2"),
        (74.99, "L2"),
        (75, "L3"),
        (99.99, "L3"),
        (100, "L4"),
        (150, "L4"),
        (-3, "L0"),
    ],
)
def test_percent_to_level(percent, level) -> None:
    assert percent_to_level(percent) == level
