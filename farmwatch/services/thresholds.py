from __future__ import annotations

import math
from typing import Any, Mapping

from ..device_config import ThresholdRange


_MISSING = object()


def raw_key(variable_map: Mapping[str, str], logical_key: str) -> str:
    """Shadow key for a logical sensor name; unmapped names are used as-is."""

    return variable_map.get(logical_key) or logical_key


def lookup(snapshot: Mapping[str, Any], key: str) -> Any:
    """Resolve a raw key in a shadow snapshot.

    An exact key wins; otherwise "a.b.c" walks nested objects. Returns None when
    nothing resolves.
    """

    if key in snapshot:
        return snapshot[key]
    if "." not in key:
        return None

    node: Any = snapshot
    for part in key.split("."):
        if not isinstance(node, Mapping):
            return None
        node = node.get(part, _MISSING)
        if node is _MISSING:
            return None
    return node


def coerce_number(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        f = float(value)
    elif isinstance(value, str):
        try:
            f = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    if not math.isfinite(f):
        return None
    return f


def resolve_values(
    snapshot: Mapping[str, Any],
    thresholds: Mapping[str, ThresholdRange],
    variable_map: Mapping[str, str],
) -> dict[str, Any]:
    """Raw values for every monitored key (None where the snapshot has nothing)."""

    return {key: lookup(snapshot, raw_key(variable_map, key)) for key in thresholds}


def evaluate(
    snapshot: Mapping[str, Any],
    thresholds: Mapping[str, ThresholdRange],
    variable_map: Mapping[str, str],
) -> bool:
    """True when every monitored value is present, numeric and inside its range.

    Fail-closed: a missing or non-numeric value is a violation. No thresholds
    means the device is trivially good.
    """

    for key, bounds in thresholds.items():
        value = coerce_number(lookup(snapshot, raw_key(variable_map, key)))
        if value is None:
            return False
        if not bounds.contains(value):
            return False
    return True
