"""Device monitoring rules.

A device config says which shadow keys to watch and what range counts as
"good" for each of them:

    variable_map: {"light": "Light_out", "moisture": "Soil_moisture"}
    thresholds:   {"light": {"min": 300, "max": 1200}, "moisture": {"min": 35}}
    window_minutes: 60

Rows are written by operators (or the demo seeder) and are loosely shaped JSON,
so everything is validated here before the engine sees it.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Mapping

from .services.errors import ConfigInvalid


@dataclass(frozen=True)
class ThresholdRange:
    min: float | None = None
    max: float | None = None

    def contains(self, value: float) -> bool:
        if self.min is not None and value < self.min:
            return False
        if self.max is not None and value > self.max:
            return False
        return True


@dataclass(frozen=True)
class DeviceConfig:
    device_id: str
    external_device_id: str
    window_minutes: int
    variable_map: dict[str, str] = field(default_factory=dict)
    thresholds: dict[str, ThresholdRange] = field(default_factory=dict)
    enabled: bool = True
    display_name: str | None = None


def _optional_bound(device_id: str, key: str, bound: str, obj: Mapping[str, Any]) -> float | None:
    v = obj.get(bound)
    if v is None:
        return None
    if isinstance(v, bool) or not isinstance(v, (int, float)) or not math.isfinite(float(v)):
        raise ConfigInvalid(f"device '{device_id}': thresholds.{key}.{bound} must be a finite number")
    return float(v)


def parse_thresholds(device_id: str, raw: Any) -> dict[str, ThresholdRange]:
    if raw is None:
        return {}
    if not isinstance(raw, Mapping):
        raise ConfigInvalid(f"device '{device_id}': thresholds must be an object")

    out: dict[str, ThresholdRange] = {}
    for key, spec in raw.items():
        if not isinstance(spec, Mapping):
            raise ConfigInvalid(f"device '{device_id}': thresholds.{key} must be an object")
        lo = _optional_bound(device_id, str(key), "min", spec)
        hi = _optional_bound(device_id, str(key), "max", spec)
        if lo is not None and hi is not None and lo > hi:
            raise ConfigInvalid(f"device '{device_id}': thresholds.{key} has min ({lo}) > max ({hi})")
        out[str(key)] = ThresholdRange(min=lo, max=hi)
    return out


def parse_variable_map(device_id: str, raw: Any) -> dict[str, str]:
    if raw is None:
        return {}
    if not isinstance(raw, Mapping):
        raise ConfigInvalid(f"device '{device_id}': variable_map must be an object")
    out: dict[str, str] = {}
    for key, target in raw.items():
        if not isinstance(target, str) or not target.strip():
            raise ConfigInvalid(f"device '{device_id}': variable_map.{key} must be a non-empty string")
        out[str(key)] = target.strip()
    return out


def parse_window_minutes(device_id: str, raw: Any, *, default: int) -> int:
    if raw is None:
        return default
    if isinstance(raw, bool):
        raise ConfigInvalid(f"device '{device_id}': window_minutes must be a positive integer")
    if isinstance(raw, float) and raw.is_integer():
        raw = int(raw)
    if not isinstance(raw, int) or raw <= 0:
        raise ConfigInvalid(f"device '{device_id}': window_minutes must be a positive integer")
    return raw


def build_device_config(
    *,
    device_id: str,
    external_device_id: str | None,
    variable_map: Any,
    thresholds: Any,
    window_minutes: Any,
    default_window_minutes: int,
    enabled: bool = True,
    display_name: str | None = None,
) -> DeviceConfig:
    return DeviceConfig(
        device_id=device_id,
        external_device_id=(external_device_id or "").strip() or device_id,
        window_minutes=parse_window_minutes(device_id, window_minutes, default=default_window_minutes),
        variable_map=parse_variable_map(device_id, variable_map),
        thresholds=parse_thresholds(device_id, thresholds),
        enabled=bool(enabled),
        display_name=display_name,
    )
