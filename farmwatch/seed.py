"""Demo device configs.

The two pilot farms: a soil probe watching light + moisture, and a weather
station watching PAR light + air temperature. Seeding is idempotent (upsert by
device id) and only runs when BOOTSTRAP_DEMO_DEVICES is on.
"""

from __future__ import annotations

import logging
from typing import Any

from .services.store import ProgressStore


logger = logging.getLogger("farmwatch.seed")


DEMO_DEVICES: tuple[dict[str, Any], ...] = (
    {
        "device_id": "20b1b470-a0b4-412a-890d-fa87380183c6",
        "display_name": "Soil probe 1",
        "variable_map": {"light": "Light_out", "moisture": "Soil_moisture"},
        "thresholds": {"light": {"min": 300, "max": 1200}, "moisture": {"min": 35, "max": 60}},
        "window_minutes": 60,
    },
    {
        "device_id": "3e3fe3eb-7677-4585-bd02-fb4b53793a33",
        "display_name": "Weather station 1",
        "variable_map": {"light": "Weather_light_par", "temp": "Weather_Temperature"},
        "thresholds": {"light": {"min": 200, "max": 1500}, "temp": {"min": 20, "max": 35}},
        "window_minutes": 60,
    },
)


def seed_demo_devices(store: ProgressStore) -> int:
    for spec in DEMO_DEVICES:
        store.upsert_device_config(
            spec["device_id"],
            external_device_id=spec["device_id"],
            variable_map=spec["variable_map"],
            thresholds=spec["thresholds"],
            window_minutes=spec["window_minutes"],
            display_name=spec["display_name"],
        )
    logger.info("Seeded demo devices (count=%s)", len(DEMO_DEVICES))
    return len(DEMO_DEVICES)
