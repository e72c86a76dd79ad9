from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, DateTime, Float, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from .db import Base


# Bumped whenever the stored progress/run shapes change.
PROGRESS_SCHEMA_VERSION = 1
RUN_SCHEMA_VERSION = 1

# Single run-summary row, named after the scheduled job.
POLL_RUN_KEY = "pollNexiiot"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def json_type() -> JSON:
    # Keep PostgreSQL JSONB in production while remaining portable for SQLite-based demos/tests.
    return JSON().with_variant(JSONB(astext_type=Text()), "postgresql")


class DeviceConfigRow(Base):
    """Monitoring rules for one device. Written by operators/seeding, read by the engine."""

    __tablename__ = "devices"

    device_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    external_device_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    display_name: Mapped[str | None] = mapped_column(String(256), nullable=True)

    variable_map: Mapped[dict] = mapped_column(json_type(), nullable=False, default=dict)
    thresholds: Mapped[dict] = mapped_column(json_type(), nullable=False, default=dict)
    window_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)

    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )


class ProgressRow(Base):
    """Readiness state per device. Owned exclusively by the window state machine."""

    __tablename__ = "progress"

    device_id: Mapped[str] = mapped_column(String(128), primary_key=True)

    good_now: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    good_since: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    percent: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    level: Mapped[str] = mapped_column(String(16), nullable=False)
    window_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    last_values: Mapped[dict] = mapped_column(json_type(), nullable=False, default=dict)

    schema_version: Mapped[int] = mapped_column(Integer, nullable=False, default=PROGRESS_SCHEMA_VERSION)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class PollRunRow(Base):
    """Latest poll run summary (one row per run key, overwritten every run)."""

    __tablename__ = "poll_runs"

    run_key: Mapped[str] = mapped_column(String(64), primary_key=True)
    run_id: Mapped[str] = mapped_column(String(36), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)

    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    ok_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    err_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    per_device: Mapped[dict] = mapped_column(json_type(), nullable=False, default=dict)

    schema_version: Mapped[int] = mapped_column(Integer, nullable=False, default=RUN_SCHEMA_VERSION)
