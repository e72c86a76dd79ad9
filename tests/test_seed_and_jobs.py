from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from types import SimpleNamespace

from sqlalchemy.orm import sessionmaker

from farmwatch.db import Base, make_engine, session_scope_for
from farmwatch.jobs import poll_nexiiot
from farmwatch.seed import DEMO_DEVICES, seed_demo_devices
from farmwatch.services.errors import RunInProgress
from farmwatch.services.run_summary import RunSummary
from farmwatch.services.store import ProgressStore


def _store(tmp_path: Path) -> ProgressStore:
    engine = make_engine(f"sqlite+pysqlite:///{tmp_path / 'farmwatch.sqlite3'}")
    Base.metadata.create_all(engine)
    return ProgressStore(session_scope_for(sessionmaker(bind=engine, expire_on_commit=False)))


def test_seed_demo_devices_is_idempotent(tmp_path: Path) -> None:
    store = _store(tmp_path)

    assert seed_demo_devices(store) == len(DEMO_DEVICES)
    assert seed_demo_devices(store) == len(DEMO_DEVICES)

    ids = store.list_device_ids()
    assert ids == sorted(d["device_id"] for d in DEMO_DEVICES)

    cfg = store.get_device_config(ids[0])
    assert cfg.external_device_id == ids[0]
    assert cfg.window_minutes == 60
    assert set(cfg.thresholds) == set(cfg.variable_map)


def _patch_job(monkeypatch, driver) -> None:
    monkeypatch.setattr(poll_nexiiot, "configure_logging", lambda **_: None)
    monkeypatch.setattr(poll_nexiiot, "maybe_run_startup_migrations", lambda **_: None)
    monkeypatch.setattr(poll_nexiiot, "get_runtime", lambda: SimpleNamespace(driver=driver))


def _summary(err_count: int) -> RunSummary:
    return RunSummary(
        run_id="run-1",
        status="idle",
        started_at=datetime(2026, 3, 1, tzinfo=timezone.utc),
        ok_count=1,
        err_count=err_count,
    )


def test_poll_job_exit_codes(monkeypatch) -> None:
    _patch_job(monkeypatch, SimpleNamespace(run_once=lambda: _summary(err_count=1)))

    assert poll_nexiiot.main([]) == 0
    assert poll_nexiiot.main(["--fail-on-device-error"]) == 1


def test_poll_job_skips_when_previous_run_active(monkeypatch) -> None:
    def _busy() -> RunSummary:
        raise RunInProgress("poll run run-0 is still running")

    _patch_job(monkeypatch, SimpleNamespace(run_once=_busy))

    assert poll_nexiiot.main(["--fail-on-device-error"]) == 0
