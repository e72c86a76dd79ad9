from __future__ import annotations

import logging
from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import Engine, text

from .config import settings


logger = logging.getLogger("farmwatch.migrations")


# Fixed advisory lock ID so concurrent instances never migrate at the same time.
_MIGRATION_LOCK_ID = 4402117350917734213


def alembic_config(database_url: str) -> Config:
    repo_root = Path(__file__).resolve().parents[1]
    cfg = Config(str(repo_root / "alembic.ini"))
    cfg.set_main_option("script_location", str(repo_root / "migrations"))
    cfg.set_main_option("sqlalchemy.url", database_url)
    return cfg


def upgrade_head(*, engine: Engine, database_url: str | None = None) -> None:
    """Run `alembic upgrade head`, holding a Postgres advisory lock when available."""

    url = database_url or settings.database_url
    if not url:
        raise RuntimeError("DATABASE_URL is empty; cannot run migrations")

    use_lock = engine.dialect.name == "postgresql"
    lock_conn = engine.connect() if use_lock else None
    try:
        if lock_conn is not None:
            lock_conn.execute(text("SELECT pg_advisory_lock(:id)"), {"id": _MIGRATION_LOCK_ID})
            lock_conn.commit()
            logger.info("acquired migration advisory lock")

        command.upgrade(alembic_config(url), "head")
        logger.info("DB migrations applied (head)")
    finally:
        if lock_conn is not None:
            lock_conn.execute(text("SELECT pg_advisory_unlock(:id)"), {"id": _MIGRATION_LOCK_ID})
            lock_conn.commit()
            lock_conn.close()


def maybe_run_startup_migrations(*, engine: Engine) -> None:
    if not settings.auto_migrate:
        logger.info("AUTO_MIGRATE disabled")
        return
    logger.info("AUTO_MIGRATE enabled; applying migrations")
    upgrade_head(engine=engine)
