from __future__ import annotations

import argparse
import logging
import sys

from ..config import settings
from ..db import engine
from ..migrations import maybe_run_startup_migrations
from ..observability import configure_logging
from ..services.errors import RunInProgress
from ..services.runtime import get_runtime


logger = logging.getLogger("farmwatch.job.poll_nexiiot")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Run one readiness poll over every enabled device.")
    parser.add_argument(
        "--fail-on-device-error",
        action="store_true",
        help="Exit non-zero when any device failed (default: only run-level failures do).",
    )
    args = parser.parse_args(argv)

    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    configure_logging(level=level, log_format=settings.log_format, gcp_project_id=settings.gcp_project_id)

    maybe_run_startup_migrations(engine=engine)

    try:
        summary = get_runtime().driver.run_once()
    except RunInProgress as exc:
        logger.warning("poll_skipped", extra={"fields": {"reason": str(exc)}})
        return 0

    logger.info(
        "poll_nexiiot complete",
        extra={"fields": {"run_id": summary.run_id, "ok": summary.ok_count, "err": summary.err_count}},
    )
    if args.fail_on_device_error and summary.err_count:
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
