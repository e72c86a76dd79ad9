"""One-off job entrypoints.

These modules are designed to run as:

  python -m farmwatch.jobs.poll_nexiiot
  python -m farmwatch.jobs.migrate

The poll job is the external-timer alternative to the in-process scheduler
(Cloud Scheduler -> Cloud Run Job, or cron every 5 minutes).
"""
