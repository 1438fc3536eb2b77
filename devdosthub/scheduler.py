"""Background jobs run alongside the API server."""

from __future__ import annotations

import logging

from apscheduler.schedulers.background import BackgroundScheduler

from .config import settings
from .status import refresh_event_statuses

logger = logging.getLogger("uvicorn.error")

STATUS_JOB_ID = "event-status-refresh"

_scheduler: BackgroundScheduler | None = None


def start_scheduler() -> BackgroundScheduler | None:
    """Start the status refresh job unless disabled in settings."""
    global _scheduler
    if not settings.enable_scheduler:
        logger.info("Background scheduler disabled; event statuses refresh on demand only")
        return None
    if _scheduler and _scheduler.running:
        return _scheduler

    interval = settings.status_refresh_interval
    scheduler = BackgroundScheduler(timezone="UTC")
    scheduler.add_job(
        refresh_event_statuses,
        "interval",
        seconds=int(interval.total_seconds()),
        id=STATUS_JOB_ID,
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )
    scheduler.start()
    logger.info("Event status refresh scheduled every %s", interval)
    _scheduler = scheduler
    return scheduler


def stop_scheduler() -> None:
    global _scheduler
    if _scheduler is None:
        return
    if _scheduler.running:
        _scheduler.shutdown(wait=False)
    _scheduler = None
