"""Background housekeeping jobs run by APScheduler."""

from __future__ import annotations

import logging

from apscheduler.schedulers.background import BackgroundScheduler

from .card.service import image_loader, purge_idle_sessions
from .config import settings

logger = logging.getLogger("uvicorn.error")

_scheduler: BackgroundScheduler | None = None


def refresh_image_cache() -> None:
    """Drop cached overlays and logos so edited sponsor assets are refetched."""
    image_loader.clear()
    logger.info("Image cache cleared")


def _jobs() -> list[tuple[str, object, dict]]:
    return [
        (
            "purge-card-sessions",
            purge_idle_sessions,
            {"minutes": settings.session_purge_interval_minutes},
        ),
        (
            "refresh-image-cache",
            refresh_image_cache,
            {"hours": settings.image_cache_refresh_hours},
        ),
    ]


def start_scheduler() -> BackgroundScheduler | None:
    global _scheduler
    if not settings.enable_scheduler:
        logger.info("Scheduler disabled by configuration")
        return None
    if _scheduler and _scheduler.running:
        return _scheduler
    scheduler = BackgroundScheduler(timezone="UTC")
    for job_id, func, interval in _jobs():
        scheduler.add_job(
            func,
            "interval",
            id=job_id,
            max_instances=1,
            replace_existing=True,
            **interval,
        )
    scheduler.start()
    _scheduler = scheduler
    return scheduler


def stop_scheduler() -> None:
    global _scheduler
    if _scheduler and _scheduler.running:
        _scheduler.shutdown(wait=False)
        _scheduler = None
