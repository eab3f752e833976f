from __future__ import annotations

import logging
from collections.abc import Callable

from apscheduler.schedulers.background import BackgroundScheduler
from sqlalchemy.orm import Session

from scout_api.core.config import Settings
from scout_api.services.cache import TTLCache
from scout_api.services.storage import cleanup

logger = logging.getLogger(__name__)


def run_storage_cleanup(session_factory: Callable[[], Session], max_age_hours: float) -> dict[str, int]:
    db = session_factory()
    try:
        return cleanup(db, max_age_hours)
    finally:
        db.close()


def purge_cache(cache_provider: Callable[[], TTLCache | None]) -> int:
    cache = cache_provider()
    return cache.purge_expired() if cache is not None else 0


def start_scheduler(
    settings: Settings,
    session_factory: Callable[[], Session],
    cache_provider: Callable[[], TTLCache | None] | None = None,
) -> BackgroundScheduler:
    scheduler = BackgroundScheduler(timezone="UTC")
    scheduler.add_job(
        run_storage_cleanup,
        "interval",
        hours=settings.cleanup_interval_hours,
        args=[session_factory, settings.storage_max_age_hours],
        id="storage_cleanup",
        replace_existing=True,
    )
    if cache_provider is not None:
        scheduler.add_job(
            purge_cache,
            "interval",
            seconds=max(60, settings.cache.ttl_seconds // 4),
            args=[cache_provider],
            id="cache_purge",
            replace_existing=True,
        )
    scheduler.start()
    logger.info("Scheduler started: storage cleanup every %sh", settings.cleanup_interval_hours)
    return scheduler
