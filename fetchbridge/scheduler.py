"""Scheduler — drives continuation timeouts using APScheduler."""

from __future__ import annotations

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

logger = logging.getLogger(__name__)

JOB_DEFAULTS = {
    # A timeout that fires late must still fire.
    "misfire_grace_time": None,
    "coalesce": True,
    "max_instances": 1,
}


def setup_scheduler() -> AsyncIOScheduler:
    """Build the scheduler the continuation host arms its timeout jobs on.

    Jobs added before ``start()`` stay pending and are scheduled once the
    app's event loop is running.
    """
    scheduler = AsyncIOScheduler(job_defaults=JOB_DEFAULTS, timezone="UTC")
    logger.info("Continuation timeout scheduler configured")
    return scheduler
