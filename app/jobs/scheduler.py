"""APScheduler setup and job registration."""

from __future__ import annotations

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from app.config import settings
from app.jobs.vote_expiry import vote_expiry
from app.utils.time import now_utc

scheduler = AsyncIOScheduler(timezone=settings.timezone)


def register_jobs() -> None:
    """Register the vote expiry sweep.

    The first run fires immediately so votes that ran out while the service
    was down are closed at startup rather than one interval later.
    """
    if scheduler.get_job("vote_expiry") is not None:
        return
    scheduler.add_job(
        vote_expiry,
        IntervalTrigger(minutes=settings.vote_sweep_interval_minutes, timezone=settings.timezone),
        id="vote_expiry",
        next_run_time=now_utc(),
        max_instances=1,
        coalesce=True,
    )
