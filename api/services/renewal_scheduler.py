"""
Renewal Scheduler — runs the renewal job once a day in the store's timezone.

A failed run is logged and the loop waits for the next trigger.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, time, timedelta
from zoneinfo import ZoneInfo

from services.renewal_job import SubscriptionRenewalJob
from services.scheduling import store_today

logger = logging.getLogger(__name__)


def parse_run_at(value: str) -> time:
    """Parse "HH:MM" into a time."""
    hour, _, minute = value.partition(":")
    return time(int(hour), int(minute or 0))


def next_run_at(now: datetime, run_at: time) -> datetime:
    """Next occurrence of ``run_at`` strictly after ``now`` (same tzinfo)."""
    candidate = now.replace(hour=run_at.hour, minute=run_at.minute, second=0, microsecond=0)
    if candidate <= now:
        candidate += timedelta(days=1)
    return candidate


async def run_renewal_scheduler(
    job: SubscriptionRenewalJob,
    run_at: str = "02:00",
    timezone: str = "Asia/Dhaka",
    stop_event: asyncio.Event | None = None,
) -> None:
    tz = ZoneInfo(timezone)
    trigger = parse_run_at(run_at)
    stop_event = stop_event or asyncio.Event()
    logger.info("Subscription renewal scheduler started (daily at %s %s)", run_at, timezone)

    while not stop_event.is_set():
        now = datetime.now(tz)
        wake_at = next_run_at(now, trigger)
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=(wake_at - now).total_seconds())
            break
        except asyncio.TimeoutError:
            pass

        today = store_today(timezone)
        try:
            await job.renew_subscriptions(today)
        except Exception:
            logger.exception("Subscription renewal run failed for %s", today.isoformat())

    logger.info("Subscription renewal scheduler stopped")
