"""Segment Refresh Scheduler - Periodic re-materialization of segments.

Segment membership is a snapshot taken when a segment is created or
updated. This job is the reconciliation path: it re-evaluates every stored
rule against current customer data on a fixed interval. Customer changes
never trigger evaluation on their own.
"""

import logging
from typing import Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import async_session_maker
from app.models.segment import Segment
from app.services.segments import SegmentMaterializer

logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler: Optional[AsyncIOScheduler] = None

JOB_ID = "segment_refresh"


def get_scheduler() -> AsyncIOScheduler:
    """Get or create the scheduler instance."""
    global scheduler
    if scheduler is None:
        scheduler = AsyncIOScheduler()
    return scheduler


async def refresh_all_segments(
    session_factory: Callable[[], AsyncSession] = async_session_maker,
) -> dict:
    """
    Main job: re-materialize every segment.

    A segment that fails to refresh (for example because its stored rule no
    longer validates) is logged and skipped; the rest still run.
    """
    logger.info("Starting segment refresh...")
    refreshed = 0
    errors = 0

    try:
        async with session_factory() as db:
            result = await db.execute(select(Segment.id).order_by(Segment.id))
            segment_ids = list(result.scalars().all())

            logger.info(f"Found {len(segment_ids)} segments to refresh")

            materializer = SegmentMaterializer(db)
            for segment_id in segment_ids:
                try:
                    await materializer.refresh(segment_id)
                    refreshed += 1
                except Exception as e:
                    errors += 1
                    await db.rollback()
                    logger.error(f"Error refreshing segment {segment_id}: {e}", exc_info=True)

    except Exception as e:
        logger.error(f"Fatal error in segment refresh: {e}", exc_info=True)

    logger.info(f"Segment refresh complete. Refreshed: {refreshed}, Errors: {errors}")
    return {"refreshed": refreshed, "errors": errors}


def start_segment_refresh_scheduler():
    """Start the refresh scheduler if enabled in settings."""
    global scheduler

    if not settings.SEGMENT_REFRESH_ENABLED:
        logger.info("Segment refresh scheduler disabled")
        return

    scheduler = get_scheduler()

    scheduler.add_job(
        refresh_all_segments,
        IntervalTrigger(minutes=settings.SEGMENT_REFRESH_INTERVAL_MINUTES),
        id=JOB_ID,
        name="Refresh segment membership",
        replace_existing=True,
    )

    if not scheduler.running:
        scheduler.start()
        logger.info("Segment refresh scheduler started")
        for job in scheduler.get_jobs():
            logger.info(f"  - {job.name}: {job.trigger}")


def stop_segment_refresh_scheduler():
    """Stop the refresh scheduler."""
    global scheduler

    if scheduler and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Segment refresh scheduler stopped")


async def run_segment_refresh_now():
    """Manually trigger a refresh of all segments."""
    logger.info("Manual segment refresh triggered")
    summary = await refresh_all_segments()
    return {"status": "completed", **summary}
