import logging
from typing import Optional
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from core.config import settings
from connectors.jobs import DataJobScheduler

logger = logging.getLogger(__name__)


class CleanupScheduler:
    """Periodically cancels data jobs that stopped making progress"""

    def __init__(self, job_scheduler: Optional[DataJobScheduler] = None, interval_minutes: Optional[int] = None):
        self.scheduler = AsyncIOScheduler()
        self.job_scheduler = job_scheduler or DataJobScheduler()
        self.interval_minutes = interval_minutes or settings.JOB_CLEANUP_INTERVAL_MINUTES

    async def run_cleanup_job(self):
        """Job to cancel stale data jobs"""
        logger.info("Scheduler: Starting job cleanup")
        try:
            result = await self.job_scheduler.cleanup()
            if result.canceled_count:
                logger.warning(f"Scheduler: Canceled {result.canceled_count} stale jobs")
        except Exception as e:
            logger.error(f"Scheduler: Job cleanup failed - {e}")

    def start(self):
        """Start the scheduler"""
        self.scheduler.add_job(
            self.run_cleanup_job,
            trigger=IntervalTrigger(minutes=self.interval_minutes),
            id="data_job_cleanup",
            replace_existing=True
        )
        self.scheduler.start()
        logger.info(f"Cleanup scheduler started (every {self.interval_minutes} minutes)")

    def stop(self):
        if self.scheduler.running:
            self.scheduler.shutdown()
        logger.info("Cleanup scheduler stopped")
