import pytest
from unittest.mock import AsyncMock, MagicMock
from connectors.scheduler import CleanupScheduler
from schemas.job import CleanupResult


def test_scheduler_initialization():
    scheduler = CleanupScheduler(job_scheduler=MagicMock(), interval_minutes=5)
    assert scheduler.scheduler is not None
    assert scheduler.interval_minutes == 5


@pytest.mark.asyncio
async def test_cleanup_job_execution():
    job_scheduler = MagicMock()
    job_scheduler.cleanup = AsyncMock(return_value=CleanupResult(checked_count=3, canceled_count=1))

    scheduler = CleanupScheduler(job_scheduler=job_scheduler)
    await scheduler.run_cleanup_job()

    job_scheduler.cleanup.assert_awaited_once()


@pytest.mark.asyncio
async def test_cleanup_failure_is_logged_not_raised():
    job_scheduler = MagicMock()
    job_scheduler.cleanup = AsyncMock(side_effect=RuntimeError("database unavailable"))

    scheduler = CleanupScheduler(job_scheduler=job_scheduler)
    await scheduler.run_cleanup_job()

    job_scheduler.cleanup.assert_awaited_once()


@pytest.mark.asyncio
async def test_start_registers_interval_job():
    scheduler = CleanupScheduler(job_scheduler=MagicMock(), interval_minutes=15)

    scheduler.start()
    try:
        job = scheduler.scheduler.get_job("data_job_cleanup")
        assert job is not None
        assert job.trigger.interval.total_seconds() == 15 * 60
    finally:
        scheduler.stop()

    assert scheduler.scheduler.running is False
