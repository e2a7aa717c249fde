"""
Script to run a full load for one connector, continuations included

Usage:
    python scripts/run_sync.py <connector_id>
"""

import asyncio
import sys
import os
import logging

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from connectors.jobs import DataJobScheduler
from core.database import engine
from core.exceptions import SyncError
from core.logging import setup_logging
from models.base import JobResult

setup_logging()
logger = logging.getLogger(__name__)


async def run_sync(connector_id: str) -> int:
    """Create a job for the connector and run it until it finishes"""
    scheduler = DataJobScheduler()

    try:
        job = await scheduler.create(connector_id)
        logger.info(f"Created job {job.id} for {connector_id}")

        result = await scheduler.run_to_completion(job.id)
        if result is None:
            logger.error(f"Job {job.id} did not run")
            return 1

        finished = result.job
        logger.info(
            f"Job {finished.id} finished with result {finished.result}: "
            f"{finished.updated_record_count} records in {finished.run_time_ms}ms"
        )
        if finished.result != JobResult.SUCCESS:
            logger.error(f"Sync failed for {connector_id}: {finished.error}")
            return 1
        return 0

    except SyncError as e:
        logger.error(f"Sync for {connector_id} not started: {e.describe()}")
        return 1
    finally:
        await engine.dispose()


if __name__ == "__main__":
    if len(sys.argv) != 2:
        print("Usage: python scripts/run_sync.py <connector_id>")
        sys.exit(2)
    sys.exit(asyncio.run(run_sync(sys.argv[1])))
