"""
Data job scheduler: persisted, resumable load jobs.

State machine: created -> running -> finished{success|error|canceled}.
Creating a job cancels any unfinished job of the same connector; a partial
unique index on ``data_jobs`` backs that invariant against racing creators.
A run that exhausts its time budget leaves the job running and returns
its id in ``next_job_ids`` so the caller can dispatch a continuation.
"""

from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional, Set
import asyncio
import logging
import time
import uuid

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from connectors.catalog import Catalog
from core.config import settings
from core.database import async_session_maker
from core.exceptions import (
    ConflictError,
    JobAlreadyFinishedError,
    JobNotFoundError,
    SyncError,
    UnknownJobTypeError,
)
from core.timeutil import utcnow
from models.base import JobResult, JobState, JobType
from models.connector import ConnectorStatus
from models.data_job import DataJob
from schemas.connector import LoadResult
from schemas.job import CleanupResult, DataJobInfo, JobWaitResult, RunJobResult

logger = logging.getLogger(__name__)

UNFINISHED_STATES = (JobState.CREATED, JobState.RUNNING)

# Strong references to detached job runs until they complete
_background_tasks: Set[asyncio.Task] = set()


class DataJobScheduler:
    """
    Create, run and supervise data jobs.

    Every public method opens its own session so job execution never
    depends on the caller's request or connection.

    Attributes:
        session_factory: Produces AsyncSession instances
        catalog_factory: Builds a Catalog for a session
        max_job_duration_ms: Time budget per run; stale threshold is twice this
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        catalog_factory: Callable[[AsyncSession], Catalog] = Catalog,
        max_job_duration_ms: Optional[int] = None,
    ):
        self.session_factory = session_factory or async_session_maker
        self.catalog_factory = catalog_factory
        self.max_job_duration_ms = max_job_duration_ms or settings.MAX_JOB_DURATION_MS

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    async def _get_job(session: AsyncSession, job_id: str) -> DataJob:
        job = await session.get(DataJob, job_id, populate_existing=True)
        if job is None:
            raise JobNotFoundError(f"Job {job_id} not found", context={"job_id": job_id})
        return job

    @staticmethod
    async def _stop_job(session: AsyncSession, job: DataJob, result: JobResult, error: Optional[str] = None) -> None:
        """Finish a job and release the connector it owned. Caller commits."""
        now = utcnow()
        job.state = JobState.FINISHED
        job.result = result
        job.error = error
        job.finished_at = now
        job.updated_at = now

        status = await session.get(ConnectorStatus, job.connector_id, populate_existing=True)
        if status is not None:
            if status.data_job_id in (None, job.id):
                status.data_job_id = None
                status.is_loading = False
            status.last_data_job_id = job.id

        logger.info(f"Job {job.id} finished with result {result.value}" + (f": {error}" if error else ""))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def create(self, connector_id: str, params: Optional[Dict[str, Any]] = None) -> DataJobInfo:
        """
        Supersede unfinished jobs of the connector and insert a new one.

        Raises:
            ConnectorNotFoundError: Unknown connector id
            ConflictError: A concurrent create won the race
        """
        async with self.session_factory() as session:
            await self.catalog_factory(session).get(connector_id)

            result = await session.execute(
                select(DataJob).where(
                    DataJob.connector_id == connector_id,
                    DataJob.state.in_(UNFINISHED_STATES)
                )
            )
            for existing in result.scalars().all():
                logger.info(f"Canceling job {existing.id} superseded by a new job for {connector_id}")
                await self._stop_job(session, existing, JobResult.CANCELED)
            await session.flush()

            job = DataJob(
                id=str(uuid.uuid4()),
                connector_id=connector_id,
                type=JobType.LOAD,
                state=JobState.CREATED,
                params=params or {},
                progress={"updated_record_count": 0},
            )
            session.add(job)

            status = await session.get(ConnectorStatus, connector_id, populate_existing=True)
            if status is None:
                status = ConnectorStatus(connector_id=connector_id, is_connected=False)
                session.add(status)
            status.data_job_id = job.id
            status.is_loading = True

            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise ConflictError(
                    f"Another job for {connector_id} was created concurrently",
                    context={"connector_id": connector_id},
                    original_exception=e
                )

            logger.info(f"Created job {job.id} for connector {connector_id}")
            return DataJobInfo.from_job(job)

    async def run(self, job_id: str) -> RunJobResult:
        """
        Execute one duration-bounded run of a job.

        Load failures finish the job with result=error and are returned,
        never raised.

        Raises:
            JobNotFoundError: Unknown job id
            JobAlreadyFinishedError: The job already reached finished
        """
        async with self.session_factory() as session:
            job = await self._get_job(session, job_id)
            if job.state == JobState.FINISHED:
                raise JobAlreadyFinishedError(
                    f"Job {job_id} already finished with result {job.result.value if job.result else None}",
                    context={"job_id": job_id}
                )

            if job.started_at is None:
                job.started_at = utcnow()
            job.state = JobState.RUNNING
            await session.commit()
            logger.info(f"Running job {job_id} for connector {job.connector_id}")

            next_job_ids: List[str] = []
            try:
                if job.type != JobType.LOAD:
                    raise UnknownJobTypeError(f"Unknown job type: {job.type}", context={"job_id": job_id})

                load_result = await self._execute_load_job(session, job)
                job = await self._get_job(session, job_id)
                if job.state == JobState.FINISHED:
                    logger.info(f"Job {job_id} was finished ({job.result.value}) while running; keeping that result")
                elif load_result.is_finished:
                    await self._stop_job(session, job, JobResult.SUCCESS)
                else:
                    job.updated_at = utcnow()
                    next_job_ids.append(job.id)
                    logger.info(f"Job {job_id} paused after its time budget; continuation required")
                await session.commit()
            except Exception as e:
                await session.rollback()
                job = await self._get_job(session, job_id)
                if job.state == JobState.FINISHED:
                    logger.warning(f"Job {job_id} failed after it was finished ({job.result.value}): {e}")
                else:
                    logger.error(f"Job {job_id} failed: {e}")
                    await self._stop_job(session, job, JobResult.ERROR, error=str(e))
                    await session.commit()

            return RunJobResult(job=DataJobInfo.from_job(job), next_job_ids=next_job_ids)

    async def _execute_load_job(self, session: AsyncSession, job: DataJob) -> LoadResult:
        job_id = job.id
        connector = await self.catalog_factory(session).get_connector(job.connector_id)

        async def on_progress(written: int) -> None:
            current = await self._get_job(session, job_id)
            # A superseded or canceled job keeps its final row
            if current.state == JobState.FINISHED:
                return
            current.progress = {"updated_record_count": current.updated_record_count + written}
            current.updated_at = utcnow()
            await session.commit()

        load_result = await connector.load(
            max_duration_ms=self.max_job_duration_ms,
            sync_context=job.sync_context,
            on_progress=on_progress,
            job_id=job_id,
        )

        current = await self._get_job(session, job_id)
        if current.state != JobState.FINISHED:
            current.sync_context = dict(load_result.sync_context)
            await session.commit()
        return load_result

    async def cancel(self, job_id: str) -> DataJobInfo:
        async with self.session_factory() as session:
            job = await self._get_job(session, job_id)
            if job.state == JobState.FINISHED:
                raise JobAlreadyFinishedError(f"Job {job_id} already finished", context={"job_id": job_id})
            await self._stop_job(session, job, JobResult.CANCELED)
            await session.commit()
            return DataJobInfo.from_job(job)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    async def get(self, job_id: str) -> DataJobInfo:
        async with self.session_factory() as session:
            return DataJobInfo.from_job(await self._get_job(session, job_id))

    async def get_by_config(self, connector_id: str) -> List[DataJobInfo]:
        """Jobs of a connector, newest first"""
        async with self.session_factory() as session:
            result = await session.execute(
                select(DataJob)
                .where(DataJob.connector_id == connector_id)
                .order_by(DataJob.created_at.desc())
            )
            return [DataJobInfo.from_job(job) for job in result.scalars().all()]

    # ------------------------------------------------------------------
    # Supervision
    # ------------------------------------------------------------------

    async def cleanup(self) -> CleanupResult:
        """Cancel unfinished jobs not updated within twice the max job duration"""
        threshold = utcnow() - timedelta(milliseconds=2 * self.max_job_duration_ms)

        async with self.session_factory() as session:
            result = await session.execute(select(DataJob).where(DataJob.state.in_(UNFINISHED_STATES)))
            unfinished = result.scalars().all()

            canceled = 0
            for job in unfinished:
                if job.updated_at < threshold:
                    logger.warning(f"Canceling stale job {job.id} (last update {job.updated_at.isoformat()})")
                    await self._stop_job(session, job, JobResult.CANCELED, error="Canceled by cleanup: no progress within the allowed duration")
                    canceled += 1
            await session.commit()

        logger.info(f"Job cleanup checked {len(unfinished)} unfinished jobs, canceled {canceled}")
        return CleanupResult(checked_count=len(unfinished), canceled_count=canceled)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def trigger(self, job_id: str) -> asyncio.Task:
        """Run a job and its continuations detached from the caller"""
        task = asyncio.create_task(self.run_to_completion(job_id))
        _background_tasks.add(task)
        task.add_done_callback(_background_tasks.discard)
        return task

    async def run_to_completion(self, job_id: str) -> Optional[RunJobResult]:
        pending = [job_id]
        last_result: Optional[RunJobResult] = None
        while pending:
            current_id = pending.pop(0)
            try:
                last_result = await self.run(current_id)
            except SyncError as e:
                logger.warning(f"Job {current_id} was not run: {e}")
                continue
            pending.extend(last_result.next_job_ids)
        return last_result

    async def wait_for_completion(
        self,
        job_id: str,
        timeout_seconds: Optional[float] = None,
        polling_interval_seconds: Optional[float] = None,
    ) -> JobWaitResult:
        """Poll until the job finishes or the timeout elapses"""
        timeout = settings.LOAD_DATA_TIMEOUT_SECONDS if timeout_seconds is None else timeout_seconds
        interval = settings.POLLING_INTERVAL_SECONDS if polling_interval_seconds is None else polling_interval_seconds
        start = time.monotonic()

        while True:
            job = await self.get(job_id)
            duration_ms = int((time.monotonic() - start) * 1000)
            if job.state == JobState.FINISHED:
                return JobWaitResult(job=job, completed=True, duration_ms=duration_ms)
            if duration_ms >= timeout * 1000:
                return JobWaitResult(job=job, completed=False, duration_ms=duration_ms)
            await asyncio.sleep(interval)
