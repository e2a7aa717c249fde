"""
Unit tests for the data job scheduler
"""

import pytest
from datetime import timedelta
from sqlalchemy import select
from conftest import StaticPagesLoader, make_catalog_factory, make_event_config, make_mock_writer, mark_connected
from connectors.jobs import DataJobScheduler
from core.exceptions import ConnectorNotFoundError, JobAlreadyFinishedError, JobNotFoundError
from core.timeutil import utcnow
from models.base import JobResult, JobState
from models.connector import ConnectorStatus
from models.data_job import DataJob


PAGES = [
    [{"id": "1", "title": "a"}, {"id": "2", "title": "b"}],
    [{"id": "3", "title": "c"}],
]


def make_scheduler(session_factory, loader=None, writer=None, max_job_duration_ms=60_000):
    catalog_factory = make_catalog_factory(make_event_config(), loader or StaticPagesLoader(PAGES), writer or make_mock_writer())
    return DataJobScheduler(session_factory, catalog_factory, max_job_duration_ms=max_job_duration_ms)


async def get_status(session_factory, connector_id="test"):
    async with session_factory() as session:
        return await session.get(ConnectorStatus, connector_id)


class TestCreate:
    """Test job creation and exclusivity"""

    @pytest.mark.asyncio
    async def test_create_job(self, session_factory):
        await mark_connected(session_factory)
        scheduler = make_scheduler(session_factory)

        job = await scheduler.create("test")

        assert job.state == JobState.CREATED
        assert job.result is None
        assert job.updated_record_count == 0
        status = await get_status(session_factory)
        assert status.data_job_id == job.id
        assert status.is_loading is True

    @pytest.mark.asyncio
    async def test_unknown_connector(self, session_factory):
        scheduler = make_scheduler(session_factory)

        with pytest.raises(ConnectorNotFoundError):
            await scheduler.create("missing")

    @pytest.mark.asyncio
    async def test_new_job_supersedes_unfinished(self, session_factory):
        await mark_connected(session_factory)
        scheduler = make_scheduler(session_factory)

        first = await scheduler.create("test")
        second = await scheduler.create("test")

        superseded = await scheduler.get(first.id)
        assert superseded.state == JobState.FINISHED
        assert superseded.result == JobResult.CANCELED

        async with session_factory() as session:
            result = await session.execute(
                select(DataJob).where(DataJob.connector_id == "test", DataJob.state.in_([JobState.CREATED, JobState.RUNNING]))
            )
            assert [job.id for job in result.scalars().all()] == [second.id]

        status = await get_status(session_factory)
        assert status.data_job_id == second.id
        assert status.last_data_job_id == first.id

    @pytest.mark.asyncio
    async def test_jobs_listed_newest_first(self, session_factory):
        await mark_connected(session_factory)
        scheduler = make_scheduler(session_factory)

        first = await scheduler.create("test")
        second = await scheduler.create("test")

        jobs = await scheduler.get_by_config("test")
        assert {job.id for job in jobs} == {first.id, second.id}
        assert jobs[0].created_at >= jobs[1].created_at


class TestRun:
    """Test job execution outcomes"""

    @pytest.mark.asyncio
    async def test_successful_run(self, session_factory):
        await mark_connected(session_factory)
        scheduler = make_scheduler(session_factory)
        job = await scheduler.create("test")

        result = await scheduler.run(job.id)

        assert result.next_job_ids == []
        assert result.job.state == JobState.FINISHED
        assert result.job.result == JobResult.SUCCESS
        assert result.job.updated_record_count == 3
        assert result.job.started_at is not None
        assert result.job.run_time_ms is not None

        status = await get_status(session_factory)
        assert status.is_loading is False
        assert status.data_job_id is None
        assert status.last_data_job_id == job.id
        assert status.last_synced_at is not None

    @pytest.mark.asyncio
    async def test_run_that_exceeds_budget_continues(self, session_factory):
        await mark_connected(session_factory)
        loader = StaticPagesLoader(PAGES)
        scheduler = make_scheduler(session_factory, loader=loader)
        scheduler.max_job_duration_ms = 0
        job = await scheduler.create("test")

        first = await scheduler.run(job.id)

        assert first.next_job_ids == [job.id]
        assert first.job.state == JobState.RUNNING
        assert first.job.updated_record_count == 2
        status = await get_status(session_factory)
        assert status.data_job_id == job.id
        assert status.last_synced_at is None

        second = await scheduler.run(job.id)

        assert second.next_job_ids == []
        assert second.job.result == JobResult.SUCCESS
        assert second.job.updated_record_count == 3
        assert loader.fetch_calls[-1] == {"page": 1}

    @pytest.mark.asyncio
    async def test_failed_run_finishes_with_error(self, session_factory):
        await mark_connected(session_factory)
        scheduler = make_scheduler(session_factory, loader=StaticPagesLoader(PAGES, error=RuntimeError("quota exhausted")))
        job = await scheduler.create("test")

        result = await scheduler.run(job.id)

        assert result.job.state == JobState.FINISHED
        assert result.job.result == JobResult.ERROR
        assert result.job.error == "quota exhausted"
        status = await get_status(session_factory)
        assert status.is_loading is False
        assert status.data_job_id is None
        assert status.last_error == "quota exhausted"

    @pytest.mark.asyncio
    async def test_disconnected_connector_fails_job(self, session_factory):
        scheduler = make_scheduler(session_factory)
        job = await scheduler.create("test")

        result = await scheduler.run(job.id)

        assert result.job.result == JobResult.ERROR
        assert "not connected" in result.job.error

    @pytest.mark.asyncio
    async def test_finished_job_is_not_rerun(self, session_factory):
        await mark_connected(session_factory)
        scheduler = make_scheduler(session_factory)
        job = await scheduler.create("test")
        await scheduler.run(job.id)

        with pytest.raises(JobAlreadyFinishedError):
            await scheduler.run(job.id)

    @pytest.mark.asyncio
    async def test_unknown_job(self, session_factory):
        scheduler = make_scheduler(session_factory)

        with pytest.raises(JobNotFoundError):
            await scheduler.run("00000000-0000-0000-0000-000000000000")

    @pytest.mark.asyncio
    async def test_run_to_completion_follows_continuations(self, session_factory):
        await mark_connected(session_factory)
        loader = StaticPagesLoader(PAGES + [[{"id": "4", "title": "d"}]])
        scheduler = make_scheduler(session_factory, loader=loader)
        scheduler.max_job_duration_ms = 0
        job = await scheduler.create("test")

        result = await scheduler.run_to_completion(job.id)

        assert result.job.result == JobResult.SUCCESS
        assert result.job.updated_record_count == 4
        assert len(loader.fetch_calls) == 3

    @pytest.mark.asyncio
    async def test_trigger_and_wait(self, session_factory):
        await mark_connected(session_factory)
        scheduler = make_scheduler(session_factory)
        job = await scheduler.create("test")

        scheduler.trigger(job.id)
        wait = await scheduler.wait_for_completion(job.id, timeout_seconds=5, polling_interval_seconds=0.01)

        assert wait.completed is True
        assert wait.job.result == JobResult.SUCCESS

    @pytest.mark.asyncio
    async def test_wait_times_out(self, session_factory):
        await mark_connected(session_factory)
        scheduler = make_scheduler(session_factory)
        job = await scheduler.create("test")

        wait = await scheduler.wait_for_completion(job.id, timeout_seconds=0.05, polling_interval_seconds=0.01)

        assert wait.completed is False
        assert wait.job.state == JobState.CREATED


class TestCancelAndCleanup:
    """Test cancellation and stale job cleanup"""

    @pytest.mark.asyncio
    async def test_cancel_releases_connector(self, session_factory):
        await mark_connected(session_factory)
        scheduler = make_scheduler(session_factory)
        job = await scheduler.create("test")

        canceled = await scheduler.cancel(job.id)

        assert canceled.result == JobResult.CANCELED
        status = await get_status(session_factory)
        assert status.is_loading is False
        assert status.data_job_id is None

        with pytest.raises(JobAlreadyFinishedError):
            await scheduler.cancel(job.id)

    @pytest.mark.asyncio
    async def test_cleanup_cancels_only_stale_jobs(self, session_factory):
        await mark_connected(session_factory)
        await mark_connected(session_factory, connector_id="other")
        scheduler = make_scheduler(session_factory, max_job_duration_ms=1000)
        stale = await scheduler.create("test")

        async with session_factory() as session:
            job = await session.get(DataJob, stale.id)
            job.state = JobState.RUNNING
            job.updated_at = utcnow() - timedelta(seconds=5)
            session.add(DataJob(id="fresh-job", connector_id="other", state=JobState.RUNNING, progress={}))
            await session.commit()

        result = await scheduler.cleanup()

        assert result.checked_count == 2
        assert result.canceled_count == 1
        stale_job = await scheduler.get(stale.id)
        assert stale_job.result == JobResult.CANCELED
        assert "cleanup" in stale_job.error
        fresh_job = await scheduler.get("fresh-job")
        assert fresh_job.state == JobState.RUNNING

        status = await get_status(session_factory)
        assert status.is_loading is False
        assert status.data_job_id is None


class InterruptingLoader(StaticPagesLoader):
    """Runs ``interrupt`` once, before the first page is served"""

    def __init__(self, pages, interrupt):
        super().__init__(pages)
        self.interrupt = interrupt
        self.interrupted = False

    async def fetch(self, resources, sync_context=None, last_synced_at=None, max_duration_ms=None):
        if not self.interrupted:
            self.interrupted = True
            await self.interrupt()
        async for batch in super().fetch(resources, sync_context, last_synced_at, max_duration_ms):
            yield batch


class TestFinishedWhileRunning:
    """A job finished by another caller mid-run keeps its result"""

    @pytest.mark.asyncio
    async def test_superseded_job_stays_canceled(self, session_factory):
        await mark_connected(session_factory)
        created = []

        async def supersede():
            created.append(await scheduler.create("test"))

        scheduler = make_scheduler(session_factory, loader=InterruptingLoader([[{"id": "1", "title": "a"}]], supersede))
        old = await scheduler.create("test")

        result = await scheduler.run(old.id)

        new = created[0]
        assert result.next_job_ids == []
        assert result.job.result == JobResult.CANCELED
        old_after = await scheduler.get(old.id)
        assert old_after.state == JobState.FINISHED
        assert old_after.result == JobResult.CANCELED
        assert old_after.updated_record_count == 0

        status = await get_status(session_factory)
        assert status.data_job_id == new.id
        assert status.is_loading is True
        assert (await scheduler.get(new.id)).state == JobState.CREATED

        new_result = await scheduler.run(new.id)
        assert new_result.job.result == JobResult.SUCCESS
        status = await get_status(session_factory)
        assert status.is_loading is False
        assert status.last_data_job_id == new.id

    @pytest.mark.asyncio
    async def test_canceled_job_stays_canceled(self, session_factory):
        await mark_connected(session_factory)
        jobs = []

        async def cancel():
            await scheduler.cancel(jobs[0].id)

        scheduler = make_scheduler(session_factory, loader=InterruptingLoader(PAGES, cancel))
        jobs.append(await scheduler.create("test"))

        result = await scheduler.run(jobs[0].id)

        assert result.job.result == JobResult.CANCELED
        assert result.next_job_ids == []
        job = await scheduler.get(jobs[0].id)
        assert job.updated_record_count == 0
        status = await get_status(session_factory)
        assert status.is_loading is False
        assert status.data_job_id is None
