"""Tests for render job records and both store backends."""

from datetime import timedelta

import pytest

from storyreel.config import Settings
from storyreel.exceptions import JobStateError, RenderJobNotFoundError
from storyreel.services.job_store import (
    InMemoryJobStore,
    JobRecord,
    JobStatus,
    SqlJobStore,
    create_job_store,
    new_job_id,
)


@pytest.fixture(params=["memory", "sql"])
def store(request, temp_output_dir):
    if request.param == "memory":
        yield InMemoryJobStore()
        return
    sql_store = SqlJobStore(f"sqlite:///{temp_output_dir / 'jobs.db'}")
    yield sql_store
    sql_store.dispose()


class TestJobRecord:
    def test_new_job_ids_are_unique(self):
        ids = {new_job_id() for _ in range(100)}
        assert len(ids) == 100


class TestJobStore:
    @pytest.mark.asyncio
    async def test_create_and_get(self, store):
        created = await store.create(JobRecord(job_id="job-1"))
        fetched = await store.get("job-1")

        assert created.job_id == "job-1"
        assert fetched.status == JobStatus.QUEUED
        assert fetched.progress == 0
        assert await store.get("missing") is None

    @pytest.mark.asyncio
    async def test_get_or_raise(self, store):
        with pytest.raises(RenderJobNotFoundError):
            await store.get_or_raise("missing")

    @pytest.mark.asyncio
    async def test_update_unknown_job(self, store):
        with pytest.raises(RenderJobNotFoundError):
            await store.update("missing", progress=10)

    @pytest.mark.asyncio
    async def test_progress_never_decreases(self, store):
        await store.create(JobRecord(job_id="job-1"))
        await store.update("job-1", status=JobStatus.PROCESSING, progress=40)
        updated = await store.update("job-1", progress=20, stage="Mixing audio")

        assert updated.progress == 40
        assert updated.stage == "Mixing audio"
        assert (await store.get("job-1")).progress == 40

    @pytest.mark.asyncio
    async def test_progress_is_clamped(self, store):
        await store.create(JobRecord(job_id="job-1"))
        updated = await store.update("job-1", progress=250)
        assert updated.progress == 100

    @pytest.mark.asyncio
    async def test_terminal_job_is_frozen(self, store):
        await store.create(JobRecord(job_id="job-1"))
        await store.update("job-1", status=JobStatus.PROCESSING, progress=30)
        await store.update("job-1", status=JobStatus.FAILED, error="boom")

        with pytest.raises(JobStateError):
            await store.update("job-1", progress=50)
        with pytest.raises(JobStateError):
            await store.update("job-1", status=JobStatus.COMPLETED)

        record = await store.get("job-1")
        assert record.status == JobStatus.FAILED
        assert record.progress == 30
        assert record.error == "boom"

    @pytest.mark.asyncio
    async def test_status_accepts_strings(self, store):
        await store.create(JobRecord(job_id="job-1"))
        updated = await store.update("job-1", status="processing")
        assert updated.status == JobStatus.PROCESSING

    @pytest.mark.asyncio
    async def test_unknown_field_rejected(self, store):
        await store.create(JobRecord(job_id="job-1"))
        with pytest.raises(ValueError):
            await store.update("job-1", colour="red")

    @pytest.mark.asyncio
    async def test_list_jobs(self, store):
        await store.create(JobRecord(job_id="job-1"))
        await store.create(JobRecord(job_id="job-2"))

        jobs = await store.list_jobs()

        assert [j.job_id for j in jobs] == ["job-1", "job-2"]


class TestInMemoryJobStore:
    @pytest.mark.asyncio
    async def test_duplicate_id_rejected(self):
        store = InMemoryJobStore()
        await store.create(JobRecord(job_id="job-1"))
        with pytest.raises(ValueError):
            await store.create(JobRecord(job_id="job-1"))

    @pytest.mark.asyncio
    async def test_returned_records_are_copies(self):
        store = InMemoryJobStore()
        record = await store.create(JobRecord(job_id="job-1"))
        record.progress = 99

        assert (await store.get("job-1")).progress == 0

    @pytest.mark.asyncio
    async def test_purge_expired_keeps_active_jobs(self):
        store = InMemoryJobStore(retention_seconds=60)
        await store.create(JobRecord(job_id="active"))
        await store.create(JobRecord(job_id="done"))
        done = await store.update("done", status=JobStatus.COMPLETED, progress=100)

        assert await store.purge_expired(now=done.updated_at + timedelta(seconds=30)) == 0
        assert await store.purge_expired(now=done.updated_at + timedelta(hours=2)) == 1

        assert await store.get("done") is None
        assert await store.get("active") is not None


class TestCreateJobStore:
    def test_memory_backend(self):
        assert isinstance(create_job_store(Settings(job_store_backend="memory")), InMemoryJobStore)

    def test_sql_backend(self, temp_output_dir):
        settings = Settings(job_store_backend="sql", database_url=f"sqlite:///{temp_output_dir / 'x.db'}")
        store = create_job_store(settings)
        assert isinstance(store, SqlJobStore)
        store.dispose()
