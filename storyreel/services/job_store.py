"""Render job records and the stores that hold them.

The orchestrator of a job is the only writer for that job id; the polling API
only reads. Stores enforce the two rules every backend must share: terminal
jobs are frozen, and progress never moves backwards.
"""

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Optional

from sqlalchemy import select

from storyreel.exceptions import JobStateError, RenderJobNotFoundError
from storyreel.models.database import create_db_engine, create_session_maker, init_db, session_scope
from storyreel.models.render_job import RenderJob

logger = logging.getLogger(__name__)


class JobStatus(str, Enum):
    """Render job status."""

    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_job_id() -> str:
    return uuid.uuid4().hex


@dataclass
class JobRecord:
    """Render job state as seen by the polling API."""

    job_id: str
    status: JobStatus = JobStatus.QUEUED
    progress: int = 0
    stage: Optional[str] = None
    video_url: Optional[str] = None
    error: Optional[str] = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


UPDATABLE_FIELDS = frozenset(
    {"status", "progress", "stage", "video_url", "error", "started_at", "completed_at"}
)


def apply_update(record: JobRecord, fields: dict[str, Any]) -> JobRecord:
    """Return ``record`` with ``fields`` applied under the shared store rules."""
    unknown = set(fields) - UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Unknown job fields: {', '.join(sorted(unknown))}")
    if record.status.is_terminal:
        raise JobStateError(record.job_id, record.status.value)

    changes = dict(fields)
    if "status" in changes:
        changes["status"] = JobStatus(changes["status"])
    if "progress" in changes:
        progress = max(0, min(100, int(changes["progress"])))
        changes["progress"] = max(progress, record.progress)
    changes["updated_at"] = _utcnow()
    return replace(record, **changes)


class JobStore(ABC):
    """Key-value store of render jobs by id."""

    @abstractmethod
    async def create(self, record: JobRecord) -> JobRecord:
        """Insert a new job record."""

    @abstractmethod
    async def get(self, job_id: str) -> Optional[JobRecord]:
        """Return the job, or None if unknown."""

    @abstractmethod
    async def update(self, job_id: str, **fields: Any) -> JobRecord:
        """Apply a partial update and return the new record."""

    @abstractmethod
    async def list_jobs(self) -> list[JobRecord]:
        """All known jobs, oldest first."""

    async def get_or_raise(self, job_id: str) -> JobRecord:
        record = await self.get(job_id)
        if record is None:
            raise RenderJobNotFoundError(job_id)
        return record


class InMemoryJobStore(JobStore):
    """Per-process job store guarded by an asyncio lock."""

    def __init__(self, retention_seconds: int = 86400) -> None:  # 24h default
        self._jobs: dict[str, JobRecord] = {}
        self._lock = asyncio.Lock()
        self._retention = timedelta(seconds=retention_seconds)

    async def create(self, record: JobRecord) -> JobRecord:
        async with self._lock:
            self._drop_expired(_utcnow())
            if record.job_id in self._jobs:
                raise ValueError(f"Duplicate render job id: {record.job_id}")
            self._jobs[record.job_id] = record
            return replace(record)

    async def get(self, job_id: str) -> Optional[JobRecord]:
        async with self._lock:
            record = self._jobs.get(job_id)
            return replace(record) if record else None

    async def update(self, job_id: str, **fields: Any) -> JobRecord:
        async with self._lock:
            record = self._jobs.get(job_id)
            if record is None:
                raise RenderJobNotFoundError(job_id)
            updated = apply_update(record, fields)
            self._jobs[job_id] = updated
            return replace(updated)

    async def list_jobs(self) -> list[JobRecord]:
        async with self._lock:
            return sorted((replace(r) for r in self._jobs.values()), key=lambda r: r.created_at)

    async def purge_expired(self, now: Optional[datetime] = None) -> int:
        """Drop terminal jobs older than the retention window. Active jobs are never dropped."""
        async with self._lock:
            return self._drop_expired(now or _utcnow())

    def _drop_expired(self, now: datetime) -> int:
        expired = [
            job_id
            for job_id, record in self._jobs.items()
            if record.status.is_terminal and now - record.updated_at > self._retention
        ]
        for job_id in expired:
            del self._jobs[job_id]
        if expired:
            logger.info(f"[JOBS] Purged {len(expired)} expired render jobs")
        return len(expired)


def _row_to_record(row: RenderJob) -> JobRecord:
    return JobRecord(
        job_id=row.id,
        status=JobStatus(row.status),
        progress=row.progress,
        stage=row.current_stage,
        video_url=row.video_url,
        error=row.error_message,
        created_at=row.created_at,
        updated_at=row.updated_at,
        started_at=row.started_at,
        completed_at=row.completed_at,
    )


class SqlJobStore(JobStore):
    """Durable job store on the ``render_jobs`` table.

    Uses a sync SQLAlchemy engine; every call runs in a worker thread so the
    event loop is never blocked.
    """

    def __init__(self, database_url: str, echo: bool = False) -> None:
        self.engine = create_db_engine(database_url, echo=echo)
        self.session_maker = create_session_maker(self.engine)
        init_db(self.engine)

    async def create(self, record: JobRecord) -> JobRecord:
        return await asyncio.to_thread(self._create, record)

    async def get(self, job_id: str) -> Optional[JobRecord]:
        return await asyncio.to_thread(self._get, job_id)

    async def update(self, job_id: str, **fields: Any) -> JobRecord:
        return await asyncio.to_thread(self._update, job_id, fields)

    async def list_jobs(self) -> list[JobRecord]:
        return await asyncio.to_thread(self._list)

    def dispose(self) -> None:
        self.engine.dispose()

    def _create(self, record: JobRecord) -> JobRecord:
        with session_scope(self.session_maker) as db:
            row = RenderJob(
                id=record.job_id,
                status=record.status.value,
                progress=record.progress,
                current_stage=record.stage,
                created_at=record.created_at,
                updated_at=record.updated_at,
            )
            db.add(row)
            db.flush()
            return _row_to_record(row)

    def _get(self, job_id: str) -> Optional[JobRecord]:
        with session_scope(self.session_maker) as db:
            row = db.get(RenderJob, job_id)
            return _row_to_record(row) if row else None

    def _update(self, job_id: str, fields: dict[str, Any]) -> JobRecord:
        with session_scope(self.session_maker) as db:
            row = db.execute(
                select(RenderJob).where(RenderJob.id == job_id).with_for_update()
            ).scalar_one_or_none()
            if row is None:
                raise RenderJobNotFoundError(job_id)

            updated = apply_update(_row_to_record(row), fields)
            row.status = updated.status.value
            row.progress = updated.progress
            row.current_stage = updated.stage
            row.video_url = updated.video_url
            row.error_message = updated.error
            row.started_at = updated.started_at
            row.completed_at = updated.completed_at
            row.updated_at = updated.updated_at
            db.flush()
            return _row_to_record(row)

    def _list(self) -> list[JobRecord]:
        with session_scope(self.session_maker) as db:
            rows = db.execute(select(RenderJob).order_by(RenderJob.created_at)).scalars().all()
            return [_row_to_record(row) for row in rows]


def create_job_store(settings) -> JobStore:
    """Build the configured job store backend."""
    if settings.job_store_backend == "sql":
        logger.info("[JOBS] Using SQL job store")
        return SqlJobStore(settings.database_url, echo=settings.database_echo)
    return InMemoryJobStore(retention_seconds=settings.job_retention_seconds)
