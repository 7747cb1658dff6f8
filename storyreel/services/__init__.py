from storyreel.services.job_store import (
    InMemoryJobStore,
    JobRecord,
    JobStatus,
    JobStore,
    SqlJobStore,
    create_job_store,
)

__all__ = [
    "InMemoryJobStore",
    "JobRecord",
    "JobStatus",
    "JobStore",
    "SqlJobStore",
    "create_job_store",
]
