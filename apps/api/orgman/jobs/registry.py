"""Job handler registry."""

from __future__ import annotations

from typing import Awaitable, Callable, Mapping

from orgman.db.enums import JobType
from orgman.jobs.handlers import bulk_uploads

JobHandler = Callable[[object, object], Awaitable[None]]

JOB_HANDLERS: Mapping[str, JobHandler] = {
    JobType.BULK_UPLOAD_BATCH.value: bulk_uploads.process_bulk_upload_batch,
}


def resolve_job_handler(job_type: str) -> JobHandler:
    handler = JOB_HANDLERS.get(job_type)
    if not handler:
        raise ValueError(f"Unknown job type: {job_type}")
    return handler
