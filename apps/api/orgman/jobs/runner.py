"""Dispatch due jobs from the jobs table to their handlers."""

from __future__ import annotations

import logging

from orgman.jobs.registry import resolve_job_handler
from orgman.services import job_service

logger = logging.getLogger(__name__)


async def process_job(db, job) -> None:
    """Process a single job based on its type."""
    logger.info("Processing job %s (type=%s, attempt=%s)", job.id, job.job_type, job.attempts)
    handler = resolve_job_handler(job.job_type)
    await handler(db, job)


async def run_due_jobs(db, limit: int = 10) -> dict[str, int]:
    """Run every due job once. Returns counts of completed and failed jobs."""
    completed = failed = 0
    for job in job_service.get_pending_jobs(db, limit=limit):
        try:
            job_service.mark_job_running(db, job)
            await process_job(db, job)
            job_service.mark_job_completed(db, job)
            completed += 1
            logger.info("Job %s completed successfully", job.id)
        except Exception as e:
            db.rollback()
            job_service.mark_job_failed(db, job, str(e))
            failed += 1
            logger.error("Job %s failed: %s", job.id, type(e).__name__)
    return {"completed": completed, "failed": failed}
