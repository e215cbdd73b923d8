"""Batch scheduling on top of the jobs table."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from orgman.db.enums import JobType
from orgman.services import job_service

logger = logging.getLogger(__name__)


def batch_idempotency_key(bulk_job_id: str, offset: int) -> str:
    return f"bulk_upload:{bulk_job_id}:{offset}"


class DatabaseBatchScheduler:
    """
    Schedules one ``bulk_upload_batch`` job per (upload, offset).

    The idempotency key makes a second request for the same offset a no-op,
    so a batch range is dispatched at most once.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    def schedule_after(self, delay_seconds: int, job_id: str, offset: int = 0) -> bool:
        key = batch_idempotency_key(job_id, offset)
        run_at = datetime.now(timezone.utc) + timedelta(seconds=max(0, delay_seconds))
        try:
            job_service.schedule_job(
                self.db,
                job_type=JobType.BULK_UPLOAD_BATCH,
                payload={"bulk_upload_job_id": job_id, "offset": offset},
                run_at=run_at,
                idempotency_key=key,
            )
        except IntegrityError:
            self.db.rollback()
            already = job_service.get_job_by_idempotency_key(self.db, key) is not None
            logger.info("Batch %s already scheduled (found=%s)", key, already)
            return already
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("Failed to schedule batch %s", key)
            return False
        return True
