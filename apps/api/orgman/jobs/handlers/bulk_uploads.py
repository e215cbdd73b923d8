"""Bulk upload job handlers."""

from __future__ import annotations

import logging

from orgman.core.structured_logging import build_log_context

logger = logging.getLogger(__name__)


async def process_bulk_upload_batch(db, job) -> None:
    """
    Run one batch of a bulk roster upload.

    Payload:
        - bulk_upload_job_id: id of the upload job record
        - offset: cursor the batch was scheduled for
    """
    from orgman.services.bulk_upload_service import build_bulk_upload_service

    payload = job.payload or {}
    bulk_job_id = payload.get("bulk_upload_job_id")
    if not bulk_job_id:
        raise ValueError("Missing bulk_upload_job_id in payload")

    offset = payload.get("offset")
    service = build_bulk_upload_service(db)
    result = service.process_batch(
        str(bulk_job_id), expected_offset=int(offset) if offset is not None else None
    )

    if result is None:
        logger.info(
            "Bulk upload job vanished before its batch ran",
            extra=build_log_context(job_id=bulk_job_id),
        )
        return
    logger.info(
        "Bulk upload batch handled: status=%s next_offset=%s/%s",
        result.status.value,
        result.next_offset,
        result.total_records,
        extra=build_log_context(job_id=bulk_job_id, org_id=result.org_uuid),
    )
