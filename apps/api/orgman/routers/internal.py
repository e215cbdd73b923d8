"""
Internal endpoints for scheduled/cron operations.

Protected by X-Internal-Secret header.
Call from external cron when no long-running worker is deployed.
"""

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from orgman.core.deps import get_bulk_upload_service, get_db, verify_internal_secret
from orgman.schemas.bulk_upload import BulkUploadJobRead
from orgman.services.bulk_upload_service import BulkUploadService
from orgman.jobs.runner import run_due_jobs

router = APIRouter(
    prefix="/internal",
    tags=["internal"],
    dependencies=[Depends(verify_internal_secret)],
)


class RunDueResponse(BaseModel):
    completed: int
    failed: int


@router.post("/jobs/run-due", response_model=RunDueResponse)
async def run_due(limit: int = Query(10, ge=1, le=100), db: Session = Depends(get_db)):
    """Run every due background job once."""
    return await run_due_jobs(db, limit=limit)


@router.post("/bulk-uploads/{job_id}/process", response_model=BulkUploadJobRead)
def process_bulk_upload(
    job_id: str,
    offset: int | None = None,
    service: BulkUploadService = Depends(get_bulk_upload_service),
):
    """Scheduler callback: process the next batch of one upload."""
    job = service.process_batch(job_id, expected_offset=offset)
    if job is None:
        raise HTTPException(status_code=404, detail="Bulk upload job not found")
    return BulkUploadJobRead.model_validate(job, from_attributes=True)
