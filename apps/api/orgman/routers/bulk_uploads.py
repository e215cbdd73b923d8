"""Bulk upload router - CSV roster uploads processed in background batches."""

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, status

from orgman.core.deps import get_bulk_upload_service, verify_internal_secret
from orgman.schemas.bulk_upload import BulkUploadEnqueueResult, BulkUploadJobRead
from orgman.services.bulk_upload_errors import BulkInvalidRequestError
from orgman.services.bulk_upload_service import BulkUploadService

router = APIRouter(
    prefix="/bulk-uploads",
    tags=["bulk-uploads"],
    dependencies=[Depends(verify_internal_secret)],
)


@router.post(
    "",
    response_model=BulkUploadEnqueueResult,
    status_code=status.HTTP_202_ACCEPTED,  # Async - queued for background processing
)
async def enqueue_bulk_upload(
    file: UploadFile = File(..., description="CSV file of members"),
    org_uuid: str = Form(...),
    membership_uuid: str | None = Form(None),
    roster_mode: str | None = Form(None),
    group_uuid: str | None = Form(None),
    actor_uuid: str | None = Form(None),
    service: BulkUploadService = Depends(get_bulk_upload_service),
):
    """
    Queue a CSV upload.

    Returns immediately; poll GET /bulk-uploads/{job_id} for progress.
    """
    if not file.filename or not file.filename.lower().endswith(".csv"):
        raise BulkInvalidRequestError("File must be a CSV file.")
    content = await file.read()
    return service.enqueue(
        content,
        file.filename,
        org_uuid,
        membership_uuid=membership_uuid,
        roster_mode=roster_mode,
        group_uuid=group_uuid,
        actor_uuid=actor_uuid,
    )


@router.get("", response_model=list[BulkUploadJobRead])
def list_bulk_uploads(service: BulkUploadService = Depends(get_bulk_upload_service)):
    """Recent upload jobs, most recently updated first."""
    return service.list_job_statuses()


@router.get("/{job_id}", response_model=BulkUploadJobRead)
def get_bulk_upload(job_id: str, service: BulkUploadService = Depends(get_bulk_upload_service)):
    job = service.get_job_status(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Bulk upload job not found")
    return job
