"""Bulk upload errors. Each subclass carries one stable error code."""

from orgman.core.errors import ServiceError


class BulkUploadError(ServiceError):
    """Base exception for bulk upload errors."""

    code = "bulk_upload_error"


class BulkInvalidRequestError(BulkUploadError):
    """Organization, membership, group or roster mode missing or invalid."""

    code = "bulk_invalid_request"


class BulkFileUnreadableError(BulkUploadError):
    """Upload could not be decoded as UTF-8 CSV."""

    code = "bulk_file_unreadable"


class BulkHeaderInvalidError(BulkUploadError):
    """Header row missing or empty."""

    code = "bulk_header_invalid"


class BulkRequiredColumnMissingError(BulkUploadError):
    """One or more required columns are not present in the header."""

    code = "bulk_required_column_missing"

    def __init__(self, missing: list[str]) -> None:
        super().__init__(f"Missing required columns: {', '.join(missing)}.")
        self.missing = missing


class BulkNoRowsError(BulkUploadError):
    """File holds no data rows."""

    code = "bulk_no_rows"


class BulkDuplicateActiveJobError(BulkUploadError):
    """Same file is already queued or processing."""

    code = "bulk_duplicate_active_job"
    status_code = 409

    def __init__(self, job_id: str, status: str) -> None:
        super().__init__(
            f"This file is already being processed (job {job_id}, status {status})."
        )
        self.job_id = job_id
        self.status = status

    def to_dict(self) -> dict:
        return {**super().to_dict(), "job_id": self.job_id, "job_status": self.status}


class BulkStoreError(BulkUploadError):
    """Job record could not be persisted."""

    code = "bulk_store_failed"
    status_code = 503


class BulkScheduleError(BulkUploadError):
    """Background batch could not be scheduled."""

    code = "bulk_schedule_failed"
    status_code = 503
