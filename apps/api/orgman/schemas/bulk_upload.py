"""Pydantic schemas for bulk roster uploads."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from orgman.db.enums import BulkUploadStatus


class BulkUploadRow(BaseModel):
    """One parsed CSV data row, kept verbatim until its batch runs."""

    row_num: int
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    roles_raw: str = ""
    relationship_raw: str = ""


class BulkUploadJob(BaseModel):
    """Persisted job record. Stored as JSON in the key/value store."""

    id: str
    status: BulkUploadStatus = BulkUploadStatus.QUEUED
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None
    file_name: str = ""
    file_sha256: str
    org_uuid: str
    membership_uuid: str | None = None
    roster_mode: str
    group_uuid: str | None = None
    actor_uuid: str | None = None
    total_records: int = 0
    processed: int = 0
    added: int = 0
    skipped: int = 0
    failed: int = 0
    next_offset: int = 0
    batch_size: int = 25
    error_snippets: list[str] = Field(default_factory=list)
    seen_emails: list[str] = Field(default_factory=list)
    rows: list[BulkUploadRow] = Field(default_factory=list)

    @property
    def is_active(self) -> bool:
        return self.status in BulkUploadStatus.active()


class BulkUploadJobRead(BaseModel):
    """Public projection of a job (no rows, no seen emails)."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    status: BulkUploadStatus
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None
    file_name: str
    file_sha256: str
    org_uuid: str
    membership_uuid: str | None = None
    roster_mode: str
    group_uuid: str | None = None
    total_records: int
    processed: int
    added: int
    skipped: int
    failed: int
    next_offset: int
    batch_size: int
    error_snippets: list[str]


class BulkUploadEnqueueResult(BaseModel):
    job_id: str
    status: BulkUploadStatus
    total_records: int
    batch_size: int
