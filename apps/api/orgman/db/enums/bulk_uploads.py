"""Bulk upload enums."""

from enum import Enum


class BulkUploadStatus(str, Enum):
    """Lifecycle of a bulk upload job record."""

    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @classmethod
    def active(cls) -> set["BulkUploadStatus"]:
        """Statuses that still hold rows and may be scheduled."""
        return {cls.QUEUED, cls.PROCESSING}

    @classmethod
    def terminal(cls) -> set["BulkUploadStatus"]:
        return {cls.COMPLETED, cls.FAILED}
