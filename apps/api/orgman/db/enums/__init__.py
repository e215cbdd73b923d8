"""Enum definitions for application constants."""

from orgman.db.enums.bulk_uploads import BulkUploadStatus
from orgman.db.enums.jobs import DEFAULT_JOB_STATUS, JobStatus, JobType
from orgman.db.enums.roster import GroupRemovalMode, RosterMode, StrategyStatus

__all__ = [
    "BulkUploadStatus",
    "DEFAULT_JOB_STATUS",
    "GroupRemovalMode",
    "JobStatus",
    "JobType",
    "RosterMode",
    "StrategyStatus",
]
