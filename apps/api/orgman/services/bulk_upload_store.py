"""Bulk upload job records and the bounded job index."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from pydantic import ValidationError

from orgman.core.kv_store import KeyValueStore, KeyValueStoreError
from orgman.schemas.bulk_upload import BulkUploadJob
from orgman.services.bulk_upload_errors import BulkStoreError

logger = logging.getLogger(__name__)

INDEX_KEY = "bulk_upload:jobs"
JOB_KEY_PREFIX = "bulk_upload:job:"
DEFAULT_RETENTION = 20
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def job_key(job_id: str) -> str:
    return f"{JOB_KEY_PREFIX}{job_id}"


class BulkUploadJobStore:
    """
    Job records plus an index of ids (most recently saved first).

    The index is the only discovery path into job records, so pruning an id
    from it also deletes the record.
    """

    def __init__(self, store: KeyValueStore, retention: int = DEFAULT_RETENTION) -> None:
        self.store = store
        self.retention = max(1, retention)

    def _index(self) -> list[str]:
        value = self.store.get(INDEX_KEY)
        return [str(item) for item in value] if isinstance(value, list) else []

    def get(self, job_id: str) -> BulkUploadJob | None:
        if not job_id:
            return None
        try:
            raw = self.store.get(job_key(job_id))
        except KeyValueStoreError as exc:
            raise BulkStoreError(f"Unable to load job {job_id}.") from exc
        if not raw:
            return None
        try:
            return BulkUploadJob.model_validate(raw)
        except ValidationError:
            logger.warning("Discarding malformed bulk upload job %s", job_id)
            return None

    def list_jobs(self) -> list[BulkUploadJob]:
        """Indexed jobs, most recently updated first."""
        try:
            ids = self._index()
        except KeyValueStoreError as exc:
            raise BulkStoreError("Unable to load job index.") from exc
        jobs = [job for job in (self.get(job_id) for job_id in ids) if job]
        return sorted(jobs, key=lambda job: job.updated_at, reverse=True)

    def find_active_by_hash(self, file_sha256: str) -> BulkUploadJob | None:
        for job in self.list_jobs():
            if job.file_sha256 == file_sha256 and job.is_active:
                return job
        return None

    def save(self, job: BulkUploadJob) -> None:
        """Write the record, move its id to the front of the index, prune."""
        try:
            self.store.set(job_key(job.id), job.model_dump(mode="json"))
            index = [job.id] + [job_id for job_id in self._index() if job_id != job.id]
            kept, pruned = self._prune(index)
            self.store.set(INDEX_KEY, kept)
            for job_id in pruned:
                self.store.delete(job_key(job_id))
        except KeyValueStoreError as exc:
            raise BulkStoreError(f"Unable to save job {job.id}.") from exc
        if pruned:
            logger.info("Pruned %d bulk upload jobs beyond retention", len(pruned))

    def _prune(self, index: list[str]) -> tuple[list[str], list[str]]:
        if len(index) <= self.retention:
            return index, []

        updated: dict[str, datetime] = {}
        for job_id in index:
            job = self.get(job_id)
            updated[job_id] = job.updated_at if job else EPOCH
        ranked = sorted(index, key=lambda job_id: updated[job_id], reverse=True)
        keep = set(ranked[: self.retention])
        return [job_id for job_id in index if job_id in keep], ranked[self.retention :]

    def delete(self, job_id: str) -> None:
        try:
            self.store.delete(job_key(job_id))
            self.store.set(INDEX_KEY, [item for item in self._index() if item != job_id])
        except KeyValueStoreError as exc:
            raise BulkStoreError(f"Unable to delete job {job_id}.") from exc
