"""Bulk upload engine - CSV roster uploads processed in scheduled batches.

Enqueue parses and validates the file, stores a queued job and schedules its
first batch. Each scheduled call to process_batch handles one slice of rows,
persists counters and the cursor, then reschedules or completes the job.
Row problems are counted; only persistence or scheduling failures fail a job.
"""

from __future__ import annotations

import hashlib
import logging
import uuid
from datetime import datetime, timezone
from typing import Callable, Protocol

from orgman.core.config import Settings, settings as default_settings
from orgman.core.errors import ServiceError
from orgman.core.kv_store import KeyValueStore
from orgman.core.structured_logging import build_log_context
from orgman.db.enums import BulkUploadStatus, RosterMode
from orgman.schemas.bulk_upload import (
    BulkUploadEnqueueResult,
    BulkUploadJob,
    BulkUploadJobRead,
    BulkUploadRow,
)
from orgman.schemas.roster import MemberAdditionRequest, RosterContext
from orgman.services import group_service, membership_service, permission_service, person_service
from orgman.services.bulk_upload_errors import (
    BulkInvalidRequestError,
    BulkDuplicateActiveJobError,
    BulkNoRowsError,
    BulkScheduleError,
)
from orgman.services.bulk_upload_parser import get_column_definitions, parse_bulk_upload
from orgman.services.bulk_upload_store import BulkUploadJobStore
from orgman.services.membership_api import MembershipApi, MembershipApiError
from orgman.services.roster.errors import GroupMemberExistsError
from orgman.services.roster_service import RosterService
from orgman.utils.normalization import is_valid_email, normalize_email, normalize_label, sanitize_key

logger = logging.getLogger(__name__)

ROLE_SEPARATOR = "|"
SCHEDULE_FAILED_SNIPPET = "Unable to schedule background processing."
RESCHEDULE_FAILED_SNIPPET = "Unable to schedule next background batch."
BATCH_CRASHED_SNIPPET = "Batch processing failed unexpectedly."


class BatchScheduler(Protocol):
    def schedule_after(self, delay_seconds: int, job_id: str, offset: int = 0) -> bool: ...


def _now() -> datetime:
    return datetime.now(timezone.utc)


class BulkUploadService:
    def __init__(
        self,
        jobs: BulkUploadJobStore,
        scheduler: BatchScheduler,
        api: MembershipApi,
        cfg: Settings | None = None,
        roster_factory: Callable[[RosterMode], RosterService] | None = None,
        cache_store: KeyValueStore | None = None,
    ) -> None:
        self.jobs = jobs
        self.scheduler = scheduler
        self.api = api
        self.settings = cfg or default_settings
        self._roster_factory = roster_factory or (
            lambda mode: RosterService(api, self.settings, mode=mode)
        )
        self._rosters: dict[RosterMode, RosterService] = {}
        self._group_scopes: dict[str, tuple[str, str | None]] = {}
        self.cache_store = cache_store or jobs.store

    def _roster(self, mode: RosterMode) -> RosterService:
        if mode not in self._rosters:
            self._rosters[mode] = self._roster_factory(mode)
        return self._rosters[mode]

    # =========================================================================
    # Enqueue
    # =========================================================================

    def _validate_target(
        self,
        org_uuid: str,
        membership_uuid: str | None,
        roster_mode: str | None,
        group_uuid: str | None,
    ) -> tuple[RosterMode, str | None]:
        if not org_uuid:
            raise BulkInvalidRequestError("Organization identifier is required.")

        raw_mode = (roster_mode or self.settings.ROSTER_STRATEGY or "").strip().lower()
        try:
            mode = RosterMode(raw_mode)
        except ValueError as exc:
            raise BulkInvalidRequestError(f"Unknown roster mode: {roster_mode}.") from exc

        if mode == RosterMode.GROUPS:
            if not group_uuid:
                raise BulkInvalidRequestError("Group UUID is required for group uploads.")
            return mode, membership_uuid

        if not membership_uuid and mode == RosterMode.MEMBERSHIP_CYCLE:
            raise BulkInvalidRequestError("Membership UUID is required for this roster mode.")
        if not membership_uuid:
            try:
                membership_uuid = membership_service.resolve_org_membership_uuid(self.api, org_uuid)
            except MembershipApiError as exc:
                raise BulkInvalidRequestError(
                    f"Unable to resolve organization membership: {exc.message}"
                ) from exc
            if not membership_uuid:
                raise BulkInvalidRequestError("No membership found for this organization.")
        return mode, membership_uuid

    def enqueue(
        self,
        file_content: bytes,
        file_name: str,
        org_uuid: str,
        membership_uuid: str | None = None,
        roster_mode: str | None = None,
        group_uuid: str | None = None,
        actor_uuid: str | None = None,
    ) -> BulkUploadEnqueueResult:
        """Parse and validate the upload, store a queued job, schedule batch one."""
        org_uuid = (org_uuid or "").strip()
        group_uuid = (group_uuid or "").strip() or None
        membership_uuid = (membership_uuid or "").strip() or None
        mode, membership_uuid = self._validate_target(
            org_uuid, membership_uuid, roster_mode, group_uuid
        )

        parsed = parse_bulk_upload(file_content, get_column_definitions(self.settings))
        if not parsed.rows:
            raise BulkNoRowsError("The file does not contain any member rows.")

        raw = file_content if isinstance(file_content, bytes) else file_content.encode("utf-8")
        file_sha256 = hashlib.sha256(raw).hexdigest()
        existing = self.jobs.find_active_by_hash(file_sha256)
        if existing:
            raise BulkDuplicateActiveJobError(existing.id, existing.status.value)

        now = _now()
        job = BulkUploadJob(
            id=uuid.uuid4().hex,
            status=BulkUploadStatus.QUEUED,
            created_at=now,
            updated_at=now,
            file_name=file_name or "",
            file_sha256=file_sha256,
            org_uuid=org_uuid,
            membership_uuid=membership_uuid,
            roster_mode=mode.value,
            group_uuid=group_uuid if mode == RosterMode.GROUPS else None,
            actor_uuid=actor_uuid,
            total_records=len(parsed.rows),
            batch_size=self.settings.bulk_batch_size,
            rows=parsed.rows,
        )
        self.jobs.save(job)

        if not self._schedule(job, offset=0):
            job.status = BulkUploadStatus.FAILED
            self._add_snippet(job, SCHEDULE_FAILED_SNIPPET)
            self._touch(job)
            self.jobs.save(job)
            raise BulkScheduleError(SCHEDULE_FAILED_SNIPPET)

        logger.info(
            "Bulk upload queued (rows=%d, batch_size=%d)",
            job.total_records,
            job.batch_size,
            extra=build_log_context(org_id=org_uuid, job_id=job.id, roster_mode=mode.value),
        )
        return BulkUploadEnqueueResult(
            job_id=job.id,
            status=job.status,
            total_records=job.total_records,
            batch_size=job.batch_size,
        )

    # =========================================================================
    # Batches
    # =========================================================================

    def process_batch(self, job_id: str, expected_offset: int | None = None) -> BulkUploadJob | None:
        """
        Process one slice of rows.

        ``expected_offset`` is the cursor the batch was scheduled for; a
        delivery whose offset no longer matches the record is stale and ignored.
        """
        job = self.jobs.get(job_id)
        if job is None:
            logger.info("Bulk upload job %s not found, nothing to process", job_id)
            return None
        if job.status in BulkUploadStatus.terminal():
            return job
        if expected_offset is not None and expected_offset != job.next_offset:
            logger.warning(
                "Ignoring stale batch delivery (expected offset %s, cursor %s)",
                expected_offset,
                job.next_offset,
                extra=build_log_context(job_id=job.id),
            )
            return job

        job.status = BulkUploadStatus.PROCESSING
        self._touch(job)
        self.jobs.save(job)

        if not job.rows or job.total_records <= 0 or job.next_offset >= job.total_records:
            self._complete(job)
            return job

        try:
            self._run_slice(job)
        except ServiceError:
            raise
        except Exception:
            logger.exception("Bulk upload batch crashed", extra=build_log_context(job_id=job.id))
            reloaded = self.jobs.get(job.id) or job
            reloaded.status = BulkUploadStatus.FAILED
            self._add_snippet(reloaded, BATCH_CRASHED_SNIPPET)
            self._touch(reloaded)
            self.jobs.save(reloaded)
            return reloaded

        if job.next_offset >= job.total_records:
            self._complete(job)
            return job

        job.status = BulkUploadStatus.QUEUED
        self._touch(job)
        self.jobs.save(job)
        if not self._schedule(job, offset=job.next_offset):
            job.status = BulkUploadStatus.FAILED
            self._add_snippet(job, RESCHEDULE_FAILED_SNIPPET)
            self._touch(job)
            self.jobs.save(job)
        return job

    def _run_slice(self, job: BulkUploadJob) -> None:
        start = job.next_offset
        end = min(start + max(1, job.batch_size), job.total_records)
        seen = set(job.seen_emails)
        mode = RosterMode(job.roster_mode)
        relationship_lookup = self._relationship_lookup()

        for row in job.rows[start:end]:
            self._process_row(job, row, seen, mode, relationship_lookup)

        job.next_offset = end
        logger.info(
            "Bulk upload batch done (offset=%d, processed=%d, added=%d, skipped=%d, failed=%d)",
            end,
            job.processed,
            job.added,
            job.skipped,
            job.failed,
            extra=build_log_context(job_id=job.id, org_id=job.org_uuid),
        )

    def _process_row(
        self,
        job: BulkUploadJob,
        row: BulkUploadRow,
        seen: set[str],
        mode: RosterMode,
        relationship_lookup: dict[str, str],
    ) -> None:
        job.processed += 1
        email = normalize_email(row.email)

        if not row.first_name.strip() or not row.last_name.strip() or not is_valid_email(email):
            self._fail_row(job, f"Row {row.row_num} skipped: missing required name/email fields.")
            return

        if email in seen:
            job.skipped += 1
            return

        relationship_type, relationship_error = self._resolve_relationship(
            row.relationship_raw, relationship_lookup
        )
        if relationship_error:
            self._fail_row(job, f"Row {row.row_num} failed: {relationship_error}")
            return

        try:
            exists = self._has_existing_membership(job, mode, email)
        except MembershipApiError as exc:
            self._fail_row(
                job, f"Row {row.row_num} failed (membership_lookup_failed): {exc.message}"
            )
            return
        if exists:
            job.skipped += 1
            self._mark_seen(job, seen, email)
            return

        roles = permission_service.filter_role_submission(
            [part for part in row.roles_raw.split(ROLE_SEPARATOR) if part.strip()],
            self.settings.bulk_allowed_roles_list,
            self.settings.bulk_excluded_roles_list,
        )
        group_role = None
        if mode == RosterMode.GROUPS:
            group_role = self._group_role(roles)
            roles = []

        request = MemberAdditionRequest(
            first_name=row.first_name,
            last_name=row.last_name,
            email=email,
            roles=roles,
            relationship_type=relationship_type,
        )
        context = RosterContext(
            membership_uuid=job.membership_uuid,
            group_uuid=job.group_uuid,
            role=group_role,
            actor_uuid=job.actor_uuid,
        )

        try:
            self._roster(mode).add_member(job.org_uuid, request, context)
        except GroupMemberExistsError:
            job.skipped += 1
            self._mark_seen(job, seen, email)
            return
        except ServiceError as exc:
            self._fail_row(job, f"Row {row.row_num} failed ({exc.code}): {exc.message}")
            return
        except MembershipApiError as exc:
            self._fail_row(job, f"Row {row.row_num} failed (api_error): {exc.message}")
            return

        job.added += 1
        self._mark_seen(job, seen, email)

    # =========================================================================
    # Row helpers
    # =========================================================================

    def _relationship_lookup(self) -> dict[str, str]:
        """Normalized slug, label and alias -> relationship slug."""
        lookup: dict[str, str] = {}
        for slug, label in self.settings.RELATIONSHIP_TYPES.items():
            key = sanitize_key(slug)
            lookup[normalize_label(slug)] = key
            lookup[normalize_label(label)] = key
        for alias, slug in self.settings.BULK_UPLOAD_RELATIONSHIP_ALIASES.items():
            lookup[normalize_label(alias)] = sanitize_key(slug)
        return lookup

    def _resolve_relationship(
        self, raw: str, lookup: dict[str, str]
    ) -> tuple[str | None, str | None]:
        """Return (slug, error). Blank values are only an error when required."""
        value = (raw or "").strip()
        if not value:
            if self.settings.BULK_UPLOAD_RELATIONSHIP_REQUIRED:
                return None, "relationship type is required."
            return None, None

        slug = lookup.get(normalize_label(value)) or sanitize_key(value)
        allowed = self.settings.bulk_allowed_relationship_types_list or [
            sanitize_key(key) for key in self.settings.RELATIONSHIP_TYPES
        ]
        if allowed and slug not in allowed:
            return None, f"relationship type '{value}' is not allowed."
        return slug, None

    def _has_existing_membership(self, job: BulkUploadJob, mode: RosterMode, email: str) -> bool:
        if mode != RosterMode.GROUPS and job.membership_uuid:
            if membership_service.person_has_membership(self.api, job.membership_uuid, email=email):
                return True

        person_uuid = person_service.find_person_uuid(self.api, email)
        if not person_uuid:
            return False
        if mode == RosterMode.GROUPS:
            org_uuid, org_identifier = self._group_scope(job)
            member = group_service.find_active_group_member(
                self.api,
                self.settings,
                job.group_uuid,
                person_uuid,
                org_uuid=org_uuid,
                org_identifier=org_identifier,
            )
            return member is not None
        return membership_service.person_has_active_membership(
            self.api, person_uuid, job.membership_uuid
        )

    def _group_scope(self, job: BulkUploadJob) -> tuple[str, str | None]:
        """Organization a group upload acts for, resolved once per job."""
        if job.id not in self._group_scopes:
            access = group_service.can_manage_group(
                self.api, self.settings, job.group_uuid, job.actor_uuid, job.org_uuid
            )
            if access.allowed:
                self._group_scopes[job.id] = (access.org_uuid or job.org_uuid, access.org_identifier)
            else:
                # the roster call reports the denial per row
                self._group_scopes[job.id] = (job.org_uuid, None)
        return self._group_scopes[job.id]

    def _group_role(self, roles: list[str]) -> str:
        roster_roles = self.settings.groups_roster_roles_list
        for role in roles:
            slug = sanitize_key(role)
            if slug in roster_roles:
                return slug
        return sanitize_key(self.settings.GROUPS_MEMBER_ROLE)

    def _fail_row(self, job: BulkUploadJob, message: str) -> None:
        job.failed += 1
        self._add_snippet(job, message)

    def _add_snippet(self, job: BulkUploadJob, message: str) -> None:
        if len(job.error_snippets) >= self.settings.BULK_UPLOAD_MAX_ERROR_SNIPPETS:
            return
        limit = self.settings.BULK_UPLOAD_SNIPPET_MAX_LENGTH
        job.error_snippets.append(message if len(message) <= limit else message[: limit - 3] + "...")

    @staticmethod
    def _mark_seen(job: BulkUploadJob, seen: set[str], email: str) -> None:
        if email not in seen:
            seen.add(email)
            job.seen_emails.append(email)

    # =========================================================================
    # State transitions
    # =========================================================================

    @staticmethod
    def _touch(job: BulkUploadJob) -> None:
        job.updated_at = _now()

    def _schedule(self, job: BulkUploadJob, offset: int) -> bool:
        try:
            return bool(
                self.scheduler.schedule_after(
                    self.settings.BULK_UPLOAD_SCHEDULE_DELAY_SECONDS, job.id, offset
                )
            )
        except Exception:
            logger.exception("Scheduler raised for job %s", job.id)
            return False

    def _complete(self, job: BulkUploadJob) -> None:
        job.status = BulkUploadStatus.COMPLETED
        job.completed_at = _now()
        job.rows = []
        job.seen_emails = []
        self._touch(job)
        self.jobs.save(job)
        if job.added > 0 and job.membership_uuid:
            try:
                membership_service.clear_members_cache(self.cache_store, job.membership_uuid)
            except Exception:
                logger.warning("Member cache invalidation failed", exc_info=True)
        logger.info(
            "Bulk upload completed (processed=%d, added=%d, skipped=%d, failed=%d)",
            job.processed,
            job.added,
            job.skipped,
            job.failed,
            extra=build_log_context(job_id=job.id, org_id=job.org_uuid),
        )

    # =========================================================================
    # Status
    # =========================================================================

    def get_job_status(self, job_id: str) -> BulkUploadJobRead | None:
        job = self.jobs.get(job_id)
        if job is None:
            return None
        return BulkUploadJobRead.model_validate(job, from_attributes=True)

    def list_job_statuses(self) -> list[BulkUploadJobRead]:
        return [
            BulkUploadJobRead.model_validate(job, from_attributes=True)
            for job in self.jobs.list_jobs()
        ]


def build_bulk_upload_service(
    db,
    api: MembershipApi | None = None,
    cfg: Settings | None = None,
    store: KeyValueStore | None = None,
) -> BulkUploadService:
    """Production wiring: key/value store, jobs-table scheduler, HTTP API client."""
    from orgman.core.kv_store import get_kv_store
    from orgman.jobs.scheduler import DatabaseBatchScheduler
    from orgman.services.membership_api import HttpMembershipApi

    cfg = cfg or default_settings
    store = store or get_kv_store()
    return BulkUploadService(
        jobs=BulkUploadJobStore(store, retention=cfg.BULK_UPLOAD_JOB_RETENTION),
        scheduler=DatabaseBatchScheduler(db),
        api=api or HttpMembershipApi(cfg),
        cfg=cfg,
    )
