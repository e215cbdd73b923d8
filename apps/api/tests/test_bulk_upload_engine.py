"""Tests for the bulk upload engine (enqueue, batches, counters)."""

import pytest

from orgman.db.enums import BulkUploadStatus
from orgman.services.bulk_upload_errors import (
    BulkDuplicateActiveJobError,
    BulkInvalidRequestError,
    BulkNoRowsError,
    BulkRequiredColumnMissingError,
    BulkScheduleError,
)
from orgman.services.bulk_upload_service import (
    BATCH_CRASHED_SNIPPET,
    RESCHEDULE_FAILED_SNIPPET,
    SCHEDULE_FAILED_SNIPPET,
    BulkUploadService,
)
from orgman.services.bulk_upload_store import BulkUploadJobStore
from orgman.services.membership_service import list_members
from orgman.utils.jsonapi import attr, related_id

from conftest import api_error

HEADER = "First Name,Last Name,Email,Relationship Type,Roles\n"
TWO_ROWS = (
    HEADER
    + "Jane,Doe,jane@x.com,Employee,member\n"
    + "John,Smith,john@x.com,Employee,member\n"
).encode("utf-8")


def csv_bytes(*rows: str) -> bytes:
    return (HEADER + "".join(f"{row}\n" for row in rows)).encode("utf-8")


@pytest.fixture
def org(fake_api):
    return fake_api.seed_organization()


@pytest.fixture
def make_service(fake_api, kv_store, scheduler, test_settings):
    def _make(**overrides) -> BulkUploadService:
        cfg = test_settings.model_copy(update=overrides) if overrides else test_settings
        return BulkUploadService(
            BulkUploadJobStore(kv_store, retention=cfg.BULK_UPLOAD_JOB_RETENTION),
            scheduler,
            fake_api,
            cfg,
        )

    return _make


def run_to_completion(service: BulkUploadService, job_id: str, max_batches: int = 50):
    job = service.jobs.get(job_id)
    for _ in range(max_batches):
        job = service.process_batch(job_id, expected_offset=job.next_offset)
        if job.status != BulkUploadStatus.QUEUED:
            return job
    raise AssertionError("bulk upload did not finish")


def assert_counters_consistent(job):
    assert job.processed == job.added + job.skipped + job.failed
    assert job.processed <= job.total_records
    assert job.next_offset <= job.total_records


# =============================================================================
# Enqueue
# =============================================================================


def test_enqueue_stores_queued_job_and_schedules_first_batch(make_service, scheduler, org):
    org_uuid, membership_uuid = org
    service = make_service()

    result = service.enqueue(TWO_ROWS, "members.csv", org_uuid)

    assert result.status == BulkUploadStatus.QUEUED
    assert result.total_records == 2
    job = service.jobs.get(result.job_id)
    assert job.membership_uuid == membership_uuid
    assert job.roster_mode == "direct"
    assert job.next_offset == 0
    assert len(job.rows) == 2
    assert scheduler.requests == [(0, result.job_id, 0)]


def test_enqueue_rejects_duplicate_active_file(make_service, org):
    org_uuid, _ = org
    service = make_service()
    first = service.enqueue(TWO_ROWS, "members.csv", org_uuid)

    with pytest.raises(BulkDuplicateActiveJobError) as exc_info:
        service.enqueue(TWO_ROWS, "members-again.csv", org_uuid)

    assert exc_info.value.job_id == first.job_id
    assert exc_info.value.status_code == 409
    assert exc_info.value.to_dict()["job_status"] == "queued"


def test_enqueue_same_file_allowed_after_completion(make_service, org):
    org_uuid, _ = org
    service = make_service()
    first = service.enqueue(TWO_ROWS, "members.csv", org_uuid)
    run_to_completion(service, first.job_id)

    second = service.enqueue(TWO_ROWS, "members.csv", org_uuid)

    assert second.job_id != first.job_id


def test_enqueue_schedule_failure_marks_job_failed(make_service, scheduler, org):
    org_uuid, _ = org
    scheduler.result = False
    service = make_service()

    with pytest.raises(BulkScheduleError):
        service.enqueue(TWO_ROWS, "members.csv", org_uuid)

    [job] = service.jobs.list_jobs()
    assert job.status == BulkUploadStatus.FAILED
    assert job.error_snippets == [SCHEDULE_FAILED_SNIPPET]


@pytest.mark.parametrize(
    ("kwargs", "message"),
    [
        ({"org_uuid": ""}, "Organization"),
        ({"roster_mode": "spreadsheet"}, "Unknown roster mode"),
        ({"roster_mode": "groups"}, "Group UUID"),
        ({"roster_mode": "membership_cycle"}, "Membership UUID"),
    ],
)
def test_enqueue_rejects_invalid_target(make_service, org, kwargs, message):
    org_uuid, _ = org
    service = make_service()
    call = {"org_uuid": org_uuid, **kwargs}

    with pytest.raises(BulkInvalidRequestError) as exc_info:
        service.enqueue(TWO_ROWS, "members.csv", **call)

    assert message in exc_info.value.message
    assert service.jobs.list_jobs() == []


def test_enqueue_rejects_org_without_membership(make_service):
    service = make_service()

    with pytest.raises(BulkInvalidRequestError):
        service.enqueue(TWO_ROWS, "members.csv", "org-without-membership")


def test_enqueue_rejects_file_problems(make_service, org):
    org_uuid, _ = org
    service = make_service()

    with pytest.raises(BulkNoRowsError):
        service.enqueue(HEADER.encode("utf-8"), "empty.csv", org_uuid)
    with pytest.raises(BulkRequiredColumnMissingError):
        service.enqueue(b"First Name,Last Name\nJane,Doe\n", "partial.csv", org_uuid)
    assert service.jobs.list_jobs() == []


# =============================================================================
# Batches
# =============================================================================


def test_two_row_upload_processed_one_row_per_batch(make_service, scheduler, fake_api, org):
    org_uuid, membership_uuid = org
    service = make_service(BULK_UPLOAD_BATCH_SIZE=1)
    job_id = service.enqueue(TWO_ROWS, "members.csv", org_uuid).job_id

    job = service.process_batch(job_id, expected_offset=0)

    assert job.status == BulkUploadStatus.QUEUED
    assert (job.processed, job.added, job.next_offset) == (1, 1, 1)
    assert scheduler.requests[-1] == (0, job_id, 1)

    job = service.process_batch(job_id, expected_offset=1)

    assert job.status == BulkUploadStatus.COMPLETED
    assert (job.processed, job.added, job.skipped, job.failed) == (2, 2, 0, 0)
    assert job.next_offset == 2
    assert job.completed_at is not None
    stored = service.jobs.get(job_id)
    assert stored.rows == []
    assert stored.seen_emails == []

    seat_holders = {
        related_id(item, "person")
        for item in fake_api.person_memberships.values()
        if related_id(item, "organization_membership") == membership_uuid
    }
    assert len(seat_holders) == 2
    relationship_types = {attr(c, "type") for c in fake_api.connections}
    assert relationship_types == {"employee_staff"}


def test_stale_batch_delivery_is_ignored(make_service, fake_api, org):
    org_uuid, _ = org
    service = make_service(BULK_UPLOAD_BATCH_SIZE=1)
    job_id = service.enqueue(TWO_ROWS, "members.csv", org_uuid).job_id
    service.process_batch(job_id, expected_offset=0)
    calls_before = len(fake_api.calls)

    job = service.process_batch(job_id, expected_offset=0)

    assert job.processed == 1
    assert job.next_offset == 1
    assert len(fake_api.calls) == calls_before


def test_missing_and_terminal_jobs_are_noops(make_service, org):
    org_uuid, _ = org
    service = make_service()
    assert service.process_batch("no-such-job") is None

    job_id = service.enqueue(TWO_ROWS, "members.csv", org_uuid).job_id
    finished = run_to_completion(service, job_id)

    again = service.process_batch(job_id)
    assert again.status == BulkUploadStatus.COMPLETED
    assert again.processed == finished.processed


def test_row_outcomes_are_counted(make_service, fake_api, org):
    org_uuid, membership_uuid = org
    existing = fake_api.seed_person("existing@x.com")
    fake_api.seed_seat(existing, membership_uuid)
    service = make_service(BULK_UPLOAD_BATCH_SIZE=2)
    content = csv_bytes(
        "Jane,Doe,jane@x.com,Employee,member",
        ",Doe,nofirst@x.com,Employee,",
        "Bad,Email,not-an-email,Employee,",
        "Jane,Doe,JANE@X.COM,Employee,",
        "Ex,Isting,existing@x.com,Employee,",
        "No,Relationship,norel@x.com,,",
        "Odd,Relationship,odd@x.com,Astronaut,",
    )

    job_id = service.enqueue(content, "members.csv", org_uuid).job_id
    job = run_to_completion(service, job_id)

    assert job.status == BulkUploadStatus.COMPLETED
    assert job.total_records == 7
    assert (job.processed, job.added, job.skipped, job.failed) == (7, 1, 2, 4)
    assert_counters_consistent(job)
    assert job.error_snippets[0] == "Row 3 skipped: missing required name/email fields."
    assert "relationship type is required" in job.error_snippets[2]
    assert "'Astronaut' is not allowed" in job.error_snippets[3]
    assert fake_api.called("create_person") == 1


def test_error_snippets_are_capped_and_truncated(make_service, fake_api, org):
    org_uuid, _ = org
    fake_api.fail["create_person"] = api_error("x" * 400)
    service = make_service(BULK_UPLOAD_MAX_ERROR_SNIPPETS=2, BULK_UPLOAD_SNIPPET_MAX_LENGTH=50)
    content = csv_bytes(*(f"P{i},Q{i},p{i}@x.com,Employee," for i in range(4)))

    job_id = service.enqueue(content, "members.csv", org_uuid).job_id
    job = run_to_completion(service, job_id)

    assert job.failed == 4
    assert len(job.error_snippets) == 2
    assert all(len(snippet) <= 50 for snippet in job.error_snippets)
    assert job.error_snippets[0].startswith("Row 2 failed (person_creation_failed)")
    assert job.error_snippets[0].endswith("...")


def test_membership_lookup_failure_fails_only_that_row(make_service, fake_api, org):
    org_uuid, _ = org
    fake_api.seed_person("jane@x.com")
    fake_api.fail["query_person_memberships"] = api_error()
    service = make_service()

    job_id = service.enqueue(TWO_ROWS, "members.csv", org_uuid).job_id
    job = run_to_completion(service, job_id)

    assert job.status == BulkUploadStatus.COMPLETED
    assert job.failed == 2
    assert "membership_lookup_failed" in job.error_snippets[0]


def test_roles_are_filtered_before_assignment(make_service, fake_api, org):
    org_uuid, _ = org
    service = make_service(BULK_UPLOAD_EXCLUDED_ROLES="Membership Manager")
    content = csv_bytes("Jane,Doe,jane@x.com,Employee,org_editor|membership_manager|membership_owner")

    job_id = service.enqueue(content, "members.csv", org_uuid).job_id
    run_to_completion(service, job_id)

    person_uuid = next(iter(fake_api.people))
    assert fake_api.roles_for(person_uuid, org_uuid) == ["member", "org_editor"]


def test_reschedule_failure_marks_job_failed(make_service, scheduler, org):
    org_uuid, _ = org
    service = make_service(BULK_UPLOAD_BATCH_SIZE=1)
    job_id = service.enqueue(TWO_ROWS, "members.csv", org_uuid).job_id
    scheduler.result = False

    job = service.process_batch(job_id, expected_offset=0)

    assert job.status == BulkUploadStatus.FAILED
    assert job.processed == 1
    assert job.error_snippets == [RESCHEDULE_FAILED_SNIPPET]
    assert service.jobs.get(job_id).status == BulkUploadStatus.FAILED


def test_unexpected_crash_marks_job_failed(fake_api, kv_store, scheduler, test_settings, org):
    org_uuid, _ = org

    def broken_roster(mode):
        raise RuntimeError("boom")

    service = BulkUploadService(
        BulkUploadJobStore(kv_store), scheduler, fake_api, test_settings, roster_factory=broken_roster
    )
    job_id = service.enqueue(TWO_ROWS, "members.csv", org_uuid).job_id

    job = service.process_batch(job_id, expected_offset=0)

    assert job.status == BulkUploadStatus.FAILED
    assert job.error_snippets == [BATCH_CRASHED_SNIPPET]


def test_completion_clears_member_cache(make_service, fake_api, kv_store, org):
    org_uuid, membership_uuid = org
    list_members(fake_api, kv_store, membership_uuid, page=1, size=20)
    assert list_members(fake_api, kv_store, membership_uuid, page=1, size=20)[1] is True
    service = make_service()

    job_id = service.enqueue(TWO_ROWS, "members.csv", org_uuid).job_id
    run_to_completion(service, job_id)

    items, cached = list_members(fake_api, kv_store, membership_uuid, page=1, size=20)
    assert cached is False
    assert len(items) == 2


# =============================================================================
# Other roster modes
# =============================================================================


def test_groups_upload_adds_group_members(make_service, fake_api):
    org_uuid, _ = fake_api.seed_organization(name="Acme Corp")
    group_uuid = fake_api.seed_group(org_uuid)
    already = fake_api.seed_person("already@x.com")
    fake_api.seed_group_member(group_uuid, already, "observer", association="Acme Corp")
    service = make_service()
    content = csv_bytes(
        "Jane,Doe,jane@x.com,Employee,observer",
        "John,Smith,john@x.com,Employee,Observer|org_editor",
        "Al,Ready,already@x.com,Employee,observer",
    )

    job_id = service.enqueue(
        content, "group.csv", org_uuid, roster_mode="groups", group_uuid=group_uuid
    ).job_id
    job = run_to_completion(service, job_id)

    assert (job.added, job.skipped, job.failed) == (2, 1, 0)
    roles = sorted(
        attr(m, "type")
        for m in fake_api.group_members.values()
        if related_id(m, "person") != already
    )
    assert roles == ["observer", "observer"]
    assert fake_api.called("assign_role") == 0


def test_groups_upload_second_member_seat_fails(make_service, fake_api):
    org_uuid, _ = fake_api.seed_organization(name="Acme Corp")
    group_uuid = fake_api.seed_group(org_uuid)
    service = make_service()
    content = csv_bytes(
        "Jane,Doe,jane@x.com,Employee,member",
        "John,Smith,john@x.com,Employee,",
    )

    job_id = service.enqueue(
        content, "group.csv", org_uuid, roster_mode="groups", group_uuid=group_uuid
    ).job_id
    job = run_to_completion(service, job_id)

    assert (job.added, job.failed) == (1, 1)
    assert "seat_unavailable" in job.error_snippets[0]


def test_groups_upload_adds_person_listed_for_another_org(make_service, fake_api):
    org_uuid, _ = fake_api.seed_organization(name="Acme Corp")
    group_uuid = fake_api.seed_group(org_uuid)
    globex_member = fake_api.seed_person("jane@x.com")
    fake_api.seed_group_member(group_uuid, globex_member, "observer", association="Globex")
    service = make_service()

    job_id = service.enqueue(
        csv_bytes("Jane,Doe,jane@x.com,Employee,observer"),
        "group.csv",
        org_uuid,
        roster_mode="groups",
        group_uuid=group_uuid,
    ).job_id
    job = run_to_completion(service, job_id)

    assert (job.added, job.skipped) == (1, 0)
    associations = sorted(
        attr(m, "custom_data_field")["value"]["name"] for m in fake_api.group_members.values()
    )
    assert associations == ["Acme Corp", "Globex"]


def test_empty_relationship_allow_list_accepts_any_type(make_service, fake_api, org):
    org_uuid, _ = org
    service = make_service(RELATIONSHIP_TYPES={})
    content = csv_bytes("Odd,Relationship,odd@x.com,Astronaut,")

    job_id = service.enqueue(content, "members.csv", org_uuid).job_id
    job = run_to_completion(service, job_id)

    assert (job.added, job.failed) == (1, 0)
    assert attr(fake_api.connections[0], "type") == "astronaut"


def test_existing_seat_is_found_with_one_filtered_query(make_service, fake_api, org):
    org_uuid, membership_uuid = org
    existing = fake_api.seed_person("existing@x.com")
    fake_api.seed_seat(existing, membership_uuid)
    service = make_service()

    job_id = service.enqueue(
        csv_bytes("Ex,Isting,existing@x.com,Employee,"), "members.csv", org_uuid
    ).job_id
    job = run_to_completion(service, job_id)

    assert job.skipped == 1
    assert ("query_person_memberships", (membership_uuid, None, "existing@x.com")) in fake_api.calls
    assert fake_api.called("list_membership_person_memberships") == 0


def test_membership_cycle_upload_uses_named_membership(make_service, fake_api, org):
    org_uuid, _ = org
    _, renewal = fake_api.seed_organization(org_uuid=org_uuid)
    service = make_service()

    job_id = service.enqueue(
        TWO_ROWS, "renewal.csv", org_uuid, membership_uuid=renewal, roster_mode="membership_cycle"
    ).job_id
    job = run_to_completion(service, job_id)

    assert job.added == 2
    memberships = {
        related_id(item, "organization_membership") for item in fake_api.person_memberships.values()
    }
    assert memberships == {renewal}


def test_status_views_hide_rows(make_service, org):
    org_uuid, _ = org
    service = make_service()
    job_id = service.enqueue(TWO_ROWS, "members.csv", org_uuid).job_id

    status = service.get_job_status(job_id)

    assert status.id == job_id
    assert status.total_records == 2
    assert not hasattr(status, "rows")
    assert [item.id for item in service.list_job_statuses()] == [job_id]
    assert service.get_job_status("missing") is None
