import pytest

from orgman.db.enums import BulkUploadStatus, JobStatus, JobType
from orgman.db.models import Job
from orgman.jobs.scheduler import DatabaseBatchScheduler
from orgman.services.bulk_upload_service import BulkUploadService
from orgman.services.bulk_upload_store import BulkUploadJobStore


def test_job_registry_resolves_bulk_upload_handler():
    from orgman.jobs.registry import resolve_job_handler
    from orgman.jobs.handlers.bulk_uploads import process_bulk_upload_batch

    handler = resolve_job_handler(JobType.BULK_UPLOAD_BATCH.value)
    assert handler is process_bulk_upload_batch


def test_job_registry_unknown_raises():
    from orgman.jobs.registry import resolve_job_handler

    with pytest.raises(ValueError):
        resolve_job_handler("nope")


@pytest.mark.asyncio
async def test_process_job_uses_registry(monkeypatch):
    from orgman.jobs import runner

    calls: dict[str, str] = {}

    async def stub_handler(_db, job):
        calls["job_type"] = job.job_type

    def stub_resolver(job_type: str):
        calls["resolved"] = job_type
        return stub_handler

    monkeypatch.setattr(runner, "resolve_job_handler", stub_resolver)
    job = Job(job_type="custom_job", payload={})

    await runner.process_job(None, job)

    assert calls == {"resolved": "custom_job", "job_type": "custom_job"}


@pytest.mark.asyncio
async def test_run_due_jobs_marks_unknown_type_for_retry(db):
    from orgman.jobs.runner import run_due_jobs

    job = Job(job_type="nope", payload={}, status=JobStatus.PENDING.value)
    db.add(job)
    db.commit()

    counts = await run_due_jobs(db)

    db.refresh(job)
    assert counts == {"completed": 0, "failed": 1}
    assert job.status == JobStatus.PENDING.value
    assert job.attempts == 1
    assert "Unknown job type" in job.last_error


@pytest.mark.asyncio
async def test_bulk_upload_handler_requires_job_id(db):
    from orgman.jobs.handlers.bulk_uploads import process_bulk_upload_batch

    with pytest.raises(ValueError):
        await process_bulk_upload_batch(db, Job(job_type=JobType.BULK_UPLOAD_BATCH.value, payload={}))


@pytest.mark.asyncio
async def test_run_due_jobs_drives_bulk_upload_to_completion(
    db, monkeypatch, fake_api, kv_store, test_settings
):
    from orgman.jobs.runner import run_due_jobs
    from orgman.services import bulk_upload_service as bulk_module

    org_uuid, _ = fake_api.seed_organization()
    cfg = test_settings.model_copy(update={"BULK_UPLOAD_BATCH_SIZE": 1})
    service = BulkUploadService(BulkUploadJobStore(kv_store), DatabaseBatchScheduler(db), fake_api, cfg)
    monkeypatch.setattr(bulk_module, "build_bulk_upload_service", lambda db, **kwargs: service)

    content = (
        b"First Name,Last Name,Email,Relationship Type,Roles\n"
        b"Jane,Doe,jane@x.com,Employee,member\n"
        b"John,Smith,john@x.com,Employee,member\n"
    )
    job_id = service.enqueue(content, "members.csv", org_uuid).job_id

    first = await run_due_jobs(db)
    assert first == {"completed": 1, "failed": 0}
    upload = service.jobs.get(job_id)
    assert upload.status == BulkUploadStatus.QUEUED
    assert upload.next_offset == 1

    second = await run_due_jobs(db)
    assert second == {"completed": 1, "failed": 0}
    upload = service.jobs.get(job_id)
    assert upload.status == BulkUploadStatus.COMPLETED
    assert (upload.processed, upload.added) == (2, 2)

    assert await run_due_jobs(db) == {"completed": 0, "failed": 0}
    assert db.query(Job).filter(Job.status == JobStatus.COMPLETED.value).count() == 2
