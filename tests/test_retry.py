"""
Tests for retrying failed formats.
"""

import asyncio
from unittest.mock import MagicMock

import pytest

from smart_resizer.exceptions import (
    EnqueueError,
    ForbiddenError,
    JobInProgressError,
    JobNotFoundError,
    NoFailedFormatsError,
)
from smart_resizer.jobs.models import JobStatus, ResultStatus
from smart_resizer.services.admission import JobAdmission
from smart_resizer.services.retry import RetryController, load_owned_job
from smart_resizer.services.worker import ResizeWorker
from tests.conftest import FlakyRepository, FlakyStore, RecordingDispatcher


@pytest.fixture
def flaky_store(tmp_path):
    return FlakyStore(str(tmp_path / "flaky"), fail_keys={"widescreen"})


@pytest.fixture
def flaky_setup(catalog, repository, flaky_store, pricing):
    dispatcher = RecordingDispatcher()
    worker = ResizeWorker(catalog, repository, flaky_store)
    admission = JobAdmission(catalog, repository, flaky_store, dispatcher, pricing.smart_resizer)
    controller = RetryController(repository, dispatcher)
    yield admission, controller, dispatcher, worker
    worker.close()


@pytest.mark.unit
class TestLoadOwnedJob:

    def test_missing_job(self, repository, owner):
        with pytest.raises(JobNotFoundError):
            load_owned_job(repository, owner, "nope")
        with pytest.raises(JobNotFoundError):
            load_owned_job(repository, owner, "00000000-0000-0000-0000-000000000000")

    def test_malformed_id_never_reaches_the_store(self, owner):
        repository = MagicMock()
        with pytest.raises(JobNotFoundError):
            load_owned_job(repository, owner, "1; drop table")
        repository.get_job.assert_not_called()

    async def test_foreign_job_is_forbidden(self, admission, repository, owner, other_owner, png_bytes):
        job = await admission.admit(owner, png_bytes, "m.png", ["square"])
        with pytest.raises(ForbiddenError):
            load_owned_job(repository, other_owner, job.id)


@pytest.mark.integration
class TestRetryController:

    async def test_retry_only_failed_formats(self, flaky_setup, flaky_store, repository, owner, png_bytes):
        admission, controller, dispatcher, worker = flaky_setup
        job = await admission.admit(owner, png_bytes, "m.png", ["square", "widescreen"])
        dispatcher.drain(worker)

        first = {r.format_key: r for r in repository.list_results(job.id)}
        assert first["square"].status == ResultStatus.COMPLETED
        assert first["widescreen"].status == ResultStatus.FAILED
        square_file = flaky_store.get(first["square"].storage_path)

        # The storage outage is over
        flaky_store.fail_keys.clear()
        data = await controller.retry(owner, job.id)

        assert data["retriedFormats"] == ["widescreen"]
        assert data["retriedCount"] == 1
        assert data["status"] == "processing"
        assert repository.get_job(job.id).status == JobStatus.PROCESSING
        _, task = dispatcher.tasks[0]
        assert task.format_keys == ["widescreen"]
        assert task.is_retry

        dispatcher.drain(worker)

        second = {r.format_key: r for r in repository.list_results(job.id)}
        assert second["widescreen"].status == ResultStatus.COMPLETED
        assert second["widescreen"].error_reason is None
        assert second["square"] == first["square"]
        assert flaky_store.get(second["square"].storage_path) == square_file
        assert repository.get_job(job.id).status == JobStatus.COMPLETED

    async def test_retry_with_nothing_failed_is_rejected(
        self, admission, worker, dispatcher, retry_controller, owner, png_bytes
    ):
        job = await admission.admit(owner, png_bytes, "m.png", ["square"])
        dispatcher.drain(worker)

        with pytest.raises(NoFailedFormatsError):
            await retry_controller.retry(owner, job.id)
        assert dispatcher.tasks == []

    async def test_retry_while_pending_is_rejected(self, admission, retry_controller, owner, png_bytes):
        job = await admission.admit(owner, png_bytes, "m.png", ["square"])
        with pytest.raises(JobInProgressError):
            await retry_controller.retry(owner, job.id)

    async def test_retry_of_foreign_job_is_forbidden(
        self, admission, worker, dispatcher, retry_controller, owner, other_owner, png_bytes
    ):
        job = await admission.admit(owner, png_bytes, "m.png", ["square"])
        dispatcher.drain(worker)
        with pytest.raises(ForbiddenError):
            await retry_controller.retry(other_owner, job.id)

    async def test_enqueue_failure_restores_failed_state(
        self, flaky_setup, repository, owner, png_bytes
    ):
        admission, _, dispatcher, worker = flaky_setup
        job = await admission.admit(owner, png_bytes, "m.png", ["square", "widescreen"])
        dispatcher.drain(worker)

        broken = RetryController(repository, RecordingDispatcher(fail=True))
        with pytest.raises(EnqueueError):
            await broken.retry(owner, job.id)

        results = {r.format_key: r for r in repository.list_results(job.id)}
        assert results["widescreen"].status == ResultStatus.FAILED
        assert "could not be queued" in results["widescreen"].error_reason
        assert results["widescreen"].width == 1920
        assert repository.get_job(job.id).status == JobStatus.COMPLETED

    async def test_concurrent_retries_queue_work_once(self, flaky_setup, repository, owner, png_bytes):
        admission, controller, dispatcher, worker = flaky_setup
        job = await admission.admit(owner, png_bytes, "m.png", ["square", "widescreen"])
        dispatcher.drain(worker)

        outcomes = await asyncio.gather(
            controller.retry(owner, job.id),
            controller.retry(owner, job.id),
            return_exceptions=True,
        )

        accepted = [o for o in outcomes if isinstance(o, dict)]
        rejected = [o for o in outcomes if isinstance(o, Exception)]
        assert len(accepted) == 1
        assert len(rejected) == 1
        assert isinstance(rejected[0], (JobInProgressError, NoFailedFormatsError))
        assert len(dispatcher.tasks) == 1
        assert dispatcher.tasks[0][1].format_keys == ["widescreen"]

    async def test_claim_lost_after_read_is_rejected(self, flaky_setup, repository, owner, png_bytes):
        admission, controller, dispatcher, worker = flaky_setup
        job = await admission.admit(owner, png_bytes, "m.png", ["square", "widescreen"])
        dispatcher.drain(worker)

        # Another retry moved the job on between our read and our claim
        original = repository.transition_job_status

        def claimed_elsewhere(*args, **kwargs):
            repository.set_job_status(job.id, JobStatus.PROCESSING)
            return original(*args, **kwargs)

        repository.transition_job_status = claimed_elsewhere
        with pytest.raises(JobInProgressError):
            await controller.retry(owner, job.id)
        assert dispatcher.tasks == []
        results = {r.format_key: r for r in repository.list_results(job.id)}
        assert results["widescreen"].status == ResultStatus.FAILED

    async def test_reset_rows_decide_what_is_retried(self, flaky_setup, repository, owner, png_bytes):
        admission, controller, dispatcher, worker = flaky_setup
        job = await admission.admit(owner, png_bytes, "m.png", ["square", "widescreen"])
        dispatcher.drain(worker)

        # The failed row is reset by someone else after the retryable check
        original = repository.reset_results

        def reset_twice(job_id, keys):
            original(job_id, keys)
            return original(job_id, keys)

        repository.reset_results = reset_twice
        with pytest.raises(NoFailedFormatsError):
            await controller.retry(owner, job.id)
        assert dispatcher.tasks == []
        assert repository.get_job(job.id).status == JobStatus.COMPLETED

    async def test_formats_without_a_stored_result_are_retried(self, catalog, pricing, tmp_path, owner, png_bytes):
        repository = FlakyRepository(fail_result_keys={"widescreen"})
        store = FlakyStore(str(tmp_path / "objects"))
        dispatcher = RecordingDispatcher()
        worker = ResizeWorker(catalog, repository, store)
        admission = JobAdmission(catalog, repository, store, dispatcher, pricing.smart_resizer)
        controller = RetryController(repository, dispatcher)
        try:
            job = await admission.admit(owner, png_bytes, "m.png", ["square", "widescreen"])
            dispatcher.drain(worker)
            assert repository.get_job(job.id).status == JobStatus.FAILED

            # The database is writable again
            repository.fail_result_keys.clear()
            data = await controller.retry(owner, job.id)
            assert data["retriedFormats"] == ["widescreen"]

            dispatcher.drain(worker)
        finally:
            worker.close()

        results = {r.format_key: r for r in repository.list_results(job.id)}
        assert results["widescreen"].status == ResultStatus.COMPLETED
        assert results["square"].status == ResultStatus.COMPLETED
        assert repository.get_job(job.id).status == JobStatus.COMPLETED

    async def test_enqueue_failure_records_missing_formats_as_failed(
        self, catalog, pricing, tmp_path, owner, png_bytes
    ):
        repository = FlakyRepository(fail_result_keys={"widescreen"})
        store = FlakyStore(str(tmp_path / "objects"))
        dispatcher = RecordingDispatcher()
        worker = ResizeWorker(catalog, repository, store)
        admission = JobAdmission(catalog, repository, store, dispatcher, pricing.smart_resizer)
        try:
            job = await admission.admit(owner, png_bytes, "m.png", ["square", "widescreen"])
            dispatcher.drain(worker)
        finally:
            worker.close()

        repository.fail_result_keys.clear()
        broken = RetryController(repository, RecordingDispatcher(fail=True))
        with pytest.raises(EnqueueError):
            await broken.retry(owner, job.id)

        results = {r.format_key: r for r in repository.list_results(job.id)}
        assert results["widescreen"].status == ResultStatus.FAILED
        assert "could not be queued" in results["widescreen"].error_reason
        assert repository.get_job(job.id).status == JobStatus.COMPLETED
