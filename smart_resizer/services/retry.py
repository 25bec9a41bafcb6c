"""Retry of failed formats.

Only Results in the failed state are re-driven, along with requested formats
whose Result was never stored. Completed Results are not reset, re-queued or
overwritten, so a retry costs as much as the number of failures, not the
number of requested formats.

The job is claimed by moving it to processing only if its status is still
the one read, and failed rows are reset only while still failed. Two
concurrent retries of the same job therefore cannot both queue work.
"""

import asyncio
from typing import Dict, List

from loguru import logger

from smart_resizer.auth.supabase_auth import Owner
from smart_resizer.db.repository import JobRepository, is_job_id
from smart_resizer.exceptions import (
    EnqueueError,
    ForbiddenError,
    JobInProgressError,
    JobNotFoundError,
    NoFailedFormatsError,
)
from smart_resizer.jobs.dispatcher import JobDispatcher
from smart_resizer.jobs.models import (
    FormatResult,
    JobStatus,
    ResizeJob,
    ResizeTask,
    ResultStatus,
)
from smart_resizer.services.worker import final_job_status


def load_owned_job(repository: JobRepository, owner: Owner, job_id: str) -> ResizeJob:
    """Fetch a job, enforcing that it belongs to the caller's client."""
    job = repository.get_job(job_id) if is_job_id(job_id) else None
    if job is None:
        raise JobNotFoundError("Job not found")
    if job.owner_ref != owner.client_id:
        logger.warning(
            "Client {} denied access to job {} (owned by {})",
            owner.client_id, job_id, job.owner_ref,
        )
        raise ForbiddenError("Access denied")
    return job


def retryable_formats(job: ResizeJob, results: List[FormatResult]) -> List[str]:
    """Requested formats that failed or have no stored Result, in request order."""
    by_key = {r.format_key: r for r in results}
    return [
        key for key in job.formats_requested
        if key not in by_key or by_key[key].status == ResultStatus.FAILED
    ]


class RetryController:

    def __init__(self, repository: JobRepository, dispatcher: JobDispatcher):
        self._repository = repository
        self._dispatcher = dispatcher

    async def retry(self, owner: Owner, job_id: str) -> Dict:
        job = await asyncio.to_thread(load_owned_job, self._repository, owner, job_id)
        if job.status in (JobStatus.PENDING, JobStatus.PROCESSING):
            raise JobInProgressError(f"Job is still {job.status.value}")

        results = await asyncio.to_thread(self._repository.list_results, job.id)
        if not retryable_formats(job, results):
            raise NoFailedFormatsError("No failed formats to retry")

        claimed = await asyncio.to_thread(
            self._repository.transition_job_status, job.id, job.status, JobStatus.PROCESSING
        )
        if not claimed:
            raise JobInProgressError("Job is already being retried")

        try:
            keys, failed = await asyncio.to_thread(self._reset, job)
        except Exception:
            await asyncio.to_thread(self._release, job)
            raise
        if not keys:
            await asyncio.to_thread(self._release, job)
            raise NoFailedFormatsError("No failed formats to retry")

        task = ResizeTask(
            job_id=job.id,
            owner_ref=job.owner_ref,
            format_keys=keys,
            master_storage_path=job.master_storage_path,
            priority=job.quality.priority,
            is_retry=True,
        )
        try:
            handle = await self._dispatcher.enqueue(task, task.priority)
        except Exception as exc:
            await asyncio.to_thread(self._restore, job, keys, failed, str(exc))
            raise EnqueueError(f"Failed to enqueue retry: {exc}", details={"jobId": job.id}) from exc

        logger.info("Job {} retry queued for {} format(s) (task {})", job.id, len(keys), handle)
        return {
            "jobId": job.id,
            "taskId": handle,
            "status": JobStatus.PROCESSING.value,
            "retriedFormats": keys,
            "retriedCount": len(keys),
        }

    def _reset(self, job: ResizeJob):
        """Reset failed rows and pick up missing ones. Returns (keys, failed rows before reset)."""
        results = self._repository.list_results(job.id)
        candidates = retryable_formats(job, results)
        previous = {r.format_key: r for r in results}
        failed = [previous[k] for k in candidates if k in previous]

        reset = self._repository.reset_results(job.id, [r.format_key for r in failed])
        reset_keys = {r.format_key for r in reset}
        keys = [k for k in candidates if k in reset_keys or k not in previous]
        return keys, [r for r in failed if r.format_key in reset_keys]

    def _restore(
        self,
        job: ResizeJob,
        keys: List[str],
        failed: List[FormatResult],
        error: str,
    ) -> None:
        """Put retried formats back to failed so the job is not left processing."""
        reason = f"Retry could not be queued: {error}"
        previous = {r.format_key: r for r in failed}
        for key in keys:
            base = previous.get(key) or FormatResult(job_id=job.id, format_key=key)
            self._repository.upsert_result(base.model_copy(update={
                "status": ResultStatus.FAILED,
                "error_reason": reason,
            }))
        results = self._repository.list_results(job.id)
        status = final_job_status(job, results)
        self._repository.set_job_status(
            job.id, status, "All formats failed" if status == JobStatus.FAILED else None
        )

    def _release(self, job: ResizeJob) -> None:
        """Hand the claim back, leaving the job as it was before the retry."""
        self._repository.set_job_status(job.id, job.status, job.error_reason)
