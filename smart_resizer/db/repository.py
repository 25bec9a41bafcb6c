"""Persistence for jobs and per-format results.

SupabaseJobRepository talks to the hosted Postgres tables through PostgREST;
InMemoryJobRepository keeps the same semantics in process for local runs and
tests. Result writes are upserts keyed by (job_id, format_key), so a task
delivered twice cannot leave two rows for the same format.
"""

import threading
import uuid
from abc import ABC, abstractmethod
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from supabase import Client

from smart_resizer.exceptions import RepositoryError
from smart_resizer.jobs.models import (
    FormatResult,
    JobStatus,
    ResizeJob,
    ResultStatus,
    utcnow,
)

_TERMINAL_JOB_STATUSES = (JobStatus.COMPLETED, JobStatus.FAILED)


def is_job_id(value: str) -> bool:
    """Job ids are UUIDs; anything else cannot name a stored job."""
    try:
        uuid.UUID(str(value))
    except ValueError:
        return False
    return True


def _status_update(status: JobStatus, error_reason: Optional[str]) -> Dict:
    now = utcnow().isoformat()
    return {
        "status": status.value,
        "updated_at": now,
        "completed_at": now if status in _TERMINAL_JOB_STATUSES else None,
        "error_reason": error_reason,
    }


class JobRepository(ABC):
    """Abstract interface over the relational store."""

    @abstractmethod
    def create_job(self, job: ResizeJob) -> ResizeJob:
        ...

    @abstractmethod
    def get_job(self, job_id: str) -> Optional[ResizeJob]:
        ...

    @abstractmethod
    def list_jobs(self, owner_ref: str) -> List[ResizeJob]:
        """Jobs owned by owner_ref, newest first."""
        ...

    @abstractmethod
    def set_job_status(
        self,
        job_id: str,
        status: JobStatus,
        error_reason: Optional[str] = None,
    ) -> None:
        """Update status. Terminal statuses stamp completed_at, others clear it."""
        ...

    @abstractmethod
    def transition_job_status(
        self,
        job_id: str,
        expected: JobStatus,
        status: JobStatus,
        error_reason: Optional[str] = None,
    ) -> bool:
        """Like set_job_status, but only while the job is still in `expected`.

        Returns False when another writer changed the status first.
        """
        ...

    @abstractmethod
    def list_results(self, job_id: str) -> List[FormatResult]:
        ...

    @abstractmethod
    def upsert_result(self, result: FormatResult) -> FormatResult:
        ...

    @abstractmethod
    def reset_results(self, job_id: str, format_keys: Iterable[str]) -> List[FormatResult]:
        """Put the given results back to pending, clearing outputs and errors."""
        ...


# ---------------------------------------------------------------------------
# Supabase
# ---------------------------------------------------------------------------

class SupabaseJobRepository(JobRepository):
    """PostgREST-backed repository. Each call uses a freshly built client."""

    def __init__(
        self,
        client_factory: Callable[[], Client],
        jobs_table: str = "smart_resizer_jobs",
        results_table: str = "smart_resizer_results",
    ):
        self._client_factory = client_factory
        self._jobs_table = jobs_table
        self._results_table = results_table

    def _jobs(self):
        return self._client_factory().table(self._jobs_table)

    def _results(self):
        return self._client_factory().table(self._results_table)

    def create_job(self, job: ResizeJob) -> ResizeJob:
        try:
            response = self._jobs().insert(job.to_row()).execute()
        except Exception as exc:
            raise RepositoryError("Failed to create job record") from exc
        if not response.data:
            raise RepositoryError("Failed to create job record")
        return ResizeJob.model_validate(response.data[0])

    def get_job(self, job_id: str) -> Optional[ResizeJob]:
        # The id column is uuid; PostgREST rejects other values with an error
        if not is_job_id(job_id):
            return None
        try:
            response = (
                self._jobs()
                .select("*")
                .eq("id", job_id)
                .limit(1)
                .execute()
            )
        except Exception as exc:
            raise RepositoryError("Failed to query job") from exc
        if not response.data:
            return None
        return ResizeJob.model_validate(response.data[0])

    def list_jobs(self, owner_ref: str) -> List[ResizeJob]:
        try:
            response = (
                self._jobs()
                .select("*")
                .eq("owner_ref", owner_ref)
                .order("created_at", desc=True)
                .execute()
            )
        except Exception as exc:
            raise RepositoryError("Failed to list jobs") from exc
        return [ResizeJob.model_validate(row) for row in response.data or []]

    def set_job_status(
        self,
        job_id: str,
        status: JobStatus,
        error_reason: Optional[str] = None,
    ) -> None:
        update = _status_update(status, error_reason)
        try:
            self._jobs().update(update).eq("id", job_id).execute()
        except Exception as exc:
            raise RepositoryError(f"Failed to update job {job_id}") from exc

    def transition_job_status(
        self,
        job_id: str,
        expected: JobStatus,
        status: JobStatus,
        error_reason: Optional[str] = None,
    ) -> bool:
        update = _status_update(status, error_reason)
        try:
            response = (
                self._jobs()
                .update(update)
                .eq("id", job_id)
                .eq("status", expected.value)
                .execute()
            )
        except Exception as exc:
            raise RepositoryError(f"Failed to update job {job_id}") from exc
        return bool(response.data)

    def list_results(self, job_id: str) -> List[FormatResult]:
        try:
            response = (
                self._results()
                .select("*")
                .eq("job_id", job_id)
                .order("created_at")
                .execute()
            )
        except Exception as exc:
            raise RepositoryError("Failed to fetch results") from exc
        return [FormatResult.model_validate(row) for row in response.data or []]

    def upsert_result(self, result: FormatResult) -> FormatResult:
        # id and created_at stay as first inserted
        row = result.to_row()
        row.pop("id", None)
        row.pop("created_at", None)
        row["updated_at"] = utcnow().isoformat()
        try:
            response = (
                self._results()
                .upsert(row, on_conflict="job_id,format_key")
                .execute()
            )
        except Exception as exc:
            raise RepositoryError(
                f"Failed to store result {result.job_id}/{result.format_key}"
            ) from exc
        if not response.data:
            raise RepositoryError(
                f"Failed to store result {result.job_id}/{result.format_key}"
            )
        return FormatResult.model_validate(response.data[0])

    def reset_results(self, job_id: str, format_keys: Iterable[str]) -> List[FormatResult]:
        keys = list(format_keys)
        if not keys:
            return []
        try:
            response = (
                self._results()
                .update({
                    "status": ResultStatus.PENDING.value,
                    "output_url": None,
                    "storage_path": None,
                    "error_reason": None,
                    "processing_time_ms": None,
                    "updated_at": utcnow().isoformat(),
                })
                .eq("job_id", job_id)
                .eq("status", ResultStatus.FAILED.value)
                .in_("format_key", keys)
                .execute()
            )
        except Exception as exc:
            raise RepositoryError(f"Failed to reset results for job {job_id}") from exc
        return [FormatResult.model_validate(row) for row in response.data or []]


# ---------------------------------------------------------------------------
# In-memory
# ---------------------------------------------------------------------------

class InMemoryJobRepository(JobRepository):
    """Thread-safe in-process store. Returns copies so callers never share state."""

    def __init__(self):
        self._lock = threading.Lock()
        self._jobs: Dict[str, ResizeJob] = {}
        self._results: Dict[Tuple[str, str], FormatResult] = {}

    def create_job(self, job: ResizeJob) -> ResizeJob:
        with self._lock:
            if job.id in self._jobs:
                raise RepositoryError(f"Job {job.id} already exists")
            self._jobs[job.id] = job.model_copy(deep=True)
            return job.model_copy(deep=True)

    def get_job(self, job_id: str) -> Optional[ResizeJob]:
        with self._lock:
            job = self._jobs.get(job_id)
            return job.model_copy(deep=True) if job else None

    def list_jobs(self, owner_ref: str) -> List[ResizeJob]:
        with self._lock:
            jobs = [j for j in self._jobs.values() if j.owner_ref == owner_ref]
            jobs.sort(key=lambda j: j.created_at, reverse=True)
            return [j.model_copy(deep=True) for j in jobs]

    def set_job_status(
        self,
        job_id: str,
        status: JobStatus,
        error_reason: Optional[str] = None,
    ) -> None:
        with self._lock:
            self._apply_status(self._locked_job(job_id), status, error_reason)

    def transition_job_status(
        self,
        job_id: str,
        expected: JobStatus,
        status: JobStatus,
        error_reason: Optional[str] = None,
    ) -> bool:
        with self._lock:
            job = self._locked_job(job_id)
            if job.status != expected:
                return False
            self._apply_status(job, status, error_reason)
            return True

    def _locked_job(self, job_id: str) -> ResizeJob:
        job = self._jobs.get(job_id)
        if job is None:
            raise RepositoryError(f"Job {job_id} not found")
        return job

    @staticmethod
    def _apply_status(job: ResizeJob, status: JobStatus, error_reason: Optional[str]) -> None:
        now = utcnow()
        job.status = status
        job.updated_at = now
        job.error_reason = error_reason
        job.completed_at = now if status in _TERMINAL_JOB_STATUSES else None

    def list_results(self, job_id: str) -> List[FormatResult]:
        with self._lock:
            results = [r for (jid, _), r in self._results.items() if jid == job_id]
            results.sort(key=lambda r: r.created_at)
            return [r.model_copy(deep=True) for r in results]

    def upsert_result(self, result: FormatResult) -> FormatResult:
        key = (result.job_id, result.format_key)
        with self._lock:
            stored = result.model_copy(deep=True)
            existing = self._results.get(key)
            if existing is not None:
                stored.id = existing.id
                stored.created_at = existing.created_at
            stored.updated_at = utcnow()
            self._results[key] = stored
            return stored.model_copy(deep=True)

    def reset_results(self, job_id: str, format_keys: Iterable[str]) -> List[FormatResult]:
        reset: List[FormatResult] = []
        with self._lock:
            for key in format_keys:
                result = self._results.get((job_id, key))
                if result is None or result.status != ResultStatus.FAILED:
                    continue
                result.status = ResultStatus.PENDING
                result.output_url = None
                result.storage_path = None
                result.error_reason = None
                result.processing_time_ms = None
                result.updated_at = utcnow()
                reset.append(result.model_copy(deep=True))
        return reset
