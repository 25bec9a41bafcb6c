"""Resize fan-out worker.

Processes one ResizeTask: every requested format is resized, stored and
recorded as its own Result. A failure in one format never stops the others,
and every format ends with a terminal Result, including when its transform
times out. The job's final status is derived from the stored Results, so
the outcome does not depend on the order formats finish in.

Each transform runs on its own thread, so the timeout clock starts when
the transform starts and a transform that overran cannot hold a slot that
later formats or jobs need. Unit concurrency is bounded by the unit pool.
"""

import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from typing import Callable, Dict, List, Optional

from loguru import logger

from smart_resizer.db.repository import JobRepository
from smart_resizer.exceptions import FormatTimeoutError
from smart_resizer.formats.catalog import FormatCatalog, FormatSpec
from smart_resizer.jobs.models import (
    FormatResult,
    JobStatus,
    ResizeJob,
    ResizeTask,
    ResultStatus,
)
from smart_resizer.processing.transform import (
    OUTPUT_CONTENT_TYPE,
    ImageMetadata,
    ProcessingMethod,
    choose_method,
    read_metadata,
    resize,
)
from smart_resizer.services.admission import dedupe
from smart_resizer.storage.object_store import ObjectStore, StoredObject, format_output_path


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


def final_job_status(job: ResizeJob, results: List[FormatResult]) -> JobStatus:
    """completed if any requested format succeeded, failed otherwise."""
    requested = set(job.formats_requested)
    if any(r.status == ResultStatus.COMPLETED and r.format_key in requested for r in results):
        return JobStatus.COMPLETED
    return JobStatus.FAILED


def unrecorded_formats(keys: List[str], results: List[FormatResult]) -> List[str]:
    """Keys that have no terminal Result stored."""
    terminal = {r.format_key for r in results if r.is_terminal}
    return [k for k in keys if k not in terminal]


def run_in_thread(fn: Callable, *args, name: str = "resize-transform") -> Future:
    """Start fn(*args) on a fresh daemon thread and return its Future."""
    future: Future = Future()

    def target():
        if not future.set_running_or_notify_cancel():
            return
        try:
            future.set_result(fn(*args))
        except Exception as exc:
            future.set_exception(exc)

    threading.Thread(target=target, name=name, daemon=True).start()
    return future


class ResizeWorker:
    """Runs the formats of a task, up to format_concurrency at a time."""

    def __init__(
        self,
        catalog: FormatCatalog,
        repository: JobRepository,
        storage: ObjectStore,
        format_concurrency: int = 2,
        format_timeout_seconds: float = 60.0,
    ):
        self._catalog = catalog
        self._repository = repository
        self._storage = storage
        self._concurrency = max(1, format_concurrency)
        self._timeout = format_timeout_seconds
        self._unit_pool = ThreadPoolExecutor(
            max_workers=self._concurrency, thread_name_prefix="resize-unit"
        )

    def close(self) -> None:
        self._unit_pool.shutdown(wait=False)

    # ------------------------------------------------------------------
    # Task entry point
    # ------------------------------------------------------------------

    def process(self, task: ResizeTask) -> Optional[JobStatus]:
        """Process a task and return the job's final status (None if the job is gone)."""
        start = time.monotonic()
        job = self._repository.get_job(task.job_id)
        if job is None:
            logger.warning("Task for unknown job {} dropped", task.job_id)
            return None

        try:
            return self._process_job(job, task, start)
        except Exception as exc:
            logger.exception("Job {} failed outside per-format processing", job.id)
            try:
                self._repository.set_job_status(job.id, JobStatus.FAILED, f"Worker error: {exc}")
            except Exception:
                logger.exception("Could not mark job {} as failed", job.id)
            return JobStatus.FAILED

    def _process_job(self, job: ResizeJob, task: ResizeTask, start: float) -> JobStatus:
        self._repository.set_job_status(job.id, JobStatus.PROCESSING)

        # Formats already completed (earlier delivery or earlier run) are left alone
        existing: Dict[str, FormatResult] = {
            r.format_key: r for r in self._repository.list_results(job.id)
        }
        keys = [
            k for k in dedupe(task.format_keys)
            if not (k in existing and existing[k].status == ResultStatus.COMPLETED)
        ]

        logger.info(
            "Job {} started: {} format(s){}",
            job.id, len(keys), " (retry)" if task.is_retry else "",
        )

        master, meta, load_error = self._load_master(task)
        if load_error is not None:
            for key in keys:
                self._record(self._failed_result(job.id, key, load_error, 0))
        else:
            futures = [
                (key, self._unit_pool.submit(self._process_format, job.id, key, master, meta))
                for key in keys
            ]
            for key, future in futures:
                try:
                    result = future.result()
                except Exception as exc:
                    result = self._failed_result(job.id, key, f"Unexpected error: {exc}", 0)
                self._record(result)

        results = self._repository.list_results(job.id)
        unrecorded = unrecorded_formats(keys, results)
        if unrecorded:
            # A format with no stored Result fails the job so retry can re-drive it
            status = JobStatus.FAILED
            reason = f"Results could not be stored for: {', '.join(unrecorded)}"
            logger.error("Job {}: {}", job.id, reason)
        else:
            status = final_job_status(job, results)
            reason = "All formats failed" if status == JobStatus.FAILED else None
        self._repository.set_job_status(job.id, status, reason)

        succeeded = sum(1 for r in results if r.status == ResultStatus.COMPLETED)
        failed = sum(1 for r in results if r.status == ResultStatus.FAILED)
        logger.info(
            "Job {} {}: {} completed, {} failed in {}ms",
            job.id, status.value, succeeded, failed, _elapsed_ms(start),
        )
        return status

    def _load_master(self, task: ResizeTask):
        """Return (bytes, metadata, None) or (None, None, reason)."""
        try:
            master = task.master_image
            if master is None:
                master = self._storage.get(task.master_storage_path)
            return master, read_metadata(master), None
        except Exception as exc:
            logger.warning("Job {}: master image unavailable: {}", task.job_id, exc)
            return None, None, f"Master image unavailable: {exc}"

    # ------------------------------------------------------------------
    # Per-format unit
    # ------------------------------------------------------------------

    def _process_format(
        self,
        job_id: str,
        format_key: str,
        master: bytes,
        meta: ImageMetadata,
    ) -> FormatResult:
        """Produce a terminal Result for one format. Never raises."""
        start = time.monotonic()
        try:
            fmt = self._catalog.lookup(format_key)
        except KeyError as exc:
            return self._failed_result(job_id, format_key, str(exc), _elapsed_ms(start))

        method = choose_method(meta.width, meta.height, fmt)
        logger.debug(
            "Job {}: {} -> {}x{} via {}",
            job_id, format_key, fmt.width, fmt.height, method.value,
        )

        future = run_in_thread(
            self._render, job_id, fmt, master, method, name=f"resize-transform-{format_key}"
        )
        try:
            stored = future.result(timeout=self._timeout)
        except FuturesTimeoutError:
            # The thread runs on; whatever it writes afterwards is never recorded
            error = FormatTimeoutError(
                f"Transform exceeded {self._timeout:g}s for format '{format_key}'"
            )
            return self._failed_result(job_id, format_key, error.message, _elapsed_ms(start), fmt)
        except Exception as exc:
            return self._failed_result(job_id, format_key, str(exc), _elapsed_ms(start), fmt)

        return FormatResult(
            job_id=job_id,
            format_key=format_key,
            platform=fmt.platform.value,
            width=fmt.width,
            height=fmt.height,
            status=ResultStatus.COMPLETED,
            output_url=stored.url,
            storage_path=stored.path,
            processing_method=method.value,
            processing_time_ms=_elapsed_ms(start),
        )

    def _render(
        self,
        job_id: str,
        fmt: FormatSpec,
        master: bytes,
        method: ProcessingMethod,
    ) -> StoredObject:
        output = resize(master, fmt.width, fmt.height, method, fmt.safe_zone)
        return self._storage.put(
            format_output_path(job_id, fmt.key), output, OUTPUT_CONTENT_TYPE, True
        )

    def _failed_result(
        self,
        job_id: str,
        format_key: str,
        reason: str,
        elapsed_ms: int,
        fmt: Optional[FormatSpec] = None,
    ) -> FormatResult:
        logger.warning("Job {}: format {} failed: {}", job_id, format_key, reason)
        return FormatResult(
            job_id=job_id,
            format_key=format_key,
            platform=fmt.platform.value if fmt else None,
            width=fmt.width if fmt else None,
            height=fmt.height if fmt else None,
            status=ResultStatus.FAILED,
            error_reason=reason,
            processing_time_ms=elapsed_ms,
        )

    def _record(self, result: FormatResult, attempts: int = 2) -> None:
        """Store a Result, retrying the write once."""
        for attempt in range(1, attempts + 1):
            try:
                self._repository.upsert_result(result)
                return
            except Exception:
                if attempt < attempts:
                    logger.warning(
                        "Job {}: storing {} result failed, retrying",
                        result.job_id, result.format_key,
                    )
                    continue
                logger.exception(
                    "Job {}: could not store {} result for {}",
                    result.job_id, result.status.value, result.format_key,
                )
