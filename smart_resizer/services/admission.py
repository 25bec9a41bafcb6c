"""Job admission: validate an upload, persist it, queue the resize work.

Validation runs in a fixed order and stops at the first failing check:
file type (sniffed from the bytes), image size, unknown format keys,
empty format list. Nothing is stored or queued unless every check passes.

Side effects are ordered so that a failure never leaves a job stuck:
master image upload -> job row (pending) -> enqueue. If the enqueue fails
after the row exists, the job is marked failed with the reason.
"""

import asyncio
import time
from typing import Iterable, List, Optional

from loguru import logger
from PIL import Image

from smart_resizer.auth.supabase_auth import Owner
from smart_resizer.db.repository import JobRepository
from smart_resizer.exceptions import (
    EnqueueError,
    ImageTooLargeError,
    InvalidFileTypeError,
    InvalidFormatsError,
    MissingFileError,
    NoFormatsError,
    RepositoryError,
    StorageError,
)
from smart_resizer.formats.catalog import FormatCatalog
from smart_resizer.jobs.dispatcher import JobDispatcher
from smart_resizer.jobs.models import JobStatus, Quality, ResizeJob, ResizeTask
from smart_resizer.pricing.workflows import QuoteRequest, SmartResizerConfig
from smart_resizer.processing.transform import ImageMetadata, verify_decodable
from smart_resizer.storage.object_store import ObjectStore, master_image_path


def dedupe(keys: Iterable[str]) -> List[str]:
    """Drop repeated keys, keeping first-seen order."""
    seen = set()
    ordered = []
    for key in keys:
        if key not in seen:
            seen.add(key)
            ordered.append(key)
    return ordered


class JobAdmission:

    def __init__(
        self,
        catalog: FormatCatalog,
        repository: JobRepository,
        storage: ObjectStore,
        dispatcher: JobDispatcher,
        pricing: SmartResizerConfig,
        allowed_formats: Iterable[str] = ("JPEG", "PNG", "WEBP"),
        max_dimension: int = 10000,
        max_bytes: int = 10 * 1024 * 1024,
    ):
        self._catalog = catalog
        self._repository = repository
        self._storage = storage
        self._dispatcher = dispatcher
        self._pricing = pricing
        self._allowed_formats = tuple(f.upper() for f in allowed_formats)
        self._max_dimension = max_dimension
        self._max_bytes = max_bytes

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate_image(self, data: Optional[bytes]) -> ImageMetadata:
        if not data:
            raise MissingFileError("Master image file is required")

        try:
            meta = verify_decodable(data, self._allowed_formats)
        except Image.DecompressionBombError:
            raise ImageTooLargeError("Image dimensions exceed the processing limit")
        except (OSError, SyntaxError, ValueError):
            raise InvalidFileTypeError(
                f"Invalid file type. Only {', '.join(self._allowed_formats)} images are allowed."
            )

        if len(data) > self._max_bytes:
            raise ImageTooLargeError(
                f"Image is {len(data)} bytes; the limit is {self._max_bytes} bytes"
            )
        if meta.width > self._max_dimension or meta.height > self._max_dimension:
            raise ImageTooLargeError(
                f"Image is {meta.width}x{meta.height}; "
                f"each side must be at most {self._max_dimension}px"
            )
        return meta

    def validate_formats(self, formats: Iterable[str]) -> List[str]:
        requested = dedupe(formats)
        invalid = self._catalog.find_invalid(requested)
        if invalid:
            raise InvalidFormatsError(invalid)
        if not requested:
            raise NoFormatsError("At least one format is required")
        return requested

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------

    async def admit(
        self,
        owner: Owner,
        image: Optional[bytes],
        filename: Optional[str],
        formats: Iterable[str],
        quality: Quality = Quality.BALANCED,
    ) -> ResizeJob:
        """Validate and persist a new job, then queue it. Never waits on the resize itself."""
        meta = self.validate_image(image)
        requested = self.validate_formats(formats)

        # 1. Master image to durable storage
        path = master_image_path(owner.client_id, int(time.time() * 1000), filename)
        try:
            stored = await asyncio.to_thread(
                self._storage.put, path, image, meta.content_type, False
            )
        except StorageError as exc:
            logger.error("Master image upload failed for client {}: {}", owner.client_id, exc.message)
            raise

        # 2. Job row, committed before anything is queued
        job = ResizeJob(
            owner_ref=owner.client_id,
            user_id=owner.user_id,
            master_image_url=stored.url,
            master_storage_path=stored.path,
            master_content_type=meta.content_type,
            formats_requested=requested,
            quality=quality,
            pricing_details=self._pricing.quote(QuoteRequest(unit_count=len(requested))),
        )
        try:
            job = await asyncio.to_thread(self._repository.create_job, job)
        except RepositoryError as exc:
            logger.error("Job record for {} could not be created: {}", stored.path, exc.message)
            raise

        # 3. One task per job
        task = ResizeTask(
            job_id=job.id,
            owner_ref=job.owner_ref,
            format_keys=requested,
            master_storage_path=job.master_storage_path,
            master_image=image,
            priority=quality.priority,
        )
        try:
            handle = await self._dispatcher.enqueue(task, quality.priority)
        except Exception as exc:
            reason = f"Failed to enqueue job: {exc}"
            logger.error("Job {} could not be queued: {}", job.id, exc)
            try:
                await asyncio.to_thread(
                    self._repository.set_job_status, job.id, JobStatus.FAILED, reason
                )
            except Exception:
                logger.exception("Could not mark job {} as failed after enqueue error", job.id)
            raise EnqueueError(reason, details={"jobId": job.id}) from exc

        logger.info(
            "Job {} created for client {} ({} formats, task {})",
            job.id, owner.client_id, len(requested), handle,
        )
        return job
