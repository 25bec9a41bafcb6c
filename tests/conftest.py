"""
Pytest configuration and shared fixtures for Smart Resizer tests.
"""

import io
import threading
from typing import Dict, Iterable, List, Optional, Tuple

import pytest
from PIL import Image

from smart_resizer.auth.supabase_auth import Owner
from smart_resizer.config import Settings
from smart_resizer.db.repository import InMemoryJobRepository
from smart_resizer.exceptions import EnqueueError, RepositoryError, StorageError
from smart_resizer.formats.catalog import build_default_catalog
from smart_resizer.jobs.dispatcher import JobDispatcher
from smart_resizer.jobs.models import JobStatus, ResizeTask
from smart_resizer.pricing.workflows import PricingCatalog
from smart_resizer.services.admission import JobAdmission
from smart_resizer.services.retry import RetryController
from smart_resizer.services.worker import ResizeWorker
from smart_resizer.storage.object_store import LocalObjectStore

def make_image(width: int = 400, height: int = 300, fmt: str = "PNG", color="#3366CC") -> bytes:
    """Encode a solid-colour image of the given size."""
    buf = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buf, format=fmt)
    return buf.getvalue()

class RecordingDispatcher(JobDispatcher):
    """Queue double: keeps enqueued tasks until the test drains them into a worker."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.tasks: List[Tuple[int, ResizeTask]] = []
        self.started = False

    async def enqueue(self, task: ResizeTask, priority: int) -> str:
        if self.fail:
            raise EnqueueError("broker unavailable")
        self.tasks.append((priority, task))
        return f"task-{len(self.tasks)}"

    def depth(self) -> int:
        return len(self.tasks)

    async def start(self) -> None:
        self.started = True

    async def stop(self) -> None:
        self.started = False

    def drain(self, worker: ResizeWorker) -> List[Optional[JobStatus]]:
        """Run every queued task through the worker, lowest priority number first."""
        pending = sorted(self.tasks, key=lambda item: item[0])
        self.tasks = []
        return [worker.process(task) for _, task in pending]


class FlakyStore(LocalObjectStore):
    """Local store that refuses writes for some format keys and stalls on others."""

    def __init__(self, base_dir: str, fail_keys: Iterable[str] = (), slow_keys: Iterable[str] = ()):
        super().__init__(base_dir, "http://files.test")
        self.fail_keys = set(fail_keys)
        self.slow_keys = set(slow_keys)
        self.release = threading.Event()

    def put(self, path, data, content_type, upsert=False):
        name = path.rsplit("/", 1)[-1].replace(".png", "")
        if name in self.fail_keys:
            raise StorageError(f"bucket rejected {name}")
        if name in self.slow_keys:
            self.release.wait(5)
        return super().put(path, data, content_type, upsert)


class FlakyRepository(InMemoryJobRepository):
    """In-memory repository whose Result writes fail for some format keys.

    failures=None fails every write for those keys; a number fails only the
    first that many writes per key. Job status writes in fail_statuses raise.
    """

    def __init__(
        self,
        fail_result_keys: Iterable[str] = (),
        failures: Optional[int] = None,
        fail_statuses: Iterable[JobStatus] = (),
    ):
        super().__init__()
        self.fail_result_keys = set(fail_result_keys)
        self.failures = failures
        self.fail_statuses = set(fail_statuses)
        self.write_attempts: Dict[str, int] = {}

    def upsert_result(self, result):
        key = result.format_key
        if key in self.fail_result_keys:
            self.write_attempts[key] = self.write_attempts.get(key, 0) + 1
            if self.failures is None or self.write_attempts[key] <= self.failures:
                raise RepositoryError(f"Failed to store result {result.job_id}/{key}")
        return super().upsert_result(result)

    def set_job_status(self, job_id, status, error_reason=None):
        if status in self.fail_statuses:
            raise RepositoryError(f"Failed to update job {job_id}")
        return super().set_job_status(job_id, status, error_reason)

@pytest.fixture
def png_bytes():
    return make_image(400, 300)

@pytest.fixture
def catalog():
    return build_default_catalog()

@pytest.fixture
def pricing():
    return PricingCatalog()

@pytest.fixture
def repository():
    return InMemoryJobRepository()

@pytest.fixture
def storage(tmp_path):
    return LocalObjectStore(str(tmp_path / "objects"), "http://files.test")

@pytest.fixture
def dispatcher():
    return RecordingDispatcher()

@pytest.fixture
def owner():
    return Owner(user_id="user-1", client_id="client-1", email="owner@example.com")

@pytest.fixture
def other_owner():
    return Owner(user_id="user-2", client_id="client-2")

@pytest.fixture
def worker(catalog, repository, storage):
    w = ResizeWorker(catalog, repository, storage, format_concurrency=2, format_timeout_seconds=30)
    yield w
    w.close()

@pytest.fixture
def admission(catalog, repository, storage, dispatcher, pricing):
    return JobAdmission(catalog, repository, storage, dispatcher, pricing.smart_resizer)

@pytest.fixture
def retry_controller(repository, dispatcher):
    return RetryController(repository, dispatcher)

@pytest.fixture
def test_settings(tmp_path):
    return Settings(
        storage_backend="local",
        local_storage_dir=str(tmp_path / "objects"),
        public_base_url="http://files.test",
        supabase_url="",
        supabase_service_role_key="",
    )
