"""Object storage for master images and generated formats.

Two backends share one interface: Supabase Storage for deployments and a
local directory for development and tests.
"""

import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Optional

from loguru import logger
from supabase import Client

from smart_resizer.exceptions import StorageError


@dataclass(frozen=True)
class StoredObject:
    """Where an object lives: its bucket-relative path and public URL."""
    path: str
    url: str
    content_type: str


class ObjectStore(ABC):
    """Abstract interface for object storage."""

    @abstractmethod
    def put(self, path: str, data: bytes, content_type: str, upsert: bool = False) -> StoredObject:
        """Store bytes at path. Raises StorageError when the write is not confirmed."""
        ...

    @abstractmethod
    def get(self, path: str) -> bytes:
        ...

    @abstractmethod
    def public_url(self, path: str) -> str:
        ...


class SupabaseObjectStore(ObjectStore):
    """Supabase Storage bucket. A fresh admin client is built for every call."""

    def __init__(self, client_factory: Callable[[], Client], bucket: str):
        self._client_factory = client_factory
        self._bucket = bucket

    def _bucket_api(self):
        return self._client_factory().storage.from_(self._bucket)

    def put(self, path: str, data: bytes, content_type: str, upsert: bool = False) -> StoredObject:
        try:
            self._bucket_api().upload(
                path,
                data,
                {"content-type": content_type, "upsert": "true" if upsert else "false"},
            )
        except Exception as exc:
            logger.error("Storage upload failed for {}: {}", path, exc)
            raise StorageError(f"Failed to upload '{path}'") from exc
        return StoredObject(path=path, url=self.public_url(path), content_type=content_type)

    def get(self, path: str) -> bytes:
        try:
            return self._bucket_api().download(path)
        except Exception as exc:
            raise StorageError(f"Failed to download '{path}'") from exc

    def public_url(self, path: str) -> str:
        return self._bucket_api().get_public_url(path)


class LocalObjectStore(ObjectStore):
    """Filesystem-backed store rooted at base_dir."""

    def __init__(self, base_dir: str, public_base_url: str = ""):
        self._base_dir = os.path.abspath(base_dir)
        os.makedirs(self._base_dir, exist_ok=True)
        self._public_base_url = public_base_url.rstrip("/")

    @property
    def base_dir(self) -> str:
        return self._base_dir

    def _full_path(self, path: str) -> str:
        full = os.path.abspath(os.path.join(self._base_dir, path))
        if os.path.commonpath([full, self._base_dir]) != self._base_dir:
            raise StorageError(f"Path '{path}' escapes the storage root")
        return full

    def put(self, path: str, data: bytes, content_type: str, upsert: bool = False) -> StoredObject:
        full = self._full_path(path)
        if not upsert and os.path.exists(full):
            raise StorageError(f"Object '{path}' already exists")
        try:
            os.makedirs(os.path.dirname(full), exist_ok=True)
            tmp = f"{full}.part"
            with open(tmp, "wb") as dst:
                dst.write(data)
            os.replace(tmp, full)
        except OSError as exc:
            raise StorageError(f"Failed to write '{path}'") from exc
        return StoredObject(path=path, url=self.public_url(path), content_type=content_type)

    def get(self, path: str) -> bytes:
        try:
            with open(self._full_path(path), "rb") as src:
                return src.read()
        except OSError as exc:
            raise StorageError(f"Failed to read '{path}'") from exc

    def exists(self, path: str) -> bool:
        return os.path.exists(self._full_path(path))

    def public_url(self, path: str) -> str:
        return f"{self._public_base_url}/{path}"


def master_image_path(owner_ref: str, timestamp_ms: int, filename: Optional[str]) -> str:
    safe_name = os.path.basename(filename or "master") or "master"
    return f"smart-resizer/masters/{owner_ref}/{timestamp_ms}_{safe_name}"


def format_output_path(job_id: str, format_key: str) -> str:
    return f"smart-resizer/{job_id}/{format_key}.png"
