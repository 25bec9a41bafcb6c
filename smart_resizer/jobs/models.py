"""Job, per-format result and queue task records."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field
import uuid

from smart_resizer.pricing.calculator import PricingQuote


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ResultStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_RESULT_STATUSES = (ResultStatus.COMPLETED, ResultStatus.FAILED)


class Quality(str, Enum):
    FAST = "fast"
    BALANCED = "balanced"
    QUALITY = "quality"

    @property
    def priority(self) -> int:
        """Queue priority; lower numbers are dequeued first."""
        return {Quality.FAST: 1, Quality.BALANCED: 2, Quality.QUALITY: 3}[self]


class ResizeJob(BaseModel):
    """One resize batch: a master image and the formats requested from it."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    owner_ref: str
    user_id: Optional[str] = None
    master_image_url: str
    master_storage_path: str
    master_content_type: str
    formats_requested: List[str]
    quality: Quality = Quality.BALANCED
    status: JobStatus = JobStatus.PENDING
    error_reason: Optional[str] = None
    pricing_details: Optional[PricingQuote] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    def to_row(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")

    def to_public(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "status": self.status.value,
            "masterImageUrl": self.master_image_url,
            "formatsRequested": self.formats_requested,
            "quality": self.quality.value,
            "errorReason": self.error_reason,
            "pricing": self.pricing_details.model_dump() if self.pricing_details else None,
            "createdAt": self.created_at.isoformat(),
            "completedAt": self.completed_at.isoformat() if self.completed_at else None,
        }


class FormatResult(BaseModel):
    """Outcome of one requested format. Unique per (job_id, format_key)."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    job_id: str
    format_key: str
    platform: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    status: ResultStatus = ResultStatus.PENDING
    output_url: Optional[str] = None
    storage_path: Optional[str] = None
    processing_method: Optional[str] = None
    error_reason: Optional[str] = None
    processing_time_ms: Optional[int] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_RESULT_STATUSES

    def to_row(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")

    def to_public(self) -> Dict[str, Any]:
        return {
            "formatKey": self.format_key,
            "platform": self.platform,
            "width": self.width,
            "height": self.height,
            "status": self.status.value,
            "outputUrl": self.output_url,
            "processingMethod": self.processing_method,
            "errorReason": self.error_reason,
            "processingTimeMs": self.processing_time_ms,
        }


class ResizeTask(BaseModel):
    """Unit of deferred work: process format_keys for one job.

    Carries the master image bytes when available so the worker does not
    need a second storage fetch.
    """
    job_id: str
    owner_ref: str
    format_keys: List[str]
    master_storage_path: str
    master_image: Optional[bytes] = Field(default=None, repr=False)
    priority: int = Quality.BALANCED.priority
    is_retry: bool = False
