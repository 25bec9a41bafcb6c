"""
Custom exceptions for the Smart Resizer service.

Every error that reaches the HTTP layer is a ResizerError carrying a stable
machine-readable code and the status code it is rendered with. Worker-side
errors (TransformError, FormatTimeoutError) never reach a caller; they are
converted into a failed Result by the worker.
"""

from typing import Any, Dict, List, Optional


class ResizerError(Exception):
    """Base exception for all Smart Resizer errors."""

    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "success": False,
            "error": self.message,
            "code": self.code,
        }
        if self.details:
            body["details"] = self.details
        return body


# ---------------------------------------------------------------------------
# Validation errors (synchronous, admission time)
# ---------------------------------------------------------------------------

class ValidationError(ResizerError):
    code = "VALIDATION_ERROR"
    status_code = 400


class MissingFileError(ValidationError):
    code = "MISSING_FILE"


class InvalidFileTypeError(ValidationError):
    code = "INVALID_FILE_TYPE"


class ImageTooLargeError(ValidationError):
    code = "IMAGE_TOO_LARGE"


class InvalidFormatsError(ValidationError):
    """Raised with every unknown format key, not just the first one."""

    code = "INVALID_FORMATS"

    def __init__(self, invalid_formats: List[str]):
        super().__init__(
            f"Invalid format keys: {', '.join(invalid_formats)}",
            details={"invalid_formats": list(invalid_formats)},
        )
        self.invalid_formats = list(invalid_formats)


class NoFormatsError(ValidationError):
    code = "MISSING_FORMATS"


class PricingError(ValidationError):
    """Unknown model tier / resolution combination."""

    code = "INVALID_PRICING_SELECTION"


# ---------------------------------------------------------------------------
# Access errors
# ---------------------------------------------------------------------------

class UnauthorizedError(ResizerError):
    code = "UNAUTHORIZED"
    status_code = 401


class ForbiddenError(ResizerError):
    code = "FORBIDDEN"
    status_code = 403


class NoClientAccountError(ForbiddenError):
    code = "NO_CLIENT_ACCOUNT"


class JobNotFoundError(ResizerError):
    code = "JOB_NOT_FOUND"
    status_code = 404


class NoFailedFormatsError(ResizerError):
    code = "NO_FAILED_FORMATS"
    status_code = 400


class JobInProgressError(ResizerError):
    """Retry requested while the job is still queued or processing."""

    code = "JOB_IN_PROGRESS"
    status_code = 409


# ---------------------------------------------------------------------------
# Infrastructure errors
# ---------------------------------------------------------------------------

class StorageError(ResizerError):
    code = "UPLOAD_ERROR"
    status_code = 500


class RepositoryError(ResizerError):
    code = "DATABASE_ERROR"
    status_code = 500


class EnqueueError(ResizerError):
    code = "ENQUEUE_FAILED"
    status_code = 503


# ---------------------------------------------------------------------------
# Transform errors (per format, converted to Result state)
# ---------------------------------------------------------------------------

class TransformError(ResizerError):
    code = "TRANSFORM_FAILED"


class FormatTimeoutError(TransformError):
    code = "FORMAT_TIMEOUT"
