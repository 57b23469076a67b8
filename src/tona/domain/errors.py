"""Domain error taxonomy for the job client."""

from enum import Enum


class ErrorCategory(str, Enum):
    """Top-level error categories."""

    NETWORK = "network"
    VALIDATION = "validation"
    PROCESSING = "processing"
    STORAGE = "storage"
    UNKNOWN = "unknown"


class AppError(Exception):
    """Base class for every error surfaced to the session."""

    category: ErrorCategory = ErrorCategory.UNKNOWN

    def __init__(self, description: str) -> None:
        super().__init__(description)
        self.description = description

    @property
    def code(self) -> str:
        """Short identifier of the concrete error within its category."""
        return "error"

    @property
    def error_id(self) -> str:
        """Stable identifier combining category and code."""
        return f"{self.category.value}_{self.code}"

    @property
    def is_fatal(self) -> bool:
        """Whether the error blocks the flow until the user acts."""
        return False

    @property
    def can_retry(self) -> bool:
        """Whether the failed operation may be re-invoked by the user."""
        return False

    def to_dict(self) -> dict[str, object]:
        """Serialize the error for API payloads and diagnostics."""
        return {
            "id": self.error_id,
            "category": self.category.value,
            "message": self.description,
            "fatal": self.is_fatal,
            "retryable": self.can_retry,
        }

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, AppError):
            return NotImplemented
        return type(self) is type(other) and self.error_id == other.error_id

    def __hash__(self) -> int:
        return hash((type(self), self.error_id))

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.error_id!r})"


class NetworkErrorKind(str, Enum):
    NO_CONNECTION = "no_connection"
    TIMEOUT = "timeout"
    SERVER_ERROR = "server"
    INVALID_RESPONSE = "invalid_response"
    REQUEST_FAILED = "request_failed"


class NetworkError(AppError):
    """Failures talking to the processing service."""

    category = ErrorCategory.NETWORK

    def __init__(
        self,
        kind: NetworkErrorKind,
        *,
        status_code: int | None = None,
        detail: str | None = None,
    ) -> None:
        self.kind = kind
        self.status_code = status_code
        self.detail = detail
        super().__init__(_network_description(kind, status_code, detail))

    @classmethod
    def no_connection(cls) -> "NetworkError":
        return cls(NetworkErrorKind.NO_CONNECTION)

    @classmethod
    def timeout(cls) -> "NetworkError":
        return cls(NetworkErrorKind.TIMEOUT)

    @classmethod
    def server_error(cls, status_code: int) -> "NetworkError":
        return cls(NetworkErrorKind.SERVER_ERROR, status_code=status_code)

    @classmethod
    def invalid_response(cls, status_code: int | None = None) -> "NetworkError":
        return cls(NetworkErrorKind.INVALID_RESPONSE, status_code=status_code)

    @classmethod
    def request_failed(cls, detail: str) -> "NetworkError":
        return cls(NetworkErrorKind.REQUEST_FAILED, detail=detail)

    @property
    def code(self) -> str:
        if self.kind is NetworkErrorKind.SERVER_ERROR:
            return f"server_{self.status_code}"
        if self.kind is NetworkErrorKind.REQUEST_FAILED:
            return f"request_failed_{self.detail}"
        return self.kind.value

    @property
    def is_fatal(self) -> bool:
        if self.kind is NetworkErrorKind.NO_CONNECTION:
            return True
        if self.kind is NetworkErrorKind.SERVER_ERROR:
            return (self.status_code or 0) >= 500
        return False

    @property
    def can_retry(self) -> bool:
        if self.kind in {NetworkErrorKind.NO_CONNECTION, NetworkErrorKind.TIMEOUT}:
            return True
        if self.kind is NetworkErrorKind.SERVER_ERROR:
            return (self.status_code or 0) >= 500
        return False


def _network_description(
    kind: NetworkErrorKind, status_code: int | None, detail: str | None
) -> str:
    if kind is NetworkErrorKind.NO_CONNECTION:
        return "No internet connection. Please check your network settings."
    if kind is NetworkErrorKind.TIMEOUT:
        return "Request timed out. Please try again."
    if kind is NetworkErrorKind.SERVER_ERROR:
        return f"Server error (Code: {status_code}). Please try again later."
    if kind is NetworkErrorKind.INVALID_RESPONSE:
        return "Invalid response from server."
    return f"Request failed: {detail}"


class ValidationErrorKind(str, Enum):
    NO_IMAGES_SELECTED = "no_images"
    TOO_MANY_IMAGES = "too_many"
    INVALID_FORMAT = "invalid_format"
    FILE_TOO_LARGE = "file_too_large"


class ValidationError(AppError):
    """Input problems detected before any network call."""

    category = ErrorCategory.VALIDATION

    def __init__(self, kind: ValidationErrorKind, *, limit: int | None = None) -> None:
        self.kind = kind
        self.limit = limit
        super().__init__(_validation_description(kind, limit))

    @classmethod
    def no_images_selected(cls) -> "ValidationError":
        return cls(ValidationErrorKind.NO_IMAGES_SELECTED)

    @classmethod
    def too_many_images(cls, max_images: int) -> "ValidationError":
        return cls(ValidationErrorKind.TOO_MANY_IMAGES, limit=max_images)

    @classmethod
    def invalid_format(cls) -> "ValidationError":
        return cls(ValidationErrorKind.INVALID_FORMAT)

    @classmethod
    def file_too_large(cls, max_size_mb: int) -> "ValidationError":
        return cls(ValidationErrorKind.FILE_TOO_LARGE, limit=max_size_mb)

    @property
    def code(self) -> str:
        if self.limit is not None:
            return f"{self.kind.value}_{self.limit}"
        return self.kind.value


def _validation_description(kind: ValidationErrorKind, limit: int | None) -> str:
    if kind is ValidationErrorKind.NO_IMAGES_SELECTED:
        return "Please select at least one image to continue."
    if kind is ValidationErrorKind.TOO_MANY_IMAGES:
        return f"You can select up to {limit} images."
    if kind is ValidationErrorKind.INVALID_FORMAT:
        return "Invalid image format. Please use JPEG or PNG images."
    return f"File size exceeds {limit}MB limit."


class ProcessingErrorKind(str, Enum):
    JOB_FAILED = "job_failed"
    JOB_CANCELLED = "job_cancelled"
    TIMEOUT = "processing_timeout"
    INVALID_JOB_ID = "invalid_job_id"


class ProcessingError(AppError):
    """Failures reported for a remote job."""

    category = ErrorCategory.PROCESSING

    def __init__(self, kind: ProcessingErrorKind, *, reason: str | None = None) -> None:
        self.kind = kind
        self.reason = reason
        super().__init__(_processing_description(kind, reason))

    @classmethod
    def job_failed(cls, reason: str) -> "ProcessingError":
        return cls(ProcessingErrorKind.JOB_FAILED, reason=reason)

    @classmethod
    def job_cancelled(cls) -> "ProcessingError":
        return cls(ProcessingErrorKind.JOB_CANCELLED)

    @classmethod
    def timeout(cls) -> "ProcessingError":
        return cls(ProcessingErrorKind.TIMEOUT)

    @classmethod
    def invalid_job_id(cls) -> "ProcessingError":
        return cls(ProcessingErrorKind.INVALID_JOB_ID)

    @property
    def code(self) -> str:
        if self.kind is ProcessingErrorKind.JOB_FAILED:
            return f"job_failed_{self.reason}"
        return self.kind.value

    @property
    def is_fatal(self) -> bool:
        return self.kind in {ProcessingErrorKind.JOB_FAILED, ProcessingErrorKind.TIMEOUT}

    @property
    def can_retry(self) -> bool:
        return self.kind in {ProcessingErrorKind.JOB_FAILED, ProcessingErrorKind.TIMEOUT}


def _processing_description(kind: ProcessingErrorKind, reason: str | None) -> str:
    if kind is ProcessingErrorKind.JOB_FAILED:
        return f"Processing failed: {reason}"
    if kind is ProcessingErrorKind.JOB_CANCELLED:
        return "Processing was cancelled."
    if kind is ProcessingErrorKind.TIMEOUT:
        return "Processing took too long. Please try again."
    return "Invalid processing job."


class StorageErrorKind(str, Enum):
    SAVE_FAILED = "save_failed"
    LOAD_FAILED = "load_failed"
    INSUFFICIENT_SPACE = "insufficient_space"


_STORAGE_DESCRIPTIONS = {
    StorageErrorKind.SAVE_FAILED: "Failed to save image. Please try again.",
    StorageErrorKind.LOAD_FAILED: "Failed to load image.",
    StorageErrorKind.INSUFFICIENT_SPACE: "Not enough storage space available.",
}


class StorageError(AppError):
    """Local file system failures."""

    category = ErrorCategory.STORAGE

    def __init__(self, kind: StorageErrorKind) -> None:
        self.kind = kind
        super().__init__(_STORAGE_DESCRIPTIONS[kind])

    @classmethod
    def save_failed(cls) -> "StorageError":
        return cls(StorageErrorKind.SAVE_FAILED)

    @classmethod
    def load_failed(cls) -> "StorageError":
        return cls(StorageErrorKind.LOAD_FAILED)

    @classmethod
    def insufficient_space(cls) -> "StorageError":
        return cls(StorageErrorKind.INSUFFICIENT_SPACE)

    @property
    def code(self) -> str:
        return self.kind.value


class UnknownError(AppError):
    """Anything that does not fit a more specific category."""

    category = ErrorCategory.UNKNOWN

    @property
    def code(self) -> str:
        return self.description
