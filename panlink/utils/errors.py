"""
Error definitions for panlink.

Error codes follow the pattern:
- FETCH_*: Network retrieval errors (per request)
- PARSE_*: Document adapter errors (per document)
- *_FAILED: Whole-batch failures surfaced to the caller

"No candidate" and "cache miss" are not errors: they are an empty list and
``None`` respectively.
"""

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Error codes used by panlink exceptions."""

    FETCH_TRANSIENT = "FETCH_TRANSIENT"
    """A request failed with a retryable cause on its final attempt."""

    FETCH_EXHAUSTED = "FETCH_EXHAUSTED"
    """All retry attempts for a request were used up."""

    FETCH_REJECTED = "FETCH_REJECTED"
    """Upstream answered with a non-retryable status (most 4xx)."""

    PARSE_MALFORMED = "PARSE_MALFORMED"
    """A fetched document could not be read by its source adapter."""

    TASK_TIMEOUT = "TASK_TIMEOUT"
    """A task was still pending when the batch deadline expired."""

    BATCH_FAILED = "BATCH_FAILED"
    """Every task in a search batch failed."""

    INTERNAL_ERROR = "INTERNAL_ERROR"
    """Unexpected internal error."""


class PanlinkError(Exception):
    """Base exception for panlink errors."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        *,
        details: dict[str, Any] | None = None,
    ):
        """
        Initialize error.

        Args:
            code: Error code from ErrorCode enum.
            message: Human-readable error message.
            details: Optional additional error details.
        """
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert error to a JSON-serializable dictionary."""
        result: dict[str, Any] = {
            "error_code": self.code.value,
            "error": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


class FetchError(PanlinkError):
    """Raised when a request could not produce a usable response.

    Attributes:
        url: Requested URL.
        transient: Whether the last cause was retryable.
        exhausted: Whether every allowed attempt was used.
        attempts: Number of attempts made.
        status: Last HTTP status, if a response was received.
        last_cause: Last underlying exception, if any.
    """

    def __init__(
        self,
        message: str,
        *,
        url: str,
        transient: bool,
        exhausted: bool,
        attempts: int,
        status: int | None = None,
        last_cause: BaseException | None = None,
    ):
        if exhausted:
            code = ErrorCode.FETCH_EXHAUSTED
        elif transient:
            code = ErrorCode.FETCH_TRANSIENT
        else:
            code = ErrorCode.FETCH_REJECTED

        details: dict[str, Any] = {"url": url, "attempts": attempts}
        if status is not None:
            details["status"] = status
        if last_cause is not None:
            details["last_cause"] = repr(last_cause)

        super().__init__(code, message, details=details)
        self.url = url
        self.transient = transient
        self.exhausted = exhausted
        self.attempts = attempts
        self.status = status
        self.last_cause = last_cause


class ParseError(PanlinkError):
    """Raised when a source adapter cannot read a fetched document."""

    def __init__(self, message: str, *, source: str, malformed: bool = True):
        super().__init__(
            ErrorCode.PARSE_MALFORMED,
            message,
            details={"source": source},
        )
        self.source = source
        self.malformed = malformed


class BatchFailedError(PanlinkError):
    """Raised when no task of a search batch succeeded.

    Attributes:
        failures: Last cause per failed task, in task order.
    """

    def __init__(self, message: str, failures: list[dict[str, Any]]):
        super().__init__(
            ErrorCode.BATCH_FAILED,
            message,
            details={"failures": failures},
        )
        self.failures = failures
