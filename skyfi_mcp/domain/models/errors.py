"""SkyFi error taxonomy.

Every failure raised by the client or the order history service resolves to
exactly one ErrorKind. Callers translate the kind into a user-facing message
(e.g. "your API key is invalid", "please wait N seconds").
"""

from enum import Enum
from typing import Any, Optional


class ErrorKind(str, Enum):
    """Closed set of error classifications."""
    AUTH = "auth"
    NOT_FOUND = "not_found"
    VALIDATION = "validation"
    RATE_LIMITED = "rate_limited"
    TIMEOUT = "timeout"
    SERVER_ERROR = "server_error"
    CONNECTION_FAILURE = "connection_failure"
    UNKNOWN = "unknown"


RETRYABLE_KINDS = frozenset({ErrorKind.SERVER_ERROR, ErrorKind.TIMEOUT})

DEFAULT_RETRY_AFTER_SECONDS = 60


class SkyFiError(Exception):
    """Base class for all classified SkyFi failures."""

    kind: ErrorKind = ErrorKind.UNKNOWN
    default_message = "Unknown error"

    def __init__(
        self,
        message: Optional[str] = None,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
        details: Any = None,
    ):
        self.message = message or self.default_message
        self.status_code = status_code
        self.code = code
        self.details = details
        super().__init__(self.message)

    @property
    def is_retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS

    def __repr__(self) -> str:
        return f"{type(self).__name__}(kind={self.kind.value!r}, message={self.message!r}, status_code={self.status_code!r})"


class SkyFiAuthError(SkyFiError):
    kind = ErrorKind.AUTH
    default_message = "Authentication failed"

    def __init__(self, message: Optional[str] = None, details: Any = None, code: Optional[str] = "AUTH_ERROR"):
        super().__init__(message, 401, code, details)


class SkyFiNotFoundError(SkyFiError):
    kind = ErrorKind.NOT_FOUND
    default_message = "Resource not found"

    def __init__(self, message: Optional[str] = None, details: Any = None, code: Optional[str] = "NOT_FOUND_ERROR"):
        super().__init__(message, 404, code, details)


class SkyFiValidationError(SkyFiError):
    kind = ErrorKind.VALIDATION
    default_message = "Validation failed"

    def __init__(self, message: Optional[str] = None, details: Any = None, code: Optional[str] = "VALIDATION_ERROR"):
        super().__init__(message, 400, code, details)


class SkyFiRateLimitError(SkyFiError):
    kind = ErrorKind.RATE_LIMITED
    default_message = "Rate limit exceeded"

    def __init__(
        self,
        message: Optional[str] = None,
        retry_after_seconds: int = DEFAULT_RETRY_AFTER_SECONDS,
        details: Any = None,
        code: Optional[str] = "RATE_LIMIT_ERROR",
    ):
        super().__init__(message, 429, code, details)
        self.retry_after_seconds = retry_after_seconds


class SkyFiTimeoutError(SkyFiError):
    kind = ErrorKind.TIMEOUT
    default_message = "Request timeout"

    def __init__(self, message: Optional[str] = None, details: Any = None, code: Optional[str] = "TIMEOUT_ERROR"):
        super().__init__(message, 408, code, details)


class SkyFiServerError(SkyFiError):
    kind = ErrorKind.SERVER_ERROR
    default_message = "Server error"

    def __init__(
        self,
        message: Optional[str] = None,
        status_code: int = 500,
        details: Any = None,
        code: Optional[str] = "SERVER_ERROR",
    ):
        super().__init__(message, status_code, code, details)


class SkyFiConnectionError(SkyFiError):
    kind = ErrorKind.CONNECTION_FAILURE
    default_message = "Connection failed"

    def __init__(self, message: Optional[str] = None, details: Any = None, code: Optional[str] = "CONNECTION_ERROR"):
        super().__init__(message, None, code, details)


class SkyFiUnknownError(SkyFiError):
    kind = ErrorKind.UNKNOWN


_ERROR_CODE_KINDS = {
    "AUTH_ERROR": ErrorKind.AUTH,
    "UNAUTHORIZED": ErrorKind.AUTH,
    "NOT_FOUND": ErrorKind.NOT_FOUND,
    "NOT_FOUND_ERROR": ErrorKind.NOT_FOUND,
    "VALIDATION_ERROR": ErrorKind.VALIDATION,
    "BAD_REQUEST": ErrorKind.VALIDATION,
    "RATE_LIMIT_ERROR": ErrorKind.RATE_LIMITED,
    "RATE_LIMITED": ErrorKind.RATE_LIMITED,
    "TIMEOUT_ERROR": ErrorKind.TIMEOUT,
    "SERVER_ERROR": ErrorKind.SERVER_ERROR,
}


def kind_from_code(code: Optional[str]) -> ErrorKind:
    """Maps an upstream application error code (envelope `error.code`) to a kind."""
    if not code:
        return ErrorKind.UNKNOWN
    return _ERROR_CODE_KINDS.get(str(code).upper(), ErrorKind.UNKNOWN)


def error_for_kind(
    kind: ErrorKind,
    message: Optional[str] = None,
    *,
    status_code: Optional[int] = None,
    code: Optional[str] = None,
    details: Any = None,
    retry_after_seconds: int = DEFAULT_RETRY_AFTER_SECONDS,
) -> SkyFiError:
    """Builds the SkyFiError subclass matching `kind`."""
    extra = {"code": code} if code else {}
    if kind is ErrorKind.AUTH:
        return SkyFiAuthError(message, details, **extra)
    if kind is ErrorKind.NOT_FOUND:
        return SkyFiNotFoundError(message, details, **extra)
    if kind is ErrorKind.VALIDATION:
        return SkyFiValidationError(message, details, **extra)
    if kind is ErrorKind.RATE_LIMITED:
        return SkyFiRateLimitError(message, retry_after_seconds, details, **extra)
    if kind is ErrorKind.TIMEOUT:
        return SkyFiTimeoutError(message, details, **extra)
    if kind is ErrorKind.SERVER_ERROR:
        return SkyFiServerError(message, status_code or 500, details, **extra)
    if kind is ErrorKind.CONNECTION_FAILURE:
        return SkyFiConnectionError(message, details, **extra)
    return SkyFiUnknownError(message, status_code, code, details)
