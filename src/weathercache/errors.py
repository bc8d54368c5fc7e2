"""Error taxonomy for historical weather lookups.

Every failure that leaves the retry engine or a fetch call site is a
:class:`HistoricalWeatherError`. The error is a tagged variant: ``kind`` says
which branch of the taxonomy it belongs to, ``code`` is the machine-readable
reason, and the remaining fields carry kind-specific payload:

- ``DATE_VALIDATION``: caller asked for an out-of-policy date
- ``API_LIMIT``: upstream rate limit, optional ``retry_after`` seconds
- ``DATA_UNAVAILABLE``: no data for the coordinates/date, optional
  ``available_range``
- ``NETWORK``: transport failure, ``cause`` holds the underlying exception
- ``SERVICE``: everything else, with an optional ``status_code``
"""

import asyncio
import logging
from datetime import date
from enum import Enum
from typing import Any, Dict, Mapping, NamedTuple, Optional

logger = logging.getLogger(__name__)


class ErrorKind(Enum):
    """Branches of the error taxonomy."""

    DATE_VALIDATION = "date_validation"
    API_LIMIT = "api_limit"
    DATA_UNAVAILABLE = "data_unavailable"
    NETWORK = "network"
    SERVICE = "service"


class ErrorCode(str, Enum):
    """Machine-readable error codes."""

    DATE_VALIDATION_ERROR = "DATE_VALIDATION_ERROR"
    API_LIMIT_ERROR = "API_LIMIT_ERROR"
    DATA_UNAVAILABLE_ERROR = "DATA_UNAVAILABLE_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"
    INVALID_API_KEY = "INVALID_API_KEY"
    ACCESS_FORBIDDEN = "ACCESS_FORBIDDEN"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    API_ERROR = "API_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


CODE_TO_KIND: Dict[ErrorCode, ErrorKind] = {
    ErrorCode.DATE_VALIDATION_ERROR: ErrorKind.DATE_VALIDATION,
    ErrorCode.API_LIMIT_ERROR: ErrorKind.API_LIMIT,
    ErrorCode.DATA_UNAVAILABLE_ERROR: ErrorKind.DATA_UNAVAILABLE,
    ErrorCode.NETWORK_ERROR: ErrorKind.NETWORK,
    ErrorCode.INVALID_API_KEY: ErrorKind.SERVICE,
    ErrorCode.ACCESS_FORBIDDEN: ErrorKind.SERVICE,
    ErrorCode.SERVICE_UNAVAILABLE: ErrorKind.SERVICE,
    ErrorCode.API_ERROR: ErrorKind.SERVICE,
    ErrorCode.UNKNOWN_ERROR: ErrorKind.SERVICE,
}

RETRYABLE_CODES = frozenset(
    {
        ErrorCode.NETWORK_ERROR,
        ErrorCode.SERVICE_UNAVAILABLE,
        ErrorCode.API_LIMIT_ERROR,
    }
)
RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


class DateRange(NamedTuple):
    """Inclusive range of dates for which data exists."""

    start: date
    end: date


class HistoricalWeatherError(Exception):
    """A classified failure.

    Prefer the module-level constructors (:func:`api_limit_error`,
    :func:`network_error`, ...) which fill in the kind-specific fields.
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode,
        status_code: Optional[int] = None,
        retry_after: Optional[int] = None,
        available_range: Optional[DateRange] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = ErrorCode(code)
        self.kind = CODE_TO_KIND[self.code]
        self.status_code = status_code
        self.retry_after = retry_after
        self.available_range = available_range
        self.cause = cause

    def __repr__(self) -> str:
        return (
            f"HistoricalWeatherError(kind={self.kind.name}, code={self.code.value}, "
            f"status_code={self.status_code}, message={self.message!r})"
        )

    def to_dict(self) -> Dict[str, Any]:
        """Structured view used for log records."""
        data: Dict[str, Any] = {
            "kind": self.kind.value,
            "code": self.code.value,
            "message": self.message,
            "status_code": self.status_code,
        }
        if self.retry_after is not None:
            data["retry_after"] = self.retry_after
        if self.available_range is not None:
            data["available_range"] = {
                "start": self.available_range.start.isoformat(),
                "end": self.available_range.end.isoformat(),
            }
        if self.cause is not None:
            data["cause"] = repr(self.cause)
        return data


def date_validation_error(message: str) -> HistoricalWeatherError:
    return HistoricalWeatherError(message, ErrorCode.DATE_VALIDATION_ERROR)


def api_limit_error(
    message: str = "API rate limit exceeded. Please try again later.",
    retry_after: Optional[int] = None,
) -> HistoricalWeatherError:
    return HistoricalWeatherError(
        message, ErrorCode.API_LIMIT_ERROR, status_code=429, retry_after=retry_after
    )


def data_unavailable_error(
    message: str = (
        "Historical weather data is not available for the requested date and location."
    ),
    available_range: Optional[DateRange] = None,
) -> HistoricalWeatherError:
    return HistoricalWeatherError(
        message,
        ErrorCode.DATA_UNAVAILABLE_ERROR,
        status_code=404,
        available_range=available_range,
    )


def network_error(
    message: str = "Network connection failed. Please check your internet connection.",
    cause: Optional[BaseException] = None,
) -> HistoricalWeatherError:
    return HistoricalWeatherError(message, ErrorCode.NETWORK_ERROR, cause=cause)


def service_error(
    message: str,
    code: ErrorCode = ErrorCode.API_ERROR,
    status_code: Optional[int] = None,
) -> HistoricalWeatherError:
    """Build a catch-all service error.

    Raises:
        ValueError: If ``code`` belongs to a kind other than ``SERVICE``
    """
    if CODE_TO_KIND[ErrorCode(code)] is not ErrorKind.SERVICE:
        raise ValueError(f"{code} is not a service error code")
    return HistoricalWeatherError(message, code, status_code=status_code)


def _status_of(error: Any) -> Optional[int]:
    """Read an HTTP-like status from an exception or response wrapper."""
    for attr in ("status", "status_code"):
        value = getattr(error, attr, None)
        if isinstance(value, int):
            return value
    response = getattr(error, "response", None)
    if response is not None:
        for attr in ("status_code", "status"):
            value = getattr(response, attr, None)
            if isinstance(value, int):
                return value
    return None


def _retry_after_of(error: Any) -> Optional[int]:
    """Parse a Retry-After header (integer seconds) if one is attached."""
    headers = getattr(error, "headers", None)
    if headers is None:
        response = getattr(error, "response", None)
        headers = getattr(response, "headers", None)
    if not isinstance(headers, Mapping) and not hasattr(headers, "get"):
        return None

    raw = headers.get("retry-after")
    if raw is None:
        # Plain dicts are case-sensitive
        for name, value in headers.items():
            if str(name).lower() == "retry-after":
                raw = value
                break
    if raw is None:
        return None
    try:
        return int(str(raw).strip())
    except ValueError:
        return None


def classify_error(
    error: BaseException, context: Optional[str] = None
) -> HistoricalWeatherError:
    """Map any raised failure onto the taxonomy.

    Args:
        error: The exception raised by a fetch or compute function
        context: Optional description of what was being attempted, used as a
            message prefix for unrecognised failures

    Returns:
        A classified error; ``error`` itself when it is already classified
    """
    if isinstance(error, HistoricalWeatherError):
        return error

    status = _status_of(error)
    if status is not None:
        if status == 401:
            return service_error(
                "Invalid API key. Please check your weather provider API key configuration.",
                ErrorCode.INVALID_API_KEY,
                401,
            )
        if status == 403:
            return service_error(
                "Access forbidden. Your API key may not have access to historical weather data.",
                ErrorCode.ACCESS_FORBIDDEN,
                403,
            )
        if status == 404:
            return data_unavailable_error()
        if status == 429:
            return api_limit_error(retry_after=_retry_after_of(error))
        if status in (500, 502, 503):
            return service_error(
                "Weather service is temporarily unavailable. Please try again later.",
                ErrorCode.SERVICE_UNAVAILABLE,
                status,
            )
        return service_error(
            f"Weather service error ({status}). Please try again.",
            ErrorCode.API_ERROR,
            status,
        )

    if isinstance(error, (OSError, asyncio.TimeoutError)):
        return network_error(cause=error)

    message = str(error) or "An unexpected error occurred while fetching weather data."
    if context:
        message = f"{context}: {message}"
    return service_error(message, ErrorCode.UNKNOWN_ERROR)


def is_retryable(error: HistoricalWeatherError) -> bool:
    """Return True if a later attempt may succeed."""
    return error.code in RETRYABLE_CODES or (
        error.status_code is not None and error.status_code in RETRYABLE_STATUS_CODES
    )


def log_error(error: HistoricalWeatherError, context: Optional[Any] = None) -> None:
    """Log a classified error at a level matching its severity."""
    payload = {"error": error.to_dict(), "context": context}
    if error.status_code is not None and error.status_code >= 500:
        logger.error(f"Historical weather service error: {payload}")
    elif error.code is ErrorCode.NETWORK_ERROR or error.status_code == 429:
        logger.warning(f"Historical weather warning: {payload}")
    else:
        logger.info(f"Historical weather info: {payload}")


class CacheError(Exception):
    """Base exception for cache-related errors."""

    pass


class CachePermissionError(CacheError):
    """Raised when the cache directory is not writable."""

    pass


class CacheLockError(CacheError):
    """Raised when unable to acquire the schema lock."""

    pass


class CacheClosedError(CacheError):
    """Raised when the persistent tier is used after close()."""

    pass
