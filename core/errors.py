"""
Error taxonomy for the scraping core.

Every failure that crosses a component boundary is expressed as a
:class:`ScrapingError` carrying one of the closed :class:`ErrorType` values.
Severity and recoverability are fixed per type; subclasses only add context.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional


class ErrorType(str, Enum):
    NETWORK_ERROR = "NETWORK_ERROR"
    TIMEOUT_ERROR = "TIMEOUT_ERROR"
    RATE_LIMITED = "RATE_LIMITED"
    SITE_STRUCTURE_CHANGED = "SITE_STRUCTURE_CHANGED"
    PARSING_ERROR = "PARSING_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    DATABASE_ERROR = "DATABASE_ERROR"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class Severity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


DEFAULT_SEVERITY: Dict[ErrorType, Severity] = {
    ErrorType.NETWORK_ERROR: Severity.HIGH,
    ErrorType.TIMEOUT_ERROR: Severity.MEDIUM,
    ErrorType.RATE_LIMITED: Severity.LOW,
    ErrorType.SITE_STRUCTURE_CHANGED: Severity.MEDIUM,
    ErrorType.PARSING_ERROR: Severity.MEDIUM,
    ErrorType.VALIDATION_ERROR: Severity.LOW,
    ErrorType.DATABASE_ERROR: Severity.CRITICAL,
    ErrorType.CONFIGURATION_ERROR: Severity.CRITICAL,
    ErrorType.UNKNOWN_ERROR: Severity.MEDIUM,
}

RECOVERABLE_TYPES = frozenset(
    {ErrorType.RATE_LIMITED, ErrorType.NETWORK_ERROR, ErrorType.TIMEOUT_ERROR}
)


class ScrapingError(Exception):
    """Typed failure raised or produced anywhere in the scraping pipeline."""

    def __init__(
        self,
        message: str,
        error_type: ErrorType = ErrorType.UNKNOWN_ERROR,
        severity: Optional[Severity] = None,
        details: Optional[Mapping[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.type = error_type
        self.severity = severity or DEFAULT_SEVERITY[error_type]
        self.details: Dict[str, Any] = dict(details or {})
        self.timestamp = datetime.now(timezone.utc)

    def is_recoverable(self) -> bool:
        return self.type in RECOVERABLE_TYPES

    def is_critical(self) -> bool:
        return self.severity is Severity.CRITICAL

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": type(self).__name__,
            "message": self.message,
            "type": self.type.value,
            "severity": self.severity.value,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.type.value}/{self.severity.value}: {self.message!r})"


class HttpStatusError(ScrapingError):
    """Non-success HTTP response observed during navigation."""

    def __init__(
        self,
        status: int,
        url: str = "",
        headers: Optional[Mapping[str, str]] = None,
        message: Optional[str] = None,
    ) -> None:
        if status == 429:
            error_type = ErrorType.RATE_LIMITED
        elif status >= 500:
            error_type = ErrorType.NETWORK_ERROR
        elif status == 404:
            error_type = ErrorType.SITE_STRUCTURE_CHANGED
        else:
            error_type = ErrorType.UNKNOWN_ERROR
        super().__init__(
            message or f"HTTP {status} for {url}",
            error_type,
            details={"status": status, "url": url},
        )
        self.status = status
        self.url = url
        self.headers: Dict[str, str] = dict(headers or {})


class RetriesExhaustedError(ScrapingError):
    """Raised by the rate limiter once its retry budget is spent."""

    def __init__(self, message: str, retry_count: int, error_type: ErrorType = ErrorType.RATE_LIMITED) -> None:
        super().__init__(message, error_type, Severity.HIGH, {"retry_count": retry_count})
        self.retry_count = retry_count


class CircuitOpenError(ScrapingError):
    """Raised instead of calling a dependency whose breaker is open."""

    def __init__(self, name: str = "", retry_in: float = 0.0) -> None:
        super().__init__(
            f"circuit breaker is open{f' for {name}' if name else ''}",
            ErrorType.NETWORK_ERROR,
            Severity.HIGH,
            {"breaker": name, "retry_in": round(retry_in, 3)},
        )


class FallbackExhaustedError(ScrapingError):
    """Every option in a fallback chain failed."""

    def __init__(self, errors: List[BaseException]) -> None:
        super().__init__(
            "all fallback options failed",
            ErrorType.UNKNOWN_ERROR,
            Severity.HIGH,
            {"errors": [str(e) for e in errors]},
        )
        self.errors = list(errors)


class ConfigurationError(ScrapingError):
    def __init__(self, message: str, details: Optional[Mapping[str, Any]] = None) -> None:
        super().__init__(message, ErrorType.CONFIGURATION_ERROR, Severity.CRITICAL, details)


class DatabaseError(ScrapingError):
    def __init__(self, message: str, details: Optional[Mapping[str, Any]] = None) -> None:
        super().__init__(message, ErrorType.DATABASE_ERROR, Severity.CRITICAL, details)
