"""
Turns arbitrary exceptions into typed :class:`ScrapingError` instances and
keeps running counters of what went wrong.
"""

from __future__ import annotations

import errno
import functools
import logging
import socket
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Tuple, TypeVar

import aiohttp

from .errors import ErrorType, ScrapingError, Severity
from .infra.http import parse_retry_after
from .models import ErrorOutcome

logger = logging.getLogger(__name__)

T = TypeVar("T")

NETWORK_CODES = {"ENOTFOUND", "ECONNREFUSED", "ECONNRESET", "EAI_AGAIN", "EHOSTUNREACH", "ENETUNREACH"}
TIMEOUT_CODES = {"ETIMEDOUT"}

# Browser-level network failures surface only as message text
NETWORK_MESSAGES = (
    "net::err_name_not_resolved",
    "net::err_connection",
    "net::err_internet_disconnected",
    "net::err_address_unreachable",
    "net::err_network_changed",
)
TIMEOUT_MESSAGES = ("timeout", "timed out")
PARSING_MESSAGES = ("parse", "selector")
VALIDATION_MESSAGES = ("validation", "invalid")
DATABASE_MESSAGES = ("database", "sqlite", "db connection")
CONFIG_MESSAGES = ("config", "environment")

RECOMMENDATIONS: Dict[ErrorType, str] = {
    ErrorType.RATE_LIMITED: "Wait before retrying. Consider increasing the source's rate_limit.",
    ErrorType.NETWORK_ERROR: "Check network connectivity. Try again in a few minutes.",
    ErrorType.TIMEOUT_ERROR: "Operation took too long. Consider increasing the timeout.",
    ErrorType.PARSING_ERROR: "The site structure may have changed. Check the CSS selectors.",
    ErrorType.VALIDATION_ERROR: "Collected data does not meet the quality criteria.",
    ErrorType.SITE_STRUCTURE_CHANGED: "The site was modified. Update selectors and configuration.",
    ErrorType.DATABASE_ERROR: "Critical database problem. Check the connection.",
    ErrorType.CONFIGURATION_ERROR: "Invalid configuration. Check environment variables and config.yml.",
    ErrorType.UNKNOWN_ERROR: "Uncategorised error. Inspect the logs for details.",
}

_LOG_LEVELS = {
    Severity.CRITICAL: logging.ERROR,
    Severity.HIGH: logging.ERROR,
    Severity.MEDIUM: logging.WARNING,
    Severity.LOW: logging.INFO,
}


def _error_code(error: BaseException) -> Optional[str]:
    code = getattr(error, "code", None)
    if isinstance(code, str):
        return code.upper()
    err_no = getattr(error, "errno", None)
    if isinstance(err_no, int):
        return errno.errorcode.get(err_no)
    return None


def http_status(error: BaseException) -> Optional[int]:
    status = getattr(error, "status", None)
    if isinstance(status, int) and 100 <= status < 600:
        return status
    return None


def _is_timeout(error: BaseException, code: Optional[str], message: str) -> bool:
    return (
        isinstance(error, TimeoutError)
        or code in TIMEOUT_CODES
        or any(token in message for token in TIMEOUT_MESSAGES)
    )


def _is_network(error: BaseException, code: Optional[str], message: str) -> bool:
    if isinstance(error, TimeoutError):
        return False
    if isinstance(error, (ConnectionError, socket.gaierror, aiohttp.ClientConnectionError)):
        return True
    if code in NETWORK_CODES:
        return True
    return any(token in message for token in NETWORK_MESSAGES)


class ErrorClassifier:
    """Categorizes failures and keeps ``by_type`` / ``by_severity`` counters."""

    def __init__(self, context: str = "scraping") -> None:
        self.context = context
        self.reset_stats()

    # ---------------------------------------------- #
    def categorize(self, error: BaseException, context: Optional[Mapping[str, Any]] = None) -> ScrapingError:
        """First matching rule wins; ScrapingErrors pass through unchanged."""
        if isinstance(error, ScrapingError):
            return error

        message = str(error) or type(error).__name__
        lowered = message.lower()
        code = _error_code(error)
        status = http_status(error)
        details: Dict[str, Any] = {"original_error": type(error).__name__}
        if context:
            details["context"] = dict(context)
        if code:
            details["code"] = code

        if _is_network(error, code, lowered):
            error_type = ErrorType.NETWORK_ERROR
        elif _is_timeout(error, code, lowered):
            error_type = ErrorType.TIMEOUT_ERROR
        elif status == 429:
            error_type = ErrorType.RATE_LIMITED
            headers = getattr(error, "headers", None) or {}
            details["retry_after"] = parse_retry_after(headers.get("Retry-After"))
        elif status is not None and status >= 500:
            error_type = ErrorType.NETWORK_ERROR
        elif status == 404:
            error_type = ErrorType.SITE_STRUCTURE_CHANGED
        elif any(token in lowered for token in PARSING_MESSAGES):
            error_type = ErrorType.PARSING_ERROR
        elif any(token in lowered for token in VALIDATION_MESSAGES):
            error_type = ErrorType.VALIDATION_ERROR
        elif any(token in lowered for token in DATABASE_MESSAGES):
            error_type = ErrorType.DATABASE_ERROR
        elif any(token in lowered for token in CONFIG_MESSAGES):
            error_type = ErrorType.CONFIGURATION_ERROR
        else:
            error_type = ErrorType.UNKNOWN_ERROR

        if status is not None:
            details["status"] = status

        categorized = ScrapingError(message, error_type, details=details)
        categorized.__cause__ = error
        return categorized

    def handle(self, error: BaseException, context: Optional[Mapping[str, Any]] = None) -> ErrorOutcome:
        """Categorize, count and log ``error``; returns the retry/critical decision."""
        scraping_error = self.categorize(error, context)
        self._update_stats(scraping_error)

        logger.log(
            _LOG_LEVELS[scraping_error.severity],
            "[%s] %s: %s %s",
            self.context,
            scraping_error.severity.value,
            scraping_error.message,
            dict(context or {}),
        )

        return ErrorOutcome(
            error=scraping_error,
            should_retry=scraping_error.is_recoverable(),
            is_critical=scraping_error.is_critical(),
            recommendation=self.get_recommendation(scraping_error),
        )

    @staticmethod
    def get_recommendation(error: ScrapingError) -> str:
        return RECOMMENDATIONS.get(error.type, RECOMMENDATIONS[ErrorType.UNKNOWN_ERROR])

    # ---------------------------------------------- #
    # Stats
    def _update_stats(self, error: ScrapingError) -> None:
        self.total += 1
        self.by_type[error.type.value] = self.by_type.get(error.type.value, 0) + 1
        self.by_severity[error.severity.value] = self.by_severity.get(error.severity.value, 0) + 1
        if error.is_recoverable():
            self.recoverable += 1
        if error.is_critical():
            self.critical += 1

    def get_stats(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "by_type": dict(self.by_type),
            "by_severity": dict(self.by_severity),
            "recoverable": self.recoverable,
            "critical": self.critical,
            "error_rate": round(self.critical / self.total * 100) if self.total else 0,
            "recoverability_rate": round(self.recoverable / self.total * 100) if self.total else 0,
        }

    def reset_stats(self) -> None:
        self.total = 0
        self.by_type: Dict[str, int] = {}
        self.by_severity: Dict[str, int] = {}
        self.recoverable = 0
        self.critical = 0


def with_error_handling(
    classifier: ErrorClassifier,
    context: Optional[Mapping[str, Any]] = None,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[Tuple[Optional[T], Optional[ScrapingError]]]]]:
    """
    Decorator returning ``(result, None)`` or ``(None, error)``.

    Critical errors are re-raised.
    """

    def decorator(fn: Callable[..., Awaitable[T]]):
        @functools.wraps(fn)
        async def wrapper(*args, **kwargs):
            try:
                return await fn(*args, **kwargs), None
            except Exception as e:
                outcome = classifier.handle(e, context)
                if outcome.is_critical:
                    if outcome.error is e:
                        raise
                    raise outcome.error from e
                return None, outcome.error

        return wrapper

    return decorator
