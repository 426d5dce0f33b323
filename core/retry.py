"""
Bounded retry with exponential back-off + jitter, fallback chains,
graceful degradation and a three-state circuit breaker.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
import uuid
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, TypeVar

from .error_classifier import ErrorClassifier, http_status
from .errors import (
    CircuitOpenError,
    ErrorType,
    FallbackExhaustedError,
    RetriesExhaustedError,
    ScrapingError,
)
from .infra.http import parse_retry_after
from .models import CircuitState, RetryConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")
AsyncFn = Callable[[], Awaitable[T]]

RETRYABLE_STATUS = {408, 429}
RETRYABLE_MESSAGES = (
    "connection",
    "network",
    "rate limit",
    "too many requests",
    "service unavailable",
    "bad gateway",
    "gateway timeout",
)


def _new_operation_id() -> str:
    return f"retry_{int(time.time() * 1000)}_{uuid.uuid4().hex[:6]}"


class CircuitBreaker:
    """
    Wraps an async callable.

    CLOSED  -> OPEN       after ``failure_threshold`` consecutive failures
    OPEN    -> HALF_OPEN  once ``reset_timeout`` seconds have passed
    HALF_OPEN admits a single trial call; success closes, failure reopens.
    """

    def __init__(
        self,
        fn: Callable[..., Awaitable[T]],
        *,
        failure_threshold: int = 5,
        reset_timeout: float = 60.0,
        name: Optional[str] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        self._fn = fn
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self.name = name or getattr(fn, "__name__", "breaker")
        self._clock = clock

        self.state = CircuitState.CLOSED
        self.consecutive_failures = 0
        self.opened_at: Optional[float] = None
        self._trial_in_flight = False

    def _open(self) -> None:
        self.state = CircuitState.OPEN
        self.opened_at = self._clock()
        logger.warning(
            "Circuit breaker '%s' opened after %d consecutive failures",
            self.name,
            self.consecutive_failures,
        )

    def _close(self) -> None:
        if self.state is not CircuitState.CLOSED:
            logger.info("Circuit breaker '%s' closed", self.name)
        self.state = CircuitState.CLOSED
        self.consecutive_failures = 0
        self.opened_at = None

    async def __call__(self, *args, **kwargs):
        if self.state is CircuitState.OPEN:
            elapsed = self._clock() - (self.opened_at or 0.0)
            if elapsed < self.reset_timeout:
                raise CircuitOpenError(self.name, self.reset_timeout - elapsed)
            self.state = CircuitState.HALF_OPEN
            logger.info("Circuit breaker '%s' half-open, allowing one trial call", self.name)

        if self.state is CircuitState.HALF_OPEN:
            if self._trial_in_flight:
                raise CircuitOpenError(self.name)
            self._trial_in_flight = True
            try:
                result = await self._fn(*args, **kwargs)
            except Exception:
                self.consecutive_failures += 1
                self._open()
                raise
            finally:
                self._trial_in_flight = False
            self._close()
            return result

        try:
            result = await self._fn(*args, **kwargs)
        except Exception:
            self.consecutive_failures += 1
            if self.consecutive_failures >= self.failure_threshold:
                self._open()
            raise
        self.consecutive_failures = 0
        return result


class RetryHandler:
    """Retry policy shared by every network/parsing step of a scrape."""

    def __init__(
        self,
        config: Optional[RetryConfig] = None,
        *,
        classifier: Optional[ErrorClassifier] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        jitter: Callable[[float, float], float] = random.uniform,
    ) -> None:
        self.config = config or RetryConfig()
        self.classifier = classifier or ErrorClassifier("retry")
        self._sleep = sleep
        self._jitter = jitter
        self.reset_stats()

    # ---------------------------------------------- #
    # Policy
    def is_retryable(self, error: BaseException) -> bool:
        if isinstance(error, (RetriesExhaustedError, CircuitOpenError)):
            return False
        status = http_status(error)
        if status is not None and (status >= 500 or status in RETRYABLE_STATUS):
            return True
        categorized = self.classifier.categorize(error)
        if categorized.is_recoverable():
            return True
        if not isinstance(error, ScrapingError) and categorized.type is ErrorType.UNKNOWN_ERROR:
            message = str(error).lower()
            return any(token in message for token in RETRYABLE_MESSAGES)
        return False

    @staticmethod
    def _retry_after(error: BaseException) -> Optional[float]:
        if isinstance(error, ScrapingError) and "retry_after" in error.details:
            return error.details["retry_after"]
        headers = getattr(error, "headers", None)
        if headers:
            return parse_retry_after(headers.get("Retry-After"))
        return None

    def calculate_delay(self, attempt: int, error: Optional[BaseException] = None, config: Optional[RetryConfig] = None) -> float:
        """``min(base * 2**attempt + jitter, max_delay)``; Retry-After wins on 429."""
        cfg = config or self.config
        if error is not None:
            if isinstance(error, ScrapingError) and error.details.get("backoff_handled"):
                # the rate limiter already slept for this failure
                return 0.0
            if http_status(error) == 429 or (
                isinstance(error, ScrapingError) and error.type is ErrorType.RATE_LIMITED
            ):
                retry_after = self._retry_after(error)
                if retry_after is not None:
                    return float(retry_after)
        delay = cfg.base_delay * 2 ** attempt + self._jitter(0, cfg.base_delay)
        return min(delay, cfg.max_delay)

    # ---------------------------------------------- #
    # Executors
    async def execute_with_retry(
        self,
        fn: AsyncFn,
        config: Optional[RetryConfig] = None,
        operation_id: Optional[str] = None,
    ) -> T:
        """Run ``fn`` up to ``max_retries + 1`` times; re-raises the last error unmodified."""
        cfg = config or self.config
        operation_id = operation_id or _new_operation_id()

        for attempt in range(cfg.max_retries + 1):
            self.total_attempts += 1
            try:
                result = await fn()
            except Exception as e:
                key = e.type.value if isinstance(e, ScrapingError) else type(e).__name__
                self.error_distribution[key] = self.error_distribution.get(key, 0) + 1

                if not self.is_retryable(e):
                    logger.debug("Non-retryable error in %s: %s", operation_id, e)
                    raise

                if attempt >= cfg.max_retries:
                    self.failed_retries += 1
                    logger.error(
                        "Operation %s failed after %d attempts: %s", operation_id, attempt + 1, e
                    )
                    raise

                delay = self.calculate_delay(attempt, e, cfg)
                self.total_delay += delay
                logger.warning(
                    "Attempt %d/%d of %s failed (will retry in %.1fs): %s",
                    attempt + 1,
                    cfg.max_retries + 1,
                    operation_id,
                    delay,
                    str(e).splitlines()[0] if str(e) else type(e).__name__,
                )
                if delay > 0:
                    await self._sleep(delay)
                continue

            if attempt > 0:
                self.successful_retries += 1
                logger.info("Operation %s succeeded on attempt %d", operation_id, attempt + 1)
            return result

        raise RuntimeError("Unreachable retry loop")

    async def execute_with_fallback(
        self,
        fns: Sequence[AsyncFn],
        config: Optional[RetryConfig] = None,
        operation_id: Optional[str] = None,
    ) -> T:
        """First successful function wins; FallbackExhaustedError if all fail."""
        operation_id = operation_id or _new_operation_id()
        errors: List[BaseException] = []
        for i, fn in enumerate(fns):
            try:
                result = await self.execute_with_retry(fn, config, f"{operation_id}_fallback_{i}")
            except Exception as e:
                errors.append(e)
                logger.warning(
                    "Fallback %d/%d (%s) failed for %s: %s",
                    i + 1,
                    len(fns),
                    getattr(fn, "__name__", "fn"),
                    operation_id,
                    e,
                )
                continue
            if i > 0:
                logger.info("Operation %s succeeded using fallback %d", operation_id, i + 1)
            return result

        raise FallbackExhaustedError(errors)

    async def execute_with_graceful_degradation(
        self,
        fn: AsyncFn,
        fallback_value: Any = None,
        expected_type: Optional[str] = None,
        config: Optional[RetryConfig] = None,
    ) -> Any:
        """Never raises for ordinary failures; cancellation still propagates."""
        try:
            return await self.execute_with_retry(fn, config)
        except Exception as e:
            logger.warning("Operation failed, degrading gracefully: %s", e)
            if fallback_value is not None:
                return fallback_value
            if expected_type == "array":
                return []
            if expected_type == "object":
                return {}
            return None

    def create_circuit_breaker(
        self,
        fn: Callable[..., Awaitable[T]],
        failure_threshold: int = 5,
        reset_timeout: float = 60.0,
        name: Optional[str] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> CircuitBreaker:
        return CircuitBreaker(
            fn,
            failure_threshold=failure_threshold,
            reset_timeout=reset_timeout,
            name=name,
            clock=clock,
        )

    # ---------------------------------------------- #
    # Stats
    def get_stats(self) -> Dict[str, Any]:
        return {
            "total_attempts": self.total_attempts,
            "successful_retries": self.successful_retries,
            "failed_retries": self.failed_retries,
            "total_delay": round(self.total_delay, 3),
            "error_distribution": dict(self.error_distribution),
        }

    def reset_stats(self) -> None:
        self.total_attempts = 0
        self.successful_retries = 0
        self.failed_retries = 0
        self.total_delay = 0.0
        self.error_distribution: Dict[str, int] = {}
