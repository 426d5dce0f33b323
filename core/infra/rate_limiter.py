"""
rate_limiter.py – Per-domain adaptive request gate.

The delay between navigations starts at the source's ``rate_limit`` and
moves between ``base_delay`` and ``max_delay``:

* 429 / 5xx responses push it up (exponential back-off, honours Retry-After)
* fast 2xx responses pull it back down towards ``base_delay``

Scrapers that hit the same host share one limiter through
:class:`RateLimiterRegistry`, so their back-off state is common.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Dict, Optional
from urllib.parse import urlparse

from core.errors import HttpStatusError, ErrorType, RetriesExhaustedError
from core.models import RateLimiterStats

logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[None]]
ClockFn = Callable[[], float]


class RateLimiter:
    """Adaptive delay gate for one domain. All times are in seconds."""

    def __init__(
        self,
        base_delay: float = 1.0,
        *,
        max_delay: float = 30.0,
        max_retries: int = 5,
        backoff_factor: float = 2.0,
        name: str = "",
        sleep: SleepFn = asyncio.sleep,
        clock: ClockFn = time.monotonic,
    ) -> None:
        if base_delay < 0 or max_delay < base_delay:
            raise ValueError("expected 0 <= base_delay <= max_delay")
        self.name = name
        self.base_delay = base_delay
        self.current_delay = base_delay
        self.max_delay = max_delay
        self.max_retries = max_retries
        self.backoff_factor = backoff_factor
        self.retry_count = 0
        self.last_request_time: Optional[float] = None

        self._sleep = sleep
        self._clock = clock
        # Guards current_delay / retry_count / last_request_time across awaits
        self._lock = asyncio.Lock()

        self.total_requests = 0
        self.rate_limit_hits = 0
        self.total_wait_time = 0.0

    # ---------------------------------------------- #
    # Gate
    async def wait(self) -> float:
        """Suspend until ``current_delay`` has passed since the previous call."""
        async with self._lock:
            wait_time = 0.0
            if self.last_request_time is not None:
                elapsed = self._clock() - self.last_request_time
                wait_time = max(0.0, self.current_delay - elapsed)

            if wait_time > 0:
                logger.debug("[%s] waiting %.2fs before next request", self.name, wait_time)
                await self._sleep(wait_time)
                self.total_wait_time += wait_time

            self.last_request_time = self._clock()
            self.total_requests += 1
            return wait_time

    # ---------------------------------------------- #
    # Back-off
    async def handle_rate_limit(self, retry_after: Optional[float] = None) -> float:
        """Back off after a 429; raises RetriesExhaustedError once the budget is spent."""
        async with self._lock:
            self.retry_count += 1
            self.rate_limit_hits += 1

            if self.retry_count > self.max_retries:
                logger.error(
                    "[%s] rate limit: max retries (%d) exceeded", self.name, self.max_retries
                )
                raise RetriesExhaustedError(
                    f"rate limit: retries exhausted after {self.max_retries} attempts",
                    self.retry_count,
                )

            self.current_delay = min(self.current_delay * self.backoff_factor, self.max_delay)
            if retry_after is not None and retry_after >= 0:
                wait_time = float(retry_after)
                logger.warning("[%s] rate limited, honouring Retry-After: %.1fs", self.name, wait_time)
            else:
                wait_time = self.current_delay
                logger.warning(
                    "[%s] rate limited, backing off %.1fs (attempt %d/%d)",
                    self.name,
                    wait_time,
                    self.retry_count,
                    self.max_retries,
                )

        await self._sleep(wait_time)
        self.total_wait_time += wait_time
        return wait_time

    async def handle_error(self, status: int, retry_after: Optional[float] = None) -> float:
        """Map an HTTP status to the matching back-off; other statuses fail immediately."""
        if status == 429:
            return await self.handle_rate_limit(retry_after)

        if 500 <= status < 600:
            async with self._lock:
                self.retry_count += 1
                if self.retry_count > self.max_retries:
                    raise RetriesExhaustedError(
                        f"server unavailable (HTTP {status}) after {self.max_retries} attempts",
                        self.retry_count,
                        error_type=ErrorType.NETWORK_ERROR,
                    )
                wait_time = min(
                    self.base_delay * self.backoff_factor ** (self.retry_count - 1),
                    self.max_delay,
                )
            logger.warning("[%s] HTTP %d, retrying in %.1fs", self.name, status, wait_time)
            await self._sleep(wait_time)
            self.total_wait_time += wait_time
            return wait_time

        raise HttpStatusError(status, message=f"unhandled HTTP status: {status}")

    # ---------------------------------------------- #
    # Adaptive controller
    def adjust_delay(self, latency_ms: float, status: int) -> float:
        """Shrink the delay on fast 2xx responses, double it on 429."""
        if 200 <= status < 300 and latency_ms < 500:
            self.current_delay = self.current_delay * 0.9
        elif status == 429:
            self.current_delay = self.current_delay * 2
        self.current_delay = min(max(self.current_delay, self.base_delay), self.max_delay)
        return self.current_delay

    def reset(self) -> None:
        self.current_delay = self.base_delay
        self.retry_count = 0
        logger.debug("[%s] rate limiter reset", self.name)

    def reset_retries(self) -> None:
        """Called after a successful request; keeps the learned delay."""
        self.retry_count = 0

    def should_retry(self) -> bool:
        return self.retry_count < self.max_retries

    def get_stats(self) -> RateLimiterStats:
        if self.total_requests and self.rate_limit_hits:
            efficiency = max(0.0, round((1 - self.rate_limit_hits / self.total_requests) * 100, 1))
        else:
            efficiency = 100.0
        return RateLimiterStats(
            total_requests=self.total_requests,
            rate_limit_hits=self.rate_limit_hits,
            total_wait_time=round(self.total_wait_time, 3),
            average_delay=round(self.total_wait_time / self.total_requests, 3) if self.total_requests else 0.0,
            current_delay=self.current_delay,
            retry_count=self.retry_count,
            efficiency=efficiency,
        )


def normalize_domain(domain_or_url: str) -> str:
    """``https://www.Sympla.com.br/eventos`` -> ``www.sympla.com.br``"""
    value = domain_or_url.strip()
    if "://" in value:
        value = urlparse(value).hostname or value
    return value.split(":")[0].lower()


class RateLimiterRegistry:
    """Domain-keyed limiters shared by every scraper hitting the same host."""

    def __init__(self, **defaults) -> None:
        self._defaults = defaults
        self._limiters: Dict[str, RateLimiter] = {}

    def create_for_domain(self, domain: str, base_delay: float, **options) -> RateLimiter:
        key = normalize_domain(domain)
        limiter = self._limiters.get(key)
        if limiter is None:
            kwargs = {**self._defaults, **options}
            kwargs["max_delay"] = max(kwargs.get("max_delay", 30.0), base_delay)
            limiter = RateLimiter(base_delay, name=key, **kwargs)
            self._limiters[key] = limiter
            logger.debug(f"Created rate limiter for {key} (base delay {base_delay}s)")
        return limiter

    def get(self, domain: str) -> Optional[RateLimiter]:
        return self._limiters.get(normalize_domain(domain))

    def cleanup(self) -> None:
        self._limiters.clear()

    def __contains__(self, domain: str) -> bool:
        return normalize_domain(domain) in self._limiters

    def __len__(self) -> int:
        return len(self._limiters)
