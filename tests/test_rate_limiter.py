from __future__ import annotations

import asyncio

import pytest

from core.errors import HttpStatusError, RetriesExhaustedError
from core.infra.rate_limiter import RateLimiter, RateLimiterRegistry, normalize_domain


def make_limiter(clock, base_delay: float = 2.0, **kwargs) -> RateLimiter:
    return RateLimiter(base_delay, sleep=clock.sleep, clock=clock, name="test", **kwargs)


@pytest.mark.asyncio
async def test_first_request_passes_and_next_waits_remaining_delay(clock) -> None:
    limiter = make_limiter(clock)

    assert await limiter.wait() == 0.0
    clock.now += 0.5
    waited = await limiter.wait()

    assert waited == pytest.approx(1.5)
    assert clock.sleeps == [pytest.approx(1.5)]


@pytest.mark.asyncio
async def test_consecutive_requests_are_spaced_by_current_delay(clock) -> None:
    limiter = make_limiter(clock)
    timestamps = []
    for _ in range(4):
        await limiter.wait()
        timestamps.append(clock.now)

    gaps = [b - a for a, b in zip(timestamps, timestamps[1:])]
    assert all(gap >= limiter.current_delay for gap in gaps)


@pytest.mark.asyncio
async def test_rate_limit_doubles_delay_up_to_max(clock) -> None:
    limiter = make_limiter(clock, max_delay=5.0, max_retries=10)

    await limiter.handle_rate_limit()
    assert limiter.current_delay == 4.0
    await limiter.handle_rate_limit()
    assert limiter.current_delay == 5.0
    await limiter.handle_rate_limit()
    assert limiter.current_delay == 5.0
    assert clock.sleeps == [4.0, 5.0, 5.0]


@pytest.mark.asyncio
async def test_retry_after_header_sets_the_wait(clock) -> None:
    limiter = make_limiter(clock)

    waited = await limiter.handle_rate_limit(retry_after=7)

    assert waited == 7.0
    assert clock.sleeps == [7.0]
    assert limiter.current_delay == 4.0


@pytest.mark.asyncio
async def test_rate_limit_budget_is_exhausted(clock) -> None:
    limiter = make_limiter(clock, max_retries=2)
    await limiter.handle_rate_limit()
    await limiter.handle_rate_limit()

    with pytest.raises(RetriesExhaustedError) as exc_info:
        await limiter.handle_rate_limit()

    assert exc_info.value.retry_count == 3
    assert len(clock.sleeps) == 2


@pytest.mark.asyncio
async def test_server_errors_back_off_exponentially_from_base(clock) -> None:
    limiter = make_limiter(clock, base_delay=1.0)

    for _ in range(3):
        await limiter.handle_error(503)

    assert clock.sleeps == [1.0, 2.0, 4.0]


@pytest.mark.asyncio
async def test_other_statuses_fail_without_waiting(clock) -> None:
    limiter = make_limiter(clock)

    with pytest.raises(HttpStatusError) as exc_info:
        await limiter.handle_error(403)

    assert exc_info.value.status == 403
    assert clock.sleeps == []


@pytest.mark.asyncio
async def test_concurrent_rate_limit_hits_are_all_counted(clock) -> None:
    limiter = make_limiter(clock, max_retries=10)

    await asyncio.gather(*(limiter.handle_rate_limit() for _ in range(3)))

    assert limiter.retry_count == 3
    assert limiter.rate_limit_hits == 3


@pytest.mark.asyncio
async def test_adjust_delay_stays_between_base_and_max(clock) -> None:
    limiter = make_limiter(clock, max_delay=10.0)
    await limiter.handle_rate_limit()
    assert limiter.current_delay == 4.0

    assert limiter.adjust_delay(120, 200) == pytest.approx(3.6)
    assert limiter.adjust_delay(120, 429) == pytest.approx(7.2)
    assert limiter.adjust_delay(120, 429) == 10.0
    for _ in range(50):
        limiter.adjust_delay(50, 200)
    assert limiter.current_delay == 2.0

    # slow responses leave the delay alone
    limiter.current_delay = 3.0
    assert limiter.adjust_delay(900, 200) == 3.0


@pytest.mark.asyncio
async def test_reset_restores_base_delay_and_stats_track_waits(clock) -> None:
    limiter = make_limiter(clock)
    await limiter.wait()
    await limiter.handle_rate_limit()
    await limiter.wait()

    stats = limiter.get_stats()
    assert stats.total_requests == 2
    assert stats.rate_limit_hits == 1
    assert stats.retry_count == 1
    assert stats.efficiency == 50.0

    limiter.reset()
    assert limiter.current_delay == 2.0
    assert limiter.retry_count == 0


def test_invalid_delays_are_rejected() -> None:
    with pytest.raises(ValueError):
        RateLimiter(5.0, max_delay=1.0)


def test_normalize_domain() -> None:
    assert normalize_domain("https://www.Sympla.com.br/eventos?q=x") == "www.sympla.com.br"
    assert normalize_domain("www.sympla.com.br:443") == "www.sympla.com.br"


def test_registry_shares_one_limiter_per_domain(clock) -> None:
    registry = RateLimiterRegistry(sleep=clock.sleep, clock=clock)

    first = registry.create_for_domain("https://www.sympla.com.br/eventos", 1.5)
    second = registry.create_for_domain("www.sympla.com.br", 9.0)
    other = registry.create_for_domain("https://www.eventbrite.com.br", 2.0)

    assert first is second
    assert first.base_delay == 1.5
    assert other is not first
    assert "https://www.sympla.com.br" in registry
    assert len(registry) == 2

    registry.cleanup()
    assert len(registry) == 0
    assert registry.get("www.sympla.com.br") is None


def test_registry_lifts_max_delay_to_base_delay(clock) -> None:
    registry = RateLimiterRegistry(sleep=clock.sleep, clock=clock)

    limiter = registry.create_for_domain("slow.example.com", 45.0)

    assert limiter.max_delay == 45.0
