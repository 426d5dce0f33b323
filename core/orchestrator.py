"""
Orchestrator for one source: search dimensions -> navigate -> extract -> process -> sink.

Every navigation passes, in order, through the domain's shared RateLimiter,
the source's circuit breaker and the RetryHandler.  Failures of a single card
or a single search term are classified and skipped; only CRITICAL errors
abort the run.
"""

import asyncio
import logging
import time
from typing import Any, Dict, List, Mapping, Optional, Sequence

from processors.data_processor import DataProcessor, deduplicate

from .config import BrowserConfig, CircuitBreakerConfig, RateLimiterConfig
from .error_classifier import ErrorClassifier
from .errors import HttpStatusError, ScrapingError
from .infra.http import parse_retry_after
from .infra.rate_limiter import RateLimiterRegistry
from .interfaces import Browser, Element, EventSink, Page
from .models import (
    NavigationResponse,
    NormalizedEventRecord,
    RawEventRecord,
    RetryConfig,
    RunStats,
    ScrapeFilters,
    ScrapeResult,
    SearchDimension,
    UpsertResult,
)
from .retry import RetryHandler
from .scraper import Scraper

logger = logging.getLogger(__name__)


def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
    name = name.lower()
    for key, value in headers.items():
        if key.lower() == name:
            return value
    return None


class ScraperOrchestrator:
    """Runs one :class:`Scraper` against one :class:`Browser`."""

    def __init__(
        self,
        scraper: Scraper,
        browser: Browser,
        *,
        registry: RateLimiterRegistry,
        processor: DataProcessor,
        classifier: Optional[ErrorClassifier] = None,
        retry: Optional[RetryHandler] = None,
        sink: Optional[EventSink] = None,
        browser_config: Optional[BrowserConfig] = None,
        rate_limiter_config: Optional[RateLimiterConfig] = None,
        circuit_breaker_config: Optional[CircuitBreakerConfig] = None,
        retry_config: Optional[RetryConfig] = None,
    ) -> None:
        self.scraper = scraper
        self.browser = browser
        self.processor = processor
        self.sink = sink
        self.browser_config = browser_config or BrowserConfig()
        self.classifier = classifier or ErrorClassifier(scraper.name)
        # the source's own max_retries wins over the shared retry block
        retry_cfg = (retry_config or RetryConfig()).model_copy(
            update={"max_retries": scraper.config.max_retries}
        )
        self.retry = retry or RetryHandler(
            retry_cfg,
            classifier=self.classifier,
        )

        rl_cfg = rate_limiter_config or RateLimiterConfig()
        self.limiter = registry.create_for_domain(
            scraper.domain,
            scraper.config.rate_limit,
            max_delay=rl_cfg.max_delay,
            max_retries=rl_cfg.max_retries,
            backoff_factor=rl_cfg.backoff_factor,
        )

        cb_cfg = circuit_breaker_config or CircuitBreakerConfig()
        self.breaker = self.retry.create_circuit_breaker(
            self._navigate_once,
            failure_threshold=cb_cfg.failure_threshold,
            reset_timeout=cb_cfg.reset_timeout,
            name=f"{scraper.name}-navigation",
        )

    @property
    def name(self) -> str:
        return self.scraper.name

    # ---------------------------------------------- #
    # Navigation
    async def _navigate_once(self, page: Page, url: str) -> NavigationResponse:
        await self.limiter.wait()
        response = await page.navigate(url, timeout=self.scraper.config.timeout)

        if response.status == 429 or 500 <= response.status < 600:
            # RetriesExhaustedError escapes from here once the limiter's budget is spent
            await self.limiter.handle_error(
                response.status, parse_retry_after(_header(response.headers, "Retry-After"))
            )
            error = HttpStatusError(response.status, url, response.headers)
            error.details["backoff_handled"] = True
            raise error

        self.limiter.adjust_delay(response.latency_ms, response.status)
        if response.status >= 400:
            raise HttpStatusError(response.status, url, response.headers)

        self.limiter.reset_retries()
        return response

    async def navigate(self, page: Page, url: str) -> NavigationResponse:
        return await self.retry.execute_with_retry(
            lambda: self.breaker(page, url),
            operation_id=f"{self.name}:navigate:{url}",
        )

    # ---------------------------------------------- #
    # Failure policy
    def _handle_failure(self, error: Exception, stats: RunStats, **context: Any) -> None:
        """Count and log ``error``; critical errors propagate."""
        if isinstance(error, ScrapingError) and error.details.get("reported"):
            # already counted where it was first caught
            raise error
        stats.errors += 1
        outcome = self.classifier.handle(error, {"source": self.name, **context})
        if outcome.is_critical:
            outcome.error.details["reported"] = True
            if outcome.error is error:
                raise error
            raise outcome.error from error

    # ---------------------------------------------- #
    # Extraction
    async def _find_cards(self, page: Page) -> List[Element]:
        selectors = self.scraper.config.selector_list("event_card")
        if not selectors:
            logger.warning(f"{self.name}: no event_card selectors configured")
            return []

        found = await page.wait_for(", ".join(selectors), timeout=self.browser_config.selector_timeout)
        if not found:
            return []

        await page.scroll(self.browser_config.scroll_times, self.browser_config.scroll_delay)
        for selector in selectors:
            elements = await page.query(selector)
            if elements:
                return elements
        return []

    async def _search_dimension(
        self, page: Page, dimension: SearchDimension, stats: RunStats
    ) -> List[RawEventRecord]:
        url = self.scraper.build_search_url(dimension.term)
        await self.navigate(page, url)

        cards = await self._find_cards(page)
        if not cards:
            logger.info(f"{self.name}: no results for '{dimension.term}'")
            return []

        raws: List[RawEventRecord] = []
        for index, card in enumerate(cards[: dimension.max_results]):
            try:
                raw = await self.retry.execute_with_retry(
                    lambda card=card: self.scraper.extract_event_data(card, dimension),
                    operation_id=f"{self.name}:extract:{dimension.term}:{index}",
                )
            except Exception as e:
                self._handle_failure(e, stats, step="extract", term=dimension.term, index=index)
                continue
            if raw is not None:
                raws.append(raw)

        logger.debug(f"{self.name}: extracted {len(raws)}/{len(cards)} cards for '{dimension.term}'")
        return raws

    # ---------------------------------------------- #
    # Run
    async def scrape_events(self, filters: Optional[ScrapeFilters] = None) -> ScrapeResult:
        filters = filters or ScrapeFilters()
        started = time.monotonic()
        stats = RunStats()
        collected: List[NormalizedEventRecord] = []
        seen_hashes = set()

        logger.info(f"Starting scrape of {self.name} (max {filters.max_events} events)")

        async with self.browser.session() as page:
            for dimension in self.scraper.search_dimensions(filters):
                if len(seen_hashes) >= filters.max_events:
                    break
                try:
                    raws = await self._search_dimension(page, dimension, stats)
                except Exception as e:
                    self._handle_failure(e, stats, step="search", term=dimension.term)
                    continue

                batch = self.processor.process_events_batch(raws, self.name)
                stats.total_attempts += len(raws)
                stats.successful_events += len(batch.successful)
                stats.rejected_events += len(batch.rejected)
                stats.errors += len(batch.errors)
                collected.extend(batch.successful)
                seen_hashes.update(record.content_hash for record in batch.successful)

        unique, removed = deduplicate(collected)
        stats.duplicates_removed = removed
        events = self.processor.filter_by_date_range(unique, filters.date_range)[: filters.max_events]

        if self.sink is not None and events:
            await self._persist(events, stats)

        stats.duration_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            f"Finished {self.name}: {len(events)} events, {stats.rejected_events} rejected, "
            f"{stats.errors} errors, {stats.duplicates_removed} duplicates in {stats.duration_ms}ms"
        )
        return ScrapeResult(source=self.name, events=events, stats=stats)

    async def _persist(self, events: Sequence[NormalizedEventRecord], stats: RunStats) -> None:
        for event in events:
            result = await self.sink.upsert(event)
            if result is UpsertResult.INSERTED:
                stats.persisted += 1
            elif result is UpsertResult.DUPLICATE:
                stats.persist_duplicates += 1
            else:
                stats.persist_errors += 1
        logger.info(
            f"{self.name}: persisted {stats.persisted}, {stats.persist_duplicates} already stored, "
            f"{stats.persist_errors} failed"
        )

    def get_stats(self) -> Dict[str, Any]:
        return {
            "source": self.name,
            "circuit_state": self.breaker.state.value,
            "rate_limiter": self.limiter.get_stats().model_dump(),
            "retry": self.retry.get_stats(),
            "errors": self.classifier.get_stats(),
            "processing": self.processor.get_stats(),
        }


async def run_scrapers(
    orchestrators: Sequence[ScraperOrchestrator],
    filters: Optional[ScrapeFilters] = None,
    monitor=None,
) -> Dict[str, ScrapeResult]:
    """Run every source concurrently; one source failing never cancels the others."""
    results: Dict[str, ScrapeResult] = {}
    active: List[ScraperOrchestrator] = []
    for orchestrator in orchestrators:
        if monitor is not None and not monitor.is_source_enabled(orchestrator.name):
            logger.warning(f"Skipping {orchestrator.name}: disabled by structure monitor")
            results[orchestrator.name] = ScrapeResult(
                source=orchestrator.name, error="disabled by structure monitor"
            )
            continue
        active.append(orchestrator)

    outcomes = await asyncio.gather(
        *(orchestrator.scrape_events(filters) for orchestrator in active),
        return_exceptions=True,
    )
    for orchestrator, outcome in zip(active, outcomes):
        if isinstance(outcome, asyncio.CancelledError):
            raise outcome
        if isinstance(outcome, BaseException):
            logger.error(f"Source {orchestrator.name} failed: {outcome}", exc_info=outcome)
            results[orchestrator.name] = ScrapeResult(source=orchestrator.name, error=str(outcome))
        else:
            results[orchestrator.name] = outcome
    return results
