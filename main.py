"""
Main entry point for the event scraper.

    python main.py run [--sources sympla,eventbrite] [--max-events 50] [--categories shows,teatro]
    python main.py schedule      # cron-scheduled scrapes + structure monitor
    python main.py monitor       # one structure check cycle
"""

import argparse
import asyncio
import logging
import os
import signal
import sys
from typing import Dict, List, Optional

from dotenv import load_dotenv

# Add project root to PYTHONPATH so imports work when running this script directly
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from core.config import Settings, load_settings
from core.errors import ConfigurationError, ScrapingError
from core.infra.rate_limiter import RateLimiterRegistry
from core.infra.scheduler import Scheduler
from core.interfaces import Browser
from core.models import DateRange, ScrapeFilters, ScrapeResult
from core.orchestrator import ScraperOrchestrator, run_scrapers
from monitoring.structure_monitor import StructureMonitor
from processors.data_processor import DataProcessor
from scrapers import create_scraper
from sinks.database_sink import EventDatabaseSink

logger = logging.getLogger(__name__)


def build_browser(settings: Settings) -> Browser:
    cfg = settings.browser
    if cfg.backend == "http":
        from core.infra.http import StaticBrowser

        return StaticBrowser(timeout=cfg.navigation_timeout, user_agent=cfg.user_agent, headers=cfg.headers)

    from core.infra.sel import PlaywrightBrowser

    return PlaywrightBrowser(
        headless=cfg.headless,
        timeout=cfg.navigation_timeout,
        user_agent=cfg.user_agent,
        headers=cfg.headers,
    )


def build_orchestrators(
    settings: Settings,
    browser: Browser,
    registry: RateLimiterRegistry,
    sink: Optional[EventDatabaseSink],
    sources: Optional[List[str]] = None,
) -> List[ScraperOrchestrator]:
    enabled = settings.enabled_sources()
    names = sources or list(enabled)
    unknown = [name for name in names if name not in enabled]
    if unknown:
        raise ConfigurationError(f"Unknown or disabled sources: {', '.join(unknown)}")

    processor = DataProcessor.from_settings(settings)
    return [
        ScraperOrchestrator(
            create_scraper(name, enabled[name], settings.search),
            browser,
            registry=registry,
            processor=processor,
            sink=sink,
            browser_config=settings.browser,
            rate_limiter_config=settings.rate_limiter,
            circuit_breaker_config=settings.circuit_breaker,
            retry_config=settings.retry,
        )
        for name in names
    ]


def build_filters(args: argparse.Namespace) -> ScrapeFilters:
    return ScrapeFilters(
        max_events=args.max_events,
        categories=args.categories or [],
        date_range=DateRange(args.date_range),
        include_regional=not args.no_regional,
        include_national=not args.no_national,
    )


def print_results(results: Dict[str, ScrapeResult]) -> None:
    print("=" * 60)
    for source, result in results.items():
        stats = result.stats
        if result.error:
            print(f"{source}: FAILED ({result.error})")
            continue
        print(
            f"{source}: {len(result.events)} events | attempts {stats.total_attempts} | "
            f"rejected {stats.rejected_events} | errors {stats.errors} | "
            f"duplicates {stats.duplicates_removed} | stored {stats.persisted} "
            f"(+{stats.persist_duplicates} known) | {stats.duration_ms}ms"
        )
        for event in result.events[:5]:
            when = event.date.strftime("%d/%m/%Y %H:%M") if event.date else "?"
            print(f"    [{event.category}] {event.title} - {when} - {event.location.venue}")
    print("=" * 60)


def print_health_report(report: Dict) -> None:
    print(f"Overall health: {report['overall_health']}")
    for source, info in report["scrapers"].items():
        disabled = " DISABLED" if info["disabled"] else ""
        print(
            f"  {source}: {info['health']} ({info['status']}{disabled}), "
            f"{info['consecutive_failures']} consecutive failures"
        )
    for alert in report["alerts"]:
        print(f"  ALERT [{alert.severity}] {alert.message}")
        for field, options in alert.suggestions.items():
            print(f"      {field}: try {', '.join(options)}")


# ---------------------------------------------- #
# Commands
async def run_once(settings: Settings, args: argparse.Namespace) -> Dict[str, ScrapeResult]:
    registry = RateLimiterRegistry()
    async with EventDatabaseSink(settings.database_url) as sink, build_browser(settings) as browser:
        orchestrators = build_orchestrators(settings, browser, registry, sink, args.sources)
        results = await run_scrapers(orchestrators, build_filters(args))
        for orchestrator in orchestrators:
            logger.debug(f"{orchestrator.name} stats: {orchestrator.get_stats()}")
    registry.cleanup()
    print_results(results)
    return results


async def run_monitor(settings: Settings) -> Dict:
    async with build_browser(settings) as browser:
        monitor = StructureMonitor(settings, browser)
        await monitor.check_all_structures()
        report = monitor.get_health_report()
    print_health_report(report)
    return report


async def run_scheduled(settings: Settings, args: argparse.Namespace) -> None:
    scheduler = Scheduler(timezone=settings.schedule.timezone)
    registry = RateLimiterRegistry()
    filters = build_filters(args)

    stop_event = asyncio.Event()

    def signal_handler():
        logger.info("Received shutdown signal")
        stop_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        asyncio.get_running_loop().add_signal_handler(sig, signal_handler)

    # the monitor gets its own browser so it never shares a session with a scrape
    async with EventDatabaseSink(settings.database_url) as sink, \
            build_browser(settings) as browser, \
            build_browser(settings) as monitor_browser:
        orchestrators = build_orchestrators(settings, browser, registry, sink, args.sources)
        monitor = StructureMonitor(settings, monitor_browser, scheduler=scheduler, registry=registry)

        async def scrape_job():
            results = await run_scrapers(orchestrators, filters, monitor=monitor)
            print_results(results)

        try:
            await scheduler.start()
            scheduler.add_cron_job(scrape_job, settings.schedule.cron, job_id="scrape_all")
            monitor.start_monitoring()
            logger.info(f"Scheduled jobs: {list(scheduler.list_jobs())}")
            await stop_event.wait()
        finally:
            logger.info("Shutting down...")
            monitor.stop_monitoring()
            await scheduler.stop()
            logger.info("Shutdown complete")


# ---------------------------------------------- #
def _csv(value: str) -> List[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Event listing scraper")
    parser.add_argument("--config", help="path to config.yml (default: SCRAPER_CONFIG or ./config.yml)")
    sub = parser.add_subparsers(dest="command", required=True)

    for name, help_text in (("run", "scrape once and exit"), ("schedule", "run on the configured cron schedule")):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("--sources", type=_csv, help="comma-separated source keys")
        cmd.add_argument("--max-events", type=int, default=50)
        cmd.add_argument("--categories", type=_csv, help="comma-separated category keys")
        cmd.add_argument("--date-range", choices=[d.value for d in DateRange], default=DateRange.ANY.value)
        cmd.add_argument("--no-regional", action="store_true")
        cmd.add_argument("--no-national", action="store_true")

    sub.add_parser("monitor", help="check every source's page structure once")
    return parser.parse_args(argv)


async def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv()
    args = parse_args(argv)

    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
    )

    try:
        settings = load_settings(args.config, require_database=args.command != "monitor")
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return 2
    logging.getLogger().setLevel(settings.log_level)

    try:
        if args.command == "run":
            results = await run_once(settings, args)
            return 0 if any(not r.error for r in results.values()) else 1
        if args.command == "schedule":
            await run_scheduled(settings, args)
            return 0
        await run_monitor(settings)
        return 0
    except ScrapingError as e:
        # only critical errors (database, configuration) get this far
        logger.error(f"Fatal {e.type.value}: {e.message}")
        return 1


def cli() -> None:
    """Console-script entry point."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
