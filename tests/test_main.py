from __future__ import annotations

import logging

import pytest

import main
from conftest import ROOT, FakeBrowser, FakePage
from core.errors import ConfigurationError
from core.infra.http import StaticBrowser
from core.infra.rate_limiter import RateLimiterRegistry
from core.models import DateRange


def test_parse_run_arguments() -> None:
    args = main.parse_args(
        ["run", "--sources", "sympla, eventbrite", "--max-events", "10", "--categories", "shows", "--no-national"]
    )

    assert args.command == "run"
    assert args.sources == ["sympla", "eventbrite"]
    filters = main.build_filters(args)
    assert filters.max_events == 10
    assert filters.categories == ["shows"]
    assert filters.include_regional and not filters.include_national
    assert filters.date_range is DateRange.ANY


def test_build_orchestrators_share_domain_limiters(settings) -> None:
    registry = RateLimiterRegistry()
    browser = FakeBrowser(FakePage())

    orchestrators = main.build_orchestrators(settings, browser, registry, None)

    assert [o.name for o in orchestrators] == ["sympla", "eventbrite"]
    assert len(registry) == 2
    assert orchestrators[0].processor is orchestrators[1].processor


def test_build_orchestrators_rejects_unknown_sources(settings) -> None:
    with pytest.raises(ConfigurationError):
        main.build_orchestrators(settings, FakeBrowser(FakePage()), RateLimiterRegistry(), None, ["ticketmaster"])


def test_http_backend(settings) -> None:
    settings.browser.backend = "http"

    assert isinstance(main.build_browser(settings), StaticBrowser)


@pytest.mark.asyncio
async def test_configuration_errors_exit_with_2(tmp_path, monkeypatch) -> None:
    monkeypatch.delenv("DATABASE_URL", raising=False)

    assert await main.main(["--config", str(tmp_path / "missing.yml"), "monitor"]) == 2


def test_retry_block_reaches_orchestrators(settings) -> None:
    settings.retry = settings.retry.model_copy(update={"base_delay": 7.0, "max_delay": 90.0})
    settings.source("eventbrite").max_retries = 1

    sympla, eventbrite = main.build_orchestrators(settings, FakeBrowser(FakePage()), RateLimiterRegistry(), None)

    assert sympla.retry.config.base_delay == 7.0
    assert sympla.retry.config.max_delay == 90.0
    assert sympla.retry.config.max_retries == settings.source("sympla").max_retries
    assert eventbrite.retry.config.max_retries == 1
    assert eventbrite.retry.config.base_delay == 7.0


@pytest.mark.asyncio
async def test_configured_log_level_is_applied(monkeypatch) -> None:
    async def no_monitor(settings) -> None:
        return None

    monkeypatch.setattr(main, "run_monitor", no_monitor)
    monkeypatch.setenv("LOG_LEVEL", "WARNING")
    root = logging.getLogger()
    previous = root.level
    try:
        assert await main.main(["--config", str(ROOT / "config.yml"), "monitor"]) == 0
        assert root.level == logging.WARNING
    finally:
        root.setLevel(previous)
