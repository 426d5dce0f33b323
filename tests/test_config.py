from __future__ import annotations

import pytest

from conftest import ROOT
from core.config import load_settings
from core.errors import ConfigurationError

CONFIG = ROOT / "config.yml"
ENV = {"DATABASE_URL": "sqlite:///events.db"}

MINIMAL = """
scrapers:
  local:
    name: Local
    base_url: https://eventos.example.com
    search_url: "https://eventos.example.com/busca?q={term}"
    test_url: https://eventos.example.com/
    selectors:
      title: ".a, .b"
      date: [".when"]
categories:
  outros:
    name: Outros
"""


def test_loads_bundled_config() -> None:
    settings = load_settings(CONFIG, env=ENV)

    assert settings.database_url == "sqlite:///events.db"
    assert set(settings.enabled_sources()) == {"sympla", "eventbrite"}
    sympla = settings.source("sympla")
    assert sympla.rate_limit == 1.5
    assert sympla.quality_filters.min_title_length == 8
    assert sympla.selector_list("event_card")[0] == ".sympla-card"
    assert "outros" in settings.categories
    assert settings.regions.cities["Ji-Paraná"] == "RO"


def test_environment_overrides() -> None:
    env = {
        **ENV,
        "SYMPLA_RATE_LIMIT": "4",
        "SCRAPING_MAX_RETRIES": "5",
        "SCRAPING_TIMEOUT": "12",
        "BROWSER_HEADLESS": "false",
        "BROWSER_BACKEND": "http",
        "SCHEDULER_TIMEZONE": "America/Sao_Paulo",
    }

    settings = load_settings(CONFIG, env=env)

    assert settings.source("sympla").rate_limit == 4.0
    assert settings.source("eventbrite").rate_limit == 2.0
    assert settings.source("sympla").max_retries == 5
    assert settings.source("eventbrite").timeout == 12.0
    assert settings.retry.max_retries == 5
    assert settings.browser.headless is False
    assert settings.browser.backend == "http"
    assert settings.browser.navigation_timeout == 12.0
    assert settings.schedule.timezone == "America/Sao_Paulo"


def test_database_url_is_required_unless_disabled() -> None:
    with pytest.raises(ConfigurationError, match="DATABASE_URL"):
        load_settings(CONFIG, env={})

    assert load_settings(CONFIG, require_database=False, env={}).database_url is None


def test_bad_numeric_override() -> None:
    with pytest.raises(ConfigurationError, match="SYMPLA_RATE_LIMIT"):
        load_settings(CONFIG, env={**ENV, "SYMPLA_RATE_LIMIT": "fast"})


def test_missing_file() -> None:
    with pytest.raises(ConfigurationError, match="not found"):
        load_settings("/nonexistent/config.yml", env=ENV)


def test_invalid_yaml(tmp_path) -> None:
    path = tmp_path / "config.yml"
    path.write_text("scrapers: [", encoding="utf-8")

    with pytest.raises(ConfigurationError, match="Invalid YAML"):
        load_settings(path, env=ENV)


def test_config_path_from_environment(tmp_path) -> None:
    path = tmp_path / "config.yml"
    path.write_text(MINIMAL, encoding="utf-8")

    settings = load_settings(env={**ENV, "SCRAPER_CONFIG": str(path)})

    local = settings.source("local")
    assert local.selector_list("title") == [".a", ".b"]
    assert local.selector_list("date") == [".when"]
    assert local.rate_limit == 2.0


def test_schema_errors_are_configuration_errors(tmp_path) -> None:
    path = tmp_path / "config.yml"
    path.write_text(MINIMAL + "browser:\n  backend: netscape\n", encoding="utf-8")

    with pytest.raises(ConfigurationError) as exc_info:
        load_settings(path, env=ENV)

    assert exc_info.value.details["errors"]


def test_outros_category_is_required(tmp_path) -> None:
    path = tmp_path / "config.yml"
    path.write_text(MINIMAL.replace("outros:", "shows:"), encoding="utf-8")

    with pytest.raises(ConfigurationError, match="outros"):
        load_settings(path, env=ENV)


def test_unknown_source_lookup() -> None:
    settings = load_settings(CONFIG, env=ENV)

    with pytest.raises(ConfigurationError):
        settings.source("ticketmaster")


def test_log_level_is_validated(tmp_path) -> None:
    assert load_settings(CONFIG, env={**ENV, "LOG_LEVEL": "debug"}).log_level == "DEBUG"

    path = tmp_path / "config.yml"
    path.write_text(MINIMAL + "log_level: chatty\n", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        load_settings(path, env=ENV)
