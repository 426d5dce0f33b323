"""
Configuration loading: ``config.yml`` parsed into pydantic models, with
environment overrides (``.env`` is loaded by the entry point).
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Mapping, MutableMapping, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from .errors import ConfigurationError
from .models import RetryConfig

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).parent.parent / "config.yml"


def _as_list(value: Any) -> List[str]:
    """Selectors may be written as a comma list or a YAML list."""
    if value is None:
        return []
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    return [str(v) for v in value]


class QualityFilters(BaseModel):
    require_image: bool = False
    require_description: bool = False
    min_title_length: int = 5
    max_title_length: int = 200
    exclude_keywords: List[str] = Field(default_factory=list)


class SourceConfig(BaseModel):
    name: str
    base_url: str
    search_url: str
    test_url: str
    rate_limit: float = 2.0  # seconds between requests
    timeout: float = 30.0
    max_retries: int = 3
    enabled: bool = True
    currency: str = "BRL"
    selectors: Dict[str, List[str]] = Field(default_factory=dict)
    quality_filters: QualityFilters = Field(default_factory=QualityFilters)

    @field_validator("selectors", mode="before")
    @classmethod
    def _split_selectors(cls, value: Any) -> Dict[str, List[str]]:
        return {key: _as_list(sel) for key, sel in (value or {}).items()}

    def selector_list(self, field: str) -> List[str]:
        return self.selectors.get(field, [])


class CategoryConfig(BaseModel):
    name: str
    priority: int = 99
    keywords: List[str] = Field(default_factory=list)


class SearchConfig(BaseModel):
    regional_terms: List[str] = Field(default_factory=list)
    regional_max_results: int = 10
    national_terms: List[str] = Field(default_factory=list)
    national_max_results: int = 8
    category_terms: Dict[str, List[str]] = Field(default_factory=dict)
    category_max_results: int = 5


class ValidationConfig(BaseModel):
    title_min_length: int = 5
    title_max_length: int = 200
    description_max_length: int = 2000
    future_events_only: bool = True
    max_days_in_future: int = 365
    min_quality_score: float = 0.3


class RegionConfig(BaseModel):
    default_state: Optional[str] = None
    cities: Dict[str, str] = Field(default_factory=dict)


class BrowserConfig(BaseModel):
    backend: str = "playwright"  # playwright | http
    headless: bool = True
    navigation_timeout: float = 30.0
    selector_timeout: float = 10.0
    scroll_times: int = 2
    scroll_delay: float = 2.0
    user_agent: Optional[str] = None
    headers: Dict[str, str] = Field(default_factory=dict)

    @field_validator("backend")
    @classmethod
    def _known_backend(cls, value: str) -> str:
        value = value.lower()
        if value not in ("playwright", "http"):
            raise ValueError(f"unknown browser backend: {value}")
        return value


class RateLimiterConfig(BaseModel):
    max_delay: float = 30.0
    max_retries: int = 5
    backoff_factor: float = 2.0


class CircuitBreakerConfig(BaseModel):
    failure_threshold: int = 5
    reset_timeout: float = 60.0


class ScheduleConfig(BaseModel):
    cron: str = "0 */6 * * *"
    timezone: str = "UTC"


class MonitorConfig(BaseModel):
    check_interval_hours: float = 24
    failure_health: int = 50
    alert_bands: Dict[str, int] = Field(
        default_factory=lambda: {"medium": 1, "high": 3, "critical": 5}
    )
    disable_floor: int = 50
    disable_after: int = 3
    structure_selectors: Dict[str, List[str]] = Field(
        default_factory=lambda: {
            "navigation": ["nav", ".navigation", ".navbar", "header"],
            "footer": ["footer", ".footer"],
        }
    )
    alternatives: Dict[str, Dict[str, List[str]]] = Field(default_factory=dict)


class Settings(BaseModel):
    database_url: Optional[str] = None
    log_level: str = "INFO"
    scrapers: Dict[str, SourceConfig] = Field(default_factory=dict)
    search: SearchConfig = Field(default_factory=SearchConfig)
    categories: Dict[str, CategoryConfig] = Field(default_factory=dict)
    validation: ValidationConfig = Field(default_factory=ValidationConfig)
    regions: RegionConfig = Field(default_factory=RegionConfig)
    browser: BrowserConfig = Field(default_factory=BrowserConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    rate_limiter: RateLimiterConfig = Field(default_factory=RateLimiterConfig)
    circuit_breaker: CircuitBreakerConfig = Field(default_factory=CircuitBreakerConfig)
    schedule: ScheduleConfig = Field(default_factory=ScheduleConfig)
    monitor: MonitorConfig = Field(default_factory=MonitorConfig)

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        value = value.upper()
        if value not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unknown log level: {value}")
        return value

    def enabled_sources(self) -> Dict[str, SourceConfig]:
        return {name: cfg for name, cfg in self.scrapers.items() if cfg.enabled}

    def source(self, name: str) -> SourceConfig:
        try:
            return self.scrapers[name]
        except KeyError:
            raise ConfigurationError(f"No configuration for source: {name}") from None


# --------------------------------------------------------------------- #
# Environment overrides


def _env_float(env: Mapping[str, str], key: str) -> Optional[float]:
    value = env.get(key)
    if value is None or value.strip() == "":
        return None
    try:
        return float(value)
    except ValueError:
        raise ConfigurationError(f"{key} must be a number, got {value!r}") from None


def _env_bool(env: Mapping[str, str], key: str) -> Optional[bool]:
    value = env.get(key)
    if value is None or value.strip() == "":
        return None
    return value.strip().lower() in ("1", "true", "yes", "on")


def _apply_env_overrides(raw: MutableMapping[str, Any], env: Mapping[str, str]) -> None:
    if env.get("DATABASE_URL"):
        raw["database_url"] = env["DATABASE_URL"]
    if env.get("LOG_LEVEL"):
        raw["log_level"] = env["LOG_LEVEL"].upper()

    max_retries = _env_float(env, "SCRAPING_MAX_RETRIES")
    timeout = _env_float(env, "SCRAPING_TIMEOUT")
    for name, source in (raw.get("scrapers") or {}).items():
        rate_limit = _env_float(env, f"{name.upper()}_RATE_LIMIT")
        if rate_limit is not None:
            source["rate_limit"] = rate_limit
        if max_retries is not None:
            source["max_retries"] = int(max_retries)
        if timeout is not None:
            source["timeout"] = timeout

    if max_retries is not None:
        raw.setdefault("retry", {})["max_retries"] = int(max_retries)

    browser = raw.setdefault("browser", {})
    headless = _env_bool(env, "BROWSER_HEADLESS")
    if headless is not None:
        browser["headless"] = headless
    if env.get("BROWSER_BACKEND"):
        browser["backend"] = env["BROWSER_BACKEND"]
    if timeout is not None:
        browser["navigation_timeout"] = timeout

    if env.get("SCHEDULER_TIMEZONE"):
        raw.setdefault("schedule", {})["timezone"] = env["SCHEDULER_TIMEZONE"]


def load_settings(
    path: Optional[str | Path] = None,
    *,
    require_database: bool = True,
    env: Optional[Mapping[str, str]] = None,
) -> Settings:
    """Load and validate settings; raises ConfigurationError on any problem."""
    env = os.environ if env is None else env
    config_path = Path(path or env.get("SCRAPER_CONFIG") or DEFAULT_CONFIG_PATH)

    if not config_path.exists():
        raise ConfigurationError(f"Config file not found: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        try:
            raw = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e

    _apply_env_overrides(raw, env)

    try:
        settings = Settings.model_validate(raw)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration in {config_path}", {"errors": e.errors()}) from e

    problems = []
    if require_database and not settings.database_url:
        problems.append("DATABASE_URL is not configured")
    if not settings.enabled_sources():
        problems.append("at least one scraper must be enabled")
    if "outros" not in settings.categories:
        problems.append("category 'outros' must be defined")
    if problems:
        raise ConfigurationError(f"Invalid configuration: {', '.join(problems)}")

    logger.debug(f"Loaded settings from {config_path} ({len(settings.scrapers)} scrapers)")
    return settings
