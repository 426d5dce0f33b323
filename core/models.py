"""
Core data models for the event scraper.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .errors import ScrapingError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RawEventRecord(BaseModel):
    """Strings pulled from a single listing element, before any validation."""
    source: str
    title: Optional[str] = None
    date_text: Optional[str] = None
    location_text: Optional[str] = None
    image_url: Optional[str] = None
    price_text: Optional[str] = None
    description: Optional[str] = None
    organizer: Optional[str] = None
    url: Optional[str] = None
    search_term: Optional[str] = None
    is_regional: bool = False
    scraped_at: datetime = Field(default_factory=utcnow)


class Location(BaseModel):
    model_config = ConfigDict(frozen=True)

    venue: str
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None


class Image(BaseModel):
    model_config = ConfigDict(frozen=True)

    url: str
    alt: str = ""


class Price(BaseModel):
    model_config = ConfigDict(frozen=True)

    min: Optional[float] = None
    max: Optional[float] = None
    currency: str = "BRL"
    is_free: bool = False


class NormalizedEventRecord(BaseModel):
    """Canonical event. Identity is ``content_hash``."""
    model_config = ConfigDict(frozen=True)

    title: str = Field(max_length=200)
    date: Optional[datetime] = None
    location: Location
    image: Optional[Image] = None
    price: Optional[Price] = None
    description: Optional[str] = None
    organizer: Optional[str] = None
    url: Optional[str] = None
    category: str = "outros"
    category_confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    tags: FrozenSet[str] = frozenset()
    quality_score: float = Field(default=0.0, ge=0.0, le=1.0)
    content_hash: str
    source: str
    search_term: Optional[str] = None
    is_regional: bool = False
    scraped_at: datetime = Field(default_factory=utcnow)


class ClassificationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    category: str
    confidence: float
    matched_keywords: List[str] = Field(default_factory=list)
    alternative_categories: List[Dict[str, Any]] = Field(default_factory=list)
    tags: FrozenSet[str] = frozenset()


class ProcessingResult(BaseModel):
    success: bool
    data: Optional[NormalizedEventRecord] = None
    errors: List[str] = Field(default_factory=list)
    source: Optional[str] = None


class BatchResult(BaseModel):
    successful: List[NormalizedEventRecord] = Field(default_factory=list)
    rejected: List[ProcessingResult] = Field(default_factory=list)
    errors: List[Dict[str, Any]] = Field(default_factory=list)

    @property
    def success_rate(self) -> float:
        total = len(self.successful) + len(self.rejected) + len(self.errors)
        return len(self.successful) / total if total else 0.0


class ErrorOutcome(BaseModel):
    """What the error classifier decided about one failure."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    error: ScrapingError
    should_retry: bool
    is_critical: bool
    recommendation: str


class RetryConfig(BaseModel):
    """Retry budget for a single ``execute_with_retry`` call (seconds)."""
    max_retries: int = Field(default=3, ge=0)
    base_delay: float = Field(default=1.0, ge=0.0)
    max_delay: float = Field(default=30.0, ge=0.0)


class CircuitState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class RateLimiterStats(BaseModel):
    total_requests: int = 0
    rate_limit_hits: int = 0
    total_wait_time: float = 0.0
    average_delay: float = 0.0
    current_delay: float = 0.0
    retry_count: int = 0
    efficiency: float = 100.0


class NavigationResponse(BaseModel):
    url: str
    status: int
    headers: Dict[str, str] = Field(default_factory=dict)
    latency_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 400


class UpsertResult(str, Enum):
    INSERTED = "inserted"
    DUPLICATE = "duplicate"
    ERROR = "error"


# --------------------------------------------------------------------- #
# Scrape runs


class DateRange(str, Enum):
    ANY = "any"
    TODAY = "today"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"


class ScrapeFilters(BaseModel):
    max_events: int = Field(default=50, ge=1)
    categories: List[str] = Field(default_factory=list)
    date_range: DateRange = DateRange.ANY
    include_regional: bool = True
    include_national: bool = True


class SearchDimension(BaseModel):
    """One search term issued against a source, with its origin."""
    model_config = ConfigDict(frozen=True)

    term: str
    kind: str  # regional | national | category
    max_results: int = 10
    category: Optional[str] = None

    @property
    def is_regional(self) -> bool:
        return self.kind == "regional"


class RunStats(BaseModel):
    total_attempts: int = 0
    successful_events: int = 0
    rejected_events: int = 0
    errors: int = 0
    duplicates_removed: int = 0
    duration_ms: int = 0
    persisted: int = 0
    persist_duplicates: int = 0
    persist_errors: int = 0


class ScrapeResult(BaseModel):
    source: str
    events: List[NormalizedEventRecord] = Field(default_factory=list)
    stats: RunStats = Field(default_factory=RunStats)
    error: Optional[str] = None


# --------------------------------------------------------------------- #
# Structure monitoring


class SelectorHealth(BaseModel):
    name: str
    found: bool = False
    element_count: int = 0
    working_selector: Optional[str] = None
    all_selectors: List[str] = Field(default_factory=list)
    suggested_selector: Optional[str] = None
    error: Optional[str] = None

    @property
    def health(self) -> int:
        return 100 if self.element_count > 0 else 0


class StructureCheck(BaseModel):
    has_title: bool = False
    has_events: bool = False
    has_navigation: bool = False
    has_footer: bool = False
    page_loaded: bool = False

    def signals(self) -> List[bool]:
        return [self.has_title, self.has_events, self.has_navigation, self.has_footer, self.page_loaded]


class StructureCheckResult(BaseModel):
    source: str
    success: bool = False
    url: Optional[str] = None
    selectors: Dict[str, SelectorHealth] = Field(default_factory=dict)
    structure: StructureCheck = Field(default_factory=StructureCheck)
    overall_health: int = 0
    error: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)

    @property
    def failing_selectors(self) -> List[str]:
        return [name for name, sel in self.selectors.items() if not sel.found]


class StructureAlert(BaseModel):
    id: str
    source: str
    severity: str  # medium | high | critical
    message: str
    consecutive_failures: int
    health: int
    failing_selectors: List[str] = Field(default_factory=list)
    suggestions: Dict[str, List[str]] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)
    resolved: bool = False
    resolved_at: Optional[datetime] = None
