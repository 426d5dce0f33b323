"""
Source contract.

A scraper only knows how to turn one listing card into a
:class:`RawEventRecord`; navigation, rate limiting, retries and validation
belong to :class:`core.orchestrator.ScraperOrchestrator`.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Iterator, List, Optional, Sequence, Union
from urllib.parse import quote, urljoin, urlparse

from .config import SearchConfig, SourceConfig
from .interfaces import Element
from .models import RawEventRecord, ScrapeFilters, SearchDimension

logger = logging.getLogger(__name__)

Selectors = Union[str, Sequence[str]]


def _selector_list(selectors: Selectors) -> List[str]:
    if isinstance(selectors, str):
        return [selectors]
    return list(selectors)


class Scraper(ABC):
    """Base class for a listing source (Sympla, Eventbrite...)."""

    def __init__(self, config: SourceConfig, search: Optional[SearchConfig] = None) -> None:
        self.config = config
        self.search = search or SearchConfig()

    @property
    @abstractmethod
    def name(self) -> str:
        """Key of this source in ``config.yml``."""
        pass

    @property
    def domain(self) -> str:
        return urlparse(self.config.base_url).hostname or self.config.base_url

    def build_search_url(self, term: str) -> str:
        return self.config.search_url.format(term=quote(term, safe=""))

    def search_dimensions(self, filters: ScrapeFilters) -> Iterator[SearchDimension]:
        """Regional terms, then national terms, then one term set per requested category."""
        if filters.include_regional:
            for term in self.search.regional_terms:
                yield SearchDimension(term=term, kind="regional", max_results=self.search.regional_max_results)
        if filters.include_national:
            for term in self.search.national_terms:
                yield SearchDimension(term=term, kind="national", max_results=self.search.national_max_results)
        for category in filters.categories:
            terms = self.search.category_terms.get(category)
            if not terms:
                logger.debug(f"No search terms configured for category {category}")
                continue
            for term in terms:
                yield SearchDimension(
                    term=term,
                    kind="category",
                    max_results=self.search.category_max_results,
                    category=category,
                )

    # ---------------------------------------------- #
    # Extraction helpers
    @staticmethod
    async def extract_text(element: Element, selectors: Selectors) -> Optional[str]:
        """First non-empty text among ``selectors``; None means the field is absent."""
        for selector in _selector_list(selectors):
            text = await element.text(selector)
            if text and text.strip():
                return text.strip()
        return None

    @staticmethod
    async def extract_attribute(element: Element, selectors: Selectors, attribute: str) -> Optional[str]:
        for selector in _selector_list(selectors):
            value = await element.attr(selector, attribute)
            if value and value.strip():
                return value.strip()
        return None

    async def extract_field(self, element: Element, field: str) -> Optional[str]:
        return await self.extract_text(element, self.config.selector_list(field))

    # ---------------------------------------------- #
    # URL helpers
    def absolute_url(self, url: Optional[str]) -> Optional[str]:
        if not url:
            return None
        return urljoin(self.config.base_url, url)

    def image_url(self, url: Optional[str]) -> Optional[str]:
        if not url:
            return None
        if url.startswith("//"):
            return "https:" + url
        url = self.absolute_url(url)
        return url.replace("http://", "https://", 1) if url.startswith("http://") else url

    @abstractmethod
    async def extract_event_data(self, element: Element, dimension: SearchDimension) -> Optional[RawEventRecord]:
        """Read one listing card. Return None when the card is not an event."""
        pass
