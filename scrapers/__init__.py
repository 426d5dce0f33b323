"""
Source registry: ``config.yml`` scraper key -> Scraper class.
"""

from typing import Dict, Optional, Type

from core.config import SearchConfig, SourceConfig
from core.errors import ConfigurationError
from core.scraper import Scraper

from .eventbrite import EventbriteScraper
from .sympla import SymplaScraper

SCRAPERS: Dict[str, Type[Scraper]] = {
    "sympla": SymplaScraper,
    "eventbrite": EventbriteScraper,
}


def create_scraper(name: str, config: SourceConfig, search: Optional[SearchConfig] = None) -> Scraper:
    try:
        scraper_cls = SCRAPERS[name]
    except KeyError:
        raise ConfigurationError(f"Unknown scraper: {name}. Available: {', '.join(SCRAPERS)}") from None
    return scraper_cls(config, search)
