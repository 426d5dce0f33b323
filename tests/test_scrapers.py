from __future__ import annotations

import pytest

from conftest import FakeElement
from core.errors import ConfigurationError
from core.models import ScrapeFilters, SearchDimension
from core.scraper import Scraper
from scrapers import SCRAPERS, create_scraper
from scrapers.eventbrite import EventbriteScraper
from scrapers.sympla import SymplaScraper

REGIONAL = SearchDimension(term="Ji-Paraná", kind="regional")
NATIONAL = SearchDimension(term="show nacional", kind="national")


@pytest.fixture
def sympla(settings) -> SymplaScraper:
    return create_scraper("sympla", settings.source("sympla"), settings.search)


@pytest.fixture
def eventbrite(settings) -> EventbriteScraper:
    return create_scraper("eventbrite", settings.source("eventbrite"), settings.search)


def test_registry(settings, sympla, eventbrite) -> None:
    assert set(SCRAPERS) == {"sympla", "eventbrite"}
    assert isinstance(sympla, SymplaScraper)
    assert sympla.domain == "www.sympla.com.br"
    assert eventbrite.domain == "www.eventbrite.com.br"

    with pytest.raises(ConfigurationError):
        create_scraper("ticketmaster", settings.source("sympla"))


def test_build_search_url_quotes_terms(sympla, eventbrite) -> None:
    assert sympla.build_search_url("show nacional") == "https://www.sympla.com.br/eventos?q=show%20nacional"
    assert sympla.build_search_url("Ji-Paraná") == "https://www.sympla.com.br/eventos?q=Ji-Paran%C3%A1"
    assert eventbrite.build_search_url("rock & blues") == (
        "https://www.eventbrite.com.br/d/brazil/events/?q=rock%20%26%20blues"
    )


def test_search_dimensions_order(sympla, settings) -> None:
    dimensions = list(sympla.search_dimensions(ScrapeFilters(categories=["teatro", "unknown"])))

    kinds = [d.kind for d in dimensions]
    assert kinds == sorted(kinds, key=["regional", "national", "category"].index)
    assert dimensions[0].term == "Ji-Paraná"
    assert dimensions[0].max_results == settings.search.regional_max_results
    category_terms = [d.term for d in dimensions if d.kind == "category"]
    assert category_terms == ["teatro", "peça", "espetáculo"]
    assert all(d.category == "teatro" for d in dimensions if d.kind == "category")


def test_search_dimensions_respect_filters(sympla) -> None:
    filters = ScrapeFilters(include_regional=False, include_national=False, categories=["tecnologia"])

    assert [d.term for d in sympla.search_dimensions(filters)] == ["tech", "tecnologia", "hackathon"]


@pytest.mark.asyncio
async def test_extract_text_uses_first_non_empty_selector() -> None:
    element = FakeElement(fields={".b": "  segundo  ", ".c": "terceiro"})

    assert await Scraper.extract_text(element, [".a", ".b", ".c"]) == "segundo"
    assert await Scraper.extract_text(element, ".a") is None
    assert await Scraper.extract_attribute(FakeElement(attrs={(".x", "href"): "/e/1"}), [".w", ".x"], "href") == "/e/1"


@pytest.mark.asyncio
async def test_sympla_card(sympla) -> None:
    element = FakeElement(
        fields={
            ".event-title": "Festival de Jazz",
            ".sympla-card__date": "15/11/2026",
            ".sympla-card__location": "Teatro Municipal, Porto Velho, RO",
            ".sympla-card__price": "R$ 40,00",
        },
        attrs={
            (".sympla-card__image img", "src"): "//images.sympla.com.br/jazz.png",
            ('a[href*="/e/"]', "href"): "/e/festival-de-jazz/99",
        },
    )

    raw = await sympla.extract_event_data(element, REGIONAL)

    assert raw.source == "sympla"
    assert raw.title == "Festival de Jazz"
    assert raw.date_text == "15/11/2026"
    assert raw.price_text == "R$ 40,00"
    assert raw.description is None
    assert raw.image_url == "https://images.sympla.com.br/jazz.png"
    assert raw.url == "https://www.sympla.com.br/e/festival-de-jazz/99"
    assert raw.search_term == "Ji-Paraná"
    assert raw.is_regional


@pytest.mark.asyncio
async def test_sympla_card_that_is_itself_the_link(sympla) -> None:
    element = FakeElement(fields={".sympla-card__title": "Show de Rock"}, attrs={(None, "href"): "/e/rock/1"})

    raw = await sympla.extract_event_data(element, NATIONAL)

    assert raw.url == "https://www.sympla.com.br/e/rock/1"
    assert not raw.is_regional


@pytest.mark.asyncio
async def test_cards_without_title_are_skipped(sympla, eventbrite) -> None:
    assert await sympla.extract_event_data(FakeElement(fields={".sympla-card__title": "ab"}), REGIONAL) is None
    assert await eventbrite.extract_event_data(FakeElement(), NATIONAL) is None


@pytest.mark.asyncio
async def test_eventbrite_lazy_image(eventbrite) -> None:
    element = FakeElement(
        fields={'[data-testid="event-title"]': "Conferência de Tecnologia"},
        attrs={
            ('[data-testid="event-image"] img', "src"): "data:image/gif;base64,R0lGOD",
            ('[data-testid="event-image"] img', "data-src"): "https://img.evbuc.com/conf.jpg",
            ('a[href*="/e/"]', "href"): "https://www.eventbrite.com.br/e/conf-123",
        },
    )

    raw = await eventbrite.extract_event_data(element, NATIONAL)

    assert raw.image_url == "https://img.evbuc.com/conf.jpg"
    assert raw.url == "https://www.eventbrite.com.br/e/conf-123"
    assert raw.source == "eventbrite"
