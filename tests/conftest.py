from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, Union

import pytest

from core.config import Settings, load_settings
from core.interfaces import Browser, Element, Page
from core.models import Location, NavigationResponse, NormalizedEventRecord
from processors.date_parser import BRT, DateParser

ROOT = Path(__file__).resolve().parent.parent

# the suite's "today"
NOW = datetime(2026, 10, 19, 12, 0, tzinfo=BRT)


class FakeClock:
    """Monotonic clock that only moves when something sleeps on it."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeElement(Element):
    def __init__(
        self,
        fields: Optional[Dict[str, str]] = None,
        attrs: Optional[Dict[Tuple[Optional[str], str], str]] = None,
        error: Optional[Exception] = None,
    ) -> None:
        self.fields = fields or {}
        self.attrs = attrs or {}
        self.error = error

    async def text(self, selector: Optional[str] = None) -> Optional[str]:
        if self.error is not None:
            raise self.error
        return self.fields.get(selector)

    async def attr(self, selector: Optional[str], name: str) -> Optional[str]:
        if self.error is not None:
            raise self.error
        return self.attrs.get((selector, name))


Step = Union[int, NavigationResponse, Exception]


class FakePage(Page):
    """
    ``responses`` is consumed one entry per navigation (status code, full
    response or exception to raise); once empty every navigation returns 200.
    """

    def __init__(
        self,
        elements: Optional[Dict[str, List[Element]]] = None,
        responses: Sequence[Step] = (),
        title: str = "Eventos",
        ready: str = "complete",
    ) -> None:
        self.elements = elements or {}
        self.responses = list(responses)
        self._title = title
        self._ready = ready
        self.visited: List[str] = []
        self.closed = False
        self.close_count = 0

    async def navigate(self, url: str, timeout: float = 30.0) -> NavigationResponse:
        self.visited.append(url)
        step: Step = self.responses.pop(0) if self.responses else 200
        if isinstance(step, Exception):
            raise step
        if isinstance(step, int):
            return NavigationResponse(url=url, status=step, latency_ms=100.0)
        return step

    async def query(self, selector: str) -> List[Element]:
        return list(self.elements.get(selector, []))

    async def wait_for(self, selector: str, timeout: float = 10.0) -> bool:
        return any(self.elements.get(part.strip()) for part in selector.split(","))

    async def title(self) -> str:
        return self._title

    async def ready_state(self) -> str:
        return self._ready

    async def close(self) -> None:
        self.closed = True
        self.close_count += 1


class FakeBrowser(Browser):
    """Hands out the same page every time so tests can inspect it afterwards."""

    def __init__(self, page: FakePage) -> None:
        self.page = page
        self.pages_opened = 0
        self.started = False

    async def start(self) -> None:
        self.started = True

    async def stop(self) -> None:
        self.started = False

    async def new_page(self) -> Page:
        self.pages_opened += 1
        self.page.closed = False
        return self.page


def make_record(
    title: str = "Show de Rock no Parque",
    venue: str = "Parque da Cidade",
    date: Optional[datetime] = datetime(2026, 11, 15, 20, 0, tzinfo=BRT),
    content_hash: str = "a" * 64,
    **overrides,
) -> NormalizedEventRecord:
    data = dict(
        title=title,
        date=date,
        location=Location(venue=venue, city="Ji-Paraná", state="RO"),
        category="shows",
        category_confidence=0.9,
        tags=frozenset({"rock"}),
        quality_score=0.8,
        content_hash=content_hash,
        source="sympla",
    )
    data.update(overrides)
    return NormalizedEventRecord(**data)


@pytest.fixture
def settings() -> Settings:
    return load_settings(ROOT / "config.yml", env={"DATABASE_URL": "sqlite:///:memory:"})


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def date_parser() -> DateParser:
    return DateParser(now=lambda: NOW)
