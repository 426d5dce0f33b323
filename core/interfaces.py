"""
Core interfaces for the event scraper.

The scraping core only talks to a browser and a persistence sink through
these abstractions; ``core.infra`` provides Playwright and aiohttp-based
browsers, ``sinks`` provides the SQLite sink.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional

from .models import NavigationResponse, NormalizedEventRecord, UpsertResult


class Element(ABC):
    """A DOM element returned by :meth:`Page.query`."""

    @abstractmethod
    async def text(self, selector: Optional[str] = None) -> Optional[str]:
        """Inner text of the first descendant matching ``selector`` (or of self)."""
        ...

    @abstractmethod
    async def attr(self, selector: Optional[str], name: str) -> Optional[str]:
        """Attribute ``name`` of the first descendant matching ``selector`` (or of self)."""
        ...


class Page(ABC):
    """One browser tab. Navigation is strictly sequential per page."""

    @abstractmethod
    async def navigate(self, url: str, timeout: float = 30.0) -> NavigationResponse:
        ...

    @abstractmethod
    async def query(self, selector: str) -> List[Element]:
        ...

    @abstractmethod
    async def wait_for(self, selector: str, timeout: float = 10.0) -> bool:
        """True once ``selector`` matches, False if ``timeout`` elapses first."""
        ...

    async def scroll(self, times: int = 2, delay: float = 1.0) -> None:
        """Trigger lazy-loaded content. Static pages have nothing to scroll."""
        return None

    @abstractmethod
    async def title(self) -> str:
        ...

    @abstractmethod
    async def ready_state(self) -> str:
        ...

    @abstractmethod
    async def close(self) -> None:
        ...


class Browser(ABC):
    """Factory for pages, with an explicit start/stop lifecycle."""

    @abstractmethod
    async def start(self) -> None:
        ...

    @abstractmethod
    async def stop(self) -> None:
        ...

    @abstractmethod
    async def new_page(self) -> Page:
        ...

    @asynccontextmanager
    async def session(self) -> AsyncIterator[Page]:
        """Scoped page: closed on every exit path, cancellation included."""
        page = await self.new_page()
        try:
            yield page
        finally:
            await page.close()

    async def __aenter__(self) -> "Browser":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()


class EventSink(ABC):
    """Idempotent persistence keyed by ``content_hash``."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable name for this sink."""
        pass

    @abstractmethod
    async def upsert(self, record: NormalizedEventRecord) -> UpsertResult:
        pass

    async def connect(self) -> None:
        pass

    async def close(self) -> None:
        pass

    async def __aenter__(self) -> "EventSink":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
