"""
http.py – Static-HTML browser built on *aiohttp* + *BeautifulSoup*.

For listing pages that render server-side this is a much lighter backend
than Playwright.  It implements the same :class:`core.interfaces.Browser`
surface; scrolling and readyState are no-ops because nothing runs client-side.

Retries are deliberately absent here: the orchestrator's RateLimiter and
RetryHandler own back-off, so a non-2xx response is returned, not raised.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Dict, List, Mapping, Optional

import aiohttp
from bs4 import BeautifulSoup, Tag

from core.interfaces import Browser, Element, Page
from core.models import NavigationResponse

logger = logging.getLogger(__name__)


def parse_retry_after(header_val: Optional[str]) -> Optional[float]:
    """Return seconds given a Retry-After header value (delta-seconds or HTTP-date)."""
    if header_val is None:
        return None
    header_val = str(header_val).strip()
    if not header_val:
        return None
    # seconds
    try:
        return max(0.0, float(header_val))
    except ValueError:
        pass
    # HTTP-date
    try:
        retry_at = parsedate_to_datetime(header_val)
    except (TypeError, ValueError):
        return None
    if retry_at.tzinfo is None:
        retry_at = retry_at.replace(tzinfo=timezone.utc)
    return max(0.0, (retry_at - datetime.now(timezone.utc)).total_seconds())


class HttpClient:
    """
    Thin wrapper over *aiohttp.ClientSession* adding:

    * global & per-request headers (keeps user-agent in one place)
    * async context-manager support
    """

    def __init__(
        self,
        *,
        session: Optional[aiohttp.ClientSession] = None,
        timeout: float = 30.0,
        default_headers: Optional[Mapping[str, str]] = None,
    ) -> None:
        self._external_session = session
        self._timeout = timeout
        self._own_session: Optional[aiohttp.ClientSession] = None
        self._default_headers: Dict[str, str] = dict(default_headers or {})

    async def __aenter__(self) -> "HttpClient":
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._external_session:
            return self._external_session
        if self._own_session is None or self._own_session.closed:
            timeout = aiohttp.ClientTimeout(total=self._timeout)
            self._own_session = aiohttp.ClientSession(timeout=timeout, headers=self._default_headers)
        return self._own_session

    async def close(self) -> None:
        if self._own_session and not self._own_session.closed:
            await self._own_session.close()
            self._own_session = None

    async def get_page(self, url: str, *, timeout: Optional[float] = None) -> tuple[NavigationResponse, str]:
        """GET ``url``; returns the response summary and body text whatever the status."""
        session = await self._ensure_session()
        kwargs = {}
        if timeout is not None:
            kwargs["timeout"] = aiohttp.ClientTimeout(total=timeout)

        started = time.monotonic()
        async with session.get(url, **kwargs) as resp:
            body = await resp.text(errors="replace")
            response = NavigationResponse(
                url=str(resp.url),
                status=resp.status,
                headers={k: v for k, v in resp.headers.items()},
                latency_ms=(time.monotonic() - started) * 1000,
            )
        logger.debug("GET %s -> %d (%.0fms)", url, response.status, response.latency_ms)
        return response, body


# --------------------------------------------------------------------- #
# Browser adapter


class SoupElement(Element):
    def __init__(self, tag: Tag) -> None:
        self._tag = tag

    def _find(self, selector: Optional[str]) -> Optional[Tag]:
        if not selector:
            return self._tag
        return self._tag.select_one(selector)

    async def text(self, selector: Optional[str] = None) -> Optional[str]:
        node = self._find(selector)
        if node is None:
            return None
        text = node.get_text(" ", strip=True)
        return text or None

    async def attr(self, selector: Optional[str], name: str) -> Optional[str]:
        node = self._find(selector)
        if node is None:
            return None
        value = node.get(name)
        if isinstance(value, list):
            value = " ".join(value)
        return value or None


class StaticPage(Page):
    def __init__(self, client: HttpClient) -> None:
        self._client = client
        self._soup: Optional[BeautifulSoup] = None

    def _document(self) -> BeautifulSoup:
        if self._soup is None:
            raise RuntimeError("page has not navigated yet")
        return self._soup

    async def navigate(self, url: str, timeout: float = 30.0) -> NavigationResponse:
        response, body = await self._client.get_page(url, timeout=timeout)
        self._soup = BeautifulSoup(body, "html.parser")
        return response

    async def query(self, selector: str) -> List[Element]:
        return [SoupElement(tag) for tag in self._document().select(selector)]

    async def wait_for(self, selector: str, timeout: float = 10.0) -> bool:
        # The document is complete once downloaded; no point polling
        return self._document().select_one(selector) is not None

    async def title(self) -> str:
        soup = self._document()
        return soup.title.get_text(strip=True) if soup.title else ""

    async def ready_state(self) -> str:
        return "complete" if self._soup is not None else "loading"

    async def close(self) -> None:
        self._soup = None


class StaticBrowser(Browser):
    """aiohttp-backed browser; pages share one client session."""

    def __init__(
        self,
        *,
        timeout: float = 30.0,
        user_agent: Optional[str] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> None:
        default_headers = dict(headers or {})
        if user_agent:
            default_headers.setdefault("User-Agent", user_agent)
        self._client = HttpClient(timeout=timeout, default_headers=default_headers)

    async def start(self) -> None:
        await self._client._ensure_session()
        logger.info("Static HTTP browser started")

    async def stop(self) -> None:
        await self._client.close()
        logger.info("Static HTTP browser stopped")

    async def new_page(self) -> Page:
        return StaticPage(self._client)
