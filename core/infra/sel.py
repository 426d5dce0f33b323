"""
sel.py - Async Playwright backend for the :class:`core.interfaces.Browser` surface.

Use it for listing pages that render client-side:

    async with PlaywrightBrowser(headless=True) as browser:
        async with browser.session() as page:
            await page.navigate("https://www.sympla.com.br/eventos")
            cards = await page.query(".sympla-card")
"""

from __future__ import annotations

import asyncio
import logging
import time
from types import TracebackType
from typing import Any, Dict, List, Mapping, Optional, Type

try:
    from playwright.async_api import (
        async_playwright,
        Browser as PwBrowser,
        BrowserContext,
        BrowserType,
        ElementHandle,
        Error as PlaywrightError,
        Page as PwPage,
        TimeoutError as PlaywrightTimeout,
    )
except ImportError as e:  # pragma: no cover
    raise ImportError(
        "Package 'playwright' is required.  Install with:  pip install playwright"
    ) from e

from core.interfaces import Browser, Element, Page
from core.models import NavigationResponse

logger = logging.getLogger(__name__)

DEFAULT_LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
]


class PlaywrightElement(Element):
    def __init__(self, handle: ElementHandle) -> None:
        self._handle = handle

    async def _find(self, selector: Optional[str]) -> Optional[ElementHandle]:
        if not selector:
            return self._handle
        return await self._handle.query_selector(selector)

    async def text(self, selector: Optional[str] = None) -> Optional[str]:
        node = await self._find(selector)
        if node is None:
            return None
        text = (await node.inner_text()).strip()
        return text or None

    async def attr(self, selector: Optional[str], name: str) -> Optional[str]:
        node = await self._find(selector)
        if node is None:
            return None
        return await node.get_attribute(name)


class PlaywrightPage(Page):
    def __init__(self, page: PwPage) -> None:
        self._page = page

    async def navigate(self, url: str, timeout: float = 30.0) -> NavigationResponse:
        started = time.monotonic()
        response = await self._page.goto(url, timeout=timeout * 1000, wait_until="domcontentloaded")
        latency_ms = (time.monotonic() - started) * 1000
        if response is None:
            # same-document navigation (e.g. hash change)
            return NavigationResponse(url=self._page.url, status=200, latency_ms=latency_ms)
        return NavigationResponse(
            url=response.url,
            status=response.status,
            headers=dict(response.headers),
            latency_ms=latency_ms,
        )

    async def query(self, selector: str) -> List[Element]:
        handles = await self._page.query_selector_all(selector)
        return [PlaywrightElement(h) for h in handles]

    async def wait_for(self, selector: str, timeout: float = 10.0) -> bool:
        try:
            await self._page.wait_for_selector(selector, timeout=timeout * 1000, state="attached")
            return True
        except PlaywrightTimeout:
            return False

    async def scroll(self, times: int = 2, delay: float = 1.0) -> None:
        """Scroll to the bottom ``times`` times, stopping early once height is stable."""
        last_height = -1
        for _ in range(times):
            height = await self._page.evaluate("() => document.body.scrollHeight")
            if height == last_height:
                break
            last_height = height
            await self._page.evaluate("window.scrollTo(0, document.body.scrollHeight);")
            await asyncio.sleep(delay)

    async def title(self) -> str:
        return await self._page.title()

    async def ready_state(self) -> str:
        return await self._page.evaluate("() => document.readyState")

    async def close(self) -> None:
        try:
            await self._page.close()
        except PlaywrightError as e:
            logger.debug("Page close failed: %s", e)


class PlaywrightBrowser(Browser):
    """
    One Playwright browser + context; every :meth:`new_page` is a fresh tab.
    """

    def __init__(
        self,
        *,
        headless: bool = True,
        browser_type: str = "chromium",
        timeout: float = 30.0,
        user_agent: Optional[str] = None,
        headers: Optional[Mapping[str, str]] = None,
        extra_launch_kwargs: Optional[Dict[str, Any]] = None,
        extra_context_kwargs: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.headless = headless
        self.browser_type = browser_type.lower()
        self.timeout = timeout
        self.user_agent = user_agent
        self.headers = dict(headers or {})
        self._launch_kwargs = extra_launch_kwargs or {"args": DEFAULT_LAUNCH_ARGS}
        self._context_kwargs = extra_context_kwargs or {}

        # Internal Playwright handles
        self._playwright = None
        self._browser: Optional[PwBrowser] = None
        self._context: Optional[BrowserContext] = None
        self._start_lock = asyncio.Lock()

    async def __aenter__(self) -> "PlaywrightBrowser":
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        await self.stop()

    async def start(self) -> None:
        """Launch browser & default context if not already started."""
        async with self._start_lock:
            if self._browser:
                return

            if self.browser_type not in ("chromium", "firefox", "webkit"):
                raise ValueError(f"Unsupported browser type: {self.browser_type}")
            self._playwright = await async_playwright().start()
            launcher: BrowserType = getattr(self._playwright, self.browser_type)

            self._browser = await launcher.launch(headless=self.headless, **self._launch_kwargs)

            context_kwargs: Dict[str, Any] = {
                "ignore_https_errors": True,
                "viewport": {"width": 1366, "height": 768},
                "locale": "pt-BR",
                **self._context_kwargs,
            }
            if self.user_agent:
                context_kwargs.setdefault("user_agent", self.user_agent)
            if self.headers:
                context_kwargs.setdefault("extra_http_headers", self.headers)

            self._context = await self._browser.new_context(**context_kwargs)
            logger.info(
                "Playwright started: %s (headless=%s)", self.browser_type, self.headless
            )

    async def stop(self) -> None:
        """Gracefully close context, browser & Playwright."""
        if self._context:
            await self._context.close()
            self._context = None
        if self._browser:
            await self._browser.close()
            self._browser = None
        if self._playwright:
            await self._playwright.stop()
            self._playwright = None
        logger.info("Playwright stopped")

    async def new_page(self) -> Page:
        if not self._context:
            await self.start()
        page = await self._context.new_page()
        page.set_default_timeout(self.timeout * 1000)
        return PlaywrightPage(page)
