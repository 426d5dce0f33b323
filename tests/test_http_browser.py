from __future__ import annotations

from datetime import datetime, timedelta, timezone
from email.utils import format_datetime

import pytest

from core.infra.http import StaticPage, parse_retry_after
from core.models import NavigationResponse

LISTING = """
<html>
  <head><title>Eventos em Ji-Paraná</title></head>
  <body>
    <nav>menu</nav>
    <div class="sympla-card">
      <h3 class="sympla-card__title">Show de Rock</h3>
      <a href="/e/show-de-rock/1">ver</a>
    </div>
    <div class="sympla-card">
      <h3 class="sympla-card__title">  Festival de Jazz </h3>
      <img class="cover" src="/img/jazz.png">
    </div>
    <footer>rodapé</footer>
  </body>
</html>
"""


class FakeClient:
    def __init__(self, body: str, status: int = 200) -> None:
        self.body = body
        self.status = status
        self.requested = []

    async def get_page(self, url, *, timeout=None):
        self.requested.append((url, timeout))
        return NavigationResponse(url=url, status=self.status), self.body


@pytest.mark.asyncio
async def test_static_page_queries_downloaded_html() -> None:
    client = FakeClient(LISTING)
    page = StaticPage(client)

    response = await page.navigate("https://www.sympla.com.br/eventos", timeout=5)
    cards = await page.query(".sympla-card")

    assert response.ok
    assert client.requested == [("https://www.sympla.com.br/eventos", 5)]
    assert len(cards) == 2
    assert await cards[0].text(".sympla-card__title") == "Show de Rock"
    assert await cards[1].text(".sympla-card__title") == "Festival de Jazz"
    assert await cards[0].attr("a", "href") == "/e/show-de-rock/1"
    assert await cards[1].attr("img", "class") == "cover"
    assert await cards[1].attr("a", "href") is None
    assert await page.title() == "Eventos em Ji-Paraná"
    assert await page.ready_state() == "complete"
    assert await page.wait_for(".sympla-card, .event-item")
    assert not await page.wait_for(".event-item")


@pytest.mark.asyncio
async def test_error_status_is_returned_not_raised() -> None:
    page = StaticPage(FakeClient("<html></html>", status=503))

    response = await page.navigate("https://www.sympla.com.br/eventos")

    assert response.status == 503
    assert not response.ok
    assert await page.query(".sympla-card") == []


@pytest.mark.asyncio
async def test_query_before_navigation_fails() -> None:
    page = StaticPage(FakeClient(LISTING))

    assert await page.ready_state() == "loading"
    with pytest.raises(RuntimeError):
        await page.query("div")


def test_parse_retry_after() -> None:
    assert parse_retry_after("120") == 120.0
    assert parse_retry_after(" 2.5 ") == 2.5
    assert parse_retry_after(None) is None
    assert parse_retry_after("soon") is None

    past = format_datetime(datetime(2001, 1, 1, tzinfo=timezone.utc), usegmt=True)
    assert parse_retry_after(past) == 0.0

    future = format_datetime(datetime.now(timezone.utc) + timedelta(seconds=90), usegmt=True)
    assert 80 <= parse_retry_after(future) <= 90
