"""
Card extraction for Eventbrite Brasil search results.
"""

import logging
from typing import Optional

from core.interfaces import Element
from core.models import RawEventRecord, SearchDimension
from core.scraper import Scraper

logger = logging.getLogger(__name__)


class EventbriteScraper(Scraper):

    @property
    def name(self) -> str:
        return "eventbrite"

    async def _image(self, element: Element) -> Optional[str]:
        selectors = self.config.selector_list("image")
        # lazy-loaded images keep the real URL in data-src until scrolled into view
        src = await self.extract_attribute(element, selectors, "src")
        if src is None or src.startswith("data:"):
            src = await self.extract_attribute(element, selectors, "data-src") or src
        return self.image_url(src)

    async def extract_event_data(self, element: Element, dimension: SearchDimension) -> Optional[RawEventRecord]:
        title = await self.extract_field(element, "title")
        if not title:
            logger.debug("Eventbrite card without title, skipping")
            return None

        return RawEventRecord(
            source=self.name,
            title=title,
            date_text=await self.extract_field(element, "date"),
            location_text=await self.extract_field(element, "location"),
            image_url=await self._image(element),
            price_text=await self.extract_field(element, "price"),
            description=await self.extract_field(element, "description"),
            organizer=await self.extract_field(element, "organizer"),
            url=self.absolute_url(await self.extract_attribute(element, self.config.selector_list("link"), "href")),
            search_term=dimension.term,
            is_regional=dimension.is_regional,
        )
