"""
Card extraction for Sympla listing pages.
"""

import logging
from typing import Optional

from core.interfaces import Element
from core.models import RawEventRecord, SearchDimension
from core.scraper import Scraper

logger = logging.getLogger(__name__)

MIN_TITLE_LENGTH = 3


class SymplaScraper(Scraper):
    """Sympla cards carry title/date/location as text and the event link as an anchor."""

    @property
    def name(self) -> str:
        return "sympla"

    async def extract_event_data(self, element: Element, dimension: SearchDimension) -> Optional[RawEventRecord]:
        title = await self.extract_field(element, "title")
        if not title or len(title) < MIN_TITLE_LENGTH:
            logger.debug("Sympla card without a usable title, skipping")
            return None

        image = await self.extract_attribute(element, self.config.selector_list("image"), "src")
        link = await self.extract_attribute(element, self.config.selector_list("link"), "href")
        if link is None:
            # the whole card is sometimes the anchor
            link = await element.attr(None, "href")

        return RawEventRecord(
            source=self.name,
            title=title,
            date_text=await self.extract_field(element, "date"),
            location_text=await self.extract_field(element, "location"),
            image_url=self.image_url(image),
            price_text=await self.extract_field(element, "price"),
            description=await self.extract_field(element, "description"),
            organizer=await self.extract_field(element, "organizer"),
            url=self.absolute_url(link),
            search_term=dimension.term,
            is_regional=dimension.is_regional,
        )
