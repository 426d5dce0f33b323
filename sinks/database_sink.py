"""
Database sink for persisting normalized events to SQLite.
"""

import json
import logging
from typing import Any, Dict, Optional

import aiosqlite

from core.infra.db import Database
from core.interfaces import EventSink
from core.models import NormalizedEventRecord, UpsertResult


logger = logging.getLogger(__name__)


class EventDatabaseSink(EventSink):
    """Idempotent event store: a second upsert of the same content hash is a no-op."""

    TABLE = "events"

    def __init__(self, db_url: str = "events.db", db: Optional[Database] = None):
        self.db = db or Database(db_url)

    @property
    def name(self) -> str:
        return "EventDatabaseSink"

    async def connect(self) -> None:
        """Raises DatabaseError when the store cannot be opened."""
        await self.db.connect()

    async def close(self) -> None:
        await self.db.close()

    @staticmethod
    def _row(record: NormalizedEventRecord) -> Dict[str, Any]:
        location = record.location
        return {
            "content_hash": record.content_hash,
            "title": record.title,
            "event_date": record.date.isoformat() if record.date else None,
            "venue": location.venue,
            "address": location.address,
            "city": location.city,
            "state": location.state,
            "image_url": record.image.url if record.image else None,
            "price_min": record.price.min if record.price else None,
            "price_max": record.price.max if record.price else None,
            "currency": record.price.currency if record.price else None,
            "is_free": int(bool(record.price and record.price.is_free)),
            "description": record.description,
            "organizer": record.organizer,
            "url": record.url,
            "category": record.category,
            "category_confidence": record.category_confidence,
            "tags": json.dumps(sorted(record.tags), ensure_ascii=False),
            "quality_score": record.quality_score,
            "source": record.source,
            "search_term": record.search_term,
            "is_regional": int(record.is_regional),
            "scraped_at": record.scraped_at.isoformat(),
        }

    async def upsert(self, record: NormalizedEventRecord) -> UpsertResult:
        if not self.db.is_connected:
            await self.connect()
        try:
            written = await self.db.insert_ignore(self.TABLE, self._row(record), ["content_hash"])
        except aiosqlite.Error as e:
            logger.error(f"Failed to store event {record.content_hash[:12]} ({record.title!r}): {e}")
            return UpsertResult.ERROR

        if written:
            logger.debug(f"Stored event {record.title!r}")
            return UpsertResult.INSERTED
        logger.debug(f"Event already stored: {record.title!r}")
        return UpsertResult.DUPLICATE

    async def count(self) -> int:
        row = await self.db.fetch_one(f"SELECT COUNT(*) FROM {self.TABLE}")
        return row[0] if row else 0
