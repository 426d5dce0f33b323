"""
Database infrastructure with SQLite and async support.
"""

import logging
import sqlite3
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import aiosqlite

from core.errors import DatabaseError


logger = logging.getLogger(__name__)

# (version, statements) applied in order, each once
MIGRATIONS: List[Tuple[int, Sequence[str]]] = [
    (
        1,
        (
            """
            CREATE TABLE IF NOT EXISTS events (
                content_hash TEXT PRIMARY KEY,
                title TEXT NOT NULL,
                event_date TEXT,
                venue TEXT NOT NULL,
                address TEXT,
                city TEXT,
                state TEXT,
                image_url TEXT,
                price_min REAL,
                price_max REAL,
                currency TEXT,
                is_free INTEGER NOT NULL DEFAULT 0,
                description TEXT,
                organizer TEXT,
                url TEXT,
                category TEXT NOT NULL,
                category_confidence REAL NOT NULL,
                tags TEXT,
                quality_score REAL NOT NULL,
                source TEXT NOT NULL,
                search_term TEXT,
                is_regional INTEGER NOT NULL DEFAULT 0,
                scraped_at TEXT NOT NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
            """,
            "CREATE INDEX IF NOT EXISTS idx_events_date ON events (event_date)",
            "CREATE INDEX IF NOT EXISTS idx_events_category ON events (category)",
        ),
    ),
]


def parse_db_url(db_url: str) -> str:
    """``sqlite+aiosqlite:///data/events.db`` / ``sqlite:///x.db`` / plain path -> path."""
    if db_url.startswith("sqlite"):
        if "///" in db_url:
            return db_url.split("///", 1)[-1]
        return db_url.split("//", 1)[-1]
    return db_url


class Database:
    """Async SQLite database wrapper."""

    def __init__(self, db_url: str = "events.db"):
        path = parse_db_url(db_url)
        self.in_memory = path == ":memory:"
        self.db_path = path if self.in_memory else Path(path)
        self._connection: Optional[aiosqlite.Connection] = None

    @property
    def is_connected(self) -> bool:
        return self._connection is not None

    async def connect(self) -> None:
        """Connect to the database and run migrations."""
        if self._connection:
            return

        try:
            if not self.in_memory:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
            # Open connection with a longer busy timeout
            self._connection = await aiosqlite.connect(self.db_path, timeout=30)
            self._connection.row_factory = aiosqlite.Row
            # WAL lets the monitor/CLI read while a scrape writes
            await self._connection.execute("PRAGMA journal_mode=WAL;")
            await self._connection.execute("PRAGMA busy_timeout=30000;")
            await self._run_migrations()
        except (sqlite3.Error, OSError) as e:
            await self.close()
            raise DatabaseError(f"database connection failed: {e}", {"path": str(self.db_path)}) from e
        logger.info(f"Connected to database {self.db_path}")

    async def close(self) -> None:
        """Close the database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None

    @asynccontextmanager
    async def transaction(self):
        """Context manager for database transactions."""
        if not self._connection:
            await self.connect()

        try:
            await self._connection.execute("BEGIN")
            yield self._connection
            await self._connection.commit()
        except Exception:
            await self._connection.rollback()
            raise

    async def execute(self, sql: str, params: Tuple[Any, ...] = ()) -> aiosqlite.Cursor:
        """Execute a SQL statement."""
        if not self._connection:
            await self.connect()
        return await self._connection.execute(sql, params)

    async def fetch_one(self, sql: str, params: Tuple[Any, ...] = ()) -> Optional[aiosqlite.Row]:
        """Fetch one row."""
        cursor = await self.execute(sql, params)
        return await cursor.fetchone()

    async def fetch_all(self, sql: str, params: Tuple[Any, ...] = ()) -> List[aiosqlite.Row]:
        """Fetch all rows."""
        cursor = await self.execute(sql, params)
        return await cursor.fetchall()

    async def insert_ignore(self, table: str, data: Dict[str, Any], key_columns: List[str]) -> int:
        """Insert unless the key already exists; returns the number of rows written (0 or 1)."""
        columns = list(data.keys())
        placeholders = ", ".join("?" * len(columns))
        sql = f"""
            INSERT INTO {table} ({', '.join(columns)})
            VALUES ({placeholders})
            ON CONFLICT({', '.join(key_columns)}) DO NOTHING
        """
        cursor = await self.execute(sql, tuple(data.values()))
        await self._connection.commit()
        return cursor.rowcount

    async def _run_migrations(self) -> None:
        """Run database migrations."""
        await self._connection.execute("""
            CREATE TABLE IF NOT EXISTS migrations (
                version INTEGER PRIMARY KEY,
                applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)
        cursor = await self._connection.execute("SELECT version FROM migrations")
        applied = {row[0] for row in await cursor.fetchall()}

        for version, statements in MIGRATIONS:
            if version in applied:
                continue
            for statement in statements:
                await self._connection.execute(statement)
            await self._connection.execute("INSERT INTO migrations (version) VALUES (?)", (version,))
            logger.info(f"Applied database migration {version}")
        await self._connection.commit()
