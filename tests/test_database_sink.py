from __future__ import annotations

import pytest

from conftest import make_record
from core.errors import DatabaseError
from core.infra.db import Database, parse_db_url
from core.models import Image, Price, UpsertResult
from sinks.database_sink import EventDatabaseSink


@pytest.mark.parametrize(
    "url, expected",
    [
        ("sqlite+aiosqlite:///data/events.db", "data/events.db"),
        ("sqlite:///events.db", "events.db"),
        ("sqlite:///:memory:", ":memory:"),
        ("events.db", "events.db"),
    ],
)
def test_parse_db_url(url, expected) -> None:
    assert parse_db_url(url) == expected


@pytest.mark.asyncio
async def test_upsert_is_idempotent(tmp_path) -> None:
    db_path = tmp_path / "data" / "events.db"
    record = make_record(
        image=Image(url="https://img.sympla.com.br/a.jpg"),
        price=Price(min=50.0, max=120.0),
        tags=frozenset({"rock", "festival"}),
    )

    async with EventDatabaseSink(f"sqlite:///{db_path}") as sink:
        assert await sink.upsert(record) is UpsertResult.INSERTED
        assert await sink.upsert(record) is UpsertResult.DUPLICATE
        assert await sink.count() == 1

        row = await sink.db.fetch_one("SELECT title, price_max, tags, is_regional FROM events")
        assert row["title"] == "Show de Rock no Parque"
        assert row["price_max"] == 120.0
        assert row["tags"] == '["festival", "rock"]'

    assert db_path.exists()


@pytest.mark.asyncio
async def test_records_survive_reconnect(tmp_path) -> None:
    url = f"sqlite:///{tmp_path / 'events.db'}"

    async with EventDatabaseSink(url) as sink:
        await sink.upsert(make_record(content_hash="a" * 64))

    async with EventDatabaseSink(url) as sink:
        assert await sink.upsert(make_record(content_hash="a" * 64)) is UpsertResult.DUPLICATE
        assert await sink.upsert(make_record(content_hash="b" * 64, title="Outro Show")) is UpsertResult.INSERTED
        assert await sink.count() == 2
        versions = await sink.db.fetch_all("SELECT version FROM migrations")
        assert [v[0] for v in versions] == [1]


@pytest.mark.asyncio
async def test_upsert_connects_on_demand() -> None:
    sink = EventDatabaseSink("sqlite:///:memory:")

    assert await sink.upsert(make_record()) is UpsertResult.INSERTED
    assert sink.db.is_connected
    await sink.close()
    assert not sink.db.is_connected


@pytest.mark.asyncio
async def test_unusable_path_raises_database_error(tmp_path) -> None:
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("x")
    db = Database(str(blocker / "events.db"))

    with pytest.raises(DatabaseError) as exc_info:
        await db.connect()

    assert exc_info.value.is_critical()
    assert not db.is_connected


@pytest.mark.asyncio
async def test_transaction_rolls_back(tmp_path) -> None:
    db = Database(str(tmp_path / "events.db"))
    await db.connect()
    sink = EventDatabaseSink(db=db)
    row = sink._row(make_record())

    with pytest.raises(RuntimeError):
        async with db.transaction() as conn:
            columns = ", ".join(row)
            placeholders = ", ".join("?" * len(row))
            await conn.execute(f"INSERT INTO events ({columns}) VALUES ({placeholders})", tuple(row.values()))
            raise RuntimeError("abort")

    assert await sink.count() == 0
    await db.close()
