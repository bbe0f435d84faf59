import aiosqlite

from apto.db.database import get_value, set_value


async def test_schema_creates_kv_table(test_db: aiosqlite.Connection):
    cursor = await test_db.execute("SELECT name FROM sqlite_master WHERE type='table' ORDER BY name")
    tables = [row[0] for row in await cursor.fetchall()]
    assert "kv_store" in tables


async def test_get_missing_value():
    assert await get_value("missing") is None


async def test_set_value_upserts():
    await set_value("k", "one")
    await set_value("k", "two")
    assert await get_value("k") == "two"
