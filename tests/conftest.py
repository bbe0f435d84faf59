import os

os.environ.setdefault("TELEGRAM_BOT_TOKEN", "test-token-000")

from datetime import date

import aiosqlite
import pytest

import apto.db.database as db_mod
from apto.config import settings
from apto.db.storage import ExpenseStorage, MemoryBackend
from apto.services.expense_store import ExpenseStore


@pytest.fixture(autouse=True)
async def test_db(monkeypatch):
    conn = await aiosqlite.connect(":memory:")
    conn.row_factory = aiosqlite.Row
    await conn.executescript(db_mod.SCHEMA)
    await conn.commit()

    async def _get_db():
        return conn

    monkeypatch.setattr(db_mod, "get_db", _get_db)
    monkeypatch.setattr(db_mod, "_db", conn)

    yield conn

    await conn.close()


@pytest.fixture
def backend() -> MemoryBackend:
    return MemoryBackend()


@pytest.fixture
def storage(backend) -> ExpenseStorage:
    return ExpenseStorage(backend, settings.storage_key)


@pytest.fixture
async def store(storage) -> ExpenseStore:
    store = ExpenseStore(storage)
    await store.load()
    return store


@pytest.fixture
def today() -> date:
    return date(2025, 9, 1)
