"""Tests for the schema migration runner."""

import aiosqlite
import pytest

from botbrain.migrations.runner import apply_migrations, discover_migrations, get_schema_version

TABLES = {"movement_arms", "agent_arm_stats", "metrics", "policies", "current_policy"}


@pytest.fixture
def fresh_db(tmp_path):
    return str(tmp_path / "nested" / "brain.db")


def test_discover_migrations_in_order():
    found = discover_migrations()
    assert [v for v, _ in found] == [1, 2]
    assert found[0][1] == "m_001_initial"


@pytest.mark.asyncio
async def test_fresh_database_is_version_zero(tmp_path):
    assert await get_schema_version(str(tmp_path / "empty.db")) == 0


@pytest.mark.asyncio
async def test_apply_creates_tables(fresh_db):
    applied = await apply_migrations(fresh_db)
    assert applied == [1, 2]
    assert await get_schema_version(fresh_db) == 2

    async with aiosqlite.connect(fresh_db) as db:
        cursor = await db.execute("SELECT name FROM sqlite_master WHERE type='table'")
        names = {row[0] for row in await cursor.fetchall()}
    assert TABLES <= names


@pytest.mark.asyncio
async def test_second_run_applies_nothing(fresh_db):
    await apply_migrations(fresh_db)
    assert await apply_migrations(fresh_db) == []
    assert await get_schema_version(fresh_db) == 2


@pytest.mark.asyncio
async def test_only_pending_versions_run(fresh_db):
    await apply_migrations(fresh_db)
    async with aiosqlite.connect(fresh_db) as db:
        await db.execute("DELETE FROM schema_version WHERE version = 2")
        await db.commit()

    # m_002 only creates indexes with IF NOT EXISTS, so rerunning it is safe
    assert await apply_migrations(fresh_db) == [2]

