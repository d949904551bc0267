"""Schema migrations for the brain database.

Each `m_NNN_<name>.py` module in this package defines
`async def upgrade(db)`. Versions are recorded in `schema_version`; a
migration runs once, in version order, inside its own connection.
"""

from __future__ import annotations

import importlib
import logging
from pathlib import Path

import aiosqlite

_logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).parent
MIGRATION_PREFIX = "m_"


def discover_migrations() -> list[tuple[int, str]]:
    """(version, module name) for every migration module, lowest first."""
    found: list[tuple[int, str]] = []
    for path in MIGRATIONS_DIR.glob(f"{MIGRATION_PREFIX}*.py"):
        # m_001_initial -> 1
        _, _, rest = path.stem.partition(MIGRATION_PREFIX)
        number = rest.split("_", 1)[0]
        if number.isdigit():
            found.append((int(number), path.stem))
    return sorted(found)


async def _ensure_version_table(db: aiosqlite.Connection) -> None:
    await db.execute(
        "CREATE TABLE IF NOT EXISTS schema_version "
        "(version INTEGER PRIMARY KEY, applied_at TEXT DEFAULT CURRENT_TIMESTAMP)"
    )
    await db.commit()


async def get_schema_version(db_path: str) -> int:
    """Highest applied version, 0 for a fresh database."""
    async with aiosqlite.connect(db_path) as db:
        await _ensure_version_table(db)
        cursor = await db.execute("SELECT MAX(version) FROM schema_version")
        row = await cursor.fetchone()
        return row[0] or 0


async def apply_migrations(db_path: str) -> list[int]:
    """Bring the database up to date. Returns the versions applied now."""
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    current = await get_schema_version(db_path)

    applied: list[int] = []
    for version, name in discover_migrations():
        if version <= current:
            continue
        module = importlib.import_module(f"botbrain.migrations.{name}")
        async with aiosqlite.connect(db_path) as db:
            await module.upgrade(db)
            await db.execute("INSERT INTO schema_version (version) VALUES (?)", (version,))
            await db.commit()
        _logger.info("Applied migration %03d (%s)", version, name)
        applied.append(version)

    if applied:
        _logger.info("Database %s now at schema version %d", db_path, applied[-1])
    return applied
