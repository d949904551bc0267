"""Migration 002: indexes for the per-agent time-range and history queries."""

from __future__ import annotations

import aiosqlite


async def upgrade(db: aiosqlite.Connection) -> None:
    await db.execute(
        "CREATE INDEX IF NOT EXISTS idx_metrics_agent_ts "
        "ON metrics(agent, ts DESC)"
    )
    await db.execute(
        "CREATE INDEX IF NOT EXISTS idx_policies_agent_version "
        "ON policies(agent, version)"
    )
