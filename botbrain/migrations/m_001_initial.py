"""Migration 001: the learning schema.

Arm catalog, per-agent arm statistics, append-only metrics, append-only
policy versions and the current-policy pointer.
"""

from __future__ import annotations

import aiosqlite


async def upgrade(db: aiosqlite.Connection) -> None:
    await db.execute("""
        CREATE TABLE IF NOT EXISTS movement_arms (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL UNIQUE,
            params_json TEXT NOT NULL,
            catalog_version INTEGER NOT NULL DEFAULT 1
        )
    """)
    await db.execute("""
        CREATE TABLE IF NOT EXISTS agent_arm_stats (
            agent TEXT NOT NULL,
            arm_id INTEGER NOT NULL,
            n INTEGER NOT NULL DEFAULT 0,
            reward_sum REAL NOT NULL DEFAULT 0.0,
            reward_mean REAL NOT NULL DEFAULT 0.0,
            last_selected_at TEXT,
            PRIMARY KEY (agent, arm_id)
        )
    """)
    await db.execute("""
        CREATE TABLE IF NOT EXISTS metrics (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            agent TEXT NOT NULL,
            ts TEXT NOT NULL,
            kind TEXT NOT NULL,
            value REAL NOT NULL,
            ctx TEXT DEFAULT '{}'
        )
    """)
    await db.execute("""
        CREATE TABLE IF NOT EXISTS policies (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            agent TEXT NOT NULL,
            version INTEGER NOT NULL,
            policy_json TEXT NOT NULL,
            created_at TEXT NOT NULL
        )
    """)
    await db.execute("""
        CREATE TABLE IF NOT EXISTS current_policy (
            agent TEXT PRIMARY KEY,
            policy_id INTEGER NOT NULL
        )
    """)
