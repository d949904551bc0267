"""Policy Store — versioned, append-only policy documents per agent.

Every version is kept as its own row. A separate pointer table names the
current row for each agent. Writes for one agent are serialized; the
store is the only component that touches either table.
"""

from __future__ import annotations

import copy
import logging
from typing import Any

import aiosqlite
import orjson

from botbrain.events.bus import EventBus, Topics
from botbrain.exceptions import PolicyVersionConflictError
from botbrain.learning.locks import KeyedLock
from botbrain.policy.merge import clamp_policy, deep_merge, sanitize_patch
from botbrain.policy.schema import BehaviorPolicy, default_policy
from botbrain.types import AgentId, utcnow

_logger = logging.getLogger(__name__)


class PolicyStore:
    """SQLite-backed policy versions with a current-policy pointer."""

    def __init__(self, db_path: str, event_bus: EventBus | None = None):
        self._db_path = db_path
        self._event_bus = event_bus
        self._locks = KeyedLock()

    # ── reads ────────────────────────────────────────────────────

    async def _load_current(self, db: aiosqlite.Connection, agent: AgentId) -> dict[str, Any] | None:
        cursor = await db.execute(
            "SELECT p.policy_json FROM current_policy c "
            "JOIN policies p ON p.id = c.policy_id WHERE c.agent = ?",
            (agent,),
        )
        row = await cursor.fetchone()
        return orjson.loads(row[0]) if row else None

    async def _insert_version(
        self, db: aiosqlite.Connection, agent: AgentId, doc: dict[str, Any],
    ) -> int:
        """Append a row, then repoint. Each statement commits on its own."""
        cursor = await db.execute(
            "INSERT INTO policies (agent, version, policy_json, created_at) VALUES (?, ?, ?, ?)",
            (agent, doc["version"], orjson.dumps(doc).decode(), utcnow().isoformat()),
        )
        policy_id = cursor.lastrowid
        await db.commit()

        await db.execute(
            "INSERT OR REPLACE INTO current_policy (agent, policy_id) VALUES (?, ?)",
            (agent, policy_id),
        )
        await db.commit()
        return policy_id

    async def _get_or_create(self, db: aiosqlite.Connection, agent: AgentId) -> dict[str, Any]:
        current = await self._load_current(db, agent)
        if current is None:
            current = default_policy()
            await self._insert_version(db, agent, current)
            _logger.info("Created default policy for agent %s", agent)
        return current

    async def get_current_policy(self, agent: AgentId) -> dict[str, Any]:
        """Current policy for `agent`.

        The first call for an agent stores and returns the default policy
        (version 1); later calls return whatever is current.
        """
        async with self._locks.hold(agent):
            async with aiosqlite.connect(self._db_path) as db:
                return await self._get_or_create(db, agent)

    async def history(self, agent: AgentId) -> list[dict[str, Any]]:
        """Every stored version for `agent`, oldest first."""
        docs = []
        async with aiosqlite.connect(self._db_path) as db:
            async with db.execute(
                "SELECT policy_json FROM policies WHERE agent = ? ORDER BY id",
                (agent,),
            ) as cursor:
                async for row in cursor:
                    docs.append(orjson.loads(row[0]))
        return docs

    # ── writes ───────────────────────────────────────────────────

    async def _set_new_policy(
        self, db: aiosqlite.Connection, agent: AgentId, policy: dict[str, Any],
    ) -> dict[str, Any]:
        doc = copy.deepcopy(policy)
        base_version = doc.get("version")
        doc["version"] = (1 if base_version is None else int(base_version)) + 1

        current = await self._load_current(db, agent)
        if current is not None and doc["version"] <= int(current.get("version", 0)):
            raise PolicyVersionConflictError(
                f"Policy for '{agent}' would move from version "
                f"{current.get('version')} to {doc['version']}"
            )

        await self._insert_version(db, agent, doc)

        if self._event_bus:
            self._event_bus.publish(
                Topics.POLICY_UPDATED,
                {"type": "policy_updated", "agent": agent, "policy": copy.deepcopy(doc)},
                source="policy_store",
            )
        _logger.info("Policy for agent %s is now version %d", agent, doc["version"])
        return doc

    async def set_new_policy(
        self, agent: AgentId, policy: dict[str, Any] | BehaviorPolicy,
    ) -> dict[str, Any]:
        """Store `policy` as the next version: (policy.version or 1) + 1."""
        if isinstance(policy, BehaviorPolicy):
            policy = policy.model_dump()
        async with self._locks.hold(agent):
            async with aiosqlite.connect(self._db_path) as db:
                return await self._set_new_policy(db, agent, policy)

    async def patch_policy(self, agent: AgentId, patch: dict[str, Any]) -> dict[str, Any]:
        """Merge `patch` into the current policy, clamp ranges, store the result.

        Top-level keys outside the allow-list are dropped before the merge.
        """
        async with self._locks.hold(agent):
            async with aiosqlite.connect(self._db_path) as db:
                current = await self._get_or_create(db, agent)
                merged = deep_merge(current, sanitize_patch(patch))
                clamp_policy(merged)
                return await self._set_new_policy(db, agent, merged)
