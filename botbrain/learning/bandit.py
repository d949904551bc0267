"""Bandit Selector — UCB1 over the movement arm catalog.

Each agent keeps its own pull count and mean reward per arm. Selection
maximizes mean + c * sqrt(ln(total + 1) / n); an arm that was never
pulled scores infinity, so every arm is tried once before the agent
starts exploiting. Ties go to the lowest catalog id.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime

import aiosqlite
from pydantic import BaseModel

from botbrain.learning.arms import ArmRegistry, MovementArm
from botbrain.learning.locks import KeyedLock
from botbrain.types import AgentId, ArmName, utcnow

_logger = logging.getLogger(__name__)

DEFAULT_EXPLORATION = 1.4


def ucb1(mean: float, total: int, n: int, c: float = DEFAULT_EXPLORATION) -> float:
    if n == 0:
        return math.inf
    return mean + c * math.sqrt(math.log(total + 1) / n)


class AgentArmStat(BaseModel):
    """Running reward statistics for one (agent, arm) pair."""

    agent: AgentId
    arm_id: int
    n: int = 0
    reward_sum: float = 0.0
    reward_mean: float = 0.0
    last_selected_at: datetime | None = None


def _row_to_stat(row: aiosqlite.Row) -> AgentArmStat:
    last = row["last_selected_at"]
    return AgentArmStat(
        agent=row["agent"],
        arm_id=row["arm_id"],
        n=row["n"],
        reward_sum=row["reward_sum"],
        reward_mean=row["reward_mean"],
        last_selected_at=datetime.fromisoformat(last) if last else None,
    )


class BanditSelector:
    """Per-agent UCB1 selector with statistics persisted in SQLite."""

    def __init__(
        self,
        db_path: str,
        registry: ArmRegistry,
        exploration: float = DEFAULT_EXPLORATION,
    ):
        self._db_path = db_path
        self._registry = registry
        self._exploration = exploration
        self._locks = KeyedLock()

    @property
    def exploration(self) -> float:
        return self._exploration

    async def _ensure_stats(
        self, db: aiosqlite.Connection, agent: AgentId, arms: list[MovementArm],
    ) -> list[AgentArmStat]:
        """Create missing stat rows for `agent`, then return all of them by arm id."""
        await db.executemany(
            "INSERT OR IGNORE INTO agent_arm_stats "
            "(agent, arm_id, n, reward_sum, reward_mean) VALUES (?, ?, 0, 0.0, 0.0)",
            [(agent, a.id) for a in arms],
        )
        await db.commit()

        stats = []
        async with db.execute(
            "SELECT * FROM agent_arm_stats WHERE agent = ? ORDER BY arm_id",
            (agent,),
        ) as cursor:
            async for row in cursor:
                stats.append(_row_to_stat(row))
        return stats

    async def select_arm(self, agent: AgentId) -> MovementArm:
        """Choose the next arm for `agent` and stamp its selection time."""
        arms = await self._registry.list_arms()
        if not arms:
            raise LookupError("Arm catalog is empty; seed the registry first")
        by_id = {a.id: a for a in arms}

        async with self._locks.hold(agent):
            async with aiosqlite.connect(self._db_path) as db:
                db.row_factory = aiosqlite.Row
                stats = [s for s in await self._ensure_stats(db, agent, arms) if s.arm_id in by_id]
                total = sum(s.n for s in stats)

                best: AgentArmStat | None = None
                best_score = -math.inf
                for st in stats:
                    score = ucb1(st.reward_mean, total, st.n, self._exploration)
                    # Strict comparison keeps the lowest id on ties
                    if best is None or score > best_score:
                        best, best_score = st, score

                chosen = by_id[best.arm_id]
                await db.execute(
                    "UPDATE agent_arm_stats SET last_selected_at = ? "
                    "WHERE agent = ? AND arm_id = ?",
                    (utcnow().isoformat(), agent, chosen.id),
                )
                await db.commit()

        _logger.debug("Agent %s selected arm %s (score=%s)", agent, chosen.name, best_score)
        return chosen

    async def update_reward(
        self, agent: AgentId, arm_name: ArmName, reward: float,
    ) -> AgentArmStat | None:
        """Fold one reward into the (agent, arm) statistics.

        Unknown arm names are logged and ignored.
        """
        arm = await self._registry.get(arm_name)
        if arm is None:
            _logger.warning("Reward for unknown arm %r (agent %s) ignored", arm_name, agent)
            return None

        async with self._locks.hold(agent):
            async with aiosqlite.connect(self._db_path) as db:
                db.row_factory = aiosqlite.Row
                cursor = await db.execute(
                    "SELECT * FROM agent_arm_stats WHERE agent = ? AND arm_id = ?",
                    (agent, arm.id),
                )
                row = await cursor.fetchone()
                n = (row["n"] if row else 0) + 1
                total = (row["reward_sum"] if row else 0.0) + reward
                stat = AgentArmStat(
                    agent=agent,
                    arm_id=arm.id,
                    n=n,
                    reward_sum=total,
                    reward_mean=total / n,
                    last_selected_at=utcnow(),
                )
                await db.execute(
                    """INSERT INTO agent_arm_stats
                       (agent, arm_id, n, reward_sum, reward_mean, last_selected_at)
                       VALUES (?, ?, ?, ?, ?, ?)
                       ON CONFLICT(agent, arm_id) DO UPDATE SET
                         n = excluded.n,
                         reward_sum = excluded.reward_sum,
                         reward_mean = excluded.reward_mean,
                         last_selected_at = excluded.last_selected_at""",
                    (
                        stat.agent,
                        stat.arm_id,
                        stat.n,
                        stat.reward_sum,
                        stat.reward_mean,
                        stat.last_selected_at.isoformat(),
                    ),
                )
                await db.commit()
        return stat

    async def stats(self, agent: AgentId) -> list[AgentArmStat]:
        """Statistics for every catalog arm, creating missing rows."""
        arms = await self._registry.list_arms()
        async with self._locks.hold(agent):
            async with aiosqlite.connect(self._db_path) as db:
                db.row_factory = aiosqlite.Row
                return await self._ensure_stats(db, agent, arms)

    async def best_arm(self, agent: AgentId) -> MovementArm | None:
        """Highest mean reward among arms pulled at least once."""
        pulled = [s for s in await self.stats(agent) if s.n > 0]
        if not pulled:
            return None
        # Ties go to the lowest id: stats are ordered by arm_id
        best = max(pulled, key=lambda s: (s.reward_mean, -s.arm_id))
        return await self._registry.get_by_id(best.arm_id)
