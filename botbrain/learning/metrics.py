"""Metrics Recorder — append-only scalar observations per agent.

Every observation is written once and announced on the bus. Reflection
reads them back as a trailing-window performance snapshot.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import aiosqlite
import orjson
from pydantic import BaseModel, Field

from botbrain.events.bus import EventBus, Topics
from botbrain.types import AgentId, utcnow


def _ts(moment: datetime) -> str:
    """Stored form of a timestamp: UTC ISO-8601. Naive values are local time."""
    return moment.astimezone(timezone.utc).isoformat()


class Metric(BaseModel):
    """One immutable observation."""

    agent: AgentId
    timestamp: datetime = Field(default_factory=utcnow)
    kind: str
    value: float
    context: dict[str, Any] = Field(default_factory=dict)


class MetricsRecorder:
    """SQLite-backed metric log."""

    def __init__(self, db_path: str, event_bus: EventBus | None = None):
        self._db_path = db_path
        self._event_bus = event_bus

    async def record(
        self,
        agent: AgentId,
        kind: str,
        value: float,
        context: dict[str, Any] | None = None,
    ) -> Metric:
        metric = Metric(agent=agent, kind=kind, value=value, context=context or {})
        async with aiosqlite.connect(self._db_path) as db:
            await db.execute(
                "INSERT INTO metrics (agent, ts, kind, value, ctx) VALUES (?, ?, ?, ?, ?)",
                (
                    metric.agent,
                    _ts(metric.timestamp),
                    metric.kind,
                    metric.value,
                    orjson.dumps(metric.context).decode(),
                ),
            )
            await db.commit()

        if self._event_bus:
            self._event_bus.publish(
                Topics.AGENT_METRIC,
                {
                    "agent": agent,
                    "metric": {"kind": kind, "value": value, "context": metric.context},
                },
                source="metrics",
            )
        return metric

    async def query(
        self,
        agent: AgentId,
        since: datetime | None = None,
        until: datetime | None = None,
        kind: str = "",
        limit: int = 1000,
    ) -> list[Metric]:
        """Observations for `agent` in [since, until], newest first.

        Bounds may carry any timezone; naive bounds are read as local time.
        """
        conditions = ["agent = ?"]
        params: list = [agent]

        if since:
            conditions.append("ts >= ?")
            params.append(_ts(since))
        if until:
            conditions.append("ts <= ?")
            params.append(_ts(until))
        if kind:
            conditions.append("kind = ?")
            params.append(kind)

        where = " AND ".join(conditions)
        sql = f"SELECT * FROM metrics WHERE {where} ORDER BY ts DESC, id DESC LIMIT ?"
        params.append(limit)

        metrics = []
        async with aiosqlite.connect(self._db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(sql, params) as cursor:
                async for row in cursor:
                    metrics.append(Metric(
                        agent=row["agent"],
                        timestamp=datetime.fromisoformat(row["ts"]),
                        kind=row["kind"],
                        value=row["value"],
                        context=orjson.loads(row["ctx"] or "{}"),
                    ))
        return metrics

    async def perf_snapshot(self, agent: AgentId, minutes: int = 60) -> dict[str, dict[str, float]]:
        """Count and mean per metric kind over the trailing window."""
        since = utcnow() - timedelta(minutes=minutes)
        sql = (
            "SELECT kind, COUNT(*) AS count, AVG(value) AS mean FROM metrics "
            "WHERE agent = ? AND ts >= ? GROUP BY kind ORDER BY kind"
        )
        summary: dict[str, dict[str, float]] = {}
        async with aiosqlite.connect(self._db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(sql, (agent, _ts(since))) as cursor:
                async for row in cursor:
                    summary[row["kind"]] = {"count": row["count"], "mean": row["mean"]}
        return summary

    async def recent_summary(self, agent: AgentId, minutes: int = 60, limit: int = 10) -> str:
        """A few lines describing the latest observations, for prompts."""
        since = utcnow() - timedelta(minutes=minutes)
        recent = await self.query(agent, since=since, limit=limit)
        if not recent:
            return f"No observations in the last {minutes} minutes."
        lines = [f"Last {len(recent)} observations (newest first):"]
        for m in recent:
            line = f"- {m.timestamp.strftime('%H:%M:%S')} {m.kind}={m.value:.3f}"
            arm = m.context.get("arm")
            if arm:
                line += f" (arm={arm})"
            lines.append(line)
        return "\n".join(lines)
