"""Agent scheduler — runs reflection for the whole roster on a fixed cadence.

The first tick runs as soon as the scheduler starts; later ticks sit on
a fixed interval grid. Ticks never overlap. If a tick runs past one or
more grid slots, those slots are skipped (not queued) and the next tick
starts on the following slot.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any

import structlog
from pydantic import BaseModel, Field

from botbrain.events.bus import EventBus, Topics
from botbrain.learning.reflection import ReflectionResult, ReflectionScheduler
from botbrain.types import AgentId, utcnow

logger = structlog.get_logger()


class TickReport(BaseModel):
    """Outcome of one pass over the roster."""

    tick: int
    started_at: datetime = Field(default_factory=utcnow)
    finished_at: datetime | None = None
    results: dict[str, ReflectionResult] = Field(default_factory=dict)
    failures: dict[str, str] = Field(default_factory=dict)

    @property
    def succeeded(self) -> list[str]:
        return [a for a, r in self.results.items() if r.ok]


class AgentScheduler:
    """Background loop that reflects every roster agent once per interval."""

    def __init__(
        self,
        reflection: ReflectionScheduler,
        roster: list[AgentId],
        interval_seconds: float = 3600.0,
        concurrency: int = 1,
        event_bus: EventBus | None = None,
        history_limit: int = 100,
    ) -> None:
        # Duplicate ids would reflect the same agent twice in one tick
        self._roster = list(dict.fromkeys(roster))
        self._reflection = reflection
        self._interval = interval_seconds
        self._concurrency = max(1, concurrency)
        self._event_bus = event_bus
        self._history_limit = history_limit
        self._history: list[TickReport] = []
        self._tick_lock = asyncio.Lock()
        self._tick_count = 0
        self._skipped_ticks = 0
        self._running = False
        self._task: asyncio.Task | None = None

    @property
    def roster(self) -> list[AgentId]:
        return list(self._roster)

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def history(self) -> list[TickReport]:
        return list(self._history)

    @property
    def skipped_ticks(self) -> int:
        return self._skipped_ticks

    async def start(self) -> None:
        """Start the loop. The first tick runs immediately."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._run_loop(), name="agent-scheduler")
        self._emit(
            Topics.SCHEDULER_STARTED,
            {"roster": self._roster, "interval_seconds": self._interval},
        )

    async def stop(self) -> None:
        self._running = False
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        self._emit(Topics.SCHEDULER_STOPPED, {"ticks": self._tick_count})

    async def wait(self) -> None:
        """Block until the loop exits (it only exits on stop())."""
        if self._task:
            await self._task

    async def run_once(self) -> TickReport:
        """Reflect every roster agent once. Never overlaps another tick."""
        async with self._tick_lock:
            self._tick_count += 1
            report = TickReport(tick=self._tick_count)
            self._emit(Topics.SCHEDULER_TICK_STARTED, {"tick": report.tick})

            if self._concurrency == 1:
                for agent in self._roster:
                    await self._reflect_one(agent, report)
            else:
                sem = asyncio.Semaphore(self._concurrency)

                async def bounded(agent: AgentId) -> None:
                    async with sem:
                        await self._reflect_one(agent, report)

                await asyncio.gather(*(bounded(a) for a in self._roster))

            report.finished_at = utcnow()
            self._history.append(report)
            if len(self._history) > self._history_limit:
                self._history = self._history[-self._history_limit:]

            logger.info(
                "reflection_tick_completed",
                tick=report.tick,
                succeeded=len(report.succeeded),
                failed=len(report.failures),
            )
            self._emit(
                Topics.SCHEDULER_TICK_COMPLETED,
                {
                    "tick": report.tick,
                    "succeeded": report.succeeded,
                    "failures": dict(report.failures),
                },
            )
            return report

    async def _reflect_one(self, agent: AgentId, report: TickReport) -> None:
        try:
            result = await self._reflection.reflect_and_patch(agent)
        except Exception as e:
            logger.error("reflection_agent_failed", agent=agent, error=str(e))
            report.failures[agent] = f"exception: {e}"
            return

        report.results[agent] = result
        if result.ok:
            logger.info("reflection_agent_patched", agent=agent, patch=result.patch)
        else:
            logger.warning("reflection_agent_skipped", agent=agent, error=result.error)
            report.failures[agent] = result.error

    async def _run_loop(self) -> None:
        loop = asyncio.get_running_loop()
        next_due = loop.time()
        while self._running:
            try:
                await self.run_once()
            except Exception as e:
                logger.error("reflection_tick_failed", error=str(e))

            next_due += self._interval
            now = loop.time()
            if now > next_due:
                missed = int((now - next_due) // self._interval) + 1
                next_due += missed * self._interval
                self._skipped_ticks += missed
                logger.warning("reflection_ticks_skipped", skipped=missed)

            try:
                await asyncio.sleep(next_due - now)
            except asyncio.CancelledError:
                break

    def _emit(self, topic: str, data: dict[str, Any]) -> None:
        if self._event_bus:
            self._event_bus.publish(topic, data, source="agent_scheduler")
