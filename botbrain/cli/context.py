"""CLI runtime context — bridges sync CLI to the async learning stack."""

from __future__ import annotations

import asyncio
from typing import Any, Coroutine

from botbrain.config import BrainSettings, settings
from botbrain.events.bus import EventBus
from botbrain.learning.arms import DEFAULT_CATALOG, ArmRegistry, load_catalog
from botbrain.learning.bandit import BanditSelector
from botbrain.learning.metrics import MetricsRecorder
from botbrain.learning.reflection import ReflectionScheduler
from botbrain.learning.scheduler import AgentScheduler
from botbrain.llm.advisor import build_advisor
from botbrain.migrations.runner import apply_migrations
from botbrain.policy.store import PolicyStore


class BrainContext:
    """Singleton runtime context that holds all subsystem instances."""

    _instance: BrainContext | None = None

    def __init__(self, config: BrainSettings | None = None) -> None:
        self.settings = config or settings
        db_path = str(self.settings.db_path)
        self.event_bus = EventBus()
        self.registry = ArmRegistry(db_path)
        self.bandit = BanditSelector(
            db_path, self.registry, exploration=self.settings.exploration_constant,
        )
        self.metrics = MetricsRecorder(db_path, self.event_bus)
        self.policy_store = PolicyStore(db_path, self.event_bus)
        self.advisor = build_advisor(self.settings)
        self._reflection: ReflectionScheduler | None = None
        self._ready = False

    async def ensure_ready(self) -> None:
        """Apply migrations and seed the arm catalog (once per process)."""
        if self._ready:
            return
        await apply_migrations(str(self.settings.db_path))
        catalog = (
            load_catalog(self.settings.arms_file)
            if self.settings.arms_file else DEFAULT_CATALOG
        )
        await self.registry.seed(catalog)
        self._ready = True

    async def reflection(self) -> ReflectionScheduler:
        await self.ensure_ready()
        if self._reflection is None:
            self._reflection = ReflectionScheduler(
                advisor=self.advisor,
                policy_store=self.policy_store,
                metrics=self.metrics,
                timeout=self.settings.advisor_timeout_seconds,
                window_minutes=self.settings.reflection_window_minutes,
                arm_names=await self.registry.names(),
                event_bus=self.event_bus,
            )
        return self._reflection

    async def scheduler(self) -> AgentScheduler:
        return AgentScheduler(
            reflection=await self.reflection(),
            roster=self.settings.roster(),
            interval_seconds=self.settings.reflection_interval_seconds,
            concurrency=self.settings.scheduler_concurrency,
            event_bus=self.event_bus,
        )

    @classmethod
    def get(cls) -> BrainContext:
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance


def run_async(coro: Coroutine) -> Any:
    """Run an async coroutine from sync CLI code."""
    return asyncio.run(coro)
