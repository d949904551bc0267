"""Movement tuner — closes the loop between the bandit and the actuator.

The tuner applies an arm's path costs to the agent's movement actuator,
times the resulting session, and turns the actuator's terminal signals
into rewards. It also follows policy updates so an advisor-chosen
preferred arm takes effect right away.

All subscriptions are owned by the tuner and released by `detach()`, so
a reconnecting agent does not pile up stale handlers.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from datetime import datetime
from typing import Any, Awaitable, Callable

from botbrain.events.bus import Event, EventBus, Topics
from botbrain.learning.arms import ArmRegistry, MovementArm, MovementParams
from botbrain.learning.bandit import BanditSelector
from botbrain.learning.metrics import MetricsRecorder
from botbrain.learning.reward import MovementSession, compute_reward
from botbrain.policy.store import PolicyStore
from botbrain.types import AgentId, utcnow

_logger = logging.getLogger(__name__)

SignalHandler = Callable[[dict[str, Any]], Awaitable[None]]
Dispose = Callable[[], None]

GOAL_REACHED = "goal_reached"
PATH_UPDATE = "path_update"
# path_update statuses that end a session as a timeout
FAILED_PATH_STATUSES = frozenset({"noPath", "timeout"})

REWARD_METRIC = "movement_reward"


class MovementActuator(ABC):
    """The agent's movement controller, as seen by the tuner."""

    @abstractmethod
    def apply_movements(self, params: MovementParams) -> None:
        """Make `params` the active path-cost configuration."""

    @abstractmethod
    def subscribe(self, signal: str, handler: SignalHandler) -> Dispose:
        """Register `handler` for `signal`; the returned function removes it."""


class ObservableActuator(MovementActuator):
    """Actuator base that keeps its own signal subscribers.

    Adapters call `await self.fire(signal, payload)` when the game
    reports a goal or a path update.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, list[SignalHandler]] = defaultdict(list)

    def subscribe(self, signal: str, handler: SignalHandler) -> Dispose:
        self._handlers[signal].append(handler)

        def dispose() -> None:
            if handler in self._handlers[signal]:
                self._handlers[signal].remove(handler)

        return dispose

    async def fire(self, signal: str, payload: dict[str, Any] | None = None) -> None:
        for handler in list(self._handlers.get(signal, [])):
            await handler(payload or {})

    def handler_count(self, signal: str = "") -> int:
        if signal:
            return len(self._handlers.get(signal, []))
        return sum(len(h) for h in self._handlers.values())


class MovementTuner:
    """Per-agent movement learning loop."""

    def __init__(
        self,
        agent: AgentId,
        actuator: MovementActuator,
        bandit: BanditSelector,
        registry: ArmRegistry,
        metrics: MetricsRecorder,
        policy_store: PolicyStore | None = None,
        event_bus: EventBus | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.agent = agent
        self._actuator = actuator
        self._bandit = bandit
        self._registry = registry
        self._metrics = metrics
        self._store = policy_store
        self._event_bus = event_bus
        self._clock = clock
        self._disposers: list[Dispose] = []
        self._lock = asyncio.Lock()
        self._arm: MovementArm | None = None
        self._session: MovementSession | None = None

    @property
    def active_arm(self) -> MovementArm | None:
        return self._arm

    @property
    def session(self) -> MovementSession | None:
        return self._session

    @property
    def attached(self) -> bool:
        return bool(self._disposers)

    async def attach(self) -> MovementArm:
        """Select and apply an arm, open a session, start listening."""
        if self.attached and self._arm is not None:
            return self._arm
        arm = await self._bandit.select_arm(self.agent)
        self._apply(arm)
        self._disposers.append(self._actuator.subscribe(GOAL_REACHED, self._on_goal_reached))
        self._disposers.append(self._actuator.subscribe(PATH_UPDATE, self._on_path_update))
        if self._event_bus:
            self._disposers.append(
                self._event_bus.subscribe(Topics.POLICY_UPDATED, self._on_policy_updated)
            )
        return arm

    def detach(self) -> None:
        """Release every subscription. Safe to call more than once."""
        while self._disposers:
            self._disposers.pop()()

    def record_damage(self, amount: float) -> None:
        if self._session is not None and not self._session.closed:
            self._session.damage_taken += amount

    def _apply(self, arm: MovementArm) -> None:
        self._actuator.apply_movements(arm.params.clamped())
        self._arm = arm
        self._session = MovementSession(start=self._clock())
        if self._event_bus:
            self._event_bus.publish(
                Topics.MOVEMENT_ARM_APPLIED,
                {"agent": self.agent, "arm": arm.name},
                source="movement_tuner",
            )

    async def _on_goal_reached(self, payload: dict[str, Any]) -> None:
        await self.finish_session(success=True)

    async def _on_path_update(self, payload: dict[str, Any]) -> None:
        if payload.get("status") in FAILED_PATH_STATUSES:
            await self.finish_session(timeout=True)

    async def finish_session(self, success: bool = False, timeout: bool = False) -> float | None:
        """Close the open session once, learn from it, start the next one.

        Returns the reward, or None when there was no open session.
        """
        async with self._lock:
            session, arm = self._session, self._arm
            if session is None or arm is None or session.closed:
                return None
            session.closed = True
            session.success = session.success or success
            session.timeout = session.timeout or timeout
            session.duration_ms = max(
                0.0, (self._clock() - session.start).total_seconds() * 1000,
            )
            reward = compute_reward(session)

            # A storage error propagates to this signal only; the next
            # session is opened either way.
            try:
                await self._bandit.update_reward(self.agent, arm.name, reward)
                await self._metrics.record(
                    self.agent,
                    REWARD_METRIC,
                    reward,
                    {
                        "arm": arm.name,
                        "success": session.success,
                        "timeout": session.timeout,
                        "duration_ms": session.duration_ms,
                        "damage_taken": session.damage_taken,
                    },
                )
            finally:
                try:
                    next_arm = await self._bandit.select_arm(self.agent)
                except Exception:
                    self._apply(arm)
                    raise
                self._apply(next_arm)
            return reward

    def _on_policy_updated(self, event: Event) -> Awaitable[None] | None:
        if event.data.get("agent") != self.agent:
            return None
        return self._follow_policy(event.data.get("policy") or {})

    async def _follow_policy(self, published: dict[str, Any]) -> None:
        policy = published
        if self._store is not None:
            policy = await self._store.get_current_policy(self.agent)
        movement = policy.get("movement")
        name = movement.get("preferred_arm") if isinstance(movement, dict) else None
        if not isinstance(name, str):
            return

        arm = await self._registry.get(name)
        if arm is None:
            _logger.warning("Policy for %s prefers unknown arm %r", self.agent, name)
            return

        async with self._lock:
            if not self.attached or (self._arm is not None and self._arm.name == arm.name):
                return
            # The open session is abandoned unscored; it belongs to the old arm
            self._apply(arm)
        _logger.info("Agent %s switched to preferred arm %s", self.agent, arm.name)
