"""Event Bus — in-process pub/sub with wildcard matching.

Metrics, policy changes and scheduler activity are announced here.
Delivery is synchronous: `publish` calls every matching handler, in the
order the subscriptions were made, before it returns.

Supports topic wildcards: "policy.*" matches "policy.updated".
"""

from __future__ import annotations

import asyncio
import fnmatch
import inspect
import logging
from datetime import datetime
from typing import Any, Callable

from pydantic import BaseModel, Field

from botbrain.types import new_id, utcnow

_logger = logging.getLogger(__name__)

EventHandler = Callable[["Event"], Any]
Unsubscribe = Callable[[], None]


class Topics:
    AGENT_METRIC = "agent.metric"
    POLICY_UPDATED = "policy.updated"
    REFLECTION_COMPLETED = "reflection.completed"
    REFLECTION_FAILED = "reflection.failed"
    SCHEDULER_STARTED = "scheduler.started"
    SCHEDULER_STOPPED = "scheduler.stopped"
    SCHEDULER_TICK_STARTED = "scheduler.tick_started"
    SCHEDULER_TICK_COMPLETED = "scheduler.tick_completed"
    MOVEMENT_ARM_APPLIED = "movement.arm_applied"


class Event(BaseModel):
    """A bus event."""

    id: str = Field(default_factory=new_id)
    topic: str
    data: dict[str, Any] = Field(default_factory=dict)
    source: str = ""
    timestamp: datetime = Field(default_factory=utcnow)


class _Subscription:
    __slots__ = ("pattern", "handler")

    def __init__(self, pattern: str, handler: EventHandler) -> None:
        self.pattern = pattern
        self.handler = handler


class EventBus:
    """Synchronous pub/sub event bus with wildcard topic matching.

    Subscribe to "policy.*" to receive all policy events.
    Subscribe to "*" to receive everything.

    Handlers may be plain functions or coroutine functions. Coroutine
    handlers are scheduled on the running loop in subscription order;
    `drain()` waits for the ones still in flight.
    """

    def __init__(self, history_limit: int = 500) -> None:
        self._subscriptions: list[_Subscription] = []
        self._history: list[Event] = []
        self._history_limit = history_limit
        self._pending: set[asyncio.Future] = set()

    def subscribe(self, pattern: str, handler: EventHandler) -> Unsubscribe:
        """Subscribe to events matching a topic pattern.

        Returns a function that removes this subscription. Calling it
        more than once does nothing after the first call.
        """
        sub = _Subscription(pattern, handler)
        self._subscriptions.append(sub)

        def unsubscribe() -> None:
            if sub in self._subscriptions:
                self._subscriptions.remove(sub)

        return unsubscribe

    def publish(self, topic: str, data: dict | None = None, source: str = "") -> Event:
        """Deliver an event to all matching subscribers, in subscription order."""
        event = Event(topic=topic, data=data or {}, source=source)

        self._history.append(event)
        if len(self._history) > self._history_limit:
            self._history = self._history[-self._history_limit:]

        # Snapshot so handlers may unsubscribe while we iterate
        for sub in list(self._subscriptions):
            if not fnmatch.fnmatch(topic, sub.pattern):
                continue
            try:
                result = sub.handler(event)
            except Exception:
                _logger.exception("Bus handler failed for topic %s", topic)
                continue
            if inspect.isawaitable(result):
                future = asyncio.ensure_future(result)
                self._pending.add(future)
                future.add_done_callback(self._on_handler_done)

        return event

    def _on_handler_done(self, future: asyncio.Future) -> None:
        self._pending.discard(future)
        if not future.cancelled() and future.exception() is not None:
            _logger.error("Async bus handler failed: %s", future.exception())

    async def drain(self) -> None:
        """Wait for coroutine handlers that are still running."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def history(self, topic_filter: str = "*", limit: int = 50) -> list[Event]:
        """Get recent events, newest first, optionally filtered by topic pattern."""
        if topic_filter == "*":
            events = self._history
        else:
            events = [
                e for e in self._history
                if fnmatch.fnmatch(e.topic, topic_filter)
            ]
        return list(reversed(events[-limit:]))

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def topics(self) -> list[str]:
        """Get all topics that have been published."""
        return list({e.topic for e in self._history})
