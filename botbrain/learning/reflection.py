"""Reflection — periodic advisor-driven policy revision for one agent.

A reflection reads the agent's current policy and recent metrics, asks
the advisor for a patch, and applies it. The advisor's reply is treated
as untrusted text: it must contain one JSON object, only the tunable
top-level sections are kept, and the policy store clamps ranges on
merge. Any failure before the write leaves the stored policy untouched.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import orjson
from pydantic import BaseModel

from botbrain.events.bus import EventBus, Topics
from botbrain.learning.locks import KeyedLock
from botbrain.learning.metrics import MetricsRecorder
from botbrain.llm.advisor import Advisor, AdvisoryRequest
from botbrain.policy.merge import sanitize_patch
from botbrain.policy.store import PolicyStore
from botbrain.types import AgentId

_logger = logging.getLogger(__name__)

ADVISOR_DISABLED = "advisor_disabled"
INVALID_RESPONSE = "invalid_response"
ADVISOR_TIMEOUT = "advisor_timeout"
ADVISOR_CANCELLED = "advisor_cancelled"
ADVISOR_ERROR = "advisor_error"


class ReflectionResult(BaseModel):
    ok: bool
    agent: AgentId = ""
    error: str = ""
    updated: dict[str, Any] | None = None
    patch: dict[str, Any] | None = None


def _strip_fences(raw: str) -> str:
    text = raw.strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else text[3:]
    if text.endswith("```"):
        text = text[:-3]
    return text.strip()


def _balanced_object_at(text: str, start: int) -> str | None:
    """The `{...}` substring starting at `start`, honoring JSON strings."""
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start:i + 1]
    return None


def extract_patch(raw: str) -> dict[str, Any]:
    """Find and parse the JSON object embedded in free text.

    Raises ValueError when no JSON object can be parsed.
    """
    text = _strip_fences(raw or "")
    try:
        data = orjson.loads(text)
        if isinstance(data, dict):
            return data
    except orjson.JSONDecodeError:
        pass

    start = text.find("{")
    while start != -1:
        candidate = _balanced_object_at(text, start)
        if candidate is not None:
            try:
                data = orjson.loads(candidate)
            except orjson.JSONDecodeError:
                data = None
            if isinstance(data, dict):
                return data
        start = text.find("{", start + 1)
    raise ValueError("no JSON object in advisor response")


class ReflectionScheduler:
    """Runs reflections; at most one at a time per agent."""

    def __init__(
        self,
        advisor: Advisor,
        policy_store: PolicyStore,
        metrics: MetricsRecorder,
        timeout: float = 60.0,
        window_minutes: int = 60,
        arm_names: list[str] | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        self._advisor = advisor
        self._store = policy_store
        self._metrics = metrics
        self._timeout = timeout
        self._window = window_minutes
        self._arm_names = list(arm_names or [])
        self._event_bus = event_bus
        self._locks = KeyedLock()

    @property
    def enabled(self) -> bool:
        return self._advisor.enabled

    def in_progress(self, agent: AgentId) -> bool:
        return self._locks.locked(agent)

    async def reflect_and_patch(self, agent: AgentId) -> ReflectionResult:
        if not self._advisor.enabled:
            _logger.info("Advisor disabled, skipping reflection for %s", agent)
            return ReflectionResult(ok=False, agent=agent, error=ADVISOR_DISABLED)

        async with self._locks.hold(agent):
            result = await self._reflect(agent)

        if self._event_bus:
            topic = Topics.REFLECTION_COMPLETED if result.ok else Topics.REFLECTION_FAILED
            self._event_bus.publish(topic, result.model_dump(), source="reflection")
        return result

    async def _reflect(self, agent: AgentId) -> ReflectionResult:
        current = await self._store.get_current_policy(agent)
        request = AdvisoryRequest(
            agent_id=agent,
            recent_summary=await self._metrics.recent_summary(agent, minutes=self._window),
            current_policy=current,
            perf_snapshot=await self._metrics.perf_snapshot(agent, minutes=self._window),
            arm_names=self._arm_names,
        )

        try:
            text = await asyncio.wait_for(self._advisor.advise(request), self._timeout)
        except asyncio.TimeoutError:
            _logger.warning("Advisor timed out after %.1fs for %s", self._timeout, agent)
            return ReflectionResult(ok=False, agent=agent, error=ADVISOR_TIMEOUT)
        except asyncio.CancelledError:
            task = asyncio.current_task()
            if task is not None and task.cancelling():
                raise
            _logger.warning("Advisor call cancelled for %s", agent)
            return ReflectionResult(ok=False, agent=agent, error=ADVISOR_CANCELLED)
        except Exception as e:
            _logger.warning("Advisor failed for %s: %s", agent, e)
            return ReflectionResult(ok=False, agent=agent, error=ADVISOR_ERROR)

        try:
            raw_patch = extract_patch(text)
        except ValueError:
            _logger.warning("Unparseable advisor response for %s: %.200s", agent, text)
            return ReflectionResult(ok=False, agent=agent, error=INVALID_RESPONSE)

        patch = sanitize_patch(raw_patch)
        dropped = sorted(set(raw_patch) - set(patch))
        if dropped:
            _logger.info("Dropped out-of-contract keys for %s: %s", agent, ", ".join(dropped))

        updated = await self._store.patch_policy(agent, patch)
        return ReflectionResult(ok=True, agent=agent, updated=updated, patch=patch)
