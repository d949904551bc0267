"""Shared test fixtures — scripted advisor provider and a seeded database."""

from __future__ import annotations

import asyncio

import pytest
import pytest_asyncio

from botbrain.events.bus import EventBus
from botbrain.learning.arms import ArmRegistry
from botbrain.learning.bandit import BanditSelector
from botbrain.learning.metrics import MetricsRecorder
from botbrain.llm.base import BaseLLMProvider, LLMResponse
from botbrain.migrations.runner import apply_migrations
from botbrain.policy.store import PolicyStore


class MockLLMProvider(BaseLLMProvider):
    """Provider that returns canned text. No network calls."""

    def __init__(self, responses: list[str] | None = None, delay: float = 0.0):
        self._responses = list(responses or [])
        self._delay = delay
        self.calls: list[dict] = []  # record all calls for assertions

    async def complete(self, messages, system=None, max_tokens=1024, temperature=0.3):
        self.calls.append({
            "messages": messages,
            "system": system,
            "max_tokens": max_tokens,
            "temperature": temperature,
        })
        if self._delay:
            await asyncio.sleep(self._delay)
        text = self._responses.pop(0) if self._responses else "{}"
        return LLMResponse(content=text, stop_reason="end_turn")


@pytest.fixture
def mock_llm_with_responses():
    def _factory(responses: list[str], delay: float = 0.0) -> MockLLMProvider:
        return MockLLMProvider(responses=responses, delay=delay)
    return _factory


@pytest_asyncio.fixture
async def db_path(tmp_path):
    path = str(tmp_path / "brain.db")
    await apply_migrations(path)
    return path


@pytest.fixture
def bus():
    return EventBus()


@pytest_asyncio.fixture
async def registry(db_path):
    reg = ArmRegistry(db_path)
    await reg.seed()
    return reg


@pytest_asyncio.fixture
async def bandit(db_path, registry):
    return BanditSelector(db_path, registry)


@pytest.fixture
def metrics(db_path, bus):
    return MetricsRecorder(db_path, bus)


@pytest.fixture
def store(db_path, bus):
    return PolicyStore(db_path, bus)
