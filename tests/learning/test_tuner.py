"""Tests for the movement tuner."""

from datetime import datetime, timedelta, timezone

import pytest

from botbrain.learning.arms import MovementParams
from botbrain.learning.tuner import (
    GOAL_REACHED,
    PATH_UPDATE,
    REWARD_METRIC,
    MovementTuner,
    ObservableActuator,
)


class FakeActuator(ObservableActuator):
    def __init__(self):
        super().__init__()
        self.applied: list[MovementParams] = []

    def apply_movements(self, params: MovementParams) -> None:
        self.applied.append(params)


class FakeClock:
    def __init__(self):
        self.now = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def actuator():
    return FakeActuator()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def tuner(actuator, clock, bandit, registry, metrics, store, bus):
    return MovementTuner(
        "Alex", actuator, bandit, registry, metrics,
        policy_store=store, event_bus=bus, clock=clock,
    )


@pytest.mark.asyncio
async def test_attach_applies_first_arm(tuner, actuator, registry):
    arm = await tuner.attach()

    # No pulls yet, so the lowest id wins the tie
    assert arm.name == "conservative"
    assert actuator.applied == [arm.params.clamped()]
    assert tuner.session is not None and not tuner.session.closed
    assert actuator.handler_count(GOAL_REACHED) == 1
    assert actuator.handler_count(PATH_UPDATE) == 1


@pytest.mark.asyncio
async def test_attach_twice_keeps_one_subscription(tuner, actuator):
    first = await tuner.attach()
    second = await tuner.attach()
    assert first == second
    assert actuator.handler_count() == 2


@pytest.mark.asyncio
async def test_goal_reached_scores_session(tuner, actuator, clock, bandit, metrics):
    await tuner.attach()
    clock.advance(3)
    tuner.record_damage(1.0)

    await actuator.fire(GOAL_REACHED, {})

    stats = {s.arm_id: s for s in await bandit.stats("Alex")}
    assert stats[1].n == 1
    # 1.0 - 3000/30000 - 1/5
    assert stats[1].reward_mean == pytest.approx(0.7)

    recorded = await metrics.query("Alex", kind=REWARD_METRIC)
    assert len(recorded) == 1
    assert recorded[0].value == pytest.approx(0.7)
    assert recorded[0].context["arm"] == "conservative"
    assert recorded[0].context["success"] is True
    assert recorded[0].context["duration_ms"] == pytest.approx(3000)


@pytest.mark.asyncio
async def test_next_arm_applied_after_session(tuner, actuator):
    await tuner.attach()
    await actuator.fire(GOAL_REACHED, {})

    # conservative has one pull; balanced is still untried
    assert tuner.active_arm.name == "balanced"
    assert len(actuator.applied) == 2
    assert not tuner.session.closed


@pytest.mark.asyncio
async def test_no_path_counts_as_timeout(tuner, actuator, bandit, metrics):
    await tuner.attach()
    await actuator.fire(PATH_UPDATE, {"status": "noPath"})

    recorded = await metrics.query("Alex", kind=REWARD_METRIC)
    assert len(recorded) == 1
    assert recorded[0].value == pytest.approx(-1.0)
    assert recorded[0].context["timeout"] is True


@pytest.mark.asyncio
async def test_other_path_updates_ignored(tuner, actuator, metrics):
    await tuner.attach()
    await actuator.fire(PATH_UPDATE, {"status": "success"})
    await actuator.fire(PATH_UPDATE, {"status": "partial"})
    await actuator.fire(PATH_UPDATE, {})

    assert await metrics.query("Alex", kind=REWARD_METRIC) == []
    assert tuner.active_arm.name == "conservative"


@pytest.mark.asyncio
async def test_session_closes_once(tuner, bandit):
    await tuner.attach()
    session = tuner.session

    assert await tuner.finish_session(success=True) == pytest.approx(1.0)
    assert session.closed
    # The closed session cannot be scored again
    tuner._session = session
    assert await tuner.finish_session(timeout=True) is None

    total = sum(s.n for s in await bandit.stats("Alex"))
    assert total == 1


@pytest.mark.asyncio
async def test_finish_without_attach_is_noop(tuner):
    assert await tuner.finish_session(success=True) is None


@pytest.mark.asyncio
async def test_detach_releases_handlers(tuner, actuator, bus):
    before = bus.subscriber_count
    await tuner.attach()
    assert bus.subscriber_count == before + 1

    tuner.detach()
    assert actuator.handler_count() == 0
    assert bus.subscriber_count == before
    assert not tuner.attached

    tuner.detach()  # second call is harmless
    await actuator.fire(GOAL_REACHED, {})
    assert tuner.session is not None and not tuner.session.closed


@pytest.mark.asyncio
async def test_policy_update_switches_to_preferred_arm(tuner, actuator, store, bus, registry):
    await tuner.attach()
    await store.patch_policy("Alex", {"movement": {"preferred_arm": "scout"}})
    await bus.drain()

    scout = await registry.get("scout")
    assert tuner.active_arm.name == "scout"
    assert actuator.applied[-1] == scout.params.clamped()


@pytest.mark.asyncio
async def test_policy_update_for_other_agent_ignored(tuner, store, bus):
    await tuner.attach()
    await store.patch_policy("Blaze", {"movement": {"preferred_arm": "scout"}})
    await bus.drain()
    assert tuner.active_arm.name == "conservative"


@pytest.mark.asyncio
async def test_policy_update_with_unknown_arm_ignored(tuner, actuator, store, bus):
    await tuner.attach()
    await store.patch_policy("Alex", {"movement": {"preferred_arm": "teleport"}})
    await bus.drain()
    assert tuner.active_arm.name == "conservative"
    assert len(actuator.applied) == 1


@pytest.mark.asyncio
async def test_arm_applied_events(tuner, bus):
    await tuner.attach()
    events = bus.history("movement.arm_applied")
    assert events[0].data == {"agent": "Alex", "arm": "conservative"}


@pytest.mark.asyncio
async def test_storage_failure_still_opens_next_session(tuner, actuator, bandit, metrics, monkeypatch):
    await tuner.attach()
    real_update = bandit.update_reward
    calls = []

    async def flaky_update(agent, arm_name, reward):
        calls.append(arm_name)
        if len(calls) == 1:
            raise OSError("disk full")
        return await real_update(agent, arm_name, reward)

    monkeypatch.setattr(bandit, "update_reward", flaky_update)

    with pytest.raises(OSError):
        await actuator.fire(GOAL_REACHED, {})
    assert tuner.session is not None and not tuner.session.closed

    # The following terminal signal is scored normally
    assert await tuner.finish_session(success=True) == pytest.approx(1.0)
    assert len(await metrics.query("Alex", kind=REWARD_METRIC)) == 1


@pytest.mark.asyncio
async def test_failed_reselection_keeps_current_arm(tuner, bandit, monkeypatch):
    arm = await tuner.attach()

    async def broken_select(agent):
        raise OSError("database is locked")

    monkeypatch.setattr(bandit, "select_arm", broken_select)

    with pytest.raises(OSError):
        await tuner.finish_session(success=True)
    assert tuner.active_arm == arm
    assert not tuner.session.closed
