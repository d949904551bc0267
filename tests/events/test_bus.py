"""Tests for the event bus."""

import asyncio

import pytest

from botbrain.events.bus import Event, EventBus, Topics


def test_publish_and_subscribe():
    bus = EventBus()
    received = []

    bus.subscribe("policy.updated", received.append)
    bus.publish("policy.updated", {"agent": "Alex"})

    assert len(received) == 1
    assert received[0].topic == "policy.updated"
    assert received[0].data["agent"] == "Alex"


def test_subscribers_called_in_subscription_order():
    bus = EventBus()
    calls = []

    bus.subscribe("agent.metric", lambda e: calls.append("first"))
    bus.subscribe("agent.metric", lambda e: calls.append("second"))
    bus.publish("agent.metric")

    assert calls == ["first", "second"]


def test_order_spans_patterns():
    bus = EventBus()
    calls = []

    bus.subscribe("policy.*", lambda e: calls.append("wildcard"))
    bus.subscribe("policy.updated", lambda e: calls.append("exact"))
    bus.subscribe("*", lambda e: calls.append("all"))
    bus.publish("policy.updated")

    assert calls == ["wildcard", "exact", "all"]


def test_unsubscribe_first_only_second_receives():
    bus = EventBus()
    r1, r2 = [], []

    unsub1 = bus.subscribe("topic", r1.append)
    bus.subscribe("topic", r2.append)
    bus.publish("topic", {"n": 1})
    assert len(r1) == 1 and len(r2) == 1

    unsub1()
    bus.publish("topic", {"n": 2})
    assert len(r1) == 1
    assert len(r2) == 2
    assert r2[-1].data["n"] == 2


def test_unsubscribe_twice_is_noop():
    bus = EventBus()
    received = []

    unsub = bus.subscribe("topic", received.append)
    bus.subscribe("topic", received.append)  # same handler, second subscription
    unsub()
    unsub()

    assert bus.subscriber_count == 1
    bus.publish("topic")
    assert len(received) == 1


def test_wildcard_subscribe():
    bus = EventBus()
    received = []

    bus.subscribe("scheduler.*", received.append)
    bus.publish(Topics.SCHEDULER_STARTED)
    bus.publish(Topics.SCHEDULER_TICK_COMPLETED)
    bus.publish(Topics.POLICY_UPDATED)  # should NOT match

    assert len(received) == 2


def test_failing_handler_does_not_block_others():
    bus = EventBus()
    received = []

    def broken(event: Event):
        raise RuntimeError("boom")

    bus.subscribe("topic", broken)
    bus.subscribe("topic", received.append)
    bus.publish("topic")

    assert len(received) == 1


def test_handler_may_unsubscribe_during_publish():
    bus = EventBus()
    calls = []
    unsub = None

    def once(event: Event):
        calls.append("once")
        unsub()

    unsub = bus.subscribe("topic", once)
    bus.subscribe("topic", lambda e: calls.append("always"))
    bus.publish("topic")
    bus.publish("topic")

    assert calls == ["once", "always", "always"]


@pytest.mark.asyncio
async def test_coroutine_handlers_are_scheduled():
    bus = EventBus()
    received = []

    async def handler(event: Event):
        await asyncio.sleep(0)
        received.append(event.topic)

    bus.subscribe("async.topic", handler)
    bus.publish("async.topic")
    await bus.drain()

    assert received == ["async.topic"]


def test_history_and_limit():
    bus = EventBus(history_limit=3)
    for i in range(5):
        bus.publish("a.tick", {"i": i})
    bus.publish("b.other")

    assert len(bus.history()) == 3
    assert bus.history()[0].topic == "b.other"
    assert [e.data["i"] for e in bus.history(topic_filter="a.*")] == [4, 3]


def test_publish_returns_event():
    bus = EventBus()
    event = bus.publish("test.topic", {"key": "value"}, source="metrics")

    assert event.topic == "test.topic"
    assert event.source == "metrics"
    assert event.id
    assert "test.topic" in bus.topics()


def test_same_handler_subscribed_twice_unsubscribes_independently():
    bus = EventBus()
    received = []

    unsub_first = bus.subscribe("agent.metric", received.append)
    bus.subscribe("agent.metric", received.append)
    unsub_first()
    bus.publish("agent.metric")

    assert len(received) == 1
    assert bus.subscriber_count == 1
