from __future__ import annotations

import pytest

from flowpilot.event_manager import EventManager


async def test_priority_order_sequential():
    """Handlers execute in ascending priority order (1 before 3)."""
    bus = EventManager()
    seen = []

    bus.add_listener("step_change", lambda *a: seen.append("p3"), priority=3)
    bus.add_listener("step_change", lambda *a: seen.append("p1"), priority=1)

    await bus.publish("step_change", None, None, None)
    assert seen == ["p1", "p3"]


async def test_sync_and_async_handlers():
    bus = EventManager()
    seen = []

    async def async_handler(payload):
        seen.append(("async", payload))

    bus.add_listener("flow_started", lambda p: seen.append(("sync", p)))
    bus.add_listener("flow_started", async_handler)

    await bus.publish("flow_started", {"flow_id": "x"})
    assert seen == [("sync", {"flow_id": "x"}), ("async", {"flow_id": "x"})]


async def test_filter_blocks_and_allows():
    """Filter predicate gates which events reach the handler."""
    bus = EventManager()
    seen = []

    bus.add_listener(
        "step_skipped",
        lambda p: seen.append(p["step_id"]),
        filter_fn=lambda p: p["step_id"] == "b",
    )

    await bus.publish("step_skipped", {"step_id": "a"})
    await bus.publish("step_skipped", {"step_id": "b"})

    assert seen == ["b"]


async def test_no_listeners_is_noop():
    """Publishing to an event with no listeners doesn't raise."""
    await EventManager().publish("flow_reset", {})


def test_unknown_event_rejected():
    bus = EventManager()
    with pytest.raises(ValueError, match="Unknown event"):
        bus.add_listener("nope", lambda: None)


async def test_unknown_event_publish_rejected():
    with pytest.raises(ValueError, match="Unknown event"):
        await EventManager().publish("nope")


def test_priority_range_enforced():
    bus = EventManager()
    with pytest.raises(ValueError, match="between 1 and 5"):
        bus.add_listener("error", lambda *a: None, priority=6)


async def test_on_error_continue_runs_all():
    """With on_error='continue', later handlers still run after an error."""
    bus = EventManager()
    seen = []

    def bad(_):
        seen.append("bad")
        raise RuntimeError("boom")

    bus.add_listener("flow_reset", bad, priority=1)
    bus.add_listener("flow_reset", lambda _: seen.append("good"), priority=2)

    await bus.publish("flow_reset", {})
    assert seen == ["bad", "good"]


async def test_on_error_raise_stops():
    """With on_error='raise', the first exception propagates."""
    bus = EventManager()
    seen = []

    def bad(_):
        raise RuntimeError("boom")

    bus.add_listener("flow_reset", bad, priority=1)
    bus.add_listener("flow_reset", lambda _: seen.append("good"), priority=2)

    with pytest.raises(RuntimeError, match="boom"):
        await bus.publish("flow_reset", {}, on_error="raise")
    assert seen == []


async def test_unsubscribe_is_idempotent():
    bus = EventManager()
    seen = []
    unsubscribe = bus.add_listener("flow_reset", lambda _: seen.append(1))

    assert unsubscribe() is True
    assert unsubscribe() is False
    await bus.publish("flow_reset", {})
    assert seen == []


async def test_unsubscribe_during_publish():
    bus = EventManager()
    seen = []
    handles = {}

    def once(_):
        seen.append("once")
        handles["once"]()

    handles["once"] = bus.add_listener("flow_reset", once)
    bus.add_listener("flow_reset", lambda _: seen.append("other"))

    await bus.publish("flow_reset", {})
    await bus.publish("flow_reset", {})
    assert seen == ["once", "other", "other"]


def test_remove_all_by_owner():
    bus = EventManager()
    bus.add_listener("flow_reset", lambda _: None, owner="plugin-a")
    bus.add_listener("flow_started", lambda _: None, owner="plugin-a")
    bus.add_listener("flow_started", lambda _: None, owner="plugin-b")

    assert bus.remove_all("plugin-a") == 2
    assert bus.listener_count() == 1
    assert not bus.has_listeners("flow_reset")
    assert bus.listener_count("flow_started") == 1
