from __future__ import annotations

import asyncio

import pytest

from flowpilot import FlowContext, HydrationError, PersistenceError
from flowpilot.persistence import PersistenceManager


async def test_load_without_handler():
    result = await PersistenceManager().load()
    assert result.data is None
    assert not result.has_step_id
    assert result.error is None


async def test_load_distinguishes_completed_from_absent():
    completed = await PersistenceManager(load=lambda: {"current_step_id": None}).load()
    fresh = await PersistenceManager(load=lambda: {"flow_data": {}}).load()

    assert completed.has_step_id and completed.current_step_id is None
    assert not fresh.has_step_id


async def test_load_failure_is_captured():
    def load():
        raise ValueError("bad row")

    result = await PersistenceManager(load=load).load()

    assert isinstance(result.error, HydrationError)
    assert str(result.error).startswith("Failed to load onboarding state: bad row")
    assert isinstance(result.error.__cause__, ValueError)


async def test_load_non_mapping_is_an_error():
    result = await PersistenceManager(load=lambda: ["not", "a", "dict"]).load()
    assert isinstance(result.error, HydrationError)


async def test_persist_receives_context_and_step():
    seen = []

    async def persist(ctx, step_id):
        seen.append((ctx.flow_data, step_id))

    pm = PersistenceManager(persist=persist)
    assert await pm.persist(FlowContext(flow_data={"a": 1}), "s1") is True
    assert seen == [({"a": 1}, "s1")]


async def test_persist_without_handler():
    assert await PersistenceManager().persist(FlowContext(), "s1") is False


async def test_persists_are_serialized():
    running = {"now": 0, "peak": 0}
    order = []

    async def persist(ctx, step_id):
        running["now"] += 1
        running["peak"] = max(running["peak"], running["now"])
        await asyncio.sleep(0.005)
        order.append(step_id)
        running["now"] -= 1

    pm = PersistenceManager(persist=persist)
    await asyncio.gather(*(pm.persist(FlowContext(), i) for i in range(4)))

    assert running["peak"] == 1
    assert order == [0, 1, 2, 3]


async def test_persist_failure_is_wrapped():
    def persist(ctx, step_id):
        raise OSError("disk full")

    with pytest.raises(PersistenceError, match="disk full") as exc_info:
        await PersistenceManager(persist=persist).persist(FlowContext(), "s1")
    assert isinstance(exc_info.value.__cause__, OSError)


async def test_clear_uses_explicit_handler():
    calls = []
    pm = PersistenceManager(clear=lambda: calls.append("configured"))

    await pm.clear(lambda: calls.append("explicit"))
    await pm.clear()

    assert calls == ["explicit", "configured"]


async def test_setters_return_previous():
    first = lambda: None  # noqa: E731
    second = lambda: None  # noqa: E731
    pm = PersistenceManager(load=first)

    assert pm.set_load_handler(second) is first
    assert pm.set_persist_handler(None) is None
    assert pm.set_clear_handler(first) is None
    assert pm.clear_handler is first
