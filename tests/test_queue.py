from __future__ import annotations

import asyncio

import pytest

from flowpilot import OperationQueue, QueueClearedError


def _op(seen, name, result=None):
    async def run():
        seen.append(name)
        return result

    return run


async def test_priority_order_for_burst():
    """Operations submitted together run highest priority first, ties in submission order."""
    q = OperationQueue(concurrency=1)
    seen = []

    futures = [
        q.enqueue(_op(seen, "low-a"), priority=1),
        q.enqueue(_op(seen, "high"), priority=5),
        q.enqueue(_op(seen, "low-b"), priority=1),
    ]
    await asyncio.gather(*futures)

    assert seen == ["high", "low-a", "low-b"]


async def test_future_carries_result():
    q = OperationQueue()
    assert await q.enqueue(_op([], "x", result=42)) == 42


async def test_future_carries_exception():
    q = OperationQueue()

    async def bad():
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError, match="boom"):
        await q.enqueue(bad)

    assert q.stats()["failed"] == 1


async def test_urgent_jumps_ahead():
    q = OperationQueue(concurrency=1)
    seen = []

    q.enqueue(_op(seen, "normal"), priority=100)
    await asyncio.gather(q.enqueue_urgent(_op(seen, "urgent")))
    await q.drain()

    assert seen == ["urgent", "normal"]


async def test_concurrency_limit_respected():
    q = OperationQueue(concurrency=2)
    running = {"now": 0, "peak": 0}

    async def work():
        running["now"] += 1
        running["peak"] = max(running["peak"], running["now"])
        await asyncio.sleep(0.01)
        running["now"] -= 1

    await asyncio.gather(*(q.enqueue(work) for _ in range(5)))

    assert running["peak"] == 2
    assert q.stats()["completed"] == 5


async def test_pause_and_resume():
    q = OperationQueue()
    seen = []

    q.pause()
    fut = q.enqueue(_op(seen, "x"))
    await asyncio.sleep(0.01)
    assert seen == []
    assert q.size == 1
    assert q.is_paused

    q.resume()
    await fut
    assert seen == ["x"]


async def test_clear_rejects_pending():
    q = OperationQueue()
    q.pause()
    fut = q.enqueue(_op([], "x"), label="save")

    assert q.clear() == 1
    with pytest.raises(QueueClearedError, match="cleared"):
        await fut
    assert q.size == 0


async def test_remove_operations_by_predicate():
    q = OperationQueue()
    seen = []
    q.pause()
    keep = q.enqueue(_op(seen, "keep"), label="keep")
    drop = q.enqueue(_op(seen, "drop"), label="drop")

    assert q.remove_operations(lambda e: e.label == "drop") == 1
    q.resume()

    await keep
    with pytest.raises(QueueClearedError):
        await drop
    assert seen == ["keep"]


async def test_drain_waits_for_running():
    q = OperationQueue()
    seen = []

    async def slow():
        await asyncio.sleep(0.01)
        seen.append("done")

    q.enqueue(slow)
    await q.drain()
    assert seen == ["done"]
    assert q.active_count == 0


async def test_drain_on_idle_queue_returns():
    await OperationQueue().drain()


def test_invalid_concurrency():
    with pytest.raises(ValueError):
        OperationQueue(concurrency=0)
    q = OperationQueue()
    with pytest.raises(ValueError):
        q.set_concurrency(0)


async def test_running_operations_are_held_until_done():
    queue = OperationQueue()
    gate = asyncio.Event()

    async def save():
        await gate.wait()
        return "saved"

    future = queue.enqueue(save)
    await asyncio.sleep(0)
    assert len(queue._tasks) == 1

    gate.set()
    assert await future == "saved"
    for _ in range(3):
        await asyncio.sleep(0)
    assert queue._tasks == set()
