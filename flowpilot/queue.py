"""Priority operation queue with bounded concurrency.

Operations are coroutine functions submitted with a priority. A new entry
is inserted before the first queued entry with a strictly lower priority,
so equal priorities keep submission order. Dispatch happens on the next
loop iteration, which lets a burst of submissions be ordered by priority
before any of them starts.

Example:
    queue = OperationQueue(concurrency=1)
    fut = queue.enqueue(save_state, priority=5)
    await fut
"""

from __future__ import annotations

import asyncio
import itertools
import sys
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from .errors import ErrorContext, QueueClearedError
from .logger import get_logger

Operation = Callable[[], Awaitable[Any]]

URGENT_PRIORITY = sys.maxsize

_ids = itertools.count(1)


@dataclass
class QueuedOperation:
    operation: Operation
    priority: int
    future: "asyncio.Future[Any]"
    id: int = field(default_factory=lambda: next(_ids))
    label: Optional[str] = None


class OperationQueue:
    def __init__(self, concurrency: int = 1, logger: Any = None) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self._concurrency = concurrency
        self._pending: List[QueuedOperation] = []
        self._active = 0
        self._paused = False
        self._completed = 0
        self._failed = 0
        self._dispatch_scheduled = False
        self._idle: Optional[asyncio.Event] = None
        self._tasks: Set["asyncio.Task[None]"] = set()
        self.logger = logger or get_logger("flowpilot.queue")

    # --- submission ---

    def enqueue(
        self,
        operation: Operation,
        priority: int = 0,
        *,
        label: Optional[str] = None,
    ) -> "asyncio.Future[Any]":
        """Queue ``operation`` and return a future for its result.

        Must be called with a running event loop.
        """
        loop = asyncio.get_running_loop()
        entry = QueuedOperation(operation, priority, loop.create_future(), label=label)

        index = len(self._pending)
        for i, queued in enumerate(self._pending):
            if queued.priority < priority:
                index = i
                break
        self._pending.insert(index, entry)

        self._idle_event().clear()
        self._schedule_dispatch(loop)
        return entry.future

    def enqueue_urgent(self, operation: Operation, *, label: Optional[str] = None) -> "asyncio.Future[Any]":
        return self.enqueue(operation, URGENT_PRIORITY, label=label)

    # --- control ---

    def pause(self) -> None:
        self._paused = True

    def resume(self) -> None:
        if not self._paused:
            return
        self._paused = False
        self._kick()

    def set_concurrency(self, concurrency: int) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self._concurrency = concurrency
        self._kick()

    def clear(self) -> int:
        """Reject every operation that has not started yet. Returns how many were dropped."""
        dropped, self._pending = self._pending, []
        for entry in dropped:
            self._reject(entry, "Queue was cleared before the operation started")
        self._check_idle()
        return len(dropped)

    def remove_operations(self, predicate: Callable[[QueuedOperation], bool]) -> int:
        removed = [e for e in self._pending if predicate(e)]
        if not removed:
            return 0
        self._pending = [e for e in self._pending if not predicate(e)]
        for entry in removed:
            self._reject(entry, "Operation was removed from the queue")
        self._check_idle()
        return len(removed)

    async def drain(self) -> None:
        """Wait until nothing is queued or running."""
        if not self._pending and self._active == 0:
            return
        await self._idle_event().wait()

    # --- introspection ---

    @property
    def size(self) -> int:
        return len(self._pending)

    @property
    def active_count(self) -> int:
        return self._active

    @property
    def is_paused(self) -> bool:
        return self._paused

    @property
    def concurrency(self) -> int:
        return self._concurrency

    def stats(self) -> Dict[str, Any]:
        return {
            "queued": len(self._pending),
            "active": self._active,
            "completed": self._completed,
            "failed": self._failed,
            "paused": self._paused,
            "concurrency": self._concurrency,
        }

    # --- internals ---

    def _idle_event(self) -> asyncio.Event:
        if self._idle is None:
            self._idle = asyncio.Event()
            self._idle.set()
        return self._idle

    def _kick(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._schedule_dispatch(loop)

    def _schedule_dispatch(self, loop: asyncio.AbstractEventLoop) -> None:
        if not self._dispatch_scheduled:
            self._dispatch_scheduled = True
            loop.call_soon(self._dispatch)

    def _dispatch(self) -> None:
        self._dispatch_scheduled = False
        while not self._paused and self._pending and self._active < self._concurrency:
            entry = self._pending.pop(0)
            if entry.future.cancelled():
                continue
            self._active += 1
            task = asyncio.ensure_future(self._run(entry))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        self._check_idle()

    async def _run(self, entry: QueuedOperation) -> None:
        try:
            result = await entry.operation()
        except asyncio.CancelledError:
            if not entry.future.done():
                entry.future.cancel()
            raise
        except Exception as e:
            self._failed += 1
            self.logger.debug("Queued operation %s failed: %s", entry.label or entry.id, e)
            if not entry.future.done():
                entry.future.set_exception(e)
        else:
            self._completed += 1
            if not entry.future.done():
                entry.future.set_result(result)
        finally:
            self._active -= 1
            self._kick()
            self._check_idle()

    def _reject(self, entry: QueuedOperation, what: str) -> None:
        if entry.future.done():
            return
        ctx = ErrorContext().add("operation", entry.label or entry.id)
        entry.future.set_exception(
            QueueClearedError(
                what,
                why="The queue was cleared or the entry matched a removal predicate.",
                fix="Re-submit the operation if it is still needed.",
                context=ctx,
            )
        )

    def _check_idle(self) -> None:
        if not self._pending and self._active == 0 and self._idle is not None:
            self._idle.set()
