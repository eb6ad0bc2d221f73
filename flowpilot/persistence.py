"""Persistence handler slots.

The engine never stores anything itself. It calls three optional,
replaceable handlers:

- ``load()`` returns ``None`` or a mapping of context fields
  (``flow_data``, ``_internal``, extra keys) and optionally
  ``current_step_id``. A present ``current_step_id`` of ``None`` means the
  flow was already completed.
- ``persist(context, current_step_id)`` receives the full
  :class:`~flowpilot.context.FlowContext` and the active step id (``None``
  on completion).
- ``clear()`` removes persisted state.

Handlers may be plain functions or coroutine functions. Writes go through
an :class:`~flowpilot.queue.OperationQueue` with concurrency 1 so two
persists never interleave.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Union

from .context import FlowContext
from .errors import ErrorContext, HydrationError, PersistenceError
from .event_manager import call_handler
from .logger import get_logger
from .queue import OperationQueue
from .steps import StepId

LoadHandler = Callable[[], Union[Optional[Mapping[str, Any]], Awaitable[Optional[Mapping[str, Any]]]]]
PersistHandler = Callable[[FlowContext, Optional[StepId]], Any]
ClearHandler = Callable[[], Any]


@dataclass(frozen=True)
class LoadResult:
    data: Optional[Dict[str, Any]] = None
    has_step_id: bool = False
    current_step_id: Optional[StepId] = None
    error: Optional[HydrationError] = None


def _wrap(what: str, operation: str, exc: BaseException) -> PersistenceError:
    ctx = ErrorContext()
    ctx.add("operation", operation)
    ctx.add("error", f"{type(exc).__name__}: {exc}")
    return PersistenceError(
        f"{what}: {exc}",
        why=f"The {operation} handler raised an exception.",
        fix="Check the handler's storage backend; the in-memory flow state is unaffected.",
        context=ctx,
    )


class PersistenceManager:
    def __init__(
        self,
        load: Optional[LoadHandler] = None,
        persist: Optional[PersistHandler] = None,
        clear: Optional[ClearHandler] = None,
        *,
        queue: Optional[OperationQueue] = None,
        logger: Any = None,
    ) -> None:
        self.load_handler = load
        self.persist_handler = persist
        self.clear_handler = clear
        self.logger = logger or get_logger("flowpilot")
        self.queue = queue or OperationQueue(concurrency=1, logger=self.logger)

    def set_load_handler(self, handler: Optional[LoadHandler]) -> Optional[LoadHandler]:
        previous, self.load_handler = self.load_handler, handler
        return previous

    def set_persist_handler(self, handler: Optional[PersistHandler]) -> Optional[PersistHandler]:
        previous, self.persist_handler = self.persist_handler, handler
        return previous

    def set_clear_handler(self, handler: Optional[ClearHandler]) -> Optional[ClearHandler]:
        previous, self.clear_handler = self.clear_handler, handler
        return previous

    async def load(self) -> LoadResult:
        """Call the load handler. Never raises; failures come back in ``LoadResult.error``."""
        if self.load_handler is None:
            return LoadResult()

        try:
            data = await call_handler(self.load_handler)
        except Exception as e:
            self.logger.error("Failed to load flow state: %s", e)
            ctx = ErrorContext().add("error", f"{type(e).__name__}: {e}")
            err = HydrationError(
                f"Failed to load onboarding state: {e}",
                why="The load handler raised while the engine was hydrating.",
                fix="The flow starts from its initial context; fix the storage and call reset().",
                context=ctx,
            )
            err.__cause__ = e
            return LoadResult(error=err)

        if data is None:
            return LoadResult()
        if not isinstance(data, Mapping):
            ctx = ErrorContext().add("got_type", type(data).__name__)
            return LoadResult(
                error=HydrationError(
                    "Failed to load onboarding state: handler returned a non-mapping",
                    why=f"Expected a mapping of context fields, got {type(data).__name__}.",
                    fix="Return a dict such as {'flow_data': {...}, 'current_step_id': ...}.",
                    context=ctx,
                )
            )

        doc = dict(data)
        has_step_id = "current_step_id" in doc
        return LoadResult(
            data=doc,
            has_step_id=has_step_id,
            current_step_id=doc.get("current_step_id"),
        )

    async def persist(self, context: FlowContext, current_step_id: Optional[StepId]) -> bool:
        """Queue a write and wait for it. Returns False when no handler is set.

        Raises PersistenceError when the handler fails.
        """
        handler = self.persist_handler
        if handler is None:
            return False

        async def write() -> None:
            await call_handler(handler, context, current_step_id)

        try:
            await self.queue.enqueue(write, label="persist")
        except Exception as e:
            raise _wrap("Failed to persist onboarding state", "persist", e) from e
        return True

    async def clear(self, handler: Optional[ClearHandler] = None) -> bool:
        """Call the clear handler (or an explicit one). Raises PersistenceError on failure."""
        handler = handler if handler is not None else self.clear_handler
        if handler is None:
            return False
        try:
            await call_handler(handler)
        except Exception as e:
            raise _wrap("Failed to clear persisted onboarding state", "clear", e) from e
        return True
