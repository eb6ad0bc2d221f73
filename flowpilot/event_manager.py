from __future__ import annotations

import inspect
import uuid
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Callable, DefaultDict, Dict, FrozenSet, List, Optional

Handler = Callable[..., Any]
FilterFn = Callable[..., bool]

CORE_EVENTS: FrozenSet[str] = frozenset(
    {
        "state_change",
        "before_step_change",
        "step_change",
        "step_active",
        "step_completed",
        "flow_completed",
        "context_update",
        "error",
    }
)

# Secondary lifecycle events; each carries a single dict payload.
LIFECYCLE_EVENTS: FrozenSet[str] = frozenset(
    {
        "flow_started",
        "flow_reset",
        "step_skipped",
        "navigation_back",
        "navigation_forward",
        "navigation_jump",
        "persistence_success",
        "persistence_failure",
        "checklist_item_toggled",
        "checklist_progress_changed",
        "plugin_installed",
        "plugin_uninstalled",
        "plugin_error",
    }
)

KNOWN_EVENTS: FrozenSet[str] = CORE_EVENTS | LIFECYCLE_EVENTS


async def call_handler(fn: Callable[..., Any], *args: Any) -> Any:
    """Call a sync or async callable and return its (awaited) result."""
    result = fn(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


@dataclass(frozen=True)
class Listener:
    listener_id: str
    event_name: str
    priority: int
    handler: Handler
    owner: Optional[str] = None
    filter_fn: Optional[FilterFn] = None


class EventManager:
    """Listener registry over a fixed event vocabulary.

    Listeners run sequentially in ascending priority order (1 before 5,
    registration order within a priority). Handlers may be plain functions
    or coroutine functions.
    """

    def __init__(self, logger: Any = None, known_events: FrozenSet[str] = KNOWN_EVENTS) -> None:
        self._known = known_events
        self._listeners: DefaultDict[str, List[Listener]] = defaultdict(list)
        self._by_owner: Dict[str, List[str]] = defaultdict(list)
        self._logger = logger

    def _check_event(self, event_name: str) -> None:
        if event_name not in self._known:
            raise ValueError(
                f"Unknown event: {event_name!r}. Known events: {', '.join(sorted(self._known))}"
            )

    def add_listener(
        self,
        event_name: str,
        handler: Handler,
        *,
        priority: int = 3,
        owner: Optional[str] = None,
        filter_fn: Optional[FilterFn] = None,
    ) -> Callable[[], bool]:
        """
        Register a handler for an event.

        Returns an unsubscribe callable; calling it more than once is harmless.
        """
        self._check_event(event_name)
        if not (1 <= priority <= 5):
            raise ValueError("priority must be an integer between 1 and 5")

        listener = Listener(
            listener_id=str(uuid.uuid4()),
            event_name=event_name,
            priority=priority,
            handler=handler,
            owner=owner,
            filter_fn=filter_fn,
        )
        subs = self._listeners[event_name]
        subs.append(listener)
        subs.sort(key=lambda s: s.priority)
        if owner is not None:
            self._by_owner[owner].append(listener.listener_id)

        def unsubscribe() -> bool:
            return self.remove_listener(event_name, listener.listener_id)

        return unsubscribe

    def remove_listener(self, event_name: str, listener_id: str) -> bool:
        subs = self._listeners.get(event_name)
        if not subs:
            return False

        before = len(subs)
        subs[:] = [s for s in subs if s.listener_id != listener_id]
        removed = len(subs) != before

        if removed:
            for owner, ids in list(self._by_owner.items()):
                if listener_id in ids:
                    ids.remove(listener_id)
                    if not ids:
                        self._by_owner.pop(owner, None)
                    break
        if not subs:
            self._listeners.pop(event_name, None)
        return removed

    def remove_all(self, owner: str) -> int:
        """Remove every listener registered under ``owner``. Returns how many were removed."""
        ids = set(self._by_owner.pop(owner, []))
        count = 0
        for event_name in list(self._listeners):
            subs = self._listeners[event_name]
            keep = [s for s in subs if s.listener_id not in ids]
            count += len(subs) - len(keep)
            if keep:
                self._listeners[event_name] = keep
            else:
                self._listeners.pop(event_name, None)
        return count

    def clear(self) -> None:
        self._listeners.clear()
        self._by_owner.clear()

    def listeners(self, event_name: str) -> List[Listener]:
        self._check_event(event_name)
        return list(self._listeners.get(event_name, []))

    def has_listeners(self, event_name: str) -> bool:
        return bool(self._listeners.get(event_name))

    def listener_count(self, event_name: Optional[str] = None) -> int:
        if event_name is not None:
            return len(self._listeners.get(event_name, []))
        return sum(len(subs) for subs in self._listeners.values())

    async def publish(self, event_name: str, *args: Any, on_error: str = "continue") -> None:
        """
        Deliver an event to its listeners in priority order.

        Args:
            event_name: One of the known events
            *args: Positional payload handed to each handler
            on_error: "continue" (default, log and proceed) or "raise" (propagate first exception)
        """
        if on_error not in ("continue", "raise"):
            raise ValueError("on_error must be 'continue' or 'raise'")
        self._check_event(event_name)

        # Snapshot so handlers can unsubscribe while we iterate.
        for s in list(self._listeners.get(event_name, [])):
            if s.filter_fn is not None and not s.filter_fn(*args):
                continue
            try:
                await call_handler(s.handler, *args)
            except Exception as e:
                if self._logger:
                    self._logger.error("Error in %s listener: %s", event_name, e)
                if on_error == "raise":
                    raise
