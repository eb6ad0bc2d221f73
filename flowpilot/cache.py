"""Bounded LRU caches for step lookup and link evaluation.

Each engine owns a :class:`FlowCache` by default. Engines that should share
lookups (many engines over one constant step list) can opt in by passing
``shared_cache()`` in their config; keys include the step-list length and
step ids, so flows with different step lists must not share a cache unless
their ids are distinct.
"""

from __future__ import annotations

import hashlib
import json
from collections import OrderedDict
from typing import Any, Callable, Dict, Hashable, Optional, Sequence, Tuple

from .steps import Step, find_step

DEFAULT_CAPACITY = 1000

_MISSING = object()


class LRUCache:
    """Ordered-dict LRU with hit/miss counters."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = capacity
        self._data: "OrderedDict[Hashable, Any]" = OrderedDict()
        self.hits = 0
        self.misses = 0

    def get(self, key: Hashable, default: Any = _MISSING) -> Any:
        if key in self._data:
            self._data.move_to_end(key)
            self.hits += 1
            return self._data[key]
        self.misses += 1
        return default

    def set(self, key: Hashable, value: Any) -> None:
        self._data[key] = value
        self._data.move_to_end(key)
        while len(self._data) > self.capacity:
            self._data.popitem(last=False)

    def __contains__(self, key: Hashable) -> bool:
        return key in self._data

    def __len__(self) -> int:
        return len(self._data)

    def clear(self) -> None:
        self._data.clear()
        self.hits = 0
        self.misses = 0

    def stats(self) -> Dict[str, int]:
        return {
            "size": len(self._data),
            "capacity": self.capacity,
            "hits": self.hits,
            "misses": self.misses,
        }


def stable_hash(data: Any) -> str:
    """Hash a JSON-like document independent of key insertion order."""
    encoded = json.dumps(data, sort_keys=True, default=repr, separators=(",", ":"))
    return hashlib.sha1(encoded.encode("utf-8")).hexdigest()


def _context_key(context: Any) -> Any:
    """Everything a link function can read: flow data, extras and internal state."""
    if context is None:
        return {}
    if isinstance(context, dict):
        return context
    internal = getattr(context, "internal", None)
    return {
        "flow_data": getattr(context, "flow_data", {}),
        "extras": getattr(context, "extras", {}),
        "internal": internal.to_dict() if internal is not None else None,
    }


class FlowCache:
    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        self.steps = LRUCache(capacity)
        self.evaluations = LRUCache(capacity)

    def find_step(self, steps: Sequence[Step], step_id: Any) -> Optional[Step]:
        key: Tuple[int, Any] = (len(steps), step_id)
        cached = self.steps.get(key)
        if cached is not _MISSING:
            return cached
        step = find_step(steps, step_id)
        # Misses stay uncached so a step list rebuilt with the same length still resolves.
        if step is not None:
            self.steps.set(key, step)
        return step

    def memoize_step_evaluation(self, step_id: Any, context: Any, fn: Callable[[Any], Any]) -> Any:
        """Return ``fn(context)``, cached by step id and a stable hash of the whole context."""
        key = (step_id, stable_hash(_context_key(context)))
        cached = self.evaluations.get(key)
        if cached is not _MISSING:
            return cached
        value = fn(context)
        self.evaluations.set(key, value)
        return value

    def clear(self) -> None:
        self.steps.clear()
        self.evaluations.clear()

    def stats(self) -> Dict[str, Dict[str, int]]:
        return {"steps": self.steps.stats(), "evaluations": self.evaluations.stats()}


_shared: Optional[FlowCache] = None


def shared_cache() -> FlowCache:
    """Process-wide cache for engines that explicitly opt into sharing."""
    global _shared
    if _shared is None:
        _shared = FlowCache()
    return _shared
