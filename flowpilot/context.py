"""Flow context: the data bag carried through a flow.

Contexts are immutable values. Every change produces a new ``FlowContext``
so subscribers can compare old and new values to see whether anything
changed. ``flow_data`` is the open document UI code and plugins read and
write; ``internal`` is engine bookkeeping and is never merged from outside.
"""

from __future__ import annotations

import copy
import time
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Mapping, Optional, Tuple

from .errors import internal_context_write
from .steps import StepId

INTERNAL_KEY = "_internal"

# Keys written by persistence helpers next to the context fields.
DOCUMENT_KEYS = frozenset({"current_step_id", "saved_at", "flow_info"})


@dataclass(frozen=True)
class InternalState:
    started_at: float
    completed_steps: Tuple[StepId, ...] = ()
    skipped_steps: Tuple[StepId, ...] = ()
    step_start_times: Dict[str, float] = field(default_factory=dict)

    def with_completed(self, step_id: StepId) -> "InternalState":
        if step_id in self.completed_steps:
            return self
        return replace(self, completed_steps=self.completed_steps + (step_id,))

    def with_skipped(self, step_id: StepId) -> "InternalState":
        if step_id in self.skipped_steps:
            return self
        return replace(self, skipped_steps=self.skipped_steps + (step_id,))

    def with_start_time(self, step_id: StepId, when: float) -> "InternalState":
        times = dict(self.step_start_times)
        times[str(step_id)] = when
        return replace(self, step_start_times=times)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "started_at": self.started_at,
            "completed_steps": list(self.completed_steps),
            "skipped_steps": list(self.skipped_steps),
            "step_start_times": dict(self.step_start_times),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], *, default_started_at: float) -> "InternalState":
        return cls(
            started_at=data.get("started_at") or default_started_at,
            completed_steps=tuple(data.get("completed_steps") or ()),
            skipped_steps=tuple(data.get("skipped_steps") or ()),
            step_start_times={str(k): v for k, v in (data.get("step_start_times") or {}).items()},
        )


@dataclass(frozen=True)
class FlowContext:
    flow_data: Dict[str, Any] = field(default_factory=dict)
    internal: InternalState = field(default_factory=lambda: InternalState(started_at=time.time()))
    extras: Dict[str, Any] = field(default_factory=dict)

    def get(self, key: str, default: Any = None) -> Any:
        """Shortcut for ``flow_data.get`` used by conditions and link functions."""
        return self.flow_data.get(key, default)

    def merge(self, partial: Mapping[str, Any]) -> "FlowContext":
        """Return a new context with ``partial`` merged in.

        Top-level keys are merged shallowly into ``extras``; a ``flow_data``
        entry is merged one level deep into ``flow_data``. Writing
        ``_internal`` raises :class:`~flowpilot.errors.ContextError`.
        """
        if INTERNAL_KEY in partial or "internal" in partial:
            raise internal_context_write(k for k in partial if k in (INTERNAL_KEY, "internal"))

        flow_data = self.flow_data
        if "flow_data" in partial and partial["flow_data"] is not None:
            flow_data = {**self.flow_data, **partial["flow_data"]}

        extras = self.extras
        others = {k: v for k, v in partial.items() if k != "flow_data"}
        if others:
            extras = {**self.extras, **others}

        return replace(self, flow_data=flow_data, extras=extras)

    def with_flow_data(self, updates: Mapping[str, Any]) -> "FlowContext":
        return replace(self, flow_data={**self.flow_data, **updates})

    def with_internal(self, internal: InternalState) -> "FlowContext":
        return replace(self, internal=internal)

    def to_dict(self) -> Dict[str, Any]:
        """Plain-dict form handed to persist handlers."""
        doc = copy.deepcopy(dict(self.extras))
        doc["flow_data"] = copy.deepcopy(self.flow_data)
        doc[INTERNAL_KEY] = self.internal.to_dict()
        return doc

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], *, now: Optional[float] = None) -> "FlowContext":
        started = now if now is not None else time.time()
        internal = InternalState.from_dict(data.get(INTERNAL_KEY) or {}, default_started_at=started)
        extras = {
            k: v
            for k, v in data.items()
            if k not in ("flow_data", INTERNAL_KEY) and k not in DOCUMENT_KEYS
        }
        return cls(flow_data=dict(data.get("flow_data") or {}), internal=internal, extras=extras)


def build_initial_context(
    initial: Optional[Any] = None,
    loaded: Optional[Mapping[str, Any]] = None,
    *,
    now: Optional[float] = None,
) -> FlowContext:
    """Combine engine defaults, the caller's initial context and loaded data.

    Precedence: loaded data overrides the initial context, which overrides
    engine defaults. ``flow_data`` and extras merge key by key; engine
    bookkeeping comes from the loaded data when present, then the initial
    context, then a fresh start.
    """
    started = now if now is not None else time.time()

    if initial is None:
        base = FlowContext(internal=InternalState(started_at=started))
    elif isinstance(initial, FlowContext):
        base = initial
    else:
        base = FlowContext.from_dict(initial, now=started)

    if not loaded:
        return base

    restored = FlowContext.from_dict(loaded, now=started)
    internal = restored.internal if loaded.get(INTERNAL_KEY) else base.internal
    return FlowContext(
        flow_data={**base.flow_data, **restored.flow_data},
        internal=internal,
        extras={**base.extras, **restored.extras},
    )
