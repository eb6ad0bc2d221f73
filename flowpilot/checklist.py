"""Checklist step helpers.

A checklist step's payload holds ``data_key``, ``items`` (dicts or
:class:`~flowpilot.steps.ChecklistItem`) and optionally
``min_items_to_complete``. Item progress lives in
``flow_data[data_key]`` as a list of ``{"id", "is_completed"}``.

Lookups here are pure. :func:`ensure_checklist_state` is the single place
that writes the initial item list; the engine calls it when a checklist
step becomes active.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .context import FlowContext
from .errors import ErrorContext, FlowError
from .steps import ChecklistItem, Step


@dataclass(frozen=True)
class ChecklistProgress:
    completed: int
    total: int
    percentage: int
    is_complete: bool


def checklist_items(step: Step) -> List[ChecklistItem]:
    return [ChecklistItem.from_value(v) for v in step.payload.get("items") or []]


def data_key(step: Step) -> str:
    key = step.payload.get("data_key")
    if not key:
        raise FlowError(
            f"Checklist step {step.id!r} has no data_key",
            why="Checklist progress is stored in flow_data under the step's data_key.",
            fix="Add 'data_key' to the step payload.",
            context=ErrorContext().add("step_id", step.id),
        )
    return key


def _default_states(items: List[ChecklistItem]) -> List[Dict[str, Any]]:
    return [{"id": item.id, "is_completed": False} for item in items]


def _stored_states(step: Step, context: FlowContext) -> Optional[List[Dict[str, Any]]]:
    stored = context.flow_data.get(data_key(step))
    if not isinstance(stored, list):
        return None
    items = checklist_items(step)
    if len(stored) != len(items):
        return None
    return stored


def checklist_item_states(step: Step, context: FlowContext) -> List[Dict[str, Any]]:
    """Current item states, or all-pending defaults when none are stored yet."""
    stored = _stored_states(step, context)
    if stored is None:
        return _default_states(checklist_items(step))
    return [dict(s) for s in stored]


def ensure_checklist_state(step: Step, context: FlowContext) -> FlowContext:
    """Write default item states if missing or out of shape; otherwise return ``context`` as is."""
    if _stored_states(step, context) is not None:
        return context
    return context.with_flow_data({data_key(step): _default_states(checklist_items(step))})


def _eligible(step: Step, context: FlowContext) -> List[ChecklistItem]:
    return [i for i in checklist_items(step) if i.condition is None or i.condition(context)]


def _completed_ids(step: Step, context: FlowContext) -> set:
    return {s["id"] for s in checklist_item_states(step, context) if s.get("is_completed")}


def is_checklist_complete(step: Step, context: FlowContext) -> bool:
    eligible = _eligible(step, context)
    done = _completed_ids(step, context)

    minimum = step.payload.get("min_items_to_complete")
    if minimum is not None:
        return sum(1 for i in eligible if i.id in done) >= minimum

    return all(i.id in done for i in eligible if i.is_mandatory)


def required_count(step: Step, context: FlowContext) -> int:
    minimum = step.payload.get("min_items_to_complete")
    if minimum is not None:
        return minimum
    return sum(1 for i in _eligible(step, context) if i.is_mandatory)


def checklist_progress(step: Step, context: FlowContext) -> ChecklistProgress:
    eligible = _eligible(step, context)
    done = _completed_ids(step, context)
    completed = sum(1 for i in eligible if i.id in done)
    total = len(eligible)
    return ChecklistProgress(
        completed=completed,
        total=total,
        percentage=round(completed / total * 100) if total else 100,
        is_complete=is_checklist_complete(step, context),
    )


def toggle_checklist_item(
    step: Step, context: FlowContext, item_id: str, is_completed: bool
) -> FlowContext:
    """Return a context with one item's completion flag set."""
    states = checklist_item_states(step, context)
    if not any(s["id"] == item_id for s in states):
        ctx = ErrorContext()
        ctx.add("step_id", step.id)
        ctx.add("item_id", item_id)
        raise FlowError(
            f"Unknown checklist item: {item_id!r}",
            why="The item id is not listed in the checklist step's payload.",
            fix="Use one of the ids defined under the step's 'items'.",
            context=ctx,
        )
    updated = [
        {**s, "is_completed": bool(is_completed)} if s["id"] == item_id else s for s in states
    ]
    return context.with_flow_data({data_key(step): updated})
