"""Static checks over a step list.

validate_flow(steps) answers "will this flow graph work?" without running
anything. It never raises and never mutates the steps; callers decide
whether errors are fatal (see ``has_errors``).

Only static links are checked. Dynamic links are functions of the context
and are accepted as-is.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from .steps import StaticLink, Step, StepType


@dataclass
class Diagnostic:
    """A single warning or error about a flow definition."""

    level: str  # "warning" or "error"
    what: str
    why: Optional[str] = None
    fix: Optional[str] = None
    context: Dict[str, Any] = field(default_factory=dict)

    @property
    def step_id(self) -> Any:
        return self.context.get("step_id")

    def format(self) -> str:
        """Format as a structured message (matches FlowError format)."""
        lines = [f"[{self.level.upper()}] {self.what}"]
        if self.why:
            lines.append(f"Why: {self.why}")
        if self.fix:
            lines.append(f"Fix: {self.fix}")
        if self.context:
            ctx_lines = [f"  {k}={v!r}" for k, v in self.context.items()]
            lines.append("Context:\n" + "\n".join(ctx_lines))
        return "\n".join(lines)


def has_errors(issues: Sequence[Diagnostic]) -> bool:
    return any(d.level == "error" for d in issues)


def _error(what: str, step_id: Any, **kw: Any) -> Diagnostic:
    return Diagnostic("error", what, context={"step_id": step_id, **kw.pop("context", {})}, **kw)


def _warning(what: str, step_id: Any, **kw: Any) -> Diagnostic:
    return Diagnostic("warning", what, context={"step_id": step_id, **kw.pop("context", {})}, **kw)


def _check_payload(step: Step) -> List[Diagnostic]:
    issues: List[Diagnostic] = []
    payload = step.payload or {}

    if step.type == StepType.CHECKLIST:
        if not payload.get("data_key"):
            issues.append(_error(
                f"Checklist step {step.id!r} has no data_key",
                step.id,
                why="Checklist progress is stored in flow_data under data_key.",
                fix="Add 'data_key' to the step payload.",
            ))
        items = payload.get("items")
        if not isinstance(items, list) or not items:
            issues.append(_error(
                f"Checklist step {step.id!r} has no items",
                step.id,
                fix="Add a non-empty 'items' list to the step payload.",
            ))
        else:
            seen = set()
            for item in items:
                item_id = item.get("id") if isinstance(item, dict) else getattr(item, "id", None)
                if not item_id:
                    issues.append(_error(
                        f"Checklist step {step.id!r} has an item without an id",
                        step.id,
                        fix="Give every checklist item an 'id'.",
                    ))
                elif item_id in seen:
                    issues.append(_error(
                        f"Checklist step {step.id!r} has duplicate item id {item_id!r}",
                        step.id,
                        context={"item_id": item_id},
                    ))
                seen.add(item_id)

    elif step.type == StepType.CUSTOM_COMPONENT:
        if not payload.get("component_key"):
            issues.append(_error(
                f"Custom component step {step.id!r} has no component_key",
                step.id,
                why="Renderers pick the component to show by component_key.",
                fix="Add 'component_key' to the step payload.",
            ))

    elif step.type in (StepType.SINGLE_CHOICE, StepType.MULTIPLE_CHOICE):
        options = payload.get("options")
        if not isinstance(options, list) or not options:
            issues.append(_error(
                f"Choice step {step.id!r} has no options",
                step.id,
                fix="Add a non-empty 'options' list to the step payload.",
            ))

    return issues


def _check_links(step: Step, ids: set) -> List[Diagnostic]:
    issues: List[Diagnostic] = []
    links = [("next_step", step.next_step), ("previous_step", step.previous_step)]
    if step.is_skippable:
        links.append(("skip_to_step", step.skip_to_step))

    for name, link in links:
        if isinstance(link, StaticLink) and link.target is not None and link.target not in ids:
            issues.append(_warning(
                f"Step {step.id!r} {name} points to unknown step {link.target!r}",
                step.id,
                why="Navigating there ends the flow instead of showing a step.",
                fix="Fix the id, or use END to finish the flow explicitly.",
                context={"link": name, "target": link.target},
            ))
    return issues


def _static_cycles(steps: Sequence[Step]) -> List[Diagnostic]:
    """Warn about cycles built only from static next_step links between unconditional steps."""
    edges = {}
    for s in steps:
        if s.condition is None and isinstance(s.next_step, StaticLink) and s.next_step.target is not None:
            edges[s.id] = s.next_step.target

    issues: List[Diagnostic] = []
    reported = set()
    for start in edges:
        path = []
        node = start
        while node in edges and node not in path:
            path.append(node)
            node = edges[node]
        if node in path:
            cycle = path[path.index(node):]
            key = frozenset(cycle)
            if key not in reported:
                reported.add(key)
                issues.append(_warning(
                    "Static next_step links form a cycle",
                    cycle[0],
                    why="next() can never reach the end of the flow along these steps.",
                    fix="Make one of the links dynamic or point it at END.",
                    context={"cycle": cycle},
                ))
    return issues


def validate_flow(steps: Sequence[Step], *, initial_step_id: Any = None) -> List[Diagnostic]:
    issues: List[Diagnostic] = []

    if not steps:
        issues.append(Diagnostic(
            "warning",
            "Flow has no steps",
            why="An empty flow completes as soon as it starts.",
        ))
        return issues

    seen: set = set()
    for index, step in enumerate(steps):
        step_id = getattr(step, "id", None)
        if step_id is None or step_id == "":
            issues.append(_error(
                f"Step at index {index} has no id",
                None,
                fix="Give every step a unique 'id'.",
                context={"index": index},
            ))
            continue
        if step_id in seen:
            issues.append(_error(
                f"Duplicate step id: {step_id!r}",
                step_id,
                why="Step ids must be unique; navigation would always find the first one.",
                fix="Rename one of the steps.",
            ))
        seen.add(step_id)
        if not step.type_name:
            issues.append(_error(f"Step {step_id!r} has no type", step_id, fix="Set 'type' on the step."))

    for step in steps:
        if getattr(step, "id", None) in (None, ""):
            continue
        issues.extend(_check_payload(step))
        issues.extend(_check_links(step, seen))

    if initial_step_id is not None and initial_step_id not in seen:
        issues.append(_error(
            f"Initial step {initial_step_id!r} is not defined",
            initial_step_id,
            fix="Point initial_step at one of the defined steps.",
        ))

    issues.extend(_static_cycles(steps))
    return issues
