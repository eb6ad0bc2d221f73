"""Flow visualization from step definitions.

Generates diagrams without running the flow. Static links become solid
edges, array-order fallbacks are dotted, and dynamic links point at a
``?`` node since their target depends on the context.

Example:
    from flowpilot import visualize

    print(visualize("flow.yaml"))
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, List, Optional, Sequence, Set, Union

from .config import FlowConfig
from .steps import DynamicLink, StaticLink, Step


def visualize(
    source: Union[str, Path, FlowConfig, Sequence[Step]],
    *,
    format: str = "mermaid",
) -> str:
    """Generate a diagram of a flow's step graph.

    Args:
        source: Path to a YAML flow file, a FlowConfig, or a list of steps.
        format: Output format. Currently only "mermaid" is supported.

    Returns:
        Diagram source string.

    Raises:
        ValueError: If format is not supported.
    """
    if format != "mermaid":
        raise ValueError(f"Unsupported format: {format!r}. Use 'mermaid'.")

    initial = None
    if isinstance(source, (str, Path)):
        from .config_loader import ConfigLoader

        config = ConfigLoader.load_flow_config(source)
        steps, initial = config.steps, config.effective_initial_step_id()
    elif isinstance(source, FlowConfig):
        steps, initial = source.steps, source.effective_initial_step_id()
    else:
        steps = list(source)
        initial = steps[0].id if steps else None

    return _generate_mermaid(steps, initial)


def _generate_mermaid(steps: Sequence[Step], initial: Any = None) -> str:
    lines: List[str] = ["flowchart TD", ""]
    lines.append("%% Solid: next_step, dotted: array order, labelled: skip/dynamic")
    if initial is not None:
        lines.append(f"%% initial_step: {initial}")
    lines.append("")

    known: Set[Any] = {s.id for s in steps}
    needs_end = False
    needs_dynamic = False
    unknown: Set[Any] = set()

    for step in steps:
        label = (step.title or str(step.id)).replace('"', "'")
        shape = f'{_node_id(step.id)}["{label}"]'
        if step.condition is not None:
            shape += ":::conditional"
        lines.append(shape)
    lines.append("")

    edges: List[str] = []
    for index, step in enumerate(steps):
        src = _node_id(step.id)
        target, kind = _describe(step.next_step)
        if kind == "end":
            edges.append(f"{src} --> END")
            needs_end = True
        elif kind == "static":
            edges.append(f"{src} --> {_target_id(target, known, unknown)}")
        elif kind == "dynamic":
            edges.append(f'{src} -->|"dynamic"| DYNAMIC')
            needs_dynamic = True
        else:
            if index + 1 < len(steps):
                edges.append(f"{src} -.-> {_node_id(steps[index + 1].id)}")
            else:
                edges.append(f"{src} -.-> END")
                needs_end = True

        if step.is_skippable:
            target, kind = _describe(step.skip_to_step)
            if kind == "static":
                edges.append(f'{src} -->|"skip"| {_target_id(target, known, unknown)}')
            elif kind == "end":
                edges.append(f'{src} -->|"skip"| END')
                needs_end = True
            elif kind == "dynamic":
                edges.append(f'{src} -->|"skip (dynamic)"| DYNAMIC')
                needs_dynamic = True

    for step_id in sorted(unknown, key=str):
        lines.append(f'{_node_id(f"unknown_{step_id}")}["{step_id}"]:::unknown')
    if needs_end:
        lines.append("END((end))")
    if needs_dynamic:
        lines.append('DYNAMIC{"?"}')
    if unknown or needs_end or needs_dynamic:
        lines.append("")

    lines.extend(edges)
    lines.append("")
    lines.append("classDef conditional stroke-dasharray: 3 3")
    if unknown:
        lines.append("classDef unknown stroke-dasharray: 5 5, stroke: #999")

    while lines and lines[-1] == "":
        lines.pop()
    return "\n".join(lines)


def _describe(link: Optional[Any]) -> tuple:
    if isinstance(link, StaticLink):
        return (None, "end") if link.target is None else (link.target, "static")
    if isinstance(link, DynamicLink):
        return None, "dynamic"
    return None, "unresolved"


def _target_id(target: Any, known: Set[Any], unknown: Set[Any]) -> str:
    if target in known:
        return _node_id(target)
    unknown.add(target)
    return _node_id(f"unknown_{target}")


def _node_id(name: Any) -> str:
    """Convert a step id to a valid Mermaid node id."""
    result = [c if c.isalnum() or c == "_" else "_" for c in str(name)]
    node = "".join(result) or "node"
    # Mermaid reserves "end" as a keyword and dislikes ids starting with digits.
    if node.lower() == "end" or node[0].isdigit():
        node = f"step_{node}"
    return node
