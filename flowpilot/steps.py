"""Step graph model.

A flow is an ordered list of :class:`Step` definitions. Steps carry no
behavior of their own beyond pure link functions and conditions that the
engine evaluates against the current :class:`~flowpilot.context.FlowContext`.

Links (``next_step``, ``previous_step``, ``skip_to_step``) are tagged:

- ``None`` on the step: unresolved, defer to array order or history
- ``StaticLink(target)``: a literal id, or ``StaticLink(None)`` for an
  explicit end of flow (spelled ``END`` when building steps)
- ``DynamicLink(fn)``: ``fn(context)`` returns an id, ``None`` for end of
  flow, or ``UNRESOLVED`` to defer

Raw ids and callables are coerced on construction, so
``Step("a", next_step="b")`` and ``Step("a", next_step=lambda ctx: "b")``
both work.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional, Sequence, Union

StepId = Union[str, int]


class StepType(str, Enum):
    INFORMATION = "information"
    SINGLE_CHOICE = "single_choice"
    MULTIPLE_CHOICE = "multiple_choice"
    CONFIRMATION = "confirmation"
    CHECKLIST = "checklist"
    CUSTOM_COMPONENT = "custom_component"


class _Marker:
    def __init__(self, name: str) -> None:
        self._name = name

    def __repr__(self) -> str:
        return self._name


END = _Marker("END")
UNRESOLVED = _Marker("UNRESOLVED")


@dataclass(frozen=True)
class StaticLink:
    """Literal link; ``target=None`` marks an explicit end of flow."""

    target: Optional[StepId]

    @property
    def is_end(self) -> bool:
        return self.target is None


@dataclass(frozen=True)
class DynamicLink:
    """Link computed from the flow context. ``fn`` must not mutate anything."""

    fn: Callable[[Any], Any]


StepLink = Union[StaticLink, DynamicLink]


def as_link(value: Any) -> Optional[StepLink]:
    """Coerce a raw link value into a tagged link (``None`` stays unresolved)."""
    if value is None or isinstance(value, (StaticLink, DynamicLink)):
        return value
    if value is END:
        return StaticLink(None)
    if isinstance(value, bool):
        raise TypeError("step links must be ids, END or callables, not bool")
    if isinstance(value, (str, int)):
        return StaticLink(value)
    if callable(value):
        return DynamicLink(value)
    raise TypeError(f"unsupported step link: {value!r}")


def evaluate_link(link: Optional[StepLink], context: Any) -> Any:
    """Resolve a link to a step id, ``None`` (end of flow) or ``UNRESOLVED``."""
    if link is None:
        return UNRESOLVED
    if isinstance(link, StaticLink):
        return link.target
    result = link.fn(context)
    if result is END:
        return None
    return result


@dataclass(frozen=True)
class ChecklistItem:
    id: str
    label: str = ""
    is_mandatory: bool = True
    condition: Optional[Callable[[Any], bool]] = None

    @classmethod
    def from_value(cls, value: Union["ChecklistItem", Dict[str, Any]]) -> "ChecklistItem":
        if isinstance(value, ChecklistItem):
            return value
        return cls(
            id=value["id"],
            label=value.get("label", ""),
            is_mandatory=value.get("is_mandatory", True),
            condition=value.get("condition"),
        )


@dataclass(frozen=True)
class Step:
    id: StepId
    type: Union[StepType, str] = StepType.INFORMATION
    payload: Dict[str, Any] = field(default_factory=dict)
    title: Optional[str] = None
    description: Optional[str] = None
    next_step: Optional[StepLink] = None
    previous_step: Optional[StepLink] = None
    skip_to_step: Optional[StepLink] = None
    condition: Optional[Callable[[Any], bool]] = None
    is_skippable: bool = False
    on_step_active: Optional[Callable[..., Any]] = None
    on_step_complete: Optional[Callable[..., Any]] = None
    meta: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        for name in ("next_step", "previous_step", "skip_to_step"):
            object.__setattr__(self, name, as_link(getattr(self, name)))
        if isinstance(self.type, str) and not isinstance(self.type, StepType):
            try:
                object.__setattr__(self, "type", StepType(self.type))
            except ValueError:
                # Custom renderer tags pass through untouched.
                pass

    @property
    def type_name(self) -> str:
        return self.type.value if isinstance(self.type, StepType) else str(self.type or "")

    @property
    def is_checklist(self) -> bool:
        return self.type == StepType.CHECKLIST

    def is_active_for(self, context: Any) -> bool:
        """True when the step has no condition or its condition passes."""
        return self.condition is None or bool(self.condition(context))


def find_step(steps: Sequence[Step], step_id: Any) -> Optional[Step]:
    for step in steps:
        if step.id == step_id:
            return step
    return None


def step_index(steps: Sequence[Step], step_id: Any) -> int:
    for i, step in enumerate(steps):
        if step.id == step_id:
            return i
    return -1
