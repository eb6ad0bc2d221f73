"""Navigation: link resolution, conditional skipping and before-change decisions.

``before_step_change`` listeners return a :class:`NavigationDecision`
(or ``None`` to continue). They run sequentially; ``Cancel`` stops the
pipeline and ``RedirectTo`` replaces the target for the remaining
listeners and for the navigation itself.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, List, Optional, Sequence, Union

from .cache import FlowCache
from .errors import conditional_loop
from .event_manager import Listener, call_handler
from .steps import UNRESOLVED, DynamicLink, Step, StepId, evaluate_link


class Direction(str, Enum):
    INITIAL = "initial"
    NEXT = "next"
    PREVIOUS = "previous"
    SKIP = "skip"
    GOTO = "goto"


@dataclass(frozen=True)
class Continue:
    pass


@dataclass(frozen=True)
class Cancel:
    reason: Optional[str] = None


@dataclass(frozen=True)
class RedirectTo:
    step_id: Optional[StepId]


NavigationDecision = Union[Continue, Cancel, RedirectTo]

CONTINUE = Continue()


@dataclass(frozen=True)
class BeforeStepChangeEvent:
    current_step: Optional[Step]
    target_step_id: Optional[StepId]
    direction: Direction
    context: Any = None


async def run_before_step_change(
    listeners: Sequence[Listener], event: BeforeStepChangeEvent
) -> NavigationDecision:
    """Run listeners in order and fold their decisions into one.

    Listener exceptions propagate; the engine treats them as a cancel.
    """
    target = event.target_step_id
    redirected = False
    for listener in listeners:
        current = replace(event, target_step_id=target)
        if listener.filter_fn is not None and not listener.filter_fn(current):
            continue
        decision = await call_handler(listener.handler, current)
        if decision is None or isinstance(decision, Continue):
            continue
        if isinstance(decision, Cancel):
            return decision
        if isinstance(decision, RedirectTo):
            target = decision.step_id
            redirected = True
            continue
        raise TypeError(
            f"before_step_change listener returned {decision!r}; "
            "expected Continue, Cancel, RedirectTo or None"
        )
    return RedirectTo(target) if redirected else CONTINUE


class StepResolver:
    """Resolves next/previous/skip targets for a step list.

    Dynamic link results are memoized in the given cache, keyed by
    ``(step id, link name)`` and a stable hash of the whole context
    (flow data, extras and internal state).
    """

    def __init__(self, steps: Sequence[Step], cache: FlowCache) -> None:
        self.steps = list(steps)
        self.cache = cache

    def find(self, step_id: Any) -> Optional[Step]:
        if step_id is None:
            return None
        return self.cache.find_step(self.steps, step_id)

    def evaluate(self, step: Step, link_name: str, context: Any) -> Any:
        link = getattr(step, link_name)
        if isinstance(link, DynamicLink):
            return self.cache.memoize_step_evaluation(
                (step.id, link_name), context, lambda ctx: evaluate_link(link, ctx)
            )
        return evaluate_link(link, context)

    def _following_active(self, step: Step, context: Any) -> Optional[StepId]:
        seen = False
        for candidate in self.steps:
            if seen and candidate.is_active_for(context):
                return candidate.id
            if candidate.id == step.id:
                seen = True
        return None

    def next_id(self, step: Step, context: Any) -> Optional[StepId]:
        """Explicit ``next_step``, else the first later step whose condition passes."""
        value = self.evaluate(step, "next_step", context)
        if value is UNRESOLVED:
            return self._following_active(step, context)
        return value

    def skip_id(self, step: Step, context: Any) -> Optional[StepId]:
        """``skip_to_step``, falling back to :meth:`next_id`."""
        value = self.evaluate(step, "skip_to_step", context)
        if value is UNRESOLVED:
            return self.next_id(step, context)
        return value

    def previous_id(self, step: Step, context: Any, history: List[StepId]) -> Optional[StepId]:
        """Explicit ``previous_step`` id, else pop ``history``. ``None`` when neither exists."""
        value = self.evaluate(step, "previous_step", context)
        if value is not UNRESOLVED and value is not None:
            return value
        if history:
            return history.pop()
        return None

    def resolve_landing(
        self,
        target_id: Optional[StepId],
        context: Any,
        direction: Direction,
        history: List[StepId],
    ) -> Optional[Step]:
        """Follow links past steps whose condition fails.

        Backward navigation consumes ``history`` when a skipped step has no
        explicit ``previous_step``; callers pass a copy and commit it only if
        they accept the landing. Raises NavigationError when the walk exceeds
        ``len(steps) + 1`` hops.
        """
        step = self.find(target_id)
        limit = len(self.steps) + 1
        hops = 0
        while step is not None and not step.is_active_for(context):
            hops += 1
            if hops > limit:
                raise conditional_loop(target_id, hops)
            if direction == Direction.PREVIOUS:
                following = self.previous_id(step, context, history)
            else:
                following = self.next_id(step, context)
            step = self.find(following)
        return step

    def next_candidate(self, step: Step, context: Any, history: Sequence[StepId] = ()) -> Optional[Step]:
        return self.resolve_landing(self.next_id(step, context), context, Direction.NEXT, list(history))

    def previous_candidate(self, step: Step, context: Any, history: Sequence[StepId]) -> Optional[Step]:
        scratch = list(history)
        return self.resolve_landing(
            self.previous_id(step, context, scratch), context, Direction.PREVIOUS, scratch
        )
