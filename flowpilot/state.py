"""Read-only projection of engine state.

``EngineState`` is rebuilt from the step list, context, history and status
flags every time it is requested. Nothing in it is stored by the engine.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .context import FlowContext
from .steps import Step


class EngineStatus(str, Enum):
    HYDRATING = "hydrating"
    ACTIVE = "active"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass(frozen=True)
class EngineState:
    current_step: Optional[Step]
    context: FlowContext
    status: EngineStatus
    is_first_step: bool
    is_last_step: bool
    can_go_next: bool
    can_go_previous: bool
    is_skippable: bool
    is_loading: bool
    is_hydrating: bool
    error: Optional[BaseException]
    is_completed: bool
    next_step_candidate: Optional[Step]
    previous_step_candidate: Optional[Step]
    total_steps: int
    completed_steps: int
    progress_percentage: int

    @property
    def current_step_id(self):
        return self.current_step.id if self.current_step is not None else None
