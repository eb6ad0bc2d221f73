from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from typing import Any, Callable, Dict, List, Mapping, Optional

from .errors import ConfigError, ErrorContext, step_not_found
from .steps import Step, StepId


@dataclass(frozen=True)
class FlowConfig:
    """Everything an engine needs to run one flow.

    ``initial_context`` may be a :class:`~flowpilot.context.FlowContext` or a
    plain mapping of context fields (``{"flow_data": {...}}``). Persistence
    handlers and plugins are optional; a per-engine cache is created when
    ``cache`` is omitted.
    """

    steps: List[Step] = field(default_factory=list)
    initial_step_id: Optional[StepId] = None
    initial_context: Optional[Any] = None
    flow_id: Optional[str] = None
    flow_name: Optional[str] = None
    flow_version: Optional[str] = None
    flow_metadata: Dict[str, Any] = field(default_factory=dict)
    on_flow_complete: Optional[Callable[..., Any]] = None
    on_step_change: Optional[Callable[..., Any]] = None
    load_data: Optional[Callable[..., Any]] = None
    persist_data: Optional[Callable[..., Any]] = None
    clear_persisted_data: Optional[Callable[..., Any]] = None
    plugins: List[Any] = field(default_factory=list)
    allow_skip: bool = True
    cache: Optional[Any] = None
    registry: Optional[Any] = None

    def merge(self, changes: Mapping[str, Any]) -> "FlowConfig":
        known = {f.name for f in fields(self)}
        unknown = sorted(set(changes) - known)
        if unknown:
            raise ConfigError(
                f"Unknown flow config option(s): {', '.join(unknown)}",
                why="Only FlowConfig fields can be changed.",
                fix=f"Use one of: {', '.join(sorted(known))}",
                context=ErrorContext().add("unknown", unknown),
            )
        return replace(self, **dict(changes))

    def effective_initial_step_id(self) -> Optional[StepId]:
        if self.initial_step_id is not None:
            return self.initial_step_id
        return self.steps[0].id if self.steps else None


def validate_config(config: FlowConfig) -> None:
    """Raise ConfigError for configurations the engine cannot start from.

    Graph-level problems (dangling links, missing payload fields) are left to
    :func:`flowpilot.validator.validate_flow`, which only reports.
    """
    ids = [s.id for s in config.steps]
    if config.initial_step_id is not None and config.initial_step_id not in ids:
        raise step_not_found(config.initial_step_id, ids)

    for plugin in config.plugins:
        if not getattr(plugin, "name", None) or not callable(getattr(plugin, "install", None)):
            raise ConfigError(
                "Plugin must have a name and an install function",
                why="Configured plugins are installed by name during hydration.",
                fix="Give each plugin a non-empty 'name' and an 'install' method.",
                context=ErrorContext().add("plugin", repr(plugin)),
            )
