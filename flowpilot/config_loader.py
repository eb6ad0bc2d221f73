"""YAML flow definitions.

Example flow file:

    flow:
      id: welcome
      name: Welcome Flow
      version: "1.0.0"
    initial_step: intro
    steps:
      - id: intro
        type: information
        next_step: profile
      - id: profile
        type: custom_component
        payload: {component_key: ProfileForm}
        condition: "myapp.flows:needs_profile"
        next_step: null        # explicit end of flow

Fields that may hold functions (links, ``condition``, ``on_step_active``,
``on_step_complete``, checklist item ``condition``) take a
``module:symbol`` dotted path. A link string without a colon is a step id.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .config import FlowConfig
from .errors import ConfigError, ErrorContext, config_missing_field, config_wrong_type
from .imports import load_callable
from .steps import END, ChecklistItem, Step

_LINK_FIELDS = ("next_step", "previous_step", "skip_to_step")
_CALLABLE_FIELDS = ("condition", "on_step_active", "on_step_complete")
_STEP_FIELDS = frozenset(
    {"id", "type", "payload", "title", "description", "is_skippable", "meta"}
    | set(_LINK_FIELDS)
    | set(_CALLABLE_FIELDS)
)


class ConfigLoader:
    @staticmethod
    def load_yaml(path: str | Path) -> Dict[str, Any]:
        p = Path(path)
        try:
            with p.open("r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(
                f"Invalid YAML in flow file: {p}",
                why=str(e),
                fix="Fix the YAML syntax and try again.",
                context=ErrorContext().add("config_path", str(p)),
            ) from None
        if not isinstance(data, dict):
            raise config_wrong_type(
                field="(root)",
                expected="mapping/object",
                got=type(data).__name__,
                path=str(p),
            )
        return data

    @staticmethod
    def _link(value: Any) -> Any:
        if value is None:
            return END
        if isinstance(value, str) and ":" in value:
            return load_callable(value)
        return value

    @staticmethod
    def _callable(value: Any, field: str, path: Optional[str]) -> Any:
        if value is None:
            return None
        if not isinstance(value, str) or ":" not in value:
            ctx = ErrorContext()
            if path:
                ctx.add("config_path", path)
            ctx.add("field", field)
            ctx.add("value", value)
            raise ConfigError(
                f"Invalid dotted path in '{field}': {value!r}",
                why="Functions are referenced in 'module:function' format.",
                fix=f"Use format: {field}: 'mypackage.flows:my_function'",
                context=ctx,
            )
        return load_callable(value)

    @staticmethod
    def _checklist_items(items: Any, path: Optional[str]) -> List[ChecklistItem]:
        if not isinstance(items, list):
            raise config_wrong_type("payload.items", "list", type(items).__name__, path)
        result = []
        for raw in items:
            if not isinstance(raw, dict) or "id" not in raw:
                raise config_missing_field("payload.items[].id", path)
            result.append(
                ChecklistItem(
                    id=raw["id"],
                    label=raw.get("label", ""),
                    is_mandatory=raw.get("is_mandatory", True),
                    condition=ConfigLoader._callable(raw.get("condition"), "items[].condition", path),
                )
            )
        return result

    @staticmethod
    def load_step(raw: Any, path: Optional[str] = None) -> Step:
        if not isinstance(raw, dict):
            raise config_wrong_type("steps[]", "mapping", type(raw).__name__, path)
        if "id" not in raw:
            raise config_missing_field("steps[].id", path)

        unknown = sorted(set(raw) - _STEP_FIELDS)
        if unknown:
            ctx = ErrorContext()
            if path:
                ctx.add("config_path", path)
            ctx.add("step_id", raw["id"])
            ctx.add("unknown", unknown)
            raise ConfigError(
                f"Unknown field(s) on step {raw['id']!r}: {', '.join(unknown)}",
                why="Step definitions only accept known fields.",
                fix=f"Use only: {', '.join(sorted(_STEP_FIELDS))}",
                context=ctx,
            )

        payload = raw.get("payload") or {}
        if not isinstance(payload, dict):
            raise config_wrong_type("payload", "mapping", type(payload).__name__, path)
        if "items" in payload:
            payload = {**payload, "items": ConfigLoader._checklist_items(payload["items"], path)}

        kwargs: Dict[str, Any] = {
            "id": raw["id"],
            "type": raw.get("type", "information"),
            "payload": payload,
            "title": raw.get("title"),
            "description": raw.get("description"),
            "is_skippable": bool(raw.get("is_skippable", False)),
            "meta": raw.get("meta") or {},
        }
        # Absent link keys stay unresolved; a present null is an explicit end.
        for name in _LINK_FIELDS:
            if name in raw:
                kwargs[name] = ConfigLoader._link(raw[name])
        for name in _CALLABLE_FIELDS:
            kwargs[name] = ConfigLoader._callable(raw.get(name), name, path)
        return Step(**kwargs)

    @staticmethod
    def load_steps(data: Dict[str, Any], path: Optional[str] = None) -> List[Step]:
        steps = data.get("steps")
        if steps is None:
            raise config_missing_field("steps", path)
        if not isinstance(steps, list):
            raise config_wrong_type("steps", "list", type(steps).__name__, path)
        return [ConfigLoader.load_step(raw, path) for raw in steps]

    @staticmethod
    def flow_config_from_dict(data: Dict[str, Any], path: Optional[str] = None, **overrides: Any) -> FlowConfig:
        flow = data.get("flow") or {}
        if not isinstance(flow, dict):
            raise config_wrong_type("flow", "mapping", type(flow).__name__, path)

        initial_context = data.get("initial_context")
        if initial_context is not None and not isinstance(initial_context, dict):
            raise config_wrong_type("initial_context", "mapping", type(initial_context).__name__, path)

        version = flow.get("version")
        kwargs: Dict[str, Any] = {
            "steps": ConfigLoader.load_steps(data, path),
            "initial_step_id": data.get("initial_step"),
            "initial_context": initial_context,
            "flow_id": flow.get("id"),
            "flow_name": flow.get("name"),
            "flow_version": str(version) if version is not None else None,
            "flow_metadata": flow.get("metadata") or {},
            "allow_skip": bool(data.get("allow_skip", True)),
        }
        kwargs.update(overrides)
        return FlowConfig(**kwargs)

    @staticmethod
    def load_flow_config(path: str | Path, **overrides: Any) -> FlowConfig:
        """Load a flow file into a FlowConfig. Keyword overrides win over file values."""
        data = ConfigLoader.load_yaml(path)
        return ConfigLoader.flow_config_from_dict(data, str(path), **overrides)
