"""flowpilot error types with structured, actionable messages.

Error Contract:
Every user-facing error includes:
- What happened (one sentence, plain English)
- Why (root cause, not stack trace)
- Fix (specific, actionable)
- Context (relevant keys/ids, trimmed)

Errors that would leave a flow in an ambiguous position (hydration,
checklist gating, navigation) are captured into the engine's observable
``error`` field instead of being raised. Plugin install/uninstall errors
propagate to the caller.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional


@dataclass
class ErrorContext:
    """Structured context for error messages."""

    items: Dict[str, Any] = field(default_factory=dict)

    def add(self, key: str, value: Any) -> "ErrorContext":
        """Add a context item, returning self for chaining."""
        self.items[key] = value
        return self

    def format(self) -> str:
        """Format context as indented key=value lines."""
        if not self.items:
            return ""
        return "\n".join(f"  {k}={v!r}" for k, v in self.items.items())


class FlowError(Exception):
    """Base exception for flowpilot with structured error messages.

    Attributes:
        what: One-sentence description of what happened
        why: Root cause explanation
        fix: Actionable fix suggestion
        context: Relevant debugging context
    """

    def __init__(
        self,
        what: str,
        *,
        why: Optional[str] = None,
        fix: Optional[str] = None,
        context: Optional[ErrorContext] = None,
    ):
        self.what = what
        self.why = why
        self.fix = fix
        self.context = context or ErrorContext()
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        lines = [self.what]
        if self.why:
            lines.append(f"\nWhy: {self.why}")
        if self.fix:
            lines.append(f"\nFix: {self.fix}")
        ctx = self.context.format()
        if ctx:
            lines.append(f"\nContext:\n{ctx}")
        return "".join(lines)


class ConfigError(FlowError):
    """Error loading or validating a flow configuration."""


class ContextError(FlowError):
    """Invalid write to the flow context."""


class HydrationError(FlowError):
    """The load handler failed while the engine was hydrating."""


class NavigationError(FlowError):
    """Navigation could not resolve a landing step."""


class ChecklistIncompleteError(FlowError):
    """next() was called on a checklist step whose completion policy is unmet."""


class PluginError(FlowError):
    """Base class for plugin lifecycle errors."""


class PluginInstallError(PluginError):
    """A plugin could not be installed."""


class PluginUninstallError(PluginError):
    """A plugin could not be uninstalled cleanly."""


class PersistenceError(FlowError):
    """A load, persist or clear handler failed, or stored data is malformed."""


class QueueClearedError(FlowError):
    """A queued operation was cancelled before it started."""


class ImportError_(FlowError):
    """Error importing a dotted path symbol."""


# --- Helper constructors for common errors ---


def config_missing_field(field: str, path: Optional[str] = None) -> ConfigError:
    """Config is missing a required field."""
    ctx = ErrorContext()
    if path:
        ctx.add("config_path", path)
    ctx.add("field", field)

    return ConfigError(
        f"Config missing required field: '{field}'",
        why=f"The '{field}' field is required but was not found in the config.",
        fix=f"Add '{field}' to your flow definition.",
        context=ctx,
    )


def config_wrong_type(
    field: str, expected: str, got: str, path: Optional[str] = None
) -> ConfigError:
    """Config field has wrong type."""
    ctx = ErrorContext()
    if path:
        ctx.add("config_path", path)
    ctx.add("field", field)
    ctx.add("expected", expected)
    ctx.add("got", got)

    return ConfigError(
        f"Config field '{field}' has wrong type",
        why=f"Expected {expected}, but got {got}.",
        fix=f"Change '{field}' to be a {expected}.",
        context=ctx,
    )


def step_not_found(step_id: Any, valid_ids: Iterable[Any]) -> ConfigError:
    """A step id referenced by the configuration is not in the step list."""
    ids = list(valid_ids)
    shown = ids[:5]
    more = len(ids) - len(shown)
    valid_str = ", ".join(repr(i) for i in shown)
    if more > 0:
        valid_str += f" (+{more} more)"

    ctx = ErrorContext()
    ctx.add("step_id", step_id)
    ctx.add("valid_ids", shown)

    return ConfigError(
        f"Unknown step: {step_id!r}",
        why="The referenced step id does not exist in the flow's step list.",
        fix=f"Use one of the defined step ids: {valid_str or '(none)'}",
        context=ctx,
    )


def internal_context_write(keys: Iterable[str]) -> ContextError:
    """update_context() was asked to write engine-owned bookkeeping."""
    ctx = ErrorContext()
    ctx.add("keys", sorted(keys))

    return ContextError(
        "Cannot update engine-owned context data",
        why="'_internal' holds completed/skipped steps and timings maintained by the engine.",
        fix="Write your data under 'flow_data' (or another top-level key) instead.",
        context=ctx,
    )


def conditional_loop(start_step: Any, hops: int) -> NavigationError:
    """The conditional-skip loop exceeded its bound."""
    ctx = ErrorContext()
    ctx.add("start_step", start_step)
    ctx.add("hops", hops)

    return NavigationError(
        "Conditional step skipping did not terminate",
        why="Every visited step had a failing condition and the links form a cycle.",
        fix="Break the cycle in next_step/previous_step links, or make at least "
        "one step on the cycle reachable by its condition.",
        context=ctx,
    )


def checklist_incomplete(step_id: Any, completed: int, required: int) -> ChecklistIncompleteError:
    """A checklist step was submitted before its completion policy was met."""
    ctx = ErrorContext()
    ctx.add("step_id", step_id)
    ctx.add("completed", completed)
    ctx.add("required", required)

    return ChecklistIncompleteError(
        f"Checklist step {step_id!r} is not complete",
        why="Mandatory items are still pending or too few items are completed.",
        fix="Mark the remaining items with update_checklist_item() before calling next().",
        context=ctx,
    )


def plugin_already_installed(name: str) -> PluginInstallError:
    """Plugin with this name is already registered."""
    return PluginInstallError(
        f"Plugin '{name}' is already installed",
        why="Each plugin name can be installed once per engine.",
        fix="Uninstall the existing plugin first, or give the new one a different name.",
        context=ErrorContext().add("plugin", name),
    )


def plugin_missing_dependency(name: str, dependency: str) -> PluginInstallError:
    """Plugin declares a dependency that is not installed yet."""
    ctx = ErrorContext()
    ctx.add("plugin", name)
    ctx.add("dependency", dependency)

    return PluginInstallError(
        f"Plugin '{name}' depends on '{dependency}', which is not installed",
        why="Dependencies must be installed before the plugins that need them.",
        fix=f"Install '{dependency}' first, or list it earlier in the plugins config.",
        context=ctx,
    )


def plugin_has_dependents(name: str, dependents: Iterable[str]) -> PluginUninstallError:
    """Plugin is still required by other installed plugins."""
    names = sorted(dependents)
    ctx = ErrorContext()
    ctx.add("plugin", name)
    ctx.add("dependents", names)

    return PluginUninstallError(
        f"Cannot uninstall plugin '{name}': other plugins depend on it",
        why=f"Installed plugins still list it as a dependency: {', '.join(names)}.",
        fix="Uninstall the dependent plugins first.",
        context=ctx,
    )


def persistence_invalid_json(path: str, error: str) -> PersistenceError:
    """Persisted document contains invalid JSON."""
    ctx = ErrorContext()
    ctx.add("path", path)
    ctx.add("error", error)

    return PersistenceError(
        f"Invalid JSON in flow state: {path}",
        why="The stored document exists but contains malformed JSON.",
        fix="Check the document for syntax errors, or clear it to start the flow fresh.",
        context=ctx,
    )


def persistence_wrong_shape(path: str, got_type: str) -> PersistenceError:
    """Persisted document is not a JSON object."""
    ctx = ErrorContext()
    ctx.add("path", path)
    ctx.add("got_type", got_type)

    return PersistenceError(
        "Flow state must contain a JSON object",
        why=f"Expected a JSON object, but got {got_type}.",
        fix="Ensure the document is an object with 'flow_data' and 'current_step_id' fields.",
        context=ctx,
    )


def import_invalid_format(dotted_path: str) -> ImportError_:
    """Dotted path has invalid format."""
    return ImportError_(
        f"Invalid dotted path format: '{dotted_path}'",
        why="Dotted paths must be in 'module:symbol' format.",
        fix="Use the format 'mypackage.module:my_function' (colon separates module from symbol).",
        context=ErrorContext().add("dotted_path", dotted_path),
    )


def import_module_not_found(module: str, dotted_path: str) -> ImportError_:
    """Module in dotted path not found."""
    ctx = ErrorContext()
    ctx.add("module", module)
    ctx.add("dotted_path", dotted_path)

    return ImportError_(
        f"Module not found: '{module}'",
        why="The module specified in the dotted path could not be imported.",
        fix="Check that the module exists and is on your Python path.",
        context=ctx,
    )


def import_symbol_not_found(module: str, symbol: str, dotted_path: str) -> ImportError_:
    """Symbol not found in module."""
    ctx = ErrorContext()
    ctx.add("module", module)
    ctx.add("symbol", symbol)
    ctx.add("dotted_path", dotted_path)

    return ImportError_(
        f"Symbol '{symbol}' not found in module '{module}'",
        why="The module was imported successfully, but doesn't contain that symbol.",
        fix="Check the spelling and make sure it's defined at the top level of the module.",
        context=ctx,
    )


def import_not_callable(dotted_path: str, got_type: str) -> ImportError_:
    """Imported symbol was expected to be callable."""
    ctx = ErrorContext()
    ctx.add("dotted_path", dotted_path)
    ctx.add("got_type", got_type)

    return ImportError_(
        f"Not callable: '{dotted_path}'",
        why=f"Expected a function taking the flow context, but got {got_type}.",
        fix="Point the dotted path at a module-level function.",
        context=ctx,
    )
