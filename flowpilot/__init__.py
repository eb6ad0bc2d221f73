"""flowpilot - A headless async engine for onboarding flows, checklists and forms.

Quick Start:
    from flowpilot import END, FlowConfig, FlowEngine, Step

    engine = FlowEngine(FlowConfig(
        steps=[
            Step("welcome", title="Welcome", next_step="profile"),
            Step("profile", type="custom_component",
                 payload={"component_key": "ProfileForm"},
                 next_step=lambda ctx: "team" if ctx.get("has_team") else END),
            Step("team", title="Invite your team"),
        ],
        on_flow_complete=lambda ctx: print("done", ctx.flow_data),
    ))
    await engine.ready()
    await engine.next()
    await engine.next({"has_team": False})   # flow completes

For file-driven usage:
    from flowpilot import ConfigLoader, FlowEngine

    engine = FlowEngine(ConfigLoader.load_flow_config("flow.yaml"))
"""

from .cache import FlowCache, shared_cache
from .checklist import ChecklistProgress
from .config import FlowConfig, validate_config
from .config_loader import ConfigLoader
from .context import FlowContext, InternalState
from .engine import FlowEngine
from .errors import (
    ChecklistIncompleteError,
    ConfigError,
    ContextError,
    FlowError,
    HydrationError,
    ImportError_,
    NavigationError,
    PersistenceError,
    PluginError,
    PluginInstallError,
    PluginUninstallError,
    QueueClearedError,
)
from .flows import FlowInfo, generate_persistence_key
from .navigation import BeforeStepChangeEvent, Cancel, Continue, Direction, RedirectTo
from .plugins import BasePlugin, FunctionPlugin, PersistencePlugin, PluginManager
from .queue import OperationQueue
from .registry import FlowRegistry
from .state import EngineState, EngineStatus
from .steps import END, UNRESOLVED, ChecklistItem, DynamicLink, StaticLink, Step, StepType
from .validator import Diagnostic, has_errors, validate_flow
from .visualize import visualize

__all__ = [
    # Core
    "FlowEngine",
    "FlowConfig",
    "FlowContext",
    "EngineState",
    "EngineStatus",
    # Steps
    "Step",
    "StepType",
    "StaticLink",
    "DynamicLink",
    "ChecklistItem",
    "ChecklistProgress",
    "END",
    "UNRESOLVED",
    # Navigation decisions
    "BeforeStepChangeEvent",
    "Direction",
    "Continue",
    "Cancel",
    "RedirectTo",
    # Config
    "ConfigLoader",
    "validate_config",
    # Plugins
    "BasePlugin",
    "FunctionPlugin",
    "PersistencePlugin",
    "PluginManager",
    # Multi-flow
    "FlowInfo",
    "FlowRegistry",
    "generate_persistence_key",
    # Primitives
    "OperationQueue",
    "FlowCache",
    "shared_cache",
    # Errors
    "FlowError",
    "ConfigError",
    "ContextError",
    "HydrationError",
    "NavigationError",
    "ChecklistIncompleteError",
    "PluginError",
    "PluginInstallError",
    "PluginUninstallError",
    "PersistenceError",
    "QueueClearedError",
    "ImportError_",
    # Introspection
    "validate_flow",
    "has_errors",
    "Diagnostic",
    "visualize",
]

# Internal imports available but not in __all__:
# - InternalState: engine bookkeeping carried on FlowContext.internal
# - StepResolver, ErrorHandler, PersistenceManager: engine collaborators

__version__ = "0.1.0"
