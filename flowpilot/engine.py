"""The flow engine: hydration, navigation and lifecycle notifications.

Example:
    engine = FlowEngine(FlowConfig(steps=[
        Step("welcome", next_step="profile"),
        Step("profile", next_step=END),
    ]))
    await engine.ready()
    await engine.next({"name": "Ada"})
    engine.get_state().current_step.id   # "profile"

Navigation calls (``next``, ``previous``, ``skip``, ``go_to_step``) are
meant to be issued one at a time. A call made while hydration or another
navigation is in progress is ignored with a warning; callers that need to
queue navigations can submit them through an
:class:`~flowpilot.queue.OperationQueue`.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import replace
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

from .cache import FlowCache
from .checklist import (
    ChecklistProgress,
    checklist_item_states,
    checklist_progress,
    data_key,
    ensure_checklist_state,
    is_checklist_complete,
    required_count,
    toggle_checklist_item,
)
from .config import FlowConfig, validate_config
from .context import FlowContext, build_initial_context
from .error_handler import ErrorHandler, ErrorRecord
from .errors import FlowError, PersistenceError, PluginError, checklist_incomplete
from .event_manager import EventManager, call_handler
from .flows import FlowInfo, is_version_compatible
from .logger import get_logger, set_correlation_id
from .navigation import (
    BeforeStepChangeEvent,
    Cancel,
    Direction,
    RedirectTo,
    StepResolver,
    run_before_step_change,
)
from .persistence import PersistenceManager
from .plugins import PluginManager
from .queue import OperationQueue
from .state import EngineState, EngineStatus
from .steps import Step, StepId

_NAVIGATION_EVENTS = {
    Direction.NEXT: "navigation_forward",
    Direction.SKIP: "navigation_forward",
    Direction.PREVIOUS: "navigation_back",
    Direction.GOTO: "navigation_jump",
}


class FlowEngine:
    def __init__(self, config: FlowConfig, *, logger: Any = None) -> None:
        validate_config(config)
        self.config = config
        self.logger = logger or get_logger("flowpilot")

        self.events = EventManager(logger=self.logger)
        self.cache: FlowCache = config.cache or FlowCache()
        self.queue = OperationQueue(concurrency=1, logger=self.logger)
        self.persistence = PersistenceManager(
            config.load_data,
            config.persist_data,
            config.clear_persisted_data,
            queue=self.queue,
            logger=self.logger,
        )
        self.plugins = PluginManager(self, events=self.events, logger=self.logger)
        self.errors = ErrorHandler(
            set_error=self._set_error,
            publish=self.events.publish,
            context=lambda: self._context,
            logger=self.logger,
        )
        self.flow_info = FlowInfo(
            flow_id=config.flow_id,
            flow_name=config.flow_name,
            flow_version=config.flow_version,
            metadata=dict(config.flow_metadata),
        )

        self._resolver = StepResolver(config.steps, self.cache)
        self._context: FlowContext = build_initial_context(config.initial_context)
        self._current: Optional[Step] = None
        self._history: List[StepId] = []
        self._error: Optional[BaseException] = None
        self._is_hydrating = True
        self._is_loading = False
        self._is_completed = False
        self._completion_fired = False
        self._ready_task: Optional[asyncio.Future] = None

        if config.registry is not None:
            config.registry.register(self)

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop is not None:
            self._ready_task = loop.create_task(self._hydrate())

    # ------------------------------------------------------------------
    # Hydration
    # ------------------------------------------------------------------

    async def ready(self) -> None:
        """Wait for hydration. Never raises; failures show up in ``get_state().error``."""
        if self._ready_task is None:
            self._ready_task = asyncio.ensure_future(self._hydrate())
        await self._ready_task

    async def _install_config_plugins(self) -> List[PluginError]:
        failures = []
        for plugin in self.config.plugins:
            try:
                await self.plugins.install(plugin)
            except PluginError as e:
                failures.append(e)
        return failures

    async def _hydrate(self) -> None:
        if self.flow_info.flow_id:
            set_correlation_id(self.flow_info.flow_id)
        self._is_hydrating = True
        try:
            plugin_failures = await self._install_config_plugins()
            result = await self.persistence.load()
            self._context = build_initial_context(self.config.initial_context, result.data)

            if result.has_step_id and result.current_step_id is None:
                self._current = None
                self._is_completed = True
            else:
                target = result.current_step_id if result.has_step_id else self._initial_step_id()
                if target is not None and self._resolver.find(target) is None:
                    self.logger.warning("Persisted step %r no longer exists; starting over", target)
                    target = self._initial_step_id()
                await self._navigate(target, Direction.INITIAL)

            # Reported after the initial navigation, which resets the error field.
            for failure in plugin_failures:
                await self.errors.handle_error(failure, "install_plugin")
            if result.error is not None:
                await self.errors.handle_error(result.error, "hydrate")
        except Exception as e:
            await self.errors.handle_error(e, "hydrate")
        finally:
            self._is_hydrating = False
            self._is_loading = False

        self.logger.info(
            "Flow %s hydrated at step %r",
            self.flow_info.flow_id or self.flow_info.flow_name or "(unnamed)",
            self.current_step_id,
        )
        await self.events.publish(
            "flow_started",
            {"flow_id": self.flow_info.flow_id, "current_step_id": self.current_step_id},
        )
        await self._notify_state_change()

    def _initial_step_id(self) -> Optional[StepId]:
        return self.config.effective_initial_step_id()

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    def _can_navigate(self, operation: str) -> bool:
        if self._is_hydrating or self._is_loading:
            self.logger.warning("Ignoring %s(): engine is busy", operation)
            return False
        return True

    async def _navigate(
        self,
        target_id: Optional[StepId],
        direction: Direction,
        history: Optional[List[StepId]] = None,
        *,
        pending: Optional[FlowContext] = None,
    ) -> bool:
        """Run the before-change pipeline, land, and commit.

        ``pending`` is a context the caller wants applied only if the
        navigation commits; listeners and conditions see it in place of the
        current context.
        """
        working = list(self._history) if history is None else history
        old = self._current
        before = self._context
        ctx = before if pending is None else pending
        self._is_loading = True
        self._error = None
        committed = False
        try:
            listeners = self.events.listeners("before_step_change")
            if listeners:
                event = BeforeStepChangeEvent(old, target_id, direction, ctx)
                try:
                    decision = await run_before_step_change(listeners, event)
                except Exception as e:
                    await self.errors.handle_error(e, "before_step_change", step_id=target_id)
                    return False
                if isinstance(decision, Cancel):
                    self.logger.debug("Navigation to %r cancelled: %s", target_id, decision.reason)
                    return False
                if isinstance(decision, RedirectTo):
                    self.logger.debug("Navigation redirected from %r to %r", target_id, decision.step_id)
                    target_id = decision.step_id

            landing = self._resolver.resolve_landing(target_id, ctx, direction, working)
            if landing is None and direction == Direction.PREVIOUS:
                self.logger.debug("No active step behind %r; staying put", self.current_step_id)
                return False

            self._context = ctx
            if landing is not None:
                if (
                    direction != Direction.PREVIOUS
                    and old is not None
                    and old.id != landing.id
                    and (not working or working[-1] != old.id)
                ):
                    working.append(old.id)
                self._history = working
                await self._activate(landing)
            else:
                self._history = working
                await self._complete(direction)
            committed = True

            if pending is not None and pending.flow_data != before.flow_data:
                await self.events.publish("context_update", before, self._context)

            event_name = _NAVIGATION_EVENTS.get(direction)
            if event_name:
                await self.events.publish(
                    event_name,
                    {
                        "from_step_id": old.id if old is not None else None,
                        "to_step_id": landing.id if landing is not None else None,
                        "direction": direction.value,
                    },
                )

            if self.config.on_step_change is not None:
                try:
                    await call_handler(self.config.on_step_change, landing, old, self._context)
                except Exception as e:
                    await self.errors.handle_error(e, "on_step_change", step_id=self.current_step_id)
            await self.events.publish("step_change", landing, old, self._context)
            await self._persist_if_needed()
            return True
        except Exception as e:
            await self.errors.handle_error(
                e, f"navigate:{direction.value}", step_id=target_id if not committed else self.current_step_id
            )
            return False
        finally:
            self._is_loading = False
            if not self._is_hydrating:
                await self._notify_state_change()

    async def _activate(self, step: Step) -> None:
        self._current = step
        self._is_completed = False

        ctx = self._context.with_internal(self._context.internal.with_start_time(step.id, time.time()))
        if step.is_checklist:
            ctx = ensure_checklist_state(step, ctx)
        self._context = ctx

        if step.on_step_active is not None:
            try:
                await call_handler(step.on_step_active, self._context)
            except Exception as e:
                await self.errors.handle_error(e, "on_step_active", step_id=step.id)
        await self.events.publish("step_active", step, self._context)

    async def _complete(self, direction: Direction) -> None:
        self._current = None
        self._is_completed = True

        # Only a run-to-end fires completion, and only once until reset().
        if direction not in (Direction.NEXT, Direction.SKIP) or self._completion_fired:
            return
        self._completion_fired = True
        self.logger.info("Flow %s completed", self.flow_info.flow_id or "(unnamed)")

        if self.config.on_flow_complete is not None:
            try:
                await call_handler(self.config.on_flow_complete, self._context)
            except Exception as e:
                await self.errors.handle_error(e, "on_flow_complete")
        await self.events.publish("flow_completed", self._context)

    async def next(self, step_data: Optional[Mapping[str, Any]] = None) -> bool:
        """Complete the current step and move to the next one.

        Returns True when a navigation was committed.
        """
        if not self._can_navigate("next"):
            return False
        step = self._current
        if step is None:
            return False

        self._is_loading = True
        refused = True
        try:
            if step.is_checklist and not is_checklist_complete(step, self._context):
                progress = checklist_progress(step, self._context)
                await self.errors.handle_error(
                    checklist_incomplete(step.id, progress.completed, required_count(step, self._context)),
                    "next",
                    step_id=step.id,
                )
                return False

            data: Dict[str, Any] = dict(step_data or {})
            if step.is_checklist:
                data[data_key(step)] = checklist_item_states(step, self._context)
            if data:
                old_context, self._context = self._context, self._context.with_flow_data(data)
                if self._context.flow_data != old_context.flow_data:
                    await self.events.publish("context_update", old_context, self._context)

            if step.on_step_complete is not None:
                await call_handler(step.on_step_complete, data, self._context)
            await self.events.publish("step_completed", step, data, self._context)

            self._context = self._context.with_internal(self._context.internal.with_completed(step.id))
            target = self._resolver.next_id(step, self._context)
            refused = False
        except Exception as e:
            await self.errors.handle_error(e, "next", step_id=step.id)
            return False
        finally:
            self._is_loading = False
            if refused:
                await self._notify_state_change()

        return await self._navigate(target, Direction.NEXT)

    async def previous(self) -> bool:
        if not self._can_navigate("previous"):
            return False
        step = self._current
        if step is None:
            return False

        history = list(self._history)
        try:
            target = self._resolver.previous_id(step, self._context, history)
        except Exception as e:
            await self.errors.handle_error(e, "previous", step_id=step.id)
            await self._notify_state_change()
            return False
        if target is None:
            self.logger.debug("No previous step for %r", step.id)
            return False
        return await self._navigate(target, Direction.PREVIOUS, history)

    async def skip(self) -> bool:
        if not self._can_navigate("skip"):
            return False
        step = self._current
        if step is None or not step.is_skippable or not self.config.allow_skip:
            self.logger.warning("Step %r cannot be skipped", self.current_step_id)
            return False

        try:
            target = self._resolver.skip_id(step, self._context)
        except Exception as e:
            await self.errors.handle_error(e, "skip", step_id=step.id)
            await self._notify_state_change()
            return False

        pending = self._context.with_internal(self._context.internal.with_skipped(step.id))
        if not await self._navigate(target, Direction.SKIP, pending=pending):
            return False
        await self.events.publish("step_skipped", {"step_id": step.id, "target_step_id": target})
        return True

    async def go_to_step(self, step_id: Optional[StepId], step_data: Optional[Mapping[str, Any]] = None) -> bool:
        """Jump to ``step_id``. Conditions on the destination still apply.

        Jumping to an id that does not exist ends the flow without firing
        the completion callback.
        """
        if not self._can_navigate("go_to_step"):
            return False
        pending = self._context.with_flow_data(step_data) if step_data else None
        return await self._navigate(step_id, Direction.GOTO, pending=pending)

    # ------------------------------------------------------------------
    # Context
    # ------------------------------------------------------------------

    async def update_context(self, partial: Mapping[str, Any]) -> bool:
        """Merge ``partial`` into the context without navigating.

        Returns False (and notifies nobody) when nothing changed.
        """
        updated = self._context.merge(partial)
        return await self._commit_context(updated)

    async def _commit_context(self, updated: FlowContext) -> bool:
        if updated == self._context:
            return False
        old, self._context = self._context, updated
        await self.events.publish("context_update", old, updated)
        await self._persist_if_needed()
        await self._notify_state_change()
        return True

    async def update_checklist_item(
        self, item_id: str, is_completed: bool, step_id: Optional[StepId] = None
    ) -> bool:
        step = self._resolver.find(step_id) if step_id is not None else self._current
        if step is None or not step.is_checklist:
            self.logger.error("Cannot update checklist item %r: step %r is not a checklist", item_id, step_id)
            return False

        try:
            updated = toggle_checklist_item(step, self._context, item_id, is_completed)
        except FlowError as e:
            await self.errors.handle_error(e, "update_checklist_item", step_id=step.id)
            await self._notify_state_change()
            return False
        before = checklist_progress(step, self._context)
        changed = await self._commit_context(updated)
        if changed:
            after = checklist_progress(step, self._context)
            await self.events.publish(
                "checklist_item_toggled",
                {"step_id": step.id, "item_id": item_id, "is_completed": bool(is_completed)},
            )
            if after != before:
                await self.events.publish(
                    "checklist_progress_changed",
                    {"step_id": step.id, "progress": after},
                )
        return changed

    def get_checklist_progress(self, step_id: Optional[StepId] = None) -> Optional[ChecklistProgress]:
        step = self._resolver.find(step_id) if step_id is not None else self._current
        if step is None or not step.is_checklist:
            return None
        return checklist_progress(step, self._context)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def _persist_if_needed(self) -> None:
        if self._is_hydrating:
            return
        try:
            wrote = await self.persistence.persist(self._context, self.current_step_id)
        except PersistenceError as e:
            await self.errors.handle_error(e, "persist", step_id=self.current_step_id, set_state=False)
            await self.events.publish("persistence_failure", {"error": e, "current_step_id": self.current_step_id})
            return
        if wrote:
            await self.events.publish("persistence_success", {"current_step_id": self.current_step_id})

    async def clear_persisted_data(self) -> bool:
        """Call the clear handler. Raises PersistenceError if it fails."""
        return await self.persistence.clear()

    def set_data_load_handler(self, handler: Optional[Callable[..., Any]]) -> Optional[Callable[..., Any]]:
        return self.persistence.set_load_handler(handler)

    def set_data_persist_handler(self, handler: Optional[Callable[..., Any]]) -> Optional[Callable[..., Any]]:
        return self.persistence.set_persist_handler(handler)

    def set_clear_persisted_data_handler(
        self, handler: Optional[Callable[..., Any]]
    ) -> Optional[Callable[..., Any]]:
        return self.persistence.set_clear_handler(handler)

    # ------------------------------------------------------------------
    # Reset and plugins
    # ------------------------------------------------------------------

    async def reset(self, new_config: Optional[Union[FlowConfig, Mapping[str, Any]]] = None) -> None:
        """Tear down plugins, apply ``new_config`` and hydrate again."""
        self.logger.info("Resetting flow %s", self.flow_info.flow_id or "(unnamed)")
        if self._ready_task is not None and not self._ready_task.done():
            await self._ready_task

        # Captured before plugin teardown, which may restore older handlers.
        previous_clear = self.persistence.clear_handler
        try:
            await self.plugins.cleanup()
        except PluginError as e:
            await self.errors.handle_error(e, "reset", set_state=False)
        self.queue.clear()

        if new_config is not None:
            if isinstance(new_config, FlowConfig):
                config = new_config
                handlers = {"load_data", "persist_data", "clear_persisted_data"}
            else:
                config = self.config.merge(new_config)
                handlers = set(new_config) & {"load_data", "persist_data", "clear_persisted_data"}
            validate_config(config)
            self.config = config
            if "load_data" in handlers:
                self.persistence.set_load_handler(config.load_data)
            if "persist_data" in handlers:
                self.persistence.set_persist_handler(config.persist_data)
            if "clear_persisted_data" in handlers:
                self.persistence.set_clear_handler(config.clear_persisted_data)
            if config.cache is not None:
                self.cache = config.cache
            self.flow_info = replace(
                self.flow_info,
                flow_id=config.flow_id,
                flow_name=config.flow_name,
                flow_version=config.flow_version,
                metadata=dict(config.flow_metadata),
            )

        try:
            await self.persistence.clear(previous_clear)
        except PersistenceError as e:
            await self.errors.handle_error(e, "reset", set_state=False)

        self.cache.clear()
        self._resolver = StepResolver(self.config.steps, self.cache)
        self._context = build_initial_context(self.config.initial_context)
        self._history = []
        self._current = None
        self._error = None
        self._is_completed = False
        self._completion_fired = False
        self._is_hydrating = True
        self.errors.clear_history()

        await self.events.publish("flow_reset", {"flow_id": self.flow_info.flow_id})
        self._ready_task = asyncio.ensure_future(self._hydrate())
        await self._ready_task

    async def use(self, plugin: Any) -> "FlowEngine":
        """Install a plugin on this engine. Raises PluginInstallError on failure."""
        await self.plugins.install(plugin)
        return self

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def add_event_listener(self, event_name: str, handler: Callable[..., Any], **kwargs: Any) -> Callable[[], bool]:
        return self.events.add_listener(event_name, handler, **kwargs)

    def add_state_change_listener(self, handler: Callable[..., Any], **kwargs: Any) -> Callable[[], bool]:
        return self.events.add_listener("state_change", handler, **kwargs)

    def add_before_step_change_listener(self, handler: Callable[..., Any], **kwargs: Any) -> Callable[[], bool]:
        return self.events.add_listener("before_step_change", handler, **kwargs)

    def add_after_step_change_listener(self, handler: Callable[..., Any], **kwargs: Any) -> Callable[[], bool]:
        return self.events.add_listener("step_change", handler, **kwargs)

    def add_step_active_listener(self, handler: Callable[..., Any], **kwargs: Any) -> Callable[[], bool]:
        return self.events.add_listener("step_active", handler, **kwargs)

    def add_step_complete_listener(self, handler: Callable[..., Any], **kwargs: Any) -> Callable[[], bool]:
        return self.events.add_listener("step_completed", handler, **kwargs)

    def add_flow_complete_listener(self, handler: Callable[..., Any], **kwargs: Any) -> Callable[[], bool]:
        return self.events.add_listener("flow_completed", handler, **kwargs)

    def add_context_update_listener(self, handler: Callable[..., Any], **kwargs: Any) -> Callable[[], bool]:
        return self.events.add_listener("context_update", handler, **kwargs)

    def add_error_listener(self, handler: Callable[..., Any], **kwargs: Any) -> Callable[[], bool]:
        return self.events.add_listener("error", handler, **kwargs)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def _set_error(self, error: Optional[BaseException]) -> None:
        self._error = error

    async def _notify_state_change(self) -> None:
        if self.events.has_listeners("state_change"):
            await self.events.publish("state_change", self.get_state())

    def _candidates(self) -> Tuple[Optional[Step], Optional[Step]]:
        step = self._current
        if step is None:
            return None, None
        nxt = prev = None
        try:
            nxt = self._resolver.next_candidate(step, self._context, self._history)
        except Exception as e:
            self.logger.debug("Could not resolve next candidate for %r: %s", step.id, e)
        try:
            prev = self._resolver.previous_candidate(step, self._context, self._history)
        except Exception as e:
            self.logger.debug("Could not resolve previous candidate for %r: %s", step.id, e)
        return nxt, prev

    def _relevant_steps(self) -> List[Step]:
        relevant = []
        for step in self.config.steps:
            try:
                if step.is_active_for(self._context):
                    relevant.append(step)
            except Exception as e:
                self.logger.debug("Condition on %r raised: %s", step.id, e)
        return relevant

    def get_state(self) -> EngineState:
        step = self._current
        nxt, prev = self._candidates()

        relevant = self._relevant_steps()
        done = set(self._context.internal.completed_steps)
        completed = sum(1 for s in relevant if s.id in done)
        total = len(relevant)
        if total:
            percentage = round(completed / total * 100)
        else:
            percentage = 100 if self._is_completed else 0

        if self._is_hydrating:
            status = EngineStatus.HYDRATING
        elif self._error is not None:
            status = EngineStatus.ERROR
        elif self._is_completed:
            status = EngineStatus.COMPLETED
        else:
            status = EngineStatus.ACTIVE

        return EngineState(
            current_step=step,
            context=self._context,
            status=status,
            is_first_step=step is not None and step.id == self._initial_step_id(),
            is_last_step=step is not None and nxt is None,
            can_go_next=step is not None and nxt is not None and self._error is None and not self._is_loading,
            can_go_previous=step is not None and prev is not None and not self._is_loading,
            is_skippable=step is not None and step.is_skippable and self.config.allow_skip,
            is_loading=self._is_loading,
            is_hydrating=self._is_hydrating,
            error=self._error,
            is_completed=self._is_completed,
            next_step_candidate=nxt,
            previous_step_candidate=prev,
            total_steps=total,
            completed_steps=completed,
            progress_percentage=percentage,
        )

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def context(self) -> FlowContext:
        return self._context

    @property
    def current_step(self) -> Optional[Step]:
        return self._current

    @property
    def current_step_id(self) -> Optional[StepId]:
        return self._current.id if self._current is not None else None

    @property
    def history(self) -> Tuple[StepId, ...]:
        return tuple(self._history)

    @property
    def is_completed(self) -> bool:
        return self._is_completed

    @property
    def error(self) -> Optional[BaseException]:
        return self._error

    @property
    def error_history(self) -> List[ErrorRecord]:
        return self.errors.history

    def get_steps(self) -> List[Step]:
        return list(self.config.steps)

    def get_step(self, step_id: StepId) -> Optional[Step]:
        return self._resolver.find(step_id)

    def is_version_compatible(self, required: str) -> bool:
        return is_version_compatible(self.flow_info.flow_version, required)

    def cache_stats(self) -> Dict[str, Dict[str, int]]:
        return self.cache.stats()

    def queue_stats(self) -> Dict[str, Any]:
        return self.queue.stats()
