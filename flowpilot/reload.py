from __future__ import annotations

from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

from .config_loader import ConfigLoader
from .errors import FlowError

try:
    from watchfiles import awatch
except ImportError:  # optional dependency
    awatch = None


async def watch_path(path: str | Path, on_change: Callable[[], Awaitable[None]]) -> None:
    if awatch is None:
        raise RuntimeError("watchfiles is not installed. Install with: pip install -e '.[reload]'")
    async for _changes in awatch(str(path)):
        await on_change()


async def watch_flow(
    path: str | Path,
    engine: Any,
    *,
    on_reloaded: Optional[Callable[[Any], Any]] = None,
) -> None:
    """Reload a YAML flow whenever it changes and reset ``engine`` onto it.

    A broken edit is logged and skipped; the engine keeps running the last
    good definition.
    """

    async def reload() -> None:
        try:
            config = ConfigLoader.load_flow_config(path)
        except FlowError as e:
            engine.logger.error("Flow reload failed for %s: %s", path, e)
            return
        await engine.reset(
            {
                "steps": config.steps,
                "initial_step_id": config.initial_step_id,
                "allow_skip": config.allow_skip,
            }
        )
        engine.logger.info("Reloaded flow from %s (%d steps)", path, len(config.steps))
        if on_reloaded is not None:
            on_reloaded(config)

    await watch_path(path, reload)

