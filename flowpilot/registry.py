from __future__ import annotations

from typing import Any, Dict, List, Optional

from .errors import ConfigError, ErrorContext
from .flows import is_version_compatible, parse_version
from .logger import get_logger


class FlowRegistry:
    """In-process index of flow engines keyed by flow id."""

    def __init__(self, logger: Any = None) -> None:
        self._engines: Dict[str, Any] = {}
        self.logger = logger or get_logger("flowpilot")

    def register(self, engine: Any) -> None:
        flow_id = engine.flow_info.flow_id
        if not flow_id:
            raise ConfigError(
                "Cannot register a flow without a flow_id",
                why="The registry indexes engines by their flow id.",
                fix="Set flow_id in the engine's FlowConfig.",
                context=ErrorContext().add("flow_name", engine.flow_info.flow_name),
            )
        if flow_id in self._engines and self._engines[flow_id] is not engine:
            self.logger.warning("Replacing registered flow: %s", flow_id)
        self._engines[flow_id] = engine

    def unregister(self, flow_id: str) -> bool:
        return self._engines.pop(flow_id, None) is not None

    def get(self, flow_id: str) -> Optional[Any]:
        return self._engines.get(flow_id)

    def has(self, flow_id: str) -> bool:
        return flow_id in self._engines

    def all(self) -> List[Any]:
        return list(self._engines.values())

    def flow_ids(self) -> List[str]:
        return list(self._engines)

    def find_by_name(self, flow_name: str) -> List[Any]:
        return [e for e in self._engines.values() if e.flow_info.flow_name == flow_name]

    def find_by_version(self, required: str, flow_name: Optional[str] = None) -> List[Any]:
        engines = self.find_by_name(flow_name) if flow_name else self.all()
        return [e for e in engines if is_version_compatible(e.flow_info.flow_version, required)]

    def latest(self, flow_name: str) -> Optional[Any]:
        """Highest-versioned engine registered under ``flow_name``."""
        candidates = self.find_by_name(flow_name)
        if not candidates:
            return None
        return max(
            candidates,
            key=lambda e: parse_version(e.flow_info.flow_version or "") or (-1, -1, -1),
        )

    def stats(self) -> Dict[str, Any]:
        by_flow: Dict[str, int] = {}
        by_version: Dict[str, int] = {}
        for engine in self._engines.values():
            name = engine.flow_info.flow_name or "unnamed"
            version = engine.flow_info.flow_version or "unversioned"
            by_flow[name] = by_flow.get(name, 0) + 1
            by_version[version] = by_version.get(version, 0) + 1
        return {
            "total_engines": len(self._engines),
            "engines_by_flow": by_flow,
            "engines_by_version": by_version,
        }

    def clear(self) -> None:
        self._engines.clear()

    def __len__(self) -> int:
        return len(self._engines)

    def __contains__(self, flow_id: object) -> bool:
        return flow_id in self._engines
