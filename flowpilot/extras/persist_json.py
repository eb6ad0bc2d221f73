"""JSON file persistence for flow state.

One file per persistence key, holding
``{...context fields, current_step_id, saved_at, flow_info}``.

Example:
    store = JsonFlowStore("state/", engine_info)
    await engine.use(PersistencePlugin(store))
"""

from __future__ import annotations

import asyncio
import json
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from ..context import INTERNAL_KEY, FlowContext
from ..errors import PersistenceError, persistence_invalid_json, persistence_wrong_shape
from ..flows import DEFAULT_PERSISTENCE_BASE, FlowInfo, generate_persistence_key


@dataclass(frozen=True)
class FlowSnapshot:
    """Serializable snapshot of one flow's progress."""

    flow_data: Dict[str, Any]
    current_step_id: Any
    saved_at: float
    flow_info: Dict[str, Any] = field(default_factory=dict)
    internal: Dict[str, Any] = field(default_factory=dict)
    extras: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def capture(
        cls,
        context: Any,
        current_step_id: Any,
        flow_info: Optional[FlowInfo] = None,
        *,
        saved_at: Optional[float] = None,
    ) -> "FlowSnapshot":
        doc = context.to_dict() if isinstance(context, FlowContext) else dict(context)
        return cls(
            flow_data=dict(doc.pop("flow_data", None) or {}),
            current_step_id=current_step_id,
            saved_at=saved_at if saved_at is not None else time.time(),
            flow_info=_info_dict(flow_info),
            internal=dict(doc.pop(INTERNAL_KEY, None) or {}),
            extras=doc,
        )

    def to_dict(self) -> Dict[str, Any]:
        doc = dict(self.extras)
        doc.update(
            {
                "flow_data": self.flow_data,
                INTERNAL_KEY: self.internal,
                "current_step_id": self.current_step_id,
                "saved_at": self.saved_at,
                "flow_info": self.flow_info,
            }
        )
        return doc

    @classmethod
    def from_dict(cls, data: Any, source: str) -> "FlowSnapshot":
        if not isinstance(data, dict):
            raise persistence_wrong_shape(source, type(data).__name__)
        flow_data = data.get("flow_data", {})
        if not isinstance(flow_data, dict):
            raise PersistenceError(
                "Flow state 'flow_data' field has wrong type",
                why=f"Expected an object, but got {type(flow_data).__name__}.",
                fix="Change 'flow_data' to be an object, or clear the stored state.",
            )
        extras = {
            k: v
            for k, v in data.items()
            if k not in ("flow_data", INTERNAL_KEY, "current_step_id", "saved_at", "flow_info")
        }
        return cls(
            flow_data=flow_data,
            current_step_id=data.get("current_step_id"),
            saved_at=data.get("saved_at") or 0.0,
            flow_info=data.get("flow_info") or {},
            internal=data.get(INTERNAL_KEY) or {},
            extras=extras,
        )


def _info_dict(info: Optional[FlowInfo]) -> Dict[str, Any]:
    if info is None:
        return {}
    return {"flow_id": info.flow_id, "flow_name": info.flow_name, "flow_version": info.flow_version}


def save_snapshot(snapshot: FlowSnapshot, path: str | Path) -> None:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    with p.open("w", encoding="utf-8") as f:
        json.dump(snapshot.to_dict(), f, indent=2, default=str)


def load_snapshot(path: str | Path) -> Optional[FlowSnapshot]:
    """Read a snapshot file. Returns None if the file does not exist.

    Raises:
        PersistenceError: If the JSON is invalid or has the wrong shape
    """
    p = Path(path)
    if not p.exists():
        return None
    try:
        with p.open("r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise persistence_invalid_json(str(p), str(e)) from None
    return FlowSnapshot.from_dict(data, str(p))


class JsonFlowStore:
    """load/save/clear handlers backed by a JSON file per flow key."""

    def __init__(
        self,
        directory: str | Path,
        flow_info: Optional[FlowInfo] = None,
        *,
        base: str = DEFAULT_PERSISTENCE_BASE,
    ) -> None:
        self.directory = Path(directory)
        self.flow_info = flow_info
        self.key = generate_persistence_key(flow_info, base)
        self._base = base

    def bind(self, flow_info: FlowInfo) -> None:
        """Adopt an engine's identity when the store was created without one."""
        if self.flow_info is None:
            self.flow_info = flow_info
            self.key = generate_persistence_key(flow_info, self._base)

    @property
    def path(self) -> Path:
        return self.directory / f"{self.key}.json"

    async def load(self) -> Optional[Dict[str, Any]]:
        snapshot = await asyncio.to_thread(load_snapshot, self.path)
        return snapshot.to_dict() if snapshot is not None else None

    async def save(self, context: Any, current_step_id: Any) -> None:
        snapshot = FlowSnapshot.capture(context, current_step_id, self.flow_info)
        await asyncio.to_thread(save_snapshot, snapshot, self.path)

    async def clear(self) -> None:
        self.path.unlink(missing_ok=True)
