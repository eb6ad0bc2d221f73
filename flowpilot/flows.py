"""Flow identity helpers shared by the engine, registry and persistence stores."""

from __future__ import annotations

import re
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

DEFAULT_PERSISTENCE_BASE = "onboarding"


@dataclass(frozen=True)
class FlowInfo:
    flow_id: Optional[str] = None
    flow_name: Optional[str] = None
    flow_version: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    instance_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "flow_id": self.flow_id,
            "flow_name": self.flow_name,
            "flow_version": self.flow_version,
            "metadata": dict(self.metadata),
            "instance_id": self.instance_id,
            "created_at": self.created_at,
        }


def slugify(name: str) -> str:
    return re.sub(r"\s+", "_", name.strip()).lower()


def generate_persistence_key(info: Optional[FlowInfo], base: str = DEFAULT_PERSISTENCE_BASE) -> str:
    """Build ``<base>_<flow id or slugified name>[_v<version>]``."""
    parts = [base]
    if info is not None:
        if info.flow_id:
            parts.append(info.flow_id)
        elif info.flow_name:
            parts.append(slugify(info.flow_name))
        if info.flow_version:
            parts.append(f"v{info.flow_version}")
    return "_".join(parts)


def parse_version(version: str) -> Optional[Tuple[int, int, int]]:
    match = re.match(r"^\s*v?(\d+)(?:\.(\d+))?(?:\.(\d+))?", version)
    if not match:
        return None
    major, minor, patch = match.groups()
    return int(major), int(minor or 0), int(patch or 0)


def is_version_compatible(version: Optional[str], required: str) -> bool:
    """Semantic-ish compatibility check.

    ``"1.x"`` / ``"1.*"`` match any 1.y.z; ``"1.2.0"`` or ``"^1.2.0"`` match
    the same major with minor/patch at least as high. Non-numeric versions
    must match exactly.
    """
    if not version:
        return False
    required = required.strip()
    if required.endswith((".x", ".*")):
        wanted = parse_version(required[:-2])
        have = parse_version(version)
        return bool(wanted and have and wanted[0] == have[0])

    wanted = parse_version(required.lstrip("^"))
    have = parse_version(version)
    if wanted is None or have is None:
        return version == required
    return have[0] == wanted[0] and have[1:] >= wanted[1:]
