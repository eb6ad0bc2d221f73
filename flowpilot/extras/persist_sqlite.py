"""SQLite persistence for flow state.

Every save appends a snapshot row; ``load`` returns the newest one for the
store's key. Rows accumulate until ``prune(keep_last)`` or ``clear()`` is
called, so retention is the caller's decision.
"""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ..errors import ErrorContext, PersistenceError
from ..flows import DEFAULT_PERSISTENCE_BASE, FlowInfo, generate_persistence_key
from .persist_json import FlowSnapshot


def _ensure_table(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS flowpilot_snapshots (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            flow_key TEXT NOT NULL,
            current_step_id TEXT,
            snapshot_json TEXT NOT NULL,
            created_at TEXT NOT NULL
        )
        """
    )
    conn.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_flowpilot_snapshots_key_id
        ON flowpilot_snapshots (flow_key, id DESC)
        """
    )


def save_snapshot(
    conn: sqlite3.Connection,
    flow_key: str,
    snapshot: FlowSnapshot,
    *,
    created_at: Optional[datetime] = None,
) -> int:
    """Insert a snapshot row and return its id."""
    _ensure_table(conn)
    timestamp = created_at or datetime.now(timezone.utc)
    step = snapshot.current_step_id
    cursor = conn.execute(
        """
        INSERT INTO flowpilot_snapshots (flow_key, current_step_id, snapshot_json, created_at)
        VALUES (?, ?, ?, ?)
        """,
        (
            flow_key,
            None if step is None else str(step),
            json.dumps(snapshot.to_dict(), default=str),
            timestamp.isoformat(),
        ),
    )
    conn.commit()
    return cursor.lastrowid  # type: ignore[return-value]


def load_latest_snapshot(conn: sqlite3.Connection, flow_key: str) -> Optional[FlowSnapshot]:
    """Newest snapshot for ``flow_key``, or None.

    Raises:
        PersistenceError: If the stored JSON is invalid
    """
    _ensure_table(conn)
    row = conn.execute(
        """
        SELECT snapshot_json FROM flowpilot_snapshots
        WHERE flow_key = ?
        ORDER BY id DESC
        LIMIT 1
        """,
        (flow_key,),
    ).fetchone()
    if row is None:
        return None

    try:
        data = json.loads(row[0])
    except json.JSONDecodeError as e:
        ctx = ErrorContext()
        ctx.add("flow_key", flow_key)
        ctx.add("error", str(e))
        raise PersistenceError(
            f"Invalid JSON in snapshot for '{flow_key}'",
            why="The database contains a snapshot with malformed JSON.",
            fix="Delete the corrupted row from flowpilot_snapshots, or clear the flow's state.",
            context=ctx,
        ) from None
    return FlowSnapshot.from_dict(data, f"sqlite:{flow_key}")


def list_snapshots(conn: sqlite3.Connection, flow_key: str, *, limit: int = 10) -> List[dict]:
    """Recent snapshots as dicts with 'id', 'created_at' and 'current_step_id'."""
    _ensure_table(conn)
    cursor = conn.execute(
        """
        SELECT id, current_step_id, created_at FROM flowpilot_snapshots
        WHERE flow_key = ?
        ORDER BY id DESC
        LIMIT ?
        """,
        (flow_key, limit),
    )
    return [{"id": r[0], "current_step_id": r[1], "created_at": r[2]} for r in cursor]


def prune_snapshots(conn: sqlite3.Connection, flow_key: str, *, keep_last: int = 10) -> int:
    """Delete all but the newest ``keep_last`` snapshots. Returns rows deleted."""
    _ensure_table(conn)
    cutoff = conn.execute(
        """
        SELECT id FROM flowpilot_snapshots
        WHERE flow_key = ?
        ORDER BY id DESC
        LIMIT 1 OFFSET ?
        """,
        (flow_key, keep_last),
    ).fetchone()
    if cutoff is None:
        return 0

    cursor = conn.execute(
        "DELETE FROM flowpilot_snapshots WHERE flow_key = ? AND id <= ?",
        (flow_key, cutoff[0]),
    )
    conn.commit()
    return cursor.rowcount


def delete_snapshots(conn: sqlite3.Connection, flow_key: str) -> int:
    _ensure_table(conn)
    cursor = conn.execute("DELETE FROM flowpilot_snapshots WHERE flow_key = ?", (flow_key,))
    conn.commit()
    return cursor.rowcount


class SqliteFlowStore:
    """load/save/clear handlers over a SQLite connection.

    Calls run on the event loop thread; sqlite3 connections are bound to
    the thread that created them.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        flow_info: Optional[FlowInfo] = None,
        *,
        base: str = DEFAULT_PERSISTENCE_BASE,
    ) -> None:
        self.conn = conn
        self.flow_info = flow_info
        self._base = base
        self.key = generate_persistence_key(flow_info, base)

    def bind(self, flow_info: FlowInfo) -> None:
        if self.flow_info is None:
            self.flow_info = flow_info
            self.key = generate_persistence_key(flow_info, self._base)

    async def load(self) -> Optional[Dict[str, Any]]:
        snapshot = load_latest_snapshot(self.conn, self.key)
        return snapshot.to_dict() if snapshot is not None else None

    async def save(self, context: Any, current_step_id: Any) -> None:
        save_snapshot(self.conn, self.key, FlowSnapshot.capture(context, current_step_id, self.flow_info))

    async def clear(self) -> None:
        delete_snapshots(self.conn, self.key)

    def history(self, limit: int = 10) -> List[dict]:
        return list_snapshots(self.conn, self.key, limit=limit)

    def prune(self, keep_last: int = 10) -> int:
        return prune_snapshots(self.conn, self.key, keep_last=keep_last)
