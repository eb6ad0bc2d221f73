"""Optional extras for flowpilot."""

from .retry import retry_async, with_retry, RetryConfig
from .persist_json import (
    FlowSnapshot,
    JsonFlowStore,
    load_snapshot,
    save_snapshot,
)
from .persist_sqlite import (
    SqliteFlowStore,
    save_snapshot as save_snapshot_sqlite,
    load_latest_snapshot as load_latest_snapshot_sqlite,
    list_snapshots as list_snapshots_sqlite,
    prune_snapshots as prune_snapshots_sqlite,
)

__all__ = [
    # Retry
    "retry_async",
    "with_retry",
    "RetryConfig",
    # JSON persistence
    "FlowSnapshot",
    "JsonFlowStore",
    "save_snapshot",
    "load_snapshot",
    # SQLite persistence
    "SqliteFlowStore",
    "save_snapshot_sqlite",
    "load_latest_snapshot_sqlite",
    "list_snapshots_sqlite",
    "prune_snapshots_sqlite",
]
