#!/usr/bin/env python
"""
Embedded flowpilot Application Example

Demonstrates:
- Loading a YAML flow whose conditions live in a local module
- Persisting progress to SQLite through PersistencePlugin
- Resuming where the user left off on the next run
- Observing the flow with a small plugin
- Pruning old snapshots for retention

Run: python app.py            (run again to see it resume)
"""

from __future__ import annotations

import asyncio
import sqlite3
import sys
from pathlib import Path

# Add the example directory to path so flow.yaml can find the flows module
sys.path.insert(0, str(Path(__file__).parent))

from flowpilot import BasePlugin, ConfigLoader, FlowEngine, PersistencePlugin
from flowpilot.checklist import checklist_items
from flowpilot.extras import SqliteFlowStore

FLOW_PATH = Path(__file__).parent / "flow.yaml"


class ProgressPrinter(BasePlugin):
    """Prints each step as it becomes active."""

    name = "progress_printer"

    def on_install(self):
        self.visited = []

    def on_step_active(self, step, context):
        self.visited.append(step.id)
        print(f"  -> {step.id}: {step.title}")

    def on_step_skipped(self, payload):
        print(f"  (skipped {payload['step_id']})")

    def on_flow_complete(self, context):
        print(f"  Flow complete. Role: {context.get('role')}")


async def build_engine(conn: sqlite3.Connection, *plugins) -> FlowEngine:
    store = SqliteFlowStore(conn)
    config = ConfigLoader.load_flow_config(
        FLOW_PATH, plugins=[PersistencePlugin(store), *plugins]
    )
    engine = FlowEngine(config)
    await engine.ready()
    return engine


async def complete_checklist(engine: FlowEngine) -> None:
    for item in checklist_items(engine.current_step):
        await engine.update_checklist_item(item.id, True)
    progress = engine.get_checklist_progress()
    print(f"  Checklist: {progress.completed}/{progress.total} -> complete")


async def main():
    db_path = Path(__file__).parent / "state.db"
    conn = sqlite3.connect(db_path)

    printer = ProgressPrinter()
    engine = await build_engine(conn, printer)
    store = engine.plugins.get("persistence").store

    if engine.is_completed:
        print("Flow already completed on a previous run; resetting.")
        await engine.reset()
    elif engine.current_step_id != engine.config.effective_initial_step_id():
        print(f"Resumed at: {engine.current_step_id}")

    print("\n--- Walking the flow ---\n")
    while not engine.is_completed:
        step_id = engine.current_step_id
        if step_id == "role":
            await engine.next({"role": "manager"})
        elif step_id == "team":
            await engine.skip()
        elif step_id == "setup":
            await complete_checklist(engine)
            await engine.next()
        else:
            await engine.next()

        if engine.error is not None:
            print(f"Stopped: {engine.error}")
            break

    state = engine.get_state()
    print(f"\nProgress: {state.completed_steps}/{state.total_steps} ({state.progress_percentage}%)")

    print("\n--- Snapshot History (last 5) ---")
    for entry in store.history(limit=5):
        print(f"  {entry['id']}: {entry['current_step_id']} at {entry['created_at']}")

    store.prune(keep_last=50)
    conn.close()
    print("\nDone. State persisted to state.db")


if __name__ == "__main__":
    asyncio.run(main())
