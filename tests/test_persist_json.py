"""Tests for JSON file persistence."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from flowpilot import FlowContext, FlowInfo, InternalState, PersistenceError, PersistencePlugin
from flowpilot.extras import FlowSnapshot, JsonFlowStore, load_snapshot, save_snapshot


def _context():
    return FlowContext(
        flow_data={"name": "Ada", "tasks": [{"id": "email", "is_completed": True}]},
        internal=InternalState(started_at=10.0, completed_steps=("welcome",)),
        extras={"user_id": "u1"},
    )


def test_capture_splits_context():
    snap = FlowSnapshot.capture(_context(), "profile", FlowInfo(flow_id="welcome"), saved_at=99.0)

    assert snap.flow_data["name"] == "Ada"
    assert snap.internal["completed_steps"] == ["welcome"]
    assert snap.extras == {"user_id": "u1"}
    assert snap.flow_info["flow_id"] == "welcome"
    assert snap.saved_at == 99.0


def test_file_roundtrip(tmp_path: Path):
    p = tmp_path / "nested" / "state.json"
    save_snapshot(FlowSnapshot.capture(_context(), "profile"), p)

    loaded = load_snapshot(p)
    assert loaded.current_step_id == "profile"

    restored = FlowContext.from_dict(loaded.to_dict())
    assert restored == _context()


def test_completed_flow_keeps_null_step(tmp_path: Path):
    p = tmp_path / "state.json"
    save_snapshot(FlowSnapshot.capture(_context(), None), p)

    doc = json.loads(p.read_text(encoding="utf-8"))
    assert "current_step_id" in doc
    assert doc["current_step_id"] is None


def test_missing_file_returns_none(tmp_path: Path):
    assert load_snapshot(tmp_path / "nope.json") is None


def test_invalid_json(tmp_path: Path):
    p = tmp_path / "state.json"
    p.write_text("{not json", encoding="utf-8")
    with pytest.raises(PersistenceError, match="Invalid JSON"):
        load_snapshot(p)


def test_wrong_shape(tmp_path: Path):
    p = tmp_path / "state.json"
    p.write_text("[1, 2]", encoding="utf-8")
    with pytest.raises(PersistenceError, match="JSON object"):
        load_snapshot(p)


def test_flow_data_wrong_type(tmp_path: Path):
    p = tmp_path / "state.json"
    p.write_text(json.dumps({"flow_data": "oops"}), encoding="utf-8")
    with pytest.raises(PersistenceError, match="flow_data"):
        load_snapshot(p)


def test_store_key_from_flow_info(tmp_path: Path):
    store = JsonFlowStore(tmp_path, FlowInfo(flow_id="welcome", flow_version="1.0.0"))
    assert store.path == tmp_path / "onboarding_welcome_v1.0.0.json"


def test_bind_only_when_unbound(tmp_path: Path):
    store = JsonFlowStore(tmp_path)
    assert store.key == "onboarding"

    store.bind(FlowInfo(flow_name="Team Setup"))
    assert store.key == "onboarding_team_setup"

    store.bind(FlowInfo(flow_id="other"))
    assert store.key == "onboarding_team_setup"


async def test_store_handlers(tmp_path: Path):
    store = JsonFlowStore(tmp_path, FlowInfo(flow_id="welcome"))
    assert await store.load() is None

    await store.save(_context(), "profile")
    doc = await store.load()
    assert doc["current_step_id"] == "profile"
    assert doc["flow_data"]["name"] == "Ada"

    await store.clear()
    assert not store.path.exists()
    # Clearing twice is fine
    await store.clear()


async def test_engine_resumes_from_json_store(make_engine, linear_steps, tmp_path: Path):
    store = JsonFlowStore(tmp_path)
    engine = await make_engine(linear_steps, flow_id="welcome", plugins=[PersistencePlugin(store)])
    await engine.next({"name": "Ada"})

    assert (tmp_path / "onboarding_welcome.json").exists()

    again = JsonFlowStore(tmp_path)
    resumed = await make_engine(linear_steps, flow_id="welcome", plugins=[PersistencePlugin(again)])
    assert resumed.current_step_id == "profile"
    assert resumed.context.get("name") == "Ada"
    assert resumed.context.internal.completed_steps == ("welcome",)
