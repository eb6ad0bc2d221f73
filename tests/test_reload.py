from __future__ import annotations

from pathlib import Path

import pytest

from flowpilot import ConfigLoader, FlowEngine
from flowpilot import reload as reload_mod


def _fake_awatch(edits):
    """Stand-in for watchfiles.awatch: apply each edit, then report a change."""

    async def awatch(path):
        for edit in edits:
            edit()
            yield {("modified", path)}

    return awatch


async def test_watch_path_requires_watchfiles(monkeypatch, tmp_path: Path):
    monkeypatch.setattr(reload_mod, "awatch", None)

    async def on_change():
        pass

    with pytest.raises(RuntimeError, match="watchfiles is not installed"):
        await reload_mod.watch_path(tmp_path, on_change)


async def test_watch_flow_resets_engine(monkeypatch, example_flow_yaml: Path):
    engine = FlowEngine(ConfigLoader.load_flow_config(example_flow_yaml))
    await engine.ready()
    await engine.next()
    assert engine.current_step_id == "tasks"

    def edit():
        example_flow_yaml.write_text(
            "initial_step: hello\nsteps:\n  - id: hello\n  - id: bye\n",
            encoding="utf-8",
        )

    reloaded = []
    monkeypatch.setattr(reload_mod, "awatch", _fake_awatch([edit]))
    await reload_mod.watch_flow(example_flow_yaml, engine, on_reloaded=reloaded.append)

    assert engine.current_step_id == "hello"
    assert [s.id for s in engine.get_steps()] == ["hello", "bye"]
    assert len(reloaded) == 1
    # Flow identity is kept across reloads
    assert engine.flow_info.flow_id == "welcome"


async def test_broken_edit_keeps_last_good_flow(monkeypatch, example_flow_yaml: Path):
    engine = FlowEngine(ConfigLoader.load_flow_config(example_flow_yaml))
    await engine.ready()

    def break_it():
        example_flow_yaml.write_text("steps: [unclosed", encoding="utf-8")

    reloaded = []
    monkeypatch.setattr(reload_mod, "awatch", _fake_awatch([break_it]))
    await reload_mod.watch_flow(example_flow_yaml, engine, on_reloaded=reloaded.append)

    assert reloaded == []
    assert engine.current_step_id == "intro"
    assert [s.id for s in engine.get_steps()] == ["intro", "tasks", "finish"]
