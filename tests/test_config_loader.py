from __future__ import annotations

import textwrap
from pathlib import Path

import pytest

from flowpilot import (
    ChecklistItem,
    ConfigError,
    ConfigLoader,
    DynamicLink,
    FlowEngine,
    ImportError_,
    StaticLink,
    StepType,
)

TESTS_DIR = str(Path(__file__).parent)


@pytest.fixture(autouse=True)
def tests_on_path(monkeypatch):
    """Make fixture_flows importable for dotted paths."""
    monkeypatch.syspath_prepend(TESTS_DIR)


def _write(tmp_path: Path, text: str) -> Path:
    p = tmp_path / "flow.yaml"
    p.write_text(textwrap.dedent(text), encoding="utf-8")
    return p


def test_load_flow_config(example_flow_yaml):
    config = ConfigLoader.load_flow_config(example_flow_yaml)

    assert config.flow_id == "welcome"
    assert config.flow_name == "Welcome Flow"
    assert config.flow_version == "1.0.0"
    assert config.initial_step_id == "intro"
    assert [s.id for s in config.steps] == ["intro", "tasks", "finish"]

    intro, tasks, finish = config.steps
    assert intro.type is StepType.INFORMATION
    assert intro.next_step == StaticLink("tasks")
    assert finish.next_step == StaticLink(None)
    assert tasks.payload["items"][1] == ChecklistItem("avatar", "Upload avatar", is_mandatory=False)


def test_absent_link_is_unresolved(tmp_path):
    p = _write(
        tmp_path,
        """\
        steps:
          - id: a
          - id: b
        """,
    )
    a, _ = ConfigLoader.load_flow_config(p).steps
    assert a.next_step is None


def test_dotted_paths_become_callables(dotted_flow_yaml):
    import fixture_flows

    config = ConfigLoader.load_flow_config(dotted_flow_yaml)
    profile, team, _ = config.steps

    assert profile.next_step == DynamicLink(fixture_flows.team_or_end)
    assert team.condition is fixture_flows.has_team
    assert team.on_step_active is fixture_flows.record_activation


async def test_loaded_flow_runs(dotted_flow_yaml):
    import fixture_flows

    fixture_flows.ACTIVATIONS.clear()
    engine = FlowEngine(ConfigLoader.load_flow_config(dotted_flow_yaml))
    await engine.ready()

    await engine.next({"has_team": True})
    assert engine.current_step_id == "team"
    assert fixture_flows.ACTIVATIONS == [{"has_team": True}]


def test_overrides_win(example_flow_yaml):
    config = ConfigLoader.load_flow_config(example_flow_yaml, flow_version="9.9.9", allow_skip=False)
    assert config.flow_version == "9.9.9"
    assert config.allow_skip is False


def test_invalid_yaml(tmp_path):
    p = tmp_path / "bad.yaml"
    p.write_text("steps: [unclosed", encoding="utf-8")
    with pytest.raises(ConfigError, match="Invalid YAML"):
        ConfigLoader.load_yaml(p)


def test_root_must_be_mapping(tmp_path):
    p = tmp_path / "list.yaml"
    p.write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="wrong type"):
        ConfigLoader.load_yaml(p)


def test_missing_steps(tmp_path):
    p = _write(tmp_path, "flow: {id: x}\n")
    with pytest.raises(ConfigError, match="'steps'"):
        ConfigLoader.load_flow_config(p)


def test_step_without_id(tmp_path):
    p = _write(
        tmp_path,
        """\
        steps:
          - title: Nameless
        """,
    )
    with pytest.raises(ConfigError, match=r"steps\[\]\.id"):
        ConfigLoader.load_flow_config(p)


def test_unknown_step_field(tmp_path):
    p = _write(
        tmp_path,
        """\
        steps:
          - id: a
            nxt_step: b
        """,
    )
    with pytest.raises(ConfigError, match="nxt_step"):
        ConfigLoader.load_flow_config(p)


def test_condition_must_be_dotted(tmp_path):
    p = _write(
        tmp_path,
        """\
        steps:
          - id: a
            condition: "yes please"
        """,
    )
    with pytest.raises(ConfigError, match="Invalid dotted path in 'condition'"):
        ConfigLoader.load_flow_config(p)


def test_condition_must_be_callable(tmp_path):
    p = _write(
        tmp_path,
        """\
        steps:
          - id: a
            condition: "fixture_flows:NOT_A_FUNCTION"
        """,
    )
    with pytest.raises(ImportError_, match="Not callable"):
        ConfigLoader.load_flow_config(p)


def test_checklist_items_need_ids(tmp_path):
    p = _write(
        tmp_path,
        """\
        steps:
          - id: a
            type: checklist
            payload:
              data_key: tasks
              items:
                - label: No id
        """,
    )
    with pytest.raises(ConfigError, match="items"):
        ConfigLoader.load_flow_config(p)


def test_unknown_initial_step_rejected_by_engine(tmp_path):
    p = _write(
        tmp_path,
        """\
        initial_step: nope
        steps:
          - id: a
        """,
    )
    config = ConfigLoader.load_flow_config(p)
    with pytest.raises(ConfigError, match="Unknown step"):
        FlowEngine(config)
