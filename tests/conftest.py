from __future__ import annotations

import textwrap
from pathlib import Path

import pytest

from flowpilot import END, FlowConfig, FlowEngine, Step


@pytest.fixture
def linear_steps():
    return [
        Step("welcome", title="Welcome", next_step="profile"),
        Step("profile", title="Profile", next_step="done"),
        Step("done", title="All set", next_step=END),
    ]


@pytest.fixture
def make_engine():
    """Build an engine and wait for hydration."""

    async def factory(steps, **kwargs) -> FlowEngine:
        engine = FlowEngine(FlowConfig(steps=list(steps), **kwargs))
        await engine.ready()
        return engine

    return factory


@pytest.fixture
def example_flow_yaml(tmp_path: Path) -> Path:
    p = tmp_path / "flow.yaml"
    p.write_text(
        textwrap.dedent(
            """\
            flow:
              id: welcome
              name: Welcome Flow
              version: "1.0.0"
            initial_step: intro
            steps:
              - id: intro
                title: Intro
                type: information
                next_step: tasks
              - id: tasks
                type: checklist
                payload:
                  data_key: setup_tasks
                  items:
                    - id: email
                      label: Verify email
                    - id: avatar
                      label: Upload avatar
                      is_mandatory: false
                next_step: finish
              - id: finish
                type: confirmation
                next_step: null
            """
        ),
        encoding="utf-8",
    )
    return p


@pytest.fixture
def dotted_flow_yaml(tmp_path: Path) -> Path:
    p = tmp_path / "dotted_flow.yaml"
    p.write_text(
        textwrap.dedent(
            """\
            flow:
              name: Team Setup
            steps:
              - id: profile
                next_step: "fixture_flows:team_or_end"
              - id: team
                condition: "fixture_flows:has_team"
                on_step_active: "fixture_flows:record_activation"
              - id: billing
            """
        ),
        encoding="utf-8",
    )
    return p
