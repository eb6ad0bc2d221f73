from __future__ import annotations

import os
import subprocess
import sys
import textwrap
from pathlib import Path

TESTS_DIR = Path(__file__).parent


def run_cli(*args: str, env: dict | None = None) -> subprocess.CompletedProcess:
    """Run CLI as module to work in editable installs and CI."""
    cmd = [sys.executable, "-m", "flowpilot.cli", *args]
    return subprocess.run(cmd, capture_output=True, text=True, env=env)


def _env_with_tests_on_path() -> dict:
    env = dict(os.environ)
    env.pop("FLOWPILOT_FLOW", None)
    env["PYTHONPATH"] = os.pathsep.join(filter(None, [str(TESTS_DIR), env.get("PYTHONPATH")]))
    return env


def test_cli_validate_ok(example_flow_yaml: Path):
    r = run_cli("validate", "--config", str(example_flow_yaml))
    assert r.returncode == 0, f"stdout: {r.stdout}\nstderr: {r.stderr}"
    assert "3 step(s), 0 issue(s): OK" in r.stdout


def test_cli_validate_reports_errors(tmp_path: Path):
    p = tmp_path / "bad.yaml"
    p.write_text(
        textwrap.dedent(
            """\
            steps:
              - id: a
              - id: a
            """
        ),
        encoding="utf-8",
    )
    r = run_cli("validate", "--config", str(p))
    assert r.returncode == 1
    assert "Duplicate step id" in r.stdout


def test_cli_validate_strict_fails_on_warnings(tmp_path: Path):
    p = tmp_path / "warn.yaml"
    p.write_text("steps:\n  - id: a\n    next_step: ghost\n", encoding="utf-8")

    assert run_cli("validate", "--config", str(p)).returncode == 0
    assert run_cli("validate", "--config", str(p), "--strict").returncode == 1


def test_cli_visualize(example_flow_yaml: Path):
    r = run_cli("visualize", "--config", str(example_flow_yaml))
    assert r.returncode == 0, f"stdout: {r.stdout}\nstderr: {r.stderr}"
    assert r.stdout.startswith("flowchart TD")
    assert "intro --> tasks" in r.stdout


def test_cli_walk_completes(example_flow_yaml: Path):
    r = run_cli("walk", "--config", str(example_flow_yaml))
    assert r.returncode == 0, f"stdout: {r.stdout}\nstderr: {r.stderr}"
    assert "1. intro [information] - Intro" in r.stdout
    assert "Flow completed after 3 step(s)." in r.stdout


def test_cli_walk_with_data(dotted_flow_yaml: Path):
    env = _env_with_tests_on_path()

    r = run_cli("walk", "--config", str(dotted_flow_yaml), "--data", "has_team=true", env=env)
    assert r.returncode == 0, f"stdout: {r.stdout}\nstderr: {r.stderr}"
    assert "2. team" in r.stdout
    assert "Flow completed after 3 step(s)." in r.stdout

    r = run_cli("walk", "--config", str(dotted_flow_yaml), env=env)
    assert "Flow completed after 1 step(s)." in r.stdout


def test_cli_walk_max_steps(tmp_path: Path):
    p = tmp_path / "loop.yaml"
    p.write_text("steps:\n  - id: a\n    next_step: b\n  - id: b\n    next_step: a\n", encoding="utf-8")

    r = run_cli("walk", "--config", str(p), "--max-steps", "4")
    assert r.returncode == 1
    assert "Stopped after 4 step(s)" in r.stderr


def test_cli_env_fallback(example_flow_yaml: Path):
    """CLI respects FLOWPILOT_FLOW env var when --config not provided."""
    env = dict(os.environ)
    env["FLOWPILOT_FLOW"] = str(example_flow_yaml)
    r = run_cli("validate", env=env)
    assert r.returncode == 0, f"stdout: {r.stdout}\nstderr: {r.stderr}"


def test_cli_missing_config_fails():
    """CLI fails gracefully when no flow is provided."""
    env = dict(os.environ)
    env.pop("FLOWPILOT_FLOW", None)
    r = run_cli("validate", env=env)
    assert r.returncode != 0
    assert "No flow provided" in r.stderr or "No flow provided" in r.stdout
