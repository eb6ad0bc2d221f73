from __future__ import annotations

import argparse
import asyncio
import os
import sys
from typing import Dict, List

import yaml

from .config_loader import ConfigLoader
from .engine import FlowEngine
from .logger import get_logger
from .validator import has_errors, validate_flow
from .visualize import visualize


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="flowpilot CLI")
    sub = p.add_subparsers(dest="command", required=True)

    val = sub.add_parser("validate", help="Check a flow definition for errors and warnings.")
    val.add_argument("--config", type=str, default=None, help="Path to flow YAML (or use FLOWPILOT_FLOW).")
    val.add_argument("--strict", action="store_true", help="Treat warnings as errors.")

    vis = sub.add_parser("visualize", help="Print a Mermaid diagram of the flow.")
    vis.add_argument("--config", type=str, default=None, help="Path to flow YAML (or use FLOWPILOT_FLOW).")

    walk = sub.add_parser("walk", help="Run the flow headlessly, calling next() until it completes.")
    walk.add_argument("--config", type=str, default=None, help="Path to flow YAML (or use FLOWPILOT_FLOW).")
    walk.add_argument(
        "--data",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Seed flow_data (value parsed as YAML). Repeatable.",
    )
    walk.add_argument("--max-steps", type=int, default=100, help="Stop after this many steps.")

    return p


def _resolve_config_path(cli_value: str | None) -> str:
    path = cli_value or os.getenv("FLOWPILOT_FLOW")
    if not path:
        raise SystemExit("No flow provided. Use --config or set FLOWPILOT_FLOW.")
    return path


def _parse_data(pairs: List[str]) -> Dict[str, object]:
    data: Dict[str, object] = {}
    for pair in pairs:
        if "=" not in pair:
            raise SystemExit(f"Invalid --data value {pair!r}; expected KEY=VALUE.")
        key, value = pair.split("=", 1)
        data[key.strip()] = yaml.safe_load(value)
    return data


def cmd_validate(args) -> int:
    config = ConfigLoader.load_flow_config(_resolve_config_path(args.config))
    issues = validate_flow(config.steps, initial_step_id=config.initial_step_id)
    for issue in issues:
        print(issue.format())
        print()
    failed = has_errors(issues) or (args.strict and bool(issues))
    print(f"{len(config.steps)} step(s), {len(issues)} issue(s): {'FAILED' if failed else 'OK'}")
    return 1 if failed else 0


def cmd_visualize(args) -> int:
    print(visualize(_resolve_config_path(args.config)))
    return 0


async def cmd_walk(args) -> int:
    logger = get_logger("flowpilot")
    config = ConfigLoader.load_flow_config(_resolve_config_path(args.config))
    seed = _parse_data(args.data)
    if seed:
        initial = dict(config.initial_context or {})
        initial["flow_data"] = {**(initial.get("flow_data") or {}), **seed}
        config = config.merge({"initial_context": initial})

    engine = FlowEngine(config, logger=logger)
    await engine.ready()

    visited = 0
    while not engine.is_completed and visited < args.max_steps:
        step = engine.current_step
        if step is None:
            break
        visited += 1
        print(f"{visited}. {step.id} [{step.type_name}]" + (f" - {step.title}" if step.title else ""))
        if step.is_checklist:
            for item in step.payload.get("items") or []:
                item_id = item["id"] if isinstance(item, dict) else item.id
                await engine.update_checklist_item(item_id, True)
        await engine.next()
        if engine.error is not None:
            print(f"error: {engine.error}", file=sys.stderr)
            return 1

    if not engine.is_completed:
        print(f"Stopped after {visited} step(s) without completing.", file=sys.stderr)
        return 1
    print(f"Flow completed after {visited} step(s).")
    return 0


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()

    if args.command == "validate":
        code = cmd_validate(args)
    elif args.command == "visualize":
        code = cmd_visualize(args)
    elif args.command == "walk":
        code = asyncio.run(cmd_walk(args))
    else:
        raise SystemExit(2)
    raise SystemExit(code)


if __name__ == "__main__":
    main()
