from __future__ import annotations

import pytest

from flowpilot import ContextError, FlowContext, InternalState
from flowpilot.context import build_initial_context


def test_merge_is_one_level_into_flow_data():
    ctx = FlowContext(flow_data={"a": 1, "nested": {"x": 1}})
    merged = ctx.merge({"flow_data": {"b": 2, "nested": {"y": 2}}})

    assert merged.flow_data == {"a": 1, "b": 2, "nested": {"y": 2}}
    # Original untouched
    assert ctx.flow_data == {"a": 1, "nested": {"x": 1}}
    assert merged is not ctx


def test_merge_top_level_keys_go_to_extras():
    merged = FlowContext().merge({"user_id": "u1"})
    assert merged.extras == {"user_id": "u1"}


def test_merge_rejects_internal():
    with pytest.raises(ContextError, match="engine-owned"):
        FlowContext().merge({"_internal": {"completed_steps": ["x"]}})


def test_noop_merge_is_equal():
    ctx = FlowContext(flow_data={"a": 1})
    assert ctx.merge({"flow_data": {"a": 1}}) == ctx


def test_internal_helpers_do_not_duplicate():
    internal = InternalState(started_at=1.0).with_completed("a").with_completed("a")
    assert internal.completed_steps == ("a",)
    assert internal.with_skipped("b").skipped_steps == ("b",)
    assert internal.with_start_time(3, 9.0).step_start_times == {"3": 9.0}


def test_dict_roundtrip():
    ctx = FlowContext(
        flow_data={"a": 1},
        internal=InternalState(started_at=5.0, completed_steps=("x",)),
        extras={"user": "u"},
    )
    doc = ctx.to_dict()
    assert doc["_internal"]["completed_steps"] == ["x"]

    # Document keys written by stores are ignored
    doc.update({"current_step_id": "x", "saved_at": 1.0, "flow_info": {}})
    assert FlowContext.from_dict(doc) == ctx


def test_initial_context_precedence():
    """Loaded data overrides initial context, which overrides defaults."""
    initial = {"flow_data": {"a": "initial", "b": "initial"}}
    loaded = {"flow_data": {"b": "loaded"}, "_internal": {"started_at": 7.0, "completed_steps": ["s1"]}}

    ctx = build_initial_context(initial, loaded, now=100.0)

    assert ctx.flow_data == {"a": "initial", "b": "loaded"}
    assert ctx.internal.started_at == 7.0
    assert ctx.internal.completed_steps == ("s1",)


def test_initial_context_defaults():
    ctx = build_initial_context(None, None, now=42.0)
    assert ctx.flow_data == {}
    assert ctx.internal == InternalState(started_at=42.0)
