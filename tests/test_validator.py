from __future__ import annotations

from flowpilot import END, Step, has_errors, validate_flow


def _whats(issues, level=None):
    return [d.what for d in issues if level is None or d.level == level]


def test_valid_flow_has_no_issues(linear_steps):
    assert validate_flow(linear_steps) == []


def test_empty_flow_warns():
    issues = validate_flow([])
    assert _whats(issues, "warning") == ["Flow has no steps"]
    assert not has_errors(issues)


def test_duplicate_ids():
    issues = validate_flow([Step("a"), Step("a")])
    assert has_errors(issues)
    assert "Duplicate step id: 'a'" in _whats(issues, "error")


def test_missing_id():
    issues = validate_flow([Step("")])
    assert issues[0].context["index"] == 0
    assert has_errors(issues)


def test_dangling_static_link_is_a_warning():
    issues = validate_flow([Step("a", next_step="ghost")])
    assert not has_errors(issues)
    assert issues[0].context["target"] == "ghost"
    assert issues[0].step_id == "a"


def test_skip_link_only_checked_when_skippable():
    assert validate_flow([Step("a", skip_to_step="ghost")]) == []
    assert len(validate_flow([Step("a", skip_to_step="ghost", is_skippable=True)])) == 1


def test_dynamic_links_are_not_checked():
    assert validate_flow([Step("a", next_step=lambda ctx: "ghost")]) == []


def test_end_link_is_fine():
    assert validate_flow([Step("a", next_step=END)]) == []


def test_payload_checks():
    issues = validate_flow(
        [
            Step("c", type="checklist", payload={"items": [{"id": "x"}, {"id": "x"}, {}]}),
            Step("cc", type="custom_component"),
            Step("choice", type="single_choice", payload={"options": []}),
        ]
    )
    errors = _whats(issues, "error")

    assert "Checklist step 'c' has no data_key" in errors
    assert "Checklist step 'c' has duplicate item id 'x'" in errors
    assert "Checklist step 'c' has an item without an id" in errors
    assert "Custom component step 'cc' has no component_key" in errors
    assert "Choice step 'choice' has no options" in errors


def test_unknown_initial_step():
    issues = validate_flow([Step("a")], initial_step_id="b")
    assert "Initial step 'b' is not defined" in _whats(issues, "error")


def test_static_cycle_reported_once():
    issues = validate_flow([Step("a", next_step="b"), Step("b", next_step="a")])
    cycles = [d for d in issues if d.what.startswith("Static next_step links form a cycle")]
    assert len(cycles) == 1
    assert cycles[0].context["cycle"] == ["a", "b"]


def test_conditional_steps_break_cycles():
    steps = [Step("a", next_step="b"), Step("b", next_step="a", condition=lambda ctx: False)]
    assert validate_flow(steps) == []


def test_diagnostic_format():
    issue = validate_flow([Step("a"), Step("a")])[0]
    text = issue.format()
    assert text.startswith("[ERROR] Duplicate step id")
    assert "Fix: Rename one of the steps." in text
    assert "step_id='a'" in text
