from __future__ import annotations

from flowpilot.error_handler import ErrorHandler


def _handler(**kwargs):
    state = {"error": None, "published": []}

    async def publish(event, *args):
        state["published"].append((event, args))

    handler = ErrorHandler(
        set_error=lambda e: state.__setitem__("error", e),
        publish=publish,
        context=lambda: "ctx",
        **kwargs,
    )
    return handler, state


async def test_handle_error_records_and_publishes():
    handler, state = _handler()
    err = RuntimeError("boom")

    record = await handler.handle_error(err, "next", step_id="a")

    assert record.operation == "next"
    assert record.step_id == "a"
    assert state["error"] is err
    assert state["published"] == [("error", (err, "ctx"))]
    assert handler.last_error is record


async def test_set_state_false_leaves_error_field():
    handler, state = _handler()
    await handler.handle_error(RuntimeError("x"), "persist", set_state=False)

    assert state["error"] is None
    assert len(handler.history) == 1


async def test_history_is_bounded():
    handler, _ = _handler(max_history=3)
    for i in range(5):
        await handler.handle_error(RuntimeError(str(i)), f"op{i}")

    assert [r.operation for r in handler.history] == ["op2", "op3", "op4"]

    handler.clear_history()
    assert handler.history == []
    assert handler.last_error is None
