"""Tests for dotted path imports."""

from __future__ import annotations

import pytest

from flowpilot import ImportError_
from flowpilot.imports import load_callable, load_symbol


def test_load_symbol_valid():
    """load_symbol loads a function from a dotted path."""
    fn = load_symbol("fixture_flows:has_team")
    assert fn.__name__ == "has_team"


def test_load_symbol_constant():
    assert load_symbol("fixture_flows:NOT_A_FUNCTION") == 42


def test_load_symbol_missing_colon():
    """load_symbol raises ImportError_ if ':' is missing."""
    with pytest.raises(ImportError_, match="Invalid dotted path"):
        load_symbol("fixture_flows.has_team")


def test_load_symbol_empty_parts():
    """load_symbol raises ImportError_ if module or symbol is empty."""
    with pytest.raises(ImportError_, match="Invalid dotted path"):
        load_symbol(":has_team")

    with pytest.raises(ImportError_, match="Invalid dotted path"):
        load_symbol("fixture_flows:")


def test_load_symbol_module_not_found():
    with pytest.raises(ImportError_, match="Module not found"):
        load_symbol("nonexistent_module_xyz:thing")


def test_load_symbol_symbol_not_found():
    with pytest.raises(ImportError_, match="Symbol 'missing' not found"):
        load_symbol("fixture_flows:missing")


def test_load_callable_rejects_constants():
    with pytest.raises(ImportError_, match="Not callable") as exc_info:
        load_callable("fixture_flows:NOT_A_FUNCTION")
    assert exc_info.value.context.items["got_type"] == "int"


def test_load_callable_returns_function():
    fn = load_callable("fixture_flows:always_false")
    assert fn(None) is False
