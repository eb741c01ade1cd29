"""Tests for per-call option validation."""

from __future__ import annotations

import pytest

from agentloop.core.options import CallOptions, validate_call_options
from agentloop.errors import InvalidCallOptionsError


def test_missing_options_yield_defaults():
    assert validate_call_options(None) == CallOptions()
    assert validate_call_options({}) == CallOptions()


def test_model_and_context_are_accepted():
    options = validate_call_options({"model": "openai/gpt-5", "context": {"tenant": "acme"}})
    assert options.model == "openai/gpt-5"
    assert options.context == {"tenant": "acme"}


def test_call_options_instance_is_revalidated():
    options = validate_call_options(CallOptions(model="openai/gpt-5"))
    assert options.model == "openai/gpt-5"


@pytest.mark.parametrize(
    "raw",
    [
        {"temperature": 0.2},
        {"model": ""},
        {"model": 42},
        {"context": "not-an-object"},
    ],
)
def test_invalid_options_are_rejected(raw):
    with pytest.raises(InvalidCallOptionsError) as excinfo:
        validate_call_options(raw)
    assert excinfo.value.errors


def test_non_mapping_options_are_rejected():
    with pytest.raises(InvalidCallOptionsError):
        validate_call_options(["model"])  # type: ignore[arg-type]
