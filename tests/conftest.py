"""Shared pytest fixtures."""

from __future__ import annotations

import os
from typing import Any

import pytest

from agentloop.admin_config import StaticAdminOverrides
from agentloop.tools import ToolRegistry, ToolSpec

SEARCH_SCHEMA = {
    "type": "object",
    "properties": {"query": {"type": "string"}},
    "required": ["query"],
    "additionalProperties": False,
}


@pytest.fixture
def search_calls() -> list[dict[str, Any]]:
    return []


@pytest.fixture
def registry(search_calls: list[dict[str, Any]]) -> ToolRegistry:
    def search(query: str) -> dict[str, Any]:
        search_calls.append({"query": query})
        return {"hits": [f"result for {query}"]}

    return ToolRegistry([ToolSpec("search", "Search the sources.", SEARCH_SCHEMA, handler=search)])


@pytest.fixture
def static_overrides() -> StaticAdminOverrides:
    return StaticAdminOverrides()


@pytest.fixture(autouse=True)
def _isolate_agentloop_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in list(os.environ):
        if name.startswith("AGENTLOOP_"):
            monkeypatch.delenv(name, raising=False)
