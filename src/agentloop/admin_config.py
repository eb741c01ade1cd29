"""Admin override parsing and read-only providers.

Overrides are fetched once per loop invocation and never written by the
loop. Providers here cover the common deployments: a fixed value, a JSON file
edited by an operator, and a TTL cache in front of either.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Protocol, runtime_checkable

from jsonschema import Draft7Validator

from .errors import ConfigurationError
from .types import AdminOverrides

__all__ = [
    "ADMIN_OVERRIDES_SCHEMA",
    "AdminOverridesProvider",
    "CachedAdminOverridesProvider",
    "FileAdminOverridesProvider",
    "StaticAdminOverrides",
    "parse_admin_overrides",
]

LOGGER = logging.getLogger(__name__)

MIN_STEPS_MULTIPLIER = 0.5
MAX_STEPS_MULTIPLIER = 3.0

_FIELD_ALIASES: Mapping[str, str] = {
    "responseStyle": "response_style",
    "defaultModel": "default_model",
    "maxStepsMultiplier": "max_steps_multiplier",
    "searchInstructions": "search_instructions",
    "citationFormat": "citation_format",
    "additionalPrompt": "additional_prompt",
}

_NULLABLE_STRING: Dict[str, Any] = {"type": ["string", "null"]}

ADMIN_OVERRIDES_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "response_style": {"enum": ["concise", "detailed", "technical", "friendly"]},
        "language": {"type": "string", "minLength": 1},
        "default_model": _NULLABLE_STRING,
        "max_steps_multiplier": {
            "type": "number",
            "minimum": MIN_STEPS_MULTIPLIER,
            "maximum": MAX_STEPS_MULTIPLIER,
        },
        "temperature": {"type": "number", "minimum": 0, "maximum": 2},
        "search_instructions": _NULLABLE_STRING,
        "citation_format": {"enum": ["inline", "footnote", "none"]},
        "additional_prompt": _NULLABLE_STRING,
    },
    "additionalProperties": False,
}

_OVERRIDES_VALIDATOR = Draft7Validator(ADMIN_OVERRIDES_SCHEMA)


def parse_admin_overrides(payload: Mapping[str, Any]) -> AdminOverrides:
    """Validate a camelCase or snake_case payload and build :class:`AdminOverrides`.

    Missing keys keep their defaults. Empty strings for the optional text
    fields are treated as unset.

    Raises:
        ConfigurationError: If the payload has unknown keys or invalid values.
    """

    if not isinstance(payload, Mapping):
        raise ConfigurationError("Admin overrides must be a JSON object")

    normalized = {_FIELD_ALIASES.get(str(key), str(key)): value for key, value in payload.items()}
    errors = [
        f"{'.'.join(str(part) for part in error.absolute_path) or '<root>'}: {error.message}"
        for error in _OVERRIDES_VALIDATOR.iter_errors(normalized)
    ]
    if errors:
        raise ConfigurationError("Invalid admin overrides", errors=errors)

    for key in ("default_model", "search_instructions", "additional_prompt"):
        if key in normalized and not normalized[key]:
            normalized[key] = None
    if "max_steps_multiplier" in normalized:
        normalized["max_steps_multiplier"] = float(normalized["max_steps_multiplier"])
    if "temperature" in normalized:
        normalized["temperature"] = float(normalized["temperature"])
    return AdminOverrides(**normalized)


@runtime_checkable
class AdminOverridesProvider(Protocol):
    """Read-only source of admin overrides."""

    async def get(self) -> AdminOverrides:
        ...


class StaticAdminOverrides:
    """Provider returning a fixed value."""

    def __init__(self, overrides: AdminOverrides | None = None) -> None:
        self._overrides = overrides or AdminOverrides.defaults()

    async def get(self) -> AdminOverrides:
        return self._overrides


class FileAdminOverridesProvider:
    """Reads overrides from a JSON file on every call.

    A missing file yields the defaults; an unreadable or invalid file raises
    :class:`ConfigurationError`.
    """

    def __init__(self, path: Path | str) -> None:
        self._path = Path(path).expanduser()

    @property
    def path(self) -> Path:
        return self._path

    async def get(self) -> AdminOverrides:
        return await asyncio.to_thread(self._load)

    def _load(self) -> AdminOverrides:
        if not self._path.exists():
            LOGGER.debug("Admin overrides file %s not found; using defaults", self._path)
            return AdminOverrides.defaults()
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise ConfigurationError(f"Unable to read admin overrides from {self._path}: {exc}") from exc
        return parse_admin_overrides(payload)


class CachedAdminOverridesProvider:
    """TTL cache in front of another provider."""

    def __init__(
        self,
        inner: AdminOverridesProvider,
        *,
        ttl_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._inner = inner
        self._ttl = max(0.0, float(ttl_seconds))
        self._clock = clock
        self._cached: AdminOverrides | None = None
        self._fetched_at = 0.0
        self._lock = asyncio.Lock()

    async def get(self) -> AdminOverrides:
        async with self._lock:
            if self._cached is not None and self._clock() - self._fetched_at < self._ttl:
                return self._cached
            overrides = await self._inner.get()
            self._cached = overrides
            self._fetched_at = self._clock()
            return overrides

    def invalidate(self) -> None:
        self._cached = None
        self._fetched_at = 0.0
