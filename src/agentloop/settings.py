"""Settings dataclass and JSON persistence with environment overrides."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping

from .admin_config import (
    AdminOverridesProvider,
    CachedAdminOverridesProvider,
    FileAdminOverridesProvider,
    StaticAdminOverrides,
)
from .client import ClientSettings
from .core.context import CompactionSettings
from .errors import ConfigurationError
from .loop import AdminLoopConfig
from .resolver import ADMIN_MAX_STEPS
from .router.schema import DEFAULT_MODEL, ROUTER_MODEL
from .tools import ToolRegistry

__all__ = ["LoopSettings", "SettingsStore", "redact_secret"]

LOGGER = logging.getLogger(__name__)

_SETTINGS_DIR = Path.home() / ".agentloop"
_DEFAULT_SETTINGS_PATH = _SETTINGS_DIR / "settings.json"
_SETTINGS_VERSION = 1
_ENV_OVERRIDES: Mapping[str, str] = {
    "AGENTLOOP_API_KEY": "api_key",
    "AGENTLOOP_BASE_URL": "base_url",
    "AGENTLOOP_ORGANIZATION": "organization",
    "AGENTLOOP_ROUTER_MODEL": "router_model",
    "AGENTLOOP_DEFAULT_MODEL": "default_model",
    "AGENTLOOP_ADMIN_OVERRIDES_PATH": "admin_overrides_path",
}
_BOOL_ENV_OVERRIDES: Mapping[str, str] = {
    "AGENTLOOP_DEBUG_LOGGING": "debug_logging",
}
_FLOAT_ENV_OVERRIDES: Mapping[str, str] = {
    "AGENTLOOP_REQUEST_TIMEOUT": "request_timeout",
    "AGENTLOOP_OVERRIDES_CACHE_SECONDS": "overrides_cache_seconds",
}
_INT_ENV_OVERRIDES: Mapping[str, str] = {
    "AGENTLOOP_ADMIN_MAX_STEPS": "admin_max_steps",
    "AGENTLOOP_COMPACTION_TOKEN_THRESHOLD": "compaction_token_threshold",
    "AGENTLOOP_COMPACTION_MIN_SAVINGS": "compaction_min_trim_savings",
    "AGENTLOOP_COMPACTION_PROTECTED_USERS": "compaction_protect_last_user_messages",
}
_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_UNPERSISTED_FIELDS = frozenset({"api_key"})


@dataclass(slots=True)
class LoopSettings:
    """Process-level settings for the loop and its collaborators.

    The API key is never written to disk; supply it through
    ``AGENTLOOP_API_KEY`` or a runtime override.
    """

    base_url: str = "https://openrouter.ai/api/v1"
    api_key: str = ""
    organization: str | None = None
    router_model: str = ROUTER_MODEL
    default_model: str = DEFAULT_MODEL
    request_timeout: float = 90.0
    admin_max_steps: int = ADMIN_MAX_STEPS
    admin_overrides_path: str | None = None
    overrides_cache_seconds: float = 60.0
    compaction_token_threshold: int = 40_000
    compaction_min_trim_savings: int = 20_000
    compaction_protect_last_user_messages: int = 3
    default_headers: dict[str, str] = field(default_factory=dict)
    debug_logging: bool = False

    def validate(self) -> None:
        """Raise :class:`ConfigurationError` when values are out of range."""

        errors: list[str] = []
        if self.admin_max_steps < 1:
            errors.append("admin_max_steps must be >= 1")
        if self.request_timeout <= 0:
            errors.append("request_timeout must be positive")
        if self.overrides_cache_seconds < 0:
            errors.append("overrides_cache_seconds must be >= 0")
        if self.compaction_token_threshold < 0 or self.compaction_min_trim_savings < 0:
            errors.append("compaction thresholds must be >= 0")
        if errors:
            raise ConfigurationError("Invalid settings", errors=errors)

    def client_settings(self) -> ClientSettings:
        return ClientSettings(
            base_url=self.base_url,
            api_key=self.api_key,
            organization=self.organization,
            request_timeout=self.request_timeout,
            default_headers=dict(self.default_headers) or None,
            debug_logging=self.debug_logging,
        )

    def compaction_settings(self) -> CompactionSettings:
        return CompactionSettings(
            token_threshold=self.compaction_token_threshold,
            min_trim_savings=self.compaction_min_trim_savings,
            protect_last_user_messages=self.compaction_protect_last_user_messages,
        )

    def admin_overrides_provider(self) -> AdminOverridesProvider:
        """Cached provider reading ``admin_overrides_path``, or the defaults when unset."""

        inner: AdminOverridesProvider
        if self.admin_overrides_path:
            inner = FileAdminOverridesProvider(self.admin_overrides_path)
        else:
            inner = StaticAdminOverrides()
        return CachedAdminOverridesProvider(inner, ttl_seconds=self.overrides_cache_seconds)

    def admin_loop_config(self, tools: ToolRegistry, **kwargs: Any) -> AdminLoopConfig:
        kwargs.setdefault("max_steps", self.admin_max_steps)
        kwargs.setdefault("model", self.default_model)
        kwargs.setdefault("compaction", self.compaction_settings())
        return AdminLoopConfig(tools, **kwargs)


class SettingsStore:
    """Persistence adapter for :class:`LoopSettings`."""

    def __init__(self, path: Path | str | None = None) -> None:
        self._path = Path(path).expanduser() if path else _DEFAULT_SETTINGS_PATH

    @property
    def path(self) -> Path:
        return self._path

    def load(self, *, overrides: Mapping[str, Any] | None = None) -> LoopSettings:
        """Load settings from disk, then apply runtime and environment overrides.

        Raises:
            ConfigurationError: If the resulting settings are out of range.
        """

        payload = self._read_payload()
        data = _filter_fields(payload)
        try:
            settings = LoopSettings(**data)
        except TypeError as exc:
            LOGGER.warning("Settings payload contained unexpected data: %s", exc)
            settings = LoopSettings()

        if overrides:
            settings = self._apply_overrides(settings, overrides, source="CLI")
        settings = self._apply_env_overrides(settings)
        settings.validate()
        LOGGER.debug(
            "Settings loaded from %s (base_url=%s, api_key=%s)",
            self._path,
            settings.base_url,
            redact_secret(settings.api_key),
        )
        return settings

    def save(self, settings: LoopSettings) -> Path:
        """Persist settings with an atomic write; the API key is omitted."""

        data = {key: value for key, value in asdict(settings).items() if key not in _UNPERSISTED_FIELDS}
        data["version"] = _SETTINGS_VERSION
        body = json.dumps(data, indent=2, sort_keys=True)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(".tmp")
        tmp_path.write_text(body, encoding="utf-8")
        tmp_path.replace(self._path)
        LOGGER.debug("Settings saved to %s", self._path)
        return self._path

    def _read_payload(self) -> Dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError as exc:
            LOGGER.warning("Settings file %s is not valid JSON: %s", self._path, exc)
            return {}
        if not isinstance(payload, dict):
            LOGGER.warning("Settings file %s does not contain a JSON object", self._path)
            return {}
        return payload

    def _apply_overrides(
        self,
        settings: LoopSettings,
        overrides: Mapping[str, Any],
        *,
        source: str = "runtime",
    ) -> LoopSettings:
        allowed = {item.name for item in fields(LoopSettings)}
        filtered = {key: value for key, value in overrides.items() if key in allowed and value is not None}
        if filtered:
            LOGGER.debug("Applying %s settings overrides: %s", source, sorted(filtered))
            settings = replace(settings, **filtered)
        return settings

    def _apply_env_overrides(self, settings: LoopSettings) -> LoopSettings:
        overrides: Dict[str, Any] = {}
        for env_name, field_name in _ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is not None:
                overrides[field_name] = value
        for env_name, field_name in _BOOL_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is not None:
                overrides[field_name] = value.strip().lower() in _TRUE_VALUES
        for env_name, field_name in _INT_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is None:
                continue
            try:
                overrides[field_name] = int(value, 10)
            except ValueError:
                LOGGER.warning("Environment override %s=%s is not a valid integer", env_name, value)
        for env_name, field_name in _FLOAT_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is None:
                continue
            try:
                overrides[field_name] = float(value)
            except ValueError:
                LOGGER.warning("Environment override %s=%s is not a valid float", env_name, value)
        if overrides:
            settings = self._apply_overrides(settings, overrides, source="environment")
        return settings


def _filter_fields(payload: Mapping[str, Any]) -> Dict[str, Any]:
    allowed = {item.name for item in fields(LoopSettings)}
    return {key: value for key, value in payload.items() if key in allowed}


def redact_secret(value: str) -> str:
    stripped = (value or "").strip()
    if not stripped:
        return ""
    if len(stripped) <= 4:
        return "*" * len(stripped)
    return f"{stripped[:2]}{'*' * (len(stripped) - 4)}{stripped[-2:]}"
