"""Validation of per-call loop options."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping

from jsonschema import Draft7Validator, ValidationError

from ..errors import InvalidCallOptionsError

__all__ = ["CALL_OPTIONS_SCHEMA", "CallOptions", "validate_call_options"]

CALL_OPTIONS_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "model": {"type": "string", "minLength": 1},
        "context": {"type": "object"},
    },
    "additionalProperties": False,
}

_CALL_OPTIONS_VALIDATOR = Draft7Validator(CALL_OPTIONS_SCHEMA)


@dataclass(slots=True, frozen=True)
class CallOptions:
    """Validated per-call options.

    Attributes:
        model: Explicit model override, taking precedence over every other source.
        context: Arbitrary caller context surfaced in the execution context.
    """

    model: str | None = None
    context: Mapping[str, Any] = field(default_factory=dict)


def validate_call_options(options: Mapping[str, Any] | CallOptions | None) -> CallOptions:
    """Validate raw options against :data:`CALL_OPTIONS_SCHEMA`.

    Raises:
        InvalidCallOptionsError: When unknown keys or wrongly typed values are present.
    """

    if options is None:
        return CallOptions()
    if isinstance(options, CallOptions):
        options = {
            key: value
            for key, value in (("model", options.model), ("context", dict(options.context)))
            if value is not None
        }
    if not isinstance(options, Mapping):
        raise InvalidCallOptionsError(["options must be a mapping"])

    candidate = dict(options)
    errors = sorted(_CALL_OPTIONS_VALIDATOR.iter_errors(candidate), key=lambda err: list(err.path))
    if errors:
        raise InvalidCallOptionsError([_format_validation_error(error) for error in errors])
    return CallOptions(model=candidate.get("model"), context=dict(candidate.get("context") or {}))


def _format_validation_error(error: ValidationError) -> str:
    location = ".".join(str(part) for part in error.absolute_path)
    if location:
        return f"{location}: {error.message}"
    return error.message
