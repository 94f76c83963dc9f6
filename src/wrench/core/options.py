"""Option schema validation and the default <- preset <- override merge."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from wrench.errors import InvalidOption
from wrench.models.enums import OptionKind
from wrench.models.service import OptionSpec, ServiceDefinition

logger = logging.getLogger("wrench.options")

_TRUE_STRINGS = ("true", "yes", "on", "1")
_FALSE_STRINGS = ("false", "no", "off", "0")


def validate_value(service_id: str, spec: OptionSpec, value: Any) -> Any:
    """Check a single option value against its spec. Returns the coerced value.

    Strings are accepted for booleans and integers so values typed on the
    command line validate the same way as JSON values.
    """
    if spec.kind == OptionKind.BOOLEAN:
        return _coerce_bool(service_id, spec, value)
    if spec.kind == OptionKind.INTEGER:
        number = _coerce_int(service_id, spec, value)
        if spec.min is not None and number < spec.min:
            raise InvalidOption(
                f"{service_id}.{spec.id}={number} is below the minimum {spec.min}",
                service_id, spec.id,
            )
        if spec.max is not None and number > spec.max:
            raise InvalidOption(
                f"{service_id}.{spec.id}={number} is above the maximum {spec.max}",
                service_id, spec.id,
            )
        return number
    if spec.kind == OptionKind.SELECT:
        if not isinstance(value, str) or value not in spec.choices:
            raise InvalidOption(
                f"{service_id}.{spec.id}={value!r} is not one of {', '.join(spec.choices)}",
                service_id, spec.id,
            )
        return value
    if not isinstance(value, str):
        raise InvalidOption(
            f"{service_id}.{spec.id} expects text, got {type(value).__name__}",
            service_id, spec.id,
        )
    return value


def _coerce_bool(service_id: str, spec: OptionSpec, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    raise InvalidOption(
        f"{service_id}.{spec.id} expects a boolean, got {value!r}", service_id, spec.id
    )


def _coerce_int(service_id: str, spec: OptionSpec, value: Any) -> int:
    # bool is an int subclass; True is not a valid count
    if isinstance(value, bool):
        raise InvalidOption(
            f"{service_id}.{spec.id} expects an integer, got {value!r}", service_id, spec.id
        )
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            pass
    raise InvalidOption(
        f"{service_id}.{spec.id} expects an integer, got {value!r}", service_id, spec.id
    )


def merge_options(
    definition: ServiceDefinition,
    preset_options: Mapping[str, Any] | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    """Build the complete option map for one service.

    Schema defaults are overridden field by field by the preset's values,
    which are in turn overridden by caller-supplied values. Every declared
    option ends up populated; unknown option names are rejected.
    """
    merged = definition.defaults()
    for layer in (preset_options or {}, overrides or {}):
        for key, value in layer.items():
            spec = definition.option(key)
            if spec is None:
                raise InvalidOption(
                    f"Unknown option '{key}' for service '{definition.id}'",
                    definition.id, key,
                )
            merged[key] = validate_value(definition.id, spec, value)
    return merged


def validate_options(definition: ServiceDefinition, options: Mapping[str, Any]) -> dict[str, Any]:
    """Validate an already-merged option map (every declared option must be present)."""
    missing = [spec.id for spec in definition.options if spec.id not in options]
    if missing:
        raise InvalidOption(
            f"Missing option(s) for '{definition.id}': {', '.join(missing)}",
            definition.id, missing[0],
        )
    return merge_options(definition, options)
