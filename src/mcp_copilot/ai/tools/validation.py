"""Coerce and validate tool-call arguments against a tool's JSON schema."""

from __future__ import annotations

import json
from typing import Any

from mcp_copilot.core.errors import ArgumentValidationError, ValidationErrorKind
from mcp_copilot.log import get_logger

logger = get_logger(__name__)

_MISSING = object()


class ArgumentValidator:
    """Best-effort type coercion plus required-field and enum checks.

    Models often send numbers as strings or arrays as JSON text, so values are
    coerced toward the declared type where that is unambiguous. Arguments the
    schema does not declare are passed through untouched.
    """

    def validate(
        self, tool_name: str, raw_args: Any, schema: dict[str, Any] | None
    ) -> dict[str, Any]:
        if not isinstance(raw_args, dict):
            logger.warning(
                "tool_args_not_object", tool=tool_name, type=type(raw_args).__name__
            )
            raw_args = {}
        if not schema:
            return raw_args

        properties: dict[str, Any] = schema.get("properties") or {}
        required: list[str] = schema.get("required") or []

        for name in required:
            if raw_args.get(name) is None:
                raise ArgumentValidationError(
                    ValidationErrorKind.MISSING_REQUIRED_FIELD,
                    tool_name,
                    name,
                    f"Missing required parameter '{name}' for tool '{tool_name}'",
                )

        validated: dict[str, Any] = {}
        for name, value in raw_args.items():
            prop = properties.get(name)
            if prop is None:
                logger.warning("tool_arg_unknown", tool=tool_name, param=name)
                validated[name] = value
                continue
            coerced = self._coerce(tool_name, name, value, prop, name in required)
            enum = prop.get("enum")
            if isinstance(enum, list) and coerced is not None and coerced not in enum:
                raise ArgumentValidationError(
                    ValidationErrorKind.INVALID_ENUM_VALUE,
                    tool_name,
                    name,
                    f"Value {coerced!r} for '{name}' is not one of: "
                    + ", ".join(str(v) for v in enum),
                )
            validated[name] = coerced

        return validated

    def _coerce(
        self, tool_name: str, name: str, value: Any, prop: dict[str, Any], required: bool
    ) -> Any:
        expected = prop.get("type")
        if value is None or expected is None:
            return value

        match expected:
            case "string":
                if isinstance(value, str):
                    return value
                return json.dumps(value, ensure_ascii=False)

            case "integer" | "number":
                if isinstance(value, (int, float)) and not isinstance(value, bool):
                    return value
                if isinstance(value, str):
                    converted = _parse_number(value, integer=expected == "integer")
                    if converted is not _MISSING:
                        return converted
                if required:
                    raise ArgumentValidationError(
                        ValidationErrorKind.INVALID_TYPE,
                        tool_name,
                        name,
                        f"Parameter '{name}' must be {expected}, got {value!r}",
                    )
                logger.warning(
                    "tool_arg_coercion_failed", tool=tool_name, param=name, expected=expected
                )
                return value

            case "boolean":
                if isinstance(value, bool):
                    return value
                if isinstance(value, str):
                    return value.strip().lower() == "true" or value.strip() == "1"
                return bool(value)

            case "array":
                if isinstance(value, list):
                    return value
                if isinstance(value, str):
                    try:
                        parsed = json.loads(value)
                    except json.JSONDecodeError:
                        parsed = _MISSING
                    if isinstance(parsed, list):
                        return parsed
                logger.debug("tool_arg_wrapped_in_array", tool=tool_name, param=name)
                return [value]

            case "object":
                if isinstance(value, dict):
                    return value
                if isinstance(value, str):
                    try:
                        parsed = json.loads(value)
                    except json.JSONDecodeError:
                        parsed = _MISSING
                    if isinstance(parsed, dict):
                        return parsed
                logger.warning(
                    "tool_arg_coercion_failed", tool=tool_name, param=name, expected=expected
                )
                return value

        return value


def _parse_number(text: str, integer: bool) -> Any:
    try:
        number = float(text.strip())
    except ValueError:
        return _MISSING
    if integer:
        # "3.0" is an acceptable integer, "3.5" is not
        return int(number) if number.is_integer() else _MISSING
    return number
