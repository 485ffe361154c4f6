"""Tagged view of script values crossing into host code.

Scripts hand capabilities arbitrary interpreter objects. Host functions never
assume a shape: they classify the value and convert it with one of the
``expect_*`` helpers, which raise ``ScriptValueError`` naming the argument and
the kind actually received.
"""

from __future__ import annotations

import json
from collections.abc import Callable, Mapping, Sequence
from enum import Enum
from typing import Any

from pairbox.core.result import ScriptValueError


class ValueKind(Enum):
    ABSENT = "absent"
    BOOLEAN = "boolean"
    NUMBER = "number"
    TEXT = "text"
    SEQUENCE = "sequence"
    MAPPING = "mapping"
    CALLABLE = "callable"
    OTHER = "other"


def classify(value: Any) -> ValueKind:
    """Return the tag for a script value.

    ``bool`` is checked before numbers because it subclasses ``int``.
    """
    if value is None:
        return ValueKind.ABSENT
    if isinstance(value, bool):
        return ValueKind.BOOLEAN
    if isinstance(value, (int, float)):
        return ValueKind.NUMBER
    if isinstance(value, str):
        return ValueKind.TEXT
    if isinstance(value, Mapping):
        return ValueKind.MAPPING
    if isinstance(value, (list, tuple)):
        return ValueKind.SEQUENCE
    if callable(value):
        return ValueKind.CALLABLE
    return ValueKind.OTHER


def _mismatch(name: str, expected: str, value: Any) -> ScriptValueError:
    return ScriptValueError(
        f"{name} must be {expected}, got {classify(value).value}",
        context={"argument": name},
    )


def expect_text(value: Any, name: str) -> str:
    if classify(value) is not ValueKind.TEXT:
        raise _mismatch(name, "text", value)
    return value


def expect_optional_text(value: Any, name: str) -> str | None:
    if value is None:
        return None
    return expect_text(value, name)


def expect_bool(value: Any, name: str) -> bool:
    if classify(value) is not ValueKind.BOOLEAN:
        raise _mismatch(name, "a boolean", value)
    return value


def expect_mapping(value: Any, name: str) -> Mapping[str, Any]:
    if classify(value) is not ValueKind.MAPPING:
        raise _mismatch(name, "a mapping", value)
    for key in value:
        if not isinstance(key, str):
            raise ScriptValueError(f"{name} keys must be text", context={"argument": name})
    return value


def expect_text_sequence(value: Any, name: str) -> list[str]:
    if value is None:
        return []
    if classify(value) is not ValueKind.SEQUENCE:
        raise _mismatch(name, "a list of text", value)
    return [expect_text(item, f"{name}[{index}]") for index, item in enumerate(value)]


def expect_text_mapping(value: Any, name: str) -> dict[str, str]:
    if value is None:
        return {}
    mapping = expect_mapping(value, name)
    return {key: _scalar_text(item, f"{name}[{key!r}]") for key, item in mapping.items()}


def expect_callable(value: Any, name: str) -> Callable[..., Any]:
    if classify(value) is not ValueKind.CALLABLE:
        raise _mismatch(name, "a function", value)
    return value


def _scalar_text(value: Any, name: str) -> str:
    kind = classify(value)
    if kind is ValueKind.TEXT:
        return value
    if kind in (ValueKind.NUMBER, ValueKind.BOOLEAN):
        return str(value).lower() if kind is ValueKind.BOOLEAN else str(value)
    raise _mismatch(name, "text", value)


def _jsonable(value: Any) -> Any:
    match classify(value):
        case ValueKind.MAPPING:
            return {str(key): _jsonable(item) for key, item in value.items()}
        case ValueKind.SEQUENCE:
            return [_jsonable(item) for item in value]
        case ValueKind.ABSENT | ValueKind.BOOLEAN | ValueKind.NUMBER | ValueKind.TEXT:
            return value
        case _:
            return repr(value)


def render_value(value: Any) -> str:
    """Human-readable representation of a script's return value."""
    match classify(value):
        case ValueKind.ABSENT:
            return "None"
        case ValueKind.TEXT:
            return value
        case ValueKind.SEQUENCE | ValueKind.MAPPING:
            try:
                return json.dumps(_jsonable(value), indent=2, sort_keys=True, ensure_ascii=False)
            except (TypeError, ValueError):
                return repr(value)
        case _:
            return repr(value)


__all__ = [
    "ValueKind",
    "classify",
    "expect_bool",
    "expect_callable",
    "expect_mapping",
    "expect_optional_text",
    "expect_text",
    "expect_text_mapping",
    "expect_text_sequence",
    "render_value",
]
