"""Tagged representation of loosely-typed clinical input.

Web clients send each clinical sub-record either as a nested JSON object, as
a JSON document embedded in a string, or not at all. classify() turns the
arbitrary value into one of four explicit variants so the Schema Validator
branches on the variant instead of inspecting raw types throughout.
"""

from dataclasses import dataclass
from typing import Any, Mapping, Union


@dataclass(frozen=True)
class Missing:
    """No data supplied (None, empty or whitespace-only string, empty mapping)."""


@dataclass(frozen=True)
class Text:
    """A string expected to contain a serialized structured value."""

    value: str


@dataclass(frozen=True)
class Structured:
    """An already-structured mapping."""

    value: Mapping[str, Any]


@dataclass(frozen=True)
class Unsupported:
    """A value of a type that can never hold a sub-record (number, list, ...)."""

    value: Any

    @property
    def type_name(self) -> str:
        return type(self.value).__name__


RawInput = Union[Missing, Text, Structured, Unsupported]

MISSING = Missing()


def classify(value: Any) -> RawInput:
    """Classify an arbitrary input value.

    Parameters:
        value: Value taken from a request payload or from storage

    Returns:
        RawInput: The variant describing the value
    """
    if isinstance(value, (Missing, Text, Structured, Unsupported)):
        return value
    if value is None:
        return MISSING
    if isinstance(value, str):
        if not value.strip():
            return MISSING
        return Text(value)
    if isinstance(value, Mapping):
        if not value:
            return MISSING
        return Structured(value)
    return Unsupported(value)
