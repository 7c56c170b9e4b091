"""Corruption diagnostics for stored clinical fields.

Helpers that describe *how* a stored field is broken so an operator can
decide whether manual recovery is worth attempting before a repair pass
resets it. Nothing here changes data.

Security Impact:
    - Excerpts are bounded; a full stored payload is never returned
"""

import re
from enum import Enum
from typing import Optional

DEFAULT_EXCERPT_RADIUS = 20

_UNQUOTED_KEY = re.compile(r'[{,]\s*[A-Za-z_][A-Za-z0-9_]*\s*:')


class CorruptionPattern(str, Enum):
    """Recognizable shapes of a broken EncodedField."""

    UNQUOTED_KEYS = "UNQUOTED_KEYS"
    UNBALANCED_BRACES = "UNBALANCED_BRACES"
    UNTERMINATED = "UNTERMINATED"
    ESCAPED_QUOTES = "ESCAPED_QUOTES"
    NON_OBJECT_ROOT = "NON_OBJECT_ROOT"
    NESTING_TOO_DEEP = "NESTING_TOO_DEEP"


def excerpt_around(text: str, offset: Optional[int], radius: int = DEFAULT_EXCERPT_RADIUS) -> str:
    """Return at most 2*radius characters of `text` centred on `offset`.

    Without an offset the excerpt is taken from the start of the text.
    Ellipses mark truncation on either side.
    """
    if offset is None:
        start, end = 0, 2 * radius
    else:
        offset = max(0, min(offset, len(text)))
        start, end = max(0, offset - radius), min(len(text), offset + radius)

    excerpt = text[start:end]
    if start > 0:
        excerpt = "..." + excerpt
    if end < len(text):
        excerpt = excerpt + "..."
    return excerpt


def brace_balance(text: str) -> tuple[int, int]:
    """Count opening and closing braces outside of string literals."""
    opened = closed = 0
    in_string = escaped = False
    for char in text:
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            opened += 1
        elif char == "}":
            closed += 1
    return opened, closed


def detect_patterns(text: str) -> list[CorruptionPattern]:
    """Return the corruption patterns visible in a stored field.

    Parameters:
        text: The raw stored text of a field that failed to decode

    Returns:
        list[CorruptionPattern]: Zero or more hints, in enum order
    """
    patterns = []
    stripped = text.strip()

    if _UNQUOTED_KEY.search(stripped):
        patterns.append(CorruptionPattern.UNQUOTED_KEYS)

    opened, closed = brace_balance(stripped)
    if opened != closed:
        patterns.append(CorruptionPattern.UNBALANCED_BRACES)

    if stripped and not stripped.endswith(("}", "]")):
        patterns.append(CorruptionPattern.UNTERMINATED)

    if '\\"' in stripped and '"\\"' not in stripped:
        patterns.append(CorruptionPattern.ESCAPED_QUOTES)

    return patterns
