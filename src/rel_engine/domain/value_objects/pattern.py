"""LIKE pattern matching.

Grammar:
    - ``%`` matches zero or more characters
    - ``_`` matches exactly one character
    - the optional escape character makes the following character literal

Matching is anchored at both ends and case-insensitive unless requested
otherwise. An escape character at the very end of a pattern stands for
itself.
"""

from __future__ import annotations

import re
from functools import lru_cache

from rel_engine.domain.errors import TypeMismatchError


@lru_cache(maxsize=256)
def _compile(pattern: str, escape: str | None, case_sensitive: bool) -> re.Pattern[str]:
    parts: list[str] = []
    i = 0
    while i < len(pattern):
        char = pattern[i]
        if escape is not None and char == escape and i + 1 < len(pattern):
            parts.append(re.escape(pattern[i + 1]))
            i += 2
            continue
        if char == "%":
            parts.append(".*")
        elif char == "_":
            parts.append(".")
        else:
            parts.append(re.escape(char))
        i += 1
    flags = re.DOTALL
    if not case_sensitive:
        flags |= re.IGNORECASE
    return re.compile("".join(parts), flags)


def matches_pattern(
    value: str | None,
    pattern: str | None,
    escape: str | None = None,
    case_sensitive: bool = False,
) -> bool | None:
    """Match ``value`` against a LIKE ``pattern``.

    Returns:
        True/False, or None (unknown) if the value or pattern is NULL.

    Raises:
        TypeMismatchError: If an operand is not text or the escape is not a
            single character.

    Example:
        >>> matches_pattern("apple", "a%")
        True
        >>> matches_pattern("50%", "50\\\\%%", "\\\\")
        True
    """
    if value is None or pattern is None:
        return None
    if not isinstance(value, str) or not isinstance(pattern, str):
        raise TypeMismatchError(
            f"LIKE requires TEXT operands, got {value!r} and {pattern!r}"
        )
    if escape is not None and (not isinstance(escape, str) or len(escape) != 1):
        raise TypeMismatchError(f"ESCAPE must be a single character, got {escape!r}")
    return _compile(pattern, escape, case_sensitive).fullmatch(value) is not None
