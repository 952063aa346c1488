"""Three-valued logic.

SQL predicates evaluate to TRUE, FALSE or UNKNOWN. UNKNOWN is carried
through AND/OR/NOT following the standard truth tables and only collapsed to
pass/fail at the row acceptance boundary (Filter, Having, UPDATE/DELETE).

    ========  =======  =======  =======
    AND       TRUE     FALSE    UNKNOWN
    ========  =======  =======  =======
    TRUE      TRUE     FALSE    UNKNOWN
    FALSE     FALSE    FALSE    FALSE
    UNKNOWN   UNKNOWN  FALSE    UNKNOWN
    ========  =======  =======  =======
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from rel_engine.domain.errors import TypeMismatchError


class Truth(Enum):
    """A tri-state boolean."""

    TRUE = "TRUE"
    FALSE = "FALSE"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def of(cls, value: Any) -> Truth:
        """Convert a SQL value (bool or NULL) to a truth value."""
        if value is None:
            return cls.UNKNOWN
        if isinstance(value, bool):
            return cls.TRUE if value else cls.FALSE
        raise TypeMismatchError(f"Expected a BOOLEAN condition, got {value!r}")

    @property
    def is_true(self) -> bool:
        return self is Truth.TRUE

    def to_value(self) -> bool | None:
        """Convert back to a SQL value; UNKNOWN becomes NULL."""
        if self is Truth.UNKNOWN:
            return None
        return self is Truth.TRUE

    def __and__(self, other: Truth) -> Truth:
        if self is Truth.FALSE or other is Truth.FALSE:
            return Truth.FALSE
        if self is Truth.UNKNOWN or other is Truth.UNKNOWN:
            return Truth.UNKNOWN
        return Truth.TRUE

    def __or__(self, other: Truth) -> Truth:
        if self is Truth.TRUE or other is Truth.TRUE:
            return Truth.TRUE
        if self is Truth.UNKNOWN or other is Truth.UNKNOWN:
            return Truth.UNKNOWN
        return Truth.FALSE

    def __invert__(self) -> Truth:
        if self is Truth.UNKNOWN:
            return Truth.UNKNOWN
        return Truth.FALSE if self is Truth.TRUE else Truth.TRUE
