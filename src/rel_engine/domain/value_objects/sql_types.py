"""SQL value model: type tags, comparison, ordering, coercion and arithmetic.

Cell values are plain Python objects, tagged by :class:`SqlType`:

    ========  ==============================
    SqlType   Python representation
    ========  ==============================
    NULL      ``None``
    INTEGER   ``int`` (64-bit signed range)
    FLOAT     ``float``
    TEXT      ``str``
    BOOLEAN   ``bool``
    DATE      ``datetime.date``
    ========  ==============================

Coercion rules:
    - INTEGER promotes to FLOAT in mixed arithmetic and comparisons.
    - Assignment into a FLOAT column accepts INTEGER values.
    - TEXT converts to DATE (or any other tag) only through an explicit CAST.

Null ordering:
    Sorting treats NULL as a sentinel whose position is chosen by
    :class:`NullOrdering`. With ``NULLS_LOW`` (the default) NULL sorts before
    every value in ascending order and after every value in descending order.
"""

from __future__ import annotations

import math
from datetime import date, datetime
from enum import Enum
from typing import Any, Iterable

from rel_engine.domain.errors import SQLArithmeticError, TypeMismatchError

INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1


class SqlType(Enum):
    """Tags of the value union."""

    NULL = "NULL"
    INTEGER = "INTEGER"
    FLOAT = "FLOAT"
    TEXT = "TEXT"
    BOOLEAN = "BOOLEAN"
    DATE = "DATE"

    @property
    def is_numeric(self) -> bool:
        return self in (SqlType.INTEGER, SqlType.FLOAT)


class NullOrdering(Enum):
    """Where NULL sorts relative to non-null values."""

    NULLS_LOW = "nulls_low"
    NULLS_HIGH = "nulls_high"


def type_of(value: Any) -> SqlType:
    """Return the tag of a Python value.

    Raises:
        TypeMismatchError: If the value is not representable as a SQL value.
    """
    if value is None:
        return SqlType.NULL
    # bool is a subclass of int, check it first
    if isinstance(value, bool):
        return SqlType.BOOLEAN
    if isinstance(value, int):
        return SqlType.INTEGER
    if isinstance(value, float):
        return SqlType.FLOAT
    if isinstance(value, str):
        return SqlType.TEXT
    if isinstance(value, date) and not isinstance(value, datetime):
        return SqlType.DATE
    raise TypeMismatchError(f"Unsupported value type: {type(value).__name__}")


def comparable(left: SqlType, right: SqlType) -> bool:
    """Check whether two tags may be compared with each other."""
    if left is SqlType.NULL or right is SqlType.NULL:
        return True
    if left.is_numeric and right.is_numeric:
        return True
    return left is right


def compare(left: Any, right: Any) -> int | None:
    """Three-way comparison with SQL NULL semantics.

    Returns:
        -1, 0 or 1, or None when either operand is NULL (unknown).

    Raises:
        TypeMismatchError: If the operands have incompatible tags.
    """
    left_type = type_of(left)
    right_type = type_of(right)
    if left_type is SqlType.NULL or right_type is SqlType.NULL:
        return None
    if not comparable(left_type, right_type):
        raise TypeMismatchError(
            f"Cannot compare {left_type.value} with {right_type.value}"
        )
    if left < right:
        return -1
    if left > right:
        return 1
    return 0


def values_equal(left: Any, right: Any) -> bool | None:
    """SQL equality: None when either side is NULL."""
    result = compare(left, right)
    if result is None:
        return None
    return result == 0


_TYPE_RANK = {
    SqlType.INTEGER: 0,
    SqlType.FLOAT: 0,
    SqlType.TEXT: 1,
    SqlType.BOOLEAN: 2,
    SqlType.DATE: 3,
}


def sort_key(value: Any, nulls: NullOrdering = NullOrdering.NULLS_LOW) -> tuple:
    """Total-order key for sorting a single value.

    NULL maps to a sentinel below or above every value. Values of different
    families never get compared directly: the family rank decides first.
    """
    if value is None:
        return (0,) if nulls is NullOrdering.NULLS_LOW else (2,)
    return (1, _TYPE_RANK[type_of(value)], value)


def group_key(values: Iterable[Any]) -> tuple:
    """Hashable key for grouping and DISTINCT.

    NULL equals NULL here (unlike comparison semantics). Booleans are kept
    apart from the integers 0 and 1, which Python would otherwise merge.
    """
    return tuple(("bool", v) if isinstance(v, bool) else v for v in values)


def check_integer(value: int) -> int:
    """Enforce the 64-bit signed range."""
    if value < INT64_MIN or value > INT64_MAX:
        raise SQLArithmeticError(f"integer out of range: {value}")
    return value


def _check_result(value: int | float) -> int | float:
    if isinstance(value, int):
        return check_integer(value)
    if not math.isfinite(value):
        raise SQLArithmeticError("numeric overflow")
    return value


def coerce_for_column(value: Any, target: SqlType, column: str) -> Any:
    """Apply assignment coercion for storing a value into a typed column.

    Raises:
        TypeMismatchError: If the value cannot be stored in the column.
        SQLArithmeticError: If an integer is out of range.
    """
    source = type_of(value)
    if source is SqlType.NULL:
        return None
    if source is target:
        if source is SqlType.INTEGER:
            check_integer(value)
        return value
    if target is SqlType.FLOAT and source is SqlType.INTEGER:
        return float(value)
    raise TypeMismatchError(
        f"Column '{column}' expects {target.value}, got {source.value} ({value!r})"
    )


_TRUE_TEXT = frozenset({"true", "t", "yes", "y", "1"})
_FALSE_TEXT = frozenset({"false", "f", "no", "n", "0"})


def cast(value: Any, target: SqlType) -> Any:
    """Explicit CAST between tags.

    FLOAT to INTEGER truncates toward zero. TEXT parses with the obvious
    literal syntax (ISO-8601 for dates).

    Raises:
        TypeMismatchError: If the conversion is undefined or the text is malformed.
    """
    source = type_of(value)
    if source is SqlType.NULL or source is target:
        return value
    if target is SqlType.NULL:
        raise TypeMismatchError("Cannot cast to NULL")

    if target is SqlType.TEXT:
        if source is SqlType.BOOLEAN:
            return "true" if value else "false"
        if source is SqlType.DATE:
            return value.isoformat()
        return str(value)

    if target is SqlType.INTEGER:
        if source is SqlType.FLOAT:
            if not math.isfinite(value):
                raise SQLArithmeticError(f"integer out of range: {value}")
            return check_integer(int(value))
        if source is SqlType.BOOLEAN:
            return int(value)
        if source is SqlType.TEXT:
            try:
                return check_integer(int(value.strip()))
            except ValueError as e:
                raise TypeMismatchError(f"Invalid INTEGER literal: {value!r}") from e

    if target is SqlType.FLOAT:
        if source is SqlType.INTEGER:
            return float(value)
        if source is SqlType.TEXT:
            text = value.strip()
            try:
                result = float(text)
            except ValueError as e:
                raise TypeMismatchError(f"Invalid FLOAT literal: {value!r}") from e
            # float() also accepts nan and inf spellings
            if math.isnan(result) or text.lstrip("+-")[:1].isalpha():
                raise TypeMismatchError(f"Invalid FLOAT literal: {value!r}")
            return _check_result(result)

    if target is SqlType.BOOLEAN:
        if source is SqlType.INTEGER:
            return value != 0
        if source is SqlType.TEXT:
            text = value.strip().lower()
            if text in _TRUE_TEXT:
                return True
            if text in _FALSE_TEXT:
                return False
            raise TypeMismatchError(f"Invalid BOOLEAN literal: {value!r}")

    if target is SqlType.DATE and source is SqlType.TEXT:
        try:
            return date.fromisoformat(value.strip())
        except ValueError as e:
            raise TypeMismatchError(f"Invalid DATE literal: {value!r}") from e

    raise TypeMismatchError(f"Cannot cast {source.value} to {target.value}")


def arithmetic(op: str, left: Any, right: Any) -> Any:
    """Evaluate a binary arithmetic operator (``+ - * / %``).

    INTEGER op INTEGER stays INTEGER (division truncates toward zero);
    any FLOAT operand promotes the result to FLOAT.

    Raises:
        TypeMismatchError: If an operand is not numeric.
        SQLArithmeticError: On division by zero or overflow.
    """
    if left is None or right is None:
        return None
    left_type = type_of(left)
    right_type = type_of(right)
    if not (left_type.is_numeric and right_type.is_numeric):
        raise TypeMismatchError(
            f"Operator {op} not defined for {left_type.value} and {right_type.value}"
        )
    if op in ("/", "%") and right == 0:
        raise SQLArithmeticError("division by zero")

    integral = left_type is SqlType.INTEGER and right_type is SqlType.INTEGER
    if op == "+":
        result = left + right
    elif op == "-":
        result = left - right
    elif op == "*":
        result = left * right
    elif op == "/":
        if integral:
            quotient = abs(left) // abs(right)
            result = quotient if (left < 0) == (right < 0) else -quotient
        else:
            result = left / right
    elif op == "%":
        if integral:
            remainder = abs(left) % abs(right)
            result = remainder if left >= 0 else -remainder
        else:
            result = math.fmod(left, right)
    else:
        raise ValueError(f"Unknown arithmetic operator: {op}")
    return _check_result(result)


def negate(value: Any) -> Any:
    """Unary minus."""
    if value is None:
        return None
    value_type = type_of(value)
    if not value_type.is_numeric:
        raise TypeMismatchError(f"Cannot negate {value_type.value}")
    return _check_result(-value)


def concat(left: Any, right: Any) -> Any:
    """Text concatenation (``||``)."""
    if left is None or right is None:
        return None
    left_type = type_of(left)
    right_type = type_of(right)
    if left_type is not SqlType.TEXT or right_type is not SqlType.TEXT:
        raise TypeMismatchError(
            f"Operator || not defined for {left_type.value} and {right_type.value}"
        )
    return left + right
