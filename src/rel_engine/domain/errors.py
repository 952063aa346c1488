"""Error taxonomy for the query engine.

Every failure surfaced by ``execute`` derives from :class:`EngineError`, so a
host process can catch engine errors without swallowing unrelated ones.
Errors are raised synchronously from the call that detected them and are
never retried by the engine itself.
"""

from __future__ import annotations

from typing import Any


class EngineError(Exception):
    """Base class for all engine errors."""

    pass


class TypeMismatchError(EngineError):
    """Operands have incompatible, non-coercible types."""

    pass


class ConstraintViolationError(EngineError):
    """A primary key, uniqueness or NOT NULL constraint was breached.

    Attributes:
        table: Name of the table whose constraint failed.
        column: Offending column (comma separated for composite keys).
        value: The value that violated the constraint.
        constraint: Short constraint kind, e.g. ``"PRIMARY KEY"``.
    """

    def __init__(self, table: str, column: str, value: Any, constraint: str) -> None:
        self.table = table
        self.column = column
        self.value = value
        self.constraint = constraint
        super().__init__(
            f"{constraint} constraint violated on {table}.{column}: value {value!r}"
        )


class UnresolvedReferenceError(EngineError):
    """Unknown or ambiguous table, column, index or function name."""

    def __init__(self, message: str, name: str | None = None) -> None:
        self.name = name
        super().__init__(message)


class SQLArithmeticError(EngineError, ArithmeticError):
    """Division by zero or numeric overflow."""

    pass


class SchemaError(EngineError):
    """Malformed table or index definition."""

    pass


class SubqueryCardinalityError(EngineError):
    """A scalar subquery produced more than one row."""

    pass


class QueryCancelledError(EngineError):
    """The cancellation token of a running pipeline was triggered."""

    pass
