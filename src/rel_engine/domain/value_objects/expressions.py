"""Expression AST.

The node kinds form a closed set. Parsers build these nodes; the evaluator
binds column references at plan time and dispatches on the node type when
evaluating. Nodes are immutable and compare by value, which the planner
relies on to match SELECT expressions against GROUP BY keys.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import TYPE_CHECKING, Any

from rel_engine.domain.value_objects.sql_types import SqlType

if TYPE_CHECKING:
    from rel_engine.domain.value_objects.statements import SelectStatement


class BinaryOperator(Enum):
    """Binary operators: arithmetic, concatenation, comparison and logic."""

    ADD = "+"
    SUB = "-"
    MUL = "*"
    DIV = "/"
    MOD = "%"
    CONCAT = "||"
    EQ = "="
    NE = "<>"
    LT = "<"
    LE = "<="
    GT = ">"
    GE = ">="
    AND = "AND"
    OR = "OR"

    @property
    def is_arithmetic(self) -> bool:
        return self in _ARITHMETIC

    @property
    def is_comparison(self) -> bool:
        return self in _COMPARISON

    @property
    def is_logical(self) -> bool:
        return self in (BinaryOperator.AND, BinaryOperator.OR)


_ARITHMETIC = frozenset(
    {
        BinaryOperator.ADD,
        BinaryOperator.SUB,
        BinaryOperator.MUL,
        BinaryOperator.DIV,
        BinaryOperator.MOD,
    }
)
_COMPARISON = frozenset(
    {
        BinaryOperator.EQ,
        BinaryOperator.NE,
        BinaryOperator.LT,
        BinaryOperator.LE,
        BinaryOperator.GT,
        BinaryOperator.GE,
    }
)


class UnaryOperator(Enum):
    """Unary operators."""

    NOT = "NOT"
    NEG = "-"
    IS_NULL = "IS NULL"
    IS_NOT_NULL = "IS NOT NULL"


class AggregateFunc(Enum):
    """Aggregate functions."""

    COUNT = "COUNT"
    SUM = "SUM"
    AVG = "AVG"
    MIN = "MIN"
    MAX = "MAX"


@dataclass(frozen=True)
class Expression(ABC):
    """Base class for expressions."""

    @abstractmethod
    def __str__(self) -> str:
        pass


def _render_literal(value: Any) -> str:
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, str):
        escaped = value.replace("'", "''")
        return f"'{escaped}'"
    if isinstance(value, date):
        return f"DATE '{value.isoformat()}'"
    return str(value)


@dataclass(frozen=True)
class Literal(Expression):
    """A constant value."""

    value: Any

    def __str__(self) -> str:
        return _render_literal(self.value)


@dataclass(frozen=True)
class ColumnRef(Expression):
    """Reference to a column, optionally qualified with a table name or alias."""

    name: str
    table: str | None = None

    def __str__(self) -> str:
        if self.table:
            return f"{self.table}.{self.name}"
        return self.name


@dataclass(frozen=True)
class Star(Expression):
    """``*`` or ``alias.*`` in a SELECT list."""

    table: str | None = None

    def __str__(self) -> str:
        if self.table:
            return f"{self.table}.*"
        return "*"


@dataclass(frozen=True)
class BinaryOp(Expression):
    op: BinaryOperator
    left: Expression
    right: Expression

    def __str__(self) -> str:
        return f"({self.left} {self.op.value} {self.right})"


@dataclass(frozen=True)
class UnaryOp(Expression):
    op: UnaryOperator
    operand: Expression

    def __str__(self) -> str:
        if self.op == UnaryOperator.NOT:
            return f"NOT {self.operand}"
        if self.op == UnaryOperator.NEG:
            return f"-{self.operand}"
        return f"{self.operand} {self.op.value}"


@dataclass(frozen=True)
class FunctionCall(Expression):
    """Scalar function call, e.g. ``UPPER(name)``."""

    name: str
    args: tuple[Expression, ...] = ()

    def __str__(self) -> str:
        args = ", ".join(str(a) for a in self.args)
        return f"{self.name.upper()}({args})"


@dataclass(frozen=True)
class Cast(Expression):
    operand: Expression
    target: SqlType

    def __str__(self) -> str:
        return f"CAST({self.operand} AS {self.target.value})"


@dataclass(frozen=True)
class Like(Expression):
    """``operand LIKE pattern [ESCAPE escape]``.

    ``case_sensitive`` of None defers to the engine configuration; ILIKE
    sets it to False.
    """

    operand: Expression
    pattern: Expression
    escape: Expression | None = None
    case_sensitive: bool | None = None

    def __str__(self) -> str:
        keyword = "ILIKE" if self.case_sensitive is False else "LIKE"
        text = f"{self.operand} {keyword} {self.pattern}"
        if self.escape is not None:
            text += f" ESCAPE {self.escape}"
        return text


@dataclass(frozen=True)
class InList(Expression):
    operand: Expression
    items: tuple[Expression, ...]

    def __str__(self) -> str:
        items = ", ".join(str(i) for i in self.items)
        return f"{self.operand} IN ({items})"


@dataclass(frozen=True)
class InSubquery(Expression):
    operand: Expression
    query: SelectStatement

    def __str__(self) -> str:
        return f"{self.operand} IN (<subquery>)"


@dataclass(frozen=True)
class Between(Expression):
    operand: Expression
    low: Expression
    high: Expression

    def __str__(self) -> str:
        return f"{self.operand} BETWEEN {self.low} AND {self.high}"


@dataclass(frozen=True)
class Exists(Expression):
    query: SelectStatement

    def __str__(self) -> str:
        return "EXISTS(<subquery>)"


@dataclass(frozen=True)
class ScalarSubquery(Expression):
    query: SelectStatement

    def __str__(self) -> str:
        return "(<subquery>)"


@dataclass(frozen=True)
class Aggregate(Expression):
    """Aggregate function call. ``arg`` is None for ``COUNT(*)``."""

    func: AggregateFunc
    arg: Expression | None = None
    distinct: bool = False

    def __str__(self) -> str:
        if self.arg is None:
            return f"{self.func.value}(*)"
        distinct = "DISTINCT " if self.distinct else ""
        return f"{self.func.value}({distinct}{self.arg})"


def children(expr: Expression) -> tuple[Expression, ...]:
    """Direct sub-expressions of a node (subquery bodies excluded)."""
    if isinstance(expr, BinaryOp):
        return (expr.left, expr.right)
    if isinstance(expr, UnaryOp):
        return (expr.operand,)
    if isinstance(expr, FunctionCall):
        return expr.args
    if isinstance(expr, Cast):
        return (expr.operand,)
    if isinstance(expr, Like):
        if expr.escape is None:
            return (expr.operand, expr.pattern)
        return (expr.operand, expr.pattern, expr.escape)
    if isinstance(expr, InList):
        return (expr.operand, *expr.items)
    if isinstance(expr, InSubquery):
        return (expr.operand,)
    if isinstance(expr, Between):
        return (expr.operand, expr.low, expr.high)
    if isinstance(expr, Aggregate):
        return () if expr.arg is None else (expr.arg,)
    return ()


def contains_aggregate(expr: Expression) -> bool:
    """Check whether an aggregate appears in the expression (outside subqueries)."""
    if isinstance(expr, Aggregate):
        return True
    return any(contains_aggregate(child) for child in children(expr))


def find_aggregates(expr: Expression) -> list[Aggregate]:
    """Collect aggregate calls in the expression (outside subqueries), outermost first."""
    if isinstance(expr, Aggregate):
        return [expr]
    found: list[Aggregate] = []
    for child in children(expr):
        found.extend(find_aggregates(child))
    return found


def conjuncts(expr: Expression | None) -> list[Expression]:
    """Split a predicate on top-level ANDs."""
    if expr is None:
        return []
    if isinstance(expr, BinaryOp) and expr.op == BinaryOperator.AND:
        return conjuncts(expr.left) + conjuncts(expr.right)
    return [expr]
