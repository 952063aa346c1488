"""Expression binding and evaluation.

Evaluation happens in two phases:

1. **Binding** (plan time). Column references are resolved against a
   :class:`Scope` chain and replaced with :class:`BoundColumn` nodes that
   address a row position and an outer-scope depth. Subqueries are planned
   and replaced with :class:`BoundSubquery` nodes. Unknown or ambiguous names
   and unknown functions fail here, before any row is produced.

2. **Evaluation** (run time). A bound expression is evaluated against an
   :class:`EvalContext` holding the current row and, for correlated
   subqueries, the chain of enclosing rows.

Three-valued logic:
    Comparisons and boolean operators work on :class:`Truth`. NULL operands
    propagate UNKNOWN. Only the row acceptance boundary (Filter, Having,
    UPDATE/DELETE) collapses UNKNOWN to "reject".
"""

from __future__ import annotations

from contextlib import closing
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal, DecimalException
from typing import Any, Callable, Iterator, Mapping, Protocol, Sequence

from rel_engine.domain.errors import (
    SQLArithmeticError,
    SubqueryCardinalityError,
    TypeMismatchError,
    UnresolvedReferenceError,
)
from rel_engine.domain.value_objects.cancellation import CancellationToken
from rel_engine.domain.value_objects.expressions import (
    Aggregate,
    Between,
    BinaryOp,
    BinaryOperator,
    Cast,
    ColumnRef,
    Exists,
    Expression,
    FunctionCall,
    InList,
    InSubquery,
    Like,
    Literal,
    ScalarSubquery,
    Star,
    UnaryOp,
    UnaryOperator,
)
from rel_engine.domain.value_objects.pattern import matches_pattern
from rel_engine.domain.value_objects.sql_types import (
    SqlType,
    arithmetic,
    cast,
    check_integer,
    compare,
    concat,
    negate,
    type_of,
)
from rel_engine.domain.value_objects.statements import SelectStatement
from rel_engine.domain.value_objects.truth import Truth

# Scopes


@dataclass(frozen=True)
class ColumnSlot:
    """Describes one position of a row flowing through a pipeline.

    Attributes:
        name: Column name, or None for anonymous computed positions.
        table: Binding name (table name or alias) qualifying the column.
        sql_type: Declared type for base table columns, None when unknown.
        qualified_only: Hidden from unqualified lookups (right side of USING).
    """

    name: str | None
    table: str | None = None
    sql_type: SqlType | None = None
    qualified_only: bool = False

    def matches(self, ref: ColumnRef) -> bool:
        if self.name is None or self.name.casefold() != ref.name.casefold():
            return False
        if ref.table is None:
            return not self.qualified_only
        return self.table is not None and self.table.casefold() == ref.table.casefold()


@dataclass(frozen=True)
class Scope:
    """Name resolution scope: the row layout of one query level.

    ``parent`` is the scope of the enclosing query, used to resolve
    correlated references.
    """

    slots: tuple[ColumnSlot, ...]
    parent: Scope | None = None

    def __len__(self) -> int:
        return len(self.slots)

    def resolve(self, ref: ColumnRef) -> BoundColumn:
        """Resolve a column reference, innermost scope first.

        Raises:
            UnresolvedReferenceError: If the name is unknown or ambiguous.
        """
        scope: Scope | None = self
        depth = 0
        while scope is not None:
            matches = [i for i, slot in enumerate(scope.slots) if slot.matches(ref)]
            if len(matches) > 1:
                raise UnresolvedReferenceError(
                    f"Column reference '{ref}' is ambiguous", name=str(ref)
                )
            if matches:
                return BoundColumn(index=matches[0], depth=depth, name=str(ref))
            scope = scope.parent
            depth += 1
        raise UnresolvedReferenceError(f"Unknown column '{ref}'", name=str(ref))

    def expand_star(self, table: str | None = None) -> list[ColumnRef]:
        """Column references a ``*`` or ``table.*`` expands to."""
        slots = [s for s in self.slots if s.name is not None]
        if table is not None:
            slots = [s for s in slots if s.table and s.table.casefold() == table.casefold()]
            if not slots:
                raise UnresolvedReferenceError(
                    f"Unknown table '{table}' in '{table}.*'", name=table
                )
        else:
            # USING columns appear once, from the preserved side
            slots = [s for s in slots if not s.qualified_only]
            if not slots:
                raise UnresolvedReferenceError("SELECT * with no tables specified")
        return [ColumnRef(s.name, s.table) for s in slots if s.name is not None]

    def slot_of(self, ref: ColumnRef) -> ColumnSlot | None:
        """The slot a reference resolves to at this level, if any."""
        bound = self.resolve(ref)
        if bound.depth != 0:
            return None
        return self.slots[bound.index]


# Bound nodes


@dataclass(frozen=True)
class BoundColumn(Expression):
    """A resolved column: position ``index`` in the row ``depth`` scopes out."""

    index: int
    depth: int = 0
    name: str = ""

    def __str__(self) -> str:
        return self.name or f"${self.index}"


class SubqueryPlan(Protocol):
    """A planned subquery that can be run against an enclosing row."""

    @property
    def width(self) -> int: ...

    def run(self, outer: EvalContext) -> Iterator[tuple]: ...


SubqueryPlanner = Callable[[SelectStatement, Scope], SubqueryPlan]


@dataclass(frozen=True)
class BoundSubquery(Expression):
    """A planned subquery in EXISTS, IN or scalar position."""

    kind: str
    plan: SubqueryPlan = field(compare=False)
    operand: Expression | None = None

    def __str__(self) -> str:
        if self.kind == "exists":
            return "EXISTS(<subquery>)"
        if self.kind == "in":
            return f"{self.operand} IN (<subquery>)"
        return "(<subquery>)"


@dataclass
class EvalContext:
    """Row binding for evaluation.

    Attributes:
        row: The current row.
        outer: Context of the enclosing query, for correlated references.
        cancellation: Token passed on to subqueries.
    """

    row: Sequence[Any]
    outer: EvalContext | None = None
    cancellation: CancellationToken | None = None


@dataclass(frozen=True)
class Grouping:
    """Layout of the group rows produced by an aggregation.

    A group row holds the GROUP BY key values followed by the aggregate
    results, in the order of ``keys`` and ``aggregates``.

    Attributes:
        source: Scope of the rows entering the aggregation.
        keys: GROUP BY expressions (unbound).
        aggregates: Aggregate calls computed per group (unbound).
        aliases: SELECT list aliases that HAVING may refer to.
    """

    source: Scope
    keys: tuple[Expression, ...]
    aggregates: tuple[Aggregate, ...]
    aliases: Mapping[str, Expression] = field(default_factory=dict)

    def scope(self) -> Scope:
        """Scope describing a group row, for subqueries nested in grouped expressions."""
        slots = []
        for key in self.keys:
            slot = self.source.slot_of(key) if isinstance(key, ColumnRef) else None
            slots.append(slot or ColumnSlot(None))
        slots.extend(ColumnSlot(None) for _ in self.aggregates)
        return Scope(tuple(slots), self.source.parent)


# Scalar functions


def _text_function(name: str, fn: Callable[[str], Any]) -> Callable[[Any], Any]:
    def apply(value: Any) -> Any:
        if value is None:
            return None
        if not isinstance(value, str):
            raise TypeMismatchError(f"{name} requires TEXT, got {type_of(value).value}")
        return fn(value)

    return apply


def _abs(value: Any) -> Any:
    if value is None:
        return None
    if not type_of(value).is_numeric:
        raise TypeMismatchError(f"ABS requires a numeric argument, got {type_of(value).value}")
    if isinstance(value, int):
        return check_integer(abs(value))
    return abs(value)


def _round(value: Any, digits: Any = 0) -> Any:
    if value is None or digits is None:
        return None
    if not type_of(value).is_numeric or type_of(digits) is not SqlType.INTEGER:
        raise TypeMismatchError("ROUND requires a numeric value and an INTEGER precision")
    if isinstance(value, int) and digits >= 0:
        return value
    exact = Decimal(str(value))
    # No digits beyond the requested precision
    if exact.as_tuple().exponent >= -digits:
        return value
    try:
        rounded = exact.quantize(Decimal(1).scaleb(-digits), rounding=ROUND_HALF_UP)
    except DecimalException as e:
        raise SQLArithmeticError(f"ROUND precision {digits} is out of range") from e
    if isinstance(value, int):
        return check_integer(int(rounded))
    return float(rounded)


def _nullif(left: Any, right: Any) -> Any:
    if compare(left, right) == 0:
        return None
    return left


# name -> (min args, max args, implementation). COALESCE is evaluated lazily.
_FUNCTIONS: dict[str, tuple[int, int | None, Callable[..., Any] | None]] = {
    "UPPER": (1, 1, _text_function("UPPER", str.upper)),
    "LOWER": (1, 1, _text_function("LOWER", str.lower)),
    "LENGTH": (1, 1, _text_function("LENGTH", len)),
    "TRIM": (1, 1, _text_function("TRIM", str.strip)),
    "ABS": (1, 1, _abs),
    "ROUND": (1, 2, _round),
    "COALESCE": (1, None, None),
    "NULLIF": (2, 2, _nullif),
}


# Evaluator


class ExpressionEvaluator:
    """Binds and evaluates expression trees.

    Args:
        like_case_sensitive: Default case sensitivity of LIKE. ILIKE is
            always case-insensitive.
    """

    def __init__(self, like_case_sensitive: bool = False) -> None:
        self._like_case_sensitive = like_case_sensitive

    # Binding

    def bind(
        self,
        expr: Expression,
        scope: Scope,
        subqueries: SubqueryPlanner | None = None,
        grouping: Grouping | None = None,
        clause: str = "expression",
    ) -> Expression:
        """Resolve names in ``expr`` and return an evaluable tree.

        Args:
            expr: Unbound expression from the statement AST.
            scope: Scope of the rows the expression will be evaluated on.
                In grouped mode this is the scope of the rows entering the
                aggregation.
            subqueries: Planner callback for nested SELECTs.
            grouping: Group row layout; when given, the expression is bound
                against group rows and bare columns must be GROUP BY keys.
            clause: Clause name used in error messages.

        Raises:
            UnresolvedReferenceError: Unknown or ambiguous column, unknown
                function, misplaced aggregate or ungrouped column.
            TypeMismatchError: Wrong function arity or a multi-column subquery
                in scalar or IN position.
        """
        return _Binder(subqueries, clause).bind(expr, scope, grouping)

    # Evaluation

    def evaluate(self, expr: Expression, ctx: EvalContext) -> Any:
        """Evaluate a bound expression to a SQL value.

        Raises:
            TypeMismatchError: On incompatible operand types.
            SQLArithmeticError: On division by zero or overflow.
            SubqueryCardinalityError: If a scalar subquery yields several rows.
        """
        if isinstance(expr, BoundColumn):
            target = ctx
            for _ in range(expr.depth):
                target = target.outer
            return target.row[expr.index]
        if isinstance(expr, Literal):
            return expr.value
        if isinstance(expr, BinaryOp):
            return self._evaluate_binary(expr, ctx)
        if isinstance(expr, UnaryOp):
            return self._evaluate_unary(expr, ctx)
        if isinstance(expr, (Like, InList, Between)):
            return self.evaluate_truth(expr, ctx).to_value()
        if isinstance(expr, FunctionCall):
            return self._evaluate_function(expr, ctx)
        if isinstance(expr, Cast):
            return cast(self.evaluate(expr.operand, ctx), expr.target)
        if isinstance(expr, BoundSubquery):
            if expr.kind == "scalar":
                return self._evaluate_scalar_subquery(expr, ctx)
            return self.evaluate_truth(expr, ctx).to_value()
        raise TypeError(f"Cannot evaluate unbound expression: {type(expr).__name__}")

    def evaluate_truth(self, expr: Expression, ctx: EvalContext) -> Truth:
        """Evaluate a bound predicate to a tri-state truth value."""
        if isinstance(expr, BinaryOp):
            if expr.op == BinaryOperator.AND:
                left = self.evaluate_truth(expr.left, ctx)
                if left is Truth.FALSE:
                    return Truth.FALSE
                return left & self.evaluate_truth(expr.right, ctx)
            if expr.op == BinaryOperator.OR:
                left = self.evaluate_truth(expr.left, ctx)
                if left is Truth.TRUE:
                    return Truth.TRUE
                return left | self.evaluate_truth(expr.right, ctx)
        if isinstance(expr, UnaryOp) and expr.op == UnaryOperator.NOT:
            return ~self.evaluate_truth(expr.operand, ctx)
        if isinstance(expr, Like):
            return self._evaluate_like(expr, ctx)
        if isinstance(expr, InList):
            return self._evaluate_in_list(expr, ctx)
        if isinstance(expr, Between):
            value = self.evaluate(expr.operand, ctx)
            low = self.evaluate(expr.low, ctx)
            high = self.evaluate(expr.high, ctx)
            return _truth_of_compare(value, low, BinaryOperator.GE) & _truth_of_compare(
                value, high, BinaryOperator.LE
            )
        if isinstance(expr, BoundSubquery) and expr.kind == "exists":
            return self._evaluate_exists(expr, ctx)
        if isinstance(expr, BoundSubquery) and expr.kind == "in":
            return self._evaluate_in_subquery(expr, ctx)
        return Truth.of(self.evaluate(expr, ctx))

    def _evaluate_binary(self, expr: BinaryOp, ctx: EvalContext) -> Any:
        if expr.op.is_logical:
            return self.evaluate_truth(expr, ctx).to_value()
        left = self.evaluate(expr.left, ctx)
        right = self.evaluate(expr.right, ctx)
        if expr.op.is_comparison:
            return _truth_of_compare(left, right, expr.op).to_value()
        if expr.op == BinaryOperator.CONCAT:
            return concat(left, right)
        return arithmetic(expr.op.value, left, right)

    def _evaluate_unary(self, expr: UnaryOp, ctx: EvalContext) -> Any:
        if expr.op == UnaryOperator.NOT:
            return (~self.evaluate_truth(expr.operand, ctx)).to_value()
        value = self.evaluate(expr.operand, ctx)
        if expr.op == UnaryOperator.NEG:
            return negate(value)
        if expr.op == UnaryOperator.IS_NULL:
            return value is None
        return value is not None

    def _evaluate_function(self, expr: FunctionCall, ctx: EvalContext) -> Any:
        name = expr.name.upper()
        if name == "COALESCE":
            for arg in expr.args:
                value = self.evaluate(arg, ctx)
                if value is not None:
                    return value
            return None
        _, _, fn = _FUNCTIONS[name]
        return fn(*(self.evaluate(arg, ctx) for arg in expr.args))

    def _evaluate_like(self, expr: Like, ctx: EvalContext) -> Truth:
        value = self.evaluate(expr.operand, ctx)
        pattern = self.evaluate(expr.pattern, ctx)
        escape = None
        if expr.escape is not None:
            escape = self.evaluate(expr.escape, ctx)
            if escape is None:
                return Truth.UNKNOWN
        case_sensitive = (
            self._like_case_sensitive if expr.case_sensitive is None else expr.case_sensitive
        )
        return Truth.of(matches_pattern(value, pattern, escape or None, case_sensitive))

    def _evaluate_in_list(self, expr: InList, ctx: EvalContext) -> Truth:
        value = self.evaluate(expr.operand, ctx)
        return _membership(value, (self.evaluate(item, ctx) for item in expr.items))

    def _evaluate_in_subquery(self, expr: BoundSubquery, ctx: EvalContext) -> Truth:
        value = self.evaluate(expr.operand, ctx)
        with closing(expr.plan.run(ctx)) as rows:
            return _membership(value, (row[0] for row in rows))

    def _evaluate_exists(self, expr: BoundSubquery, ctx: EvalContext) -> Truth:
        with closing(expr.plan.run(ctx)) as rows:
            for _ in rows:
                return Truth.TRUE
        return Truth.FALSE

    def _evaluate_scalar_subquery(self, expr: BoundSubquery, ctx: EvalContext) -> Any:
        with closing(expr.plan.run(ctx)) as rows:
            first = next(rows, None)
            if first is None:
                return None
            if next(rows, None) is not None:
                raise SubqueryCardinalityError(
                    "More than one row returned by a subquery used as an expression"
                )
            return first[0]


def _truth_of_compare(left: Any, right: Any, op: BinaryOperator) -> Truth:
    result = compare(left, right)
    if result is None:
        return Truth.UNKNOWN
    if op == BinaryOperator.EQ:
        return Truth.of(result == 0)
    if op == BinaryOperator.NE:
        return Truth.of(result != 0)
    if op == BinaryOperator.LT:
        return Truth.of(result < 0)
    if op == BinaryOperator.LE:
        return Truth.of(result <= 0)
    if op == BinaryOperator.GT:
        return Truth.of(result > 0)
    return Truth.of(result >= 0)


def _membership(value: Any, candidates: Iterator[Any]) -> Truth:
    """SQL IN: TRUE on a match, else UNKNOWN if any comparison was unknown, else FALSE."""
    unknown = False
    for candidate in candidates:
        result = compare(value, candidate)
        if result is None:
            unknown = True
        elif result == 0:
            return Truth.TRUE
    return Truth.UNKNOWN if unknown else Truth.FALSE


class _Binder:
    """Rewrites an expression tree into its bound form."""

    def __init__(self, subqueries: SubqueryPlanner | None, clause: str) -> None:
        self._subqueries = subqueries
        self._clause = clause

    def bind(self, expr: Expression, scope: Scope, grouping: Grouping | None) -> Expression:
        if grouping is not None:
            grouped = self._bind_grouped(expr, scope, grouping)
            if grouped is not None:
                return grouped

        if isinstance(expr, ColumnRef):
            return scope.resolve(expr)
        if isinstance(expr, Literal):
            if type_of(expr.value) is SqlType.INTEGER:
                check_integer(expr.value)
            return expr
        if isinstance(expr, Star):
            raise UnresolvedReferenceError(f"'{expr}' is not allowed in {self._clause}")
        if isinstance(expr, Aggregate):
            raise UnresolvedReferenceError(
                f"Aggregate functions are not allowed in {self._clause}", name=str(expr)
            )
        if isinstance(expr, BinaryOp):
            return BinaryOp(
                expr.op,
                self.bind(expr.left, scope, grouping),
                self.bind(expr.right, scope, grouping),
            )
        if isinstance(expr, UnaryOp):
            return UnaryOp(expr.op, self.bind(expr.operand, scope, grouping))
        if isinstance(expr, FunctionCall):
            return self._bind_function(expr, scope, grouping)
        if isinstance(expr, Cast):
            return Cast(self.bind(expr.operand, scope, grouping), expr.target)
        if isinstance(expr, Like):
            return Like(
                self.bind(expr.operand, scope, grouping),
                self.bind(expr.pattern, scope, grouping),
                None if expr.escape is None else self.bind(expr.escape, scope, grouping),
                expr.case_sensitive,
            )
        if isinstance(expr, InList):
            return InList(
                self.bind(expr.operand, scope, grouping),
                tuple(self.bind(item, scope, grouping) for item in expr.items),
            )
        if isinstance(expr, Between):
            return Between(
                self.bind(expr.operand, scope, grouping),
                self.bind(expr.low, scope, grouping),
                self.bind(expr.high, scope, grouping),
            )
        if isinstance(expr, Exists):
            return BoundSubquery("exists", self._plan(expr.query, scope, grouping, None))
        if isinstance(expr, InSubquery):
            operand = self.bind(expr.operand, scope, grouping)
            return BoundSubquery("in", self._plan(expr.query, scope, grouping, "IN"), operand)
        if isinstance(expr, ScalarSubquery):
            return BoundSubquery("scalar", self._plan(expr.query, scope, grouping, "scalar"))
        raise TypeError(f"Unsupported expression: {type(expr).__name__}")

    def _bind_grouped(
        self, expr: Expression, scope: Scope, grouping: Grouping
    ) -> Expression | None:
        """Bind against group rows; None means "recurse into children"."""
        for position, key in enumerate(grouping.keys):
            if self._same_expression(expr, key, scope):
                return BoundColumn(index=position, name=str(expr))
        if isinstance(expr, Aggregate):
            position = grouping.aggregates.index(expr)
            return BoundColumn(index=len(grouping.keys) + position, name=str(expr))
        if isinstance(expr, ColumnRef):
            if expr.table is None and expr.name.casefold() in grouping.aliases:
                target = grouping.aliases[expr.name.casefold()]
                remaining = {
                    k: v for k, v in grouping.aliases.items() if k != expr.name.casefold()
                }
                inner = Grouping(grouping.source, grouping.keys, grouping.aggregates, remaining)
                if not (isinstance(target, ColumnRef) and target == expr):
                    return self.bind(target, scope, inner)
            bound = scope.resolve(expr)
            if bound.depth == 0:
                raise UnresolvedReferenceError(
                    f"Column '{expr}' must appear in the GROUP BY clause "
                    "or be used in an aggregate function",
                    name=str(expr),
                )
            return bound
        return None

    @staticmethod
    def _same_expression(expr: Expression, key: Expression, scope: Scope) -> bool:
        if isinstance(expr, ColumnRef) and isinstance(key, ColumnRef):
            try:
                return scope.resolve(expr) == scope.resolve(key)
            except UnresolvedReferenceError:
                return False
        return expr == key

    def _bind_function(
        self, expr: FunctionCall, scope: Scope, grouping: Grouping | None
    ) -> FunctionCall:
        name = expr.name.upper()
        if name not in _FUNCTIONS:
            raise UnresolvedReferenceError(f"Unknown function '{expr.name}'", name=expr.name)
        minimum, maximum, _ = _FUNCTIONS[name]
        count = len(expr.args)
        if count < minimum or (maximum is not None and count > maximum):
            raise TypeMismatchError(f"Function {name} does not accept {count} argument(s)")
        return FunctionCall(name, tuple(self.bind(arg, scope, grouping) for arg in expr.args))

    def _plan(
        self,
        query: SelectStatement,
        scope: Scope,
        grouping: Grouping | None,
        single_column: str | None,
    ) -> SubqueryPlan:
        if self._subqueries is None:
            raise UnresolvedReferenceError(f"Subqueries are not allowed in {self._clause}")
        parent = grouping.scope() if grouping is not None else scope
        plan = self._subqueries(query, parent)
        if single_column is not None and plan.width != 1:
            raise TypeMismatchError(
                f"Subquery in {single_column} position must return one column, "
                f"got {plan.width}"
            )
        return plan
