"""Unit tests for expression binding, evaluation and aggregates."""

from __future__ import annotations

from typing import Any

import pytest

from rel_engine.domain.errors import (
    SQLArithmeticError,
    TypeMismatchError,
    UnresolvedReferenceError,
)
from rel_engine.domain.services import (
    BoundColumn,
    ColumnSlot,
    EvalContext,
    ExpressionEvaluator,
    Scope,
    make_accumulator,
)
from rel_engine.domain.value_objects import (
    Aggregate,
    AggregateFunc,
    Between,
    BinaryOp,
    BinaryOperator,
    Cast,
    ColumnRef,
    Expression,
    FunctionCall,
    InList,
    Like,
    Literal,
    SqlType,
    Truth,
    UnaryOp,
    UnaryOperator,
)

SCOPE = Scope(
    (
        ColumnSlot("id", "t", SqlType.INTEGER),
        ColumnSlot("name", "t", SqlType.TEXT),
        ColumnSlot("score", "t", SqlType.FLOAT),
        ColumnSlot("id", "u", SqlType.INTEGER),
    )
)


def col(name: str, table: str | None = None) -> ColumnRef:
    return ColumnRef(name, table)


def lit(value: Any) -> Literal:
    return Literal(value)


def op(operator: BinaryOperator, left: Expression, right: Expression) -> BinaryOp:
    return BinaryOp(operator, left, right)


@pytest.fixture
def evaluator() -> ExpressionEvaluator:
    return ExpressionEvaluator()


def evaluate(
    evaluator: ExpressionEvaluator, expr: Expression, row: tuple = (1, "Ann", None, 2)
) -> Any:
    bound = evaluator.bind(expr, SCOPE)
    return evaluator.evaluate(bound, EvalContext(row))


@pytest.mark.unit
class TestScope:
    """Tests for name resolution."""

    def test_qualified_resolution(self) -> None:
        """Test a qualified name picks the right table."""
        assert SCOPE.resolve(col("id", "u")) == BoundColumn(3, 0, "u.id")
        assert SCOPE.resolve(col("NAME")).index == 1

    def test_ambiguous(self) -> None:
        """Test an unqualified name present in two tables."""
        with pytest.raises(UnresolvedReferenceError, match="ambiguous"):
            SCOPE.resolve(col("id"))

    def test_unknown(self) -> None:
        """Test an unknown name."""
        with pytest.raises(UnresolvedReferenceError, match="Unknown column"):
            SCOPE.resolve(col("missing"))

    def test_outer_scope_depth(self) -> None:
        """Test correlated names resolve into the parent with a depth."""
        inner = Scope((ColumnSlot("x", "s"),), parent=SCOPE)
        bound = inner.resolve(col("name"))
        assert (bound.index, bound.depth) == (1, 1)

    def test_hidden_slot(self) -> None:
        """Test qualified-only slots are skipped by unqualified names."""
        scope = Scope((ColumnSlot("k", "a"), ColumnSlot("k", "b", qualified_only=True)))
        assert scope.resolve(col("k")).index == 0
        assert scope.resolve(col("k", "b")).index == 1

    def test_expand_star(self) -> None:
        """Test star expansion over all and one table."""
        assert len(SCOPE.expand_star()) == 4
        assert SCOPE.expand_star("u") == [ColumnRef("id", "u")]
        with pytest.raises(UnresolvedReferenceError):
            SCOPE.expand_star("v")


@pytest.mark.unit
class TestEvaluation:
    """Tests for evaluating bound expressions."""

    def test_columns_and_arithmetic(self, evaluator: ExpressionEvaluator) -> None:
        """Test column access and arithmetic."""
        expr = op(BinaryOperator.ADD, col("id", "t"), op(BinaryOperator.MUL, col("id", "u"), lit(10)))
        assert evaluate(evaluator, expr) == 21

    def test_null_comparison_is_unknown(self, evaluator: ExpressionEvaluator) -> None:
        """Test comparing NULL gives NULL, not FALSE."""
        assert evaluate(evaluator, op(BinaryOperator.EQ, col("score"), lit(1.0))) is None
        assert evaluate(evaluator, op(BinaryOperator.EQ, lit(None), lit(None))) is None

    def test_short_circuit_logic(self, evaluator: ExpressionEvaluator) -> None:
        """Test FALSE AND <error> and TRUE OR <error> do not evaluate the right side."""
        boom = op(BinaryOperator.DIV, lit(1), lit(0))
        failing = op(BinaryOperator.EQ, boom, lit(1))
        false = op(BinaryOperator.EQ, lit(1), lit(2))
        true = op(BinaryOperator.EQ, lit(1), lit(1))
        assert evaluate(evaluator, op(BinaryOperator.AND, false, failing)) is False
        assert evaluate(evaluator, op(BinaryOperator.OR, true, failing)) is True
        with pytest.raises(SQLArithmeticError):
            evaluate(evaluator, op(BinaryOperator.AND, true, failing))

    def test_unknown_logic(self, evaluator: ExpressionEvaluator) -> None:
        """Test UNKNOWN flows through AND, OR and NOT."""
        unknown = op(BinaryOperator.GT, col("score"), lit(0))
        false = op(BinaryOperator.EQ, lit(1), lit(2))
        assert evaluate(evaluator, op(BinaryOperator.AND, unknown, false)) is False
        assert evaluate(evaluator, op(BinaryOperator.OR, unknown, false)) is None
        assert evaluate(evaluator, UnaryOp(UnaryOperator.NOT, unknown)) is None

    def test_evaluate_truth(self, evaluator: ExpressionEvaluator) -> None:
        """Test predicates evaluate to truth values."""
        bound = evaluator.bind(op(BinaryOperator.LT, col("id", "t"), lit(5)), SCOPE)
        assert evaluator.evaluate_truth(bound, EvalContext((1, "a", None, 1))) is Truth.TRUE
        assert evaluator.evaluate_truth(bound, EvalContext((None, "a", None, 1))) is Truth.UNKNOWN

    def test_is_null(self, evaluator: ExpressionEvaluator) -> None:
        """Test IS NULL and IS NOT NULL never return unknown."""
        assert evaluate(evaluator, UnaryOp(UnaryOperator.IS_NULL, col("score"))) is True
        assert evaluate(evaluator, UnaryOp(UnaryOperator.IS_NOT_NULL, col("score"))) is False

    def test_in_list(self, evaluator: ExpressionEvaluator) -> None:
        """Test IN with a NULL candidate."""
        items = (lit(5), lit(None))
        assert evaluate(evaluator, InList(col("id", "t"), (lit(1), lit(None)))) is True
        assert evaluate(evaluator, InList(col("id", "t"), items)) is None
        assert evaluate(evaluator, InList(col("id", "t"), (lit(5),))) is False

    def test_between(self, evaluator: ExpressionEvaluator) -> None:
        """Test BETWEEN is inclusive."""
        assert evaluate(evaluator, Between(col("id", "t"), lit(1), lit(3))) is True
        assert evaluate(evaluator, Between(col("id", "t"), lit(2), lit(3))) is False
        assert evaluate(evaluator, Between(col("id", "t"), lit(None), lit(0))) is False

    def test_like(self, evaluator: ExpressionEvaluator) -> None:
        """Test LIKE defaults to case-insensitive and can be forced sensitive."""
        assert evaluate(evaluator, Like(col("name"), lit("a%"))) is True
        assert evaluate(evaluator, Like(col("name"), lit("a%"), case_sensitive=True)) is False
        sensitive = ExpressionEvaluator(like_case_sensitive=True)
        assert evaluate(sensitive, Like(col("name"), lit("a%"))) is False

    def test_functions(self, evaluator: ExpressionEvaluator) -> None:
        """Test the scalar function library."""
        assert evaluate(evaluator, FunctionCall("upper", (col("name"),))) == "ANN"
        assert evaluate(evaluator, FunctionCall("LENGTH", (col("name"),))) == 3
        assert evaluate(evaluator, FunctionCall("COALESCE", (col("score"), lit(0.5)))) == 0.5
        assert evaluate(evaluator, FunctionCall("NULLIF", (lit(1), lit(1)))) is None
        assert evaluate(evaluator, FunctionCall("ROUND", (lit(2.345), lit(2)))) == 2.35
        assert evaluate(evaluator, FunctionCall("ABS", (lit(-3),))) == 3

    def test_round_precision(self, evaluator: ExpressionEvaluator) -> None:
        """Test ROUND with precisions beyond the value's digits and out of range."""

        def round_(value: Any, digits: int) -> Any:
            return evaluate(evaluator, FunctionCall("ROUND", (lit(value), lit(digits))))

        assert round_(2.5, 0) == 3.0
        assert round_(2.5, 100) == 2.5
        assert round_(1.5e20, 10) == 1.5e20
        assert round_(1250, -2) == 1300
        with pytest.raises(SQLArithmeticError, match="precision"):
            round_(7, -(10**7))

    def test_unknown_function(self, evaluator: ExpressionEvaluator) -> None:
        """Test unknown functions fail at bind time."""
        with pytest.raises(UnresolvedReferenceError, match="Unknown function"):
            evaluator.bind(FunctionCall("NOPE", (lit(1),)), SCOPE)

    def test_function_arity(self, evaluator: ExpressionEvaluator) -> None:
        """Test wrong argument counts fail at bind time."""
        with pytest.raises(TypeMismatchError):
            evaluator.bind(FunctionCall("UPPER", ()), SCOPE)

    def test_aggregate_outside_grouping(self, evaluator: ExpressionEvaluator) -> None:
        """Test aggregates are rejected where no grouping applies."""
        with pytest.raises(UnresolvedReferenceError, match="WHERE"):
            evaluator.bind(
                Aggregate(AggregateFunc.COUNT), SCOPE, clause="WHERE"
            )

    def test_cast(self, evaluator: ExpressionEvaluator) -> None:
        """Test CAST expressions."""
        assert evaluate(evaluator, Cast(lit("12"), SqlType.INTEGER)) == 12

    def test_type_errors(self, evaluator: ExpressionEvaluator) -> None:
        """Test comparing TEXT with INTEGER and non-boolean conditions."""
        with pytest.raises(TypeMismatchError):
            evaluate(evaluator, op(BinaryOperator.EQ, col("name"), lit(1)))
        with pytest.raises(TypeMismatchError):
            evaluate(evaluator, op(BinaryOperator.AND, col("id", "t"), lit(True)))


@pytest.mark.unit
class TestAccumulators:
    """Tests for aggregate accumulators."""

    def feed(self, func: AggregateFunc, values: list, **kwargs: bool) -> Any:
        accumulator = make_accumulator(func, **kwargs)
        for value in values:
            accumulator.add(value)
        return accumulator.result()

    def test_empty_input(self) -> None:
        """Test COUNT is 0 and the rest are NULL over no rows."""
        assert self.feed(AggregateFunc.COUNT, [], star=True) == 0
        assert self.feed(AggregateFunc.COUNT, []) == 0
        for func in (AggregateFunc.SUM, AggregateFunc.AVG, AggregateFunc.MIN, AggregateFunc.MAX):
            assert self.feed(func, []) is None

    def test_all_null_input(self) -> None:
        """Test NULLs are skipped by everything except COUNT(*)."""
        values = [None, None]
        assert self.feed(AggregateFunc.COUNT, values, star=True) == 2
        assert self.feed(AggregateFunc.COUNT, values) == 0
        assert self.feed(AggregateFunc.SUM, values) is None
        assert self.feed(AggregateFunc.MAX, values) is None

    def test_values(self) -> None:
        """Test aggregate results over mixed input."""
        values = [3, None, 1, 2]
        assert self.feed(AggregateFunc.SUM, values) == 6
        assert self.feed(AggregateFunc.AVG, values) == 2.0
        assert self.feed(AggregateFunc.MIN, values) == 1
        assert self.feed(AggregateFunc.MAX, ["b", "c", "a"]) == "c"

    def test_distinct(self) -> None:
        """Test DISTINCT feeds each value once."""
        values = [1, 1, 2, None]
        assert self.feed(AggregateFunc.COUNT, values, distinct=True) == 2
        assert self.feed(AggregateFunc.SUM, values, distinct=True) == 3

    def test_sum_requires_numbers(self) -> None:
        """Test SUM over TEXT is a type error."""
        with pytest.raises(TypeMismatchError):
            self.feed(AggregateFunc.SUM, ["a"])
