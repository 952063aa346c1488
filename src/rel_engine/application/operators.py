"""Query operators using the Volcano iterator model.

The Volcano model:
    - Each operator is an iterator with open(), next(), close() methods
    - Operators pull tuples from their children on demand
    - Enables pipelining without materializing intermediate results

Rows flowing between operators are plain tuples. HashAggregate and Sort
are blocking: they consume their whole input in open(). NestedLoopJoin and
HashJoin buffer their right input. All other operators stream.

Every next() checks the cancellation token first, so a cancelled pipeline
stops within one row production and the iterator's ``finally`` closes the
whole tree.

References:
    - Graefe, "Volcano" (1994)
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Iterator

from rel_engine.application import plan as p
from rel_engine.domain.services.aggregates import Accumulator, make_accumulator
from rel_engine.domain.services.evaluator import EvalContext, ExpressionEvaluator
from rel_engine.domain.value_objects.cancellation import CancellationToken
from rel_engine.domain.value_objects.sql_types import group_key, sort_key
from rel_engine.domain.value_objects.statements import JoinKind

Row = tuple


@dataclass
class ExecutionStats:
    """Counters collected while a pipeline runs."""

    rows_scanned: int = 0
    index_lookups: dict[str, int] = field(default_factory=dict)

    def record_index_lookup(self, index_name: str) -> None:
        self.index_lookups[index_name] = self.index_lookups.get(index_name, 0) + 1


@dataclass
class RuntimeEnv:
    """State shared by all operators of one pipeline run.

    Attributes:
        evaluator: Evaluates bound expressions.
        outer: Context of the enclosing row when running as a subquery.
        cancellation: Checked between row productions.
        stats: Counters for the run.
    """

    evaluator: ExpressionEvaluator
    outer: EvalContext | None = None
    cancellation: CancellationToken | None = None
    stats: ExecutionStats = field(default_factory=ExecutionStats)

    def context(self, row: Row) -> EvalContext:
        return EvalContext(row, self.outer, self.cancellation)

    def check(self) -> None:
        if self.cancellation is not None:
            self.cancellation.check()


class Operator(ABC):
    """Base class for executor operators (Volcano model)."""

    def __init__(self, env: RuntimeEnv) -> None:
        self._env = env

    @abstractmethod
    def open(self) -> None:
        """Initialize the operator."""
        pass

    @abstractmethod
    def next(self) -> Row | None:
        """Return the next row or None if exhausted."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Clean up resources."""
        pass

    def __iter__(self) -> Iterator[Row]:
        """Allow iteration over operator results."""
        self.open()
        try:
            while True:
                row = self.next()
                if row is None:
                    break
                yield row
        finally:
            self.close()


class SeqScanOperator(Operator):
    """Sequential scan over a table snapshot."""

    def __init__(self, node: p.SeqScan, env: RuntimeEnv) -> None:
        super().__init__(env)
        self._table = node.table
        self._rows: Iterator[Row] | None = None

    def open(self) -> None:
        self._rows = self._table.scan()

    def next(self) -> Row | None:
        self._env.check()
        if self._rows is None:
            return None
        row = next(self._rows, None)
        if row is not None:
            self._env.stats.rows_scanned += 1
        return row

    def close(self) -> None:
        self._rows = None


class IndexScanOperator(Operator):
    """Rows whose indexed key equals a constant."""

    def __init__(self, node: p.IndexScan, env: RuntimeEnv) -> None:
        super().__init__(env)
        self._node = node
        self._rows: Iterator[Row] | None = None

    def open(self) -> None:
        ctx = self._env.context(())
        key = [self._env.evaluator.evaluate(k, ctx) for k in self._node.key]
        self._env.stats.record_index_lookup(self._node.index_name)
        self._rows = self._node.table.lookup(self._node.index_name, key)

    def next(self) -> Row | None:
        self._env.check()
        if self._rows is None:
            return None
        row = next(self._rows, None)
        if row is not None:
            self._env.stats.rows_scanned += 1
        return row

    def close(self) -> None:
        self._rows = None


class SingleRowOperator(Operator):
    """Returns a single empty row."""

    def __init__(self, env: RuntimeEnv) -> None:
        super().__init__(env)
        self._returned = False

    def open(self) -> None:
        self._returned = False

    def next(self) -> Row | None:
        self._env.check()
        if self._returned:
            return None
        self._returned = True
        return ()

    def close(self) -> None:
        pass


class PassThroughOperator(Operator):
    """Forwards its child's rows unchanged (derived tables)."""

    def __init__(self, child: Operator, env: RuntimeEnv) -> None:
        super().__init__(env)
        self._child = child

    def open(self) -> None:
        self._child.open()

    def next(self) -> Row | None:
        self._env.check()
        return self._child.next()

    def close(self) -> None:
        self._child.close()


def _drain(child: Operator) -> list[Row]:
    rows = []
    while True:
        row = child.next()
        if row is None:
            return rows
        rows.append(row)


class NestedLoopJoinOperator(Operator):
    """Nested-loop join supporting every join kind.

    The right input is buffered on open(). For each left row, the right rows
    are visited in order. RIGHT and FULL joins emit the never-matched right
    rows, left-padded with NULLs, after the left input is exhausted.
    """

    def __init__(
        self, node: p.NestedLoopJoin, left: Operator, right: Operator, env: RuntimeEnv
    ) -> None:
        super().__init__(env)
        self._node = node
        self._left = left
        self._right = right
        self._right_rows: list[Row] = []
        self._right_matched: list[bool] = []
        self._pending: Iterator[Row] = iter(())
        self._left_done = False

    def open(self) -> None:
        self._left.open()
        self._right.open()
        self._right_rows = _drain(self._right)
        self._right_matched = [False] * len(self._right_rows)
        self._pending = iter(())
        self._left_done = False

    def next(self) -> Row | None:
        while True:
            self._env.check()
            row = next(self._pending, None)
            if row is not None:
                return row
            if self._left_done:
                return None
            left = self._left.next()
            if left is None:
                self._left_done = True
                self._pending = self._unmatched_right()
            else:
                self._pending = iter(self._join_row(left))

    def _join_row(self, left: Row) -> list[Row]:
        kind = self._node.kind
        condition = self._node.condition
        evaluator = self._env.evaluator
        joined = []
        for i, right in enumerate(self._right_rows):
            row = left + right
            if condition is None or evaluator.evaluate_truth(
                condition, self._env.context(row)
            ).is_true:
                joined.append(row)
                self._right_matched[i] = True
        if not joined and kind in (JoinKind.LEFT, JoinKind.FULL):
            joined.append(left + (None,) * self._node.right_width)
        return joined

    def _unmatched_right(self) -> Iterator[Row]:
        if self._node.kind not in (JoinKind.RIGHT, JoinKind.FULL):
            return iter(())
        padding = (None,) * self._node.left_width
        return iter(
            padding + right
            for right, matched in zip(self._right_rows, self._right_matched)
            if not matched
        )

    def close(self) -> None:
        self._left.close()
        self._right.close()
        self._right_rows = []
        self._right_matched = []


class HashJoinOperator(Operator):
    """Equality join producing the same rows, in the same order, as a nested loop.

    The right input is hashed on open(); left rows are looked up in it in order and
    matches come out in right-input order. NULL keys never match.
    """

    def __init__(self, node: p.HashJoin, left: Operator, right: Operator, env: RuntimeEnv) -> None:
        super().__init__(env)
        self._node = node
        self._left = left
        self._right = right
        self._table: dict[tuple, list[Row]] = {}
        self._pending: Iterator[Row] = iter(())

    def open(self) -> None:
        self._left.open()
        self._right.open()
        self._table = {}
        for row in _drain(self._right):
            values = [row[k] for k in self._node.right_keys]
            if any(v is None for v in values):
                continue
            self._table.setdefault(group_key(values), []).append(row)
        self._pending = iter(())

    def next(self) -> Row | None:
        while True:
            self._env.check()
            row = next(self._pending, None)
            if row is not None:
                return row
            left = self._left.next()
            if left is None:
                return None
            values = [left[k] for k in self._node.left_keys]
            matches = []
            if not any(v is None for v in values):
                matches = self._table.get(group_key(values), [])
            if matches:
                self._pending = iter([left + right for right in matches])
            elif self._node.kind == JoinKind.LEFT:
                self._pending = iter([left + (None,) * self._node.right_width])

    def close(self) -> None:
        self._left.close()
        self._right.close()
        self._table = {}


class FilterOperator(Operator):
    """Filter operator that applies a predicate; only TRUE passes."""

    def __init__(self, child: Operator, node: p.Filter, env: RuntimeEnv) -> None:
        super().__init__(env)
        self._child = child
        self._predicate = node.predicate

    def open(self) -> None:
        self._child.open()

    def next(self) -> Row | None:
        evaluator = self._env.evaluator
        while True:
            self._env.check()
            row = self._child.next()
            if row is None:
                return None
            if evaluator.evaluate_truth(self._predicate, self._env.context(row)).is_true:
                return row

    def close(self) -> None:
        self._child.close()


class HashAggregateOperator(Operator):
    """Groups rows and computes aggregates.

    Output rows hold the key values followed by the aggregate results.
    Groups come out in order of first appearance. Without keys, an empty
    input still yields one group.
    """

    def __init__(self, child: Operator, node: p.HashAggregate, env: RuntimeEnv) -> None:
        super().__init__(env)
        self._child = child
        self._node = node
        self._groups: Iterator[Row] = iter(())

    def open(self) -> None:
        self._child.open()
        evaluator = self._env.evaluator
        groups: dict[tuple, tuple[tuple, list[Accumulator]]] = {}
        while True:
            self._env.check()
            row = self._child.next()
            if row is None:
                break
            ctx = self._env.context(row)
            key_values = tuple(evaluator.evaluate(k, ctx) for k in self._node.keys)
            key = group_key(key_values)
            if key not in groups:
                groups[key] = (key_values, self._new_accumulators())
            _, accumulators = groups[key]
            for spec, accumulator in zip(self._node.aggregates, accumulators):
                value = None if spec.arg is None else evaluator.evaluate(spec.arg, ctx)
                accumulator.add(value)
        if not groups and not self._node.keys:
            groups[()] = ((), self._new_accumulators())
        self._groups = iter(
            [
                key_values + tuple(a.result() for a in accumulators)
                for key_values, accumulators in groups.values()
            ]
        )

    def _new_accumulators(self) -> list[Accumulator]:
        return [
            make_accumulator(spec.func, star=spec.arg is None, distinct=spec.distinct)
            for spec in self._node.aggregates
        ]

    def next(self) -> Row | None:
        self._env.check()
        return next(self._groups, None)

    def close(self) -> None:
        self._child.close()
        self._groups = iter(())


class ProjectOperator(Operator):
    """Computes output expressions; DISTINCT keeps the first of equal rows."""

    def __init__(self, child: Operator, node: p.Project, env: RuntimeEnv) -> None:
        super().__init__(env)
        self._child = child
        self._node = node
        self._seen: set[tuple] = set()

    def open(self) -> None:
        self._child.open()
        self._seen = set()

    def next(self) -> Row | None:
        evaluator = self._env.evaluator
        while True:
            self._env.check()
            row = self._child.next()
            if row is None:
                return None
            ctx = self._env.context(row)
            out = tuple(evaluator.evaluate(e, ctx) for e in self._node.exprs)
            if not self._node.distinct:
                return out
            key = group_key(out)
            if key not in self._seen:
                self._seen.add(key)
                return out

    def close(self) -> None:
        self._child.close()
        self._seen = set()


class SortOperator(Operator):
    """Stable multi-key sort; the first key dominates."""

    def __init__(self, child: Operator, node: p.Sort, env: RuntimeEnv) -> None:
        super().__init__(env)
        self._child = child
        self._node = node
        self._sorted: Iterator[Row] = iter(())

    def open(self) -> None:
        self._child.open()
        rows = []
        while True:
            self._env.check()
            row = self._child.next()
            if row is None:
                break
            rows.append(row)
        # Stable sorts applied from the last key to the first
        nulls = self._node.nulls
        for key in reversed(self._node.keys):
            rows.sort(
                key=lambda r, i=key.position: sort_key(r[i], nulls),
                reverse=not key.ascending,
            )
        self._sorted = iter(rows)

    def next(self) -> Row | None:
        self._env.check()
        return next(self._sorted, None)

    def close(self) -> None:
        self._child.close()
        self._sorted = iter(())


class LimitOperator(Operator):
    """Limit operator that restricts row count."""

    def __init__(self, child: Operator, node: p.Limit, env: RuntimeEnv) -> None:
        super().__init__(env)
        self._child = child
        self._limit = node.count
        self._offset = node.offset
        self._returned = 0
        self._offset_done = False

    def open(self) -> None:
        self._child.open()
        self._returned = 0
        self._offset_done = False

    def next(self) -> Row | None:
        self._env.check()
        if not self._offset_done:
            self._offset_done = True
            for _ in range(self._offset):
                if self._child.next() is None:
                    return None
        if self._limit is not None and self._returned >= self._limit:
            return None
        row = self._child.next()
        if row is None:
            return None
        self._returned += 1
        return row

    def close(self) -> None:
        self._child.close()


def build_operator(node: p.PlanNode, env: RuntimeEnv) -> Operator:
    """Build a fresh physical operator tree from a plan."""
    if isinstance(node, p.SeqScan):
        return SeqScanOperator(node, env)
    if isinstance(node, p.IndexScan):
        return IndexScanOperator(node, env)
    if isinstance(node, p.SingleRow):
        return SingleRowOperator(env)
    if isinstance(node, p.DerivedTable):
        return PassThroughOperator(build_operator(node.input, env), env)
    if isinstance(node, p.NestedLoopJoin):
        return NestedLoopJoinOperator(
            node, build_operator(node.left, env), build_operator(node.right, env), env
        )
    if isinstance(node, p.HashJoin):
        return HashJoinOperator(
            node, build_operator(node.left, env), build_operator(node.right, env), env
        )
    if isinstance(node, p.Filter):
        return FilterOperator(build_operator(node.input, env), node, env)
    if isinstance(node, p.HashAggregate):
        return HashAggregateOperator(build_operator(node.input, env), node, env)
    if isinstance(node, p.Project):
        return ProjectOperator(build_operator(node.input, env), node, env)
    if isinstance(node, p.Sort):
        return SortOperator(build_operator(node.input, env), node, env)
    if isinstance(node, p.Limit):
        return LimitOperator(build_operator(node.input, env), node, env)
    raise ValueError(f"Unsupported plan node: {type(node).__name__}")


def run_plan(node: p.PlanNode, env: RuntimeEnv) -> Iterator[Row]:
    """Iterate the rows of a plan. Closing the iterator closes every operator."""
    return iter(build_operator(node, env))
