"""Query planner.

Turns a :class:`SelectStatement` into a physical plan. Clauses are always
applied in this order, whatever their textual order:

    Scan/Join -> Filter(WHERE) -> HashAggregate(GROUP BY) -> Having
    -> Project(SELECT, DISTINCT) -> Sort(ORDER BY) -> Limit

All name resolution happens here, so unknown columns, tables and functions
fail before the first row is produced.

Optimizations (never required for correctness):
    - Index pushdown: on a single-table query, a ``column = literal``
      conjunct of WHERE over a single-column index turns the SeqScan into an
      IndexScan. The Filter still runs on the fetched rows.
    - Hash join: INNER and LEFT joins whose condition is a conjunction of
      equalities between type-compatible base columns of opposite inputs.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator

from rel_engine.application import plan as p
from rel_engine.application.operators import ExecutionStats, RuntimeEnv, run_plan
from rel_engine.domain.errors import UnresolvedReferenceError
from rel_engine.domain.services.catalog import Catalog
from rel_engine.domain.services.evaluator import (
    BoundColumn,
    ColumnSlot,
    EvalContext,
    ExpressionEvaluator,
    Grouping,
    Scope,
)
from rel_engine.domain.value_objects.cancellation import CancellationToken
from rel_engine.domain.value_objects.expressions import (
    Aggregate,
    BinaryOp,
    BinaryOperator,
    ColumnRef,
    Expression,
    FunctionCall,
    Literal,
    Star,
    conjuncts,
    find_aggregates,
)
from rel_engine.domain.value_objects.sql_types import (
    NullOrdering,
    SqlType,
    comparable,
    type_of,
)
from rel_engine.domain.value_objects.statements import (
    FromItem,
    Join,
    JoinKind,
    SelectItem,
    SelectStatement,
    SubqueryRef,
    TableRef,
)


@dataclass
class PreparedQuery:
    """A planned SELECT, runnable any number of times.

    Attributes:
        root: Root of the plan tree.
        columns: Output column names.
        evaluator: Evaluator for the bound expressions in the plan.
    """

    root: p.PlanNode
    columns: list[str]
    evaluator: ExpressionEvaluator

    @property
    def width(self) -> int:
        return len(self.columns)

    def execute(
        self,
        cancellation: CancellationToken | None = None,
        stats: ExecutionStats | None = None,
    ) -> Iterator[tuple]:
        """Run the plan as a top-level query."""
        env = RuntimeEnv(self.evaluator, None, cancellation, stats or ExecutionStats())
        return run_plan(self.root, env)

    def run(self, outer: EvalContext) -> Iterator[tuple]:
        """Run the plan as a subquery of the row bound in ``outer``."""
        env = RuntimeEnv(self.evaluator, outer, outer.cancellation)
        return run_plan(self.root, env)

    def explain(self) -> str:
        return str(self.root)


@dataclass(frozen=True)
class _Source:
    """A planned FROM item: its plan, row layout and binding names."""

    node: p.PlanNode
    slots: tuple[ColumnSlot, ...]
    bindings: tuple[str, ...]


class QueryPlanner:
    """Builds physical plans for SELECT statements.

    Args:
        catalog: Resolves table names.
        evaluator: Binds and evaluates expressions.
        null_ordering: Where NULL sorts.
        hash_join_enabled: Allow hash joins for eligible equality joins.
        index_pushdown_enabled: Allow index scans for ``column = literal``.
    """

    def __init__(
        self,
        catalog: Catalog,
        evaluator: ExpressionEvaluator,
        null_ordering: NullOrdering = NullOrdering.NULLS_LOW,
        hash_join_enabled: bool = True,
        index_pushdown_enabled: bool = True,
    ) -> None:
        self._catalog = catalog
        self._evaluator = evaluator
        self._null_ordering = null_ordering
        self._hash_join_enabled = hash_join_enabled
        self._index_pushdown_enabled = index_pushdown_enabled

    def plan_select(self, stmt: SelectStatement, parent: Scope | None = None) -> PreparedQuery:
        """Plan a SELECT.

        Args:
            stmt: The statement.
            parent: Scope of the enclosing query for correlated subqueries.

        Raises:
            UnresolvedReferenceError: On unknown or ambiguous names.
            TypeMismatchError: On malformed subqueries or function calls.
        """
        if stmt.from_item is None:
            source = _Source(p.SingleRow(), (), ())
        else:
            source = self._plan_from(stmt.from_item, parent)
        scope = Scope(source.slots, parent)
        node = source.node

        # WHERE
        if stmt.where is not None:
            predicate = self._bind(stmt.where, scope, clause="WHERE")
            node = self._push_down_index(stmt, node, scope)
            node = p.Filter(node, predicate)

        # SELECT list with stars expanded
        items = self._expand_items(stmt.items, scope)

        # GROUP BY / aggregates / HAVING
        aggregates = self._collect_aggregates(stmt, items)
        grouping = None
        if stmt.group_by or aggregates or stmt.having is not None:
            keys = tuple(self._group_key(k, items, scope) for k in stmt.group_by)
            bound_keys = tuple(self._bind(k, scope, clause="GROUP BY") for k in keys)
            specs = tuple(
                p.AggregateSpec(
                    a.func,
                    None if a.arg is None else self._bind(a.arg, scope, clause="aggregate arguments"),
                    a.distinct,
                )
                for a in aggregates
            )
            node = p.HashAggregate(node, bound_keys, specs)
            aliases = {i.alias.casefold(): i.expr for i in items if i.alias}
            grouping = Grouping(scope, keys, tuple(aggregates), aliases)
            if stmt.having is not None:
                having = self._bind(stmt.having, scope, grouping, clause="HAVING")
                node = p.Having(node, having)

        # Project, with hidden trailing columns for ORDER BY expressions
        project_grouping = (
            None
            if grouping is None
            else Grouping(grouping.source, grouping.keys, grouping.aggregates)
        )
        exprs = [self._bind(i.expr, scope, project_grouping, clause="SELECT") for i in items]
        names = [_output_name(i) for i in items]
        visible = len(exprs)
        sort_keys: list[p.SortKey] = []
        for order in stmt.order_by:
            position = self._order_position(order.expr, items, names, stmt.distinct)
            if position is None:
                exprs.append(self._bind(order.expr, scope, project_grouping, clause="ORDER BY"))
                names.append(str(order.expr))
                position = len(exprs) - 1
            sort_keys.append(p.SortKey(position, order.ascending, str(order.expr)))
        node = p.Project(node, tuple(exprs), tuple(names), stmt.distinct)

        if sort_keys:
            node = p.Sort(node, tuple(sort_keys), self._null_ordering)
        if stmt.limit is not None or stmt.offset:
            node = p.Limit(node, stmt.limit, stmt.offset)
        if len(exprs) > visible:
            node = p.Project(
                node,
                tuple(BoundColumn(i, 0, names[i]) for i in range(visible)),
                tuple(names[:visible]),
            )
        return PreparedQuery(node, names[:visible], self._evaluator)

    def bind(self, expr: Expression, scope: Scope, clause: str) -> Expression:
        """Bind an expression for use outside a SELECT pipeline (DML, defaults)."""
        return self._bind(expr, scope, clause=clause)

    # FROM clause

    def _plan_from(self, item: FromItem, parent: Scope | None) -> _Source:
        if isinstance(item, TableRef):
            table = self._catalog.get_table(item.name)
            binding = item.binding_name
            slots = tuple(
                ColumnSlot(c.name, binding, c.sql_type) for c in table.schema.columns
            )
            return _Source(p.SeqScan(table, item.alias), slots, (binding,))
        if isinstance(item, SubqueryRef):
            sub = self.plan_select(item.query, parent)
            slots = tuple(ColumnSlot(name, item.alias) for name in sub.columns)
            return _Source(p.DerivedTable(sub.root, item.alias), slots, (item.alias,))
        if isinstance(item, Join):
            return self._plan_join(item, parent)
        raise TypeError(f"Unsupported FROM item: {type(item).__name__}")

    def _plan_join(self, join: Join, parent: Scope | None) -> _Source:
        left = self._plan_from(join.left, parent)
        right = self._plan_from(join.right, parent)
        seen = {b.casefold() for b in left.bindings}
        for binding in right.bindings:
            if binding.casefold() in seen:
                raise UnresolvedReferenceError(
                    f"Table name '{binding}' specified more than once", name=binding
                )

        left_slots = list(left.slots)
        right_slots = list(right.slots)
        condition = None
        shared: list[tuple[int, int]] = []
        if join.using:
            condition, shared = self._using_condition(join, left_slots, right_slots)
        slots = tuple(left_slots + right_slots)
        if join.condition is not None:
            scope = Scope(slots, parent)
            condition = self._bind(join.condition, scope, clause="JOIN condition")
        if join.kind != JoinKind.CROSS and condition is None:
            raise UnresolvedReferenceError(f"{join.kind.value} JOIN requires ON or USING")

        bindings = left.bindings + right.bindings
        left_width = len(left_slots)
        hash_keys = self._hash_join_keys(join.kind, condition, slots, left_width)
        if hash_keys is not None:
            left_keys, right_keys = hash_keys
            node: p.PlanNode = p.HashJoin(
                left.node, right.node, join.kind, left_keys, right_keys,
                len(right_slots), condition,
            )
        else:
            node = p.NestedLoopJoin(
                left.node, right.node, join.kind, condition, left_width, len(right_slots)
            )
        if shared:
            node, slots = _merge_using_columns(node, slots, shared, left_width)
        return _Source(node, slots, bindings)

    @staticmethod
    def _using_condition(
        join: Join, left_slots: list[ColumnSlot], right_slots: list[ColumnSlot]
    ) -> tuple[Expression, list[tuple[int, int]]]:
        """Build ``l.c = r.c AND ...``; unqualified ``c`` then resolves to one side.

        For FULL joins both sides are hidden and the returned position pairs
        name the columns to merge.
        """
        condition: Expression | None = None
        shared: list[tuple[int, int]] = []
        offset = len(left_slots)
        for name in join.using:
            ref = ColumnRef(name)
            left_matches = [i for i, s in enumerate(left_slots) if s.matches(ref)]
            right_matches = [i for i, s in enumerate(right_slots) if s.matches(ref)]
            for side, matches in (("left", left_matches), ("right", right_matches)):
                if len(matches) != 1:
                    problem = "ambiguous" if matches else "missing"
                    raise UnresolvedReferenceError(
                        f"USING column '{name}' is {problem} in the {side} input", name=name
                    )
            li, ri = left_matches[0], right_matches[0]
            # The preserved side keeps the unqualified name
            if join.kind == JoinKind.FULL:
                left_slots[li] = _hidden(left_slots[li])
                right_slots[ri] = _hidden(right_slots[ri])
                shared.append((li, ri))
            elif join.kind == JoinKind.RIGHT:
                left_slots[li] = _hidden(left_slots[li])
            else:
                right_slots[ri] = _hidden(right_slots[ri])
            equality = BinaryOp(
                BinaryOperator.EQ,
                BoundColumn(li, 0, _qualified(left_slots[li])),
                BoundColumn(offset + ri, 0, _qualified(right_slots[ri])),
            )
            condition = equality if condition is None else BinaryOp(
                BinaryOperator.AND, condition, equality
            )
        assert condition is not None
        return condition, shared

    def _hash_join_keys(
        self,
        kind: JoinKind,
        condition: Expression | None,
        slots: tuple[ColumnSlot, ...],
        left_width: int,
    ) -> tuple[tuple[int, ...], tuple[int, ...]] | None:
        """Key positions if the join can run as a hash join, else None."""
        if not self._hash_join_enabled or kind not in (JoinKind.INNER, JoinKind.LEFT):
            return None
        if condition is None:
            return None
        left_keys: list[int] = []
        right_keys: list[int] = []
        for conjunct in conjuncts(condition):
            if not (
                isinstance(conjunct, BinaryOp)
                and conjunct.op == BinaryOperator.EQ
                and isinstance(conjunct.left, BoundColumn)
                and isinstance(conjunct.right, BoundColumn)
                and conjunct.left.depth == 0
                and conjunct.right.depth == 0
            ):
                return None
            a, b = conjunct.left.index, conjunct.right.index
            if (a < left_width) == (b < left_width):
                return None
            if a >= left_width:
                a, b = b, a
            left_type, right_type = slots[a].sql_type, slots[b].sql_type
            if left_type is None or right_type is None or not comparable(left_type, right_type):
                return None
            left_keys.append(a)
            right_keys.append(b - left_width)
        return tuple(left_keys), tuple(right_keys)

    # WHERE

    def _push_down_index(
        self, stmt: SelectStatement, node: p.PlanNode, scope: Scope
    ) -> p.PlanNode:
        if not self._index_pushdown_enabled or not isinstance(node, p.SeqScan):
            return node
        table = node.table
        for conjunct in conjuncts(stmt.where):
            if not (isinstance(conjunct, BinaryOp) and conjunct.op == BinaryOperator.EQ):
                continue
            column, literal = conjunct.left, conjunct.right
            if isinstance(column, Literal):
                column, literal = literal, column
            if not (isinstance(column, ColumnRef) and isinstance(literal, Literal)):
                continue
            if literal.value is None:
                continue
            bound = scope.resolve(column)
            if bound.depth != 0:
                continue
            column_def = table.schema.columns[bound.index]
            literal_type = type_of(literal.value)
            if literal_type is not column_def.sql_type and not (
                literal_type.is_numeric and column_def.sql_type.is_numeric
            ):
                continue
            index = table.find_index([column_def.name])
            if index is not None:
                return p.IndexScan(table, index.name, (literal,), node.alias)
        return node

    # SELECT list

    @staticmethod
    def _expand_items(items: tuple[SelectItem, ...], scope: Scope) -> list[SelectItem]:
        expanded: list[SelectItem] = []
        for item in items:
            if isinstance(item.expr, Star):
                expanded.extend(SelectItem(ref) for ref in scope.expand_star(item.expr.table))
            else:
                expanded.append(item)
        return expanded

    @staticmethod
    def _collect_aggregates(stmt: SelectStatement, items: list[SelectItem]) -> list[Aggregate]:
        found: list[Aggregate] = []
        sources = [i.expr for i in items]
        if stmt.having is not None:
            sources.append(stmt.having)
        sources.extend(o.expr for o in stmt.order_by)
        for expr in sources:
            for aggregate in find_aggregates(expr):
                if aggregate not in found:
                    found.append(aggregate)
        return found

    @staticmethod
    def _group_key(expr: Expression, items: list[SelectItem], scope: Scope) -> Expression:
        """Resolve a GROUP BY ordinal or output alias to the SELECT expression.

        Input columns take precedence over output aliases of the same name.
        """
        if isinstance(expr, Literal) and type_of(expr.value) is SqlType.INTEGER:
            if not 1 <= expr.value <= len(items):
                raise UnresolvedReferenceError(
                    f"GROUP BY position {expr.value} is not in select list"
                )
            return items[expr.value - 1].expr
        if isinstance(expr, ColumnRef) and expr.table is None:
            try:
                scope.resolve(expr)
            except UnresolvedReferenceError:
                for item in items:
                    if item.alias is not None and item.alias.casefold() == expr.name.casefold():
                        return item.expr
                raise
        return expr

    def _order_position(
        self,
        expr: Expression,
        items: list[SelectItem],
        names: list[str],
        distinct: bool,
    ) -> int | None:
        """Output position an ORDER BY item refers to, or None for a hidden column."""
        if isinstance(expr, Literal) and type_of(expr.value) is SqlType.INTEGER:
            if not 1 <= expr.value <= len(items):
                raise UnresolvedReferenceError(
                    f"ORDER BY position {expr.value} is not in select list"
                )
            return expr.value - 1
        if isinstance(expr, ColumnRef) and expr.table is None:
            matches = [
                i for i, item in enumerate(items)
                if item.alias is not None and item.alias.casefold() == expr.name.casefold()
            ]
            if len(matches) > 1:
                raise UnresolvedReferenceError(
                    f"ORDER BY '{expr.name}' is ambiguous", name=expr.name
                )
            if matches:
                return matches[0]
        for i, item in enumerate(items):
            if item.expr == expr:
                return i
        if isinstance(expr, ColumnRef) and expr.table is None:
            matches = [
                i for i, name in enumerate(names[: len(items)])
                if items[i].alias is None
                and isinstance(items[i].expr, ColumnRef)
                and name.casefold() == expr.name.casefold()
            ]
            if len(matches) == 1:
                return matches[0]
        if distinct:
            raise UnresolvedReferenceError(
                f"For SELECT DISTINCT, ORDER BY expression '{expr}' must appear in select list"
            )
        return None

    # Binding

    def _bind(
        self,
        expr: Expression,
        scope: Scope,
        grouping: Grouping | None = None,
        clause: str = "expression",
    ) -> Expression:
        return self._evaluator.bind(
            expr, scope, subqueries=self.plan_select, grouping=grouping, clause=clause
        )


def _output_name(item: SelectItem) -> str:
    if item.alias:
        return item.alias
    if isinstance(item.expr, ColumnRef):
        return item.expr.name
    return str(item.expr)


def _hidden(slot: ColumnSlot) -> ColumnSlot:
    return ColumnSlot(slot.name, slot.table, slot.sql_type, qualified_only=True)


def _qualified(slot: ColumnSlot) -> str:
    return f"{slot.table}.{slot.name}" if slot.table else str(slot.name)


def _merge_using_columns(
    node: p.PlanNode,
    slots: tuple[ColumnSlot, ...],
    shared: list[tuple[int, int]],
    left_width: int,
) -> tuple[p.PlanNode, tuple[ColumnSlot, ...]]:
    """Add ``COALESCE(l.c, r.c)`` for each FULL JOIN USING column.

    The merged column sits just before the left column it replaces, so
    ``SELECT *`` keeps the same column order as the other join kinds.
    """
    right_of = dict(shared)
    exprs: list[Expression] = []
    layout: list[ColumnSlot] = []
    for i, slot in enumerate(slots):
        column = BoundColumn(i, 0, _qualified(slot))
        if i in right_of:
            right = left_width + right_of[i]
            other = BoundColumn(right, 0, _qualified(slots[right]))
            exprs.append(FunctionCall("COALESCE", (column, other)))
            layout.append(ColumnSlot(slot.name, None, slot.sql_type))
        exprs.append(column)
        layout.append(slot)
    names = tuple(str(s.name) for s in layout)
    return p.Project(node, tuple(exprs), names), tuple(layout)
