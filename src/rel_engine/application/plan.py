"""Physical query plans.

A plan is an immutable tree of nodes holding bound expressions. The planner
produces it once per statement; :mod:`rel_engine.application.operators`
instantiates a fresh operator tree from it for every run, which lets
correlated subqueries re-run the same plan for each outer row.

Plans render as indented text for ``EXPLAIN``::

    Limit(10)
      -> Sort(total DESC)
        -> Project(name, total)
          -> Filter((total > 100))
            -> SeqScan(orders)
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from rel_engine.domain.entities.table import Table
from rel_engine.domain.value_objects.expressions import AggregateFunc, Expression
from rel_engine.domain.value_objects.sql_types import NullOrdering
from rel_engine.domain.value_objects.statements import JoinKind


@dataclass(frozen=True)
class PlanNode(ABC):
    """Base class for plan nodes."""

    @abstractmethod
    def label(self) -> str:
        """One-line description of this node."""
        pass

    def inputs(self) -> tuple[PlanNode, ...]:
        return ()

    def render(self, depth: int = 0) -> str:
        lines = [self.label()]
        for child in self.inputs():
            lines.append("  " * (depth + 1) + "-> " + child.render(depth + 1))
        return "\n".join(lines)

    def __str__(self) -> str:
        return self.render()


@dataclass(frozen=True)
class SeqScan(PlanNode):
    """Full scan of a table in insertion order."""

    table: Table = field(compare=False)
    alias: str | None = None

    def label(self) -> str:
        if self.alias:
            return f"SeqScan({self.table.name} AS {self.alias})"
        return f"SeqScan({self.table.name})"


@dataclass(frozen=True)
class IndexScan(PlanNode):
    """Equality lookup through a hash index."""

    table: Table = field(compare=False)
    index_name: str = ""
    key: tuple[Expression, ...] = ()
    alias: str | None = None

    def label(self) -> str:
        key = ", ".join(str(k) for k in self.key)
        name = f"{self.table.name} AS {self.alias}" if self.alias else self.table.name
        return f"IndexScan({name} USING {self.index_name}, key=({key}))"


@dataclass(frozen=True)
class SingleRow(PlanNode):
    """Produces one empty row: the input of a SELECT without FROM."""

    def label(self) -> str:
        return "SingleRow"


@dataclass(frozen=True)
class DerivedTable(PlanNode):
    """A subquery in FROM."""

    input: PlanNode
    alias: str

    def label(self) -> str:
        return f"Subquery({self.alias})"

    def inputs(self) -> tuple[PlanNode, ...]:
        return (self.input,)


@dataclass(frozen=True)
class NestedLoopJoin(PlanNode):
    """Compares every left row with every (buffered) right row."""

    left: PlanNode
    right: PlanNode
    kind: JoinKind
    condition: Expression | None
    left_width: int
    right_width: int

    def label(self) -> str:
        if self.condition is None:
            return f"NestedLoopJoin({self.kind.value})"
        return f"NestedLoopJoin({self.kind.value}, {self.condition})"

    def inputs(self) -> tuple[PlanNode, ...]:
        return (self.left, self.right)


@dataclass(frozen=True)
class HashJoin(PlanNode):
    """Equality join: builds a hash table on the right input, looks up each left row.

    ``right_keys`` are positions within the right input's rows.
    """

    left: PlanNode
    right: PlanNode
    kind: JoinKind
    left_keys: tuple[int, ...]
    right_keys: tuple[int, ...]
    right_width: int
    condition: Expression | None = None

    def label(self) -> str:
        return f"HashJoin({self.kind.value}, {self.condition})"

    def inputs(self) -> tuple[PlanNode, ...]:
        return (self.left, self.right)


@dataclass(frozen=True)
class Filter(PlanNode):
    """Passes rows whose predicate is TRUE."""

    input: PlanNode
    predicate: Expression

    def label(self) -> str:
        return f"Filter({self.predicate})"

    def inputs(self) -> tuple[PlanNode, ...]:
        return (self.input,)


@dataclass(frozen=True)
class Having(Filter):
    """Filter over group rows."""

    def label(self) -> str:
        return f"Having({self.predicate})"


@dataclass(frozen=True)
class AggregateSpec:
    """One aggregate computed per group. ``arg`` is None for ``COUNT(*)``."""

    func: AggregateFunc
    arg: Expression | None
    distinct: bool = False

    def __str__(self) -> str:
        if self.arg is None:
            return f"{self.func.value}(*)"
        distinct = "DISTINCT " if self.distinct else ""
        return f"{self.func.value}({distinct}{self.arg})"


@dataclass(frozen=True)
class HashAggregate(PlanNode):
    """Groups rows by key and computes aggregates. Blocking."""

    input: PlanNode
    keys: tuple[Expression, ...]
    aggregates: tuple[AggregateSpec, ...]

    def label(self) -> str:
        parts = []
        if self.keys:
            parts.append("keys=[" + ", ".join(str(k) for k in self.keys) + "]")
        if self.aggregates:
            parts.append("aggs=[" + ", ".join(str(a) for a in self.aggregates) + "]")
        return f"HashAggregate({', '.join(parts)})"

    def inputs(self) -> tuple[PlanNode, ...]:
        return (self.input,)


@dataclass(frozen=True)
class Project(PlanNode):
    """Computes output columns, optionally removing duplicate rows."""

    input: PlanNode
    exprs: tuple[Expression, ...]
    names: tuple[str, ...]
    distinct: bool = False

    def label(self) -> str:
        cols = ", ".join(str(e) for e in self.exprs)
        return f"Project({'DISTINCT ' if self.distinct else ''}{cols})"

    def inputs(self) -> tuple[PlanNode, ...]:
        return (self.input,)


@dataclass(frozen=True)
class SortKey:
    position: int
    ascending: bool = True
    label: str = ""

    def __str__(self) -> str:
        return f"{self.label or '$' + str(self.position)} {'ASC' if self.ascending else 'DESC'}"


@dataclass(frozen=True)
class Sort(PlanNode):
    """Stable multi-key sort. Blocking."""

    input: PlanNode
    keys: tuple[SortKey, ...]
    nulls: NullOrdering = NullOrdering.NULLS_LOW

    def label(self) -> str:
        return f"Sort({', '.join(str(k) for k in self.keys)})"

    def inputs(self) -> tuple[PlanNode, ...]:
        return (self.input,)


@dataclass(frozen=True)
class Limit(PlanNode):
    input: PlanNode
    count: int | None
    offset: int = 0

    def label(self) -> str:
        count = "ALL" if self.count is None else str(self.count)
        if self.offset:
            return f"Limit({count} OFFSET {self.offset})"
        return f"Limit({count})"

    def inputs(self) -> tuple[PlanNode, ...]:
        return (self.input,)
