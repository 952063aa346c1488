"""Query executor: the single entry point of the engine core.

:meth:`QueryExecutor.execute` takes a parsed statement and returns either a
:class:`ResultSet` (SELECT) or a :class:`RowsAffected` (everything else).
All failures are raised as :class:`~rel_engine.domain.errors.EngineError`
subclasses from the call that detected them.

Usage:
    from rel_engine.application import QueryExecutor

    executor = QueryExecutor()
    executor.execute(CreateTableStatement(...))
    result = executor.execute(SelectStatement(...))
    for row in result.records:
        print(row["name"])
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterator

from rel_engine.application.command_executor import CommandExecutor, RowsAffected
from rel_engine.application.operators import ExecutionStats
from rel_engine.application.planner import PreparedQuery, QueryPlanner
from rel_engine.domain.entities.schema import Schema
from rel_engine.domain.services.catalog import Catalog
from rel_engine.domain.services.evaluator import ExpressionEvaluator
from rel_engine.domain.value_objects.cancellation import CancellationToken
from rel_engine.domain.value_objects.sql_types import NullOrdering
from rel_engine.domain.value_objects.statements import (
    CreateIndexStatement,
    CreateTableStatement,
    DeleteStatement,
    DropIndexStatement,
    DropTableStatement,
    InsertStatement,
    SelectStatement,
    Statement,
    TruncateStatement,
    UpdateStatement,
)


@dataclass
class Row:
    """A row of data returned by the executor.

    Rows are named tuples that can be accessed by column name or index.
    Name lookup is case-insensitive and returns the first matching column.
    """

    columns: list[str]
    values: tuple

    def __getitem__(self, key: str | int) -> Any:
        if isinstance(key, int):
            return self.values[key]
        wanted = key.casefold()
        for column, value in zip(self.columns, self.values):
            if column.casefold() == wanted:
                return value
        raise KeyError(f"Column '{key}' not found")

    def get(self, key: str, default: Any = None) -> Any:
        try:
            return self[key]
        except KeyError:
            return default

    def as_dict(self) -> dict[str, Any]:
        return dict(zip(self.columns, self.values))

    def __repr__(self) -> str:
        pairs = ", ".join(f"{c}={v!r}" for c, v in zip(self.columns, self.values))
        return f"Row({pairs})"


@dataclass
class ResultSet:
    """Output of a query: column names plus rows as tuples."""

    columns: list[str] = field(default_factory=list)
    rows: list[tuple] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.rows)

    def __iter__(self) -> Iterator[tuple]:
        return iter(self.rows)

    @property
    def records(self) -> list[Row]:
        return [Row(self.columns, values) for values in self.rows]

    def scalar(self) -> Any:
        """The first column of the first row, or None for an empty result."""
        if not self.rows:
            return None
        return self.rows[0][0]


class Cursor:
    """Lazily pulls rows from a running query.

    The pipeline stays open until the cursor is exhausted or closed. Closing
    early releases every operator (and its scan snapshot).

    Example:
        >>> with executor.stream(select) as cursor:
        ...     first = cursor.fetchone()
    """

    def __init__(
        self,
        query: PreparedQuery,
        cancellation: CancellationToken | None = None,
        stats: ExecutionStats | None = None,
    ) -> None:
        self._cancellation = cancellation or CancellationToken()
        self._stats = stats or ExecutionStats()
        self._columns = list(query.columns)
        self._rows = query.execute(self._cancellation, self._stats)
        self._closed = False

    @property
    def columns(self) -> list[str]:
        return self._columns

    @property
    def stats(self) -> ExecutionStats:
        return self._stats

    def __iter__(self) -> Iterator[tuple]:
        return self

    def __next__(self) -> tuple:
        if self._closed:
            raise StopIteration
        return next(self._rows)

    def fetchone(self) -> tuple | None:
        return next(self, None)

    def fetchmany(self, size: int) -> list[tuple]:
        rows = []
        for row in self:
            rows.append(row)
            if len(rows) >= size:
                break
        return rows

    def fetchall(self) -> list[tuple]:
        return list(self)

    def cancel(self) -> None:
        """Request cancellation; the next fetch raises QueryCancelledError."""
        self._cancellation.cancel()

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._rows.close()

    def __enter__(self) -> Cursor:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


class QueryExecutor:
    """Executes statement ASTs against an in-memory catalog.

    Args:
        catalog: Tables to operate on. A new empty catalog if None.
        null_ordering: Where NULL sorts in ORDER BY.
        like_case_sensitive: Default case sensitivity of LIKE.
        hash_join_enabled: Allow hash joins for eligible equality joins.
        index_pushdown_enabled: Allow index scans for ``column = literal``.
    """

    def __init__(
        self,
        catalog: Catalog | None = None,
        null_ordering: NullOrdering = NullOrdering.NULLS_LOW,
        like_case_sensitive: bool = False,
        hash_join_enabled: bool = True,
        index_pushdown_enabled: bool = True,
    ) -> None:
        self._catalog = catalog if catalog is not None else Catalog()
        self._evaluator = ExpressionEvaluator(like_case_sensitive=like_case_sensitive)
        self._planner = QueryPlanner(
            self._catalog,
            self._evaluator,
            null_ordering=null_ordering,
            hash_join_enabled=hash_join_enabled,
            index_pushdown_enabled=index_pushdown_enabled,
        )
        self._commands = CommandExecutor(self._catalog, self._planner, self._evaluator)
        self._last_stats = ExecutionStats()

    @property
    def catalog(self) -> Catalog:
        return self._catalog

    @property
    def last_stats(self) -> ExecutionStats:
        """Counters of the most recent SELECT run through :meth:`execute`."""
        return self._last_stats

    def execute(
        self,
        statement: Statement,
        cancellation: CancellationToken | None = None,
        stats: ExecutionStats | None = None,
    ) -> ResultSet | RowsAffected:
        """Execute a statement.

        Args:
            statement: Parsed statement.
            cancellation: Optional token checked between row productions.
            stats: Optional counters filled in while a SELECT runs.

        Returns:
            ResultSet for SELECT, RowsAffected for everything else.

        Raises:
            EngineError: Any engine failure. Mutations leave tables unchanged
                when they fail.
        """
        if isinstance(statement, SelectStatement):
            return self._execute_query(statement, cancellation, stats)
        elif isinstance(statement, InsertStatement):
            return self._commands.insert(statement, cancellation)
        elif isinstance(statement, UpdateStatement):
            return self._commands.update(statement, cancellation)
        elif isinstance(statement, DeleteStatement):
            return self._commands.delete(statement, cancellation)
        elif isinstance(statement, CreateTableStatement):
            return self._commands.create_table(statement)
        elif isinstance(statement, DropTableStatement):
            return self._commands.drop_table(statement)
        elif isinstance(statement, TruncateStatement):
            return self._commands.truncate(statement)
        elif isinstance(statement, CreateIndexStatement):
            return self._commands.create_index(statement)
        elif isinstance(statement, DropIndexStatement):
            return self._commands.drop_index(statement)
        raise TypeError(f"Unsupported statement type: {type(statement).__name__}")

    def stream(
        self,
        statement: SelectStatement,
        cancellation: CancellationToken | None = None,
        stats: ExecutionStats | None = None,
    ) -> Cursor:
        """Plan a SELECT and return a cursor that produces rows on demand."""
        return Cursor(self._planner.plan_select(statement), cancellation, stats)

    def explain(self, statement: SelectStatement) -> str:
        """Render the plan of a SELECT as indented text."""
        return self._planner.plan_select(statement).explain()

    def describe(self, table_name: str) -> Schema:
        """Schema of a table.

        Raises:
            UnresolvedReferenceError: If the table does not exist.
        """
        return self._catalog.describe(table_name)

    def _execute_query(
        self,
        statement: SelectStatement,
        cancellation: CancellationToken | None,
        stats: ExecutionStats | None,
    ) -> ResultSet:
        query = self._planner.plan_select(statement)
        stats = stats or ExecutionStats()
        rows = list(query.execute(cancellation, stats))
        self._last_stats = stats
        return ResultSet(columns=list(query.columns), rows=rows)
