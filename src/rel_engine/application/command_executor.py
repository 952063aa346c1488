"""DDL and DML execution.

Each statement runs as one atomic call against the storage layer: INSERT
evaluates every row before handing the whole batch to the table, and
UPDATE/DELETE pass their WHERE predicate and mutation to the table, which
validates the complete new state before publishing it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from rel_engine.application.planner import QueryPlanner
from rel_engine.domain.entities.schema import ColumnDef, Schema
from rel_engine.domain.entities.table import Table
from rel_engine.domain.errors import SchemaError, TypeMismatchError
from rel_engine.domain.services.catalog import Catalog
from rel_engine.domain.services.evaluator import (
    ColumnSlot,
    EvalContext,
    ExpressionEvaluator,
    Scope,
)
from rel_engine.domain.value_objects.cancellation import CancellationToken
from rel_engine.domain.value_objects.expressions import Expression
from rel_engine.domain.value_objects.sql_types import SqlType, coerce_for_column
from rel_engine.domain.value_objects.statements import (
    CreateIndexStatement,
    CreateTableStatement,
    DeleteStatement,
    DropIndexStatement,
    DropTableStatement,
    InsertStatement,
    TruncateStatement,
    UpdateStatement,
)

_EMPTY_SCOPE = Scope(())


@dataclass
class RowsAffected:
    """Result of a non-query statement.

    Attributes:
        count: Number of rows inserted, updated or deleted (0 for DDL).
        message: Status message, e.g. ``"OK: 3 row(s) inserted"``.
    """

    count: int = 0
    message: str = ""


class CommandExecutor:
    """Executes CREATE/DROP/TRUNCATE/INSERT/UPDATE/DELETE and index DDL."""

    def __init__(
        self, catalog: Catalog, planner: QueryPlanner, evaluator: ExpressionEvaluator
    ) -> None:
        self._catalog = catalog
        self._planner = planner
        self._evaluator = evaluator

    # DDL

    def create_table(self, stmt: CreateTableStatement) -> RowsAffected:
        """Validate the definition and create the table.

        Raises:
            SchemaError: On a malformed definition or an existing table.
        """
        columns = tuple(
            ColumnDef(
                name=c.name,
                sql_type=c.sql_type,
                nullable=c.nullable,
                primary_key=c.primary_key,
                unique=c.unique,
                default=self._default_value(c.name, c.sql_type, c.default),
            )
            for c in stmt.columns
        )
        schema = Schema(columns, stmt.primary_key, stmt.unique_constraints)
        table = self._catalog.create_table(stmt.table_name, schema, stmt.if_not_exists)
        if table is None:
            return RowsAffected(message=f"OK: Table '{stmt.table_name}' already exists")
        return RowsAffected(message=f"OK: Table '{stmt.table_name}' created")

    def _default_value(
        self, column: str, sql_type: SqlType, default: Expression | None
    ) -> Any:
        if default is None:
            return None
        bound = self._planner.bind(default, _EMPTY_SCOPE, clause="DEFAULT")
        try:
            value = self._evaluator.evaluate(bound, EvalContext(()))
            return coerce_for_column(value, sql_type, column)
        except TypeMismatchError as e:
            raise SchemaError(f"Invalid DEFAULT for column '{column}': {e}") from e

    def drop_table(self, stmt: DropTableStatement) -> RowsAffected:
        if self._catalog.drop_table(stmt.table_name, stmt.if_exists):
            return RowsAffected(message=f"OK: Table '{stmt.table_name}' dropped")
        return RowsAffected(message=f"OK: Table '{stmt.table_name}' does not exist")

    def truncate(self, stmt: TruncateStatement) -> RowsAffected:
        count = self._catalog.get_table(stmt.table_name).truncate()
        return RowsAffected(count=count, message=f"OK: {count} row(s) truncated")

    def create_index(self, stmt: CreateIndexStatement) -> RowsAffected:
        index = self._catalog.create_index(
            stmt.index_name, stmt.table_name, stmt.columns, stmt.unique, stmt.if_not_exists
        )
        if index is None:
            return RowsAffected(message=f"OK: Index '{stmt.index_name}' already exists")
        return RowsAffected(message=f"OK: Index '{stmt.index_name}' created")

    def drop_index(self, stmt: DropIndexStatement) -> RowsAffected:
        if self._catalog.drop_index(stmt.index_name, stmt.if_exists):
            return RowsAffected(message=f"OK: Index '{stmt.index_name}' dropped")
        return RowsAffected(message=f"OK: Index '{stmt.index_name}' does not exist")

    # DML

    def insert(
        self, stmt: InsertStatement, cancellation: CancellationToken | None = None
    ) -> RowsAffected:
        """Insert literal rows or the result of a query, all or nothing.

        Raises:
            TypeMismatchError: If a row has the wrong number of values or types.
            ConstraintViolationError: On NOT NULL or key violations.
        """
        table = self._catalog.get_table(stmt.table_name)
        schema = table.schema
        positions = self._target_positions(table, stmt.columns)

        if stmt.query is not None:
            query = self._planner.plan_select(stmt.query)
            if query.width != len(positions):
                raise TypeMismatchError(
                    f"INSERT has {len(positions)} target columns but the query "
                    f"returns {query.width}"
                )
            # Materialize first: the query may read the target table
            supplied = list(query.execute(cancellation))
        else:
            supplied = []
            ctx = EvalContext((), None, cancellation)
            for values in stmt.rows:
                if len(values) != len(positions):
                    raise TypeMismatchError(
                        f"INSERT has {len(positions)} target columns but "
                        f"{len(values)} values"
                    )
                bound = [self._planner.bind(v, _EMPTY_SCOPE, clause="VALUES") for v in values]
                supplied.append(tuple(self._evaluator.evaluate(b, ctx) for b in bound))

        defaults = [c.default for c in schema.columns]
        rows = []
        for values in supplied:
            row = list(defaults)
            for position, value in zip(positions, values):
                row[position] = value
            rows.append(tuple(row))

        table.insert_many(rows)
        return RowsAffected(count=len(rows), message=f"OK: {len(rows)} row(s) inserted")

    def update(
        self, stmt: UpdateStatement, cancellation: CancellationToken | None = None
    ) -> RowsAffected:
        """Apply SET assignments to rows matching WHERE.

        Assignments see the row as it was before the update.
        """
        table = self._catalog.get_table(stmt.table_name)
        scope = self._table_scope(table)
        targets = self._target_positions(table, tuple(name for name, _ in stmt.assignments))
        values = [
            self._planner.bind(expr, scope, clause="SET") for _, expr in stmt.assignments
        ]
        predicate = self._predicate(stmt.where, scope, cancellation)

        def mutation(row: tuple) -> tuple:
            ctx = EvalContext(row, None, cancellation)
            new_row = list(row)
            for position, expr in zip(targets, values):
                new_row[position] = self._evaluator.evaluate(expr, ctx)
            return tuple(new_row)

        count = table.update(predicate, mutation)
        return RowsAffected(count=count, message=f"OK: {count} row(s) updated")

    def delete(
        self, stmt: DeleteStatement, cancellation: CancellationToken | None = None
    ) -> RowsAffected:
        table = self._catalog.get_table(stmt.table_name)
        predicate = self._predicate(stmt.where, self._table_scope(table), cancellation)
        count = table.delete(predicate)
        return RowsAffected(count=count, message=f"OK: {count} row(s) deleted")

    # Helpers

    @staticmethod
    def _table_scope(table: Table) -> Scope:
        return Scope(
            tuple(ColumnSlot(c.name, table.name, c.sql_type) for c in table.schema.columns)
        )

    def _predicate(
        self,
        where: Expression | None,
        scope: Scope,
        cancellation: CancellationToken | None,
    ):
        if where is None:
            return lambda row: True
        bound = self._planner.bind(where, scope, clause="WHERE")

        def predicate(row: tuple) -> bool:
            if cancellation is not None:
                cancellation.check()
            return self._evaluator.evaluate_truth(
                bound, EvalContext(row, None, cancellation)
            ).is_true

        return predicate

    @staticmethod
    def _target_positions(table: Table, columns: tuple[str, ...]) -> list[int]:
        """Positions of the named columns; all columns when none are named."""
        if not columns:
            return list(range(len(table.schema)))
        positions = []
        for name in columns:
            position = table.schema.index_of(name)
            if position in positions:
                raise SchemaError(f"Column '{name}' specified more than once")
            positions.append(position)
        return positions
