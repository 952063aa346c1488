"""In-memory storage table.

A table owns a schema and an insertion-ordered set of rows keyed by
:class:`RowId`. Every mutating call enforces the schema and key invariants:

    - row length equals the schema width
    - each non-null cell carries its column's type
    - NULL only in nullable columns
    - primary key and unique column sets hold no duplicates

Atomicity & visibility:
    Rows live in an append-only log shared by successive snapshots; a
    snapshot sees the first ``size`` slots. An insert validates its rows
    against every index first, then appends to the log and the indexes and
    publishes a snapshot with a larger size, so appends cost O(rows added).
    Updates, deletes and truncation build a new log and fresh indexes and
    validate them before publishing. Publication is a single attribute
    assignment and a violation leaves the previous snapshot in place.
    Readers grab the current snapshot once per call, so a scan never
    observes a partially applied mutation.

Thread Safety:
    One writer at a time (enforced with a lock); any number of concurrent
    readers.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from itertools import islice
from typing import Callable, Iterable, Iterator, Sequence

from rel_engine.domain.entities.index import HashIndex
from rel_engine.domain.entities.schema import Schema
from rel_engine.domain.errors import (
    ConstraintViolationError,
    SchemaError,
    TypeMismatchError,
    UnresolvedReferenceError,
)
from rel_engine.domain.value_objects.identifiers import FIRST_ROW_ID, RowId
from rel_engine.domain.value_objects.sql_types import coerce_for_column

Row = tuple

RowPredicate = Callable[[Row], bool]
RowMutation = Callable[[Row], Sequence]


@dataclass(eq=False)
class _RowLog:
    """Append-only row storage. Only the writer appends, under the table lock."""

    ids: list[RowId] = field(default_factory=list)
    rows: list[Row] = field(default_factory=list)


@dataclass(frozen=True)
class _TableState:
    """Published snapshot of a table: the first ``size`` slots of ``log``."""

    log: _RowLog = field(default_factory=_RowLog)
    size: int = 0
    indexes: dict[str, HashIndex] = field(default_factory=dict)

    def rows(self) -> Iterator[Row]:
        return islice(self.log.rows, self.size)

    def slots(self) -> Iterator[tuple[int, Row]]:
        return enumerate(self.rows())

    def ids(self) -> Iterator[RowId]:
        return islice(self.log.ids, self.size)


class Table:
    """In-memory row store bound to a schema.

    Example:
        >>> schema = Schema((ColumnDef("id", SqlType.INTEGER, primary_key=True),))
        >>> table = Table("users", schema)
        >>> table.insert((1,))
        1
        >>> list(table.scan())
        [(1,)]
    """

    def __init__(self, name: str, schema: Schema) -> None:
        self._name = name
        self._schema = schema
        self._lock = threading.Lock()
        self._next_row_id = FIRST_ROW_ID
        self._dropped = False

        indexes: dict[str, HashIndex] = {}
        if schema.primary_key:
            pkey = self._make_index(
                f"{name}_pkey", schema.primary_key, unique=True, implicit=True,
                constraint="PRIMARY KEY",
            )
            indexes[pkey.name.casefold()] = pkey
        for columns in schema.unique_column_sets():
            ukey = self._make_index(
                f"{name}_{'_'.join(columns)}_key", columns, unique=True, implicit=True,
            )
            indexes[ukey.name.casefold()] = ukey
        self._state = _TableState(indexes=indexes)

    @property
    def name(self) -> str:
        return self._name

    @property
    def schema(self) -> Schema:
        return self._schema

    @property
    def dropped(self) -> bool:
        return self._dropped

    def __len__(self) -> int:
        return self._state.size

    @property
    def row_count(self) -> int:
        return self._state.size

    @property
    def indexes(self) -> list[HashIndex]:
        return list(self._state.indexes.values())

    def __repr__(self) -> str:
        return f"Table({self._name!r}, columns={self._schema.names}, rows={len(self)})"

    # Reads

    def scan(self) -> Iterator[Row]:
        """Iterate all rows in insertion order.

        Each call starts a fresh traversal over the state current at call time.
        """
        self._check_live()
        return self._state.rows()

    def get_index(self, name: str) -> HashIndex:
        try:
            return self._state.indexes[name.casefold()]
        except KeyError as e:
            raise UnresolvedReferenceError(
                f"Index '{name}' does not exist on table '{self._name}'", name=name
            ) from e

    def find_index(self, columns: Sequence[str]) -> HashIndex | None:
        """Find an index whose key is exactly ``columns`` (in order)."""
        wanted = tuple(c.casefold() for c in columns)
        for index in self._state.indexes.values():
            if tuple(c.casefold() for c in index.columns) == wanted:
                return index
        return None

    def lookup(self, index_name: str, key: Sequence) -> Iterator[Row]:
        """Rows whose indexed key equals ``key``, in insertion order."""
        self._check_live()
        state = self._state
        index = state.indexes.get(index_name.casefold())
        if index is None:
            raise UnresolvedReferenceError(
                f"Index '{index_name}' does not exist on table '{self._name}'",
                name=index_name,
            )
        rows = state.log.rows
        return (rows[slot] for slot in index.lookup(key, state.size))

    # Mutations

    def insert(self, values: Sequence) -> RowId:
        """Insert one row.

        Returns:
            The id of the new row.

        Raises:
            ConstraintViolationError: On NOT NULL / key violations.
            TypeMismatchError: If the row does not fit the schema.
        """
        return self.insert_many([values])[0]

    def insert_many(self, rows: Iterable[Sequence]) -> list[RowId]:
        """Insert several rows atomically: either all are stored or none."""
        with self._lock:
            self._check_live()
            state = self._state
            conformed = [self._conform(values) for values in rows]
            added = list(enumerate(conformed, start=state.size))
            for index in state.indexes.values():
                index.check(added)

            new_ids = [RowId(self._next_row_id + i) for i in range(len(conformed))]
            state.log.ids.extend(new_ids)
            state.log.rows.extend(conformed)
            for index in state.indexes.values():
                index.append(added)
            self._state = _TableState(state.log, state.size + len(conformed), state.indexes)
            self._next_row_id = RowId(self._next_row_id + len(conformed))
            return new_ids

    def update(self, predicate: RowPredicate, mutation: RowMutation) -> int:
        """Replace every row matching ``predicate`` with ``mutation(row)``.

        All replacement rows are computed and validated before anything is
        published, so a failure in the predicate, the mutation or a
        constraint leaves the table unchanged.

        Returns:
            Number of rows updated.
        """
        with self._lock:
            self._check_live()
            state = self._state
            new_rows = list(state.rows())
            count = 0
            for slot, row in enumerate(new_rows):
                if predicate(row):
                    new_rows[slot] = self._conform(mutation(row))
                    count += 1
            if count == 0:
                return 0
            self._publish(_RowLog(list(state.ids()), new_rows), state.indexes)
            return count

    def delete(self, predicate: RowPredicate) -> int:
        """Remove every row matching ``predicate``.

        Returns:
            Number of rows deleted.
        """
        with self._lock:
            self._check_live()
            state = self._state
            log = _RowLog()
            for row_id, row in zip(state.ids(), state.rows()):
                if not predicate(row):
                    log.ids.append(row_id)
                    log.rows.append(row)
            count = state.size - len(log.rows)
            if count == 0:
                return 0
            self._publish(log, state.indexes)
            return count

    def truncate(self) -> int:
        """Remove all rows, keeping schema and index definitions.

        Returns:
            Number of rows removed.
        """
        with self._lock:
            self._check_live()
            state = self._state
            self._publish(_RowLog(), state.indexes)
            return state.size

    def drop(self) -> None:
        """Release all rows and mark the table unusable."""
        with self._lock:
            self._state = _TableState()
            self._dropped = True

    def create_index(
        self, name: str, columns: Sequence[str], unique: bool = False
    ) -> HashIndex:
        """Build a new index over the current rows.

        Raises:
            SchemaError: If an index with that name already exists.
            UnresolvedReferenceError: If a column does not exist.
            ConstraintViolationError: If ``unique`` and the data has duplicates.
        """
        with self._lock:
            self._check_live()
            state = self._state
            if name.casefold() in state.indexes:
                raise SchemaError(f"Index '{name}' already exists")
            index = self._make_index(name, tuple(columns), unique=unique).rebuilt(
                state.slots()
            )
            indexes = dict(state.indexes)
            indexes[name.casefold()] = index
            self._state = _TableState(state.log, state.size, indexes)
            return index

    def drop_index(self, name: str) -> None:
        """Remove an explicit index.

        Raises:
            UnresolvedReferenceError: If no such index exists.
            SchemaError: If the index backs a key constraint.
        """
        with self._lock:
            state = self._state
            index = state.indexes.get(name.casefold())
            if index is None:
                raise UnresolvedReferenceError(f"Index '{name}' does not exist", name=name)
            if index.implicit:
                raise SchemaError(
                    f"Index '{name}' backs a {index.constraint} constraint and cannot be dropped"
                )
            indexes = {k: v for k, v in state.indexes.items() if k != name.casefold()}
            self._state = _TableState(state.log, state.size, indexes)

    def verify_integrity(self) -> None:
        """Re-check every stored row and key against the schema.

        Raises:
            ConstraintViolationError / TypeMismatchError: On the first violation.
        """
        state = self._state
        for row in state.rows():
            if self._conform(row) != row:
                raise TypeMismatchError(f"Row {row!r} is not in canonical form")
        for index in state.indexes.values():
            index.rebuilt(state.slots())

    # Internals

    def _publish(self, log: _RowLog, indexes: dict[str, HashIndex]) -> None:
        """Index a new log from scratch and publish it; raises before publishing."""
        rows = list(enumerate(log.rows))
        rebuilt = {key: index.rebuilt(rows) for key, index in indexes.items()}
        self._state = _TableState(log, len(log.rows), rebuilt)

    def _make_index(
        self,
        name: str,
        columns: tuple[str, ...],
        unique: bool,
        implicit: bool = False,
        constraint: str = "UNIQUE",
    ) -> HashIndex:
        positions = tuple(self._schema.index_of(c) for c in columns)
        return HashIndex(
            name=name,
            table_name=self._name,
            columns=tuple(self._schema.columns[p].name for p in positions),
            positions=positions,
            unique=unique,
            implicit=implicit,
            constraint=constraint,
        )

    def _conform(self, values: Sequence) -> Row:
        """Validate and coerce a row against the schema."""
        if len(values) != len(self._schema):
            raise TypeMismatchError(
                f"Table '{self._name}' expects {len(self._schema)} values, got {len(values)}"
            )
        row = []
        for column, value in zip(self._schema.columns, values):
            if value is None:
                if not column.nullable:
                    raise ConstraintViolationError(
                        table=self._name,
                        column=column.name,
                        value=None,
                        constraint="NOT NULL",
                    )
                row.append(None)
                continue
            row.append(coerce_for_column(value, column.sql_type, column.name))
        return tuple(row)

    def _check_live(self) -> None:
        if self._dropped:
            raise UnresolvedReferenceError(
                f"Table '{self._name}' has been dropped", name=self._name
            )
