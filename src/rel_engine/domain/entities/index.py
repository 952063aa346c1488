"""Hash index over one or more table columns.

An index maps a key tuple to the slots of the rows holding that key in the
owning table's row log. It is derived data: it can always be rebuilt from
the table contents and is never the source of truth.

Versioning:
    Slots only ever grow. Inserts append to the live index in place, after
    every index accepted the new rows, and a reader passes the row count of
    its snapshot as ``limit`` so later appends stay invisible to it. Any
    other change (update, delete, truncate) builds a fresh index with
    :meth:`HashIndex.rebuilt`.

Rows with a NULL in any key column are not indexed: they can never match an
equality lookup and never conflict under a unique constraint.
"""

from __future__ import annotations

from bisect import bisect_left
from dataclasses import dataclass, field
from typing import Iterable, Sequence

from rel_engine.domain.errors import ConstraintViolationError
from rel_engine.domain.value_objects.sql_types import group_key

Row = tuple


@dataclass(frozen=True)
class HashIndex:
    """Hash index with append-only entries.

    Attributes:
        name: Index name, unique within the catalog.
        table_name: Owning table.
        columns: Indexed column names, in key order.
        positions: Positions of the indexed columns in the table row.
        unique: Whether duplicate keys are rejected.
        implicit: Whether the index backs a PRIMARY KEY or UNIQUE constraint.
        constraint: Constraint kind reported on duplicates.
        entries: Key to ascending row slots.
    """

    name: str
    table_name: str
    columns: tuple[str, ...]
    positions: tuple[int, ...]
    unique: bool = False
    implicit: bool = False
    constraint: str = "UNIQUE"
    entries: dict[tuple, list[int]] = field(default_factory=dict, repr=False, compare=False)

    def key_of(self, row: Row) -> tuple | None:
        """Extract the normalized key of a row, or None if any part is NULL."""
        values = [row[p] for p in self.positions]
        if any(v is None for v in values):
            return None
        return group_key(values)

    def lookup(self, key: Iterable, limit: int | None = None) -> tuple[int, ...]:
        """Slots whose key equals ``key``, ascending.

        Args:
            key: Key values in column order.
            limit: Only slots below this row count are returned.
        """
        values = list(key)
        if any(v is None for v in values):
            return ()
        slots = self.entries.get(group_key(values), ())
        if limit is None:
            return tuple(slots)
        return tuple(slots[: bisect_left(slots, limit)])

    def __len__(self) -> int:
        return sum(len(slots) for slots in list(self.entries.values()))

    def check(self, rows: Sequence[tuple[int, Row]]) -> None:
        """Verify that ``rows`` can be appended without a duplicate key.

        Raises:
            ConstraintViolationError: If a unique key would be duplicated.
        """
        if not self.unique:
            return
        seen: set[tuple] = set()
        for _, row in rows:
            key = self.key_of(row)
            if key is None:
                continue
            if key in seen or key in self.entries:
                raise self._violation(row)
            seen.add(key)

    def append(self, rows: Iterable[tuple[int, Row]]) -> None:
        """Index rows already accepted by :meth:`check`, in slot order."""
        for slot, row in rows:
            key = self.key_of(row)
            if key is not None:
                self.entries.setdefault(key, []).append(slot)

    def add(self, rows: Sequence[tuple[int, Row]]) -> HashIndex:
        """Check and append ``rows``; nothing is indexed on failure."""
        self.check(rows)
        self.append(rows)
        return self

    def rebuilt(self, rows: Iterable[tuple[int, Row]]) -> HashIndex:
        """Return a fresh index over ``rows`` (slot, row pairs).

        Raises:
            ConstraintViolationError: If a unique key is duplicated.
        """
        entries: dict[tuple, list[int]] = {}
        for slot, row in rows:
            key = self.key_of(row)
            if key is None:
                continue
            existing = entries.get(key)
            if existing is None:
                entries[key] = [slot]
            elif self.unique:
                raise self._violation(row)
            else:
                existing.append(slot)
        return HashIndex(
            name=self.name,
            table_name=self.table_name,
            columns=self.columns,
            positions=self.positions,
            unique=self.unique,
            implicit=self.implicit,
            constraint=self.constraint,
            entries=entries,
        )

    def _violation(self, row: Row) -> ConstraintViolationError:
        value = tuple(row[p] for p in self.positions)
        return ConstraintViolationError(
            table=self.table_name,
            column=", ".join(self.columns),
            value=value[0] if len(value) == 1 else value,
            constraint=self.constraint,
        )
