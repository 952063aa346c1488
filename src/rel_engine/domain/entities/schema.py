"""Table schema entities.

A schema is an ordered sequence of column definitions plus at most one
primary key definition. Primary key columns are implicitly NOT NULL and
unique. Column names are unique within a schema, compared
case-insensitively, and keep their declared spelling.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Iterator

from rel_engine.domain.errors import SchemaError, UnresolvedReferenceError
from rel_engine.domain.value_objects.sql_types import SqlType


@dataclass(frozen=True)
class ColumnDef:
    """Definition of a single column.

    Attributes:
        name: Column name as declared.
        sql_type: Value tag every non-null cell must carry.
        nullable: Whether NULL is allowed.
        primary_key: Whether this column alone is the primary key.
        unique: Whether values must be unique (NULLs never conflict).
        default: Value used when INSERT omits the column.
    """

    name: str
    sql_type: SqlType
    nullable: bool = True
    primary_key: bool = False
    unique: bool = False
    default: Any = None

    def __post_init__(self) -> None:
        if self.sql_type is SqlType.NULL:
            raise SchemaError(f"Column '{self.name}' cannot have type NULL")


@dataclass(frozen=True)
class Schema:
    """Ordered column definitions with key metadata.

    Args:
        columns: Column definitions in table order.
        primary_key: Table-level (possibly composite) primary key. Mutually
            exclusive with a column-level ``primary_key`` flag.
        unique_constraints: Additional table-level unique column sets.

    Raises:
        SchemaError: On duplicate names, multiple primary keys or references
            to unknown columns.
    """

    columns: tuple[ColumnDef, ...]
    primary_key: tuple[str, ...] = ()
    unique_constraints: tuple[tuple[str, ...], ...] = ()
    _positions: dict[str, int] = field(default_factory=dict, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if not self.columns:
            raise SchemaError("A table must have at least one column")

        positions: dict[str, int] = {}
        for i, column in enumerate(self.columns):
            key = column.name.casefold()
            if key in positions:
                raise SchemaError(f"Duplicate column name '{column.name}'")
            positions[key] = i
        object.__setattr__(self, "_positions", positions)

        flagged = [c.name for c in self.columns if c.primary_key]
        if len(flagged) > 1:
            raise SchemaError(
                f"Multiple primary keys: {', '.join(flagged)} "
                "(use a table-level PRIMARY KEY (...) for composite keys)"
            )
        if flagged and self.primary_key:
            raise SchemaError("Multiple primary keys defined")

        key_names = tuple(flagged) or self.primary_key
        self._check_column_set(key_names, "PRIMARY KEY")
        for names in self.unique_constraints:
            self._check_column_set(names, "UNIQUE")

        # Normalize: key columns are NOT NULL and the key is stored table-level
        key_positions = [self._positions[n.casefold()] for n in key_names]
        columns = tuple(
            replace(c, nullable=False, primary_key=False) if i in key_positions else c
            for i, c in enumerate(self.columns)
        )
        object.__setattr__(self, "columns", columns)
        object.__setattr__(
            self, "primary_key", tuple(columns[p].name for p in key_positions)
        )

    def _check_column_set(self, names: tuple[str, ...], constraint: str) -> None:
        seen: set[str] = set()
        for name in names:
            key = name.casefold()
            if key not in self._positions:
                raise SchemaError(f"{constraint} references unknown column '{name}'")
            if key in seen:
                raise SchemaError(f"{constraint} lists column '{name}' twice")
            seen.add(key)

    def __len__(self) -> int:
        return len(self.columns)

    def __iter__(self) -> Iterator[ColumnDef]:
        return iter(self.columns)

    @property
    def names(self) -> list[str]:
        return [c.name for c in self.columns]

    def has_column(self, name: str) -> bool:
        return name.casefold() in self._positions

    def index_of(self, name: str) -> int:
        """Position of a column.

        Raises:
            UnresolvedReferenceError: If the column does not exist.
        """
        try:
            return self._positions[name.casefold()]
        except KeyError as e:
            raise UnresolvedReferenceError(f"Unknown column '{name}'", name=name) from e

    def column(self, name: str) -> ColumnDef:
        return self.columns[self.index_of(name)]

    def is_primary_key(self, name: str) -> bool:
        return name.casefold() in {n.casefold() for n in self.primary_key}

    @property
    def primary_key_positions(self) -> tuple[int, ...]:
        return tuple(self.index_of(n) for n in self.primary_key)

    def unique_column_sets(self) -> list[tuple[str, ...]]:
        """Column sets that must hold unique values, excluding the primary key."""
        sets = [(c.name,) for c in self.columns if c.unique]
        sets.extend(self.unique_constraints)
        return sets
