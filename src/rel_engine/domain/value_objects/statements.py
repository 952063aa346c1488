"""Statement AST.

These are the statement shapes the core executes. Any parser producing them
can drive the engine; the bundled SQL parser is one such producer.
"""

from __future__ import annotations

from abc import ABC
from dataclasses import dataclass
from enum import Enum

from rel_engine.domain.value_objects.expressions import Expression
from rel_engine.domain.value_objects.sql_types import SqlType


class StatementType(Enum):
    """Types of SQL statements."""

    SELECT = "select"
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"
    CREATE_TABLE = "create_table"
    DROP_TABLE = "drop_table"
    TRUNCATE = "truncate"
    CREATE_INDEX = "create_index"
    DROP_INDEX = "drop_index"


class JoinKind(Enum):
    INNER = "INNER"
    LEFT = "LEFT"
    RIGHT = "RIGHT"
    FULL = "FULL"
    CROSS = "CROSS"


@dataclass(frozen=True)
class Statement(ABC):
    """Base class for statements."""

    @property
    def statement_type(self) -> StatementType:
        return _STATEMENT_TYPES[type(self)]


# FROM clause items


@dataclass(frozen=True)
class FromItem(ABC):
    """Base class for FROM clause items."""

    pass


@dataclass(frozen=True)
class TableRef(FromItem):
    name: str
    alias: str | None = None

    @property
    def binding_name(self) -> str:
        return self.alias or self.name


@dataclass(frozen=True)
class SubqueryRef(FromItem):
    """Derived table: ``(SELECT ...) AS alias``."""

    query: SelectStatement
    alias: str


@dataclass(frozen=True)
class Join(FromItem):
    """Binary join. ``using`` lists shared column names for ``USING (...)``."""

    left: FromItem
    right: FromItem
    kind: JoinKind = JoinKind.INNER
    condition: Expression | None = None
    using: tuple[str, ...] = ()


# SELECT


@dataclass(frozen=True)
class SelectItem:
    expr: Expression
    alias: str | None = None


@dataclass(frozen=True)
class OrderItem:
    expr: Expression
    ascending: bool = True


@dataclass(frozen=True)
class SelectStatement(Statement):
    items: tuple[SelectItem, ...]
    from_item: FromItem | None = None
    where: Expression | None = None
    group_by: tuple[Expression, ...] = ()
    having: Expression | None = None
    order_by: tuple[OrderItem, ...] = ()
    limit: int | None = None
    offset: int = 0
    distinct: bool = False


# DML


@dataclass(frozen=True)
class InsertStatement(Statement):
    """INSERT with either literal ``rows`` or a ``query``."""

    table_name: str
    columns: tuple[str, ...] = ()
    rows: tuple[tuple[Expression, ...], ...] = ()
    query: SelectStatement | None = None


@dataclass(frozen=True)
class UpdateStatement(Statement):
    table_name: str
    assignments: tuple[tuple[str, Expression], ...]
    where: Expression | None = None


@dataclass(frozen=True)
class DeleteStatement(Statement):
    table_name: str
    where: Expression | None = None


# DDL


@dataclass(frozen=True)
class ColumnDefinition:
    """Column as written in CREATE TABLE."""

    name: str
    sql_type: SqlType
    nullable: bool = True
    primary_key: bool = False
    unique: bool = False
    default: Expression | None = None


@dataclass(frozen=True)
class CreateTableStatement(Statement):
    table_name: str
    columns: tuple[ColumnDefinition, ...]
    primary_key: tuple[str, ...] = ()
    unique_constraints: tuple[tuple[str, ...], ...] = ()
    if_not_exists: bool = False


@dataclass(frozen=True)
class DropTableStatement(Statement):
    table_name: str
    if_exists: bool = False


@dataclass(frozen=True)
class TruncateStatement(Statement):
    table_name: str


@dataclass(frozen=True)
class CreateIndexStatement(Statement):
    index_name: str
    table_name: str
    columns: tuple[str, ...]
    unique: bool = False
    if_not_exists: bool = False


@dataclass(frozen=True)
class DropIndexStatement(Statement):
    index_name: str
    if_exists: bool = False


_STATEMENT_TYPES: dict[type, StatementType] = {
    SelectStatement: StatementType.SELECT,
    InsertStatement: StatementType.INSERT,
    UpdateStatement: StatementType.UPDATE,
    DeleteStatement: StatementType.DELETE,
    CreateTableStatement: StatementType.CREATE_TABLE,
    DropTableStatement: StatementType.DROP_TABLE,
    TruncateStatement: StatementType.TRUNCATE,
    CreateIndexStatement: StatementType.CREATE_INDEX,
    DropIndexStatement: StatementType.DROP_INDEX,
}
