"""Value objects for the query engine domain.

Value objects are immutable types that represent domain concepts.
They have no identity - two value objects with the same attributes are equal.

Exports:
    Identifiers:
        - RowId: Type-safe row identifier, never reused within a table
        - FIRST_ROW_ID: First id handed out by a table

    SQL Types:
        - SqlType: Tags of the value union (NULL, INTEGER, FLOAT, ...)
        - NullOrdering: Where NULL sorts in ORDER BY
        - Truth: Three-valued logic (TRUE, FALSE, UNKNOWN)

    ASTs:
        - Expression and its node kinds (Literal, ColumnRef, BinaryOp, ...)
        - Statement and its kinds (SelectStatement, InsertStatement, ...)

    Cancellation:
        - CancellationToken: Cooperative stop signal for running pipelines
"""

from rel_engine.domain.value_objects.cancellation import CancellationToken
from rel_engine.domain.value_objects.expressions import (
    Aggregate,
    AggregateFunc,
    Between,
    BinaryOp,
    BinaryOperator,
    Cast,
    ColumnRef,
    Exists,
    Expression,
    FunctionCall,
    InList,
    InSubquery,
    Like,
    Literal,
    ScalarSubquery,
    Star,
    UnaryOp,
    UnaryOperator,
)
from rel_engine.domain.value_objects.identifiers import FIRST_ROW_ID, RowId
from rel_engine.domain.value_objects.pattern import matches_pattern
from rel_engine.domain.value_objects.sql_types import NullOrdering, SqlType
from rel_engine.domain.value_objects.statements import (
    ColumnDefinition,
    CreateIndexStatement,
    CreateTableStatement,
    DeleteStatement,
    DropIndexStatement,
    DropTableStatement,
    FromItem,
    InsertStatement,
    Join,
    JoinKind,
    OrderItem,
    SelectItem,
    SelectStatement,
    Statement,
    StatementType,
    SubqueryRef,
    TableRef,
    TruncateStatement,
    UpdateStatement,
)
from rel_engine.domain.value_objects.truth import Truth

__all__ = [
    # Identifiers
    "RowId",
    "FIRST_ROW_ID",
    # SQL types
    "SqlType",
    "NullOrdering",
    "Truth",
    "matches_pattern",
    # Expressions
    "Expression",
    "Literal",
    "ColumnRef",
    "Star",
    "BinaryOp",
    "BinaryOperator",
    "UnaryOp",
    "UnaryOperator",
    "FunctionCall",
    "Cast",
    "Like",
    "InList",
    "InSubquery",
    "Between",
    "Exists",
    "ScalarSubquery",
    "Aggregate",
    "AggregateFunc",
    # Statements
    "Statement",
    "StatementType",
    "FromItem",
    "TableRef",
    "SubqueryRef",
    "Join",
    "JoinKind",
    "SelectItem",
    "OrderItem",
    "SelectStatement",
    "InsertStatement",
    "UpdateStatement",
    "DeleteStatement",
    "ColumnDefinition",
    "CreateTableStatement",
    "DropTableStatement",
    "TruncateStatement",
    "CreateIndexStatement",
    "DropIndexStatement",
    # Cancellation
    "CancellationToken",
]
