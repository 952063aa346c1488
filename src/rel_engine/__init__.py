"""
Rel Engine - In-Memory Relational Query Engine

A single-process relational engine: typed tables with key constraints and
hash indexes, SQL three-valued logic, and a Volcano-style pipeline for
filters, joins, grouping, sorting and subqueries.
"""

__version__ = "0.1.0"
__author__ = "Systems Engineering Portfolio"

from rel_engine.application import DatabaseEngine, QueryExecutor, ResultSet, RowsAffected
from rel_engine.domain.errors import (
    ConstraintViolationError,
    EngineError,
    QueryCancelledError,
    SchemaError,
    SQLArithmeticError,
    SubqueryCardinalityError,
    TypeMismatchError,
    UnresolvedReferenceError,
)

__all__ = [
    "__version__",
    "DatabaseEngine",
    "QueryExecutor",
    "ResultSet",
    "RowsAffected",
    "EngineError",
    "TypeMismatchError",
    "ConstraintViolationError",
    "UnresolvedReferenceError",
    "SQLArithmeticError",
    "SchemaError",
    "SubqueryCardinalityError",
    "QueryCancelledError",
]
