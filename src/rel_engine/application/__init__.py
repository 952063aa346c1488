"""Application layer for the query engine.

The application layer orchestrates domain logic to fulfill use cases:
planning SELECTs into operator pipelines and running DDL/DML commands.

Exports:
    DatabaseEngine:
        - DatabaseEngine: Main entry point taking SQL text
    Executor:
        - QueryExecutor: Executes statement ASTs against a catalog
        - ResultSet: Columns and rows of a query
        - RowsAffected: Result of a non-query statement
        - Row: Name-addressable view of one result row
        - Cursor: Lazily pulls rows from a running query
    Planning:
        - QueryPlanner: Binds and plans SELECT statements
        - PreparedQuery: Immutable plan that can be run repeatedly
        - ExecutionStats: Counters collected while a pipeline runs
"""

from rel_engine.application.command_executor import CommandExecutor, RowsAffected
from rel_engine.application.database_engine import DatabaseEngine
from rel_engine.application.executor import Cursor, QueryExecutor, ResultSet, Row
from rel_engine.application.operators import ExecutionStats, Operator
from rel_engine.application.planner import PreparedQuery, QueryPlanner

__all__ = [
    "DatabaseEngine",
    "QueryExecutor",
    "CommandExecutor",
    "ResultSet",
    "RowsAffected",
    "Row",
    "Cursor",
    "QueryPlanner",
    "PreparedQuery",
    "ExecutionStats",
    "Operator",
]
