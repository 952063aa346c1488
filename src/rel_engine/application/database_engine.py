"""Database Engine - unified entry point for the query engine.

This module provides the DatabaseEngine class that wires the SQL parser,
the catalog and the query executor together and wraps every statement with
logging, tracing and metrics.

Usage:
    from rel_engine.application import DatabaseEngine

    with DatabaseEngine() as db:
        db.execute("CREATE TABLE users (id INTEGER PRIMARY KEY, name TEXT)")
        db.execute("INSERT INTO users VALUES (1, 'Alice')")
        result = db.execute("SELECT * FROM users")
"""

from __future__ import annotations

import threading
import time
from typing import Any

from rel_engine.adapters.inbound.sql_lexer import ParseError
from rel_engine.adapters.inbound.sql_parser import SQLParser
from rel_engine.application.command_executor import RowsAffected
from rel_engine.application.executor import Cursor, QueryExecutor, ResultSet
from rel_engine.application.operators import ExecutionStats
from rel_engine.domain.entities.schema import Schema
from rel_engine.domain.errors import (
    ConstraintViolationError,
    EngineError,
    QueryCancelledError,
)
from rel_engine.domain.services.catalog import Catalog
from rel_engine.domain.value_objects.cancellation import CancellationToken
from rel_engine.domain.value_objects.statements import (
    SelectStatement,
    Statement,
    StatementType,
)
from rel_engine.infrastructure.config import Config, get_config
from rel_engine.infrastructure.logging import get_logger, statement_context
from rel_engine.infrastructure.metrics import MetricsRegistry, get_metrics, setup_metrics
from rel_engine.infrastructure.tracing import record_rows, setup_tracing, statement_span
from rel_engine.ports.inbound.statement_parser import StatementParser

logger = get_logger(__name__)

_DDL = frozenset(
    {
        StatementType.CREATE_TABLE,
        StatementType.DROP_TABLE,
        StatementType.CREATE_INDEX,
        StatementType.DROP_INDEX,
    }
)

StatementResult = ResultSet | RowsAffected


class DatabaseEngine:
    """Main engine that orchestrates parsing, planning and execution.

    Statements run in autocommit mode: each one is atomic on its own and
    there is no multi-statement transaction.

    Thread Safety:
        Multiple threads can share a DatabaseEngine instance. Readers see
        a consistent snapshot of each table; writers to the same table are
        serialized.
    """

    def __init__(
        self,
        config: Config | None = None,
        parser: StatementParser | None = None,
        metrics: MetricsRegistry | None = None,
        catalog: Catalog | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            config: Engine configuration. Uses the global config if None.
            parser: Statement parser. Uses the bundled SQL parser if None.
            metrics: Metrics registry. Uses the global registry if None.
            catalog: Existing catalog to serve. A new empty one if None.
        """
        self._config = config or get_config()
        self._parser: StatementParser = parser or SQLParser()
        self._metrics = metrics
        self._catalog = catalog if catalog is not None else Catalog()
        self._executor: QueryExecutor | None = None

        self._active: set[CancellationToken] = set()
        self._active_lock = threading.Lock()
        self._statements_executed = 0
        self._statements_failed = 0

        self._started = False

    @property
    def config(self) -> Config:
        return self._config

    @property
    def catalog(self) -> Catalog:
        return self._catalog

    @property
    def is_started(self) -> bool:
        """Check if the engine is started."""
        return self._started

    def start(self) -> None:
        """Start the engine.

        Builds the executor from the query configuration and sets up
        metrics and tracing exporters when configured.

        Raises:
            RuntimeError: If already started.
        """
        if self._started:
            raise RuntimeError("Database engine already started")

        observability = self._config.observability
        if self._metrics is None:
            if observability.metrics_enabled:
                self._metrics = setup_metrics(observability.metrics_port)
            else:
                self._metrics = get_metrics()
        if observability.otel_endpoint:
            setup_tracing(observability.otel_service_name, observability.otel_endpoint)

        query = self._config.query
        self._executor = QueryExecutor(
            self._catalog,
            null_ordering=query.null_ordering_mode,
            like_case_sensitive=query.like_case_sensitive,
            hash_join_enabled=query.hash_join_enabled,
            index_pushdown_enabled=query.index_pushdown_enabled,
        )
        self._metrics.tables.set(len(self._catalog))

        self._started = True
        logger.info(
            "engine_started",
            tables=len(self._catalog),
            null_ordering=query.null_ordering,
            hash_join_enabled=query.hash_join_enabled,
        )

    def stop(self) -> None:
        """Stop the engine.

        Statements still running are cancelled. The catalog is kept, so a
        restarted engine serves the same tables.

        Raises:
            RuntimeError: If not started.
        """
        if not self._started:
            raise RuntimeError("Database engine not started")

        cancelled = self.cancel_all("Database engine stopped")
        self._executor = None
        self._started = False
        logger.info("engine_stopped", cancelled=cancelled)

    def execute(
        self,
        sql: str | Statement,
        cancellation: CancellationToken | None = None,
    ) -> StatementResult:
        """Execute a single statement.

        Args:
            sql: SQL text or an already parsed statement.
            cancellation: Optional token to stop the statement from another
                thread.

        Returns:
            ResultSet for SELECT, RowsAffected for everything else.

        Raises:
            RuntimeError: If the engine is not started.
            EngineError: Any parse or execution failure.
        """
        executor = self._require_executor()
        statement = self._parse(sql)
        return self._run(executor, statement, cancellation)

    def execute_many(
        self,
        statements: list[str | Statement],
        cancellation: CancellationToken | None = None,
    ) -> list[StatementResult]:
        """Execute statements in order, stopping at the first failure.

        Args:
            statements: SQL texts or parsed statements.
            cancellation: Optional token shared by all statements.

        Returns:
            List of results, one per statement.
        """
        return [self.execute(sql, cancellation) for sql in statements]

    def execute_script(
        self,
        sql: str,
        cancellation: CancellationToken | None = None,
    ) -> list[StatementResult]:
        """Parse a semicolon-separated script, then run it statement by statement.

        Nothing runs if the script does not parse. Statements that completed
        before a failing one stay applied.
        """
        executor = self._require_executor()
        try:
            statements = self._parser.parse_script(sql)
        except EngineError as e:
            self._record_failure("unknown", e)
            raise
        return [self._run(executor, s, cancellation) for s in statements]

    def stream(
        self,
        sql: str | SelectStatement,
        cancellation: CancellationToken | None = None,
    ) -> Cursor:
        """Start a SELECT and return a cursor that pulls rows on demand.

        Example:
            with db.stream("SELECT * FROM events") as cursor:
                for row in cursor:
                    ...
        """
        executor = self._require_executor()
        statement = self._parse_select(sql)
        return executor.stream(statement, cancellation)

    def explain(self, sql: str | SelectStatement) -> str:
        """Render the execution plan of a SELECT."""
        executor = self._require_executor()
        return executor.explain(self._parse_select(sql))

    def describe(self, table_name: str) -> Schema:
        """Return the schema of a table.

        Raises:
            UnresolvedReferenceError: If the table does not exist.
        """
        return self._require_executor().describe(table_name)

    def cancel_all(self, reason: str | None = None) -> int:
        """Cancel every statement currently running through :meth:`execute`.

        Returns:
            Number of statements signalled.
        """
        with self._active_lock:
            tokens = list(self._active)
        for token in tokens:
            token.cancel(reason)
        return len(tokens)

    def get_stats(self) -> dict[str, Any]:
        """Get engine statistics.

        Returns:
            Dictionary with various statistics.
        """
        with self._active_lock:
            running = len(self._active)
        return {
            "started": self._started,
            "tables": {
                name: self._catalog.get_table(name).row_count
                for name in self._catalog.table_names()
            },
            "statements_executed": self._statements_executed,
            "statements_failed": self._statements_failed,
            "statements_running": running,
        }

    # Internals

    def _require_executor(self) -> QueryExecutor:
        if not self._started or self._executor is None:
            raise RuntimeError("Database engine not started")
        return self._executor

    def _parse(self, sql: str | Statement) -> Statement:
        if isinstance(sql, Statement):
            return sql
        try:
            return self._parser.parse(sql)
        except EngineError as e:
            self._record_failure("unknown", e)
            raise

    def _parse_select(self, sql: str | SelectStatement) -> SelectStatement:
        statement = self._parse(sql)
        if not isinstance(statement, SelectStatement):
            raise ParseError(
                f"Expected a SELECT statement, got {statement.statement_type.value}"
            )
        return statement

    def _run(
        self,
        executor: QueryExecutor,
        statement: Statement,
        cancellation: CancellationToken | None,
    ) -> StatementResult:
        statement_type = statement.statement_type
        label = statement_type.value
        token = cancellation or CancellationToken()
        timer = self._start_timer(token)
        stats = ExecutionStats()

        with self._active_lock:
            self._active.add(token)
        start = time.perf_counter()
        try:
            with statement_context(label) as statement_id, statement_span(
                label, statement_id
            ) as span:
                try:
                    result = executor.execute(statement, token, stats)
                except Exception as e:
                    self._record_failure(label, e)
                    raise
                self._record_success(statement_type, result, stats)
                if isinstance(result, ResultSet):
                    record_rows(span, returned=len(result))
                else:
                    record_rows(span, affected=result.count)
                return result
        finally:
            elapsed = time.perf_counter() - start
            if timer is not None:
                timer.cancel()
            with self._active_lock:
                self._active.discard(token)
            self._metrics.statement_latency_seconds.labels(statement_type=label).observe(
                elapsed
            )

    def _start_timer(self, token: CancellationToken) -> threading.Timer | None:
        timeout = self._config.query.statement_timeout_seconds
        if timeout is None:
            return None
        timer = threading.Timer(
            timeout, token.cancel, args=(f"Statement timeout of {timeout}s exceeded",)
        )
        timer.daemon = True
        timer.start()
        return timer

    def _record_success(
        self, statement_type: StatementType, result: StatementResult, stats: ExecutionStats
    ) -> None:
        label = statement_type.value
        with self._active_lock:
            self._statements_executed += 1
        metrics = self._metrics
        metrics.statements_total.labels(statement_type=label, status="success").inc()
        if isinstance(result, ResultSet):
            metrics.rows_returned_total.inc(len(result))
            metrics.rows_scanned_total.inc(stats.rows_scanned)
            for index_name, count in stats.index_lookups.items():
                metrics.index_lookups_total.labels(index_name=index_name).inc(count)
            logger.debug("statement_executed", rows=len(result), rows_scanned=stats.rows_scanned)
        else:
            if result.count:
                metrics.rows_affected_total.labels(statement_type=label).inc(result.count)
            if statement_type in _DDL:
                metrics.tables.set(len(self._catalog))
                logger.info("ddl_executed", message=result.message)
            else:
                logger.debug("statement_executed", rows_affected=result.count)

    def _record_failure(self, label: str, error: Exception) -> None:
        with self._active_lock:
            self._statements_failed += 1
        metrics = self._metrics
        if metrics is not None:
            metrics.statements_total.labels(statement_type=label, status="error").inc()
            metrics.errors_total.labels(error_type=type(error).__name__).inc()
            if isinstance(error, ConstraintViolationError):
                metrics.constraint_violations_total.labels(
                    constraint=error.constraint
                ).inc()
            elif isinstance(error, QueryCancelledError):
                metrics.queries_cancelled_total.inc()
        logger.warning(
            "statement_failed",
            statement_type=label,
            error_type=type(error).__name__,
            error=str(error),
        )

    def __enter__(self) -> DatabaseEngine:
        """Context manager entry."""
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit."""
        self.stop()
