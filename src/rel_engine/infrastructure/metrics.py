"""Prometheus metrics for the query engine."""

from __future__ import annotations

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    Info,
    start_http_server,
)


class MetricsRegistry:
    """Registry of all query engine metrics."""

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        """Initialize metrics registry."""
        self._registry = registry or REGISTRY

        # Statement metrics
        self.statements_total = Counter(
            "rel_statements_total",
            "Total number of statements executed",
            ["statement_type", "status"],  # status: success, error
            registry=self._registry,
        )

        self.statement_latency_seconds = Histogram(
            "rel_statement_latency_seconds",
            "Statement latency in seconds",
            ["statement_type"],
            buckets=(0.0005, 0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
            registry=self._registry,
        )

        self.errors_total = Counter(
            "rel_errors_total",
            "Total number of failed statements by error class",
            ["error_type"],
            registry=self._registry,
        )

        # Row metrics
        self.rows_returned_total = Counter(
            "rel_rows_returned_total",
            "Total rows returned by queries",
            registry=self._registry,
        )

        self.rows_scanned_total = Counter(
            "rel_rows_scanned_total",
            "Total rows read by table scans",
            registry=self._registry,
        )

        self.rows_affected_total = Counter(
            "rel_rows_affected_total",
            "Total rows inserted, updated or deleted",
            ["statement_type"],
            registry=self._registry,
        )

        # Constraint metrics
        self.constraint_violations_total = Counter(
            "rel_constraint_violations_total",
            "Total constraint violations",
            ["constraint"],
            registry=self._registry,
        )

        # Index metrics
        self.index_lookups_total = Counter(
            "rel_index_lookups_total",
            "Total index lookup operations",
            ["index_name"],
            registry=self._registry,
        )

        # Cancellation metrics
        self.queries_cancelled_total = Counter(
            "rel_queries_cancelled_total",
            "Total statements stopped by cancellation or timeout",
            registry=self._registry,
        )

        # Catalog metrics
        self.tables = Gauge(
            "rel_tables",
            "Number of tables in the catalog",
            registry=self._registry,
        )

        # Engine info
        self.info = Info(
            "rel_engine",
            "Query engine information",
            registry=self._registry,
        )


# Global metrics registry
_metrics: MetricsRegistry | None = None


def setup_metrics(port: int = 8001, registry: CollectorRegistry | None = None) -> MetricsRegistry:
    """
    Set up Prometheus metrics server.

    Args:
        port: Port for the metrics HTTP server
        registry: Optional custom registry

    Returns:
        The metrics registry
    """
    global _metrics
    _metrics = MetricsRegistry(registry)

    from rel_engine import __version__
    _metrics.info.info({
        "version": __version__,
    })

    # Start HTTP server for Prometheus scraping
    start_http_server(port, registry=registry or REGISTRY)

    return _metrics


def get_metrics() -> MetricsRegistry:
    """Get the global metrics registry."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsRegistry()
    return _metrics
