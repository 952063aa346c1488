"""Infrastructure layer - cross-cutting concerns."""

from rel_engine.infrastructure.config import (
    Config,
    ObservabilityConfig,
    QueryConfig,
    get_config,
)
from rel_engine.infrastructure.logging import get_logger, setup_logging, statement_context
from rel_engine.infrastructure.metrics import MetricsRegistry, get_metrics, setup_metrics
from rel_engine.infrastructure.tracing import (
    get_tracer,
    record_rows,
    setup_tracing,
    statement_span,
    trace_span,
)

__all__ = [
    "Config",
    "QueryConfig",
    "ObservabilityConfig",
    "get_config",
    "setup_logging",
    "get_logger",
    "statement_context",
    "setup_metrics",
    "get_metrics",
    "MetricsRegistry",
    "setup_tracing",
    "get_tracer",
    "trace_span",
    "statement_span",
    "record_rows",
]
