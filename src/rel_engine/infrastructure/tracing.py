"""OpenTelemetry tracing for statement execution.

Each executed statement gets one span named ``rel_engine.<type>`` carrying
the database semantic attributes (``db.system``, ``db.operation.name``) and
the statement id bound in the log context, so traces and logs of the same
statement can be joined. Any exception marks the span as failed with the
error class in ``error.type``.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Generator

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.trace import Status, StatusCode

DB_SYSTEM = "rel_engine"

_tracer: trace.Tracer | None = None


def setup_tracing(
    service_name: str = "rel_engine",
    otlp_endpoint: str | None = None,
    console_export: bool = False,
) -> trace.Tracer:
    """
    Install a tracer provider exporting statement spans.

    Args:
        service_name: ``service.name`` resource attribute
        otlp_endpoint: OTLP gRPC collector endpoint (e.g., "http://localhost:4317")
        console_export: Also print finished spans to stdout

    Returns:
        The engine tracer
    """
    global _tracer
    from rel_engine import __version__

    provider = TracerProvider(
        resource=Resource.create(
            {"service.name": service_name, "service.version": __version__}
        )
    )
    if otlp_endpoint:
        provider.add_span_processor(
            BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint, insecure=True))
        )
    if console_export:
        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))

    trace.set_tracer_provider(provider)
    _tracer = trace.get_tracer(service_name)
    return _tracer


def get_tracer() -> trace.Tracer:
    """Tracer used for engine spans; a no-op tracer until one is set up."""
    global _tracer
    if _tracer is None:
        _tracer = trace.get_tracer(DB_SYSTEM)
    return _tracer


@contextmanager
def trace_span(
    name: str,
    attributes: dict[str, Any] | None = None,
) -> Generator[trace.Span, None, None]:
    """Open a span, skipping attributes whose value is None."""
    with get_tracer().start_as_current_span(name) as span:
        for key, value in (attributes or {}).items():
            if value is not None:
                span.set_attribute(key, value)
        yield span


@contextmanager
def statement_span(
    statement_type: str,
    statement_id: str | None = None,
) -> Generator[trace.Span, None, None]:
    """
    Span covering one statement from planning to the last row.

    Args:
        statement_type: Lower-case statement kind, e.g. "select"
        statement_id: Id bound in the logging context for the statement

    Yields:
        The statement span; callers add row counts to it
    """
    attributes = {
        "db.system": DB_SYSTEM,
        "db.operation.name": statement_type.upper(),
        "rel_engine.statement_id": statement_id,
    }
    with trace_span(f"{DB_SYSTEM}.{statement_type}", attributes) as span:
        try:
            yield span
        except Exception as e:
            span.set_attribute("error.type", type(e).__name__)
            span.set_status(Status(StatusCode.ERROR, str(e)))
            raise


def record_rows(
    span: trace.Span, *, returned: int | None = None, affected: int | None = None
) -> None:
    """Attach result sizes to a statement span."""
    if returned is not None:
        span.set_attribute("db.response.returned_rows", returned)
    if affected is not None:
        span.set_attribute("rel_engine.rows_affected", affected)
