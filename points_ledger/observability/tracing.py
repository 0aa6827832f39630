"""
Distributed Tracing with OpenTelemetry.

Traces HTTP requests, database queries and ledger operations. Disabled
unless TRACING_ENABLED is set.
"""

from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace import Span

from points_ledger.config import settings


def setup_tracing() -> None:
    """Configure the global tracer provider with OTLP export."""
    if not settings.tracing_enabled:
        return

    resource = Resource.create(
        {
            "service.name": settings.service_name,
            "service.version": settings.api_version,
        }
    )
    provider = TracerProvider(resource=resource)
    provider.add_span_processor(
        BatchSpanProcessor(
            OTLPSpanExporter(endpoint=settings.otlp_endpoint, insecure=settings.otlp_insecure)
        )
    )
    trace.set_tracer_provider(provider)


def instrument_fastapi(app: Any) -> None:
    """
    Instrument FastAPI application for automatic tracing.

    Must be called after app creation.
    """
    if not settings.tracing_enabled:
        return

    FastAPIInstrumentor.instrument_app(app)


def instrument_sqlalchemy(engine: Any) -> None:
    """Instrument an async engine for query tracing."""
    if not settings.tracing_enabled:
        return

    SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine)


class trace_operation:
    """
    Context manager wrapping a ledger operation in a span.

    Usage:
        with trace_operation("ledger.debit", user_id=user_id):
            ...
    """

    def __init__(self, operation_name: str, **attributes: Any) -> None:
        self.operation_name = operation_name
        self.attributes = attributes
        self.span: Span | None = None
        self._scope: Any = None

    def __enter__(self) -> Span:
        tracer = trace.get_tracer("points_ledger.operations")
        self.span = tracer.start_span(self.operation_name)
        for key, value in self.attributes.items():
            if value is not None:
                if not isinstance(value, (str, int, float, bool)):
                    value = str(value)
                self.span.set_attribute(key, value)
        self._scope = trace.use_span(self.span, end_on_exit=True)
        self._scope.__enter__()
        return self.span

    def __exit__(self, exc_type: Any, exc_val: BaseException | None, exc_tb: Any) -> None:
        # use_span records the exception and marks the span as failed
        self._scope.__exit__(exc_type, exc_val, exc_tb)
