"""Optional OpenTelemetry tracing for pipeline runs and stages."""

from __future__ import annotations

import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from jobs_etl_core.config.settings import Settings

logger = structlog.get_logger()

# Set by configure_tracing(); None means every helper below is a no-op.
_tracer: Any = None


def configure_tracing(settings: Settings) -> None:
    """Install a tracer provider for the configured exporter.

    OTEL imports are deferred so runs with ``otel_exporter == "none"``
    never load them.
    """
    global _tracer

    if settings.otel_exporter == "none":
        _tracer = None
        return

    if settings.otel_exporter == "console":
        from opentelemetry.sdk.trace.export import ConsoleSpanExporter

        exporter = ConsoleSpanExporter()
        configure_tracing_with_exporter(exporter, settings.otel_service_name, batch=False)
    else:
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter

        exporter = OTLPSpanExporter(endpoint=settings.otel_endpoint)
        configure_tracing_with_exporter(exporter, settings.otel_service_name, batch=True)
    logger.info("tracing_configured", exporter=settings.otel_exporter)


def configure_tracing_with_exporter(
    exporter: Any,  # noqa: ANN401
    service_name: str = "jobs-etl",
    batch: bool = False,
) -> None:
    """Install a tracer that sends spans to ``exporter`` (e.g. InMemorySpanExporter)."""
    global _tracer

    from opentelemetry.sdk.resources import Resource
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import BatchSpanProcessor, SimpleSpanProcessor

    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))
    processor = BatchSpanProcessor(exporter) if batch else SimpleSpanProcessor(exporter)
    provider.add_span_processor(processor)
    # not installed as the global provider
    _tracer = provider.get_tracer("jobs-etl")


def disable_tracing() -> None:
    """Turn tracing off."""
    global _tracer
    _tracer = None


def get_tracer() -> Any:  # noqa: ANN401
    """The active tracer, or None."""
    return _tracer


@asynccontextmanager
async def trace_pipeline_run(run_id: str) -> AsyncGenerator[Any, None]:
    """Root ``pipeline.run`` span; yields None when tracing is off."""
    if _tracer is None:
        yield None
        return

    with _tracer.start_as_current_span("pipeline.run") as span:
        span.set_attribute("pipeline.run_id", run_id)
        yield span


@asynccontextmanager
async def trace_stage(stage: str, **attributes: str | int | float | bool) -> AsyncGenerator[Any, None]:
    """``stage.<name>`` child span recording status and duration."""
    if _tracer is None:
        yield None
        return

    with _tracer.start_as_current_span(f"stage.{stage}") as span:
        span.set_attribute("stage.name", stage)
        for key, value in attributes.items():
            span.set_attribute(f"stage.{key}", value)
        start = time.monotonic()
        try:
            yield span
            span.set_attribute("stage.status", "ok")
        except Exception as exc:
            span.set_attribute("stage.status", "error")
            span.set_attribute("stage.error", str(exc))
            raise
        finally:
            span.set_attribute("stage.duration_seconds", round(time.monotonic() - start, 3))
