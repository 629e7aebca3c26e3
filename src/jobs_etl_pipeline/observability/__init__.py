"""Observability: structured logging, tracing, and run reports."""

from jobs_etl_pipeline.observability.logging import (
    bind_run_context,
    bind_stage,
    clear_run_context,
    configure_logging,
)
from jobs_etl_pipeline.observability.run_report import (
    RunReport,
    format_run_report,
    generate_run_report,
)
from jobs_etl_pipeline.observability.tracing import (
    configure_tracing,
    configure_tracing_with_exporter,
    disable_tracing,
    get_tracer,
    trace_pipeline_run,
    trace_stage,
)

__all__ = [
    "RunReport",
    "bind_run_context",
    "bind_stage",
    "clear_run_context",
    "configure_logging",
    "configure_tracing",
    "configure_tracing_with_exporter",
    "disable_tracing",
    "format_run_report",
    "generate_run_report",
    "get_tracer",
    "trace_pipeline_run",
    "trace_stage",
]
