"""Run report: a flat, printable summary of a RunResult."""

from __future__ import annotations

from dataclasses import dataclass, field

from jobs_etl_core.models.run import RunResult

# ---------------------------------------------------------------------------
# Report data structures
# ---------------------------------------------------------------------------


@dataclass
class StageRow:
    """Counters for one stage."""

    name: str
    attempted: int
    succeeded: int
    failed: int


@dataclass
class ErrorRow:
    """One structured error, flattened for display."""

    stage: str
    listing_id: str
    error_type: str
    message: str
    is_fatal: bool


@dataclass
class RunReport:
    """Structured report for a pipeline run."""

    run_id: str
    status: str
    duration_seconds: float
    listings_selected: int
    persisted: int
    promoted: int
    checkpoint_before: str
    checkpoint_after: str
    average_processing_seconds: float
    failure_reason: str | None
    errors_dropped: int
    stages: list[StageRow] = field(default_factory=list)
    errors: list[ErrorRow] = field(default_factory=list)

    @property
    def error_count(self) -> int:
        """Errors kept plus errors dropped past the cap."""
        return len(self.errors) + self.errors_dropped


# ---------------------------------------------------------------------------
# Report generation
# ---------------------------------------------------------------------------


def generate_run_report(result: RunResult) -> RunReport:
    """Flatten a RunResult into a RunReport."""
    metrics = result.metrics
    stages = [
        StageRow(
            name=name,
            attempted=counts.attempted,
            succeeded=counts.succeeded,
            failed=counts.failed,
        )
        for name, counts in metrics.stages.items()
    ]
    errors = [
        ErrorRow(
            stage=e.stage,
            listing_id=e.listing_id or "-",
            error_type=e.error_type,
            message=e.message,
            is_fatal=e.is_fatal,
        )
        for e in metrics.errors
    ]
    return RunReport(
        run_id=result.run_id,
        status=result.status,
        duration_seconds=result.duration_seconds,
        listings_selected=result.listings_selected,
        persisted=len(result.persisted_ids),
        promoted=len(result.promoted_ids),
        checkpoint_before=_fmt_ts(result.checkpoint_before),
        checkpoint_after=_fmt_ts(result.checkpoint_after),
        average_processing_seconds=metrics.average_processing_seconds,
        failure_reason=result.failure_reason,
        errors_dropped=metrics.errors_dropped,
        stages=stages,
        errors=errors,
    )


def _fmt_ts(value: object) -> str:
    return value.isoformat() if value is not None else "-"  # type: ignore[attr-defined]


# ---------------------------------------------------------------------------
# Report formatting
# ---------------------------------------------------------------------------

_STATUS_ICONS = {"completed": "[OK]", "stopped": "[STOP]", "failed": "[ERR]"}


def format_run_report(report: RunReport, max_errors: int = 20) -> str:
    """Format a RunReport as a plain-text block for logs and terminals."""
    lines: list[str] = []
    sep = "=" * 72

    lines.append("")
    lines.append(sep)
    lines.append("  PIPELINE RUN REPORT")
    lines.append(sep)
    lines.append(f"  Run ID:      {report.run_id}")
    lines.append(f"  Status:      {_STATUS_ICONS.get(report.status, '[?]')} {report.status}")
    if report.failure_reason:
        lines.append(f"  Reason:      {report.failure_reason}")
    lines.append(
        f"  Duration:    {report.duration_seconds:.1f}s"
        f"  |  Avg/item: {report.average_processing_seconds:.2f}s"
    )
    lines.append(
        f"  Listings:    {report.listings_selected} selected"
        f"  |  {report.persisted} persisted  |  {report.promoted} promoted"
    )
    lines.append(f"  Checkpoint:  {report.checkpoint_before} -> {report.checkpoint_after}")
    lines.append("")

    lines.append("-" * 72)
    lines.append("  STAGES")
    lines.append("-" * 72)
    lines.append(f"  {'Stage':<16} {'Attempted':>10} {'Succeeded':>10} {'Failed':>10}")
    for row in report.stages:
        lines.append(f"  {row.name:<16} {row.attempted:>10} {row.succeeded:>10} {row.failed:>10}")
    lines.append("")

    lines.append("-" * 72)
    lines.append(f"  ERRORS ({report.error_count})")
    lines.append("-" * 72)
    if not report.errors:
        lines.append("  (none)")
    for err in report.errors[:max_errors]:
        fatal = " FATAL" if err.is_fatal else ""
        lines.append(f"  [{err.stage}]{fatal} {err.listing_id}: {err.error_type}: {err.message}")
    hidden = len(report.errors) - max_errors + report.errors_dropped
    if hidden > 0:
        lines.append(f"  ... {hidden} more")

    lines.append(sep)
    lines.append("")
    return "\n".join(lines)
