"""CLI entrypoint using typer."""

from __future__ import annotations

import asyncio
import json
from datetime import date, datetime
from pathlib import Path

import typer
from pydantic import ValidationError
from rich.console import Console

from jobs_etl_core.config.settings import Settings
from jobs_etl_core.constants import DEFAULT_CHECKPOINT_SCOPE, PIPELINE_VERSION
from jobs_etl_core.models.capability import CapabilityDefinition, TaxonomyGroup
from jobs_etl_core.models.run import RunOptions, RunResult
from jobs_etl_infra.storage.repository import SqlRepository
from jobs_etl_pipeline.observability import (
    configure_logging,
    configure_tracing,
    format_run_report,
    generate_run_report,
)
from jobs_etl_pipeline.orchestrator.orchestrator import build_orchestrator

app = typer.Typer(
    name="jobs-etl",
    help="Government job-listing ETL: crawl, enrich, persist",
)
console = Console()


def _parse_day(value: str | None, flag: str) -> date | None:
    if value is None:
        return None
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError as e:
        raise typer.BadParameter(f"{flag} must be YYYY-MM-DD") from e


@app.command()
def run(
    start_date: str | None = typer.Option(None, "--start-date", help="Earliest posting date (YYYY-MM-DD)"),
    end_date: str | None = typer.Option(None, "--end-date", help="Latest posting date (YYYY-MM-DD)"),
    organisation: list[str] = typer.Option(
        [], "--organisation", "-o", help="Keep only this organisation (repeatable)"
    ),
    location: list[str] = typer.Option(
        [], "--location", "-l", help="Keep only this location (repeatable)"
    ),
    max_records: int = typer.Option(0, "--max-records", min=0, help="Listing cap, 0 is unlimited"),
    skip_processing: bool = typer.Option(False, "--skip-processing", help="Acquisition only"),
    skip_storage: bool = typer.Option(False, "--skip-storage", help="Do not write to any store"),
    continue_on_error: bool = typer.Option(
        True, "--continue-on-error/--halt-on-error", help="Isolate per-listing failures"
    ),
    incremental: bool = typer.Option(
        True, "--incremental/--full", help="Only listings modified since the last checkpoint"
    ),
    migrate: bool = typer.Option(False, "--migrate", help="Promote persisted records to live"),
    scope: str = typer.Option(DEFAULT_CHECKPOINT_SCOPE, "--scope", help="Checkpoint scope"),
    batch_size: int | None = typer.Option(None, "--batch-size", min=1, help="Listings per batch"),
    browser: bool = typer.Option(False, "--browser", help="Fetch pages with headless Chromium"),
    no_documents: bool = typer.Option(
        False, "--no-documents", help="Skip downloading attached role descriptions"
    ),
    trace: bool = typer.Option(False, "--trace", help="Print OTEL spans to the console"),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Enable debug logging"),
) -> None:
    """Run the pipeline once."""
    try:
        options = RunOptions(
            start_date=_parse_day(start_date, "--start-date"),
            end_date=_parse_day(end_date, "--end-date"),
            organisations=tuple(organisation),
            locations=tuple(location),
            max_records=max_records,
            skip_processing=skip_processing,
            skip_storage=skip_storage,
            continue_on_error=continue_on_error,
            incremental=incremental,
            migrate_to_live=migrate,
            checkpoint_scope=scope,
        )
    except ValidationError as e:
        console.print(f"[red]Error:[/red] {e.errors()[0]['msg']}", style="bold")
        raise typer.Exit(code=2) from e

    settings = Settings()
    if verbose:
        settings.log_level = "DEBUG"
    if trace:
        settings.otel_exporter = "console"
    if browser:
        settings.fetcher_backend = "playwright"
    if no_documents:
        settings.fetch_documents = False
    if batch_size is not None:
        settings.batch_size = batch_size

    configure_logging(settings)
    configure_tracing(settings)

    result = asyncio.run(_run_pipeline(settings, options))
    # report lines contain bracketed stage names
    console.print(format_run_report(generate_run_report(result)), markup=False, highlight=False)

    if result.status == "failed":
        raise typer.Exit(code=1)


@app.command("init-db")
def init_db() -> None:
    """Check connectivity to both stores and create the schema (SQLite)."""
    settings = Settings()
    configure_logging(settings)
    asyncio.run(_initialize(settings))
    console.print("[bold green]Stores ready[/bold green]")


@app.command()
def seed(
    path: Path = typer.Argument(..., exists=True, help="JSON with capabilities and taxonomy_groups"),
) -> None:
    """Load the capability framework and skill taxonomy into the live store."""
    data = json.loads(path.read_text())
    try:
        catalog = [CapabilityDefinition.model_validate(c) for c in data.get("capabilities", [])]
        groups = [TaxonomyGroup.model_validate(g) for g in data.get("taxonomy_groups", [])]
    except ValidationError as e:
        console.print(f"[red]Error:[/red] invalid reference data: {e}")
        raise typer.Exit(code=1) from e

    settings = Settings()
    configure_logging(settings)
    asyncio.run(_seed(settings, catalog, groups))
    console.print(
        f"[bold green]Seeded[/bold green] {len(catalog)} capabilities, "
        f"{len(groups)} taxonomy groups"
    )


@app.command()
def version() -> None:
    """Show version."""
    console.print(f"jobs-etl v{PIPELINE_VERSION}")


async def _run_pipeline(settings: Settings, options: RunOptions) -> RunResult:
    """Build the orchestrator, run once, release connections."""
    orchestrator = build_orchestrator(settings, require_analyzer=not options.skip_processing)
    try:
        return await orchestrator.run(options)
    finally:
        await orchestrator.close()


async def _initialize(settings: Settings) -> None:
    repository = SqlRepository.from_settings(settings)
    try:
        await repository.initialize()
    finally:
        await repository.cleanup()


async def _seed(
    settings: Settings,
    catalog: list[CapabilityDefinition],
    groups: list[TaxonomyGroup],
) -> None:
    repository = SqlRepository.from_settings(settings)
    try:
        await repository.initialize()
        await repository.seed_reference_data(catalog, groups)
    finally:
        await repository.cleanup()


if __name__ == "__main__":
    app()
