"""Batch orchestrator: acquire -> classify/embed -> persist, driven by the state machine."""

from __future__ import annotations

import asyncio
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING

import structlog

from jobs_etl_core.config.components import (
    AnalyzerConfig,
    DocumentConfig,
    PipelineConfig,
    ProcessorConfig,
    SpiderConfig,
)
from jobs_etl_core.exceptions import (
    CheckpointError,
    ConfigurationError,
    FetchError,
    InvalidTransitionError,
    StorageError,
)
from jobs_etl_core.interfaces.repository import Repository
from jobs_etl_core.models.listing import ListingDetail, ListingSummary
from jobs_etl_core.models.record import EnrichedRecord
from jobs_etl_core.models.run import (
    ErrorStage,
    ProgressEvent,
    RunMetrics,
    RunMetricsSnapshot,
    RunOptions,
    RunResult,
    RunStatus,
    SpiderMetrics,
    StageError,
)
from jobs_etl_core.state import PipelineState, PipelineStatus
from jobs_etl_infra.storage.repository import SqlRepository
from jobs_etl_pipeline.observability import (
    bind_run_context,
    bind_stage,
    clear_run_context,
    trace_pipeline_run,
    trace_stage,
)
from jobs_etl_pipeline.orchestrator.checkpoint import compute_checkpoint
from jobs_etl_pipeline.orchestrator.selection import build_listing_filter
from jobs_etl_pipeline.services.analyzer import EnrichmentAnalyzer
from jobs_etl_pipeline.services.processor import Processor
from jobs_etl_pipeline.services.spider import Spider
from jobs_etl_pipeline.tools.factories import create_document_reader, create_embedding_generator

if TYPE_CHECKING:
    from jobs_etl_core.config.settings import Settings

logger = structlog.get_logger()

SpiderFactory = Callable[[], Spider]
ProgressCallback = Callable[[ProgressEvent], None]


@dataclass
class _Run:
    """Bookkeeping for one invocation of Orchestrator.run."""

    run_id: str
    options: RunOptions
    metrics: RunMetrics
    started: float = field(default_factory=time.monotonic)
    stage: ErrorStage = "pipeline"
    status: RunStatus = "completed"
    failure_reason: str | None = None
    halted: bool = False
    fatal: bool = False
    spider: Spider | None = None
    truncated: bool = False
    selected: list[ListingSummary] = field(default_factory=list)
    persisted: list[ListingSummary] = field(default_factory=list)
    promoted_ids: list[str] = field(default_factory=list)
    checkpoint_before: datetime | None = None
    checkpoint_after: datetime | None = None


@dataclass
class _Slot:
    """Outcome of one listing inside a batch."""

    summary: ListingSummary
    detail: ListingDetail | None = None
    record: EnrichedRecord | None = None
    failed: bool = False


class Orchestrator:
    """Runs the pipeline in batches and owns its lifecycle state.

    ``pause()`` and ``stop()`` take effect at the next batch boundary; the
    batch in flight always runs to completion.
    """

    def __init__(
        self,
        repository: Repository,
        processor: Processor,
        spider_factory: SpiderFactory,
        config: PipelineConfig | None = None,
        progress_callback: ProgressCallback | None = None,
    ) -> None:
        """Initialize with the pipeline collaborators."""
        self._repository = repository
        self._processor = processor
        self._spider_factory = spider_factory
        self._config = config or PipelineConfig()
        self._progress_callback = progress_callback
        self._state = PipelineState()
        self._metrics = RunMetrics(self._config.max_errors)
        self._pause_requested = False
        self._stop_requested = False
        self._resume_event = asyncio.Event()
        self._resume_event.set()

    @property
    def status(self) -> PipelineStatus:
        """Current lifecycle state."""
        return self._state.status

    @property
    def history(self) -> list[PipelineStatus]:
        """States visited by the current (or last) run, in order."""
        return [status for status, _ in self._state.history]

    def metrics(self) -> RunMetricsSnapshot:
        """Live snapshot of the current (or last) run's counters."""
        return self._metrics.snapshot()

    def pause(self) -> None:
        """Hold the run at the next batch boundary."""
        self._pause_requested = True
        self._resume_event.clear()
        logger.info("pipeline_pause_requested")

    def resume(self) -> None:
        """Release a paused run."""
        self._pause_requested = False
        self._resume_event.set()
        logger.info("pipeline_resume_requested")

    def stop(self) -> None:
        """End the run at the next batch boundary."""
        self._stop_requested = True
        self._resume_event.set()
        logger.info("pipeline_stop_requested")

    async def run(self, options: RunOptions | None = None) -> RunResult:
        """Execute one pipeline run and return its summary."""
        options = options or RunOptions()
        if self._state.status.is_active or self._state.status == PipelineStatus.PAUSED:
            msg = f"A run is already in progress ({self._state.status.value})"
            raise InvalidTransitionError(msg)

        self._state.reset()
        self._pause_requested = False
        self._stop_requested = False
        self._resume_event.set()

        run = _Run(
            run_id=uuid.uuid4().hex[:12],
            options=options,
            metrics=RunMetrics(self._config.max_errors),
        )
        self._metrics = run.metrics
        self._processor.bind_metrics(run.metrics)
        bind_run_context(run.run_id, options.checkpoint_scope)

        try:
            try:
                logger.info(
                    "pipeline_start",
                    max_records=options.max_records,
                    incremental=options.incremental,
                    skip_processing=options.skip_processing,
                    skip_storage=options.skip_storage,
                    continue_on_error=options.continue_on_error,
                )
                async with trace_pipeline_run(run.run_id) as root_span:
                    try:
                        await self._execute(run)
                    except Exception as e:
                        self._fail(run, e)
                    self._set_root_span_attrs(root_span, run)
            finally:
                await self._release_spider(run)
                if not self._state.status.is_terminal:
                    # cancelled from outside
                    self._state.transition(PipelineStatus.STOPPED)
                run.metrics.finish()

            result = self._build_result(run)
            self._log_summary(result)
            return result
        finally:
            clear_run_context()

    async def _execute(self, run: _Run) -> None:
        opts = run.options
        self._transition(PipelineStatus.ACQUIRING)

        run.stage = "pipeline"
        await self._repository.initialize()

        run.stage = "checkpoint"
        run.checkpoint_before = await self._repository.get_last_checkpoint(opts.checkpoint_scope)
        run.checkpoint_after = run.checkpoint_before

        if not opts.skip_processing:
            await self._load_reference_data(run)

        run.stage = "acquisition"
        bind_stage("acquisition")
        run.spider = self._spider_factory()
        predicate = build_listing_filter(opts, run.checkpoint_before)
        async with trace_stage("enumeration", max_records=opts.max_records):
            run.selected = await run.spider.list_summaries(
                max_records=opts.max_records, predicate=predicate
            )
        run.truncated = run.spider.last_enumeration_truncated
        self._emit("enumeration", len(run.selected), len(run.selected))

        batch_size = self._config.batch_size
        for offset in range(0, len(run.selected), batch_size):
            if await self._at_batch_boundary():
                run.status = "stopped"
                logger.info("pipeline_stopped", remaining=len(run.selected) - offset)
                break
            if self._state.status != PipelineStatus.ACQUIRING:
                self._transition(PipelineStatus.ACQUIRING)
            await self._run_batch(run, run.selected[offset : offset + batch_size], offset)
            if run.halted:
                break

        run.stage = "checkpoint"
        await self._advance_checkpoint(run)
        if opts.migrate_to_live:
            await self._migrate(run)

        terminal = {
            "completed": PipelineStatus.COMPLETED,
            "stopped": PipelineStatus.STOPPED,
            "failed": PipelineStatus.FAILED,
        }[run.status]
        self._transition(terminal)

    async def _load_reference_data(self, run: _Run) -> None:
        run.stage = "pipeline"
        catalog = await self._repository.get_capability_catalog()
        groups = await self._repository.get_taxonomy_groups()
        if not catalog:
            logger.warning("capability_catalog_empty")

        run.stage = "embedding"
        async with trace_stage("capability_embeddings", capabilities=len(catalog)):
            catalog = await self._repository.fill_missing_capability_embeddings(
                catalog, persist=not run.options.skip_storage
            )
        self._processor.load_reference_data(catalog, groups)

    async def _at_batch_boundary(self) -> bool:
        """Honor pause and stop requests; True when the run should stop."""
        if self._pause_requested and not self._stop_requested:
            self._transition(PipelineStatus.PAUSED)
            logger.info("pipeline_paused")
            await self._resume_event.wait()
            if not self._stop_requested:
                resume_to = self._state.resume_status or PipelineStatus.ACQUIRING
                self._transition(resume_to)
                logger.info("pipeline_resumed", status=resume_to.value)
        return self._stop_requested

    async def _run_batch(self, run: _Run, batch: list[ListingSummary], offset: int) -> None:
        opts = run.options
        total = len(run.selected)
        slots = [_Slot(summary=s) for s in batch]
        assert run.spider is not None

        run.stage = "acquisition"
        bind_stage("acquisition")
        run.metrics.record_attempt("acquisition", len(batch))
        async with trace_stage("acquisition", batch=len(batch)):
            fetched = await run.spider.fetch_details(batch)
        for slot, result in zip(slots, fetched, strict=True):
            if isinstance(result, FetchError):
                slot.failed = True
                run.metrics.record_failure(
                    "acquisition",
                    StageError.from_exception(
                        "acquisition", result, listing_id=slot.summary.listing_id
                    ),
                )
            else:
                slot.detail = result
                run.metrics.record_success("acquisition")
        self._emit("acquisition", offset + len(batch), total)

        if opts.skip_processing:
            self._settle_failures(run, slots)
            return

        # under halt-on-error nothing after the first failure is worth processing
        to_process: list[_Slot] = []
        for slot in slots:
            if slot.failed and not opts.continue_on_error:
                break
            if slot.detail is not None:
                to_process.append(slot)

        self._transition(PipelineStatus.PROCESSING)
        run.stage = "analysis"
        bind_stage("processing")
        async with trace_stage("processing", batch=len(to_process)):
            records = await self._processor.process_batch(
                [s.detail for s in to_process if s.detail is not None]
            )
        for slot, record in zip(to_process, records, strict=True):
            slot.record = record
            slot.failed = record is None
        self._emit("processing", offset + len(batch), total)

        self._transition(PipelineStatus.PERSISTING)
        run.stage = "storage"
        bind_stage("persisting")
        async with trace_stage("persisting", batch=len(slots)):
            await self._persist_slots(run, slots)
        self._emit("persisting", offset + len(batch), total)

    async def _persist_slots(self, run: _Run, slots: list[_Slot]) -> None:
        """Write records in input order; under halt-on-error stop at the first failure."""
        opts = run.options
        for slot in slots:
            if slot.failed or slot.record is None:
                if not self._on_item_failure(run, slot):
                    return
                continue
            if opts.skip_storage:
                continue

            run.metrics.record_attempt("storage")
            try:
                await self._repository.upsert_enriched_record(slot.record)
            except StorageError as e:
                slot.failed = True
                run.metrics.record_failure(
                    "storage",
                    StageError.from_exception("storage", e, listing_id=slot.summary.listing_id),
                )
                if not self._on_item_failure(run, slot):
                    return
                continue
            run.metrics.record_success("storage")
            run.persisted.append(slot.summary)

    def _settle_failures(self, run: _Run, slots: list[_Slot]) -> None:
        for slot in slots:
            if slot.failed and not self._on_item_failure(run, slot):
                return

    def _on_item_failure(self, run: _Run, slot: _Slot) -> bool:
        """Apply the error policy to a failed item; False means the run halts."""
        if run.options.continue_on_error:
            logger.info("listing_deferred", listing_id=slot.summary.listing_id)
            return True
        run.halted = True
        run.status = "failed"
        run.failure_reason = f"listing {slot.summary.listing_id} failed and continue_on_error is off"
        logger.error("pipeline_halted", listing_id=slot.summary.listing_id)
        return False

    async def _advance_checkpoint(self, run: _Run) -> None:
        opts = run.options
        if opts.skip_storage or not run.persisted:
            return

        persisted_ids = {s.listing_id for s in run.persisted}
        blocking = [
            s.modified_at
            for s in run.selected
            if s.listing_id not in persisted_ids
        ]
        target = compute_checkpoint(
            run.checkpoint_before,
            [s.modified_at for s in run.persisted],
            blocking,
            truncated=run.truncated,
        )
        if target is None or target == run.checkpoint_before:
            logger.info("checkpoint_unchanged", truncated=run.truncated)
            return
        try:
            await self._repository.set_checkpoint(opts.checkpoint_scope, target)
        except CheckpointError as e:
            run.metrics.record_error(StageError.from_exception("checkpoint", e))
            logger.error("checkpoint_save_failed", error=str(e))
            return
        run.checkpoint_after = target

    async def _migrate(self, run: _Run) -> None:
        if run.options.skip_storage or not run.persisted:
            return
        ids = [s.listing_id for s in run.persisted]
        run.metrics.record_attempt("migration", len(ids))
        try:
            async with trace_stage("migration", records=len(ids)):
                run.promoted_ids = await self._repository.promote_to_live(ids)
        except StorageError as e:
            run.metrics.record_failure(
                "migration", StageError.from_exception("migration", e), count=len(ids)
            )
            logger.error("migration_failed", records=len(ids), error=str(e))
            return
        run.metrics.record_success("migration", len(run.promoted_ids))
        missing = len(ids) - len(run.promoted_ids)
        if missing:
            run.metrics.record_failure("migration", count=missing)

    def _fail(self, run: _Run, error: Exception) -> None:
        """Record a fatal error and move the state machine to failed."""
        run.fatal = True
        run.status = "failed"
        run.failure_reason = f"{type(error).__name__}: {error}"
        run.metrics.record_error(StageError.from_exception(run.stage, error, is_fatal=True))
        logger.error(
            "pipeline_failed",
            stage=run.stage,
            error_type=type(error).__name__,
            error=str(error),
        )
        if not self._state.status.is_terminal:
            self._state.transition(PipelineStatus.FAILED)

    async def _release_spider(self, run: _Run) -> None:
        if run.spider is None:
            return
        try:
            await run.spider.cleanup()
        except Exception as e:
            run.metrics.record_error(StageError.from_exception("pipeline", e))
            logger.warning("spider_cleanup_failed", error=str(e))

    def _transition(self, target: PipelineStatus) -> None:
        previous = self._state.status
        self._state.transition(target)
        logger.debug("pipeline_transition", previous=previous.value, status=target.value)

    def _emit(self, stage: str, current: int, total: int) -> None:
        if self._progress_callback is not None:
            self._progress_callback(ProgressEvent(stage=stage, current=current, total=total))

    def _build_result(self, run: _Run) -> RunResult:
        return RunResult(
            run_id=run.run_id,
            status=run.status,
            metrics=run.metrics.snapshot(),
            spider=run.spider.metrics() if run.spider is not None else SpiderMetrics(),
            listings_selected=len(run.selected),
            persisted_ids=[s.listing_id for s in run.persisted],
            promoted_ids=run.promoted_ids,
            checkpoint_before=run.checkpoint_before,
            checkpoint_after=run.checkpoint_after,
            failure_reason=run.failure_reason,
            duration_seconds=time.monotonic() - run.started,
        )

    @staticmethod
    def _set_root_span_attrs(root_span: object | None, run: _Run) -> None:
        """Set summary attributes on the root pipeline span."""
        if root_span is None:
            return
        root_span.set_attribute("pipeline.status", run.status)  # type: ignore[attr-defined]
        root_span.set_attribute("pipeline.listings_selected", len(run.selected))  # type: ignore[attr-defined]
        root_span.set_attribute("pipeline.persisted", len(run.persisted))  # type: ignore[attr-defined]
        root_span.set_attribute("pipeline.errors", len(run.metrics.errors))  # type: ignore[attr-defined]

    @staticmethod
    def _log_summary(result: RunResult) -> None:
        """Log a structured summary of the run."""
        stages = result.metrics.stages
        logger.info(
            "pipeline_summary",
            status=result.status,
            selected=result.listings_selected,
            persisted=len(result.persisted_ids),
            promoted=len(result.promoted_ids),
            processing_failed=stages["processing"].failed,
            errors=len(result.metrics.errors),
            duration_seconds=round(result.duration_seconds, 2),
        )

    async def close(self) -> None:
        """Release the repository's connections."""
        await self._repository.cleanup()


def build_orchestrator(
    settings: Settings,
    progress_callback: ProgressCallback | None = None,
    require_analyzer: bool = True,
) -> Orchestrator:
    """Wire the production pipeline from settings.

    With ``require_analyzer=False`` a missing Anthropic key is tolerated;
    use it for acquisition-only runs.
    """
    generator = create_embedding_generator(settings)
    repository = SqlRepository.from_settings(settings, embed=generator.embed)
    if repository.capability_cache is None:
        msg = "Repository has no capability embedding cache"
        raise ConfigurationError(msg)

    if require_analyzer or settings.anthropic_api_key is not None:
        analyzer = EnrichmentAnalyzer.from_settings(settings)
    else:
        analyzer = EnrichmentAnalyzer(AnalyzerConfig.from_settings(settings))

    processor = Processor(
        analyzer,
        generator,
        repository.capability_cache,
        ProcessorConfig.from_settings(settings),
    )
    spider_config = SpiderConfig.from_settings(settings)
    document_config = DocumentConfig.from_settings(settings)

    def _spider() -> Spider:
        return Spider(spider_config, document_reader=create_document_reader(document_config))

    return Orchestrator(
        repository,
        processor,
        spider_factory=_spider,
        config=PipelineConfig.from_settings(settings),
        progress_callback=progress_callback,
    )
