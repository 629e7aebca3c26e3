"""Tests for the batch Orchestrator against a fake job board and SQLite stores."""

from __future__ import annotations

import asyncio
from datetime import timedelta
from pathlib import Path

import pytest

from jobs_etl_core.config.components import PipelineConfig, SpiderConfig
from jobs_etl_core.exceptions import InvalidTransitionError
from jobs_etl_core.models.run import ProgressEvent, RunOptions
from jobs_etl_core.state import PipelineStatus
from jobs_etl_infra.cache.embedding_cache import CapabilityEmbeddingCache
from jobs_etl_infra.storage.repository import SqlRepository
from jobs_etl_pipeline.orchestrator.orchestrator import Orchestrator, ProgressCallback
from jobs_etl_pipeline.services.processor import Processor
from jobs_etl_pipeline.services.spider import Spider
from jobs_etl_pipeline.tools.embedder import EmbeddingGenerator
from tests.mocks.mock_factories import BASE_MODIFIED, listing_id_for, make_catalog, make_taxonomy
from tests.mocks.mock_tools import FakeAnalyzer, FakeJobBoard, FakePageFetcher, always_failing


class _Harness:
    """Orchestrator wired to fakes, with access to every fetcher it created."""

    def __init__(
        self,
        repository: SqlRepository,
        generator: EmbeddingGenerator,
        spider_config: SpiderConfig,
        board: FakeJobBoard,
        analyzer: FakeAnalyzer | None = None,
        failures: dict[str, list[Exception]] | None = None,
        batch_size: int = 10,
        progress_callback: ProgressCallback | None = None,
        cache: CapabilityEmbeddingCache | None = None,
    ) -> None:
        self.repository = repository
        self.analyzer = analyzer or FakeAnalyzer()
        self.fetchers: list[FakePageFetcher] = []
        self.events: list[ProgressEvent] = []
        self._callback = progress_callback

        def _spider() -> Spider:
            fetcher = FakePageFetcher(board, failures)
            self.fetchers.append(fetcher)
            return Spider(spider_config, fetcher=fetcher)

        if cache is None:
            cache = repository.capability_cache
        assert cache is not None
        self.orchestrator = Orchestrator(
            repository,
            Processor(self.analyzer, generator, cache),
            spider_factory=_spider,
            config=PipelineConfig(batch_size=batch_size),
            progress_callback=self._on_progress,
        )

    def _on_progress(self, event: ProgressEvent) -> None:
        self.events.append(event)
        if self._callback is not None:
            self._callback(event)


async def _seeded(repository: SqlRepository) -> SqlRepository:
    await repository.seed_reference_data(make_catalog(4), make_taxonomy())
    return repository


@pytest.mark.unit
class TestFullRun:
    """Test complete runs."""

    @pytest.mark.asyncio
    async def test_persists_every_listing(
        self,
        repository: SqlRepository,
        generator: EmbeddingGenerator,
        spider_config: SpiderConfig,
    ) -> None:
        """A clean run persists all listings and advances the checkpoint."""
        h = _Harness(await _seeded(repository), generator, spider_config, FakeJobBoard(30))

        result = await h.orchestrator.run()

        assert result.status == "completed"
        assert result.listings_selected == 30
        assert len(result.persisted_ids) == 30
        assert await repository.count_records() == 30
        assert result.checkpoint_before is None
        assert result.checkpoint_after == BASE_MODIFIED + timedelta(hours=30)
        assert h.orchestrator.status == PipelineStatus.COMPLETED
        assert result.metrics.stages["storage"].succeeded == 30
        assert result.metrics.stages["processing"].in_flight == 0
        assert h.fetchers[0].close_calls == 1

    @pytest.mark.asyncio
    async def test_state_history(
        self,
        repository: SqlRepository,
        generator: EmbeddingGenerator,
        spider_config: SpiderConfig,
    ) -> None:
        """Each batch cycles acquiring, processing and persisting."""
        h = _Harness(
            await _seeded(repository), generator, spider_config, FakeJobBoard(12), batch_size=6
        )
        await h.orchestrator.run()

        cycle = [PipelineStatus.ACQUIRING, PipelineStatus.PROCESSING, PipelineStatus.PERSISTING]
        assert h.orchestrator.history == [*cycle, *cycle, PipelineStatus.COMPLETED]

    @pytest.mark.asyncio
    async def test_capability_vectors_written_back(
        self,
        repository: SqlRepository,
        generator: EmbeddingGenerator,
        spider_config: SpiderConfig,
    ) -> None:
        """Missing capability vectors are computed once and stored."""
        h = _Harness(await _seeded(repository), generator, spider_config, FakeJobBoard(5))
        await h.orchestrator.run()

        catalog = await repository.get_capability_catalog()
        assert all(not c.needs_embedding for c in catalog)

    @pytest.mark.asyncio
    async def test_second_run_selects_nothing(
        self,
        repository: SqlRepository,
        generator: EmbeddingGenerator,
        spider_config: SpiderConfig,
    ) -> None:
        """An incremental rerun over an unchanged board is empty."""
        h = _Harness(await _seeded(repository), generator, spider_config, FakeJobBoard(30))
        await h.orchestrator.run()

        second = await h.orchestrator.run()

        assert second.status == "completed"
        assert second.listings_selected == 0
        assert second.checkpoint_before == second.checkpoint_after
        assert len(h.analyzer.calls) == 30

    @pytest.mark.asyncio
    async def test_full_rerun_is_idempotent(
        self,
        repository: SqlRepository,
        generator: EmbeddingGenerator,
        spider_config: SpiderConfig,
    ) -> None:
        """A non-incremental rerun rewrites the same rows."""
        h = _Harness(await _seeded(repository), generator, spider_config, FakeJobBoard(10))
        await h.orchestrator.run()

        second = await h.orchestrator.run(RunOptions(incremental=False))

        assert second.listings_selected == 10
        assert await repository.count_records() == 10

    @pytest.mark.asyncio
    async def test_max_records_holds_checkpoint(
        self,
        repository: SqlRepository,
        generator: EmbeddingGenerator,
        spider_config: SpiderConfig,
    ) -> None:
        """A capped run persists the cap but does not move the checkpoint."""
        h = _Harness(await _seeded(repository), generator, spider_config, FakeJobBoard(30))

        result = await h.orchestrator.run(RunOptions(max_records=5))

        assert len(result.persisted_ids) == 5
        assert result.checkpoint_after is None

    @pytest.mark.asyncio
    async def test_progress_events(
        self,
        repository: SqlRepository,
        generator: EmbeddingGenerator,
        spider_config: SpiderConfig,
    ) -> None:
        """Progress is reported after enumeration and after every stage of a batch."""
        h = _Harness(
            await _seeded(repository), generator, spider_config, FakeJobBoard(12), batch_size=5
        )
        await h.orchestrator.run()

        assert h.events[0] == ProgressEvent(stage="enumeration", current=12, total=12)
        persisting = [(e.current, e.total) for e in h.events if e.stage == "persisting"]
        assert persisting == [(5, 12), (10, 12), (12, 12)]
        assert len(h.events) == 1 + 3 * 3


@pytest.mark.unit
class TestErrorPolicy:
    """Test continue-on-error and halt-on-error."""

    @pytest.mark.asyncio
    async def test_continue_isolates_failure(
        self,
        repository: SqlRepository,
        generator: EmbeddingGenerator,
        spider_config: SpiderConfig,
    ) -> None:
        """A failed item is recorded and the rest of the batch is persisted."""
        h = _Harness(
            await _seeded(repository),
            generator,
            spider_config,
            FakeJobBoard(5),
            analyzer=FakeAnalyzer(fail_ids={listing_id_for(3)}),
        )

        result = await h.orchestrator.run()

        assert result.status == "completed"
        assert result.persisted_ids == [listing_id_for(i) for i in (1, 2, 4, 5)]
        [error] = result.metrics.errors
        assert error.stage == "analysis"
        assert error.listing_id == listing_id_for(3)

    @pytest.mark.asyncio
    async def test_isolated_failure_retried_next_run(
        self,
        repository: SqlRepository,
        generator: EmbeddingGenerator,
        spider_config: SpiderConfig,
    ) -> None:
        """The checkpoint stops short of a failed item so the next run picks it up."""
        analyzer = FakeAnalyzer(fail_ids={listing_id_for(3)})
        h = _Harness(
            await _seeded(repository), generator, spider_config, FakeJobBoard(5), analyzer=analyzer
        )

        first = await h.orchestrator.run()
        analyzer.fail_ids.clear()
        second = await h.orchestrator.run()

        assert first.checkpoint_after == BASE_MODIFIED + timedelta(hours=2)
        assert second.listings_selected == 3
        assert listing_id_for(3) in second.persisted_ids
        assert second.checkpoint_after == BASE_MODIFIED + timedelta(hours=5)
        assert await repository.count_records() == 5

    @pytest.mark.asyncio
    async def test_halt_stops_at_first_failure(
        self,
        repository: SqlRepository,
        generator: EmbeddingGenerator,
        spider_config: SpiderConfig,
    ) -> None:
        """Items before the failure are persisted; the run fails."""
        h = _Harness(
            await _seeded(repository),
            generator,
            spider_config,
            FakeJobBoard(5),
            analyzer=FakeAnalyzer(fail_ids={listing_id_for(3)}),
        )

        result = await h.orchestrator.run(RunOptions(continue_on_error=False))

        assert result.status == "failed"
        assert result.persisted_ids == [listing_id_for(1), listing_id_for(2)]
        assert listing_id_for(3) in (result.failure_reason or "")
        assert result.checkpoint_after == BASE_MODIFIED + timedelta(hours=2)
        assert h.orchestrator.status == PipelineStatus.FAILED
        assert await repository.count_records() == 2

    @pytest.mark.asyncio
    async def test_halt_skips_later_batches(
        self,
        repository: SqlRepository,
        generator: EmbeddingGenerator,
        spider_config: SpiderConfig,
    ) -> None:
        """No batch after the halting one is fetched."""
        h = _Harness(
            await _seeded(repository),
            generator,
            spider_config,
            FakeJobBoard(10),
            analyzer=FakeAnalyzer(fail_ids={listing_id_for(2)}),
            batch_size=3,
        )

        result = await h.orchestrator.run(RunOptions(continue_on_error=False))

        assert result.persisted_ids == [listing_id_for(1)]
        assert len(h.fetchers[0].detail_requests()) == 3

    @pytest.mark.asyncio
    async def test_fetch_failure_isolated(
        self,
        repository: SqlRepository,
        generator: EmbeddingGenerator,
        spider_config: SpiderConfig,
    ) -> None:
        """A detail page that never loads becomes an acquisition error."""
        h = _Harness(
            await _seeded(repository),
            generator,
            spider_config,
            FakeJobBoard(5),
            failures={listing_id_for(3): always_failing()},
        )

        result = await h.orchestrator.run()

        assert result.status == "completed"
        assert len(result.persisted_ids) == 4
        assert result.metrics.stages["acquisition"].failed == 1
        assert result.metrics.errors[0].stage == "acquisition"
        assert listing_id_for(3) not in h.analyzer.calls

    @pytest.mark.asyncio
    async def test_fetch_failure_halts_before_processing(
        self,
        repository: SqlRepository,
        generator: EmbeddingGenerator,
        spider_config: SpiderConfig,
    ) -> None:
        """Under halt-on-error nothing after a failed fetch is classified."""
        h = _Harness(
            await _seeded(repository),
            generator,
            spider_config,
            FakeJobBoard(5),
            failures={listing_id_for(3): always_failing()},
        )

        result = await h.orchestrator.run(RunOptions(continue_on_error=False))

        assert result.status == "failed"
        assert h.analyzer.calls == [listing_id_for(1), listing_id_for(2)]
        assert result.persisted_ids == [listing_id_for(1), listing_id_for(2)]

    @pytest.mark.asyncio
    async def test_unreachable_store_is_fatal(
        self,
        tmp_path: Path,
        generator: EmbeddingGenerator,
        spider_config: SpiderConfig,
    ) -> None:
        """A failed initialize fails the run before any listing is fetched."""
        repository = SqlRepository(f"sqlite+aiosqlite:///{tmp_path}/missing/dir/staging.db")
        h = _Harness(
            repository,
            generator,
            spider_config,
            FakeJobBoard(5),
            cache=CapabilityEmbeddingCache(generator.embed),
        )

        result = await h.orchestrator.run()
        await h.orchestrator.close()

        assert result.status == "failed"
        assert h.fetchers == []
        [error] = result.metrics.errors
        assert error.is_fatal
        assert error.stage == "pipeline"
        assert error.error_type == "ConnectivityError"
        assert h.orchestrator.status == PipelineStatus.FAILED


@pytest.mark.unit
class TestControl:
    """Test stop, pause and resume."""

    @pytest.mark.asyncio
    async def test_stop_finishes_current_batch(
        self,
        repository: SqlRepository,
        generator: EmbeddingGenerator,
        spider_config: SpiderConfig,
    ) -> None:
        """stop() lets the batch in flight finish and releases the fetcher once."""
        holder: list[Orchestrator] = []

        def _stop_after_first(event: ProgressEvent) -> None:
            if event.stage == "persisting" and event.current == 10:
                holder[0].stop()

        h = _Harness(
            await _seeded(repository),
            generator,
            spider_config,
            FakeJobBoard(30),
            progress_callback=_stop_after_first,
        )
        holder.append(h.orchestrator)

        result = await h.orchestrator.run()

        assert result.status == "stopped"
        assert len(result.persisted_ids) == 10
        assert result.checkpoint_after == BASE_MODIFIED + timedelta(hours=10)
        assert h.orchestrator.status == PipelineStatus.STOPPED
        assert h.fetchers[0].close_calls == 1

    @pytest.mark.asyncio
    async def test_pause_and_resume(
        self,
        repository: SqlRepository,
        generator: EmbeddingGenerator,
        spider_config: SpiderConfig,
    ) -> None:
        """A paused run waits at the batch boundary and refuses a second run."""
        holder: list[Orchestrator] = []

        def _pause_after_first(event: ProgressEvent) -> None:
            if event.stage == "persisting" and event.current == 10:
                holder[0].pause()

        h = _Harness(
            await _seeded(repository),
            generator,
            spider_config,
            FakeJobBoard(20),
            progress_callback=_pause_after_first,
        )
        orchestrator = h.orchestrator
        holder.append(orchestrator)

        task = asyncio.create_task(orchestrator.run())
        for _ in range(500):
            if orchestrator.status == PipelineStatus.PAUSED:
                break
            await asyncio.sleep(0.01)

        assert orchestrator.status == PipelineStatus.PAUSED
        assert orchestrator.metrics().stages["storage"].succeeded == 10
        with pytest.raises(InvalidTransitionError):
            await orchestrator.run()

        orchestrator.resume()
        result = await task

        assert result.status == "completed"
        assert len(result.persisted_ids) == 20
        assert PipelineStatus.PAUSED in orchestrator.history

    @pytest.mark.asyncio
    async def test_stop_while_paused(
        self,
        repository: SqlRepository,
        generator: EmbeddingGenerator,
        spider_config: SpiderConfig,
    ) -> None:
        """stop() releases a paused run, which ends stopped."""
        holder: list[Orchestrator] = []

        def _pause_after_first(event: ProgressEvent) -> None:
            if event.stage == "persisting" and event.current == 10:
                holder[0].pause()

        h = _Harness(
            await _seeded(repository),
            generator,
            spider_config,
            FakeJobBoard(20),
            progress_callback=_pause_after_first,
        )
        orchestrator = h.orchestrator
        holder.append(orchestrator)

        task = asyncio.create_task(orchestrator.run())
        for _ in range(500):
            if orchestrator.status == PipelineStatus.PAUSED:
                break
            await asyncio.sleep(0.01)
        orchestrator.stop()
        result = await task

        assert result.status == "stopped"
        assert len(result.persisted_ids) == 10


@pytest.mark.unit
class TestRunModes:
    """Test skip flags and migration."""

    @pytest.mark.asyncio
    async def test_skip_storage(
        self,
        repository: SqlRepository,
        generator: EmbeddingGenerator,
        spider_config: SpiderConfig,
    ) -> None:
        """Records are built but nothing is written."""
        h = _Harness(await _seeded(repository), generator, spider_config, FakeJobBoard(5))

        result = await h.orchestrator.run(RunOptions(skip_storage=True))

        assert result.status == "completed"
        assert result.metrics.stages["processing"].succeeded == 5
        assert result.persisted_ids == []
        assert result.checkpoint_after is None
        assert await repository.count_records() == 0
        catalog = await repository.get_capability_catalog()
        assert all(c.embedding is None for c in catalog)

    @pytest.mark.asyncio
    async def test_skip_processing(
        self,
        repository: SqlRepository,
        generator: EmbeddingGenerator,
        spider_config: SpiderConfig,
    ) -> None:
        """Only acquisition runs."""
        h = _Harness(await _seeded(repository), generator, spider_config, FakeJobBoard(5))

        result = await h.orchestrator.run(RunOptions(skip_processing=True))

        assert result.status == "completed"
        assert result.metrics.stages["acquisition"].succeeded == 5
        assert h.analyzer.calls == []
        assert generator.calls == 0
        assert await repository.count_records() == 0
        assert PipelineStatus.PROCESSING not in h.orchestrator.history

    @pytest.mark.asyncio
    async def test_migrate_to_live(
        self,
        repository: SqlRepository,
        generator: EmbeddingGenerator,
        spider_config: SpiderConfig,
    ) -> None:
        """Persisted records are promoted when migration is requested."""
        h = _Harness(await _seeded(repository), generator, spider_config, FakeJobBoard(5))

        result = await h.orchestrator.run(RunOptions(migrate_to_live=True))

        assert sorted(result.promoted_ids) == sorted(result.persisted_ids)
        assert await repository.count_records(live=True) == 5
        assert result.metrics.stages["migration"].succeeded == 5

    @pytest.mark.asyncio
    async def test_no_migration_by_default(
        self,
        repository: SqlRepository,
        generator: EmbeddingGenerator,
        spider_config: SpiderConfig,
    ) -> None:
        """Records stay in staging unless migration is requested."""
        h = _Harness(await _seeded(repository), generator, spider_config, FakeJobBoard(5))
        result = await h.orchestrator.run()

        assert result.promoted_ids == []
        assert await repository.count_records(live=True) == 0
