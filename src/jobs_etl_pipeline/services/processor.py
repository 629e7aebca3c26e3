"""Processor: turns a listing detail into an EnrichedRecord."""

from __future__ import annotations

import asyncio
import time
from typing import Protocol

import structlog
from pydantic import ValidationError

from jobs_etl_core.config.components import ProcessorConfig
from jobs_etl_core.exceptions import AnalysisError, EmbeddingError, StorageError
from jobs_etl_core.models.capability import CapabilityDefinition, TaxonomyGroup
from jobs_etl_core.models.listing import ListingDetail
from jobs_etl_core.models.record import (
    Classification,
    EmbeddingSet,
    EnrichedRecord,
    ProcessingMetadata,
)
from jobs_etl_core.models.run import RunMetrics, StageError
from jobs_etl_infra.cache.embedding_cache import CapabilityEmbeddingCache
from jobs_etl_pipeline.tools.embedder import EmbeddingGenerator

logger = structlog.get_logger()


class Analyzer(Protocol):
    """What the processor needs from the enrichment analyzer."""

    async def classify(
        self,
        detail: ListingDetail,
        catalog: list[CapabilityDefinition],
        taxonomy_groups: list[TaxonomyGroup],
    ) -> Classification:
        """Classify one listing."""
        ...


class Processor:
    """Classify, embed and assemble records; failures are isolated per item."""

    def __init__(
        self,
        analyzer: Analyzer,
        embeddings: EmbeddingGenerator,
        capability_cache: CapabilityEmbeddingCache,
        config: ProcessorConfig | None = None,
        metrics: RunMetrics | None = None,
    ) -> None:
        """Initialize with the enrichment collaborators."""
        self._analyzer = analyzer
        self._embeddings = embeddings
        self._cache = capability_cache
        self._config = config or ProcessorConfig()
        self._metrics = metrics or RunMetrics()
        self._catalog: dict[str, CapabilityDefinition] = {}
        self._catalog_list: list[CapabilityDefinition] = []
        self._taxonomy: list[TaxonomyGroup] = []
        self._processed = 0
        self._total_seconds = 0.0

    def bind_metrics(self, metrics: RunMetrics) -> None:
        """Record into the given run's metrics from now on."""
        self._metrics = metrics

    def load_reference_data(
        self,
        catalog: list[CapabilityDefinition],
        taxonomy_groups: list[TaxonomyGroup],
    ) -> None:
        """Set the capability catalog and taxonomy used for classification."""
        self._catalog_list = list(catalog)
        self._catalog = {c.capability_id: c for c in catalog}
        self._taxonomy = list(taxonomy_groups)

    @property
    def average_processing_seconds(self) -> float:
        """Mean wall time of successfully processed items."""
        return self._total_seconds / self._processed if self._processed else 0.0

    async def process_one(self, detail: ListingDetail) -> EnrichedRecord | None:
        """Enrich one listing; None means the failure was recorded and isolated."""
        start = time.monotonic()
        self._metrics.record_attempt("processing")

        try:
            classification = await self._analyzer.classify(
                detail, self._catalog_list, self._taxonomy
            )
        except AnalysisError as e:
            return self._fail("analysis", detail, e)

        try:
            embeddings = await self._embed(detail, classification)
            duration = time.monotonic() - start
            record = EnrichedRecord.model_validate(
                {
                    "detail": detail,
                    "classification": classification,
                    "embeddings": embeddings,
                    "metadata": ProcessingMetadata(
                        pipeline_version=self._config.pipeline_version,
                        status="completed",
                        duration_seconds=duration,
                    ),
                },
                context={"dimension": self._embeddings.dimension},
            )
        except (EmbeddingError, StorageError, ValidationError) as e:
            return self._fail("embedding", detail, e)

        self._processed += 1
        self._total_seconds += duration
        self._metrics.record_success("processing")
        self._metrics.record_processing_time(duration)
        logger.debug(
            "listing_processed",
            listing_id=detail.listing_id,
            duration=round(duration, 2),
        )
        return record

    async def _embed(self, detail: ListingDetail, classification: Classification) -> EmbeddingSet:
        job_vector = await self._embeddings.embed(detail.analysis_text(), listing_id=detail.listing_id)

        capability_vectors: dict[str, list[float]] = {}
        for match in classification.capabilities:
            capability = self._catalog.get(match.capability_id)
            if capability is None:
                continue
            capability_vectors[match.capability_id] = await self._cache.get(capability)

        skills = classification.skills
        skill_vectors = (
            await self._embeddings.embed_batch(skills, listing_id=detail.listing_id)
            if skills
            else []
        )
        return EmbeddingSet(
            job=job_vector,
            capabilities=capability_vectors,
            skills=dict(zip(skills, skill_vectors, strict=True)),
        )

    def _fail(
        self,
        stage: str,
        detail: ListingDetail,
        error: Exception,
    ) -> None:
        self._metrics.record_failure(
            "processing",
            StageError.from_exception(stage, error, listing_id=detail.listing_id),  # type: ignore[arg-type]
        )
        logger.warning(
            "listing_processing_failed",
            listing_id=detail.listing_id,
            stage=stage,
            error_type=type(error).__name__,
            error=str(error),
        )
        return None

    async def process_batch(self, details: list[ListingDetail]) -> list[EnrichedRecord | None]:
        """Process a batch concurrently; one slot per input, same order."""
        semaphore = asyncio.Semaphore(self._config.batch_concurrency)

        async def _bounded(detail: ListingDetail) -> EnrichedRecord | None:
            async with semaphore:
                return await self.process_one(detail)

        return list(await asyncio.gather(*(_bounded(d) for d in details)))
