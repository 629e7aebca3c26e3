"""SQL-backed staging/live repository used by the orchestrator."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

import structlog
from sqlalchemy.exc import SQLAlchemyError

from jobs_etl_core.exceptions import (
    CheckpointError,
    ConfigurationError,
    ConnectivityError,
    StorageError,
)
from jobs_etl_core.models.capability import (
    CapabilityDefinition,
    TaxonomyGroup,
    description_hash,
)
from jobs_etl_core.models.record import EnrichedRecord
from jobs_etl_infra.cache.embedding_cache import CapabilityEmbeddingCache, EmbedFn
from jobs_etl_infra.db.engine import create_engine
from jobs_etl_infra.db.models import EnrichedRecordModel
from jobs_etl_infra.db.repositories.checkpoint_repo import CheckpointRepository
from jobs_etl_infra.db.repositories.record_repo import RecordRepository
from jobs_etl_infra.db.repositories.reference_repo import ReferenceRepository
from jobs_etl_infra.db.session import create_session_factory, init_db, ping

if TYPE_CHECKING:
    from jobs_etl_core.config.settings import Settings

logger = structlog.get_logger()


class SqlRepository:
    """Staging receives records, links and checkpoints; live holds the
    reference data and receives promoted records.

    Both stores may share one URL, in which case a single engine is used
    and promotion has nothing to copy.
    """

    def __init__(
        self,
        staging_url: str,
        live_url: str | None = None,
        embed: EmbedFn | None = None,
    ) -> None:
        """Create engines for both stores and the capability embedding cache."""
        self._staging_url = staging_url
        self._live_url = live_url or staging_url
        self._staging_engine = create_engine(staging_url)
        self._live_engine = (
            self._staging_engine
            if self._live_url == staging_url
            else create_engine(self._live_url)
        )
        self._staging = create_session_factory(self._staging_engine)
        self._live = create_session_factory(self._live_engine)
        self.capability_cache: CapabilityEmbeddingCache | None = (
            CapabilityEmbeddingCache(embed, persist=self.save_capability_embedding)
            if embed is not None
            else None
        )
        self._closed = False

    @classmethod
    def from_settings(cls, settings: Settings, embed: EmbedFn | None = None) -> SqlRepository:
        """Build from application settings."""
        return cls(
            staging_url=settings.staging_database_url,
            live_url=settings.live_database_url,
            embed=embed,
        )

    @property
    def same_store(self) -> bool:
        """Staging and live point at the same database."""
        return self._live_engine is self._staging_engine

    async def initialize(self) -> None:
        """Verify both stores answer and create the schema on SQLite."""
        stores = [("staging", self._staging_engine)]
        if not self.same_store:
            stores.append(("live", self._live_engine))
        for name, engine in stores:
            try:
                await ping(engine)
                if engine.dialect.name == "sqlite":
                    await init_db(engine)
            except (SQLAlchemyError, OSError) as e:
                msg = f"{name} store unreachable: {e}"
                raise ConnectivityError(msg) from e
        logger.info("repository_initialized", same_store=self.same_store)

    async def get_capability_catalog(self) -> list[CapabilityDefinition]:
        """Capability framework from the live store."""
        async with self._live() as session:
            return await ReferenceRepository(session).list_capabilities()

    async def get_taxonomy_groups(self) -> list[TaxonomyGroup]:
        """Skill taxonomy from the live store."""
        async with self._live() as session:
            return await ReferenceRepository(session).list_taxonomy_groups()

    async def seed_reference_data(
        self,
        catalog: list[CapabilityDefinition],
        groups: list[TaxonomyGroup],
    ) -> None:
        """Load catalog and taxonomy rows into the live store."""
        async with self._live() as session:
            repo = ReferenceRepository(session)
            await repo.upsert_capabilities(catalog)
            await repo.upsert_taxonomy_groups(groups)
            await session.commit()
        logger.info("reference_data_seeded", capabilities=len(catalog), taxonomy_groups=len(groups))

    async def save_capability_embedding(
        self, capability_id: str, vector: list[float], embedding_hash: str
    ) -> None:
        """Write a capability vector back to the store the catalog came from."""
        try:
            async with self._live() as session:
                await ReferenceRepository(session).save_capability_embedding(
                    capability_id, vector, embedding_hash
                )
                await session.commit()
        except SQLAlchemyError as e:
            msg = f"Failed to store embedding for capability {capability_id}: {e}"
            raise StorageError(msg) from e

    async def fill_missing_capability_embeddings(
        self,
        catalog: list[CapabilityDefinition],
        persist: bool = True,
    ) -> list[CapabilityDefinition]:
        """Embed entries with no current vector (one call each) and return the full catalog."""
        if self.capability_cache is None:
            msg = "SqlRepository was built without an embed function"
            raise ConfigurationError(msg)
        cache = self.capability_cache
        cached = cache.prime(catalog)

        filled: list[CapabilityDefinition] = []
        computed = 0
        for capability in catalog:
            if capability.needs_embedding:
                vector = await cache.get(capability, persist=persist)
                capability = capability.model_copy(
                    update={
                        "embedding": vector,
                        "embedding_hash": description_hash(capability.description),
                    }
                )
                computed += 1
            filled.append(capability)

        logger.info(
            "capability_embeddings_ready",
            total=len(catalog),
            cached=cached,
            computed=computed,
        )
        return filled

    async def upsert_enriched_record(self, record: EnrichedRecord) -> None:
        """Idempotent write of a record and its links into staging."""
        try:
            async with self._staging() as session:
                await RecordRepository(session).upsert(record)
                await session.commit()
        except SQLAlchemyError as e:
            msg = f"Failed to persist listing {record.listing_id}: {e}"
            raise StorageError(msg, listing_id=record.listing_id) from e

    async def get_enriched_record(
        self, listing_id: str, live: bool = False
    ) -> EnrichedRecord | None:
        """Read back a stored record from staging (or live)."""
        factory = self._live if live else self._staging
        async with factory() as session:
            return await RecordRepository(session).get(listing_id)

    async def count_records(self, live: bool = False) -> int:
        """Number of records in staging (or live)."""
        factory = self._live if live else self._staging
        async with factory() as session:
            return await RecordRepository(session).count()

    async def count_links(self, role_id: str, live: bool = False) -> dict[str, int]:
        """Per-table link counts for a role."""
        factory = self._live if live else self._staging
        async with factory() as session:
            return await RecordRepository(session).count_links(role_id)

    async def get_last_checkpoint(self, scope: str) -> datetime | None:
        """Stored checkpoint for a scope."""
        try:
            async with self._staging() as session:
                return await CheckpointRepository(session).get(scope)
        except SQLAlchemyError as e:
            msg = f"Failed to read checkpoint {scope!r}: {e}"
            raise CheckpointError(msg) from e

    async def set_checkpoint(self, scope: str, timestamp: datetime) -> None:
        """Store the checkpoint for a scope."""
        try:
            async with self._staging() as session:
                await CheckpointRepository(session).set(scope, timestamp)
                await session.commit()
        except SQLAlchemyError as e:
            msg = f"Failed to write checkpoint {scope!r}: {e}"
            raise CheckpointError(msg) from e
        logger.info("checkpoint_saved", scope=scope, checkpoint=timestamp.isoformat())

    async def promote_to_live(self, listing_ids: list[str]) -> list[str]:
        """Copy staged records and links to live; return the ids promoted."""
        if not listing_ids:
            return []
        try:
            async with self._staging() as session:
                exported = await RecordRepository(session).export_rows(listing_ids)
            promoted = [row["listing_id"] for row in exported[EnrichedRecordModel]]
            if not self.same_store:
                async with self._live() as session:
                    await RecordRepository(session).import_rows(exported)
                    await session.commit()
        except SQLAlchemyError as e:
            msg = f"Failed to promote {len(listing_ids)} listings: {e}"
            raise StorageError(msg) from e
        logger.info("records_promoted", requested=len(listing_ids), promoted=len(promoted))
        return promoted

    async def cleanup(self) -> None:
        """Dispose of both engines. Safe to call twice."""
        if self._closed:
            return
        self._closed = True
        await self._staging_engine.dispose()
        if not self.same_store:
            await self._live_engine.dispose()
