"""Abstract repository interface."""

from __future__ import annotations

from datetime import datetime
from typing import Protocol, runtime_checkable

from jobs_etl_core.models.capability import CapabilityDefinition, TaxonomyGroup
from jobs_etl_core.models.record import EnrichedRecord


@runtime_checkable
class Repository(Protocol):
    """Staging/live persistence used by the orchestrator."""

    async def initialize(self) -> None:
        """Verify connectivity to both stores and prepare the schema."""
        ...

    async def get_capability_catalog(self) -> list[CapabilityDefinition]:
        """Load the capability framework from the live store."""
        ...

    async def get_taxonomy_groups(self) -> list[TaxonomyGroup]:
        """Load the skill taxonomy from the live store."""
        ...

    async def fill_missing_capability_embeddings(
        self, catalog: list[CapabilityDefinition], persist: bool = True
    ) -> list[CapabilityDefinition]:
        """Compute vectors for entries that lack a current one; store them unless told not to."""
        ...

    async def upsert_enriched_record(self, record: EnrichedRecord) -> None:
        """Idempotently write a record and its links to staging."""
        ...

    async def get_last_checkpoint(self, scope: str) -> datetime | None:
        """Return the stored checkpoint for a scope, if any."""
        ...

    async def set_checkpoint(self, scope: str, timestamp: datetime) -> None:
        """Store the checkpoint for a scope."""
        ...

    async def promote_to_live(self, listing_ids: list[str]) -> list[str]:
        """Copy staged records to the live store; return the ids promoted."""
        ...

    async def cleanup(self) -> None:
        """Dispose of engines."""
        ...
