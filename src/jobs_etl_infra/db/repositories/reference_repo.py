"""Capability framework and taxonomy reference data repository."""

from __future__ import annotations

import json
from datetime import UTC, datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from jobs_etl_core.models.capability import CapabilityDefinition, TaxonomyGroup
from jobs_etl_infra.db.models import CapabilityModel, TaxonomyGroupModel
from jobs_etl_infra.db.upsert import naive_utc, upsert_rows


class ReferenceRepository:
    """Reads and seeds the capability catalog and taxonomy groups."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize with an async session."""
        self._session = session

    async def list_capabilities(self) -> list[CapabilityDefinition]:
        """All catalog entries ordered by id."""
        result = await self._session.execute(select(CapabilityModel).order_by(CapabilityModel.id))
        return [
            CapabilityDefinition(
                capability_id=row.id,
                name=row.name,
                description=row.description,
                group_name=row.group_name,
                embedding=json.loads(row.embedding_json) if row.embedding_json else None,
                embedding_hash=row.embedding_hash,
            )
            for row in result.scalars().all()
        ]

    async def list_taxonomy_groups(self) -> list[TaxonomyGroup]:
        """All taxonomy groups ordered by id."""
        result = await self._session.execute(
            select(TaxonomyGroupModel).order_by(TaxonomyGroupModel.id)
        )
        return [
            TaxonomyGroup(taxonomy_id=row.id, name=row.name, description=row.description)
            for row in result.scalars().all()
        ]

    async def save_capability_embedding(
        self, capability_id: str, vector: list[float], embedding_hash: str
    ) -> None:
        """Store a computed vector keyed by capability id."""
        stmt = (
            update(CapabilityModel)
            .where(CapabilityModel.id == capability_id)
            .values(
                embedding_json=json.dumps(vector),
                embedding_hash=embedding_hash,
                updated_at=naive_utc(datetime.now(UTC)),
            )
        )
        await self._session.execute(stmt)

    async def upsert_capabilities(self, catalog: list[CapabilityDefinition]) -> None:
        """Seed or refresh catalog entries."""
        await upsert_rows(
            self._session,
            CapabilityModel,
            [
                {
                    "id": c.capability_id,
                    "name": c.name,
                    "description": c.description,
                    "group_name": c.group_name,
                    "embedding_json": json.dumps(c.embedding) if c.embedding else None,
                    "embedding_hash": c.embedding_hash,
                    "updated_at": naive_utc(datetime.now(UTC)),
                }
                for c in catalog
            ],
            ["id"],
        )

    async def upsert_taxonomy_groups(self, groups: list[TaxonomyGroup]) -> None:
        """Seed or refresh taxonomy groups."""
        await upsert_rows(
            self._session,
            TaxonomyGroupModel,
            [
                {"id": g.taxonomy_id, "name": g.name, "description": g.description}
                for g in groups
            ],
            ["id"],
        )
