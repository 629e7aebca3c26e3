"""Enriched record repository: the record row plus its role links."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import Any
from uuid import uuid5

from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from jobs_etl_core.constants import SKILL_NAMESPACE
from jobs_etl_core.models.listing import ListingDetail
from jobs_etl_core.models.record import (
    Classification,
    EmbeddingSet,
    EnrichedRecord,
    ProcessingMetadata,
)
from jobs_etl_infra.db.models import (
    Base,
    EnrichedRecordModel,
    RoleCapabilityModel,
    RoleSkillModel,
    RoleTaxonomyModel,
    SkillModel,
)
from jobs_etl_infra.db.upsert import aware_utc, naive_utc, upsert_rows

# Link tables carry a surrogate autoincrement key that never crosses stores
_LINK_TABLES: tuple[tuple[type[Base], list[str]], ...] = (
    (RoleCapabilityModel, ["role_id", "capability_id"]),
    (RoleSkillModel, ["role_id", "skill_id"]),
    (RoleTaxonomyModel, ["role_id", "taxonomy_id"]),
)


def skill_id_for(phrase: str) -> str:
    """Deterministic skill identifier for a phrase."""
    return str(uuid5(SKILL_NAMESPACE, phrase.strip().lower()))


class RecordRepository:
    """Idempotent writes and reads of enriched records."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize with an async session."""
        self._session = session

    async def upsert(self, record: EnrichedRecord) -> None:
        """Write the record row and its links; links the listing no longer has are dropped."""
        classification = record.classification
        role_id = classification.role_id
        now = naive_utc(datetime.now(UTC))

        await upsert_rows(
            self._session, EnrichedRecordModel, [_record_row(record, now)], ["listing_id"]
        )
        await self._prune_links(
            record.listing_id,
            role_id,
            {
                RoleCapabilityModel: {m.capability_id for m in classification.capabilities},
                RoleSkillModel: {skill_id_for(p) for p in classification.skills},
                RoleTaxonomyModel: set(classification.taxonomy_ids),
            },
        )

        await upsert_rows(
            self._session,
            RoleCapabilityModel,
            [
                {
                    "role_id": role_id,
                    "capability_id": match.capability_id,
                    "level": match.level.value,
                    "relevance": match.relevance,
                    "listing_id": record.listing_id,
                }
                for match in classification.capabilities
            ],
            ["role_id", "capability_id"],
        )

        technical = {s.strip().lower() for s in classification.technical_skills}
        skill_rows: list[dict[str, Any]] = []
        link_rows: list[dict[str, Any]] = []
        for phrase in classification.skills:
            skill_id = skill_id_for(phrase)
            vector = record.embeddings.skills.get(phrase)
            skill_rows.append(
                {
                    "id": skill_id,
                    "name": phrase,
                    "embedding_json": _dump_vector(vector),
                    "updated_at": now,
                }
            )
            link_rows.append(
                {
                    "role_id": role_id,
                    "skill_id": skill_id,
                    "skill_type": "technical" if phrase.lower() in technical else "soft",
                    "listing_id": record.listing_id,
                }
            )
        await upsert_rows(self._session, SkillModel, skill_rows, ["id"])
        await upsert_rows(self._session, RoleSkillModel, link_rows, ["role_id", "skill_id"])

        await upsert_rows(
            self._session,
            RoleTaxonomyModel,
            [
                {"role_id": role_id, "taxonomy_id": tid, "listing_id": record.listing_id}
                for tid in classification.taxonomy_ids
            ],
            ["role_id", "taxonomy_id"],
        )
        await self._session.flush()

    async def _prune_links(
        self, listing_id: str, role_id: str, current: dict[type[Base], set[str]]
    ) -> None:
        """Delete a listing's links that its latest classification no longer has."""
        for model, key in _LINK_TABLES:
            keep = current.get(model, set())
            stmt = delete(model).where(model.listing_id == listing_id)  # type: ignore[attr-defined]
            if keep:
                stmt = stmt.where(
                    or_(
                        model.role_id != role_id,  # type: ignore[attr-defined]
                        getattr(model, key[1]).not_in(keep),
                    )
                )
            await self._session.execute(stmt)

    async def get(self, listing_id: str) -> EnrichedRecord | None:
        """Rebuild a stored record, or None when absent."""
        row = await self._session.get(EnrichedRecordModel, listing_id)
        if row is None:
            return None
        metadata = ProcessingMetadata(
            processed_at=aware_utc(row.processed_at),
            pipeline_version=row.pipeline_version,
            status=row.status,
            duration_seconds=row.duration_seconds,
        )
        return EnrichedRecord(
            detail=ListingDetail.model_validate(row.detail_json),
            classification=Classification.model_validate(row.classification_json),
            embeddings=EmbeddingSet.model_validate_json(row.embedding_json),
            metadata=metadata,
        )

    async def count(self) -> int:
        """Number of stored records."""
        result = await self._session.execute(
            select(func.count()).select_from(EnrichedRecordModel)
        )
        return int(result.scalar_one())

    async def count_links(self, role_id: str) -> dict[str, int]:
        """Link counts for a role, keyed by table name."""
        counts: dict[str, int] = {}
        for model, _ in _LINK_TABLES:
            stmt = select(func.count()).select_from(model).where(model.role_id == role_id)  # type: ignore[attr-defined]
            result = await self._session.execute(stmt)
            counts[model.__tablename__] = int(result.scalar_one())
        return counts

    async def export_rows(self, listing_ids: list[str]) -> dict[type[Base], list[dict[str, Any]]]:
        """Raw column values of the records and links for the given listings."""
        exported: dict[type[Base], list[dict[str, Any]]] = {}

        records = await self._session.execute(
            select(EnrichedRecordModel).where(EnrichedRecordModel.listing_id.in_(listing_ids))
        )
        exported[EnrichedRecordModel] = [_row_values(r) for r in records.scalars().all()]

        skill_ids: set[str] = set()
        for model, _ in _LINK_TABLES:
            result = await self._session.execute(
                select(model).where(model.listing_id.in_(listing_ids))  # type: ignore[attr-defined]
            )
            rows = [_row_values(r, exclude=("id",)) for r in result.scalars().all()]
            exported[model] = rows
            if model is RoleSkillModel:
                skill_ids.update(r["skill_id"] for r in rows)

        skills = await self._session.execute(
            select(SkillModel).where(SkillModel.id.in_(skill_ids))
        )
        exported[SkillModel] = [_row_values(s) for s in skills.scalars().all()]
        return exported

    async def import_rows(self, exported: dict[type[Base], list[dict[str, Any]]]) -> None:
        """Upsert rows produced by ``export_rows`` (on another store)."""
        await upsert_rows(
            self._session, EnrichedRecordModel, exported.get(EnrichedRecordModel, []), ["listing_id"]
        )
        await upsert_rows(self._session, SkillModel, exported.get(SkillModel, []), ["id"])
        for row in exported.get(EnrichedRecordModel, []):
            listing_id = row["listing_id"]
            await self._prune_links(
                listing_id,
                row["role_id"],
                {
                    model: {
                        link[key[1]]
                        for link in exported.get(model, [])
                        if link["listing_id"] == listing_id
                    }
                    for model, key in _LINK_TABLES
                },
            )
        for model, key in _LINK_TABLES:
            await upsert_rows(self._session, model, exported.get(model, []), key)
        await self._session.flush()


def _record_row(record: EnrichedRecord, now: datetime | None) -> dict[str, Any]:
    detail = record.detail
    return {
        "listing_id": detail.listing_id,
        "title": detail.title,
        "organisation": detail.organisation,
        "locations_json": list(detail.locations),
        "posted_at": detail.posted_at,
        "closing_at": detail.closing_at,
        "modified_at": naive_utc(detail.modified_at),
        "detail_url": detail.detail_url,
        "detail_json": detail.model_dump(mode="json"),
        "role_id": record.classification.role_id,
        "summary": record.classification.summary or None,
        "classification_json": record.classification.model_dump(mode="json"),
        "embedding_json": record.embeddings.model_dump_json(),
        "pipeline_version": record.metadata.pipeline_version,
        "status": record.metadata.status,
        "processed_at": naive_utc(record.metadata.processed_at),
        "duration_seconds": record.metadata.duration_seconds,
        "updated_at": now,
    }


def _row_values(row: Base, exclude: tuple[str, ...] = ()) -> dict[str, Any]:
    return {
        col.key: getattr(row, col.key)
        for col in row.__table__.columns
        if col.key not in exclude
    }


def _dump_vector(vector: list[float] | None) -> str | None:
    if vector is None:
        return None
    return json.dumps(vector)
