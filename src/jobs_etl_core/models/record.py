"""Enriched record, the terminal artifact written to the staging store."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Literal

from pydantic import BaseModel, Field, ValidationInfo, model_validator

from jobs_etl_core.models.capability import CapabilityMatch
from jobs_etl_core.models.listing import ListingDetail


class Classification(BaseModel):
    """Analyzer output for one listing."""

    capabilities: list[CapabilityMatch] = Field(default_factory=list)
    technical_skills: list[str] = Field(default_factory=list)
    soft_skills: list[str] = Field(default_factory=list)
    taxonomy_ids: list[str] = Field(default_factory=list, description="Resolved taxonomy ids")
    role_id: str = Field(description="Resolved role identifier")
    summary: str = Field(default="", description="One or two sentence role summary")

    @property
    def skills(self) -> list[str]:
        """Distinct skill phrases, technical first, original order kept."""
        seen: set[str] = set()
        ordered: list[str] = []
        for phrase in [*self.technical_skills, *self.soft_skills]:
            key = phrase.strip().lower()
            if key and key not in seen:
                seen.add(key)
                ordered.append(phrase.strip())
        return ordered


class EmbeddingSet(BaseModel):
    """Vectors attached to an enriched record."""

    job: list[float] = Field(description="Embedding of the listing description")
    capabilities: dict[str, list[float]] = Field(
        default_factory=dict, description="capability_id -> catalog embedding"
    )
    skills: dict[str, list[float]] = Field(
        default_factory=dict, description="skill phrase -> embedding"
    )

    def dimensions(self) -> set[int]:
        """Distinct vector lengths across the whole set."""
        dims = {len(self.job)}
        dims.update(len(v) for v in self.capabilities.values())
        dims.update(len(v) for v in self.skills.values())
        return dims


class ProcessingMetadata(BaseModel):
    """Processing provenance."""

    processed_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    pipeline_version: str = Field(description="Pipeline version that built the record")
    status: Literal["processing", "completed", "failed"] = Field(default="completed")
    duration_seconds: float = Field(default=0.0, ge=0.0)


class EnrichedRecord(BaseModel):
    """Listing detail + classification + embeddings + metadata.

    Pass ``context={"dimension": n}`` to ``model_validate`` to enforce the
    configured vector size.
    """

    detail: ListingDetail
    classification: Classification
    embeddings: EmbeddingSet
    metadata: ProcessingMetadata

    @property
    def listing_id(self) -> str:
        """External identifier of the underlying listing."""
        return self.detail.listing_id

    @model_validator(mode="after")
    def validate_dimension(self, info: ValidationInfo) -> EnrichedRecord:
        """Every vector must have the configured dimensionality."""
        expected = (info.context or {}).get("dimension")
        if expected is None:
            return self
        bad = self.embeddings.dimensions() - {expected}
        if bad:
            msg = f"embedding dimension {sorted(bad)} != configured {expected}"
            raise ValueError(msg)
        return self
