"""SQLAlchemy ORM table models.

The same schema backs the staging and the live store. Reference tables
(capabilities, taxonomy_groups) are read from live; everything else is
written to staging and copied to live on promotion.
"""

from __future__ import annotations

from datetime import UTC, date, datetime

from sqlalchemy import (
    Date,
    DateTime,
    Float,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import JSON


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all ORM models."""


class EnrichedRecordModel(Base):
    """One enriched listing, keyed by its external listing id."""

    __tablename__ = "enriched_records"

    listing_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    organisation: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    locations_json: Mapped[list] = mapped_column(JSON, nullable=False)  # type: ignore[type-arg]
    posted_at: Mapped[date | None] = mapped_column(Date, nullable=True)
    closing_at: Mapped[date | None] = mapped_column(Date, nullable=True)
    modified_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True, index=True)
    detail_url: Mapped[str] = mapped_column(String(2048), nullable=False)
    detail_json: Mapped[dict] = mapped_column(JSON, nullable=False)  # type: ignore[type-arg]
    role_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    classification_json: Mapped[dict] = mapped_column(JSON, nullable=False)  # type: ignore[type-arg]
    embedding_json: Mapped[str] = mapped_column(Text, nullable=False)
    pipeline_version: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    processed_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    duration_seconds: Mapped[float] = mapped_column(Float, default=0.0)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=_utcnow, onupdate=_utcnow
    )


class CapabilityModel(Base):
    """Capability framework catalog entry."""

    __tablename__ = "capabilities"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    group_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    embedding_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    embedding_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=_utcnow, onupdate=_utcnow
    )


class TaxonomyGroupModel(Base):
    """Skill taxonomy group."""

    __tablename__ = "taxonomy_groups"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")


class SkillModel(Base):
    """Distinct skill phrase with its latest embedding."""

    __tablename__ = "skills"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    embedding_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=_utcnow, onupdate=_utcnow
    )


class RoleCapabilityModel(Base):
    """Role to capability link, unique per (role_id, capability_id)."""

    __tablename__ = "role_capabilities"
    __table_args__ = (UniqueConstraint("role_id", "capability_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    role_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    capability_id: Mapped[str] = mapped_column(String(64), nullable=False)
    level: Mapped[str] = mapped_column(String(30), nullable=False)
    relevance: Mapped[float] = mapped_column(Float, nullable=False)
    listing_id: Mapped[str] = mapped_column(String(64), nullable=False)


class RoleSkillModel(Base):
    """Role to skill link, unique per (role_id, skill_id)."""

    __tablename__ = "role_skills"
    __table_args__ = (UniqueConstraint("role_id", "skill_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    role_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    skill_id: Mapped[str] = mapped_column(String(36), nullable=False)
    skill_type: Mapped[str] = mapped_column(String(20), nullable=False)
    listing_id: Mapped[str] = mapped_column(String(64), nullable=False)


class RoleTaxonomyModel(Base):
    """Role to taxonomy group link, unique per (role_id, taxonomy_id)."""

    __tablename__ = "role_taxonomies"
    __table_args__ = (UniqueConstraint("role_id", "taxonomy_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    role_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    taxonomy_id: Mapped[str] = mapped_column(String(64), nullable=False)
    listing_id: Mapped[str] = mapped_column(String(64), nullable=False)


class SyncCheckpointModel(Base):
    """Highest modification time fully persisted, per scope."""

    __tablename__ = "sync_checkpoints"

    scope: Mapped[str] = mapped_column(String(100), primary_key=True)
    last_modified_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=_utcnow, onupdate=_utcnow
    )
