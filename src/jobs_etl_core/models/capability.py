"""Capability framework and taxonomy reference models."""

from __future__ import annotations

import hashlib
from enum import StrEnum

from pydantic import BaseModel, Field

_LEVEL_ORDER = (
    "foundational",
    "intermediate",
    "adept",
    "advanced",
    "highly_advanced",
)


class ProficiencyLevel(StrEnum):
    """Ordered capability proficiency scale."""

    FOUNDATIONAL = "foundational"
    INTERMEDIATE = "intermediate"
    ADEPT = "adept"
    ADVANCED = "advanced"
    HIGHLY_ADVANCED = "highly_advanced"

    @property
    def rank(self) -> int:
        """Position on the scale, 0 for foundational."""
        return _LEVEL_ORDER.index(self.value)

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, ProficiencyLevel):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, ProficiencyLevel):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, ProficiencyLevel):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, ProficiencyLevel):
            return NotImplemented
        return self.rank >= other.rank

    @classmethod
    def parse(cls, raw: str) -> ProficiencyLevel:
        """Normalise LLM output such as 'Highly Advanced' or 'highly-advanced'."""
        key = raw.strip().lower().replace("-", "_").replace(" ", "_")
        return cls(key)


def description_hash(text: str) -> str:
    """Hash of the text a capability embedding was computed from."""
    return hashlib.sha256(text.strip().encode()).hexdigest()


class CapabilityDefinition(BaseModel):
    """Catalog entry of the capability framework."""

    capability_id: str = Field(description="Stable capability identifier")
    name: str = Field(description="Capability name")
    description: str = Field(description="Capability description text")
    group_name: str = Field(default="", description="Framework group")
    embedding: list[float] | None = Field(
        default=None, description="Precomputed description embedding"
    )
    embedding_hash: str | None = Field(
        default=None, description="Hash of the description the embedding was built from"
    )

    @property
    def needs_embedding(self) -> bool:
        """True when no vector exists or the description changed since it was built."""
        if self.embedding is None:
            return True
        if self.embedding_hash is None:
            return False
        return self.embedding_hash != description_hash(self.description)


class TaxonomyGroup(BaseModel):
    """Skill taxonomy grouping."""

    taxonomy_id: str = Field(description="Stable taxonomy identifier")
    name: str = Field(description="Taxonomy name")
    description: str = Field(default="", description="Taxonomy description")


class CapabilityMatch(BaseModel):
    """A catalog capability matched to a listing."""

    capability_id: str = Field(description="Catalog identifier")
    name: str = Field(description="Capability name")
    level: ProficiencyLevel = Field(description="Required proficiency")
    relevance: float = Field(ge=0.0, le=1.0, description="Ranking score")
