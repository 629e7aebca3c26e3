"""Domain models for jobs-etl."""

from jobs_etl_core.models.capability import (
    CapabilityDefinition,
    CapabilityMatch,
    ProficiencyLevel,
    TaxonomyGroup,
)
from jobs_etl_core.models.listing import (
    ContactDetails,
    ListingDetail,
    ListingDocument,
    ListingSummary,
)
from jobs_etl_core.models.record import (
    Classification,
    EmbeddingSet,
    EnrichedRecord,
    ProcessingMetadata,
)
from jobs_etl_core.models.run import (
    ProgressEvent,
    RunMetrics,
    RunMetricsSnapshot,
    RunOptions,
    RunResult,
    SpiderMetrics,
    StageCounts,
    StageError,
)

__all__ = [
    "CapabilityDefinition",
    "CapabilityMatch",
    "Classification",
    "ContactDetails",
    "EmbeddingSet",
    "EnrichedRecord",
    "ListingDetail",
    "ListingDocument",
    "ListingSummary",
    "ProcessingMetadata",
    "ProficiencyLevel",
    "ProgressEvent",
    "RunMetrics",
    "RunMetricsSnapshot",
    "RunOptions",
    "RunResult",
    "SpiderMetrics",
    "StageCounts",
    "StageError",
    "TaxonomyGroup",
]
