"""Run options, metrics and result models."""

from __future__ import annotations

import threading
from datetime import UTC, date, datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from jobs_etl_core.constants import DEFAULT_CHECKPOINT_SCOPE

ErrorStage = Literal[
    "acquisition",
    "analysis",
    "embedding",
    "storage",
    "checkpoint",
    "migration",
    "pipeline",
]
CountedStage = Literal["acquisition", "processing", "storage", "migration"]
COUNTED_STAGES: tuple[CountedStage, ...] = ("acquisition", "processing", "storage", "migration")


class RunOptions(BaseModel):
    """Immutable options for a single pipeline invocation."""

    model_config = ConfigDict(frozen=True)

    start_date: date | None = Field(default=None, description="Earliest posting date kept")
    end_date: date | None = Field(default=None, description="Latest posting date kept")
    organisations: tuple[str, ...] = Field(
        default=(), description="Organisation allow-list (empty keeps all)"
    )
    locations: tuple[str, ...] = Field(
        default=(), description="Location allow-list (empty keeps all)"
    )
    max_records: int = Field(default=0, ge=0, description="Listing cap, 0 is unlimited")
    skip_processing: bool = Field(default=False, description="Acquisition only")
    skip_storage: bool = Field(default=False, description="No repository writes")
    continue_on_error: bool = Field(
        default=True, description="Isolate per-item failures instead of halting"
    )
    incremental: bool = Field(
        default=True, description="Only consider listings modified since the checkpoint"
    )
    migrate_to_live: bool = Field(
        default=False, description="Promote persisted records to the live store"
    )
    checkpoint_scope: str = Field(default=DEFAULT_CHECKPOINT_SCOPE)

    @model_validator(mode="after")
    def validate_window(self) -> RunOptions:
        """Reject an inverted date window."""
        if self.start_date and self.end_date and self.start_date > self.end_date:
            msg = f"start_date ({self.start_date}) > end_date ({self.end_date})"
            raise ValueError(msg)
        return self


class StageError(BaseModel):
    """Structured record of a failure."""

    stage: ErrorStage = Field(description="Stage the failure belongs to")
    listing_id: str | None = Field(default=None, description="Affected listing, if any")
    error_type: str = Field(description="Exception class name")
    message: str = Field(description="Error description")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    is_fatal: bool = Field(default=False, description="Whether this error stopped the run")

    @classmethod
    def from_exception(
        cls,
        stage: ErrorStage,
        error: BaseException,
        listing_id: str | None = None,
        is_fatal: bool = False,
    ) -> StageError:
        """Build from a caught exception."""
        return cls(
            stage=stage,
            listing_id=listing_id if listing_id is not None else getattr(error, "listing_id", None),
            error_type=type(error).__name__,
            message=str(error),
            is_fatal=is_fatal,
        )


class StageCounts(BaseModel):
    """Attempted / succeeded / failed counters for one stage."""

    attempted: int = 0
    succeeded: int = 0
    failed: int = 0

    @property
    def in_flight(self) -> int:
        """Items started but not yet settled."""
        return self.attempted - self.succeeded - self.failed


class RunMetricsSnapshot(BaseModel):
    """Immutable view of RunMetrics at a point in time."""

    model_config = ConfigDict(frozen=True)

    stages: dict[str, StageCounts]
    errors: list[StageError]
    errors_dropped: int
    started_at: datetime
    finished_at: datetime | None
    average_processing_seconds: float

    @property
    def duration_seconds(self) -> float:
        """Wall time between start and finish (or now)."""
        end = self.finished_at or datetime.now(UTC)
        return (end - self.started_at).total_seconds()


class RunMetrics:
    """Per-run counters shared by concurrent workers.

    Every mutation takes the lock, so increments from parallel tasks (or
    threads used by blocking embedders) are never lost.
    """

    def __init__(self, max_errors: int = 500) -> None:
        """Initialize empty counters."""
        self._lock = threading.Lock()
        self._max_errors = max_errors
        self._stages: dict[str, StageCounts] = {s: StageCounts() for s in COUNTED_STAGES}
        self._errors: list[StageError] = []
        self._errors_dropped = 0
        self._processing_total_seconds = 0.0
        self._processing_samples = 0
        self.started_at = datetime.now(UTC)
        self.finished_at: datetime | None = None

    def record_attempt(self, stage: CountedStage, count: int = 1) -> None:
        """Count items entering a stage."""
        with self._lock:
            self._stages[stage].attempted += count

    def record_success(self, stage: CountedStage, count: int = 1) -> None:
        """Count items leaving a stage successfully."""
        with self._lock:
            self._stages[stage].succeeded += count

    def record_failure(
        self,
        stage: CountedStage,
        error: StageError | None = None,
        count: int = 1,
    ) -> None:
        """Count failed items and keep the structured error."""
        with self._lock:
            self._stages[stage].failed += count
            if error is not None:
                self._append_error(error)

    def record_error(self, error: StageError) -> None:
        """Keep a structured error that has no counter attached."""
        with self._lock:
            self._append_error(error)

    def record_processing_time(self, seconds: float) -> None:
        """Feed the running average of per-item processing time."""
        with self._lock:
            self._processing_total_seconds += seconds
            self._processing_samples += 1

    def finish(self) -> None:
        """Stamp the end of the run."""
        with self._lock:
            self.finished_at = datetime.now(UTC)

    def counts(self, stage: CountedStage) -> StageCounts:
        """Copy of one stage's counters."""
        with self._lock:
            return self._stages[stage].model_copy()

    @property
    def errors(self) -> list[StageError]:
        """Copy of the structured error list."""
        with self._lock:
            return list(self._errors)

    def snapshot(self) -> RunMetricsSnapshot:
        """Consistent copy of every counter."""
        with self._lock:
            average = (
                self._processing_total_seconds / self._processing_samples
                if self._processing_samples
                else 0.0
            )
            return RunMetricsSnapshot(
                stages={k: v.model_copy() for k, v in self._stages.items()},
                errors=list(self._errors),
                errors_dropped=self._errors_dropped,
                started_at=self.started_at,
                finished_at=self.finished_at,
                average_processing_seconds=average,
            )

    def _append_error(self, error: StageError) -> None:
        if len(self._errors) >= self._max_errors:
            self._errors_dropped += 1
            return
        self._errors.append(error)


class FetchErrorRecord(BaseModel):
    """A failed spider request."""

    url: str
    listing_id: str | None = None
    message: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))


class SpiderMetrics(BaseModel):
    """Snapshot of spider activity."""

    total: int = 0
    succeeded: int = 0
    failed: int = 0
    started_at: datetime | None = None
    finished_at: datetime | None = None
    errors: list[FetchErrorRecord] = Field(default_factory=list)


class ProgressEvent(BaseModel):
    """Progress notification emitted by the orchestrator."""

    stage: str
    current: int
    total: int


RunStatus = Literal["completed", "stopped", "failed"]


class RunResult(BaseModel):
    """Summary of a finished (or halted) pipeline run."""

    run_id: str = Field(description="Run identifier")
    status: RunStatus = Field(description="Terminal state of the run")
    metrics: RunMetricsSnapshot = Field(description="Merged per-stage counters and errors")
    spider: SpiderMetrics = Field(default_factory=SpiderMetrics)
    listings_selected: int = Field(default=0, description="Listings in the effective set")
    persisted_ids: list[str] = Field(default_factory=list)
    promoted_ids: list[str] = Field(default_factory=list)
    checkpoint_before: datetime | None = None
    checkpoint_after: datetime | None = None
    failure_reason: str | None = None
    duration_seconds: float = 0.0
    completed_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
