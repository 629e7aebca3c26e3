"""Pipeline state machine: status values and the legal transitions between them."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum

from jobs_etl_core.exceptions import InvalidTransitionError


class PipelineStatus(StrEnum):
    """Lifecycle states of one pipeline run."""

    IDLE = "idle"
    ACQUIRING = "acquiring"
    PROCESSING = "processing"
    PERSISTING = "persisting"
    PAUSED = "paused"
    STOPPED = "stopped"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        """No transition leaves this state except a reset to idle."""
        return self in TERMINAL_STATES

    @property
    def is_active(self) -> bool:
        """The run is doing work."""
        return self in ACTIVE_STATES


ACTIVE_STATES = frozenset(
    {PipelineStatus.ACQUIRING, PipelineStatus.PROCESSING, PipelineStatus.PERSISTING}
)
TERMINAL_STATES = frozenset(
    {PipelineStatus.COMPLETED, PipelineStatus.FAILED, PipelineStatus.STOPPED}
)

TRANSITIONS: dict[PipelineStatus, frozenset[PipelineStatus]] = {
    PipelineStatus.IDLE: frozenset({PipelineStatus.ACQUIRING, PipelineStatus.FAILED}),
    PipelineStatus.ACQUIRING: frozenset(
        {
            PipelineStatus.PROCESSING,
            PipelineStatus.PERSISTING,
            PipelineStatus.COMPLETED,
            PipelineStatus.FAILED,
            PipelineStatus.PAUSED,
            PipelineStatus.STOPPED,
        }
    ),
    PipelineStatus.PROCESSING: frozenset(
        {
            PipelineStatus.PERSISTING,
            PipelineStatus.ACQUIRING,
            PipelineStatus.COMPLETED,
            PipelineStatus.FAILED,
            PipelineStatus.PAUSED,
            PipelineStatus.STOPPED,
        }
    ),
    PipelineStatus.PERSISTING: frozenset(
        {
            PipelineStatus.ACQUIRING,
            PipelineStatus.COMPLETED,
            PipelineStatus.FAILED,
            PipelineStatus.PAUSED,
            PipelineStatus.STOPPED,
        }
    ),
    PipelineStatus.PAUSED: frozenset(
        {
            PipelineStatus.ACQUIRING,
            PipelineStatus.PROCESSING,
            PipelineStatus.PERSISTING,
            PipelineStatus.STOPPED,
            PipelineStatus.FAILED,
        }
    ),
    PipelineStatus.COMPLETED: frozenset({PipelineStatus.IDLE}),
    PipelineStatus.FAILED: frozenset({PipelineStatus.IDLE}),
    PipelineStatus.STOPPED: frozenset({PipelineStatus.IDLE}),
}


def can_transition(current: PipelineStatus, target: PipelineStatus) -> bool:
    """Whether ``current -> target`` is a legal move."""
    return target in TRANSITIONS[current]


@dataclass
class PipelineState:
    """Mutable run state owned by the orchestrator."""

    status: PipelineStatus = PipelineStatus.IDLE
    resume_status: PipelineStatus | None = None
    history: list[tuple[PipelineStatus, datetime]] = field(default_factory=list)

    def transition(self, target: PipelineStatus) -> None:
        """Move to ``target`` or raise InvalidTransitionError."""
        if not can_transition(self.status, target):
            msg = f"Illegal transition {self.status.value} -> {target.value}"
            raise InvalidTransitionError(msg)
        if target == PipelineStatus.PAUSED:
            self.resume_status = self.status
        elif self.status == PipelineStatus.PAUSED:
            self.resume_status = None
        self.status = target
        self.history.append((target, datetime.now(UTC)))

    def reset(self) -> None:
        """Return a terminal state machine to idle for the next run."""
        if self.status != PipelineStatus.IDLE:
            self.transition(PipelineStatus.IDLE)
        self.history.clear()
        self.resume_status = None
