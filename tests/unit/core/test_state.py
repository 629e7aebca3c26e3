"""Tests for the pipeline state machine."""

from __future__ import annotations

import pytest

from jobs_etl_core.exceptions import InvalidTransitionError
from jobs_etl_core.state import (
    TRANSITIONS,
    PipelineState,
    PipelineStatus,
    can_transition,
)


@pytest.mark.unit
class TestTransitions:
    """Test the transition table."""

    def test_happy_path(self) -> None:
        """Idle -> Acquiring -> Processing -> Persisting -> Completed."""
        state = PipelineState()
        for target in (
            PipelineStatus.ACQUIRING,
            PipelineStatus.PROCESSING,
            PipelineStatus.PERSISTING,
            PipelineStatus.COMPLETED,
        ):
            state.transition(target)
        assert state.status == PipelineStatus.COMPLETED
        assert [s for s, _ in state.history][-1] == PipelineStatus.COMPLETED

    def test_batches_loop_back_to_acquiring(self) -> None:
        """Persisting may start the next batch."""
        assert can_transition(PipelineStatus.PERSISTING, PipelineStatus.ACQUIRING)

    @pytest.mark.parametrize(
        "status",
        [PipelineStatus.ACQUIRING, PipelineStatus.PROCESSING, PipelineStatus.PERSISTING],
    )
    def test_failed_reachable_from_active(self, status: PipelineStatus) -> None:
        """Every active state may fail, pause or stop."""
        assert can_transition(status, PipelineStatus.FAILED)
        assert can_transition(status, PipelineStatus.PAUSED)
        assert can_transition(status, PipelineStatus.STOPPED)

    def test_terminal_states_only_reset(self) -> None:
        """Terminal states lead only back to idle."""
        for status in (PipelineStatus.COMPLETED, PipelineStatus.FAILED, PipelineStatus.STOPPED):
            assert status.is_terminal
            assert TRANSITIONS[status] == frozenset({PipelineStatus.IDLE})

    def test_illegal_transition_raises(self) -> None:
        """Idle cannot jump to persisting."""
        state = PipelineState()
        with pytest.raises(InvalidTransitionError, match="idle -> persisting"):
            state.transition(PipelineStatus.PERSISTING)
        assert state.status == PipelineStatus.IDLE

    def test_every_status_has_an_entry(self) -> None:
        """The table covers every status."""
        assert set(TRANSITIONS) == set(PipelineStatus)


@pytest.mark.unit
class TestPauseResume:
    """Test pause bookkeeping."""

    def test_pause_remembers_resume_status(self) -> None:
        """Pausing records where to resume."""
        state = PipelineState()
        state.transition(PipelineStatus.ACQUIRING)
        state.transition(PipelineStatus.PROCESSING)
        state.transition(PipelineStatus.PAUSED)
        assert state.resume_status == PipelineStatus.PROCESSING
        state.transition(PipelineStatus.PROCESSING)
        assert state.resume_status is None

    def test_paused_cannot_complete(self) -> None:
        """A paused run must resume or stop first."""
        assert not can_transition(PipelineStatus.PAUSED, PipelineStatus.COMPLETED)
        assert can_transition(PipelineStatus.PAUSED, PipelineStatus.STOPPED)

    def test_reset_returns_to_idle(self) -> None:
        """reset() clears history after a terminal state."""
        state = PipelineState()
        state.transition(PipelineStatus.ACQUIRING)
        state.transition(PipelineStatus.STOPPED)
        state.reset()
        assert state.status == PipelineStatus.IDLE
        assert state.history == []

    def test_reset_from_active_is_illegal(self) -> None:
        """An active run cannot be reset."""
        state = PipelineState()
        state.transition(PipelineStatus.ACQUIRING)
        with pytest.raises(InvalidTransitionError):
            state.reset()
