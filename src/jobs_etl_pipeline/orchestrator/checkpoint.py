"""Sync checkpoint policy for incremental runs."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime

import structlog

logger = structlog.get_logger()


def compute_checkpoint(
    previous: datetime | None,
    persisted: Iterable[datetime | None],
    blocking: Iterable[datetime | None],
    truncated: bool = False,
) -> datetime | None:
    """Next checkpoint after a run.

    ``persisted`` are the modification times of records written this run.
    ``blocking`` are those of listings that were selected but never
    written and must be picked up again by the next run. The checkpoint
    moves to the newest persisted time strictly older than every blocking
    listing, never moves backwards, and stays put when enumeration was
    truncated.
    """
    if truncated:
        return previous

    # listings with no modification time always pass the incremental filter
    floor = min((ts for ts in blocking if ts is not None), default=None)
    candidates = [
        ts for ts in persisted if ts is not None and (floor is None or ts < floor)
    ]
    if not candidates:
        return previous

    newest = max(candidates)
    if previous is not None and newest <= previous:
        return previous
    return newest
