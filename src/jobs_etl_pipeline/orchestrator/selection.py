"""Listing selection: the incremental filter plus the run's allow-lists."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime

from jobs_etl_core.models.listing import ListingSummary
from jobs_etl_core.models.run import RunOptions


def _fold(value: str) -> str:
    return " ".join(value.lower().split())


def build_listing_filter(
    options: RunOptions,
    checkpoint: datetime | None = None,
) -> Callable[[ListingSummary], bool]:
    """Predicate that keeps the listings a run should consider.

    Listings without a modification time always pass the incremental
    filter, and listings without a posting date always pass the date
    window. Organisation and location allow-lists compare case-insensitively.
    """
    organisations = {_fold(o) for o in options.organisations if o.strip()}
    locations = {_fold(loc) for loc in options.locations if loc.strip()}
    since = checkpoint if options.incremental else None

    def _keep(summary: ListingSummary) -> bool:
        if since is not None and summary.modified_at is not None and summary.modified_at <= since:
            return False
        if summary.posted_at is not None:
            if options.start_date is not None and summary.posted_at < options.start_date:
                return False
            if options.end_date is not None and summary.posted_at > options.end_date:
                return False
        if organisations and _fold(summary.organisation) not in organisations:
            return False
        if locations and not any(_fold(loc) in locations for loc in summary.locations):
            return False
        return True

    return _keep
