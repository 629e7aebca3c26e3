"""Sync checkpoint repository."""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy.ext.asyncio import AsyncSession

from jobs_etl_infra.db.models import SyncCheckpointModel
from jobs_etl_infra.db.upsert import aware_utc, naive_utc, upsert_rows


class CheckpointRepository:
    """Reads and writes the per-scope incremental sync checkpoint."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize with an async session."""
        self._session = session

    async def get(self, scope: str) -> datetime | None:
        """Stored checkpoint for a scope, in UTC."""
        row = await self._session.get(SyncCheckpointModel, scope)
        if row is None:
            return None
        return aware_utc(row.last_modified_at)

    async def set(self, scope: str, timestamp: datetime) -> None:
        """Store the checkpoint for a scope."""
        await upsert_rows(
            self._session,
            SyncCheckpointModel,
            [
                {
                    "scope": scope,
                    "last_modified_at": naive_utc(timestamp),
                    "updated_at": naive_utc(datetime.now(UTC)),
                }
            ],
            ["scope"],
        )
