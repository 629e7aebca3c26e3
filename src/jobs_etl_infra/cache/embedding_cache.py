"""Capability embedding cache with single-flight computation."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

import structlog

from jobs_etl_core.models.capability import CapabilityDefinition, description_hash

logger = structlog.get_logger()

EmbedFn = Callable[[str], Awaitable[list[float]]]
PersistFn = Callable[[str, list[float], str], Awaitable[None]]


class CapabilityEmbeddingCache:
    """Per-run cache of capability vectors keyed by capability id.

    Concurrent requests for the same missing id share one in-flight
    computation, so each capability is embedded at most once per run.
    A failed computation is not cached; the next request tries again.
    """

    def __init__(self, embed: EmbedFn, persist: PersistFn | None = None) -> None:
        """Initialize with an embed function and an optional write-back hook."""
        self._embed = embed
        self._persist = persist
        self._vectors: dict[str, list[float]] = {}
        self._inflight: dict[str, asyncio.Future[list[float]]] = {}
        self.computed = 0

    def prime(self, catalog: list[CapabilityDefinition]) -> int:
        """Replace cached vectors with the catalog's current ones; return how many."""
        self._vectors.clear()
        loaded = 0
        for capability in catalog:
            if capability.embedding is not None and not capability.needs_embedding:
                self._vectors[capability.capability_id] = capability.embedding
                loaded += 1
        return loaded

    def peek(self, capability_id: str) -> list[float] | None:
        """Cached vector without computing."""
        return self._vectors.get(capability_id)

    def __contains__(self, capability_id: object) -> bool:
        return capability_id in self._vectors

    def __len__(self) -> int:
        return len(self._vectors)

    async def get(self, capability: CapabilityDefinition, persist: bool = True) -> list[float]:
        """Return the vector for a capability, computing it once if missing."""
        key = capability.capability_id
        cached = self._vectors.get(key)
        if cached is not None:
            return cached

        pending = self._inflight.get(key)
        if pending is not None:
            return await asyncio.shield(pending)

        future: asyncio.Future[list[float]] = asyncio.get_running_loop().create_future()
        self._inflight[key] = future
        try:
            vector = await self._embed(capability.description)
            if persist and self._persist is not None:
                await self._persist(key, vector, description_hash(capability.description))
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as e:
            future.set_exception(e)
            # waiters re-raise it; mark retrieved for the no-waiter case
            future.exception()
            raise
        else:
            self._vectors[key] = vector
            self.computed += 1
            future.set_result(vector)
            logger.debug("capability_embedding_computed", capability_id=key)
            return vector
        finally:
            self._inflight.pop(key, None)
