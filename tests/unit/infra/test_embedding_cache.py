"""Tests for CapabilityEmbeddingCache."""

from __future__ import annotations

import asyncio

import pytest

from jobs_etl_core.models.capability import description_hash
from jobs_etl_infra.cache.embedding_cache import CapabilityEmbeddingCache
from tests.mocks.mock_factories import make_capability, make_catalog


class _CountingEmbed:
    """Embed function that counts calls and can fail on demand."""

    def __init__(self, fail_times: int = 0, delay: float = 0.0) -> None:
        self.calls: list[str] = []
        self.fail_times = fail_times
        self.delay = delay

    async def __call__(self, text: str) -> list[float]:
        self.calls.append(text)
        await asyncio.sleep(self.delay)
        if self.fail_times > 0:
            self.fail_times -= 1
            raise TimeoutError("provider timed out")
        return [float(len(text))] * 4


@pytest.mark.unit
class TestCapabilityEmbeddingCache:
    """Test priming, single-flight and failure handling."""

    def test_prime_loads_current_vectors(self) -> None:
        """Only entries with an up-to-date vector are loaded."""
        catalog = make_catalog(10, cached=8, dimension=4)
        cache = CapabilityEmbeddingCache(_CountingEmbed())
        assert cache.prime(catalog) == 8
        assert "cap-01" in cache
        assert "cap-09" not in cache
        assert len(cache) == 8

    def test_prime_skips_stale_vectors(self) -> None:
        """A vector built from an older description is not trusted."""
        capability = make_capability(1, [0.5] * 4).model_copy(
            update={"embedding_hash": description_hash("old text")}
        )
        cache = CapabilityEmbeddingCache(_CountingEmbed())
        assert cache.prime([capability]) == 0

    def test_prime_replaces_previous_contents(self) -> None:
        """Priming again drops vectors that are no longer in the catalog."""
        cache = CapabilityEmbeddingCache(_CountingEmbed())
        cache.prime(make_catalog(3, cached=3, dimension=4))
        cache.prime(make_catalog(3, cached=1, dimension=4))
        assert len(cache) == 1
        assert cache.peek("cap-02") is None

    @pytest.mark.asyncio
    async def test_only_missing_entries_computed(self) -> None:
        """Ten capabilities with eight cached cost two embed calls."""
        embed = _CountingEmbed()
        catalog = make_catalog(10, cached=8, dimension=4)
        cache = CapabilityEmbeddingCache(embed)
        cache.prime(catalog)

        for capability in catalog:
            await cache.get(capability)

        assert len(embed.calls) == 2
        assert cache.computed == 2
        assert len(cache) == 10

    @pytest.mark.asyncio
    async def test_concurrent_requests_share_one_computation(self) -> None:
        """Parallel gets for the same id embed once and see the same vector."""
        embed = _CountingEmbed(delay=0.01)
        cache = CapabilityEmbeddingCache(embed)
        capability = make_capability(1)

        vectors = await asyncio.gather(*(cache.get(capability) for _ in range(5)))

        assert len(embed.calls) == 1
        assert all(v == vectors[0] for v in vectors)

    @pytest.mark.asyncio
    async def test_failure_not_cached(self) -> None:
        """A failed computation is retried by the next request."""
        embed = _CountingEmbed(fail_times=1)
        cache = CapabilityEmbeddingCache(embed)
        capability = make_capability(1)

        with pytest.raises(TimeoutError):
            await cache.get(capability)
        assert cache.peek("cap-01") is None

        assert await cache.get(capability) == [float(len(capability.description))] * 4
        assert len(embed.calls) == 2

    @pytest.mark.asyncio
    async def test_concurrent_waiters_see_failure(self) -> None:
        """Everyone waiting on a failed computation gets the error."""
        embed = _CountingEmbed(fail_times=1, delay=0.01)
        cache = CapabilityEmbeddingCache(embed)
        capability = make_capability(1)

        results = await asyncio.gather(
            *(cache.get(capability) for _ in range(3)), return_exceptions=True
        )

        assert all(isinstance(r, TimeoutError) for r in results)
        assert len(embed.calls) == 1

    @pytest.mark.asyncio
    async def test_persist_hook_receives_hash(self) -> None:
        """Computed vectors are written back with the description hash."""
        saved: list[tuple[str, list[float], str]] = []

        async def _persist(capability_id: str, vector: list[float], digest: str) -> None:
            saved.append((capability_id, vector, digest))

        cache = CapabilityEmbeddingCache(_CountingEmbed(), persist=_persist)
        capability = make_capability(3)
        await cache.get(capability)
        await cache.get(make_capability(4), persist=False)

        assert [s[0] for s in saved] == ["cap-03"]
        assert saved[0][2] == description_hash(capability.description)
