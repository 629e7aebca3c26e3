"""Shared pytest fixtures for unit tests."""

from __future__ import annotations

from collections.abc import AsyncIterator
from pathlib import Path

import pytest

from jobs_etl_core.config.components import EmbeddingConfig, SpiderConfig
from jobs_etl_core.config.settings import Settings
from jobs_etl_core.models.listing import ListingDetail
from jobs_etl_infra.storage.repository import SqlRepository
from jobs_etl_pipeline.observability.tracing import disable_tracing
from jobs_etl_pipeline.tools.embedder import EmbeddingGenerator
from tests.mocks.mock_factories import BASE_URL, make_detail
from tests.mocks.mock_settings import make_settings
from tests.mocks.mock_tools import FakeEmbedder

DIMENSION = 8


@pytest.fixture(autouse=True)
def _no_tracing() -> None:
    """Each test starts with tracing off."""
    disable_tracing()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Real Settings pointing at a SQLite file under tmp_path."""
    return make_settings(tmp_path)


@pytest.fixture
def spider_config() -> SpiderConfig:
    """Spider settings for the fake job board: no retry delay."""
    return SpiderConfig(
        base_url=BASE_URL,
        page_size=10,
        page_concurrency=3,
        retry_attempts=3,
        retry_delay_seconds=0,
    )


@pytest.fixture
def embedding_config() -> EmbeddingConfig:
    """Small vectors, no retry delay."""
    return EmbeddingConfig(dimension=DIMENSION, batch_size=4, retry_delay_seconds=0)


@pytest.fixture
def fake_embedder() -> FakeEmbedder:
    """Deterministic embedding provider."""
    return FakeEmbedder(dimension=DIMENSION)


@pytest.fixture
def generator(fake_embedder: FakeEmbedder, embedding_config: EmbeddingConfig) -> EmbeddingGenerator:
    """EmbeddingGenerator over the fake provider."""
    return EmbeddingGenerator(fake_embedder, embedding_config)


@pytest.fixture
async def repository(tmp_path: Path, generator: EmbeddingGenerator) -> AsyncIterator[SqlRepository]:
    """Initialized SqlRepository with staging and live in separate SQLite files."""
    repo = SqlRepository(
        staging_url=f"sqlite+aiosqlite:///{tmp_path}/staging.db",
        live_url=f"sqlite+aiosqlite:///{tmp_path}/live.db",
        embed=generator.embed,
    )
    await repo.initialize()
    yield repo
    await repo.cleanup()


@pytest.fixture
def sample_detail() -> ListingDetail:
    """A parsed listing detail."""
    return make_detail(1)
