"""Factory functions for creating tool instances from settings."""

from __future__ import annotations

from typing import TYPE_CHECKING

from jobs_etl_core.config.components import DocumentConfig, EmbeddingConfig, SpiderConfig
from jobs_etl_core.exceptions import ConfigurationError
from jobs_etl_core.interfaces.embedder import EmbedderBase
from jobs_etl_core.interfaces.fetcher import PageFetcher
from jobs_etl_pipeline.tools.document_reader import DocumentReader
from jobs_etl_pipeline.tools.embedder import EmbeddingGenerator

if TYPE_CHECKING:
    from jobs_etl_core.config.settings import Settings


def create_page_fetcher(config: SpiderConfig) -> PageFetcher:
    """Create the page fetcher selected by ``config.fetcher_backend``.

    The Playwright backend needs the ``browser`` extra installed.
    """
    if config.fetcher_backend == "playwright":
        from jobs_etl_pipeline.tools.fetchers import PlaywrightPageFetcher

        return PlaywrightPageFetcher(config.user_agent, timeout=config.timeout_seconds)

    from jobs_etl_pipeline.tools.fetchers import HttpxPageFetcher

    return HttpxPageFetcher(config.user_agent, timeout=config.timeout_seconds)


def create_document_reader(config: DocumentConfig) -> DocumentReader | None:
    """Create an attachment reader, or None when document fetching is off."""
    if not config.enabled:
        return None
    return DocumentReader(config)


def create_embedder(settings: Settings) -> EmbedderBase:
    """Create the raw embedding provider selected by ``settings.embedding_provider``."""
    if settings.embedding_provider == "voyage":
        if settings.voyage_api_key is None:
            msg = "voyage_api_key required when embedding_provider=voyage"
            raise ConfigurationError(msg)
        from jobs_etl_pipeline.tools.embedder import VoyageEmbedder

        return VoyageEmbedder(
            api_key=settings.voyage_api_key.get_secret_value(),
            model=settings.embedding_model,
            timeout=settings.embedding_timeout_seconds,
        )

    from jobs_etl_pipeline.tools.embedder import LocalEmbedder

    return LocalEmbedder(model_name=settings.embedding_model)


def create_embedding_generator(settings: Settings) -> EmbeddingGenerator:
    """Wrap the configured provider in an EmbeddingGenerator."""
    return EmbeddingGenerator(create_embedder(settings), EmbeddingConfig.from_settings(settings))
