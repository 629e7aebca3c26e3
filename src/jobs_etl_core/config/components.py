"""Per-component configuration structs derived from Settings.

Each service receives only the fields it reads, so tests can build a
component without a full Settings object.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Literal

from pydantic import BaseModel, ConfigDict, Field

from jobs_etl_core.constants import DEFAULT_SOURCE_URL, DEFAULT_USER_AGENT

if TYPE_CHECKING:
    from jobs_etl_core.config.settings import Settings


class SpiderConfig(BaseModel):
    """Acquisition settings: source location, pool size, retry policy."""

    model_config = ConfigDict(frozen=True)

    base_url: str = Field(default=DEFAULT_SOURCE_URL)
    user_agent: str = Field(default=DEFAULT_USER_AGENT)
    fetcher_backend: Literal["httpx", "playwright"] = Field(default="httpx")
    page_size: int = Field(default=25, gt=0)
    max_pages: int = Field(default=200, gt=0)
    page_concurrency: int = Field(default=5, gt=0)
    timeout_seconds: float = Field(default=30.0, gt=0)
    retry_attempts: int = Field(default=3, ge=1)
    retry_delay_seconds: float = Field(default=2.0, ge=0)

    @classmethod
    def from_settings(cls, settings: Settings) -> SpiderConfig:
        """Build from application settings."""
        return cls(
            base_url=settings.source_base_url,
            user_agent=settings.user_agent,
            fetcher_backend=settings.fetcher_backend,
            page_size=settings.page_size,
            max_pages=settings.max_pages,
            page_concurrency=settings.page_concurrency,
            timeout_seconds=settings.fetch_timeout_seconds,
            retry_attempts=settings.fetch_retry_attempts,
            retry_delay_seconds=settings.fetch_retry_delay_seconds,
        )


class DocumentConfig(BaseModel):
    """Attachment download limits."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = Field(default=True)
    user_agent: str = Field(default=DEFAULT_USER_AGENT)
    timeout_seconds: float = Field(default=30.0, gt=0)
    max_bytes: int = Field(default=10 * 1024 * 1024, gt=0)
    max_chars: int = Field(default=20000, gt=0)
    concurrency: int = Field(default=3, gt=0)

    @classmethod
    def from_settings(cls, settings: Settings) -> DocumentConfig:
        """Build from application settings."""
        return cls(
            enabled=settings.fetch_documents,
            user_agent=settings.user_agent,
            timeout_seconds=settings.fetch_timeout_seconds,
            max_bytes=settings.document_max_bytes,
            max_chars=settings.document_max_chars,
            concurrency=settings.page_concurrency,
        )


class AnalyzerConfig(BaseModel):
    """LLM classification settings and the capability keep policy."""

    model_config = ConfigDict(frozen=True)

    model: str = Field(default="claude-haiku-4-5-20251001")
    temperature: float = Field(default=0.0, ge=0.0, le=1.0)
    max_tokens: int = Field(default=2000, gt=0)
    timeout_seconds: float = Field(default=60.0, gt=0)
    retry_attempts: int = Field(default=3, ge=1)
    retry_delay_seconds: float = Field(default=1.0, ge=0)
    min_relevance: float = Field(default=0.0, ge=0.0, le=1.0)
    max_capabilities: int | None = Field(default=None, gt=0)

    @classmethod
    def from_settings(cls, settings: Settings) -> AnalyzerConfig:
        """Build from application settings."""
        return cls(
            model=settings.analyzer_model,
            temperature=settings.analyzer_temperature,
            max_tokens=settings.analyzer_max_tokens,
            timeout_seconds=settings.analyzer_timeout_seconds,
            retry_attempts=settings.analyzer_retry_attempts,
            retry_delay_seconds=settings.analyzer_retry_delay_seconds,
            min_relevance=settings.min_relevance,
            max_capabilities=settings.max_capabilities,
        )


class EmbeddingConfig(BaseModel):
    """Embedding settings shared by the generator and the capability cache."""

    model_config = ConfigDict(frozen=True)

    model: str = Field(default="all-MiniLM-L6-v2")
    dimension: int = Field(default=384, gt=0)
    batch_size: int = Field(default=32, gt=0)
    max_input_chars: int = Field(default=8000, gt=0)
    timeout_seconds: float = Field(default=60.0, gt=0)
    retry_attempts: int = Field(default=3, ge=1)
    retry_delay_seconds: float = Field(default=1.0, ge=0)

    @classmethod
    def from_settings(cls, settings: Settings) -> EmbeddingConfig:
        """Build from application settings."""
        return cls(
            model=settings.embedding_model,
            dimension=settings.embedding_dimension,
            batch_size=settings.embedding_batch_size,
            max_input_chars=settings.embedding_max_input_chars,
            timeout_seconds=settings.embedding_timeout_seconds,
            retry_attempts=settings.embedding_retry_attempts,
            retry_delay_seconds=settings.embedding_retry_delay_seconds,
        )


class ProcessorConfig(BaseModel):
    """Processor settings."""

    model_config = ConfigDict(frozen=True)

    batch_concurrency: int = Field(default=3, gt=0)
    pipeline_version: str = Field(default="1.0.0")

    @classmethod
    def from_settings(cls, settings: Settings) -> ProcessorConfig:
        """Build from application settings."""
        return cls(
            batch_concurrency=settings.batch_concurrency,
            pipeline_version=settings.pipeline_version,
        )


class PipelineConfig(BaseModel):
    """Orchestrator settings."""

    model_config = ConfigDict(frozen=True)

    batch_size: int = Field(default=10, gt=0)
    max_errors: int = Field(default=500, gt=0)

    @classmethod
    def from_settings(cls, settings: Settings) -> PipelineConfig:
        """Build from application settings."""
        return cls(batch_size=settings.batch_size, max_errors=settings.max_errors)
