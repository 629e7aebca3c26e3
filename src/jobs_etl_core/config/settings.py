"""Application settings using pydantic-settings."""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from jobs_etl_core.constants import DEFAULT_SOURCE_URL, DEFAULT_USER_AGENT, PIPELINE_VERSION


class Settings(BaseSettings):
    """Central configuration for the jobs ETL pipeline."""

    model_config = SettingsConfigDict(env_prefix="JOBS_ETL_", env_file=".env")

    # --- Source feed ---
    source_base_url: str = Field(
        default=DEFAULT_SOURCE_URL,
        description="Paginated listings endpoint of the job board",
    )
    user_agent: str = Field(
        default=DEFAULT_USER_AGENT,
        description="User-Agent header sent with every page request",
    )
    fetcher_backend: Literal["httpx", "playwright"] = Field(
        default="httpx",
        description="Page fetcher: plain HTTP or a headless Chromium browser",
    )
    page_size: int = Field(default=25, description="Listings requested per results page")
    max_pages: int = Field(default=200, description="Hard stop on pages enumerated per run")
    page_concurrency: int = Field(
        default=5,
        description="Worker-pool bound for page and detail fetches",
    )
    fetch_timeout_seconds: float = Field(default=30.0, description="Timeout per page request")
    fetch_retry_attempts: int = Field(default=3, description="Attempts per page request")
    fetch_retry_delay_seconds: float = Field(
        default=2.0,
        description="Fixed delay between page request attempts",
    )

    # --- Attached documents ---
    fetch_documents: bool = Field(
        default=True,
        description="Download role descriptions attached to listings and extract their text",
    )
    document_max_bytes: int = Field(
        default=10 * 1024 * 1024,
        description="Attachments larger than this are skipped",
    )
    document_max_chars: int = Field(
        default=20000,
        description="Extracted text kept per document",
    )

    # --- LLM ---
    anthropic_api_key: SecretStr | None = Field(
        default=None,
        description="Anthropic API key for capability/skill classification",
    )
    analyzer_model: str = Field(
        default="claude-haiku-4-5-20251001",
        description="Model ID used for classification",
    )
    analyzer_temperature: float = Field(
        default=0.0,
        description="Fixed sampling temperature so repeated calls stay stable",
    )
    analyzer_max_tokens: int = Field(default=2000, description="Max output tokens per call")
    analyzer_timeout_seconds: float = Field(default=60.0, description="Timeout per LLM call")
    analyzer_retry_attempts: int = Field(default=3, description="Attempts per LLM call")
    analyzer_retry_delay_seconds: float = Field(
        default=1.0,
        description="Fixed delay between LLM call attempts",
    )
    min_relevance: float = Field(
        default=0.0,
        ge=0.0,
        le=1.0,
        description="Capability matches below this relevance are dropped",
    )
    max_capabilities: int | None = Field(
        default=None,
        description="Keep at most this many capability matches (None keeps all)",
    )

    # --- Embeddings ---
    embedding_provider: Literal["voyage", "local"] = Field(
        default="local",
        description="Embedding provider: 'local' (free) or 'voyage' (API)",
    )
    voyage_api_key: SecretStr | None = Field(
        default=None,
        description="Voyage API key (required if embedding_provider=voyage)",
    )
    embedding_model: str = Field(
        default="all-MiniLM-L6-v2",
        description="Embedding model name",
    )
    embedding_dimension: int = Field(
        default=384,
        description="Embedding vector dimension (384 for MiniLM, 1024 for Voyage)",
    )
    embedding_batch_size: int = Field(default=32, description="Texts per provider call")
    embedding_max_input_chars: int = Field(
        default=8000,
        description="Normalised text is truncated to this many characters",
    )
    embedding_timeout_seconds: float = Field(default=60.0, description="Timeout per embed call")
    embedding_retry_attempts: int = Field(default=3, description="Attempts per embed call")
    embedding_retry_delay_seconds: float = Field(
        default=1.0,
        description="Fixed delay between embed call attempts",
    )

    # --- Stores ---
    staging_database_url: str = Field(
        default="sqlite+aiosqlite:///./jobs_etl_staging.db",
        description="SQLAlchemy URL of the staging store (receives writes)",
    )
    live_database_url: str | None = Field(
        default=None,
        description="SQLAlchemy URL of the live store (defaults to the staging URL)",
    )

    # --- Pipeline ---
    batch_size: int = Field(default=10, description="Listings per orchestrator batch")
    batch_concurrency: int = Field(
        default=3,
        description="Concurrent AI/embedding items inside one batch",
    )
    max_errors: int = Field(default=500, description="Structured errors kept per run")
    pipeline_version: str = Field(
        default=PIPELINE_VERSION,
        description="Version stamped on every enriched record",
    )

    # --- Observability ---
    log_level: str = Field(default="INFO", description="Root log level")
    log_format: Literal["json", "console"] = Field(
        default="console",
        description="Log renderer",
    )
    log_file: Path | None = Field(
        default=None,
        description="Also append JSON log lines to this file",
    )
    otel_exporter: Literal["none", "console", "otlp"] = Field(
        default="none",
        description="OpenTelemetry exporter (none disables tracing)",
    )
    otel_endpoint: str = Field(
        default="http://localhost:4317",
        description="OTLP gRPC endpoint",
    )
    otel_service_name: str = Field(default="jobs-etl", description="OTEL service name")

    @model_validator(mode="after")
    def validate_store_config(self) -> Settings:
        """Point the live store at staging when no live URL is configured."""
        if not self.live_database_url:
            self.live_database_url = self.staging_database_url
        return self

    @model_validator(mode="after")
    def validate_embedding_config(self) -> Settings:
        """Validate embedding provider configuration."""
        if self.embedding_provider == "voyage" and not self.voyage_api_key:
            msg = "voyage_api_key required when embedding_provider=voyage"
            raise ValueError(msg)
        if self.embedding_provider == "voyage":
            self.embedding_dimension = 1024
            if self.embedding_model == "all-MiniLM-L6-v2":
                self.embedding_model = "voyage-2"
        return self
