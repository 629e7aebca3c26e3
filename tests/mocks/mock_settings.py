"""Settings factory for tests."""

from __future__ import annotations

from pathlib import Path

from jobs_etl_core.config.settings import Settings


def make_settings(tmp_path: Path | None = None, **overrides: object) -> Settings:
    """Create a real Settings isolated from the environment's .env file.

    With ``tmp_path`` the staging store is a SQLite file under it.
    """
    defaults: dict[str, object] = {
        "anthropic_api_key": None,
        "embedding_provider": "local",
        "embedding_dimension": 8,
        "fetch_retry_delay_seconds": 0.0,
        "analyzer_retry_delay_seconds": 0.0,
        "embedding_retry_delay_seconds": 0.0,
        "log_level": "INFO",
        "log_format": "console",
        "otel_exporter": "none",
        "otel_service_name": "jobs-etl-test",
    }
    if tmp_path is not None:
        defaults["staging_database_url"] = f"sqlite+aiosqlite:///{tmp_path}/staging.db"
    defaults.update(overrides)
    return Settings(_env_file=None, **defaults)  # type: ignore[arg-type,call-arg]
