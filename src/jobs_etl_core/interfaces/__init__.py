"""Public interface re-exports for jobs_etl_core."""

from jobs_etl_core.interfaces.embedder import EmbedderBase
from jobs_etl_core.interfaces.fetcher import PageFetcher
from jobs_etl_core.interfaces.repository import Repository

__all__ = [
    "EmbedderBase",
    "PageFetcher",
    "Repository",
]
