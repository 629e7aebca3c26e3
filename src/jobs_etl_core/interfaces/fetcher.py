"""Abstract page fetcher interface."""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class PageFetcher(Protocol):
    """Scoped resource that returns the HTML of a URL.

    Implementations raise ``TransientFetchError`` for retryable failures and
    ``FetchError`` for permanent ones.
    """

    async def fetch(self, url: str) -> str:
        """Fetch page content."""
        ...

    async def close(self) -> None:
        """Release the underlying client or browser. Safe to call twice."""
        ...
