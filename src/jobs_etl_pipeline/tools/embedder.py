"""Text embedding: raw providers (local sentence-transformers, Voyage API)
and the EmbeddingGenerator that normalises, batches, retries and validates."""

from __future__ import annotations

import asyncio
import re
from typing import Any

import httpx
import structlog
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_fixed

from jobs_etl_core.config.components import EmbeddingConfig
from jobs_etl_core.constants import RETRYABLE_STATUS_CODES
from jobs_etl_core.exceptions import EmbeddingError
from jobs_etl_core.interfaces.embedder import EmbedderBase

logger = structlog.get_logger()

_WHITESPACE = re.compile(r"\s+")


def normalize_text(text: str, max_chars: int) -> str:
    """Collapse whitespace, strip, and truncate to ``max_chars``."""
    return _WHITESPACE.sub(" ", text).strip()[:max_chars]


def is_transient_embedding_error(error: BaseException) -> bool:
    """Timeouts, connection failures and 429/5xx responses are worth retrying."""
    if isinstance(error, (TimeoutError, httpx.TransportError)):
        return True
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code in RETRYABLE_STATUS_CODES
    return False


class LocalEmbedder:
    """sentence-transformers based embedder. Free, fast, no API key."""

    def __init__(self, model_name: str = "all-MiniLM-L6-v2") -> None:
        """Initialize with a model name (lazy-loaded)."""
        self._model_name = model_name
        self._model: Any = None

    def _get_model(self) -> Any:  # noqa: ANN401
        """Lazy-load the sentence transformer model."""
        if self._model is None:
            from sentence_transformers import SentenceTransformer

            self._model = SentenceTransformer(self._model_name)
        return self._model

    async def embed_text(self, text: str) -> list[float]:
        """Embed a single text string into a vector."""
        return (await self.embed_batch([text]))[0]

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed multiple texts in a worker thread."""
        if not texts:
            return []
        model = self._get_model()
        embeddings = await asyncio.to_thread(model.encode, texts)
        return [list(e.tolist()) for e in embeddings]


class VoyageEmbedder:
    """Voyage AI embeddings via API."""

    endpoint = "https://api.voyageai.com/v1/embeddings"

    def __init__(self, api_key: str, model: str = "voyage-2", timeout: float = 60.0) -> None:
        """Initialize with Voyage API key."""
        self._api_key = api_key
        self._model = model
        self._timeout = timeout

    async def embed_text(self, text: str) -> list[float]:
        """Embed a single text string via Voyage API."""
        return (await self.embed_batch([text]))[0]

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed multiple texts via Voyage API."""
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            response = await client.post(
                self.endpoint,
                headers={
                    "Authorization": f"Bearer {self._api_key}",
                    "Content-Type": "application/json",
                },
                json={"input": texts, "model": self._model},
            )
            response.raise_for_status()
            data = response.json()
            ordered = sorted(data["data"], key=lambda item: item.get("index", 0))
            return [item["embedding"] for item in ordered]


class EmbeddingGenerator:
    """Provider-agnostic embedding with a fixed vector dimension.

    ``embed(t)`` is ``embed_batch([t])[0]``: both paths share one
    normalisation so a text always maps to the same vector. Nothing is
    cached here; capability vectors are cached by CapabilityEmbeddingCache.
    """

    def __init__(self, provider: EmbedderBase, config: EmbeddingConfig) -> None:
        """Initialize with a raw provider and embedding settings."""
        self._provider = provider
        self._config = config
        self.calls = 0

    @property
    def dimension(self) -> int:
        """Configured vector size."""
        return self._config.dimension

    def normalize(self, text: str) -> str:
        """Normalise text the way every embed call does."""
        return normalize_text(text, self._config.max_input_chars)

    async def embed(self, text: str, listing_id: str | None = None) -> list[float]:
        """Embed one text."""
        return (await self.embed_batch([text], listing_id=listing_id))[0]

    async def embed_batch(
        self, texts: list[str], listing_id: str | None = None
    ) -> list[list[float]]:
        """Embed texts in provider batches; one vector per input, same order."""
        if not texts:
            return []
        normalized = [self.normalize(t) for t in texts]
        size = self._config.batch_size
        vectors: list[list[float]] = []
        for start in range(0, len(normalized), size):
            chunk = normalized[start : start + size]
            result = await self._call_provider(chunk, listing_id)
            if len(result) != len(chunk):
                msg = f"Provider returned {len(result)} vectors for {len(chunk)} texts"
                raise EmbeddingError(msg, listing_id=listing_id)
            for vector in result:
                self._check_dimension(vector, listing_id)
            vectors.extend(result)
        return vectors

    async def _call_provider(self, chunk: list[str], listing_id: str | None) -> list[list[float]]:
        """One provider call with timeout and fixed-delay retry of transient failures."""
        cfg = self._config
        attempts = 0

        @retry(
            stop=stop_after_attempt(cfg.retry_attempts),
            wait=wait_fixed(cfg.retry_delay_seconds),
            retry=retry_if_exception(is_transient_embedding_error),
            reraise=True,
        )
        async def _do_call() -> list[list[float]]:
            nonlocal attempts
            attempts += 1
            self.calls += 1
            return await asyncio.wait_for(
                self._provider.embed_batch(chunk), timeout=cfg.timeout_seconds
            )

        try:
            return await _do_call()
        except EmbeddingError:
            raise
        except Exception as e:
            logger.warning(
                "embedding_failed",
                listing_id=listing_id,
                texts=len(chunk),
                attempts=attempts,
                error=str(e) or type(e).__name__,
            )
            msg = f"Embedding failed after {attempts} attempts: {e!r}"
            raise EmbeddingError(msg, listing_id=listing_id) from e

    def _check_dimension(self, vector: list[float], listing_id: str | None) -> None:
        if len(vector) != self._config.dimension:
            msg = f"Embedding dimension {len(vector)} != configured {self._config.dimension}"
            raise EmbeddingError(msg, listing_id=listing_id)
