"""Custom exception hierarchy for jobs-etl."""

from __future__ import annotations


class JobsEtlError(Exception):
    """Base exception for all jobs-etl errors."""


class ConfigurationError(JobsEtlError):
    """Raised when required configuration or credentials are missing."""


class ConnectivityError(JobsEtlError):
    """Raised when a store cannot be reached during initialization."""


class ListingError(JobsEtlError):
    """Base for errors attributed to a single listing."""

    def __init__(self, message: str, listing_id: str | None = None) -> None:
        """Store the listing the failure belongs to."""
        super().__init__(message)
        self.listing_id = listing_id


class FetchError(ListingError):
    """Raised when a page or listing cannot be fetched after all retries."""


class TransientFetchError(FetchError):
    """Retryable fetch failure (timeout, transport error, 5xx, 429)."""


class ListingParseError(FetchError):
    """Raised when a fetched page is missing a required field. Never retried."""


class DocumentError(ListingError):
    """Raised when an attached document cannot be downloaded or read."""


class EncryptedDocumentError(DocumentError):
    """Raised when a PDF is password-protected."""


class ScannedDocumentError(DocumentError):
    """Raised when a document has no extractable text (scanned/image-only)."""


class AnalysisError(ListingError):
    """Raised when LLM classification fails after all retries."""


class EmbeddingError(ListingError):
    """Raised when text embedding fails after all retries."""


class StorageError(ListingError):
    """Raised when a repository write fails."""


class CheckpointError(JobsEtlError):
    """Raised when a sync checkpoint cannot be read or written."""


class InvalidTransitionError(JobsEtlError):
    """Raised when the pipeline state machine is asked for an illegal move."""
