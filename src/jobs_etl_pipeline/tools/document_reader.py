"""Attached-document text extraction: PDF (pdfplumber -> pypdf) and DOCX."""

from __future__ import annotations

import asyncio
import io
import re
from urllib.parse import unquote

import httpx
import structlog

from jobs_etl_core.config.components import DocumentConfig
from jobs_etl_core.exceptions import (
    DocumentError,
    EncryptedDocumentError,
    ScannedDocumentError,
)
from jobs_etl_core.models.listing import ListingDocument

logger = structlog.get_logger()

MIN_TEXT_CHARS = 50

_FILENAME_UTF8 = re.compile(r"filename\*=UTF-8''([^;]+)", re.IGNORECASE)
_FILENAME = re.compile(r"filename=[\"']?([^\"';]+)", re.IGNORECASE)
_BLANK_LINES = re.compile(r"\n{3,}")


def filename_from_disposition(header: str | None) -> str | None:
    """Filename from a Content-Disposition header (RFC 5987 form first)."""
    if not header:
        return None
    match = _FILENAME_UTF8.search(header)
    if match:
        return unquote(match.group(1))
    match = _FILENAME.search(header)
    return match.group(1).strip() if match else None


def detect_format(
    data: bytes,
    url: str,
    content_type: str | None = None,
    filename: str | None = None,
) -> str:
    """Decide between ``pdf``, ``docx`` and ``unknown``.

    Filename beats URL beats content type; the leading bytes settle the rest.
    """
    for name in (filename, url.split("?", 1)[0]):
        if name:
            lowered = name.lower()
            if lowered.endswith(".pdf"):
                return "pdf"
            if lowered.endswith(".docx"):
                return "docx"
    if content_type:
        lowered = content_type.lower()
        if "pdf" in lowered:
            return "pdf"
        if "wordprocessingml" in lowered:
            return "docx"
    if data.startswith(b"%PDF"):
        return "pdf"
    # DOCX is a zip container
    if data.startswith(b"PK\x03\x04"):
        return "docx"
    return "unknown"


def clean_text(text: str) -> str:
    """Trim lines and collapse runs of blank lines."""
    lines = [line.strip() for line in text.splitlines()]
    return _BLANK_LINES.sub("\n\n", "\n".join(lines)).strip()


class DocumentReader:
    """Downloads attachments and extracts their text.

    A failed document never fails its listing: ``read_all`` keeps the
    reference without text and logs the reason.
    """

    def __init__(
        self,
        config: DocumentConfig | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize with download limits; a client may be injected."""
        self._config = config or DocumentConfig()
        self._client = client or httpx.AsyncClient(
            timeout=self._config.timeout_seconds,
            follow_redirects=True,
            headers={
                "User-Agent": self._config.user_agent,
                "Accept": (
                    "application/pdf, "
                    "application/vnd.openxmlformats-officedocument.wordprocessingml.document, */*"
                ),
            },
        )
        self._semaphore = asyncio.Semaphore(self._config.concurrency)
        self._closed = False

    async def read(self, document: ListingDocument, listing_id: str | None = None) -> ListingDocument:
        """Download one document and return a copy carrying its text."""
        async with self._semaphore:
            data, content_type, filename = await self._download(document.url, listing_id)

        declared = document.doc_type if document.doc_type in ("pdf", "docx") else None
        doc_type = declared or detect_format(data, document.url, content_type, filename)
        if doc_type == "pdf":
            text = await self.extract_pdf_text(data, document.url, listing_id)
        elif doc_type == "docx":
            text = await self.extract_docx_text(data, document.url, listing_id)
        else:
            msg = f"Unsupported document format at {document.url}"
            raise DocumentError(msg, listing_id=listing_id)

        logger.debug(
            "document_read",
            listing_id=listing_id,
            url=document.url,
            doc_type=doc_type,
            chars=len(text),
        )
        return document.model_copy(
            update={"doc_type": doc_type, "text": text[: self._config.max_chars]}
        )

    async def read_all(
        self, documents: list[ListingDocument], listing_id: str | None = None
    ) -> list[ListingDocument]:
        """Read every document; one result per input, same order."""

        async def _safe(document: ListingDocument) -> ListingDocument:
            try:
                return await self.read(document, listing_id)
            except DocumentError as e:
                logger.warning(
                    "document_skipped",
                    listing_id=listing_id,
                    url=document.url,
                    error_type=type(e).__name__,
                    error=str(e),
                )
                return document

        return list(await asyncio.gather(*(_safe(d) for d in documents)))

    async def _download(
        self, url: str, listing_id: str | None
    ) -> tuple[bytes, str | None, str | None]:
        try:
            response = await self._client.get(url)
        except httpx.HTTPError as e:
            msg = f"Could not download {url}: {e}"
            raise DocumentError(msg, listing_id=listing_id) from e
        if response.status_code != 200:
            msg = f"HTTP {response.status_code} from {url}"
            raise DocumentError(msg, listing_id=listing_id)
        if len(response.content) > self._config.max_bytes:
            msg = f"Document at {url} exceeds {self._config.max_bytes} bytes"
            raise DocumentError(msg, listing_id=listing_id)
        return (
            response.content,
            response.headers.get("content-type"),
            filename_from_disposition(response.headers.get("content-disposition")),
        )

    async def extract_pdf_text(self, data: bytes, url: str, listing_id: str | None = None) -> str:
        """Extract text from a PDF, trying pdfplumber then pypdf.

        Raises:
            EncryptedDocumentError: If the PDF is password-protected.
            ScannedDocumentError: If neither extractor finds a text layer.
        """
        for extractor in (self._try_pdfplumber, self._try_pypdf):
            text = await extractor(data, url, listing_id)
            if text and len(text.strip()) > MIN_TEXT_CHARS:
                return clean_text(text)

        msg = f"PDF appears to be scanned/image-only with no extractable text: {url}"
        raise ScannedDocumentError(msg, listing_id=listing_id)

    async def _try_pdfplumber(self, data: bytes, url: str, listing_id: str | None) -> str | None:
        """Try extracting text with pdfplumber."""
        try:
            import pdfplumber

            def _extract() -> str:
                pages_text: list[str] = []
                with pdfplumber.open(io.BytesIO(data)) as pdf:
                    for page in pdf.pages:
                        text = page.extract_text()
                        if text:
                            pages_text.append(text)
                return "\n\n".join(pages_text)

            return await asyncio.to_thread(_extract)
        except Exception as e:
            if "password" in str(e).lower() or "encrypted" in str(e).lower():
                msg = f"PDF is password-protected: {url}"
                raise EncryptedDocumentError(msg, listing_id=listing_id) from e
            logger.debug("pdfplumber_fallback", url=url, error=str(e))
            return None

    async def _try_pypdf(self, data: bytes, url: str, listing_id: str | None) -> str | None:
        """Try extracting text with pypdf (lightweight fallback)."""
        try:
            from pypdf import PdfReader

            def _extract() -> str:
                reader = PdfReader(io.BytesIO(data))
                if reader.is_encrypted:
                    msg = f"PDF is password-protected: {url}"
                    raise EncryptedDocumentError(msg, listing_id=listing_id)
                pages_text: list[str] = []
                for page in reader.pages:
                    text = page.extract_text()
                    if text:
                        pages_text.append(text)
                return "\n\n".join(pages_text)

            return await asyncio.to_thread(_extract)
        except EncryptedDocumentError:
            raise
        except Exception as e:
            logger.debug("pypdf_fallback", url=url, error=str(e))
            return None

    async def extract_docx_text(self, data: bytes, url: str, listing_id: str | None = None) -> str:
        """Extract paragraph and table text from a DOCX file."""
        from docx import Document

        def _extract() -> str:
            document = Document(io.BytesIO(data))
            blocks = [p.text for p in document.paragraphs if p.text.strip()]
            for table in document.tables:
                for row in table.rows:
                    cells = [c.text.strip() for c in row.cells if c.text.strip()]
                    if cells:
                        blocks.append(" | ".join(cells))
            return "\n\n".join(blocks)

        try:
            text = await asyncio.to_thread(_extract)
        except Exception as e:
            msg = f"Could not read DOCX at {url}: {e}"
            raise DocumentError(msg, listing_id=listing_id) from e
        if not text.strip():
            msg = f"DOCX has no text: {url}"
            raise ScannedDocumentError(msg, listing_id=listing_id)
        return clean_text(text)

    async def close(self) -> None:
        """Close the client. Safe to call twice."""
        if self._closed:
            return
        self._closed = True
        await self._client.aclose()
