"""Tests for attached-document download and text extraction."""

from __future__ import annotations

import io
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
from docx import Document

from jobs_etl_core.config.components import DocumentConfig
from jobs_etl_core.exceptions import (
    DocumentError,
    EncryptedDocumentError,
    ScannedDocumentError,
)
from jobs_etl_core.models.listing import ListingDocument
from jobs_etl_pipeline.tools.document_reader import (
    DocumentReader,
    detect_format,
    filename_from_disposition,
)

ROLE_TEXT = (
    "Role Description\n\nPolicy Officer\n\n"
    "Key accountabilities: research and analyse policy options, prepare briefings."
)
PDF_URL = "https://jobs.example.gov.au/docs/REQ0001-rd.pdf"


def _pdfplumber_returning(*pages: str | None) -> MagicMock:
    mock_pdf = MagicMock()
    mock_pdf.pages = []
    for text in pages:
        page = MagicMock()
        page.extract_text.return_value = text
        mock_pdf.pages.append(page)
    mock_pdf.__enter__ = MagicMock(return_value=mock_pdf)
    mock_pdf.__exit__ = MagicMock(return_value=False)
    return mock_pdf


def _docx_bytes(*paragraphs: str) -> bytes:
    document = Document()
    for paragraph in paragraphs:
        document.add_paragraph(paragraph)
    buffer = io.BytesIO()
    document.save(buffer)
    return buffer.getvalue()


def _reader(handler: httpx.MockTransport, **config: object) -> DocumentReader:
    return DocumentReader(
        DocumentConfig(**config),  # type: ignore[arg-type]
        client=httpx.AsyncClient(transport=handler),
    )


def _serving(content: bytes, status: int = 200, **headers: str) -> httpx.MockTransport:
    return httpx.MockTransport(
        lambda request: httpx.Response(status, content=content, headers=headers)
    )


@pytest.mark.unit
class TestDetectFormat:
    """Test format detection order."""

    @pytest.mark.parametrize(
        ("url", "content_type", "filename", "data", "expected"),
        [
            ("https://x.gov.au/rd.pdf", None, None, b"", "pdf"),
            ("https://x.gov.au/rd.docx?v=2", None, None, b"", "docx"),
            ("https://x.gov.au/file.ashx", None, "Role Description.docx", b"", "docx"),
            ("https://x.gov.au/file.ashx", "application/pdf", None, b"", "pdf"),
            ("https://x.gov.au/file.ashx", None, None, b"%PDF-1.7", "pdf"),
            ("https://x.gov.au/file.ashx", None, None, b"PK\x03\x04rest", "docx"),
            ("https://x.gov.au/file.ashx", "text/html", None, b"<html>", "unknown"),
        ],
    )
    def test_detect_format(
        self,
        url: str,
        content_type: str | None,
        filename: str | None,
        data: bytes,
        expected: str,
    ) -> None:
        """Filename, URL, content type and leading bytes are consulted in turn."""
        assert detect_format(data, url, content_type, filename) == expected

    def test_filename_from_disposition(self) -> None:
        """Both the RFC 5987 and the plain filename forms are understood."""
        assert (
            filename_from_disposition("attachment; filename*=UTF-8''Role%20Description.pdf")
            == "Role Description.pdf"
        )
        assert filename_from_disposition('attachment; filename="rd.docx"') == "rd.docx"
        assert filename_from_disposition(None) is None


@pytest.mark.unit
class TestDocumentReader:
    """Test downloads and extraction."""

    @pytest.mark.asyncio
    async def test_reads_pdf_attachment(self) -> None:
        """A PDF role description comes back with its text."""
        reader = _reader(_serving(b"%PDF-1.4 fake", **{"content-type": "application/pdf"}))
        document = ListingDocument(url=PDF_URL, title="Role Description", doc_type="pdf")

        with patch("pdfplumber.open", return_value=_pdfplumber_returning(ROLE_TEXT)):
            result = await reader.read(document, listing_id="REQ0001")
        await reader.close()

        assert result.text is not None
        assert "Key accountabilities" in result.text
        assert result.doc_type == "pdf"
        assert result.url == PDF_URL

    @pytest.mark.asyncio
    async def test_pdf_short_text_falls_to_pypdf(self) -> None:
        """pypdf is tried when pdfplumber finds almost nothing."""
        reader = _reader(_serving(b"%PDF-1.4 fake"))
        mock_reader = MagicMock()
        mock_reader.is_encrypted = False
        page = MagicMock()
        page.extract_text.return_value = ROLE_TEXT
        mock_reader.pages = [page]

        with (
            patch("pdfplumber.open", return_value=_pdfplumber_returning("short")),
            patch("pypdf.PdfReader", return_value=mock_reader),
        ):
            result = await reader.read(ListingDocument(url=PDF_URL, doc_type="pdf"))

        assert result.text is not None
        assert result.text.startswith("Role Description")

    @pytest.mark.asyncio
    async def test_scanned_pdf_raises(self) -> None:
        """No text layer from either extractor is a ScannedDocumentError."""
        reader = DocumentReader(client=httpx.AsyncClient(transport=_serving(b"")))
        with (
            patch.object(reader, "_try_pdfplumber", new_callable=AsyncMock, return_value=None),
            patch.object(reader, "_try_pypdf", new_callable=AsyncMock, return_value=None),
            pytest.raises(ScannedDocumentError),
        ):
            await reader.extract_pdf_text(b"%PDF-1.4", PDF_URL, listing_id="REQ0001")

    @pytest.mark.asyncio
    async def test_encrypted_pdf_raises(self) -> None:
        """A password error from pdfplumber is not retried with pypdf."""
        reader = DocumentReader(client=httpx.AsyncClient(transport=_serving(b"")))
        with (
            patch("pdfplumber.open", side_effect=Exception("password required")),
            pytest.raises(EncryptedDocumentError, match="password-protected"),
        ):
            await reader.extract_pdf_text(b"%PDF-1.4", PDF_URL)

    @pytest.mark.asyncio
    async def test_reads_docx_attachment(self) -> None:
        """DOCX paragraphs are extracted; the format is sniffed from the bytes."""
        data = _docx_bytes("Role Description", "Key accountabilities", "Manage stakeholders")
        reader = _reader(_serving(data))

        result = await reader.read(
            ListingDocument(url="https://x.gov.au/file.ashx?id=9", doc_type="doc")
        )

        assert result.doc_type == "docx"
        assert result.text == "Role Description\n\nKey accountabilities\n\nManage stakeholders"

    @pytest.mark.asyncio
    async def test_text_truncated_to_max_chars(self) -> None:
        """Extracted text is capped per document."""
        reader = _reader(_serving(_docx_bytes("A" * 500)), max_chars=100)
        result = await reader.read(ListingDocument(url="https://x.gov.au/rd.docx"))
        assert result.text == "A" * 100

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("content", "status", "config"),
        [
            (b"missing", 404, {}),
            (b"%PDF" + b"0" * 200, 200, {"max_bytes": 100}),
            (b"<html>not a document</html>", 200, {}),
        ],
    )
    async def test_unusable_download_raises(
        self, content: bytes, status: int, config: dict[str, object]
    ) -> None:
        """Error statuses, oversized files and unknown formats are DocumentErrors."""
        reader = _reader(_serving(content, status=status), **config)
        with pytest.raises(DocumentError) as exc_info:
            await reader.read(ListingDocument(url="https://x.gov.au/file.ashx"), "REQ0001")
        assert exc_info.value.listing_id == "REQ0001"

    @pytest.mark.asyncio
    async def test_read_all_keeps_failed_references(self) -> None:
        """A failed download leaves the reference in place without text."""

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("broken.docx"):
                return httpx.Response(500)
            return httpx.Response(200, content=_docx_bytes("Role Description text"))

        reader = _reader(httpx.MockTransport(handler))
        documents = [
            ListingDocument(url="https://x.gov.au/broken.docx"),
            ListingDocument(url="https://x.gov.au/good.docx"),
        ]

        results = await reader.read_all(documents, listing_id="REQ0001")

        assert [r.url for r in results] == [d.url for d in documents]
        assert results[0].text is None
        assert results[1].text == "Role Description text"

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self) -> None:
        """Closing twice is harmless."""
        reader = DocumentReader(client=httpx.AsyncClient(transport=_serving(b"")))
        await reader.close()
        await reader.close()
