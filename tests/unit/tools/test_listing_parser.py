"""Tests for results-page and detail-page parsing."""

from __future__ import annotations

import re
from datetime import UTC, date, datetime

import httpx
import pytest

from jobs_etl_core.exceptions import ListingParseError
from jobs_etl_pipeline.tools.listing_parser import (
    build_page_url,
    document_type,
    extract_contact,
    is_relevant_document,
    parse_date,
    parse_detail_page,
    parse_results_page,
)
from tests.mocks.mock_factories import (
    BASE_URL,
    detail_page_html,
    make_summary,
    results_page_html,
)


@pytest.mark.unit
class TestBuildPageUrl:
    """Test page URL construction."""

    def test_adds_paging_params(self) -> None:
        """page and pageSize are merged into the query."""
        url = httpx.URL(build_page_url(BASE_URL, 3, 25))
        assert url.params["page"] == "3"
        assert url.params["pageSize"] == "25"

    def test_keeps_existing_params(self) -> None:
        """Existing query parameters survive."""
        url = httpx.URL(build_page_url(f"{BASE_URL}?sort=newest", 1, 10))
        assert url.params["sort"] == "newest"


@pytest.mark.unit
class TestParseDate:
    """Test the source date formats."""

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("05 Jan 2026", date(2026, 1, 5)),
            ("5 January 2026", date(2026, 1, 5)),
            ("05-Jan-2026", date(2026, 1, 5)),
            ("05/01/2026", date(2026, 1, 5)),
            ("2026-01-05", date(2026, 1, 5)),
        ],
    )
    def test_formats(self, raw: str, expected: date) -> None:
        """Every supported format parses."""
        assert parse_date(raw) == expected

    def test_unrecognised(self) -> None:
        """Garbage and empty input give None."""
        assert parse_date("next week") is None
        assert parse_date(None) is None


@pytest.mark.unit
class TestParseResultsPage:
    """Test results-page parsing."""

    def test_parses_cards(self) -> None:
        """Every card becomes a summary with its fields."""
        summaries = [make_summary(i) for i in (1, 2, 3)]
        page = parse_results_page(results_page_html(summaries, 1, 4), BASE_URL)

        assert [s.listing_id for s in page.summaries] == ["REQ0001", "REQ0002", "REQ0003"]
        first = page.summaries[0]
        assert first.title == "Policy Officer 1"
        assert first.organisation == summaries[0].organisation
        assert first.locations == summaries[0].locations
        assert first.posted_at == summaries[0].posted_at
        assert first.closing_at == summaries[0].closing_at
        assert first.detail_url == "https://jobs.example.gov.au/job/REQ0001"
        assert first.salary == "$95,000 - $105,000"
        assert first.modified_at == summaries[0].modified_at
        assert page.total_pages == 4
        assert page.skipped == 0

    def test_card_without_reference_is_skipped(self) -> None:
        """A card missing its id is counted, not emitted."""
        html = results_page_html([make_summary(1)]).replace(
            "Job Reference: REQ0001", ""
        )
        page = parse_results_page(html, BASE_URL)
        assert page.summaries == []
        assert page.skipped == 1

    def test_multiple_locations(self) -> None:
        """Semicolon-separated locations are split."""
        summary = make_summary(1, locations=["Sydney", "Dubbo"])
        page = parse_results_page(results_page_html([summary]), BASE_URL)
        assert page.summaries[0].locations == ["Sydney", "Dubbo"]

    def test_missing_modified_falls_back_to_posting_date(self) -> None:
        """Without data-modified the posting date drives modified_at."""
        summary = make_summary(1)
        html = re.sub(r' data-modified="[^"]*"', "", results_page_html([summary]))
        page = parse_results_page(html, BASE_URL)
        posted = summary.posted_at
        assert posted is not None
        assert page.summaries[0].modified_at == datetime(
            posted.year, posted.month, posted.day, tzinfo=UTC
        )

    def test_total_pages_from_numbered_links(self) -> None:
        """Without 'Page N of M' the highest page link is used."""
        html = (
            "<html><body><ul class='pagination'>"
            "<li><a>1</a></li><li><a>2</a></li><li><a>7</a></li><li><a>Next</a></li>"
            "</ul></body></html>"
        )
        assert parse_results_page(html, BASE_URL).total_pages == 7

    def test_empty_page(self) -> None:
        """No cards and no pager."""
        page = parse_results_page("<html><body></body></html>", BASE_URL)
        assert page.summaries == []
        assert page.total_pages is None


@pytest.mark.unit
class TestParseDetailPage:
    """Test detail-page parsing."""

    def test_parses_sections_contact_and_documents(self) -> None:
        """Sections, contact, documents and summary table are extracted."""
        summary = make_summary(1)
        detail = parse_detail_page(detail_page_html(summary), summary)

        assert detail.listing_id == "REQ0001"
        assert "leads policy development" in detail.description
        assert any("Role Description" in r for r in detail.responsibilities)
        assert "Written communication" in detail.requirements
        assert "Stakeholder management" in detail.requirements
        assert detail.about_us.startswith("About us")
        assert detail.job_type == "Full-Time"
        assert detail.contact.email == "jane.citizen@example.gov.au"
        assert detail.contact.phone == "02 9999 1234"
        assert detail.contact.name == "Jane Citizen"
        assert len(detail.documents) == 1
        assert detail.documents[0].doc_type == "pdf"
        assert detail.documents[0].url == "https://jobs.example.gov.au/docs/REQ0001-rd.pdf"

    def test_missing_description_raises(self) -> None:
        """A page without the description block is a parse error."""
        summary = make_summary(1)
        with pytest.raises(ListingParseError) as exc_info:
            parse_detail_page(detail_page_html(summary, with_description=False), summary)
        assert exc_info.value.listing_id == "REQ0001"

    def test_empty_description_raises(self) -> None:
        """An empty description block is a parse error."""
        summary = make_summary(1)
        html = "<html><body><div class='job-detail-des'>   </div></body></html>"
        with pytest.raises(ListingParseError):
            parse_detail_page(html, summary)


@pytest.mark.unit
class TestDocumentHelpers:
    """Test document relevance and typing."""

    def test_role_description_always_relevant(self) -> None:
        """Primary keywords qualify on their own."""
        assert is_relevant_document("Role Description - Analyst")

    def test_info_pack_needs_role_term(self) -> None:
        """Secondary keywords need a role term."""
        assert is_relevant_document("Candidate information pack")
        assert not is_relevant_document("Information pack")

    def test_unrelated(self) -> None:
        """Other links are ignored."""
        assert not is_relevant_document("Privacy statement")

    @pytest.mark.parametrize(
        ("url", "expected"),
        [
            ("https://x.gov.au/a/rd.PDF", "pdf"),
            ("https://x.gov.au/a/rd.docx?v=2", "docx"),
            ("https://x.gov.au/a/rd.doc", "doc"),
            ("https://x.gov.au/TransferRichTextFile.ashx?id=1", "doc"),
            ("https://x.gov.au/a/rd", "unknown"),
        ],
    )
    def test_document_type(self, url: str, expected: str) -> None:
        """Type is inferred from the URL."""
        assert document_type(url) == expected

    def test_extract_contact_absent(self) -> None:
        """No enquiry block gives an empty contact."""
        contact = extract_contact("A role with no contact block at all")
        assert contact.email is None
        assert contact.phone is None
