"""HTML parsing for the results list and listing detail pages."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from urllib.parse import urljoin

import httpx
from bs4 import BeautifulSoup, Tag

from jobs_etl_core.constants import (
    DOCUMENT_ROLE_TERMS,
    PRIMARY_DOCUMENT_KEYWORDS,
    SECONDARY_DOCUMENT_KEYWORDS,
)
from jobs_etl_core.exceptions import ListingParseError
from jobs_etl_core.models.listing import (
    ContactDetails,
    ListingDetail,
    ListingDocument,
    ListingSummary,
)

CARD_SELECTOR = ".job-card, .search-result-card"
_DATE_FORMATS = ("%d %b %Y", "%d %B %Y", "%d-%b-%Y", "%d/%m/%Y", "%Y-%m-%d")
_DATES_RE = re.compile(
    r"(?:Job posting|Posted)\s*:\s*(?P<posted>.+?)\s+-\s+(?:Closing date|Closes)\s*:\s*(?P<closing>.+)",
    re.IGNORECASE,
)
_PAGE_OF_RE = re.compile(r"Page\s+\d+\s+of\s+(\d+)", re.IGNORECASE)
_EMAIL_RE = re.compile(r"[\w.+-]+@[\w-]+(?:\.[\w-]+)+")
_PHONE_RE = re.compile(r"(?:phone|tel|mob)[.:\s]*((?:\+?\d[\d ]{6,}\d))", re.IGNORECASE)
_NAME_RE = re.compile(
    r"(?i:contact|attention|enquiries(?: to)?)[.:\s]+([A-Z][a-z]+(?:\s+[A-Z][a-z]+){0,3})"
)
_CONTACT_RE = re.compile(r"(?:enquiries|contact|email|phone|tel)[\s\S]*?(?=\n\n|\Z)", re.IGNORECASE)
_SECTION_SPLIT_RE = re.compile(r"\n{2,}")
_NUMBERED_RE = re.compile(r"\d+\.")


@dataclass
class ResultsPage:
    """One parsed page of the results list."""

    summaries: list[ListingSummary] = field(default_factory=list)
    total_pages: int | None = None
    skipped: int = 0


def build_page_url(base_url: str, page: int, page_size: int) -> str:
    """URL of a 1-based results page."""
    url = httpx.URL(base_url).copy_merge_params({"page": page, "pageSize": page_size})
    return str(url)


def parse_date(raw: str | None) -> date | None:
    """Parse the date formats used by the source; None when unrecognised."""
    if not raw:
        return None
    text = raw.strip().rstrip(".")
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def _parse_timestamp(raw: str | None) -> datetime | None:
    if not raw:
        return None
    try:
        value = datetime.fromisoformat(raw.strip())
    except ValueError:
        return None
    return value if value.tzinfo else value.replace(tzinfo=UTC)


def _text(node: Tag | None) -> str:
    return node.get_text(" ", strip=True) if node is not None else ""


def _first_text(card: Tag, *selectors: str) -> str:
    for selector in selectors:
        value = _text(card.select_one(selector))
        if value:
            return value
    return ""


def _strip_label(value: str) -> str:
    """Drop a leading 'Label:' prefix."""
    return value.split(":", 1)[1].strip() if ":" in value else value.strip()


def parse_results_page(html: str, base_url: str) -> ResultsPage:
    """Extract listing summaries and the advertised page count."""
    soup = BeautifulSoup(html, "html.parser")
    page = ResultsPage()

    for card in soup.select(CARD_SELECTOR):
        link = (
            card.select_one(".card-header a")
            or card.select_one("[class*='title'] a")
            or card.select_one("h2 a")
            or card.select_one("a")
        )
        title = _text(link.select_one("span") or link) if link is not None else ""
        listing_id = _strip_label(
            _first_text(card, ".job-search-result-ref-no", "[class*='reference']", "[class*='job-id']")
        )
        href = link.get("href") if link is not None else None
        if not title or not listing_id or not isinstance(href, str):
            page.skipped += 1
            continue

        posted_at = closing_at = None
        match = _DATES_RE.search(_first_text(card, ".card-body p", "[class*='date']"))
        if match:
            posted_at = parse_date(match.group("posted"))
            closing_at = parse_date(match.group("closing"))

        location = _first_text(card, ".nsw-col p:nth-child(3) span", "[class*='location']")
        modified = card.get("data-modified")
        page.summaries.append(
            ListingSummary(
                listing_id=listing_id,
                title=title,
                organisation=_first_text(
                    card,
                    ".job-search-result-right h2",
                    "[class*='department']",
                    "[class*='agency']",
                )
                or "NSW Government",
                locations=[loc.strip() for loc in location.split(";") if loc.strip()],
                posted_at=posted_at,
                closing_at=closing_at,
                detail_url=urljoin(base_url, href),
                salary=_first_text(card, ".salary", "[class*='remuneration']", "[class*='salary']")
                or None,
                modified_at=_parse_timestamp(modified if isinstance(modified, str) else None),
            )
        )

    page.total_pages = _parse_total_pages(soup)
    return page


def _parse_total_pages(soup: BeautifulSoup) -> int | None:
    match = _PAGE_OF_RE.search(_text(soup.select_one(".pagination, [class*='pager']")))
    if match:
        return int(match.group(1))
    numbers = [
        int(a.get_text(strip=True))
        for a in soup.select(".pagination a, [class*='pager'] a")
        if a.get_text(strip=True).isdigit()
    ]
    return max(numbers) if numbers else None


def is_relevant_document(text: str) -> bool:
    """Role descriptions always qualify; info packs only alongside a role term."""
    lowered = text.lower()
    if any(k in lowered for k in PRIMARY_DOCUMENT_KEYWORDS):
        return True
    if any(k in lowered for k in SECONDARY_DOCUMENT_KEYWORDS):
        return any(t in lowered for t in DOCUMENT_ROLE_TERMS)
    return False


def document_type(url: str) -> str:
    """Infer the document format from its URL."""
    lowered = url.lower().split("?", 1)[0]
    for ext in ("pdf", "docx", "doc"):
        if lowered.endswith(f".{ext}"):
            return ext
    if "transferrichtextfile.ashx" in url.lower():
        return "doc"
    return "unknown"


def extract_contact(description: str) -> ContactDetails:
    """Pull an enquiry contact out of free text."""
    section = _CONTACT_RE.search(description)
    if section is None:
        return ContactDetails()
    block = section.group(0)
    email = _EMAIL_RE.search(block)
    phone = _PHONE_RE.search(block)
    name = _NAME_RE.search(block)
    return ContactDetails(
        name=name.group(1).strip() if name else None,
        phone=" ".join(phone.group(1).split()) if phone else None,
        email=email.group(0) if email else None,
    )


def _summary_table(soup: BeautifulSoup) -> dict[str, str]:
    table: dict[str, str] = {}
    for row in soup.select("table.job-summary tr"):
        cells = row.find_all("td")
        if len(cells) >= 2:
            table[_text(cells[0]).lower().rstrip(":")] = _text(cells[-1])
    return table


def _lookup(table: dict[str, str], label: str) -> str:
    for key, value in table.items():
        if label in key:
            return value
    return ""


def parse_detail_page(html: str, summary: ListingSummary) -> ListingDetail:
    """Build a ListingDetail; a page without a description is unparseable."""
    soup = BeautifulSoup(html, "html.parser")
    body = soup.select_one(".job-detail-des")
    if body is None:
        msg = f"Detail page for {summary.listing_id} has no description block"
        raise ListingParseError(msg, listing_id=summary.listing_id)
    description = body.get_text("\n", strip=False).strip()
    description = re.sub(r"[ \t]+", " ", description)
    if not description:
        msg = f"Detail page for {summary.listing_id} has an empty description"
        raise ListingParseError(msg, listing_id=summary.listing_id)

    responsibilities: list[str] = []
    requirements: list[str] = []
    notes: list[str] = []
    about_us = ""
    for section in (s.strip() for s in _SECTION_SPLIT_RE.split(description)):
        lowered = section.lower()
        if not section:
            continue
        if "key selection criteria" in lowered or "essential" in lowered:
            requirements.extend(p.strip() for p in _NUMBERED_RE.split(section) if p.strip())
        elif any(k in lowered for k in ("summary role", "role description", "responsibilities")):
            responsibilities.append(section)
        elif "about us" in lowered or "about the organisation" in lowered:
            about_us = section
        elif "note" in lowered or "additional information" in lowered:
            notes.append(section)

    documents: list[ListingDocument] = []
    seen_urls: set[str] = set()
    for link in soup.find_all("a"):
        href = link.get("href")
        text = link.get_text(" ", strip=True)
        if not isinstance(href, str) or not is_relevant_document(text):
            continue
        url = urljoin(summary.detail_url, href)
        if url in seen_urls:
            continue
        seen_urls.add(url)
        documents.append(ListingDocument(url=url, title=text or None, doc_type=document_type(url)))

    table = _summary_table(soup)
    location = _lookup(table, "job location")
    return ListingDetail.from_summary(
        summary,
        organisation=_lookup(table, "organisation") or None,
        locations=[loc.strip() for loc in location.split(";") if loc.strip()] or None,
        job_type=_lookup(table, "work type") or None,
        description=description,
        responsibilities=responsibilities,
        requirements=requirements,
        notes=notes,
        about_us=about_us,
        contact=extract_contact(description),
        documents=documents,
    )
