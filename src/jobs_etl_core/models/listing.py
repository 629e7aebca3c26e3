"""Listing models: summary rows from the results pages and full detail pages."""

from __future__ import annotations

from datetime import UTC, date, datetime, time
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ListingSummary(BaseModel):
    """One row of the paginated results list."""

    model_config = ConfigDict(frozen=True)

    listing_id: str = Field(description="External reference number of the listing")
    title: str = Field(description="Job title")
    organisation: str = Field(description="Agency / organisational unit")
    locations: list[str] = Field(default_factory=list, description="Advertised locations")
    posted_at: date | None = Field(default=None, description="Posting date")
    closing_at: date | None = Field(default=None, description="Closing date")
    detail_url: str = Field(description="Absolute URL of the detail page")
    salary: str | None = Field(default=None, description="Advertised remuneration text")
    modified_at: datetime | None = Field(
        default=None,
        description="Last modification time; drives the incremental filter",
    )

    @model_validator(mode="after")
    def default_modified_at(self) -> ListingSummary:
        """Fall back to the posting date when the source gives no modification time."""
        if self.modified_at is None and self.posted_at is not None:
            object.__setattr__(
                self,
                "modified_at",
                datetime.combine(self.posted_at, time.min, tzinfo=UTC),
            )
        return self


class ListingDocument(BaseModel):
    """A document attached to a listing (role description, info pack)."""

    model_config = ConfigDict(frozen=True)

    url: str = Field(description="Absolute document URL")
    title: str | None = Field(default=None, description="Link text")
    doc_type: Literal["pdf", "doc", "docx", "unknown"] = Field(default="unknown")
    text: str | None = Field(default=None, description="Extracted text, when the download succeeded")


class ContactDetails(BaseModel):
    """Enquiry contact extracted from the description."""

    model_config = ConfigDict(frozen=True)

    name: str | None = None
    phone: str | None = None
    email: str | None = None


class ListingDetail(ListingSummary):
    """Full listing as parsed from its detail page."""

    description: str = Field(description="Full description text")
    responsibilities: list[str] = Field(default_factory=list)
    requirements: list[str] = Field(default_factory=list)
    notes: list[str] = Field(default_factory=list)
    about_us: str = Field(default="")
    job_type: str | None = Field(default=None, description="Work type (full-time, temporary)")
    contact: ContactDetails = Field(default_factory=ContactDetails)
    documents: list[ListingDocument] = Field(default_factory=list)

    @classmethod
    def from_summary(cls, summary: ListingSummary, **fields: object) -> ListingDetail:
        """Build a detail that carries every summary field plus the parsed extras."""
        data = summary.model_dump()
        data.update({k: v for k, v in fields.items() if v is not None})
        return cls(**data)

    def analysis_text(self) -> str:
        """Flatten the listing into the text block sent for classification."""
        parts = [
            f"Job Title: {self.title}",
            f"Agency: {self.organisation}",
            f"Job Type: {self.job_type or ''}",
            f"Location: {', '.join(self.locations)}",
            "Description:",
            self.description,
        ]
        if self.responsibilities:
            parts.append("Responsibilities:")
            parts.extend(f"- {r}" for r in self.responsibilities)
        if self.requirements:
            parts.append("Requirements:")
            parts.extend(f"- {r}" for r in self.requirements)
        if self.notes:
            parts.append("Notes:")
            parts.extend(f"- {n}" for n in self.notes)
        if self.about_us:
            parts.extend(["About Us:", self.about_us])
        for doc in self.documents:
            if doc.text:
                parts.extend([f"Attached Document: {doc.title or doc.url}", doc.text])
        return "\n\n".join(p for p in parts if p)
