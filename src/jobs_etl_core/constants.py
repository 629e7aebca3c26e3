"""Shared constants for jobs-etl."""

from __future__ import annotations

from uuid import UUID

# Stamped on every enriched record; bump when the record shape changes
PIPELINE_VERSION = "1.0.0"

# Prompt versions, increment when prompt templates change
CAPABILITY_PROMPT_VERSION = "v1"
TAXONOMY_PROMPT_VERSION = "v1"

DEFAULT_SOURCE_URL = (
    "https://iworkfor.nsw.gov.au/jobs/all-keywords/all-agencies/"
    "all-organisations-entities/all-categories/all-locations/all-worktypes"
)
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)

# Role identifiers are uuid5(ROLE_NAMESPACE, "<organisation>|<title>")
ROLE_NAMESPACE = UUID("6b1f4d0e-3a57-4c9e-9f43-2f7d8f1c5a10")

DEFAULT_CHECKPOINT_SCOPE = "listings"

# Attached documents worth keeping: primary keywords always qualify,
# secondary ones only alongside a role term
PRIMARY_DOCUMENT_KEYWORDS = (
    "role description",
    "position description",
    "job description",
    "duty statement",
    "statement of duties",
)
SECONDARY_DOCUMENT_KEYWORDS = (
    "information pack",
    "candidate pack",
    "application pack",
)
DOCUMENT_ROLE_TERMS = ("role", "position", "job", "candidate", "officer")

# HTTP statuses retried by the spider
RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})

# Skill identifiers are uuid5(SKILL_NAMESPACE, lowercased phrase)
SKILL_NAMESPACE = UUID("0c5e2a8b-91d4-4f6a-b3e7-58a1c2d9e4f3")
