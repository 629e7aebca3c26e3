"""Enrichment analyzer: LLM classification of a listing against the capability
framework and the skill taxonomy."""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING, Any, TypeVar
from uuid import uuid5

import anthropic
import instructor
import structlog
from anthropic import AsyncAnthropic
from pydantic import BaseModel, Field
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_fixed

from jobs_etl_core.config.components import AnalyzerConfig
from jobs_etl_core.constants import ROLE_NAMESPACE
from jobs_etl_core.exceptions import AnalysisError, ConfigurationError
from jobs_etl_core.models.capability import (
    CapabilityDefinition,
    CapabilityMatch,
    ProficiencyLevel,
    TaxonomyGroup,
)
from jobs_etl_core.models.listing import ListingDetail
from jobs_etl_core.models.record import Classification
from jobs_etl_pipeline.prompts.analyzer import (
    CAPABILITY_SYSTEM,
    CAPABILITY_USER,
    TAXONOMY_SYSTEM,
    TAXONOMY_USER,
    format_catalog,
    format_taxonomy,
)

if TYPE_CHECKING:
    from jobs_etl_core.config.settings import Settings

T = TypeVar("T", bound=BaseModel)

logger = structlog.get_logger()

RETRYABLE_LLM_ERRORS: tuple[type[BaseException], ...] = (
    TimeoutError,
    anthropic.APIConnectionError,
    anthropic.RateLimitError,
    anthropic.InternalServerError,
)


class CapabilityAssessment(BaseModel):
    """One capability the model judged relevant."""

    name: str = Field(description="Capability name exactly as listed in the framework")
    level: str = Field(description="foundational | intermediate | adept | advanced | highly advanced")
    relevance: float = Field(ge=0.0, le=1.0, description="How central the capability is")


class CapabilityResponse(BaseModel):
    """LLM output of the capability assessment call."""

    capabilities: list[CapabilityAssessment] = Field(default_factory=list)


class TaxonomyResponse(BaseModel):
    """LLM output of the skill taxonomy call."""

    technical_skills: list[str] = Field(default_factory=list)
    soft_skills: list[str] = Field(default_factory=list)
    taxonomy_groups: list[str] = Field(default_factory=list, description="Taxonomy group names")
    summary: str = Field(default="", description="One or two sentence role summary")


def _normalize(value: str) -> str:
    return " ".join(value.lower().split())


def role_id_for(organisation: str, title: str) -> str:
    """Deterministic role identifier from organisation and title."""
    return str(uuid5(ROLE_NAMESPACE, f"{_normalize(organisation)}|{_normalize(title)}"))


def _distinct(phrases: list[str]) -> list[str]:
    seen: set[str] = set()
    result: list[str] = []
    for phrase in phrases:
        cleaned = " ".join(phrase.split())
        if cleaned and cleaned.lower() not in seen:
            seen.add(cleaned.lower())
            result.append(cleaned)
    return result


class EnrichmentAnalyzer:
    """Two structured LLM calls per listing: capabilities, then skill taxonomy."""

    def __init__(self, config: AnalyzerConfig, client: Any = None) -> None:  # noqa: ANN401
        """Initialize with analyzer settings and an instructor-patched client."""
        self._config = config
        self._instructor = client

    @classmethod
    def from_settings(cls, settings: Settings) -> EnrichmentAnalyzer:
        """Build an analyzer backed by the Anthropic API."""
        if settings.anthropic_api_key is None:
            msg = "anthropic_api_key is required for classification"
            raise ConfigurationError(msg)
        client = instructor.from_anthropic(
            AsyncAnthropic(api_key=settings.anthropic_api_key.get_secret_value())
        )
        return cls(AnalyzerConfig.from_settings(settings), client=client)

    async def classify(
        self,
        detail: ListingDetail,
        catalog: list[CapabilityDefinition],
        taxonomy_groups: list[TaxonomyGroup],
    ) -> Classification:
        """Classify one listing. Raises AnalysisError when the model cannot be reached."""
        if not catalog:
            msg = "Capability catalog is empty; load the framework before analysing"
            raise AnalysisError(msg, listing_id=detail.listing_id)

        start = time.monotonic()
        listing_text = detail.analysis_text()

        capability_response = await self._call_llm(
            CAPABILITY_SYSTEM,
            CAPABILITY_USER.format(
                catalog=format_catalog([(c.group_name, c.name, c.description) for c in catalog]),
                listing=listing_text,
            ),
            CapabilityResponse,
            detail.listing_id,
        )
        matches = self._resolve_capabilities(capability_response, catalog, detail.listing_id)

        taxonomy_response = await self._call_llm(
            TAXONOMY_SYSTEM,
            TAXONOMY_USER.format(
                taxonomy=format_taxonomy([(g.name, g.description) for g in taxonomy_groups]),
                listing=listing_text,
            ),
            TaxonomyResponse,
            detail.listing_id,
        )
        taxonomy_ids = self._resolve_taxonomy(taxonomy_response, taxonomy_groups, detail.listing_id)

        logger.info(
            "listing_classified",
            listing_id=detail.listing_id,
            capabilities=len(matches),
            taxonomy_groups=len(taxonomy_ids),
            duration=round(time.monotonic() - start, 2),
        )
        return Classification(
            capabilities=matches,
            technical_skills=_distinct(taxonomy_response.technical_skills),
            soft_skills=_distinct(taxonomy_response.soft_skills),
            taxonomy_ids=taxonomy_ids,
            role_id=role_id_for(detail.organisation, detail.title),
            summary=taxonomy_response.summary.strip(),
        )

    async def _call_llm(
        self,
        system: str,
        user: str,
        response_model: type[T],
        listing_id: str,
    ) -> T:
        """Structured call with fixed temperature, timeout and fixed-delay retry."""
        cfg = self._config
        if self._instructor is None:
            msg = "EnrichmentAnalyzer has no LLM client"
            raise ConfigurationError(msg)

        @retry(
            stop=stop_after_attempt(cfg.retry_attempts),
            wait=wait_fixed(cfg.retry_delay_seconds),
            retry=retry_if_exception_type(RETRYABLE_LLM_ERRORS),
            reraise=True,
        )
        async def _do_call() -> T:
            response: T = await asyncio.wait_for(
                self._instructor.messages.create(
                    model=cfg.model,
                    max_tokens=cfg.max_tokens,
                    temperature=cfg.temperature,
                    system=system,
                    messages=[{"role": "user", "content": user}],
                    response_model=response_model,
                ),
                timeout=cfg.timeout_seconds,
            )
            return response

        try:
            return await _do_call()
        except Exception as e:
            msg = f"{response_model.__name__} call failed for {listing_id}: {e!r}"
            raise AnalysisError(msg, listing_id=listing_id) from e

    def _resolve_capabilities(
        self,
        response: CapabilityResponse,
        catalog: list[CapabilityDefinition],
        listing_id: str,
    ) -> list[CapabilityMatch]:
        """Map model output onto catalog ids and apply the keep policy."""
        by_key: dict[str, CapabilityDefinition] = {}
        for capability in catalog:
            by_key[_normalize(capability.name)] = capability
            by_key[_normalize(capability.capability_id)] = capability

        best: dict[str, CapabilityMatch] = {}
        for item in response.capabilities:
            capability = by_key.get(_normalize(item.name))
            if capability is None:
                logger.warning("unknown_capability_dropped", listing_id=listing_id, name=item.name)
                continue
            try:
                level = ProficiencyLevel.parse(item.level)
            except ValueError:
                logger.warning(
                    "unknown_level_dropped",
                    listing_id=listing_id,
                    name=item.name,
                    level=item.level,
                )
                continue
            match = CapabilityMatch(
                capability_id=capability.capability_id,
                name=capability.name,
                level=level,
                relevance=item.relevance,
            )
            current = best.get(match.capability_id)
            if current is None or match.relevance > current.relevance:
                best[match.capability_id] = match

        kept = sorted(
            (m for m in best.values() if m.relevance >= self._config.min_relevance),
            key=lambda m: m.relevance,
            reverse=True,
        )
        if self._config.max_capabilities is not None:
            kept = kept[: self._config.max_capabilities]
        return kept

    def _resolve_taxonomy(
        self,
        response: TaxonomyResponse,
        groups: list[TaxonomyGroup],
        listing_id: str,
    ) -> list[str]:
        by_key: dict[str, TaxonomyGroup] = {}
        for group in groups:
            by_key[_normalize(group.name)] = group
            by_key[_normalize(group.taxonomy_id)] = group

        ids: list[str] = []
        for name in response.taxonomy_groups:
            group = by_key.get(_normalize(name))
            if group is None:
                logger.warning("unknown_taxonomy_dropped", listing_id=listing_id, name=name)
                continue
            if group.taxonomy_id not in ids:
                ids.append(group.taxonomy_id)
        return ids
