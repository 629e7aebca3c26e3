"""Acquisition service: enumerate the results list and fetch listing details."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import UTC, datetime
from types import TracebackType

import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_fixed

from jobs_etl_core.config.components import SpiderConfig
from jobs_etl_core.exceptions import FetchError, TransientFetchError
from jobs_etl_core.interfaces.fetcher import PageFetcher
from jobs_etl_core.models.listing import ListingDetail, ListingSummary
from jobs_etl_core.models.run import FetchErrorRecord, SpiderMetrics
from jobs_etl_pipeline.tools.document_reader import DocumentReader
from jobs_etl_pipeline.tools.factories import create_page_fetcher
from jobs_etl_pipeline.tools.listing_parser import (
    ResultsPage,
    build_page_url,
    parse_detail_page,
    parse_results_page,
)

logger = structlog.get_logger()

SummaryPredicate = Callable[[ListingSummary], bool]


class Spider:
    """Pages through the source and fetches detail pages through one fetcher.

    Use as an async context manager so the fetcher is released on every
    exit path::

        async with Spider(config) as spider:
            summaries = await spider.list_summaries(max_records=50)
    """

    def __init__(
        self,
        config: SpiderConfig,
        fetcher: PageFetcher | None = None,
        document_reader: DocumentReader | None = None,
    ) -> None:
        """Initialize with acquisition settings.

        The fetcher is created lazily if omitted. Attached documents are
        only read when a ``document_reader`` is given.
        """
        self._config = config
        self._fetcher = fetcher
        self._documents = document_reader
        self._semaphore = asyncio.Semaphore(config.page_concurrency)
        self._metrics = SpiderMetrics()
        self._closed = False
        self.last_enumeration_truncated = False

    async def __aenter__(self) -> Spider:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.cleanup()

    def _get_fetcher(self) -> PageFetcher:
        if self._fetcher is None:
            self._fetcher = create_page_fetcher(self._config)
        return self._fetcher

    async def _fetch(self, url: str, listing_id: str | None = None) -> str:
        """Fetch with the fixed-delay retry policy; raises FetchError on exhaustion."""
        cfg = self._config
        fetcher = self._get_fetcher()
        if self._metrics.started_at is None:
            self._metrics.started_at = datetime.now(UTC)

        @retry(
            stop=stop_after_attempt(cfg.retry_attempts),
            wait=wait_fixed(cfg.retry_delay_seconds),
            retry=retry_if_exception_type(TransientFetchError),
            reraise=True,
        )
        async def _do_fetch() -> str:
            async with self._semaphore:
                return await fetcher.fetch(url)

        try:
            return await _do_fetch()
        except TransientFetchError as e:
            msg = f"Giving up on {url} after {cfg.retry_attempts} attempts: {e}"
            raise FetchError(msg, listing_id=listing_id) from e
        except FetchError as e:
            raise FetchError(str(e), listing_id=listing_id) from e

    def _record(self, url: str, error: FetchError | None = None) -> None:
        self._metrics.total += 1
        if error is None:
            self._metrics.succeeded += 1
            return
        self._metrics.failed += 1
        self._metrics.errors.append(
            FetchErrorRecord(url=url, listing_id=error.listing_id, message=str(error))
        )

    async def _fetch_results_page(self, page_no: int) -> ResultsPage:
        url = build_page_url(self._config.base_url, page_no, self._config.page_size)
        try:
            html = await self._fetch(url)
        except FetchError as e:
            self._record(url, e)
            raise
        self._record(url)
        page = parse_results_page(html, self._config.base_url)
        logger.debug(
            "spider_page_fetched",
            page=page_no,
            listings=len(page.summaries),
            skipped=page.skipped,
            total_pages=page.total_pages,
        )
        return page

    async def list_summaries(
        self,
        max_records: int = 0,
        predicate: SummaryPredicate | None = None,
    ) -> list[ListingSummary]:
        """Enumerate summaries accepted by ``predicate``, stopping at ``max_records`` (0 = all).

        Pages are requested in windows of ``page_concurrency``. Enumeration
        ends on a short or empty page, at the advertised page count, or at
        ``max_pages``. A page that cannot be fetched raises FetchError.
        """
        cfg = self._config
        self.last_enumeration_truncated = False
        accepted: list[ListingSummary] = []
        seen: set[str] = set()
        total_pages: int | None = None
        next_page = 1
        done = False

        while not done and next_page <= cfg.max_pages:
            last = min(next_page + cfg.page_concurrency - 1, cfg.max_pages)
            if total_pages is not None:
                last = min(last, total_pages)
            window = list(range(next_page, last + 1))
            if not window:
                break
            pages = await asyncio.gather(*(self._fetch_results_page(n) for n in window))

            for page_no, page in zip(window, pages, strict=True):
                if page.total_pages is not None:
                    total_pages = page.total_pages
                for summary in page.summaries:
                    if summary.listing_id in seen:
                        continue
                    seen.add(summary.listing_id)
                    if predicate is not None and not predicate(summary):
                        continue
                    if max_records and len(accepted) >= max_records:
                        self.last_enumeration_truncated = True
                        done = True
                        break
                    accepted.append(summary)
                if done:
                    break
                row_count = len(page.summaries) + page.skipped
                if row_count < cfg.page_size or (total_pages is not None and page_no >= total_pages):
                    done = True
                    break
                if max_records and len(accepted) >= max_records:
                    # the cap is met but more pages may hold accepted listings
                    self.last_enumeration_truncated = True
                    done = True
                    break
            next_page = last + 1

        if not done and next_page > cfg.max_pages:
            self.last_enumeration_truncated = True
            logger.warning("spider_max_pages_reached", max_pages=cfg.max_pages)

        logger.info(
            "spider_enumeration_complete",
            listings=len(accepted),
            truncated=self.last_enumeration_truncated,
            pages=next_page - 1,
        )
        return accepted

    async def fetch_detail(self, summary: ListingSummary) -> ListingDetail:
        """Fetch and parse one detail page; parse failures are not retried."""
        try:
            html = await self._fetch(summary.detail_url, listing_id=summary.listing_id)
            detail = parse_detail_page(html, summary)
        except FetchError as e:
            self._record(summary.detail_url, e)
            logger.warning(
                "spider_detail_failed",
                listing_id=summary.listing_id,
                error=str(e),
            )
            raise
        self._record(summary.detail_url)
        if self._documents is not None and detail.documents:
            documents = await self._documents.read_all(
                detail.documents, listing_id=summary.listing_id
            )
            detail = detail.model_copy(update={"documents": documents})
        return detail

    async def fetch_details(
        self, summaries: list[ListingSummary]
    ) -> list[ListingDetail | FetchError]:
        """Fetch many detail pages; one result per input, same order, never dropped."""

        async def _safe(summary: ListingSummary) -> ListingDetail | FetchError:
            try:
                return await self.fetch_detail(summary)
            except FetchError as e:
                return e

        return list(await asyncio.gather(*(_safe(s) for s in summaries)))

    def metrics(self) -> SpiderMetrics:
        """Snapshot of request counters and errors."""
        return self._metrics.model_copy(deep=True)

    async def cleanup(self) -> None:
        """Release the fetcher and document reader. Idempotent."""
        if self._closed:
            return
        self._closed = True
        self._metrics.finished_at = datetime.now(UTC)
        if self._fetcher is not None:
            await self._fetcher.close()
        if self._documents is not None:
            await self._documents.close()
        logger.debug("spider_closed")
