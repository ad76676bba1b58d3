"""Abstract crawl contract shared by every site adapter.

A crawler instance runs one crawl at a time. ``stop()`` is cooperative: the
pagination loop checks it once per page, so a page in flight always finishes.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import random
import sys
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import httpx

from ..config import MAX_PAGES_HARD_CAP
from ..constants import HTTP_HEADERS
from ..errors import AuthenticationError, CrawlerBusyError, FetchError, PageLimitExceededError, RetryableError
from ..models.crawl import (
    CrawlFilters,
    CrawlOptions,
    CrawlProgress,
    CrawlResultItem,
    CrawlSettings,
    CrawlStats,
    SourceSite,
)

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)


async def _maybe_await(fn: Optional[Callable[[Any], Any]], arg: Any):
    if fn is None:
        return
    result = fn(arg)
    if inspect.isawaitable(result):
        await result


@dataclass
class CrawlCallback:
    """Optional progress sinks. Plain functions and coroutines both work."""

    on_progress: Optional[Callable[[CrawlProgress], Any]] = None
    on_item: Optional[Callable[[CrawlResultItem], Any]] = None
    on_error: Optional[Callable[[Exception], Any]] = None

    async def progress(self, progress: CrawlProgress):
        await _maybe_await(self.on_progress, progress)

    async def item(self, item: CrawlResultItem):
        await _maybe_await(self.on_item, item)

    async def error(self, error: Exception):
        await _maybe_await(self.on_error, error)


def apply_filters(items: list[CrawlResultItem], filters: Optional[CrawlFilters]) -> list[CrawlResultItem]:
    """Keep items passing the rating/price ranges and keyword rules."""
    if filters is None:
        return items

    kept = []
    for item in items:
        if filters.rating and filters.rating.rejects(item.rating):
            continue
        if filters.price and filters.price.rejects(item.price):
            continue
        text = f"{item.title or ''} {item.content or ''}".lower()
        if filters.keywords and not any(k.lower() in text for k in filters.keywords):
            continue
        if filters.exclude_keywords and any(k.lower() in text for k in filters.exclude_keywords):
            continue
        kept.append(item)
    return kept


class BaseCrawler(ABC):
    """Template for a site adapter: bounds, retries, pacing and cancellation."""

    source_site: SourceSite

    def __init__(
        self,
        options: Optional[CrawlOptions] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.options = options or CrawlOptions()
        self.stats = CrawlStats()
        self._transport = transport
        self._is_running = False
        self._should_stop = False

    # ── Lifecycle ────────────────────────────────────────────────────────

    async def crawl(
        self,
        url: str,
        settings: Optional[CrawlSettings] = None,
        callback: Optional[CrawlCallback] = None,
    ) -> list[CrawlResultItem]:
        if self._is_running:
            raise CrawlerBusyError()

        self._is_running = True
        self._should_stop = False
        self.stats = CrawlStats()
        callback = callback or CrawlCallback()

        try:
            options = self.options.merged(settings)
            return await self.perform_crawl(url, options, callback)
        except Exception as e:
            logger.error(f"Crawl of {url} failed: {e}")
            await callback.error(e)
            raise
        finally:
            self._is_running = False

    def stop(self):
        logger.info(f"Stop requested for {self.source_site.value} crawler")
        self._should_stop = True

    @property
    def is_running(self) -> bool:
        return self._is_running

    @property
    def should_stop(self) -> bool:
        return self._should_stop

    def status(self) -> dict:
        return {"is_running": self._is_running, "should_stop": self._should_stop}

    # ── Adapter hooks ────────────────────────────────────────────────────

    @abstractmethod
    async def perform_crawl(
        self, url: str, options: CrawlOptions, callback: CrawlCallback
    ) -> list[CrawlResultItem]:
        ...

    @abstractmethod
    def parse_url(self, url: str) -> dict:
        """Validate a target URL and pull search parameters out of it.

        Always returns a dict with an ``is_valid`` key.
        """

    @abstractmethod
    def parse_page(self, html: str, page_number: int) -> list[CrawlResultItem]:
        ...

    # ── Pagination ───────────────────────────────────────────────────────

    async def paginate(
        self,
        options: CrawlOptions,
        callback: CrawlCallback,
        load_page: Callable[[int], Awaitable[list[CrawlResultItem]]],
    ) -> list[CrawlResultItem]:
        """Walk pages 1..N until a page comes back empty or a bound is hit.

        A page that raises is reported and skipped. Authentication failures
        and the page cap are not page-level problems and propagate.
        """
        results: list[CrawlResultItem] = []
        stats = self.stats
        max_pages = min(options.max_pages, MAX_PAGES_HARD_CAP)

        await callback.progress(CrawlProgress(total_pages=max_pages, message="Starting crawl"))

        page_number = 1
        while page_number <= max_pages and len(results) < options.max_items and not self._should_stop:
            await callback.progress(
                CrawlProgress(
                    current_page=page_number,
                    total_pages=max_pages,
                    items_found=stats.items_found,
                    items_crawled=len(results),
                    pages_processed=stats.pages_processed,
                    message=f"Processing page {page_number}",
                )
            )
            stats.pages_attempted += 1

            try:
                page_items = await load_page(page_number)
            except (AuthenticationError, PageLimitExceededError):
                raise
            except Exception as e:
                stats.pages_failed += 1
                logger.error(f"Error crawling page {page_number}: {e}")
                await callback.error(e)
                await self.page_delay(options)
                page_number += 1
                continue

            if not page_items:
                logger.info(f"Page {page_number} has no items, stopping crawl")
                break

            stats.pages_processed += 1
            stats.items_found += len(page_items)

            kept = apply_filters(page_items, options.filters)
            kept = kept[: options.max_items - len(results)]
            results.extend(kept)
            stats.items_crawled = len(results)
            for item in kept:
                await callback.item(item)

            await self.page_delay(options)
            page_number += 1

        if self._should_stop:
            logger.info(f"Crawl stopped after {stats.pages_attempted} pages")

        await callback.progress(
            CrawlProgress(
                current_page=stats.pages_processed,
                total_pages=max_pages,
                items_found=stats.items_found,
                items_crawled=len(results),
                pages_processed=stats.pages_processed,
                message=f"Crawl finished: {len(results)} items collected",
            )
        )
        return results

    # ── HTTP ─────────────────────────────────────────────────────────────

    def http_client(self, options: CrawlOptions) -> httpx.AsyncClient:
        """Client with browser-like headers and the caller's cookies."""
        kwargs = {}
        if options.proxy_url:
            kwargs["proxy"] = options.proxy_url
        return httpx.AsyncClient(
            headers={"User-Agent": options.user_agent, **HTTP_HEADERS},
            cookies=options.cookies,
            timeout=options.timeout,
            follow_redirects=True,
            transport=self._transport,
            **kwargs,
        )

    async def with_retry(self, operation: Callable[[], Awaitable[Any]], retries: int, label: str = "") -> Any:
        """Run ``operation`` up to ``retries`` times, sleeping 2**attempt s between tries.

        Only transient errors are retried.
        """
        for attempt in range(retries):
            try:
                return await operation()
            except (httpx.HTTPError, RetryableError) as e:
                if attempt == retries - 1:
                    raise
                delay = 2**attempt
                logger.warning(f"Attempt {attempt + 1}/{retries} failed for {label}: {e}. Retrying in {delay}s")
                await asyncio.sleep(delay)

    async def fetch_with_retry(self, client: httpx.AsyncClient, url: str, retries: Optional[int] = None) -> str:
        retries = retries or self.options.retries

        async def _get() -> str:
            response = await client.get(url)
            logger.info(f"GET {url}: status={response.status_code}, size={len(response.text)} chars")
            response.raise_for_status()
            return response.text

        try:
            return await self.with_retry(_get, retries, url)
        except httpx.HTTPError as e:
            status = e.response.status_code if isinstance(e, httpx.HTTPStatusError) else None
            raise FetchError(url, f"Failed after {retries} attempts: {e}", status) from e

    async def page_delay(self, options: CrawlOptions):
        """Randomized pause between pages: request_delay to 1.5x request_delay."""
        await asyncio.sleep(options.request_delay * random.uniform(1.0, 1.5))
