"""Pydantic models for crawl requests, results and jobs."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..config import (
    DEFAULT_MAX_ITEMS,
    DEFAULT_MAX_PAGES,
    REQUEST_DELAY,
    REQUEST_RETRIES,
    REQUEST_TIMEOUT,
)
from .session import Credentials


class SourceSite(str, Enum):
    SMARTSTORE = "SMARTSTORE"
    NAVER_BLOG = "NAVER_BLOG"
    COUPANG = "COUPANG"
    GMARKET = "GMARKET"
    AUCTION = "AUCTION"
    ELEVENST = "ELEVENST"


class JobStatus(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)


# ── Settings ─────────────────────────────────────────────────────────────────


class RangeFilter(BaseModel):
    min: Optional[float] = None
    max: Optional[float] = None

    def rejects(self, value: Optional[float]) -> bool:
        """Items without a value are never rejected."""
        if value is None:
            return False
        if self.min is not None and value < self.min:
            return True
        if self.max is not None and value > self.max:
            return True
        return False


class CrawlFilters(BaseModel):
    rating: Optional[RangeFilter] = None
    price: Optional[RangeFilter] = None
    keywords: list[str] = Field(default_factory=list)
    exclude_keywords: list[str] = Field(default_factory=list)


class CrawlSettings(BaseModel):
    """Per-call overrides supplied with a crawl request."""

    max_pages: Optional[int] = Field(default=None, ge=1)
    max_items: Optional[int] = Field(default=None, ge=1)
    request_delay: Optional[float] = Field(default=None, ge=0)
    user_agent: Optional[str] = None
    filters: Optional[CrawlFilters] = None


class CrawlOptions(BaseModel):
    """Effective crawler bounds: instance defaults merged with per-call settings."""

    max_pages: int = Field(default=DEFAULT_MAX_PAGES, ge=1)
    max_items: int = Field(default=DEFAULT_MAX_ITEMS, ge=1)
    request_delay: float = REQUEST_DELAY  # seconds
    timeout: float = REQUEST_TIMEOUT  # seconds
    retries: int = Field(default=REQUEST_RETRIES, ge=1)
    user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/139.0.0.0 Safari/537.36"
    )
    proxy_url: Optional[str] = None
    cookies: dict[str, str] = Field(default_factory=dict)
    filters: Optional[CrawlFilters] = None
    credentials: Optional[Credentials] = None

    def merged(self, settings: Optional[CrawlSettings]) -> CrawlOptions:
        if settings is None:
            return self.model_copy()
        update = {
            name: getattr(settings, name)
            for name in CrawlSettings.model_fields
            if getattr(settings, name) is not None
        }
        return self.model_copy(update=update)


# ── Results ──────────────────────────────────────────────────────────────────


class CrawlResultItem(BaseModel):
    """One extracted record. Immutable once emitted."""

    model_config = ConfigDict(frozen=True)

    item_id: str
    title: Optional[str] = None
    content: Optional[str] = None
    url: Optional[str] = None
    rating: Optional[float] = None
    review_date: Optional[datetime] = None
    reviewer_name: Optional[str] = None
    is_verified: Optional[bool] = None
    price: Optional[float] = None
    original_price: Optional[float] = None
    discount: Optional[float] = None
    image_urls: list[str] = Field(default_factory=list)
    page_number: int
    item_order: int
    site_data: dict[str, Any] = Field(default_factory=dict)


class CrawlProgress(BaseModel):
    current_page: int = 0
    total_pages: int = 0
    items_found: int = 0
    items_crawled: int = 0
    pages_processed: int = 0
    message: str = ""


class CrawlStats(BaseModel):
    """Counters for one crawl run.

    ``pages_attempted`` counts every page the loop tried to fetch, including
    the empty page that ends pagination and pages that raised.
    ``pages_processed`` counts only pages that yielded at least one item.
    """

    pages_attempted: int = 0
    pages_processed: int = 0
    pages_failed: int = 0
    items_found: int = 0
    items_crawled: int = 0


# ── Jobs ─────────────────────────────────────────────────────────────────────


class StartCrawlRequest(BaseModel):
    principal: str = Field(min_length=1, description="User the job runs for (e.g. email)")
    source_site: str
    search_url: str
    search_keywords: Optional[str] = None
    device_id: Optional[str] = None
    crawl_settings: CrawlSettings = Field(default_factory=CrawlSettings)
    credentials: Optional[Credentials] = Field(default=None, exclude=True)


class CrawlJob(BaseModel):
    """Persisted state of one crawl job."""

    id: int
    principal: str
    source_site: str
    search_url: str
    search_keywords: Optional[str] = None
    device_id: Optional[str] = None
    status: JobStatus = JobStatus.PENDING
    max_pages: Optional[int] = None
    max_items: Optional[int] = None
    request_delay: Optional[float] = None
    items_found: int = 0
    items_crawled: int = 0
    pages_processed: int = 0
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    duration_ms: Optional[int] = None
    error_message: Optional[str] = None
    created_at: str = Field(default_factory=lambda: datetime.utcnow().isoformat())
