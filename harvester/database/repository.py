"""Async repository for crawl jobs and their extracted items."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from datetime import datetime
from typing import Any, Optional

import aiosqlite

from ..errors import JobAlreadyRunningError
from ..models.crawl import CrawlJob, CrawlResultItem, JobStatus, StartCrawlRequest

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)

_UPDATABLE_COLUMNS = {
    "status",
    "items_found",
    "items_crawled",
    "pages_processed",
    "started_at",
    "completed_at",
    "duration_ms",
    "error_message",
}

_ITEM_INSERT = """
    INSERT INTO crawl_items (
        job_id, item_id, title, content, url, rating, review_date,
        reviewer_name, is_verified, price, original_price, discount,
        image_urls, page_number, item_order, site_data, created_at
    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
"""


class CrawlJobRepository:
    """SQLite-backed persistence sink for the job orchestrator.

    All writers share one connection, so each statement and its commit or
    rollback run under ``_lock``; a rollback must never discard another
    caller's uncommitted write.
    """

    def __init__(self, db: aiosqlite.Connection):
        self._db = db
        self._lock = asyncio.Lock()

    async def create_job(self, request: StartCrawlRequest) -> int:
        """Insert a PENDING job. Rejects a principal that already has one in flight."""
        settings = request.crawl_settings
        async with self._lock:
            async with self._db.execute(
                "SELECT id FROM crawl_jobs WHERE principal = ? AND status IN (?, ?)",
                (request.principal, JobStatus.PENDING.value, JobStatus.RUNNING.value),
            ) as cursor:
                if await cursor.fetchone():
                    raise JobAlreadyRunningError(request.principal)

            try:
                cursor = await self._db.execute(
                    """
                    INSERT INTO crawl_jobs (
                        principal, source_site, search_url, search_keywords, device_id,
                        status, max_pages, max_items, request_delay, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        request.principal, request.source_site, request.search_url,
                        request.search_keywords, request.device_id, JobStatus.PENDING.value,
                        settings.max_pages, settings.max_items, settings.request_delay,
                        datetime.utcnow().isoformat(),
                    ),
                )
            except aiosqlite.IntegrityError:
                # Another process holding the same database file got there first.
                await self._db.rollback()
                raise JobAlreadyRunningError(request.principal) from None
            await self._db.commit()
        logger.info(f"Created crawl job {cursor.lastrowid} for {request.source_site}")
        return cursor.lastrowid

    async def update_job(self, job_id: int, fields: dict[str, Any]):
        unknown = set(fields) - _UPDATABLE_COLUMNS
        if unknown:
            raise ValueError(f"Cannot update crawl_jobs columns: {sorted(unknown)}")
        if not fields:
            return

        values = [v.value if isinstance(v, JobStatus) else v for v in fields.values()]
        assignments = ", ".join(f"{name} = ?" for name in fields)
        async with self._lock:
            await self._db.execute(f"UPDATE crawl_jobs SET {assignments} WHERE id = ?", (*values, job_id))
            await self._db.commit()

    async def append_items(self, job_id: int, items: list[CrawlResultItem]) -> int:
        """Insert a batch; on failure, retry item by item and skip the bad ones.

        Returns the number of rows inserted.
        """
        if not items:
            return 0
        rows = [self._item_to_row(job_id, item) for item in items]
        async with self._lock:
            try:
                await self._db.executemany(_ITEM_INSERT, rows)
                await self._db.commit()
                return len(rows)
            except aiosqlite.Error as e:
                await self._db.rollback()
                logger.warning(f"Batch insert of {len(rows)} items failed ({e}), inserting one by one")

            inserted = 0
            for item, row in zip(items, rows):
                try:
                    await self._db.execute(_ITEM_INSERT, row)
                    await self._db.commit()
                    inserted += 1
                except aiosqlite.Error as e:
                    await self._db.rollback()
                    logger.warning(f"Skipping item {item.item_id} for job {job_id}: {e}")
            return inserted

    async def complete_job(self, job_id: int, success: bool, error: Optional[str] = None):
        """Move a job to COMPLETED or FAILED. A CANCELLED job is left as it is."""
        job = await self.get_job(job_id)
        if job is None:
            return

        completed_at = datetime.utcnow()
        duration_ms = None
        if job.started_at:
            started = datetime.fromisoformat(job.started_at)
            duration_ms = int((completed_at - started).total_seconds() * 1000)

        status = JobStatus.COMPLETED if success else JobStatus.FAILED
        async with self._lock:
            await self._db.execute(
                """
                UPDATE crawl_jobs
                SET status = ?, completed_at = ?, duration_ms = ?, error_message = ?
                WHERE id = ? AND status != ?
                """,
                (
                    status.value, completed_at.isoformat(), duration_ms, error,
                    job_id, JobStatus.CANCELLED.value,
                ),
            )
            await self._db.commit()

    async def get_job(self, job_id: int) -> Optional[CrawlJob]:
        async with self._db.execute("SELECT * FROM crawl_jobs WHERE id = ?", (job_id,)) as cursor:
            row = await cursor.fetchone()
            if row:
                return CrawlJob(**dict(zip([d[0] for d in cursor.description], row)))
        return None

    async def get_items(self, job_id: int) -> list[CrawlResultItem]:
        async with self._db.execute(
            "SELECT * FROM crawl_items WHERE job_id = ? ORDER BY page_number, item_order",
            (job_id,),
        ) as cursor:
            rows = await cursor.fetchall()
            return [self._row_to_item(row, cursor.description) for row in rows]

    async def recover_interrupted_jobs(self) -> int:
        """Fail jobs left PENDING or RUNNING by a previous process."""
        async with self._lock:
            cursor = await self._db.execute(
                "UPDATE crawl_jobs SET status = ?, error_message = ?, completed_at = ? WHERE status IN (?, ?)",
                (
                    JobStatus.FAILED.value, "Interrupted by service restart",
                    datetime.utcnow().isoformat(), JobStatus.PENDING.value, JobStatus.RUNNING.value,
                ),
            )
            await self._db.commit()
        if cursor.rowcount:
            logger.warning(f"Marked {cursor.rowcount} interrupted jobs as FAILED")
        return cursor.rowcount

    @staticmethod
    def _item_to_row(job_id: int, item: CrawlResultItem) -> tuple:
        return (
            job_id, item.item_id, item.title, item.content, item.url, item.rating,
            item.review_date.isoformat() if item.review_date else None,
            item.reviewer_name,
            None if item.is_verified is None else int(item.is_verified),
            item.price, item.original_price, item.discount,
            json.dumps(item.image_urls),
            item.page_number, item.item_order,
            json.dumps(item.site_data, ensure_ascii=False, default=str),
            datetime.utcnow().isoformat(),
        )

    @staticmethod
    def _row_to_item(row: tuple, description) -> CrawlResultItem:
        data = dict(zip([d[0] for d in description], row))
        for key, fallback in (("image_urls", []), ("site_data", {})):
            if isinstance(data.get(key), str):
                try:
                    data[key] = json.loads(data[key])
                except json.JSONDecodeError:
                    data[key] = fallback
        if data.get("is_verified") is not None:
            data["is_verified"] = bool(data["is_verified"])
        for key in ("id", "job_id", "created_at"):
            data.pop(key, None)
        return CrawlResultItem(**data)
