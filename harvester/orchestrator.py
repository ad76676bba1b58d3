"""Crawl job orchestration: start, stop, status and shutdown of background crawls.

Each job runs as an ``asyncio.Task`` owned by the orchestrator. The task's
done-callback records failures the task itself could not persist, so a job
never stays RUNNING because of an unhandled exception.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from dataclasses import dataclass, field
from datetime import datetime
from functools import partial
from typing import Any, Awaitable, Callable, Optional, Protocol

from .config import RESULT_BATCH_PAUSE, RESULT_BATCH_SIZE, SHUTDOWN_GRACE_PERIOD
from .crawlers.base import BaseCrawler, CrawlCallback
from .crawlers.factory import CrawlerFactory
from .errors import JobNotFoundError, LicenseError, UnsupportedSiteError
from .models.crawl import CrawlJob, CrawlProgress, CrawlResultItem, JobStatus, SourceSite, StartCrawlRequest

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)

LicenseCheck = Callable[[str], Awaitable[bool]]


class PersistenceSink(Protocol):
    """Where job state and results go. ``CrawlJobRepository`` implements it."""

    async def create_job(self, request: StartCrawlRequest) -> int:
        """Raise ``JobAlreadyRunningError`` if the principal has a PENDING or RUNNING job."""
        ...

    async def update_job(self, job_id: int, fields: dict[str, Any]) -> None: ...

    async def append_items(self, job_id: int, items: list[CrawlResultItem]) -> int: ...

    async def complete_job(self, job_id: int, success: bool, error: Optional[str] = None) -> None: ...

    async def get_job(self, job_id: int) -> Optional[CrawlJob]: ...


@dataclass
class _ActiveJob:
    crawler: BaseCrawler
    progress: CrawlProgress = field(default_factory=CrawlProgress)
    started_at: Optional[datetime] = None
    cancelled: bool = False


class CrawlJobOrchestrator:
    def __init__(
        self,
        sink: PersistenceSink,
        crawler_factory: type[CrawlerFactory] = CrawlerFactory,
        license_check: Optional[LicenseCheck] = None,
        batch_size: int = RESULT_BATCH_SIZE,
        batch_pause: float = RESULT_BATCH_PAUSE,
        grace_period: float = SHUTDOWN_GRACE_PERIOD,
    ):
        self.sink = sink
        self._factory = crawler_factory
        self._license_check = license_check
        self._batch_size = batch_size
        self._batch_pause = batch_pause
        self._grace_period = grace_period
        self._active: dict[int, _ActiveJob] = {}
        self._tasks: set[asyncio.Task] = set()

    # ── Public surface ───────────────────────────────────────────────────

    async def start(self, request: StartCrawlRequest) -> dict:
        """Create the job and launch it in the background. Returns immediately."""
        if not self._factory.is_supported(request.source_site):
            raise UnsupportedSiteError(request.source_site)
        if self._license_check is not None and not await self._license_check(request.principal):
            raise LicenseError(f"No valid license for {request.principal}")

        job_id = await self.sink.create_job(request)

        site = SourceSite(request.source_site)
        options = self._factory.default_options(site).model_copy(update={"credentials": request.credentials})
        entry = _ActiveJob(crawler=self._factory.create_crawler(site, options))
        self._active[job_id] = entry

        task = asyncio.create_task(self._execute(job_id, request, entry), name=f"crawl-job-{job_id}")
        self._tasks.add(task)
        task.add_done_callback(partial(self._on_task_done, job_id))

        logger.info(f"Started crawl job {job_id} ({site.value})")
        return {"job_id": job_id}

    async def stop(self, job_id: int) -> bool:
        """Ask a live job to stop after its current page. False if it is not live.

        The entry stays registered, reporting ``is_stopping``, until the job's
        task finishes.
        """
        entry = self._active.get(job_id)
        if entry is None or entry.cancelled:
            return False

        entry.cancelled = True
        entry.crawler.stop()

        now = datetime.utcnow()
        fields: dict[str, Any] = {"status": JobStatus.CANCELLED, "completed_at": now.isoformat()}
        if entry.started_at is not None:
            fields["duration_ms"] = int((now - entry.started_at).total_seconds() * 1000)
        await self.sink.update_job(job_id, fields)
        logger.info(f"Crawl job {job_id} cancelled")
        return True

    async def status(self, job_id: int) -> dict:
        job = await self.sink.get_job(job_id)
        entry = self._active.get(job_id)
        if job is None and entry is None:
            raise JobNotFoundError(job_id)
        return {
            "job": job,
            "is_active": entry is not None and entry.crawler.is_running,
            "is_stopping": entry is not None and entry.crawler.should_stop,
            "progress": entry.progress if entry is not None else None,
        }

    def active_jobs(self) -> list[dict]:
        return [
            {"job_id": job_id, "progress": entry.progress, "is_running": entry.crawler.is_running}
            for job_id, entry in self._active.items()
        ]

    async def cleanup(self):
        """Stop every live job, then wait for their tasks to wind down."""
        job_ids = list(self._active)
        if job_ids:
            logger.info(f"Stopping {len(job_ids)} active crawl jobs...")
        results = await asyncio.gather(*(self.stop(job_id) for job_id in job_ids), return_exceptions=True)
        for job_id, result in zip(job_ids, results):
            if isinstance(result, Exception):
                logger.warning(f"Failed to stop crawl job {job_id}: {result}")
        self._active.clear()

        pending = [task for task in self._tasks if not task.done()]
        if not pending:
            return
        _, still_running = await asyncio.wait(pending, timeout=self._grace_period)
        for task in still_running:
            logger.warning(f"Cancelling {task.get_name()} after {self._grace_period}s grace period")
            task.cancel()
        if still_running:
            await asyncio.gather(*still_running, return_exceptions=True)

    # ── Execution ────────────────────────────────────────────────────────

    async def _execute(self, job_id: int, request: StartCrawlRequest, entry: _ActiveJob):
        try:
            if entry.cancelled:
                return

            entry.started_at = datetime.utcnow()
            await self.sink.update_job(
                job_id, {"status": JobStatus.RUNNING, "started_at": entry.started_at.isoformat()}
            )
            # A stop that arrived during the update above may have been written
            # before it, and crawl() would clear the crawler's stop flag.
            if entry.cancelled:
                await self.sink.update_job(job_id, {"status": JobStatus.CANCELLED})
                return

            callback = CrawlCallback(
                on_progress=partial(self._on_progress, job_id, entry),
                on_error=partial(self._on_page_error, job_id),
            )
            try:
                results = await entry.crawler.crawl(request.search_url, request.crawl_settings, callback)
            except Exception as e:
                logger.error(f"Crawl job {job_id} failed: {e}")
                await self.sink.complete_job(job_id, False, str(e))
                return

            saved = await self._save_results(job_id, results)
            stats = entry.crawler.stats
            await self.sink.update_job(
                job_id,
                {
                    "items_found": stats.items_found,
                    "items_crawled": saved,
                    "pages_processed": stats.pages_processed,
                },
            )

            if entry.cancelled:
                logger.info(f"Crawl job {job_id} stopped early, kept {saved} items")
            else:
                await self.sink.complete_job(job_id, True)
                logger.info(f"Crawl job {job_id} completed with {saved} items")
        finally:
            self._active.pop(job_id, None)

    async def _save_results(self, job_id: int, items: list[CrawlResultItem]) -> int:
        """Persist in batches; a failed batch is retried one item at a time."""
        saved = 0
        for start in range(0, len(items), self._batch_size):
            batch = items[start : start + self._batch_size]
            try:
                saved += await self.sink.append_items(job_id, batch)
            except Exception as e:
                logger.warning(f"Batch save failed for job {job_id} ({e}), saving items individually")
                for item in batch:
                    try:
                        saved += await self.sink.append_items(job_id, [item])
                    except Exception as item_error:
                        logger.warning(f"Dropped item {item.item_id} for job {job_id}: {item_error}")
            if start + self._batch_size < len(items):
                await asyncio.sleep(self._batch_pause)
        return saved

    async def _on_progress(self, job_id: int, entry: _ActiveJob, progress: CrawlProgress):
        entry.progress = progress
        await self.sink.update_job(
            job_id,
            {
                "items_found": progress.items_found,
                "items_crawled": progress.items_crawled,
                "pages_processed": progress.pages_processed,
            },
        )

    @staticmethod
    def _on_page_error(job_id: int, error: Exception):
        logger.warning(f"Crawl job {job_id} page error: {error}")

    # ── Failure handling ─────────────────────────────────────────────────

    def _on_task_done(self, job_id: int, task: asyncio.Task):
        self._tasks.discard(task)
        # A task cancelled before it first ran never reaches _execute's finally.
        self._active.pop(job_id, None)
        if task.cancelled():
            logger.warning(f"Crawl job {job_id} task was cancelled")
            return
        error = task.exception()
        if error is None:
            return
        logger.error(f"Crawl job {job_id} ended with an unhandled error: {error}")
        follow_up = asyncio.get_running_loop().create_task(self._mark_failed(job_id, error))
        self._tasks.add(follow_up)
        follow_up.add_done_callback(self._tasks.discard)

    async def _mark_failed(self, job_id: int, error: BaseException):
        try:
            await self.sink.complete_job(job_id, False, str(error) or type(error).__name__)
        except Exception as e:
            logger.error(f"Could not record failure of crawl job {job_id}: {e}")
