"""Tests for the crawl job orchestrator."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from harvester.crawlers.base import BaseCrawler
from harvester.errors import (
    CaptchaDetectedError,
    JobAlreadyRunningError,
    JobNotFoundError,
    LicenseError,
    UnsupportedSiteError,
)
from harvester.models.crawl import (
    CrawlJob,
    CrawlOptions,
    CrawlResultItem,
    JobStatus,
    SourceSite,
    StartCrawlRequest,
)
from harvester.orchestrator import CrawlJobOrchestrator


def make_item(page, order):
    return CrawlResultItem(item_id=f"p{page}-{order}", title=f"item {page}-{order}", page_number=page, item_order=order)


class ScriptedCrawler(BaseCrawler):
    """Serves ``pages`` pages of two items; each page waits on ``gate`` if given."""

    source_site = SourceSite.SMARTSTORE

    def __init__(self, options=None, pages=2, gate=None, error=None):
        super().__init__(options)
        self.pages = pages
        self.gate = gate
        self.error = error

    async def perform_crawl(self, url, options, callback):
        if self.error is not None:
            raise self.error

        async def load_page(page_number):
            if self.gate is not None:
                await self.gate.wait()
            if page_number > self.pages:
                return []
            return [make_item(page_number, 1), make_item(page_number, 2)]

        return await self.paginate(options, callback, load_page)

    def parse_url(self, url):
        return {"is_valid": True}

    def parse_page(self, html, page_number):
        return []


class FakeFactory:
    def __init__(self, **crawler_kwargs):
        self.crawler_kwargs = crawler_kwargs
        self.created = []

    def is_supported(self, site):
        return site in (SourceSite.SMARTSTORE.value, SourceSite.NAVER_BLOG.value)

    def default_options(self, site):
        return CrawlOptions(request_delay=0)

    def create_crawler(self, site, options=None):
        crawler = ScriptedCrawler(options, **self.crawler_kwargs)
        self.created.append(crawler)
        return crawler


class FakeSink:
    """In-memory persistence sink with the repository's single-flight and CANCELLED rules."""

    def __init__(self, reject_batches=False, reject_items=(), fail_running_update=False):
        self.jobs = {}
        self.items = {}
        self.append_calls = []
        self.completions = []
        self.reject_batches = reject_batches
        self.reject_items = set(reject_items)
        self.fail_running_update = fail_running_update

    async def create_job(self, request):
        for job in self.jobs.values():
            if job.principal == request.principal and not job.status.is_terminal:
                raise JobAlreadyRunningError(request.principal)
        job_id = len(self.jobs) + 1
        self.jobs[job_id] = CrawlJob(
            id=job_id,
            principal=request.principal,
            source_site=request.source_site,
            search_url=request.search_url,
        )
        self.items[job_id] = []
        return job_id

    async def update_job(self, job_id, fields):
        if self.fail_running_update and fields.get("status") == JobStatus.RUNNING:
            raise RuntimeError("database is locked")
        self.jobs[job_id] = self.jobs[job_id].model_copy(update=fields)

    async def append_items(self, job_id, items):
        self.append_calls.append(len(items))
        if self.reject_batches and len(items) > 1:
            raise RuntimeError("batch rejected")
        if any(item.item_id in self.reject_items for item in items):
            raise RuntimeError("item rejected")
        self.items[job_id].extend(items)
        return len(items)

    async def complete_job(self, job_id, success, error=None):
        self.completions.append((job_id, success, error))
        job = self.jobs[job_id]
        if job.status == JobStatus.CANCELLED:
            return
        status = JobStatus.COMPLETED if success else JobStatus.FAILED
        self.jobs[job_id] = job.model_copy(update={"status": status, "error_message": error})

    async def get_job(self, job_id):
        return self.jobs.get(job_id)


class SlowStartSink(FakeSink):
    """Holds the RUNNING update until ``running_gate`` is set."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.running_gate = asyncio.Event()

    async def update_job(self, job_id, fields):
        if fields.get("status") == JobStatus.RUNNING:
            await self.running_gate.wait()
        await super().update_job(job_id, fields)


def make_request(principal="someone@example.com", site="SMARTSTORE"):
    return StartCrawlRequest(
        principal=principal,
        source_site=site,
        search_url="https://smartstore.naver.com/somestore/products/1",
    )


async def settle(rounds=10):
    for _ in range(rounds):
        await asyncio.sleep(0)


async def drain(orchestrator):
    """Wait for every job task, including failure follow-ups, to finish."""
    for _ in range(50):
        if not orchestrator._tasks:
            return
        await asyncio.gather(*list(orchestrator._tasks), return_exceptions=True)
        await asyncio.sleep(0)


class TestStart:
    @pytest.mark.asyncio
    async def test_job_runs_to_completion(self):
        sink = FakeSink()
        orch = CrawlJobOrchestrator(sink, crawler_factory=FakeFactory(pages=2), batch_pause=0)

        result = await orch.start(make_request())
        await drain(orch)

        job = sink.jobs[result["job_id"]]
        assert job.status == JobStatus.COMPLETED
        assert job.items_crawled == 4
        assert job.items_found == 4
        assert job.pages_processed == 2
        assert job.started_at is not None
        assert [i.item_id for i in sink.items[result["job_id"]]] == ["p1-1", "p1-2", "p2-1", "p2-2"]
        assert orch.active_jobs() == []

    @pytest.mark.asyncio
    async def test_single_flight_rejected_before_crawler_is_built(self):
        gate = asyncio.Event()
        sink = FakeSink()
        factory = FakeFactory(gate=gate)
        orch = CrawlJobOrchestrator(sink, crawler_factory=factory, batch_pause=0)

        await orch.start(make_request())
        with pytest.raises(JobAlreadyRunningError):
            await orch.start(make_request())
        assert len(factory.created) == 1

        # A different principal is unaffected.
        await orch.start(make_request(principal="other@example.com"))
        assert len(factory.created) == 2

        gate.set()
        await drain(orch)

        # Once the first job is terminal the principal may start again.
        await orch.start(make_request())
        await drain(orch)
        assert len(factory.created) == 3

    @pytest.mark.asyncio
    async def test_unsupported_site(self):
        sink = FakeSink()
        orch = CrawlJobOrchestrator(sink, crawler_factory=FakeFactory())

        with pytest.raises(UnsupportedSiteError):
            await orch.start(make_request(site="COUPANG"))
        assert sink.jobs == {}

    @pytest.mark.asyncio
    async def test_license_denied(self):
        sink = FakeSink()
        check = AsyncMock(return_value=False)
        orch = CrawlJobOrchestrator(sink, crawler_factory=FakeFactory(), license_check=check)

        with pytest.raises(LicenseError):
            await orch.start(make_request())

        check.assert_awaited_once_with("someone@example.com")
        assert sink.jobs == {}


class TestStop:
    @pytest.mark.asyncio
    async def test_stop_keeps_cancelled_and_partial_results(self):
        gate = asyncio.Event()
        sink = FakeSink()
        orch = CrawlJobOrchestrator(sink, crawler_factory=FakeFactory(pages=5, gate=gate), batch_pause=0)

        job_id = (await orch.start(make_request()))["job_id"]
        await settle()
        assert sink.jobs[job_id].status == JobStatus.RUNNING

        assert await orch.stop(job_id)
        assert sink.jobs[job_id].status == JobStatus.CANCELLED
        assert sink.jobs[job_id].duration_ms is not None

        gate.set()
        await drain(orch)

        job = sink.jobs[job_id]
        assert job.status == JobStatus.CANCELLED
        assert job.items_crawled == 2
        assert len(sink.items[job_id]) == 2
        assert sink.completions == []

    @pytest.mark.asyncio
    async def test_stopping_job_stays_visible_until_it_winds_down(self):
        gate = asyncio.Event()
        sink = FakeSink()
        orch = CrawlJobOrchestrator(sink, crawler_factory=FakeFactory(pages=5, gate=gate), batch_pause=0)

        job_id = (await orch.start(make_request()))["job_id"]
        await settle()
        await orch.stop(job_id)

        stopping = await orch.status(job_id)
        assert stopping["is_stopping"]
        assert stopping["is_active"]
        assert [entry["job_id"] for entry in orch.active_jobs()] == [job_id]
        assert not await orch.stop(job_id)

        gate.set()
        await drain(orch)

        done = await orch.status(job_id)
        assert not done["is_stopping"]
        assert done["progress"] is None
        assert orch.active_jobs() == []

    @pytest.mark.asyncio
    async def test_stop_during_running_update(self):
        sink = SlowStartSink()
        factory = FakeFactory()
        orch = CrawlJobOrchestrator(sink, crawler_factory=factory, batch_pause=0)

        job_id = (await orch.start(make_request()))["job_id"]
        await settle()
        assert await orch.stop(job_id)
        sink.running_gate.set()
        await drain(orch)

        assert sink.jobs[job_id].status == JobStatus.CANCELLED
        assert factory.created[0].stats.pages_attempted == 0
        assert sink.completions == []

    @pytest.mark.asyncio
    async def test_stop_unknown_job(self):
        orch = CrawlJobOrchestrator(FakeSink(), crawler_factory=FakeFactory())
        assert not await orch.stop(99)

    @pytest.mark.asyncio
    async def test_stop_before_execution_starts(self):
        sink = FakeSink()
        factory = FakeFactory()
        orch = CrawlJobOrchestrator(sink, crawler_factory=factory)

        job_id = (await orch.start(make_request()))["job_id"]
        await orch.stop(job_id)
        await drain(orch)

        assert sink.jobs[job_id].status == JobStatus.CANCELLED
        assert sink.jobs[job_id].started_at is None
        assert not factory.created[0].stats.pages_attempted


class TestFailures:
    @pytest.mark.asyncio
    async def test_crawl_error_fails_job(self):
        sink = FakeSink()
        factory = FakeFactory(error=CaptchaDetectedError("#captcha"))
        orch = CrawlJobOrchestrator(sink, crawler_factory=factory)

        job_id = (await orch.start(make_request()))["job_id"]
        await drain(orch)

        job = sink.jobs[job_id]
        assert job.status == JobStatus.FAILED
        assert "Captcha" in job.error_message

    @pytest.mark.asyncio
    async def test_unhandled_task_error_is_recorded(self):
        sink = FakeSink(fail_running_update=True)
        orch = CrawlJobOrchestrator(sink, crawler_factory=FakeFactory())

        job_id = (await orch.start(make_request()))["job_id"]
        await drain(orch)

        assert sink.jobs[job_id].status == JobStatus.FAILED
        assert sink.completions == [(job_id, False, "database is locked")]
        assert not orch._tasks


class TestResultPersistence:
    @pytest.mark.asyncio
    async def test_results_saved_in_batches(self):
        sink = FakeSink()
        orch = CrawlJobOrchestrator(sink, crawler_factory=FakeFactory(pages=2), batch_size=3, batch_pause=0)

        await orch.start(make_request())
        await drain(orch)

        assert sink.append_calls == [3, 1]

    @pytest.mark.asyncio
    async def test_failed_batch_falls_back_to_single_items(self):
        sink = FakeSink(reject_batches=True, reject_items={"p2-2"})
        orch = CrawlJobOrchestrator(sink, crawler_factory=FakeFactory(pages=2), batch_size=10, batch_pause=0)

        job_id = (await orch.start(make_request()))["job_id"]
        await drain(orch)

        job = sink.jobs[job_id]
        assert job.status == JobStatus.COMPLETED
        assert job.items_found == 4
        assert job.items_crawled == 3
        assert [i.item_id for i in sink.items[job_id]] == ["p1-1", "p1-2", "p2-1"]


class TestStatus:
    @pytest.mark.asyncio
    async def test_unknown_job(self):
        orch = CrawlJobOrchestrator(FakeSink(), crawler_factory=FakeFactory())
        with pytest.raises(JobNotFoundError):
            await orch.status(42)

    @pytest.mark.asyncio
    async def test_live_and_finished_status(self):
        gate = asyncio.Event()
        sink = FakeSink()
        orch = CrawlJobOrchestrator(sink, crawler_factory=FakeFactory(gate=gate), batch_pause=0)

        job_id = (await orch.start(make_request()))["job_id"]
        await settle()

        live = await orch.status(job_id)
        assert live["is_active"]
        assert not live["is_stopping"]
        assert live["progress"].current_page == 1
        assert orch.active_jobs()[0]["job_id"] == job_id

        gate.set()
        await drain(orch)

        done = await orch.status(job_id)
        assert not done["is_active"]
        assert done["progress"] is None
        assert done["job"].status == JobStatus.COMPLETED


class TestCleanup:
    @pytest.mark.asyncio
    async def test_cleanup_cancels_stragglers(self):
        never = asyncio.Event()
        sink = FakeSink()
        orch = CrawlJobOrchestrator(sink, crawler_factory=FakeFactory(gate=never), grace_period=0.05)

        job_id = (await orch.start(make_request()))["job_id"]
        await settle()

        await orch.cleanup()
        await drain(orch)

        assert sink.jobs[job_id].status == JobStatus.CANCELLED
        assert orch.active_jobs() == []
        assert not orch._tasks

    @pytest.mark.asyncio
    async def test_cleanup_waits_for_cooperative_stop(self):
        gate = asyncio.Event()
        sink = FakeSink()
        orch = CrawlJobOrchestrator(sink, crawler_factory=FakeFactory(pages=5, gate=gate), batch_pause=0)

        job_id = (await orch.start(make_request()))["job_id"]
        await settle()

        asyncio.get_running_loop().call_later(0.01, gate.set)
        await orch.cleanup()

        job = sink.jobs[job_id]
        assert job.status == JobStatus.CANCELLED
        assert job.items_crawled == 2
