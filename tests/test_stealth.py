"""Tests for stealth page creation and human-like interaction."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, call, patch

import pytest

from harvester.errors import PageLimitExceededError
from harvester.session_manager.browser import BrowserSessionManager
from harvester.session_manager.stealth import StealthPageFactory, natural_click, simulate_scrolling


class FakePage:
    """Records event handlers so tests can fire ``close`` themselves."""

    def __init__(self):
        self.handlers = {}
        self.add_init_script = AsyncMock()
        self.set_default_timeout = MagicMock()
        self.set_default_navigation_timeout = MagicMock()
        self.goto = AsyncMock(return_value="response")
        self.close = AsyncMock()
        self.mouse = MagicMock()
        self.mouse.move = AsyncMock()
        self.mouse.wheel = AsyncMock()
        self.viewport_size = {"width": 1366, "height": 768}

    def on(self, event, handler):
        self.handlers[event] = handler

    def fire_close(self):
        self.handlers["close"](self)


@pytest.fixture
def manager():
    context = MagicMock()
    context.new_page = AsyncMock(side_effect=lambda: FakePage())
    mgr = BrowserSessionManager(max_concurrent_pages=3, user_agent="UA/1.0")
    mgr.create_context = AsyncMock(return_value=context)
    return mgr


@pytest.fixture
def no_delay():
    with patch("harvester.session_manager.stealth.random_delay", new_callable=AsyncMock) as delay:
        yield delay


class TestPageCap:
    """Concurrent page limit."""

    @pytest.mark.asyncio
    async def test_cap_plus_one_fails(self, manager):
        factory = StealthPageFactory(manager)
        for _ in range(3):
            await factory.create_page()

        with pytest.raises(PageLimitExceededError):
            await factory.create_page()
        assert manager.active_pages == 3

    @pytest.mark.asyncio
    async def test_close_decrements_once(self, manager):
        factory = StealthPageFactory(manager)
        page = await factory.create_page()
        other = await factory.create_page()

        page.fire_close()
        page.fire_close()
        assert manager.active_pages == 1

        other.fire_close()
        assert manager.active_pages == 0

    @pytest.mark.asyncio
    async def test_closing_frees_a_slot(self, manager):
        factory = StealthPageFactory(manager)
        pages = [await factory.create_page() for _ in range(3)]
        pages[0].fire_close()

        await factory.create_page()
        assert manager.active_pages == 3

    @pytest.mark.asyncio
    async def test_concurrent_creation_respects_cap(self, manager):
        async def slow_new_page():
            await asyncio.sleep(0)
            return FakePage()

        context = await manager.create_context()
        context.new_page = AsyncMock(side_effect=slow_new_page)
        factory = StealthPageFactory(manager)

        results = await asyncio.gather(*(factory.create_page() for _ in range(5)), return_exceptions=True)

        pages = [r for r in results if isinstance(r, FakePage)]
        rejected = [r for r in results if isinstance(r, PageLimitExceededError)]
        assert len(pages) == 3
        assert len(rejected) == 2
        assert manager.active_pages == 3

    @pytest.mark.asyncio
    async def test_failed_new_page_releases_slot(self, manager):
        context = await manager.create_context()
        context.new_page = AsyncMock(side_effect=RuntimeError("target closed"))

        with pytest.raises(RuntimeError):
            await StealthPageFactory(manager).create_page()
        assert manager.active_pages == 0

    @pytest.mark.asyncio
    async def test_failed_setup_closes_page_and_releases_slot(self, manager):
        broken = FakePage()
        broken.add_init_script = AsyncMock(side_effect=RuntimeError("page crashed"))
        context = await manager.create_context()
        context.new_page = AsyncMock(return_value=broken)

        with pytest.raises(RuntimeError):
            await StealthPageFactory(manager).create_page()

        broken.close.assert_awaited_once()
        broken.fire_close()
        assert manager.active_pages == 0

    @pytest.mark.asyncio
    async def test_page_defaults(self, manager):
        page = await StealthPageFactory(manager).create_page()

        page.set_default_timeout.assert_called_once_with(60000)
        page.set_default_navigation_timeout.assert_called_once_with(60000)
        page.add_init_script.assert_awaited_once()


class TestNavigate:
    @pytest.mark.asyncio
    async def test_delays_around_navigation(self, manager, no_delay):
        factory = StealthPageFactory(manager)
        page = FakePage()

        response = await factory.navigate(page, "https://blog.naver.com/someone")

        assert response == "response"
        page.goto.assert_awaited_once_with(
            "https://blog.naver.com/someone", wait_until="domcontentloaded", timeout=60000
        )
        assert no_delay.await_args_list[0] == call(0.8, 2.0)
        assert no_delay.await_args_list[1] == call(1.0, 2.5)
        assert page.mouse.move.await_count >= 1

    @pytest.mark.asyncio
    async def test_custom_wait_and_timeout(self, manager, no_delay):
        page = FakePage()
        await StealthPageFactory(manager).navigate(page, "https://www.naver.com", wait_until="networkidle", timeout=5000)
        page.goto.assert_awaited_once_with("https://www.naver.com", wait_until="networkidle", timeout=5000)


class TestHumanInteraction:
    @pytest.mark.asyncio
    async def test_natural_click_hovers_first(self, no_delay):
        locator = MagicMock()
        order = []
        locator.hover = AsyncMock(side_effect=lambda: order.append("hover"))
        locator.click = AsyncMock(side_effect=lambda: order.append("click"))

        await natural_click(locator)

        assert order == ["hover", "click"]

    @pytest.mark.asyncio
    async def test_simulate_scrolling(self, no_delay):
        page = FakePage()
        await simulate_scrolling(page, steps=4)
        downward = [c for c in page.mouse.wheel.await_args_list if c.args[1] > 0]
        assert len(downward) == 4
