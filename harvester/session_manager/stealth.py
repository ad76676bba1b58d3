"""Stealth page construction and human-like page interaction."""

from __future__ import annotations

import asyncio
import logging
import random
import sys
from typing import Optional

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Locator, Page, Response

from ..constants import STEALTH_INIT_SCRIPT
from ..errors import PageLimitExceededError
from .browser import BrowserSessionManager

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)


async def random_delay(min_s: float, max_s: float):
    """Sleep for a uniformly random duration in seconds."""
    await asyncio.sleep(random.uniform(min_s, max_s))


class StealthPageFactory:
    """Creates pages inside the manager's context under the concurrent-page cap."""

    def __init__(self, manager: BrowserSessionManager):
        self.manager = manager

    async def create_page(self) -> Page:
        context = await self.manager.create_context()

        if self.manager.active_pages >= self.manager.max_concurrent_pages:
            raise PageLimitExceededError(self.manager.max_concurrent_pages)

        # Reserve the slot before awaiting so concurrent callers see it.
        self.manager.track_page_opened()
        try:
            page = await context.new_page()
        except Exception:
            self.manager.track_page_closed()
            raise

        closed = False

        def _on_close(_page):
            nonlocal closed
            if closed:
                return
            closed = True
            self.manager.track_page_closed()

        page.on("close", _on_close)
        page.set_default_timeout(self.manager.navigation_timeout)
        page.set_default_navigation_timeout(self.manager.navigation_timeout)
        try:
            await page.add_init_script(STEALTH_INIT_SCRIPT)
        except Exception:
            _on_close(page)
            try:
                await page.close()
            except PlaywrightError as e:
                logger.warning(f"Error closing page after failed setup: {e}")
            raise
        return page

    async def navigate(
        self,
        page: Page,
        url: str,
        wait_until: str = "domcontentloaded",
        timeout: Optional[int] = None,
    ) -> Optional[Response]:
        """Go to ``url`` with human-like pauses before and after."""
        await random_delay(0.8, 2.0)
        logger.info(f"Navigating to {url}")
        response = await page.goto(
            url,
            wait_until=wait_until,
            timeout=timeout or self.manager.navigation_timeout,
        )
        await random_delay(1.0, 2.5)
        await self._pointer_dwell(page)
        return response

    async def _pointer_dwell(self, page: Page):
        viewport = page.viewport_size or self.manager.profile.viewport
        for _ in range(random.randint(1, 3)):
            x = random.randint(100, max(101, viewport["width"] - 100))
            y = random.randint(100, max(101, viewport["height"] - 100))
            await page.mouse.move(x, y, steps=random.randint(5, 15))
            await random_delay(0.1, 0.4)


async def simulate_scrolling(page: Page, steps: Optional[int] = None):
    """Scroll down in uneven increments, sometimes drifting back up a little."""
    for _ in range(steps or random.randint(3, 6)):
        await page.mouse.wheel(0, random.randint(250, 700))
        await random_delay(0.4, 1.2)
        if random.random() < 0.2:
            await page.mouse.wheel(0, -random.randint(60, 200))
            await random_delay(0.2, 0.6)


async def natural_click(locator: Locator):
    """Hover, dwell, click, then let the page settle."""
    await locator.hover()
    await random_delay(0.1, 0.3)
    await locator.click()
    await random_delay(0.3, 0.8)
