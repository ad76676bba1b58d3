"""Browser process ownership: launch, context creation, page accounting, teardown."""

from __future__ import annotations

import logging
import re
import sys
from typing import Optional

import httpx
from camoufox.async_api import AsyncCamoufox
from playwright.async_api import Browser, BrowserContext, Playwright, async_playwright

from ..config import (
    BROWSER_ENGINE,
    BROWSER_HEADLESS,
    BROWSER_LAUNCH_TIMEOUT,
    BROWSER_USER_AGENT,
    CHROME_VERSION,
    DEFAULT_CHROME_VERSION,
    MAX_CONCURRENT_PAGES,
    NAVIGATION_TIMEOUT,
)
from ..constants import BROWSER_HEADERS, CHROME_RELEASES_URL, CHROMIUM_LAUNCH_ARGS, STEALTH_INIT_SCRIPT
from ..models.session import EvasionProfile, SessionStatus

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)


async def fetch_latest_chrome_version() -> str:
    """Ask the Chromium release dashboard for the current stable version."""
    try:
        async with httpx.AsyncClient(timeout=5.0) as client:
            resp = await client.get(CHROME_RELEASES_URL)
            resp.raise_for_status()
            releases = resp.json()
        return releases[0].get("previous_version") or DEFAULT_CHROME_VERSION
    except (httpx.HTTPError, ValueError, IndexError, AttributeError) as e:
        logger.warning(f"Could not fetch Chrome version, using {DEFAULT_CHROME_VERSION}: {e}")
        return DEFAULT_CHROME_VERSION


async def resolve_user_agent(override: str = "") -> str:
    if override:
        return override
    version = CHROME_VERSION or await fetch_latest_chrome_version()
    return (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
        f"(KHTML, like Gecko) Chrome/{version} Safari/537.36"
    )


def _sec_ch_ua(user_agent: str) -> Optional[str]:
    match = re.search(r"Chrome/(\d+)", user_agent)
    if not match:
        return None
    major = match.group(1)
    return f'"Google Chrome";v="{major}", "Chromium";v="{major}", "Not A(Brand";v="99"'


class BrowserSessionManager:
    """Owns one browser process and its single browsing context.

    Not safe for unmanaged concurrent use: jobs that need isolated sessions
    must each own a manager.
    """

    def __init__(
        self,
        headless: Optional[bool] = None,
        max_concurrent_pages: int = MAX_CONCURRENT_PAGES,
        navigation_timeout: int = NAVIGATION_TIMEOUT,
        user_agent: str = "",
        engine: Optional[str] = None,
        profile: Optional[EvasionProfile] = None,
    ):
        self.headless = BROWSER_HEADLESS if headless is None else headless
        self.max_concurrent_pages = max_concurrent_pages
        self.navigation_timeout = navigation_timeout
        self.engine = (engine or BROWSER_ENGINE).lower()
        self.profile = profile or EvasionProfile.generate()
        self._user_agent_override = user_agent or BROWSER_USER_AGENT
        self._user_agent: str = ""
        self._playwright: Optional[Playwright] = None
        self._camoufox: Optional[AsyncCamoufox] = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self._active_pages: int = 0
        self._is_terminating: bool = False

    @property
    def active_pages(self) -> int:
        return self._active_pages

    @property
    def user_agent(self) -> str:
        return self._user_agent

    @property
    def is_connected(self) -> bool:
        return self._browser is not None and self._browser.is_connected()

    async def initialize(self) -> Browser:
        """Return a connected browser, launching one if absent or dead."""
        if self.is_connected:
            return self._browser

        if self._browser is not None:
            logger.warning("Browser connection lost, discarding dead handles.")
            await self._release_driver()
            self._browser = None
            self._context = None
            self._active_pages = 0

        if not self._user_agent:
            self._user_agent = await resolve_user_agent(self._user_agent_override)

        try:
            logger.info(f"Launching {self.engine} (headless={self.headless})...")
            if self.engine == "camoufox":
                self._camoufox = AsyncCamoufox(headless=self.headless, humanize=True)
                self._browser = await self._camoufox.__aenter__()
            else:
                self._playwright = await async_playwright().start()
                self._browser = await self._playwright.chromium.launch(
                    headless=self.headless,
                    args=[*CHROMIUM_LAUNCH_ARGS, f"--user-agent={self._user_agent}"],
                    timeout=BROWSER_LAUNCH_TIMEOUT,
                )
        except Exception as e:
            logger.error(f"Failed to launch browser: {e}")
            await self._release_driver()
            self._browser = None
            raise

        logger.info("Browser launched.")
        self._is_terminating = False
        return self._browser

    async def create_context(self) -> BrowserContext:
        """Return the live browsing context, creating it on first use."""
        if self._context is not None and self.is_connected:
            return self._context

        browser = await self.initialize()

        viewport = self.profile.viewport
        headers = dict(BROWSER_HEADERS)
        options = {
            "viewport": viewport,
            "locale": "ko-KR",
            "timezone_id": "Asia/Seoul",
            "java_script_enabled": True,
            "ignore_https_errors": True,
        }
        if self.engine != "camoufox":
            # Camoufox generates a consistent fingerprint itself.
            options["user_agent"] = self._user_agent
            sec_ch_ua = _sec_ch_ua(self._user_agent)
            if sec_ch_ua:
                headers["Sec-Ch-Ua"] = sec_ch_ua
        options["extra_http_headers"] = headers

        self._context = await browser.new_context(**options)
        await self._context.add_init_script(STEALTH_INIT_SCRIPT)
        logger.info(f"Browser context created ({viewport['width']}x{viewport['height']}).")
        return self._context

    def track_page_opened(self):
        self._active_pages += 1
        logger.info(f"Page opened. Active pages: {self._active_pages}")

    def track_page_closed(self):
        self._active_pages = max(0, self._active_pages - 1)
        logger.info(f"Page closed. Active pages: {self._active_pages}")

    def status(self) -> SessionStatus:
        return SessionStatus(
            is_active=self.is_connected,
            active_pages=self._active_pages,
            is_terminating=self._is_terminating,
            user_agent=self._user_agent,
            viewport=self.profile.viewport,
        )

    async def cookies(self) -> list[dict]:
        """Cookies of the live context, for handing a session to an HTTP client."""
        if self._context is None:
            return []
        return await self._context.cookies()

    async def terminate(self):
        """Close context, browser and driver. Safe to call repeatedly."""
        if self._is_terminating:
            return
        if self._browser is None and self._context is None and self._playwright is None and self._camoufox is None:
            self._active_pages = 0
            return

        self._is_terminating = True
        logger.info("Terminating browser session...")
        try:
            try:
                if self._context is not None:
                    await self._context.close()
            except Exception as e:
                logger.warning(f"Error closing context: {e}")
            finally:
                self._context = None

            try:
                if self._browser is not None and self._browser.is_connected() and self._camoufox is None:
                    await self._browser.close()
            except Exception as e:
                logger.warning(f"Error closing browser: {e}")
            finally:
                await self._release_driver()
                self._browser = None
        finally:
            self._active_pages = 0
            self._is_terminating = False
        logger.info("Browser session terminated.")

    async def _release_driver(self):
        try:
            if self._camoufox is not None:
                await self._camoufox.__aexit__(None, None, None)
        except Exception as e:
            logger.warning(f"Error closing camoufox: {e}")
        finally:
            self._camoufox = None

        try:
            if self._playwright is not None:
                await self._playwright.stop()
        except Exception as e:
            logger.warning(f"Error stopping playwright: {e}")
        finally:
            self._playwright = None
