"""Naver login state machine.

CheckStatus -> NavigateToLogin -> CaptchaCheck -> FillCredentials -> Submit
-> Verify -> Success | Retry | Fail

Only a failed verification is retried. Captcha, security blocks, missing
form fields and an exhausted attempt budget abort immediately.
"""

from __future__ import annotations

import logging
import random
import string
import sys
from typing import Optional

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Locator, Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from ..config import LOGIN_SETTLE_TIMEOUT, LOGIN_WAIT_TIMEOUT, MAX_LOGIN_ATTEMPTS, STATUS_PROBE_TIMEOUT
from ..constants import (
    AUTH_COOKIE_NAMES,
    ID_FIELD_SELECTORS,
    LOGGED_IN_SELECTORS,
    LOGGED_OUT_SELECTORS,
    LOGIN_BUTTON_SELECTORS,
    LOGOUT_SELECTORS,
    NAVER_LOGIN_HOST,
    NAVER_LOGIN_URL,
    PASSWORD_FIELD_SELECTORS,
    SUBMIT_SELECTORS,
)
from ..errors import (
    AuthenticationError,
    CaptchaDetectedError,
    LoginAttemptsExhaustedError,
    LoginFormError,
    LoginVerificationError,
    SecurityBlockError,
)
from ..locators import first_matching
from ..models.session import AuthenticationAttempt, AuthOutcome, Credentials, EvasionProfile
from .captcha import detect_captcha, detect_security_block
from .stealth import natural_click, random_delay

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)

_FAILURE_OUTCOMES = {
    CaptchaDetectedError: AuthOutcome.CAPTCHA_DETECTED,
    SecurityBlockError: AuthOutcome.SECURITY_BLOCK,
    LoginAttemptsExhaustedError: AuthOutcome.EXHAUSTED,
}


def _on_login_host(url: str) -> bool:
    return NAVER_LOGIN_HOST in url


class AuthenticationService:
    """Logs a page's context into Naver with human-like input."""

    def __init__(
        self,
        credentials: Credentials,
        profile: Optional[EvasionProfile] = None,
        max_attempts: int = MAX_LOGIN_ATTEMPTS,
    ):
        self.credentials = credentials
        self.profile = profile or EvasionProfile.generate()
        self.max_attempts = max_attempts
        self.last_attempt: Optional[AuthenticationAttempt] = None

    async def perform_authentication(self, page: Page) -> AuthOutcome:
        attempt = AuthenticationAttempt(max_attempts=self.max_attempts)
        self.last_attempt = attempt

        if await self.check_status(page):
            logger.info("Already logged in.")
            attempt.outcome = AuthOutcome.ALREADY_AUTHENTICATED
            return attempt.outcome

        try:
            await self.navigate_to_login(page)
            return await self._perform_login(page, attempt)
        except AuthenticationError as e:
            attempt.outcome = _FAILURE_OUTCOMES.get(type(e), attempt.outcome)
            logger.error(f"Authentication failed after {attempt.submissions} submissions: {e}")
            raise

    async def check_status(self, page: Page) -> bool:
        """Best-effort check whether the page's context is logged in."""
        if _on_login_host(page.url):
            return False

        if await first_matching(page, LOGGED_OUT_SELECTORS, require_enabled=False) is not None:
            return False

        for selector in LOGGED_IN_SELECTORS:
            try:
                await page.locator(selector).first.wait_for(state="visible", timeout=STATUS_PROBE_TIMEOUT)
                logger.info(f"Logged-in indicator found: {selector}")
                return True
            except PlaywrightError:
                continue

        try:
            cookies = await page.context.cookies()
        except PlaywrightError as e:
            logger.debug(f"Could not read cookies: {e}")
            return False
        names = {c.get("name") for c in cookies}
        return any(name in names for name in AUTH_COOKIE_NAMES)

    async def navigate_to_login(self, page: Page):
        if _on_login_host(page.url):
            return

        button = await first_matching(page, LOGIN_BUTTON_SELECTORS)
        if button is not None:
            logger.info("Clicking login button")
            await natural_click(button)
            try:
                await page.wait_for_url(_on_login_host, timeout=LOGIN_WAIT_TIMEOUT)
            except PlaywrightTimeoutError:
                logger.warning("Login button did not reach the login page, navigating directly")
                await page.goto(NAVER_LOGIN_URL, wait_until="domcontentloaded")
        else:
            logger.info("No login button found, navigating to the login page")
            await page.goto(NAVER_LOGIN_URL, wait_until="domcontentloaded")

        await self._wait_for_network_idle(page, LOGIN_WAIT_TIMEOUT)

    async def _perform_login(self, page: Page, attempt: AuthenticationAttempt) -> AuthOutcome:
        attempt.number += 1
        logger.info(f"Login attempt {attempt.number}/{attempt.max_attempts}")

        await detect_captcha(page)
        await self._fill_credentials(page)
        await self._submit(page)
        attempt.submissions += 1

        try:
            await self._verify(page)
        except LoginVerificationError as e:
            if not attempt.has_attempts_left:
                raise LoginAttemptsExhaustedError(attempt.number) from e
            logger.warning(f"Login attempt {attempt.number} not verified, retrying")
            await random_delay(*self.profile.retry_backoff)
            return await self._perform_login(page, attempt)

        logger.info("Login successful.")
        attempt.outcome = AuthOutcome.SUCCESS
        return attempt.outcome

    async def _fill_credentials(self, page: Page):
        id_field = await first_matching(page, ID_FIELD_SELECTORS)
        if id_field is None:
            raise LoginFormError("Login id field not found")
        await self._type_like_human(page, id_field, self.credentials.id, "id")

        await random_delay(*self.profile.field_gap)

        password_field = await first_matching(page, PASSWORD_FIELD_SELECTORS)
        if password_field is None:
            raise LoginFormError("Password field not found")
        await self._type_like_human(
            page, password_field, self.credentials.password.get_secret_value(), "password"
        )

    async def _type_like_human(self, page: Page, field: Locator, value: str, label: str):
        await field.click()
        await field.fill("")

        length = len(value)
        for index, char in enumerate(value):
            if self.profile.should_mistype(index):
                await page.keyboard.type(random.choice(string.ascii_lowercase))
                await random_delay(0.1, 0.3)
                await page.keyboard.press("Backspace")
            await page.keyboard.type(char)
            await random_delay(*self.profile.typing_band(index, length))

        # Keystrokes can be dropped by the page's input handlers.
        if await field.input_value() != value:
            logger.warning(f"Typed {label} did not match, setting it directly")
            await field.fill(value)
            if await field.input_value() != value:
                raise LoginFormError(f"Could not fill the {label} field")

    async def _submit(self, page: Page):
        await random_delay(*self.profile.pre_submit_delay)

        button = await first_matching(page, SUBMIT_SELECTORS)
        if button is None:
            logger.info("No submit button found, pressing Enter")
            await page.keyboard.press("Enter")
            return

        try:
            box = await button.bounding_box()
            if box:
                x = box["x"] + box["width"] / 2
                y = box["y"] + box["height"] / 2
                await page.mouse.move(x, y, steps=random.randint(8, 20))
                await random_delay(0.1, 0.3)
                await page.mouse.click(x, y)
                return
        except PlaywrightError as e:
            logger.debug(f"Bounding-box click failed: {e}")
        await button.click()

    async def _verify(self, page: Page):
        await self._wait_for_network_idle(page, LOGIN_SETTLE_TIMEOUT)

        if not _on_login_host(page.url):
            return
        if await first_matching(page, LOGOUT_SELECTORS, require_enabled=False) is not None:
            return

        message = await detect_security_block(page)
        if message:
            raise SecurityBlockError(f"Login blocked by a security check: {message}")
        raise LoginVerificationError("Login did not reach a logged-in state")

    @staticmethod
    async def _wait_for_network_idle(page: Page, timeout: int):
        try:
            await page.wait_for_load_state("networkidle", timeout=timeout)
        except PlaywrightTimeoutError:
            logger.info("Network did not go idle, continuing")
