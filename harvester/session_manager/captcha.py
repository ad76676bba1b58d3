"""Captcha and security-block detection on Naver login pages."""

from __future__ import annotations

import logging
import sys
from typing import Optional

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page

from ..constants import CAPTCHA_SELECTORS, LOGIN_ERROR_SELECTORS, SECURITY_PHRASES
from ..errors import CaptchaDetectedError

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)


async def find_captcha_indicator(page: Page) -> Optional[str]:
    """Return the first visible captcha selector, or None."""
    for selector in CAPTCHA_SELECTORS:
        try:
            element = page.locator(selector).first
            if await element.count() and await element.is_visible():
                logger.info(f"Detected captcha indicator: {selector}")
                return selector
        except PlaywrightError:
            continue
    return None


async def detect_captcha(page: Page):
    """Raise ``CaptchaDetectedError`` if any captcha indicator is visible."""
    indicator = await find_captcha_indicator(page)
    if indicator:
        raise CaptchaDetectedError(indicator)


def matches_security_phrase(text: str) -> bool:
    lowered = text.lower()
    return any(phrase.lower() in lowered for phrase in SECURITY_PHRASES)


async def detect_security_block(page: Page) -> Optional[str]:
    """Return the error message text if it names a security or captcha check."""
    for selector in LOGIN_ERROR_SELECTORS:
        try:
            element = page.locator(selector).first
            if not await element.count() or not await element.is_visible():
                continue
            text = (await element.inner_text()).strip()
        except PlaywrightError:
            continue
        if text and matches_security_phrase(text):
            logger.warning(f"Security block message found under {selector}")
            return text
    return None
