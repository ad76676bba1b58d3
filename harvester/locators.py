"""Ordered selector fallback.

Sites move their markup around, so every lookup is a list of selectors tried
in priority order. The first one that matches (and, in a live browser, is
visible and enabled) wins.
"""

from __future__ import annotations

import logging
import sys
from typing import Optional, Sequence

from bs4 import Tag
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Locator, Page

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)


async def first_matching(
    page: Page,
    selectors: Sequence[str],
    require_enabled: bool = True,
) -> Optional[Locator]:
    """Return the first visible (and enabled) locator among ``selectors``.

    Selector errors and detached elements count as "no match" for that entry.
    """
    for selector in selectors:
        locator = page.locator(selector).first
        try:
            if await locator.count() == 0:
                continue
            if not await locator.is_visible():
                continue
            if require_enabled and not await locator.is_enabled():
                continue
        except PlaywrightError as e:
            logger.debug(f"Selector {selector!r} failed: {e}")
            continue
        logger.debug(f"Matched selector {selector!r}")
        return locator
    return None


def first_matching_tag(node: Tag, selectors: Sequence[str]) -> Optional[Tag]:
    """DOM counterpart of ``first_matching`` for parsed markup."""
    for selector in selectors:
        found = node.select_one(selector)
        if found is not None:
            return found
    return None


def select_all_first(node: Tag, selectors: Sequence[str]) -> list[Tag]:
    """Return all elements for the first selector that matches anything."""
    for selector in selectors:
        found = node.select(selector)
        if found:
            logger.debug(f"Found {len(found)} elements with selector: {selector}")
            return found
    return []
