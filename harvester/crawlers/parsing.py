"""Text, number, rating and date extraction from scraped markup."""

from __future__ import annotations

import re
from datetime import datetime
from typing import Optional, Sequence
from urllib.parse import urljoin

from ..constants import CONTENT_EXCLUSION_WORDS

_FULL_DATE = re.compile(r"(\d{4})\s*[.\-/년]\s*(\d{1,2})\s*[.\-/월]\s*(\d{1,2})")
_SHORT_DATE = re.compile(r"(?<!\d)(\d{2})\.(\d{1,2})\.(\d{1,2})\.?")
_NUMBER = re.compile(r"\d+(?:\.\d+)?")


def clean_text(text: str | None) -> str:
    """Collapse whitespace runs into single spaces."""
    if not text:
        return ""
    return re.sub(r"\s+", " ", text).strip()


def extract_number(text: str | None) -> Optional[float]:
    """Parse a number after stripping everything but digits and dots.

    ``"12,900원"`` gives 12900.0, ``"30%"`` gives 30.0.
    """
    if not text:
        return None
    stripped = re.sub(r"[^\d.]", "", text)
    match = _NUMBER.match(stripped)
    if not match:
        return None
    return float(match.group(0))


def extract_rating(text: str | None) -> Optional[float]:
    """Normalize a rating to a 5-point scale.

    A number above 5 is treated as a 10-point score and halved. Without a
    number, filled star glyphs are counted.
    """
    if not text:
        return None
    match = _NUMBER.search(text)
    if match:
        rating = float(match.group(0))
        return rating if rating <= 5 else rating / 2
    stars = text.count("★")
    if stars:
        return float(stars)
    return None


def parse_date(text: str | None) -> Optional[datetime]:
    """Parse ``2024.05.12``, ``24.05.12.``, ``2024년 5월 12일`` or ISO dates.

    Returns None instead of raising when nothing matches.
    """
    text = clean_text(text)
    if not text:
        return None

    match = _FULL_DATE.search(text)
    if match:
        year, month, day = (int(g) for g in match.groups())
    else:
        match = _SHORT_DATE.search(text)
        if match:
            year, month, day = (int(g) for g in match.groups())
            year += 2000
    if match:
        try:
            return datetime(year, month, day)
        except ValueError:
            return None

    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None


def resolve_url(base_url: str, url: str | None) -> Optional[str]:
    if not url:
        return None
    return urljoin(base_url, url)


def is_ui_chrome(text: str, words: Sequence[str] = CONTENT_EXCLUSION_WORDS) -> bool:
    """True for button and widget labels that are not review text."""
    return clean_text(text) in words


def strip_ui_chrome(text: str, words: Sequence[str] = CONTENT_EXCLUSION_WORDS) -> str:
    """Remove trailing widget labels glued onto a block of review text."""
    cleaned = clean_text(text)
    changed = True
    while changed and cleaned:
        changed = False
        for word in words:
            if cleaned.endswith(word):
                cleaned = cleaned[: -len(word)].rstrip()
                changed = True
    return cleaned
