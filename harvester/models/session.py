"""Pydantic models for browser session state and login behaviour."""

from __future__ import annotations

import random
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, SecretStr

from ..config import MAX_LOGIN_ATTEMPTS
from ..constants import VIEWPORTS


class SessionStatus(BaseModel):
    """Current state of the browser session."""

    is_active: bool = False
    active_pages: int = 0
    is_terminating: bool = False
    user_agent: str = ""
    viewport: Optional[dict[str, int]] = None


class Credentials(BaseModel):
    """Login credentials. Only ever typed into the page, never logged."""

    id: str
    password: SecretStr


class AuthOutcome(str, Enum):
    SUCCESS = "success"
    ALREADY_AUTHENTICATED = "already-authenticated"
    CAPTCHA_DETECTED = "captcha-detected"
    SECURITY_BLOCK = "security-block"
    EXHAUSTED = "exhausted"


class AuthenticationAttempt(BaseModel):
    """Transient per-invocation login state."""

    number: int = 0
    max_attempts: int = MAX_LOGIN_ATTEMPTS
    submissions: int = 0
    outcome: Optional[AuthOutcome] = None

    @property
    def has_attempts_left(self) -> bool:
        return self.number < self.max_attempts


class EvasionProfile(BaseModel):
    """Randomized behaviour chosen once per session or login run."""

    viewport: dict[str, int] = Field(default_factory=lambda: dict(VIEWPORTS[0]))
    # Per-character delay bands (seconds) for the start, middle and end of an input.
    slow_band: tuple[float, float] = (0.12, 0.28)
    fast_band: tuple[float, float] = (0.05, 0.12)
    closing_band: tuple[float, float] = (0.10, 0.24)
    mistype_probability: float = 0.04
    mistype_after: int = 3
    field_gap: tuple[float, float] = (0.5, 1.2)
    pre_submit_delay: tuple[float, float] = (1.5, 3.5)
    retry_backoff: tuple[float, float] = (5.0, 8.0)

    @classmethod
    def generate(cls) -> EvasionProfile:
        pace = random.uniform(0.85, 1.15)

        def scaled(band: tuple[float, float]) -> tuple[float, float]:
            return (round(band[0] * pace, 3), round(band[1] * pace, 3))

        defaults = cls()
        return cls(
            viewport=dict(random.choice(VIEWPORTS)),
            slow_band=scaled(defaults.slow_band),
            fast_band=scaled(defaults.fast_band),
            closing_band=scaled(defaults.closing_band),
        )

    def typing_band(self, index: int, length: int) -> tuple[float, float]:
        """Delay band for the character at ``index``: slow, then fast, then slow."""
        if length <= 0:
            return self.fast_band
        position = index / length
        if position < 0.3:
            return self.slow_band
        if position < 0.7:
            return self.fast_band
        return self.closing_band

    def should_mistype(self, index: int) -> bool:
        return index >= self.mistype_after and random.random() < self.mistype_probability
