"""Exception hierarchy for the harvester.

Errors fall into three groups:

* ``RetryableError`` - transient failures handled by a bounded local retry
  (network fetches, a login verification that did not succeed).
* non-retryable errors - everything else that propagates to the caller
  untouched (captcha, security block, exhausted logins, page cap, unsupported
  site, single-flight conflicts).
* anything unexpected inside a crawl ends that job as FAILED.
"""

from __future__ import annotations


class HarvesterError(Exception):
    """Base class for all harvester errors."""

    retryable = False


class RetryableError(HarvesterError):
    retryable = True


class FetchError(RetryableError):
    """An HTTP fetch failed after or during retries."""

    def __init__(self, url: str, message: str, status_code: int | None = None):
        super().__init__(f"{message} ({url})")
        self.url = url
        self.status_code = status_code


# ── Browser ──────────────────────────────────────────────────────────────────


class BrowserError(HarvesterError):
    pass


class PageLimitExceededError(BrowserError):
    def __init__(self, limit: int):
        super().__init__(f"Maximum concurrent pages limit reached: {limit}")
        self.limit = limit


# ── Authentication ───────────────────────────────────────────────────────────


class AuthenticationError(HarvesterError):
    """Login failed. ``classification`` mirrors ``AuthOutcome`` values."""

    classification = "failed"


class CaptchaDetectedError(AuthenticationError):
    classification = "captcha-detected"

    def __init__(self, indicator: str):
        super().__init__(f"Captcha detected on login page ({indicator})")
        self.indicator = indicator


class SecurityBlockError(AuthenticationError):
    classification = "security-block"


class LoginAttemptsExhaustedError(AuthenticationError):
    classification = "exhausted"

    def __init__(self, attempts: int):
        super().__init__(f"Login failed after {attempts} attempts")
        self.attempts = attempts


class LoginFormError(AuthenticationError):
    """A required login form element could not be found or filled."""


class LoginVerificationError(AuthenticationError, RetryableError):
    """Submission went through but no success probe matched."""

    classification = "verification-failed"
    retryable = True


# ── Crawling ─────────────────────────────────────────────────────────────────


class CrawlerError(HarvesterError):
    pass


class CrawlerBusyError(CrawlerError):
    def __init__(self):
        super().__init__("Crawler is already running")


class InvalidTargetUrlError(CrawlerError):
    pass


class UnsupportedSiteError(CrawlerError):
    def __init__(self, site: str):
        super().__init__(f"Unsupported source site: {site}")
        self.site = site


# ── Jobs ─────────────────────────────────────────────────────────────────────


class JobError(HarvesterError):
    pass


class JobAlreadyRunningError(JobError):
    def __init__(self, principal: str):
        super().__init__(f"A crawl job is already in progress for {principal}")
        self.principal = principal


class JobNotFoundError(JobError):
    def __init__(self, job_id: int):
        super().__init__(f"Crawl job {job_id} not found")
        self.job_id = job_id


class LicenseError(JobError):
    pass
