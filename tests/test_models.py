"""Tests for crawl and session models."""

import pytest
from pydantic import ValidationError

from harvester.constants import VIEWPORTS
from harvester.models.crawl import (
    CrawlFilters,
    CrawlOptions,
    CrawlResultItem,
    CrawlSettings,
    JobStatus,
    RangeFilter,
    StartCrawlRequest,
)
from harvester.models.session import AuthenticationAttempt, Credentials, EvasionProfile


class TestCrawlOptions:
    def test_merge_overrides_only_supplied_settings(self):
        base = CrawlOptions(max_pages=10, max_items=2000, request_delay=1.0)
        merged = base.merged(CrawlSettings(max_pages=3))

        assert merged.max_pages == 3
        assert merged.max_items == 2000
        assert merged.request_delay == 1.0
        assert base.max_pages == 10

    def test_merge_without_settings_copies(self):
        base = CrawlOptions()
        merged = base.merged(None)
        assert merged == base
        assert merged is not base

    def test_merge_carries_filters(self):
        filters = CrawlFilters(keywords=["배송"])
        merged = CrawlOptions().merged(CrawlSettings(filters=filters))
        assert merged.filters.keywords == ["배송"]


class TestRangeFilter:
    def test_missing_value_is_never_rejected(self):
        assert not RangeFilter(min=4).rejects(None)

    def test_bounds(self):
        f = RangeFilter(min=2, max=4)
        assert f.rejects(1)
        assert f.rejects(5)
        assert not f.rejects(3)


class TestResultItem:
    def test_items_are_frozen(self):
        item = CrawlResultItem(item_id="review_1_1", page_number=1, item_order=1)
        with pytest.raises(ValidationError):
            item.title = "changed"


class TestStartCrawlRequest:
    def test_principal_required(self):
        with pytest.raises(ValidationError):
            StartCrawlRequest(principal="", source_site="SMARTSTORE", search_url="https://smartstore.naver.com/x")

    def test_credentials_never_serialized(self):
        request = StartCrawlRequest(
            principal="user@example.com",
            source_site="NAVER_BLOG",
            search_url="https://blog.naver.com/someone",
            credentials=Credentials(id="someone", password="hunter2"),
        )
        dumped = request.model_dump()
        assert "credentials" not in dumped
        assert "hunter2" not in str(request.credentials)


class TestJobStatus:
    def test_terminal_states(self):
        assert JobStatus.COMPLETED.is_terminal
        assert JobStatus.FAILED.is_terminal
        assert JobStatus.CANCELLED.is_terminal
        assert not JobStatus.RUNNING.is_terminal
        assert not JobStatus.PENDING.is_terminal


class TestEvasionProfile:
    def test_generate_picks_known_viewport(self):
        profile = EvasionProfile.generate()
        assert profile.viewport in VIEWPORTS

    def test_typing_curve_is_slow_fast_slow(self):
        profile = EvasionProfile()
        assert profile.typing_band(0, 10) == profile.slow_band
        assert profile.typing_band(5, 10) == profile.fast_band
        assert profile.typing_band(9, 10) == profile.closing_band

    def test_no_mistypes_in_first_characters(self):
        profile = EvasionProfile(mistype_probability=1.0)
        assert not any(profile.should_mistype(i) for i in range(3))
        assert profile.should_mistype(3)

    def test_attempt_budget(self):
        attempt = AuthenticationAttempt(max_attempts=2)
        assert attempt.has_attempts_left
        attempt.number = 2
        assert not attempt.has_attempts_left
