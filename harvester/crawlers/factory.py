"""Maps source sites to crawler implementations and their default bounds."""

from __future__ import annotations

from typing import Optional, Union

from ..errors import UnsupportedSiteError
from ..models.crawl import CrawlOptions, SourceSite
from .base import BaseCrawler
from .blog import NaverBlogCrawler
from .smartstore import SmartStoreCrawler

_CRAWLERS: dict[SourceSite, type[BaseCrawler]] = {
    SourceSite.SMARTSTORE: SmartStoreCrawler,
    SourceSite.NAVER_BLOG: NaverBlogCrawler,
}

# Per-site overrides on top of CrawlOptions defaults.
_SITE_DEFAULTS: dict[SourceSite, dict] = {
    SourceSite.SMARTSTORE: {"request_delay": 1.5},
    SourceSite.NAVER_BLOG: {"request_delay": 1.5, "max_items": 1000},
    SourceSite.COUPANG: {"request_delay": 2.0},
}


def _as_site(site: Union[SourceSite, str]) -> SourceSite:
    try:
        return SourceSite(site)
    except ValueError:
        raise UnsupportedSiteError(str(site)) from None


class CrawlerFactory:
    @staticmethod
    def create_crawler(site: Union[SourceSite, str], options: Optional[CrawlOptions] = None) -> BaseCrawler:
        source = _as_site(site)
        crawler_cls = _CRAWLERS.get(source)
        if crawler_cls is None:
            raise UnsupportedSiteError(source.value)
        return crawler_cls(options or CrawlerFactory.default_options(source))

    @staticmethod
    def supported_sites() -> list[SourceSite]:
        return list(_CRAWLERS)

    @staticmethod
    def is_supported(site: Union[SourceSite, str]) -> bool:
        try:
            return _as_site(site) in _CRAWLERS
        except UnsupportedSiteError:
            return False

    @staticmethod
    def default_options(site: Union[SourceSite, str]) -> CrawlOptions:
        return CrawlOptions(**_SITE_DEFAULTS.get(_as_site(site), {}))
