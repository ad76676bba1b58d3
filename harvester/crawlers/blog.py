"""Naver Blog adapter: walks a blog's PostList pages in a stealth browser page."""

from __future__ import annotations

import logging
import sys
from typing import Optional
from urllib.parse import parse_qs, urlencode, urlparse

import httpx
from bs4 import BeautifulSoup
from playwright.async_api import Error as PlaywrightError

from ..constants import (
    BLOG_BASE,
    BLOG_HOST,
    BLOG_POST_COMMENT_SELECTORS,
    BLOG_POST_DATE_SELECTORS,
    BLOG_POST_LIST_URL,
    BLOG_POST_ROW_SELECTORS,
    BLOG_POST_TITLE_SELECTORS,
    BLOG_POSTS_PER_PAGE,
    NAVER_BASE,
)
from ..errors import InvalidTargetUrlError
from ..locators import first_matching_tag, select_all_first
from ..models.crawl import CrawlOptions, CrawlResultItem, SourceSite
from ..session_manager.auth import AuthenticationService
from ..session_manager.browser import BrowserSessionManager
from ..session_manager.stealth import StealthPageFactory, random_delay
from .base import BaseCrawler, CrawlCallback
from .parsing import clean_text, extract_number, parse_date, resolve_url

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)


def build_post_list_url(blog_id: str, page_number: int, category_no: int = 0) -> str:
    params = {
        "blogId": blog_id,
        "categoryNo": category_no,
        "currentPage": page_number,
        "startIndex": (page_number - 1) * BLOG_POSTS_PER_PAGE + 1,
    }
    return f"{BLOG_POST_LIST_URL}?{urlencode(params)}"


class NaverBlogCrawler(BaseCrawler):
    """Browser-driven crawler; logs in first when credentials are supplied.

    Pass ``manager`` to reuse a session. Otherwise the crawler launches its
    own browser and terminates it when the crawl ends.
    """

    source_site = SourceSite.NAVER_BLOG

    def __init__(
        self,
        options: Optional[CrawlOptions] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        manager: Optional[BrowserSessionManager] = None,
    ):
        super().__init__(options, transport)
        self._manager = manager

    async def perform_crawl(
        self, url: str, options: CrawlOptions, callback: CrawlCallback
    ) -> list[CrawlResultItem]:
        target = self.parse_url(url)
        if not target["is_valid"]:
            raise InvalidTargetUrlError(f"Invalid Naver Blog URL: {url}")

        owns_manager = self._manager is None
        manager = self._manager or BrowserSessionManager()
        factory = StealthPageFactory(manager)
        page = None

        try:
            page = await factory.create_page()

            if options.credentials is not None:
                await factory.navigate(page, NAVER_BASE)
                auth = AuthenticationService(options.credentials, profile=manager.profile)
                await auth.perform_authentication(page)

            async def load_page(page_number: int) -> list[CrawlResultItem]:
                list_url = build_post_list_url(target["blog_id"], page_number, target["category_no"])
                await factory.navigate(page, list_url)
                await random_delay(2.0, 3.0)
                return self.parse_page(await page.content(), page_number)

            return await self.paginate(options, callback, load_page)
        finally:
            if page is not None:
                try:
                    await page.close()
                except PlaywrightError as e:
                    logger.warning(f"Error closing blog page: {e}")
            if owns_manager:
                await manager.terminate()

    def parse_url(self, url: str) -> dict:
        try:
            parts = urlparse(url)
        except ValueError:
            return {"is_valid": False}
        if not parts.netloc.endswith(BLOG_HOST):
            return {"is_valid": False}

        params = {k: v[0] for k, v in parse_qs(parts.query).items()}
        blog_id = params.get("blogId")
        if blog_id:
            category = params.get("categoryNo", "0")
            return {
                "is_valid": True,
                "blog_id": blog_id,
                "category_no": int(category) if category.isdigit() else 0,
                "is_category": "categoryNo" in params,
            }

        path = [p for p in parts.path.split("/") if p]
        if not path or path[0].endswith(".naver"):
            return {"is_valid": False}
        return {
            "is_valid": True,
            "blog_id": path[0],
            "post_id": path[1] if len(path) > 1 else None,
            "category_no": 0,
            "is_category": False,
        }

    def parse_page(self, html: str, page_number: int) -> list[CrawlResultItem]:
        soup = BeautifulSoup(html, "html.parser")
        items = []
        for row in select_all_first(soup, BLOG_POST_ROW_SELECTORS):
            link = row if row.get("href") else row.select_one("a[href]")
            href = link.get("href") if link is not None else None
            title_node = first_matching_tag(row, BLOG_POST_TITLE_SELECTORS) or row
            title = clean_text(title_node.get_text(" "))

            if not href or not title or "PostList" in href:
                continue
            path = [p for p in urlparse(href).path.split("/") if p]
            if len(path) < 2:
                continue

            order = len(items) + 1
            post_id = path[-1] if path[-1].isdigit() else f"post_{page_number}_{order}"
            date_node = first_matching_tag(row, BLOG_POST_DATE_SELECTORS)
            publish_date = parse_date(date_node.get_text(" ")) if date_node else None
            comment_node = first_matching_tag(row, BLOG_POST_COMMENT_SELECTORS)
            comments = extract_number(comment_node.get_text()) if comment_node else None

            items.append(
                CrawlResultItem(
                    item_id=post_id,
                    title=title,
                    url=resolve_url(BLOG_BASE, href),
                    review_date=publish_date,
                    page_number=page_number,
                    item_order=order,
                    site_data={
                        "naver_blog": {
                            "blog_id": path[0],
                            "post_id": post_id,
                            "publish_date": publish_date.isoformat() if publish_date else None,
                            "comment_count": int(comments) if comments is not None else 0,
                        }
                    },
                )
            )
        return items
