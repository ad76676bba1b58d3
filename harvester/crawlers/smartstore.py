"""SmartStore adapter: paginated review and product listings over HTTP."""

from __future__ import annotations

import logging
import sys
from typing import Optional
from urllib.parse import parse_qs, urlencode, urlparse, urlunparse

from bs4 import BeautifulSoup, Tag

from ..constants import (
    IMAGE_EXCLUSION_HINTS,
    PRODUCT_CONTAINER_SELECTORS,
    PRODUCT_DISCOUNT_SELECTORS,
    PRODUCT_ORIGINAL_PRICE_SELECTORS,
    PRODUCT_PRICE_SELECTORS,
    PRODUCT_RATING_SELECTORS,
    PRODUCT_TITLE_SELECTORS,
    REVIEW_AUTHOR_SELECTORS,
    REVIEW_CONTAINER_SELECTORS,
    REVIEW_CONTENT_SELECTORS,
    REVIEW_DATE_SELECTORS,
    REVIEW_RATING_SELECTORS,
    REVIEW_VERIFIED_SELECTORS,
    SMARTSTORE_BASE,
    SMARTSTORE_HOST,
)
from ..errors import InvalidTargetUrlError
from ..locators import first_matching_tag, select_all_first
from ..models.crawl import CrawlOptions, CrawlResultItem, SourceSite
from .base import BaseCrawler, CrawlCallback
from .parsing import clean_text, extract_number, extract_rating, is_ui_chrome, parse_date, resolve_url, strip_ui_chrome

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)


def build_page_url(url: str, page_number: int) -> str:
    parts = urlparse(url)
    query = parse_qs(parts.query, keep_blank_values=True)
    query["page"] = [str(page_number)]
    return urlunparse(parts._replace(query=urlencode(query, doseq=True)))


def _text(node: Optional[Tag]) -> str:
    return clean_text(node.get_text(" ")) if node is not None else ""


def _image_urls(element: Tag) -> list[str]:
    urls = []
    for img in element.select("img"):
        src = img.get("src") or img.get("data-src")
        if not src or any(hint in src for hint in IMAGE_EXCLUSION_HINTS):
            continue
        urls.append(resolve_url(SMARTSTORE_BASE, src))
    return urls


class SmartStoreCrawler(BaseCrawler):
    source_site = SourceSite.SMARTSTORE

    async def perform_crawl(
        self, url: str, options: CrawlOptions, callback: CrawlCallback
    ) -> list[CrawlResultItem]:
        target = self.parse_url(url)
        if not target["is_valid"]:
            raise InvalidTargetUrlError(f"Invalid SmartStore URL: {url}")

        async with self.http_client(options) as client:

            async def load_page(page_number: int) -> list[CrawlResultItem]:
                html = await self.fetch_with_retry(client, build_page_url(url, page_number), options.retries)
                return self.parse_page(html, page_number)

            results = await self.paginate(options, callback, load_page)

        logger.info(
            f"SmartStore crawl done: {len(results)} items from "
            f"{self.stats.pages_processed}/{self.stats.pages_attempted} pages"
        )
        return results

    def parse_url(self, url: str) -> dict:
        try:
            parts = urlparse(url)
        except ValueError:
            return {"is_valid": False}
        if parts.scheme not in ("http", "https") or not parts.netloc.endswith(SMARTSTORE_HOST):
            return {"is_valid": False}

        params = {k: v[0] for k, v in parse_qs(parts.query).items()}
        return {
            "is_valid": True,
            "search_keywords": params.get("q") or params.get("query"),
            "category": params.get("cat_id"),
            "filters": {
                "min_price": params.get("minPrice"),
                "max_price": params.get("maxPrice"),
                "rating": params.get("rating"),
                "delivery": params.get("delivery"),
            },
        }

    def parse_page(self, html: str, page_number: int) -> list[CrawlResultItem]:
        soup = BeautifulSoup(html, "html.parser")
        if "review" in html and "rating" in html:
            return self._parse_elements(soup, REVIEW_CONTAINER_SELECTORS, self._parse_review, page_number)
        return self._parse_elements(soup, PRODUCT_CONTAINER_SELECTORS, self._parse_product, page_number)

    @staticmethod
    def _parse_elements(soup, container_selectors, parse, page_number: int) -> list[CrawlResultItem]:
        elements = select_all_first(soup, container_selectors)
        items = []
        for order, element in enumerate(elements, start=1):
            try:
                items.append(parse(element, page_number, order))
            except ValueError as e:
                logger.warning(f"Skipping unparseable element {order} on page {page_number}: {e}")
        return items

    def _parse_review(self, element: Tag, page_number: int, order: int) -> CrawlResultItem:
        content = self._review_content(element)

        rating_node = first_matching_tag(element, REVIEW_RATING_SELECTORS)
        rating_text = _text(rating_node) or (rating_node.get("aria-label", "") if rating_node else "")
        rating = extract_rating(rating_text)

        reviewer_name = _text(first_matching_tag(element, REVIEW_AUTHOR_SELECTORS)) or None
        review_date = parse_date(_text(first_matching_tag(element, REVIEW_DATE_SELECTORS)))
        is_verified = first_matching_tag(element, REVIEW_VERIFIED_SELECTORS) is not None
        image_urls = _image_urls(element)

        item_id = element.get("data-review-id") or element.get("id") or f"review_{page_number}_{order}"

        return CrawlResultItem(
            item_id=item_id,
            content=content,
            rating=rating,
            review_date=review_date,
            reviewer_name=reviewer_name,
            is_verified=is_verified,
            image_urls=image_urls,
            page_number=page_number,
            item_order=order,
            site_data={
                "smartstore": {
                    "review_id": item_id,
                    "content": content,
                    "rating": rating,
                    "review_date": review_date.isoformat() if review_date else None,
                    "reviewer_name": reviewer_name,
                    "is_verified": is_verified,
                    "image_urls": image_urls,
                }
            },
        )

    @staticmethod
    def _review_content(element: Tag) -> Optional[str]:
        """First body text that is not a button or widget label."""
        for selector in REVIEW_CONTENT_SELECTORS:
            for node in element.select(selector):
                text = strip_ui_chrome(node.get_text(" "))
                if text and not is_ui_chrome(text):
                    return text
        return None

    def _parse_product(self, element: Tag, page_number: int, order: int) -> CrawlResultItem:
        title = _text(first_matching_tag(element, PRODUCT_TITLE_SELECTORS)) or None
        price = extract_number(_text(first_matching_tag(element, PRODUCT_PRICE_SELECTORS)))
        original_price = extract_number(_text(first_matching_tag(element, PRODUCT_ORIGINAL_PRICE_SELECTORS)))
        discount = extract_number(_text(first_matching_tag(element, PRODUCT_DISCOUNT_SELECTORS)))
        rating = extract_rating(_text(first_matching_tag(element, PRODUCT_RATING_SELECTORS)))

        img = element.select_one("img")
        src = (img.get("src") or img.get("data-src")) if img else None
        image_urls = [resolve_url(SMARTSTORE_BASE, src)] if src else []

        link = element.select_one("a")
        url = resolve_url(SMARTSTORE_BASE, link.get("href")) if link else None

        item_id = (
            (link.get("data-product-id") if link else None)
            or element.get("data-id")
            or f"product_{page_number}_{order}"
        )

        return CrawlResultItem(
            item_id=item_id,
            title=title,
            url=url,
            price=price,
            original_price=original_price,
            discount=discount,
            rating=rating,
            image_urls=image_urls,
            page_number=page_number,
            item_order=order,
            site_data={
                "smartstore": {
                    "product_id": item_id,
                    "title": title,
                    "price": price,
                    "original_price": original_price,
                    "discount": discount,
                    "rating": rating,
                    "image_urls": image_urls,
                }
            },
        )
