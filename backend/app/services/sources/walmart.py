"""
Walmart review sources

- SerpApiWalmartAdapter: walmart.com via SerpApi product + reviews engines
- ApifyWalmartAdapter: regional scraper on Apify, the only option for
  walmart.ca and the fallback for walmart.com
"""
import logging
from typing import Any, Dict, List, Optional

from app.models.review import Marketplace
from app.services.sources.apify import ApifyActorMixin
from app.services.sources.base import (
    FetchOptions,
    FetchResult,
    RawItem,
    SourceAdapter,
    coerce_rating,
    first_value,
    timestamp_fields,
)

logger = logging.getLogger(__name__)

SERPAPI_URL = "https://serpapi.com/search.json"
APIFY_WALMART_ACTOR = "tri_angle~walmart-reviews-scraper"

QUICK_SYNC_PAGES = 1
FULL_SYNC_PAGES = 10
QUICK_SYNC_REVIEWS = 50
FULL_SYNC_REVIEWS = 100


class SerpApiWalmartAdapter(SourceAdapter):
    """walmart.com reviews via SerpApi."""

    name = "SerpApi"
    marketplace = Marketplace.WALMART.value
    required_settings = ("SERPAPI_KEY",)

    async def fetch(self, identifier: str, options: FetchOptions) -> FetchResult:
        self.require_configured()
        logger.info(f"[Walmart] Fetching product with ID: {identifier}")

        data = await self.request_json(
            "GET",
            SERPAPI_URL,
            params={"engine": "walmart_product", "product_id": identifier, "api_key": self.settings.SERPAPI_KEY},
        )
        if data is None:
            return FetchResult()

        product_name = (data.get("product_result") or {}).get("title")
        items = self.map_items(data.get("reviews") or [])

        if not items or options.full_sync:
            items = await self._fetch_review_pages(identifier, options, items)

        items = items[: options.max_items]
        logger.info(f"[Walmart] Found {len(items)} reviews for \"{product_name}\"")
        return FetchResult(items=items, product_name=product_name)

    async def _fetch_review_pages(
        self, identifier: str, options: FetchOptions, items: List[RawItem]
    ) -> List[RawItem]:
        max_pages = FULL_SYNC_PAGES if options.full_sync else QUICK_SYNC_PAGES
        seen = {(i.author_name, i.text) for i in items}
        page = 1

        while page <= max_pages and len(items) < options.max_items:
            data = await self.request_json(
                "GET",
                SERPAPI_URL,
                params={
                    "engine": "walmart_product_reviews",
                    "product_id": identifier,
                    "page": page,
                    "api_key": self.settings.SERPAPI_KEY,
                },
            )
            fetched = self.map_items((data or {}).get("reviews") or [])
            if not fetched:
                break

            for item in fetched:
                key = (item.author_name, item.text)
                if key not in seen:
                    seen.add(key)
                    items.append(item)

            logger.info(f"[Walmart] Page {page}: found {len(fetched)} reviews (total: {len(items)})")
            if not ((data or {}).get("serpapi_pagination") or {}).get("next"):
                break
            page += 1

        return items

    def map_item(self, payload: Dict[str, Any]) -> Optional[RawItem]:
        text = (first_value(payload, "review", "text", default="") or "").strip()
        if not text:
            return None
        return RawItem(
            external_id=first_value(payload, "review_id", "id"),
            text=text,
            title=payload.get("title"),
            author_name=payload.get("author") or "Anonymous",
            rating=coerce_rating(payload.get("rating")),
            **timestamp_fields(payload.get("date")),
        )


class ApifyWalmartAdapter(ApifyActorMixin, SourceAdapter):
    """Walmart reviews (any region) via the Apify reviews scraper."""

    name = "Apify-Walmart"
    marketplace = Marketplace.WALMART.value
    required_settings = ("APIFY_API_TOKEN",)

    async def fetch(self, identifier: str, options: FetchOptions) -> FetchResult:
        self.require_configured()
        domain = options.domain or "walmart.com"
        url = f"https://www.{domain}/ip/{identifier}"
        max_reviews = min(options.max_items, FULL_SYNC_REVIEWS if options.full_sync else QUICK_SYNC_REVIEWS)
        logger.info(f"[Walmart.{domain.rsplit('.', 1)[-1]}] Starting Apify actor for product: {identifier}")

        payloads = await self.run_actor_sync(
            APIFY_WALMART_ACTOR,
            {
                "startUrls": [{"url": url}],
                "maxProductsPerStartUrl": 1,
                "maxReviewsPerProduct": max_reviews,
            },
        )

        product_name = None
        for payload in payloads:
            if isinstance(payload, dict):
                product_name = first_value(payload, "productName", "product_name", default=product_name)

        items = self.map_items(payloads, max_reviews)
        logger.info(f"[Apify-Walmart] Found {len(items)} reviews for \"{product_name}\"")
        return FetchResult(items=items, product_name=product_name)

    def map_item(self, payload: Dict[str, Any]) -> Optional[RawItem]:
        # Dataset rows mix product rows and review rows; only review rows carry text
        text = (first_value(payload, "reviewText", "review", "text", "content", default="") or "").strip()
        if not text:
            return None
        return RawItem(
            external_id=first_value(payload, "reviewId", "id"),
            text=text,
            title=first_value(payload, "reviewTitle", "title"),
            author_name=first_value(payload, "author", "authorName", "reviewer", "reviewerName", default="Anonymous"),
            rating=coerce_rating(first_value(payload, "rating", "stars")),
            **timestamp_fields(first_value(payload, "date", "reviewDate", "reviewSubmissionTime")),
            verified=payload.get("verifiedPurchase"),
        )
