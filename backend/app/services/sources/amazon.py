"""
Amazon review sources

- AxessoAmazonAdapter: Axesso data service on RapidAPI (primary, richer data)
- ApifyAmazonAdapter: junglee/amazon-reviews-scraper on Apify (secondary,
  supports every Amazon domain)
"""
import logging
from typing import Any, Dict, Optional

from app.core.exceptions import ProviderAuthError, ProviderError, RateLimitError
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

AXESSO_HOST = "axesso-axesso-amazon-data-service-v1.p.rapidapi.com"
AXESSO_BASE_URL = f"https://{AXESSO_HOST}"
APIFY_AMAZON_ACTOR = "junglee~amazon-reviews-scraper"


def amazon_product_url(asin: str, domain: Optional[str] = None) -> str:
    return f"https://www.{domain or 'amazon.com'}/dp/{asin}"


class AxessoAmazonAdapter(SourceAdapter):
    """Amazon reviews via Axesso (RapidAPI)."""

    name = "Axesso"
    marketplace = Marketplace.AMAZON.value
    required_settings = ("AXESSO_API_KEY",)

    def _headers(self) -> Dict[str, str]:
        return {
            "X-RapidAPI-Key": self.settings.AXESSO_API_KEY,
            "X-RapidAPI-Host": AXESSO_HOST,
        }

    async def fetch(self, identifier: str, options: FetchOptions) -> FetchResult:
        self.require_configured()
        url = amazon_product_url(identifier, options.domain)
        product_name = None
        reviews = []

        # The dedicated reviews endpoint returns more reviews; the product
        # lookup only embeds the top few but answers for more listings.
        try:
            data = await self.request_json(
                "GET",
                f"{AXESSO_BASE_URL}/amz/amazon-lookup-reviews",
                params={"url": url, "sortBy": "recent"},
                headers=self._headers(),
            )
            if data:
                reviews = data.get("reviews") or []
                product_name = data.get("productTitle")
        except (ProviderAuthError, RateLimitError):
            raise
        except ProviderError as e:
            logger.info(f"[Axesso] Reviews endpoint failed, falling back to product lookup: {e}")

        if not reviews:
            data = await self.request_json(
                "GET",
                f"{AXESSO_BASE_URL}/amz/amazon-lookup-product",
                params={"url": url},
                headers=self._headers(),
            )
            if data:
                reviews = data.get("reviews") or []
                product_name = product_name or data.get("productTitle")

        items = self.map_items(reviews, options.max_items)
        logger.info(f"[Axesso] Fetched {len(items)} reviews for ASIN {identifier}")
        return FetchResult(items=items, product_name=product_name)

    def map_item(self, payload: Dict[str, Any]) -> Optional[RawItem]:
        text = (first_value(payload, "text", "reviewText", default="") or "").strip()
        if not text:
            return None
        return RawItem(
            external_id=first_value(payload, "reviewId", "id"),
            text=text,
            title=first_value(payload, "title", "reviewTitle"),
            author_name=first_value(payload, "userName", "reviewerName", default="Amazon Customer"),
            rating=coerce_rating(payload.get("rating")),
            **timestamp_fields(payload.get("date")),
            verified=bool(payload.get("verified")) if "verified" in payload else None,
        )


class ApifyAmazonAdapter(ApifyActorMixin, SourceAdapter):
    """Amazon reviews via the Apify reviews scraper."""

    name = "Apify"
    marketplace = Marketplace.AMAZON.value
    required_settings = ("APIFY_API_TOKEN",)

    async def fetch(self, identifier: str, options: FetchOptions) -> FetchResult:
        self.require_configured()
        url = amazon_product_url(identifier, options.domain)
        logger.info(f"[Apify] Fetching up to {options.max_items} reviews for ASIN {identifier} ({url})")

        payloads = await self.run_actor(
            APIFY_AMAZON_ACTOR,
            {
                "productUrls": [{"url": url}],
                "maxReviews": options.max_items,
                "filterByRatings": ["allStars"],
                "proxyConfiguration": {"useApifyProxy": True},
            },
        )
        items = self.map_items(payloads, options.max_items)
        product_name = next(
            (p.get("productTitle") for p in payloads if isinstance(p, dict) and p.get("productTitle")),
            None,
        )
        logger.info(f"[Apify] Fetched {len(items)} reviews for ASIN {identifier}")
        return FetchResult(items=items, product_name=product_name)

    def map_item(self, payload: Dict[str, Any]) -> Optional[RawItem]:
        text = (first_value(payload, "reviewText", "text", default="") or "").strip()
        if not text:
            return None
        # No reviewId means the deduplicator derives a surrogate key
        return RawItem(
            external_id=payload.get("reviewId"),
            text=text,
            title=first_value(payload, "reviewTitle", "title"),
            author_name=first_value(payload, "reviewerName", "userName", default="Amazon Customer"),
            rating=coerce_rating(payload.get("rating")),
            **timestamp_fields(payload.get("reviewDate")),
            verified=bool(payload.get("verified", False)),
        )
