"""
Shopify product reviews via the Judge.me API
"""
import logging
from typing import Any, Dict, Optional

from app.models.review import Marketplace
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

JUDGEME_BASE_URL = "https://judge.me/api/v1"
PAGE_SIZE = 100


class JudgeMeShopifyAdapter(SourceAdapter):
    name = "Judge.me"
    marketplace = Marketplace.SHOPIFY.value
    required_settings = ("SHOPIFY_SHOP_DOMAIN", "JUDGEME_API_TOKEN")

    def _auth_params(self) -> Dict[str, str]:
        return {
            "shop_domain": self.settings.SHOPIFY_SHOP_DOMAIN,
            "api_token": self.settings.JUDGEME_API_TOKEN,
        }

    async def fetch(self, identifier: str, options: FetchOptions) -> FetchResult:
        self.require_configured()

        # Judge.me addresses products by its own id; resolve the Shopify
        # handle (or Shopify product id) first.
        lookup = {"external_id": identifier} if identifier.isdigit() else {"handle": identifier}
        data = await self.request_json(
            "GET",
            f"{JUDGEME_BASE_URL}/products/-1",
            params={**self._auth_params(), **lookup},
        )
        product = (data or {}).get("product")
        if not product:
            logger.info(f"[Shopify] Product {identifier} not found")
            return FetchResult()

        product_name = product.get("title")
        items = []
        page = 1
        while len(items) < options.max_items:
            data = await self.request_json(
                "GET",
                f"{JUDGEME_BASE_URL}/reviews",
                params={
                    **self._auth_params(),
                    "product_id": product.get("id"),
                    "per_page": PAGE_SIZE,
                    "page": page,
                },
            )
            reviews = (data or {}).get("reviews") or []
            items.extend(self.map_items(reviews))
            if len(reviews) < PAGE_SIZE:
                break
            page += 1

        items = items[: options.max_items]
        logger.info(f"[Shopify] Fetched {len(items)} reviews for \"{product_name}\"")
        return FetchResult(items=items, product_name=product_name)

    def map_item(self, payload: Dict[str, Any]) -> Optional[RawItem]:
        text = (payload.get("body") or "").strip()
        if not text or payload.get("hidden"):
            return None
        reviewer = payload.get("reviewer") or {}
        return RawItem(
            external_id=str(payload["id"]) if payload.get("id") is not None else None,
            text=text,
            title=payload.get("title"),
            author_name=first_value(reviewer, "name", default="Anonymous"),
            author_email=reviewer.get("email"),
            rating=coerce_rating(payload.get("rating")),
            **timestamp_fields(payload.get("created_at")),
            verified=payload.get("verified") in ("buyer", "verified-purchase", True),
        )
