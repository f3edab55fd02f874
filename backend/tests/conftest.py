# backend/tests/conftest.py

import asyncio
import uuid
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Set

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.core.config import Settings
from app.db.session import Base
from app.models.review import Review, ReviewStatus
from app.models.product import Product
from app.services.enrichment_service import Classification, EmailTriage, EnrichmentResult
from app.services.review_store import ReviewStore
from app.services.sources.base import FetchOptions, FetchResult, RawItem, SourceAdapter


BASE_TIME = datetime(2025, 1, 5, 12, 0, tzinfo=timezone.utc)  # a Sunday


def make_item(index: int, **overrides) -> RawItem:
    data = {
        "external_id": f"R{index:04d}",
        "text": f"Review number {index}: the blender stopped working after a week.",
        "title": f"Title {index}",
        "author_name": f"Customer {index}",
        "rating": (index % 5) + 1,
        "timestamp": BASE_TIME + timedelta(hours=index),
    }
    data.update(overrides)
    return RawItem(**data)


def make_review(**overrides) -> Review:
    """Transient Review with every column set (column defaults only apply on insert)."""
    data = {
        "id": uuid.uuid4(),
        "external_review_id": None,
        "marketplace": "Amazon",
        "owner_id": "owner-1",
        "title": "",
        "content": "text",
        "customer_name": "Customer",
        "customer_email": None,
        "rating": 4,
        "sentiment": "positive",
        "category": "Praise & Satisfaction",
        "severity": "low",
        "ai_suggested_reply": None,
        "ai_analysis_details": None,
        "status": ReviewStatus.OPEN.value,
        "product_id": "B0TEST0001",
        "verified": False,
        "created_at": BASE_TIME,
        "first_response_at": None,
        "resolved_at": None,
    }
    data.update(overrides)
    return Review(**data)


# ============== Test doubles ==============

class InMemoryStore:
    """Dict-backed stand-in for ReviewStore, enforcing the same dedup key."""

    def __init__(self):
        self.reviews: List[Review] = []
        self.products: Dict[tuple, Product] = {}
        self.upsert_calls = 0

    def _keys(self) -> Set[tuple]:
        return {
            (r.marketplace, r.external_review_id, r.owner_id)
            for r in self.reviews
            if r.external_review_id is not None
        }

    async def review_exists(self, marketplace, external_id, owner_id) -> bool:
        return (marketplace, external_id, owner_id) in self._keys()

    async def existing_external_ids(self, marketplace, owner_id, external_ids) -> Set[str]:
        keys = self._keys()
        return {i for i in external_ids if (marketplace, i, owner_id) in keys}

    async def create_review(self, review: Review) -> Optional[Review]:
        await asyncio.sleep(0)
        if (review.marketplace, review.external_review_id, review.owner_id) in self._keys():
            return None
        if review.id is None:
            review.id = uuid.uuid4()
        self.reviews.append(review)
        return review

    async def list_reviews(self, owner_id) -> List[Review]:
        return sorted(
            (r for r in self.reviews if r.owner_id == owner_id),
            key=lambda r: (r.created_at, str(r.id)),
        )

    async def get_product(self, platform, product_id, owner_id) -> Optional[Product]:
        return self.products.get((platform, product_id, owner_id))

    async def upsert_product(self, platform, product_id, owner_id, product_name=None, last_imported=None) -> Product:
        self.upsert_calls += 1
        key = (platform, product_id, owner_id)
        product = self.products.get(key)
        if product is None:
            product = Product(platform=platform, product_id=product_id, owner_id=owner_id)
            self.products[key] = product
        product.last_imported = last_imported or datetime.now(timezone.utc)
        if product_name:
            product.product_name = product_name
        return product


class FakeEnrichment:
    """
    Deterministic enrichment double.

    Records the high-water mark of concurrent enrich() calls and fails for
    any text listed in `fail_on`. With `reply_fails` the classification
    succeeds but reply drafting does not, the way EnrichmentService.enrich
    reports a partial result.
    """

    def __init__(self, fail_on: Optional[Set[str]] = None, delay: float = 0.01, reply_fails: bool = False):
        self.fail_on = fail_on or set()
        self.reply_fails = reply_fails
        self.delay = delay
        self.in_flight = 0
        self.max_in_flight = 0
        self.calls = 0

    async def enrich(self, text, author, marketplace) -> EnrichmentResult:
        self.calls += 1
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            if text in self.fail_on:
                raise RuntimeError("model unavailable")
            negative = "stopped" in text
            return EnrichmentResult(
                classification=Classification(
                    sentiment="negative" if negative else "positive",
                    category="Product Performance" if negative else "Praise & Satisfaction",
                    severity="high" if negative else "low",
                    reasoning="fake",
                ),
                reply=None if self.reply_fails else f"Thanks {author}!",
                reply_error="reply model timed out" if self.reply_fails else None,
            )
        finally:
            self.in_flight -= 1

    async def triage_email(self, subject, body, author) -> EmailTriage:
        self.calls += 1
        if "newsletter" in subject.lower():
            return EmailTriage(is_review=False, confidence=95, reasoning="marketing")
        return EmailTriage(
            is_review=True,
            confidence=90,
            reasoning="complaint",
            product_name="Kitchen Mixer Pro",
            product_id="kitchen-mixer-pro",
            classification=Classification(sentiment="negative", category="Product Quality", severity="medium"),
            reply=None,
        )

    async def draft_reply(self, text, author, marketplace, sentiment, severity) -> str:
        if self.reply_fails:
            raise RuntimeError("reply model timed out")
        return f"Sorry about that, {author}."


class StaticAdapter(SourceAdapter):
    """Adapter returning canned items, or raising, without any network."""

    marketplace = "Amazon"

    def __init__(self, name: str, items=None, error: Exception = None, configured: bool = True):
        super().__init__(app_settings=Settings())
        self.name = name
        self.items = items or []
        self.error = error
        self.configured = configured
        self.calls = 0

    def is_configured(self) -> bool:
        return self.configured

    async def fetch(self, identifier: str, options: FetchOptions) -> FetchResult:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return FetchResult(items=list(self.items), product_name=f"{self.name} product")

    def map_item(self, payload):
        return None


# ============== Fixtures ==============

@pytest.fixture
def memory_store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def fake_enrichment() -> FakeEnrichment:
    return FakeEnrichment()


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        APIFY_API_TOKEN="apify-test",
        AXESSO_API_KEY="axesso-test",
        SERPAPI_KEY="serp-test",
        SHOPIFY_SHOP_DOMAIN="demo.myshopify.com",
        JUDGEME_API_TOKEN="judgeme-test",
        AGENTMAIL_API_KEY="agentmail-test",
        INGESTION_CONCURRENCY=5,
    )


@pytest_asyncio.fixture
async def sqlite_store(tmp_path):
    """ReviewStore over a temporary SQLite file."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'driftsignal_test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
    yield ReviewStore(session_factory)
    await engine.dispose()
