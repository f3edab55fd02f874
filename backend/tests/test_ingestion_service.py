# backend/tests/test_ingestion_service.py

import pytest

from app.core.exceptions import ProviderAuthError, ProviderError
from app.services.ingestion_service import ImportOptions, IngestionService, SourceKind
from app.services.provider_router import ProviderFallbackRouter

from conftest import FakeEnrichment, StaticAdapter, make_item


def service_for(store, enrichment, settings, kind=SourceKind.AMAZON, primary=None, secondary=None):
    router = ProviderFallbackRouter(primary, secondary)
    return IngestionService(store, enrichment, settings, routers={kind: router})


class TestRunIngestion:

    @pytest.mark.asyncio
    async def test_second_run_is_idempotent(self, memory_store, fake_enrichment, test_settings):
        """Re-running the same import stores nothing new and skips everything"""
        adapter = StaticAdapter("Axesso", items=[make_item(i) for i in range(7)])
        service = service_for(memory_store, fake_enrichment, test_settings, primary=adapter)

        first = await service.run_ingestion("amazon", "B08N5WRWNW", "owner-1")
        calls_after_first = fake_enrichment.calls
        second = await service.run_ingestion("amazon", "B08N5WRWNW", "owner-1")

        assert (first.imported, first.skipped) == (7, 0)
        assert (second.imported, second.skipped) == (0, 7)
        assert len(memory_store.reviews) == 7
        # no AI call is paid for already-imported items
        assert fake_enrichment.calls == calls_after_first
        assert first.message == "Imported 7 new reviews"

    @pytest.mark.asyncio
    async def test_stores_enriched_reviews(self, memory_store, fake_enrichment, test_settings):
        adapter = StaticAdapter("Axesso", items=[make_item(1, verified=True)])
        service = service_for(memory_store, fake_enrichment, test_settings, primary=adapter)

        await service.run_ingestion("amazon", "https://www.amazon.com/dp/B08N5WRWNW", "owner-1")

        review = memory_store.reviews[0]
        assert review.marketplace == "Amazon"
        assert review.product_id == "B08N5WRWNW"
        assert review.external_review_id == "R0001"
        assert review.sentiment == "negative"
        assert review.category == "Product Performance"
        assert review.severity == "high"
        assert review.status == "open"
        assert review.verified is True
        assert review.ai_suggested_reply == "Thanks Customer 1!"
        assert review.created_at == make_item(1).timestamp

    @pytest.mark.asyncio
    async def test_item_failure_only_counts_as_skipped(self, memory_store, test_settings):
        items = [make_item(i) for i in range(10)]
        enrichment = FakeEnrichment(fail_on={items[3].text})
        service = service_for(memory_store, enrichment, test_settings, primary=StaticAdapter("Axesso", items=items))

        summary = await service.run_ingestion("amazon", "B08N5WRWNW", "owner-1")

        assert (summary.imported, summary.skipped) == (9, 1)
        assert summary.error is None
        assert "R0003" not in {r.external_review_id for r in memory_store.reviews}

    @pytest.mark.asyncio
    async def test_reply_failure_still_counts_as_imported(self, memory_store, test_settings):
        """A classified review whose reply could not be drafted is stored with the error noted"""
        enrichment = FakeEnrichment(reply_fails=True)
        adapter = StaticAdapter("Axesso", items=[make_item(i) for i in range(4)])
        service = service_for(memory_store, enrichment, test_settings, primary=adapter)

        summary = await service.run_ingestion("amazon", "B08N5WRWNW", "owner-1")

        assert (summary.imported, summary.skipped) == (4, 0)
        assert summary.error is None
        for review in memory_store.reviews:
            assert review.ai_suggested_reply is None
            assert review.sentiment == "negative"
            assert review.ai_analysis_details["replyError"] == "reply model timed out"

    @pytest.mark.asyncio
    async def test_product_upserted_once_per_run(self, memory_store, fake_enrichment, test_settings):
        adapter = StaticAdapter("Axesso", items=[make_item(i) for i in range(12)])
        service = service_for(memory_store, fake_enrichment, test_settings, primary=adapter)

        summary = await service.run_ingestion("amazon", "B08N5WRWNW", "owner-1")

        assert memory_store.upsert_calls == 1
        product = memory_store.products[("Amazon", "B08N5WRWNW", "owner-1")]
        assert product.product_name == "Axesso product"
        assert summary.product_name == "Axesso product"

    @pytest.mark.asyncio
    async def test_empty_fetch_still_tracks_product(self, memory_store, fake_enrichment, test_settings):
        """Zero reviews is a successful run; last_imported still moves"""
        service = service_for(memory_store, fake_enrichment, test_settings, primary=StaticAdapter("Axesso"))

        summary = await service.run_ingestion("amazon", "B08N5WRWNW", "owner-1")

        assert (summary.imported, summary.skipped, summary.error) == (0, 0, None)
        assert memory_store.upsert_calls == 1

    @pytest.mark.asyncio
    async def test_fallback_reported(self, memory_store, fake_enrichment, test_settings):
        primary = StaticAdapter("Axesso", error=ProviderError("500", provider="Axesso", status_code=500))
        secondary = StaticAdapter("Apify", items=[make_item(1), make_item(2)])
        service = service_for(memory_store, fake_enrichment, test_settings, primary=primary, secondary=secondary)

        summary = await service.run_ingestion("amazon", "B08N5WRWNW", "owner-1")

        assert summary.imported == 2
        assert summary.served_by == "Apify"
        assert summary.fallback_used is True
        assert "via Apify (fallback)" in summary.message

    @pytest.mark.asyncio
    async def test_fetch_error_is_one_classified_error(self, memory_store, fake_enrichment, test_settings):
        adapter = StaticAdapter("Judge.me", error=ProviderAuthError("bad token", provider="Judge.me"))
        service = service_for(memory_store, fake_enrichment, test_settings, kind=SourceKind.SHOPIFY, primary=adapter)

        summary = await service.run_ingestion("shopify", "blue-mug", "owner-1")

        assert summary.error_kind == "auth"
        assert "bad token" in summary.error
        assert (summary.imported, summary.skipped) == (0, 0)
        assert memory_store.upsert_calls == 0
        assert fake_enrichment.calls == 0

    @pytest.mark.asyncio
    async def test_invalid_identifier_makes_no_calls(self, memory_store, fake_enrichment, test_settings):
        adapter = StaticAdapter("Axesso", items=[make_item(1)])
        service = service_for(memory_store, fake_enrichment, test_settings, primary=adapter)

        summary = await service.run_ingestion("amazon", "not a product", "owner-1")

        assert summary.error_kind == "validation"
        assert adapter.calls == 0

    @pytest.mark.asyncio
    async def test_unknown_source_kind(self, memory_store, fake_enrichment, test_settings):
        service = IngestionService(memory_store, fake_enrichment, test_settings)

        summary = await service.run_ingestion("ebay", "123", "owner-1")

        assert summary.error_kind == "validation"

    @pytest.mark.asyncio
    async def test_owners_are_isolated(self, memory_store, fake_enrichment, test_settings):
        adapter = StaticAdapter("Axesso", items=[make_item(i) for i in range(3)])
        service = service_for(memory_store, fake_enrichment, test_settings, primary=adapter)

        await service.run_ingestion("amazon", "B08N5WRWNW", "owner-1")
        summary = await service.run_ingestion("amazon", "B08N5WRWNW", "owner-2")

        assert summary.imported == 3
        assert len(memory_store.reviews) == 6


class TestEmailIngestion:

    @pytest.mark.asyncio
    async def test_non_reviews_are_skipped(self, memory_store, fake_enrichment, test_settings):
        """Newsletters are triaged out; complaints are stored under the inbox, with the product the model named"""
        items = [
            make_item(1, title="Weekly newsletter", author_email="news@shop.example"),
            make_item(2, title="Mixer broke", author_email="dana@example.com"),
        ]
        adapter = StaticAdapter("AgentMail", items=items)
        service = service_for(memory_store, fake_enrichment, test_settings, kind=SourceKind.EMAIL, primary=adapter)

        summary = await service.run_ingestion(
            "email", "support@agentmail.to", "owner-1", ImportOptions(sync_type="full")
        )

        assert (summary.imported, summary.skipped) == (1, 1)
        review = memory_store.reviews[0]
        assert review.marketplace == "Mailbox"
        assert review.product_id == "support@agentmail.to"
        assert review.ai_analysis_details["productSlug"] == "kitchen-mixer-pro"
        assert review.customer_email == "dana@example.com"
        assert review.rating == make_item(2).rating
        # triage gave no reply, so one was drafted
        assert review.ai_suggested_reply == "Sorry about that, Customer 2."
        assert review.ai_analysis_details["productName"] == "Kitchen Mixer Pro"
        assert review.ai_analysis_details["emailTriage"]["confidence"] == 90
        assert ("Mailbox", "support@agentmail.to", "owner-1") in memory_store.products

    @pytest.mark.asyncio
    async def test_reply_failure_keeps_email_review(self, memory_store, test_settings):
        enrichment = FakeEnrichment(reply_fails=True)
        adapter = StaticAdapter("AgentMail", items=[make_item(1, title="Mixer broke")])
        service = service_for(memory_store, enrichment, test_settings, kind=SourceKind.EMAIL, primary=adapter)

        summary = await service.run_ingestion("email", "support@agentmail.to", "owner-1")

        assert summary.imported == 1
        review = memory_store.reviews[0]
        assert review.ai_suggested_reply is None
        assert review.ai_analysis_details["replyError"] == "reply model timed out"

    @pytest.mark.asyncio
    async def test_mailbox_fallback_name(self, memory_store, fake_enrichment, test_settings):
        class NamelessAdapter(StaticAdapter):
            async def fetch(self, identifier, options):
                result = await super().fetch(identifier, options)
                result.product_name = None
                return result

        service = service_for(
            memory_store, fake_enrichment, test_settings, kind=SourceKind.EMAIL, primary=NamelessAdapter("AgentMail")
        )

        summary = await service.run_ingestion("email", "support@agentmail.to", "owner-1")

        assert summary.product_name == "Inbox support@agentmail.to"


class TestFetchOptions:

    def test_email_windows(self, memory_store, fake_enrichment, test_settings):
        service = IngestionService(memory_store, fake_enrichment, test_settings)

        quick = service._fetch_options(SourceKind.EMAIL, ImportOptions(), None)
        full = service._fetch_options(SourceKind.EMAIL, ImportOptions(sync_type="full"), None)

        assert quick.max_items == test_settings.QUICK_SYNC_MAX_ITEMS
        assert full.max_items == test_settings.FULL_SYNC_MAX_ITEMS
        assert full.since < quick.since

    def test_walmart_ca_uses_regional_provider_only(self, memory_store, fake_enrichment, test_settings):
        service = IngestionService(memory_store, fake_enrichment, test_settings)

        router = service._build_router(SourceKind.WALMART, "walmart.ca", client=None)

        assert router.primary.name == "Apify-Walmart"
        assert router.secondary is None
