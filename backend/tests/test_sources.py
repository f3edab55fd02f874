# backend/tests/test_sources.py

from datetime import datetime, timezone

import httpx
import pytest

from app.core.exceptions import ConfigurationError, ProviderAuthError, ProviderError, RateLimitError
from app.core.config import Settings
from app.services.sources.amazon import ApifyAmazonAdapter, AxessoAmazonAdapter
from app.services.sources.base import FetchOptions, coerce_rating, parse_timestamp, timestamp_fields
from app.services.sources.email import AgentMailAdapter
from app.services.sources.shopify import JudgeMeShopifyAdapter
from app.services.sources.walmart import ApifyWalmartAdapter, SerpApiWalmartAdapter


def mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestParsing:

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("4.0 out of 5 stars", 4),
            (4.6, 5),
            ("5", 5),
            (7, 5),
            ("n/a", None),
            (None, None),
        ],
    )
    def test_coerce_rating(self, value, expected):
        assert coerce_rating(value) == expected

    def test_parse_timestamp_formats(self):
        expected = datetime(2024, 1, 5, tzinfo=timezone.utc)
        assert parse_timestamp("2024-01-05T00:00:00Z") == expected
        assert parse_timestamp("Reviewed in the United States on January 5, 2024") == expected
        assert parse_timestamp("Jan 5, 2024") == expected
        assert parse_timestamp(1704412800) == expected
        assert parse_timestamp(1704412800000) == expected

    def test_parse_timestamp_fallback(self):
        fallback = datetime(2020, 1, 1, tzinfo=timezone.utc)
        assert parse_timestamp("sometime last week", default=fallback) == fallback
        assert parse_timestamp(None, default=fallback) == fallback

    def test_timestamp_fields_flags_missing_dates(self):
        assert timestamp_fields("2024-01-05")["timestamp_known"] is True
        assert timestamp_fields("sometime last week")["timestamp_known"] is False
        assert timestamp_fields(None)["timestamp_known"] is False


class TestItemMapping:

    def test_numeric_review_ids_become_strings(self):
        """Providers that send integer ids still map cleanly"""
        apify = ApifyWalmartAdapter(app_settings=Settings())
        serpapi = SerpApiWalmartAdapter(app_settings=Settings())
        axesso = AxessoAmazonAdapter(app_settings=Settings())

        assert apify.map_item({"reviewText": "Great", "id": 123456}).external_id == "123456"
        assert serpapi.map_item({"text": "Great", "review_id": 987}).external_id == "987"
        assert axesso.map_item({"text": "Great", "reviewId": 42}).external_id == "42"

    def test_malformed_row_is_dropped_not_fatal(self):
        """One row that fails validation does not abort the rest of the batch"""
        adapter = ApifyWalmartAdapter(app_settings=Settings())
        items = adapter.map_items([
            {"reviewId": "W1", "reviewText": "Works", "authorName": "Luc"},
            {"reviewId": "W2", "reviewText": "Odd row", "authorName": {"first": "Jo"}},
            {"reviewId": 3, "reviewText": "Also works"},
        ])
        assert [i.external_id for i in items] == ["W1", "3"]

    def test_undated_payload_is_marked(self):
        adapter = ApifyAmazonAdapter(app_settings=Settings())
        item = adapter.map_item({"reviewText": "No date here", "reviewerName": "Ana"})
        assert item.timestamp_known is False
        dated = adapter.map_item({"reviewText": "Dated", "reviewDate": "2024-02-01"})
        assert dated.timestamp_known is True


class TestErrorClassification:

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status,error",
        [(401, ProviderAuthError), (403, ProviderAuthError), (429, RateLimitError), (402, RateLimitError),
         (500, ProviderError)],
    )
    async def test_status_mapping(self, test_settings, status, error):
        async with mock_client(lambda request: httpx.Response(status, text="nope")) as client:
            adapter = SerpApiWalmartAdapter(client=client, app_settings=test_settings)
            with pytest.raises(error) as exc_info:
                await adapter.fetch("5129624", FetchOptions())
        assert exc_info.value.provider == "SerpApi"

    @pytest.mark.asyncio
    async def test_not_found_is_empty(self, test_settings):
        async with mock_client(lambda request: httpx.Response(404)) as client:
            adapter = SerpApiWalmartAdapter(client=client, app_settings=test_settings)
            result = await adapter.fetch("5129624", FetchOptions())
        assert result.items == []

    @pytest.mark.asyncio
    async def test_transport_error(self, test_settings):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        async with mock_client(handler) as client:
            adapter = SerpApiWalmartAdapter(client=client, app_settings=test_settings)
            with pytest.raises(ProviderError):
                await adapter.fetch("5129624", FetchOptions())

    @pytest.mark.asyncio
    async def test_missing_credentials(self):
        adapter = SerpApiWalmartAdapter(app_settings=Settings(SERPAPI_KEY=None))
        assert adapter.is_configured() is False
        with pytest.raises(ConfigurationError):
            await adapter.fetch("5129624", FetchOptions())


class TestAmazonAdapters:

    @pytest.mark.asyncio
    async def test_axesso_falls_back_to_product_lookup(self, test_settings):
        """A failing reviews endpoint falls back to the product lookup of the same provider"""
        paths = []

        def handler(request):
            paths.append(request.url.path)
            assert request.headers["X-RapidAPI-Key"] == "axesso-test"
            if request.url.path.endswith("amazon-lookup-reviews"):
                return httpx.Response(500)
            return httpx.Response(200, json={
                "productTitle": "Echo Dot",
                "reviews": [
                    {"reviewId": "R1", "text": "Great speaker", "userName": "Sam", "rating": "5.0 out of 5 stars",
                     "date": "Reviewed in the United States on January 5, 2024"},
                    {"reviewId": "R2", "text": "  ", "userName": "Empty"},
                ],
            })

        async with mock_client(handler) as client:
            adapter = AxessoAmazonAdapter(client=client, app_settings=test_settings)
            result = await adapter.fetch("B08N5WRWNW", FetchOptions(domain="amazon.ca"))

        assert paths == ["/amz/amazon-lookup-reviews", "/amz/amazon-lookup-product"]
        assert result.product_name == "Echo Dot"
        assert len(result.items) == 1
        item = result.items[0]
        assert (item.external_id, item.author_name, item.rating) == ("R1", "Sam", 5)
        assert item.timestamp == datetime(2024, 1, 5, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_axesso_auth_error_not_swallowed(self, test_settings):
        async with mock_client(lambda request: httpx.Response(401)) as client:
            adapter = AxessoAmazonAdapter(client=client, app_settings=test_settings)
            with pytest.raises(ProviderAuthError):
                await adapter.fetch("B08N5WRWNW", FetchOptions())

    @pytest.mark.asyncio
    async def test_apify_run_polls_until_succeeded(self, test_settings):
        statuses = iter(["RUNNING", "SUCCEEDED"])
        run_inputs = []

        def handler(request):
            path = request.url.path
            if path == "/v2/acts/junglee~amazon-reviews-scraper/runs":
                run_inputs.append(request.read())
                return httpx.Response(201, json={"data": {"id": "run-1"}})
            if path == "/v2/actor-runs/run-1":
                return httpx.Response(200, json={"data": {"status": next(statuses), "defaultDatasetId": "ds-1"}})
            if path == "/v2/datasets/ds-1/items":
                return httpx.Response(200, json=[
                    {"reviewText": "Stopped charging", "reviewerName": "Ana", "rating": 1,
                     "reviewDate": "2024-02-01", "productTitle": "Echo Dot"},
                ])
            return httpx.Response(404)

        async with mock_client(handler) as client:
            adapter = ApifyAmazonAdapter(client=client, app_settings=test_settings)
            adapter.poll_interval = 0
            result = await adapter.fetch("B08N5WRWNW", FetchOptions(max_items=20))

        assert b"https://www.amazon.com/dp/B08N5WRWNW" in run_inputs[0]
        assert result.product_name == "Echo Dot"
        assert result.items[0].external_id is None
        assert result.items[0].rating == 1

    @pytest.mark.asyncio
    async def test_apify_failed_run(self, test_settings):
        def handler(request):
            if request.url.path.endswith("/runs"):
                return httpx.Response(201, json={"data": {"id": "run-1"}})
            return httpx.Response(200, json={"data": {"status": "FAILED"}})

        async with mock_client(handler) as client:
            adapter = ApifyAmazonAdapter(client=client, app_settings=test_settings)
            adapter.poll_interval = 0
            with pytest.raises(ProviderError, match="FAILED"):
                await adapter.fetch("B08N5WRWNW", FetchOptions())


class TestWalmartAdapters:

    @pytest.mark.asyncio
    async def test_serpapi_paginates_and_dedupes(self, test_settings):
        """Full sync pages the reviews engine until pagination runs out"""
        def handler(request):
            params = request.url.params
            if params["engine"] == "walmart_product":
                return httpx.Response(200, json={
                    "product_result": {"title": "Ninja Blender"},
                    "reviews": [{"author": "Kim", "review": "Loud but strong", "rating": 4}],
                })
            page = int(params["page"])
            reviews = [
                {"author": "Kim", "review": "Loud but strong", "rating": 4},
                {"author": f"Page{page}", "review": f"Review on page {page}", "rating": 3},
            ]
            body = {"reviews": reviews}
            if page < 3:
                body["serpapi_pagination"] = {"next": f"page={page + 1}"}
            return httpx.Response(200, json=body)

        async with mock_client(handler) as client:
            adapter = SerpApiWalmartAdapter(client=client, app_settings=test_settings)
            result = await adapter.fetch("5129624", FetchOptions(full_sync=True, max_items=100))

        assert result.product_name == "Ninja Blender"
        assert [i.author_name for i in result.items] == ["Kim", "Page1", "Page2", "Page3"]

    @pytest.mark.asyncio
    async def test_serpapi_quick_sync_uses_embedded_reviews(self, test_settings):
        calls = []

        def handler(request):
            calls.append(request.url.params["engine"])
            return httpx.Response(200, json={"reviews": [{"author": "Kim", "text": "Fine", "rating": 3}]})

        async with mock_client(handler) as client:
            adapter = SerpApiWalmartAdapter(client=client, app_settings=test_settings)
            result = await adapter.fetch("5129624", FetchOptions())

        assert calls == ["walmart_product"]
        assert len(result.items) == 1

    @pytest.mark.asyncio
    async def test_apify_walmart_regional(self, test_settings):
        captured = {}

        def handler(request):
            captured["path"] = request.url.path
            captured["body"] = request.read()
            return httpx.Response(200, json=[
                {"productName": "Ninja Blender CA"},
                {"reviewId": "W1", "authorName": "Luc", "reviewText": "Très bien", "stars": 5,
                 "reviewSubmissionTime": "2024-03-01"},
            ])

        async with mock_client(handler) as client:
            adapter = ApifyWalmartAdapter(client=client, app_settings=test_settings)
            result = await adapter.fetch("6000201234567", FetchOptions(domain="walmart.ca", max_items=30))

        assert captured["path"].endswith("run-sync-get-dataset-items")
        assert b"https://www.walmart.ca/ip/6000201234567" in captured["body"]
        assert b'"maxReviewsPerProduct":30' in captured["body"].replace(b" ", b"")
        assert result.product_name == "Ninja Blender CA"
        assert [(i.external_id, i.author_name, i.rating) for i in result.items] == [("W1", "Luc", 5)]


class TestShopifyAdapter:

    @pytest.mark.asyncio
    async def test_resolves_handle_then_pages_reviews(self, test_settings):
        seen = []

        def handler(request):
            params = request.url.params
            seen.append((request.url.path, dict(params)))
            if request.url.path == "/api/v1/products/-1":
                return httpx.Response(200, json={"product": {"id": 42, "title": "Blue Mug"}})
            return httpx.Response(200, json={"reviews": [
                {"id": 1, "body": "Lovely mug", "rating": 5, "reviewer": {"name": "Jo", "email": "jo@example.com"},
                 "verified": "buyer", "created_at": "2024-04-01T10:00:00Z"},
                {"id": 2, "body": "Hidden one", "rating": 1, "hidden": True, "reviewer": {}},
            ]})

        async with mock_client(handler) as client:
            adapter = JudgeMeShopifyAdapter(client=client, app_settings=test_settings)
            result = await adapter.fetch("blue-mug", FetchOptions())

        assert seen[0][1]["handle"] == "blue-mug"
        assert seen[0][1]["shop_domain"] == "demo.myshopify.com"
        assert seen[1][1]["product_id"] == "42"
        assert result.product_name == "Blue Mug"
        assert len(result.items) == 1
        item = result.items[0]
        assert (item.external_id, item.author_email, item.verified) == ("1", "jo@example.com", True)

    @pytest.mark.asyncio
    async def test_numeric_identifier_uses_external_id(self, test_settings):
        seen = []

        def handler(request):
            seen.append(dict(request.url.params))
            return httpx.Response(404)

        async with mock_client(handler) as client:
            adapter = JudgeMeShopifyAdapter(client=client, app_settings=test_settings)
            result = await adapter.fetch("7712345678901", FetchOptions())

        assert seen[0]["external_id"] == "7712345678901"
        assert result.items == []


class TestAgentMailAdapter:

    @pytest.mark.asyncio
    async def test_pages_and_filters_by_window(self, test_settings):
        pages = {
            None: {
                "messages": [
                    {"message_id": "m1", "thread_id": "t1", "from": "Dana <dana@example.com>",
                     "subject": "Mixer broke", "text": "It broke.", "timestamp": "2024-05-02T09:00:00Z",
                     "labels": ["received", "unread"]},
                ],
                "next_page_token": "p2",
            },
            "p2": {
                "messages": [
                    {"message_id": "m2", "from": {"name": "Lee", "email": "lee@example.com"},
                     "subject": "Old", "text": "Too old", "timestamp": "2024-04-01T09:00:00Z"},
                ],
            },
        }

        def handler(request):
            assert request.headers["Authorization"] == "Bearer agentmail-test"
            return httpx.Response(200, json=pages[request.url.params.get("page_token")])

        since = datetime(2024, 5, 1, tzinfo=timezone.utc)
        async with mock_client(handler) as client:
            adapter = AgentMailAdapter(client=client, app_settings=test_settings)
            messages = await adapter.list_messages("support@agentmail.to", FetchOptions(since=since))

        assert [m.id for m in messages] == ["m1"]
        message = messages[0]
        assert (message.sender_name, message.sender_email) == ("Dana", "dana@example.com")
        assert message.read is False

        item = message.to_raw_item()
        assert item.title == "Mixer broke"
        assert item.author_email == "dana@example.com"
        assert item.rating is None
