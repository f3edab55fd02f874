"""
Ingestion Service - one import run per call

Stages: Fetching -> Deduplicating -> Enriching (batched) -> Tracking -> Done

1. Fetch through the provider router; any fetch / validation / configuration
   error ends the run with one classified error
2. Pre-filter already-imported items before any AI call
3. Enrich + persist each new item under the batch scheduler's bound;
   item failures only show up in `skipped`
4. Upsert the tracked Product once, after the batch
"""
import logging
from datetime import datetime, timedelta, timezone
from enum import Enum
from functools import partial
from typing import Dict, Optional, Tuple

import httpx
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError

from app.core.config import Settings, settings as default_settings
from app.core.exceptions import IngestionError, InvalidIdentifierError, ItemProcessingError
from app.models.review import Marketplace, Review, ReviewStatus
from app.services.batch_scheduler import run_batch
from app.services.deduplicator import ReviewDeduplicator
from app.services.enrichment_service import EnrichmentResult, EnrichmentService
from app.services.provider_router import ProviderFallbackRouter, RoutedFetch
from app.services.review_store import ReviewStore
from app.services.sources.amazon import ApifyAmazonAdapter, AxessoAmazonAdapter
from app.services.sources.base import FetchOptions, RawItem
from app.services.sources.email import AgentMailAdapter
from app.services.sources.identifiers import (
    detect_amazon_domain,
    detect_walmart_domain,
    normalize_amazon_identifier,
    normalize_mailbox_identifier,
    normalize_shopify_identifier,
    normalize_walmart_identifier,
)
from app.services.sources.shopify import JudgeMeShopifyAdapter
from app.services.sources.walmart import ApifyWalmartAdapter, SerpApiWalmartAdapter

logger = logging.getLogger(__name__)


class SourceKind(str, Enum):
    AMAZON = "amazon"
    WALMART = "walmart"
    SHOPIFY = "shopify"
    EMAIL = "email"


MARKETPLACE_BY_SOURCE = {
    SourceKind.AMAZON: Marketplace.AMAZON.value,
    SourceKind.WALMART: Marketplace.WALMART.value,
    SourceKind.SHOPIFY: Marketplace.SHOPIFY.value,
    SourceKind.EMAIL: Marketplace.MAILBOX.value,
}


class ImportOptions(BaseModel):
    full_sync: bool = False
    sync_type: str = "quick"          # email: quick | full
    max_items: Optional[int] = None

    @property
    def is_full(self) -> bool:
        return self.full_sync or self.sync_type == "full"


class ImportSummary(BaseModel):
    imported: int = 0
    skipped: int = 0
    product_name: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    served_by: Optional[str] = None
    fallback_used: bool = False
    message: str = ""


class IngestionService:
    """
    Ingestion orchestrator.

    `routers` overrides the provider routers per source kind; when absent
    the routers are built from settings for every run.
    """

    def __init__(
        self,
        store: ReviewStore,
        enrichment: Optional[EnrichmentService] = None,
        app_settings: Optional[Settings] = None,
        routers: Optional[Dict[SourceKind, ProviderFallbackRouter]] = None,
    ):
        self.store = store
        self.enrichment = enrichment or EnrichmentService()
        self.settings = app_settings or default_settings
        self.routers = routers or {}
        self.deduplicator = ReviewDeduplicator(store)

    # ==========================================
    # 🔎 Resolution
    # ==========================================

    def _normalize(self, source_kind: SourceKind, identifier: str) -> Tuple[str, Optional[str]]:
        """Return (canonical id, marketplace domain)."""
        if source_kind == SourceKind.AMAZON:
            return normalize_amazon_identifier(identifier), detect_amazon_domain(identifier)
        if source_kind == SourceKind.WALMART:
            return normalize_walmart_identifier(identifier), detect_walmart_domain(identifier)
        if source_kind == SourceKind.SHOPIFY:
            return normalize_shopify_identifier(identifier), None
        return normalize_mailbox_identifier(identifier), None

    def _build_router(
        self, source_kind: SourceKind, domain: Optional[str], client: httpx.AsyncClient
    ) -> ProviderFallbackRouter:
        if source_kind in self.routers:
            return self.routers[source_kind]

        kwargs = {"client": client, "app_settings": self.settings}
        timeout = self.settings.PROVIDER_TIMEOUT_SECONDS
        if source_kind == SourceKind.AMAZON:
            # Apify polls a run for up to APIFY_RUN_TIMEOUT_SECONDS on top of the HTTP calls
            timeout += self.settings.APIFY_RUN_TIMEOUT_SECONDS
            return ProviderFallbackRouter(AxessoAmazonAdapter(**kwargs), ApifyAmazonAdapter(**kwargs), timeout)
        if source_kind == SourceKind.WALMART:
            if domain == "walmart.ca":
                return ProviderFallbackRouter(ApifyWalmartAdapter(**kwargs), timeout=timeout)
            return ProviderFallbackRouter(SerpApiWalmartAdapter(**kwargs), ApifyWalmartAdapter(**kwargs), timeout)
        if source_kind == SourceKind.SHOPIFY:
            return ProviderFallbackRouter(JudgeMeShopifyAdapter(**kwargs), timeout=timeout)
        return ProviderFallbackRouter(AgentMailAdapter(**kwargs), timeout=timeout)

    def _fetch_options(self, source_kind: SourceKind, options: ImportOptions, domain: Optional[str]) -> FetchOptions:
        full = options.is_full
        max_items = options.max_items or (
            self.settings.FULL_SYNC_MAX_ITEMS if full else self.settings.QUICK_SYNC_MAX_ITEMS
        )
        since = None
        if source_kind == SourceKind.EMAIL:
            window = (
                timedelta(days=self.settings.FULL_SYNC_DAYS) if full
                else timedelta(hours=self.settings.QUICK_SYNC_HOURS)
            )
            since = datetime.now(timezone.utc) - window
        return FetchOptions(max_items=max_items, full_sync=full, domain=domain, since=since)

    # ==========================================
    # 🚀 Entry point
    # ==========================================

    async def run_ingestion(
        self,
        source_kind: str,
        identifier: str,
        owner_id: str,
        options: Optional[ImportOptions] = None,
    ) -> ImportSummary:
        options = options or ImportOptions()
        try:
            kind = SourceKind(source_kind)
        except ValueError:
            error = InvalidIdentifierError(f"Unknown source kind '{source_kind}'")
            return ImportSummary(error=str(error), error_kind=error.kind, message=str(error))
        marketplace = MARKETPLACE_BY_SOURCE[kind]
        tag = f"[{marketplace}]"

        # Fetching
        try:
            product_id, domain = self._normalize(kind, identifier)
            fetch_options = self._fetch_options(kind, options, domain)
            async with httpx.AsyncClient(timeout=self.settings.PROVIDER_TIMEOUT_SECONDS) as client:
                router = self._build_router(kind, domain, client)
                routed = await router.fetch_with_fallback(product_id, fetch_options)
        except IngestionError as e:
            logger.error(f"{tag} Import failed for '{identifier}': {e}")
            return ImportSummary(error=str(e), error_kind=e.kind, message=str(e))

        # Deduplicating
        try:
            new_items, pre_skipped = await self.deduplicator.filter_new_items(marketplace, owner_id, routed.items)
        except SQLAlchemyError as e:
            logger.error(f"{tag} Dedup lookup failed for {product_id}: {e}")
            return ImportSummary(error=f"Dedup lookup failed: {e}", error_kind="store", message="Dedup lookup failed")

        # Enriching
        process = self._process_email if kind == SourceKind.EMAIL else self._process_review
        operation = partial(process, marketplace=marketplace, owner_id=owner_id, product_id=product_id)
        batch = await run_batch(
            new_items, operation, concurrency=self.settings.INGESTION_CONCURRENCY, source=marketplace
        )

        summary = ImportSummary(
            imported=batch.imported,
            skipped=pre_skipped + batch.skipped,
            product_name=routed.product_name,
            served_by=routed.served_by,
            fallback_used=routed.fallback_used,
        )

        # Tracking
        await self._track_product(summary, marketplace, product_id, owner_id, routed)

        summary.message = (
            f"Imported {summary.imported} new reviews"
            + (f" ({summary.skipped} skipped)" if summary.skipped else "")
            + (f" via {routed.served_by} (fallback)" if routed.fallback_used else "")
        )
        logger.info(
            f"{tag} {product_id}: received {len(routed.items)}, pre-filtered {pre_skipped}, "
            f"imported {summary.imported}, skipped {summary.skipped}"
        )
        return summary

    async def _track_product(
        self,
        summary: ImportSummary,
        marketplace: str,
        product_id: str,
        owner_id: str,
        routed: RoutedFetch,
    ):
        product_name = routed.product_name
        if marketplace == Marketplace.MAILBOX.value:
            product_name = product_name or f"Inbox {product_id}"
        try:
            product = await self.store.upsert_product(marketplace, product_id, owner_id, product_name)
        except SQLAlchemyError as e:
            # The reviews are already stored; report the tracking failure without discarding the counts
            logger.error(f"[{marketplace}] Product tracking failed for {product_id}: {e}")
            summary.error = f"Product tracking failed: {e}"
            summary.error_kind = "store"
            return
        summary.product_name = product.product_name

    # ==========================================
    # ⚙️ Per-item operations
    # ==========================================

    def _build_review(
        self,
        item: RawItem,
        marketplace: str,
        owner_id: str,
        product_id: str,
        result: EnrichmentResult,
    ) -> Review:
        classification = result.classification
        return Review(
            external_review_id=item.external_id,
            marketplace=marketplace,
            owner_id=owner_id,
            title=item.title or "",
            content=item.text[: self.settings.MAX_CONTENT_LENGTH],
            customer_name=item.author_name or "Anonymous",
            customer_email=item.author_email,
            rating=item.rating,
            sentiment=classification.sentiment,
            category=classification.category,
            severity=classification.severity,
            ai_suggested_reply=result.reply,
            ai_analysis_details=result.analysis_details(),
            status=ReviewStatus.OPEN.value,
            product_id=product_id,
            verified=bool(item.verified),
            created_at=item.timestamp,
        )

    async def _persist(self, review: Review) -> bool:
        try:
            created = await self.store.create_review(review)
        except Exception as e:
            raise ItemProcessingError("persist", review.external_review_id, e) from e
        return created is not None

    async def _process_review(self, item: RawItem, marketplace: str, owner_id: str, product_id: str) -> bool:
        text = item.text[: self.settings.MAX_CONTENT_LENGTH]
        try:
            result = await self.enrichment.enrich(text, item.author_name, marketplace)
        except Exception as e:
            raise ItemProcessingError("enrich", item.external_id, e) from e

        return await self._persist(self._build_review(item, marketplace, owner_id, product_id, result))

    async def _process_email(self, item: RawItem, marketplace: str, owner_id: str, product_id: str) -> bool:
        text = item.text[: self.settings.MAX_CONTENT_LENGTH]
        try:
            triage = await self.enrichment.triage_email(item.title or "", text, item.author_name)
        except Exception as e:
            raise ItemProcessingError("enrich", item.external_id, e) from e

        if not triage.is_review:
            logger.info(f"[Email] Skipping {item.external_id}: not a review ({triage.reasoning})")
            return False

        result = EnrichmentResult(classification=triage.classification, reply=triage.reply)
        if result.reply is None:
            try:
                result.reply = await self.enrichment.draft_reply(
                    text,
                    item.author_name,
                    marketplace,
                    triage.classification.sentiment,
                    triage.classification.severity,
                )
            except Exception as e:
                logger.warning(f"[Email] ⚠️ Reply drafting failed for {item.external_id}, keeping classification: {e}")
                result.reply_error = str(e) or type(e).__name__

        result.classification.details.update({
            "emailTriage": {"confidence": triage.confidence, "reasoning": triage.reasoning},
            "productSlug": triage.product_id,
            "productName": triage.product_name,
        })
        # Keyed by inbox so the tracked Mailbox product owns its reviews
        review = self._build_review(item, marketplace, owner_id, product_id, result)
        return await self._persist(review)
