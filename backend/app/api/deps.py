"""
Shared FastAPI dependencies
"""
from functools import lru_cache

from fastapi import Header, HTTPException

from app.services.analytics_service import AnalyticsService
from app.services.enrichment_service import EnrichmentService
from app.services.ingestion_service import IngestionService
from app.services.review_store import ReviewStore


@lru_cache()
def get_store() -> ReviewStore:
    return ReviewStore()


def get_ingestion_service() -> IngestionService:
    return IngestionService(get_store())


def get_analytics_service() -> AnalyticsService:
    return AnalyticsService(get_store())


def get_enrichment_service() -> EnrichmentService:
    return EnrichmentService()


async def get_owner_id(x_owner_id: str = Header(..., alias="X-Owner-Id")) -> str:
    """Owning account for every read and write (authentication happens upstream)."""
    owner_id = x_owner_id.strip()
    if not owner_id:
        raise HTTPException(status_code=400, detail="X-Owner-Id header is required")
    return owner_id
