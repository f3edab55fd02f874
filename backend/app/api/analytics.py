"""
Analytics API Router
"""
import logging
from datetime import date
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from app.api.deps import get_analytics_service, get_owner_id
from app.services.analytics_service import AnalyticsFilters, AnalyticsService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/analytics", tags=["Analytics"])


def split_csv(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


@router.get("")
async def get_analytics(
    date_from: Optional[date] = Query(None, description="Inclusive start date (YYYY-MM-DD)"),
    date_to: Optional[date] = Query(None, description="Inclusive end date (YYYY-MM-DD)"),
    product_id: Optional[str] = Query(None),
    marketplaces: Optional[str] = Query(None, description="Comma-separated, e.g. Amazon,Walmart"),
    sentiments: Optional[str] = Query(None, description="Comma-separated sentiments"),
    statuses: Optional[str] = Query(None, description="Comma-separated statuses"),
    ratings: Optional[str] = Query(None, description="Comma-separated star ratings"),
    owner_id: str = Depends(get_owner_id),
    service: AnalyticsService = Depends(get_analytics_service),
) -> Dict[str, Any]:
    """Recompute the analytics snapshot for the owner's reviews."""
    try:
        rating_values = [int(r) for r in split_csv(ratings)]
    except ValueError:
        raise HTTPException(status_code=400, detail="ratings must be integers")

    filters = AnalyticsFilters(
        date_from=date_from,
        date_to=date_to,
        product_id=product_id if product_id and product_id != "all" else None,
        marketplaces=split_csv(marketplaces),
        sentiments=split_csv(sentiments),
        statuses=split_csv(statuses),
        ratings=rating_values,
    )
    return await service.get_analytics(owner_id, filters)
