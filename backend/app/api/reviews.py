"""
Reviews API Router - list reviews and move them through the workflow
"""
import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query

from app.api.deps import get_owner_id, get_store
from app.api.schemas import ReviewListResponse, ReviewResponse, ReviewStatusUpdate
from app.services.review_store import ReviewStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reviews", tags=["Reviews"])


@router.get("", response_model=ReviewListResponse)
async def list_reviews(
    marketplace: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    product_id: Optional[str] = Query(None),
    owner_id: str = Depends(get_owner_id),
    store: ReviewStore = Depends(get_store),
):
    """Owner's reviews, newest first."""
    reviews = await store.list_reviews(owner_id)
    if marketplace:
        reviews = [r for r in reviews if r.marketplace == marketplace]
    if status:
        reviews = [r for r in reviews if r.status == status]
    if product_id:
        reviews = [r for r in reviews if r.product_id == product_id]
    reviews.reverse()

    return ReviewListResponse(
        total=len(reviews),
        reviews=[ReviewResponse.model_validate(r) for r in reviews],
    )


@router.patch("/{review_id}/status", response_model=ReviewResponse)
async def update_review_status(
    review_id: UUID,
    request: ReviewStatusUpdate,
    owner_id: str = Depends(get_owner_id),
    store: ReviewStore = Depends(get_store),
):
    review = await store.update_review_status(review_id, owner_id, request.status)
    if review is None:
        raise HTTPException(status_code=404, detail=f"Review {review_id} not found")
    logger.info(f"[Reviews] {review_id} -> {request.status.value}")
    return ReviewResponse.model_validate(review)
