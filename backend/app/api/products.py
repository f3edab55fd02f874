"""
Products API Router - tracked listings / mailboxes and their deletion history
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, Query

from app.api.deps import get_owner_id, get_store
from app.api.schemas import (
    ProductHistoryListResponse,
    ProductHistoryResponse,
    ProductListResponse,
    ProductResponse,
)
from app.services.review_store import ReviewStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/products", tags=["Products"])


@router.get("", response_model=ProductListResponse)
async def list_products(
    owner_id: str = Depends(get_owner_id),
    store: ReviewStore = Depends(get_store),
):
    products = await store.list_products(owner_id)
    return ProductListResponse(
        total=len(products),
        products=[ProductResponse.model_validate(p) for p in products],
    )


@router.get("/history", response_model=ProductHistoryListResponse)
async def list_product_history(
    owner_id: str = Depends(get_owner_id),
    store: ReviewStore = Depends(get_store),
):
    history = await store.list_product_history(owner_id)
    return ProductHistoryListResponse(
        total=len(history),
        history=[ProductHistoryResponse.model_validate(h) for h in history],
    )


@router.delete("/{platform}/{product_id}", response_model=ProductHistoryResponse)
async def delete_product(
    platform: str,
    product_id: str,
    delete_reviews: bool = Query(False, description="Also delete the product's reviews"),
    owner_id: str = Depends(get_owner_id),
    store: ReviewStore = Depends(get_store),
):
    """Stop tracking a product; the deletion is recorded in the history ledger."""
    history = await store.delete_product(platform, product_id, owner_id, delete_reviews=delete_reviews)
    if history is None:
        raise HTTPException(status_code=404, detail=f"Product {platform}/{product_id} not found")
    return ProductHistoryResponse.model_validate(history)
