"""
Pydantic Schemas for API Request/Response Validation
"""
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.models.review import ReviewStatus, Sentiment, Severity
from app.services.email_threads import EmailThread


# ============== Import Schemas ==============

class ImportRequest(BaseModel):
    """
    Request body for POST /api/v1/imports/{source_kind}
    """
    identifier: str = Field(..., min_length=1, description="Product URL / id, Shopify handle, or mailbox id")
    full_sync: bool = Field(False, description="Fetch the larger window / item count")
    sync_type: str = Field("quick", pattern="^(quick|full)$", description="Email sync window: quick or full")
    max_items: Optional[int] = Field(None, ge=1, le=1000, description="Override the per-run item cap")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "identifier": "https://www.amazon.com/dp/B0XXXXXXXX",
                "full_sync": False,
            }
        }
    )


class ImportResponse(BaseModel):
    """Import summary; returned for failures too, with error/error_kind set"""
    imported: int
    skipped: int
    product_name: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    served_by: Optional[str] = None
    fallback_used: bool = False
    message: str = ""


# ============== Review Schemas ==============

class ReviewResponse(BaseModel):
    id: UUID
    external_review_id: Optional[str] = None
    marketplace: str
    title: str
    content: str
    customer_name: str
    customer_email: Optional[str] = None
    rating: Optional[int] = None
    sentiment: str
    category: str
    severity: str
    ai_suggested_reply: Optional[str] = None
    ai_analysis_details: Optional[Dict[str, Any]] = None
    status: str
    product_id: Optional[str] = None
    verified: bool
    created_at: datetime
    first_response_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ReviewListResponse(BaseModel):
    total: int
    reviews: List[ReviewResponse]


class ReviewStatusUpdate(BaseModel):
    status: ReviewStatus


# ============== Product Schemas ==============

class ProductResponse(BaseModel):
    platform: str
    product_id: str
    product_name: Optional[str] = None
    last_imported: Optional[datetime] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ProductListResponse(BaseModel):
    total: int
    products: List[ProductResponse]


class ProductHistoryResponse(BaseModel):
    platform: str
    product_id: str
    product_name: Optional[str] = None
    reviews_deleted: bool
    reviews_deleted_count: int
    deleted_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ProductHistoryListResponse(BaseModel):
    total: int
    history: List[ProductHistoryResponse]


# ============== Email Schemas ==============

class EmailThreadListResponse(BaseModel):
    total: int
    threads: List[EmailThread]


# ============== Enrichment Schemas ==============

class AnalyzeReviewRequest(BaseModel):
    """
    Request body for POST /api/v1/enrichment/analyze
    """
    text: str = Field(..., min_length=1, description="Review or complaint text")
    author: str = Field("Customer", description="Customer name used in the prompt")
    marketplace: str = Field("Unknown", description="Where the review was left")


class GenerateReplyRequest(AnalyzeReviewRequest):
    """
    Request body for POST /api/v1/enrichment/reply
    """
    sentiment: Sentiment = Field(Sentiment.NEUTRAL, description="Tone to reply to")
    severity: Severity = Field(Severity.MEDIUM, description="How urgent the issue is")


class AnalyzeReviewResponse(BaseModel):
    sentiment: str
    category: str
    severity: str
    reasoning: str = ""
    details: Dict[str, Any] = Field(default_factory=dict)


class GenerateReplyResponse(BaseModel):
    reply: str
