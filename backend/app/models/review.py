"""
Review Model - One piece of customer feedback from a marketplace or the inbox
"""
import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from sqlalchemy import JSON, Boolean, DateTime, Index, Integer, String, Text, UniqueConstraint, Uuid, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from app.db.session import Base


class Marketplace(str, Enum):
    """Source kind a review was ingested from"""
    AMAZON = "Amazon"
    WALMART = "Walmart"
    SHOPIFY = "Shopify"
    MAILBOX = "Mailbox"


class Sentiment(str, Enum):
    """Sentiment analysis result"""
    POSITIVE = "positive"
    NEUTRAL = "neutral"
    NEGATIVE = "negative"


class Severity(str, Enum):
    """AI-assessed urgency tier, independent of sentiment"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ReviewStatus(str, Enum):
    """Workflow status (user-driven, not enforced as a strict state machine)"""
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"


class Review(Base):
    """
    Review entity.

    Attributes:
        id: Unique identifier (UUID)
        external_review_id: Provider-supplied natural key (nullable)
        marketplace: Amazon / Walmart / Shopify / Mailbox
        owner_id: Owning account
        title: Review title (or email subject)
        content: Review text, capped at MAX_CONTENT_LENGTH
        customer_name: Reviewer / sender display name
        customer_email: Sender address (email source only)
        rating: Star rating 0-5, null for channels without stars
        sentiment / category / severity: AI classification
        ai_suggested_reply: Drafted reply
        ai_analysis_details: Structured rationale returned by the model
        status: open / in_progress / resolved
        product_id: Platform-scoped product identifier this review belongs to
        verified: Verified purchase flag
        created_at: Original review timestamp (not ingestion time)
        first_response_at: First time status left "open"
        resolved_at: Time status became "resolved"
        imported_at: Ingestion timestamp
    """
    __tablename__ = "reviews"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4
    )

    # Dedup key: (marketplace, external_review_id, owner_id)
    external_review_id: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    marketplace: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    owner_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)

    # Content
    title: Mapped[str] = mapped_column(Text, nullable=False, default="")
    content: Mapped[str] = mapped_column(Text, nullable=False)
    customer_name: Mapped[str] = mapped_column(String(200), nullable=False)
    customer_email: Mapped[Optional[str]] = mapped_column(String(320), nullable=True)
    rating: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)

    # AI classification
    sentiment: Mapped[str] = mapped_column(String(20), default=Sentiment.NEUTRAL.value, index=True)
    category: Mapped[str] = mapped_column(String(50), nullable=False)
    severity: Mapped[str] = mapped_column(String(20), default=Severity.MEDIUM.value, index=True)
    ai_suggested_reply: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    ai_analysis_details: Mapped[Optional[dict[str, Any]]] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"),
        nullable=True
    )

    # Workflow
    status: Mapped[str] = mapped_column(String(20), default=ReviewStatus.OPEN.value, index=True)
    product_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    verified: Mapped[bool] = mapped_column(Boolean, default=False)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    first_response_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    imported_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now()
    )

    __table_args__ = (
        # NULL external ids never collide, so file imports without ids are unaffected
        UniqueConstraint("marketplace", "external_review_id", "owner_id", name="unique_review_per_owner"),
        Index("ix_reviews_owner_created", "owner_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<Review(id={self.id}, marketplace={self.marketplace}, status={self.status})>"
