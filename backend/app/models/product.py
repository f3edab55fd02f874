"""
Product Model - A tracked marketplace listing or mailbox bucket
"""
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import String, DateTime, UniqueConstraint, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from app.db.session import Base


class Product(Base):
    """
    Product entity, scoped per owner.

    Attributes:
        id: Unique identifier (UUID)
        platform: Marketplace the listing lives on (or "Mailbox")
        product_id: Platform-scoped identifier (ASIN, Walmart item id, handle, inbox id)
        product_name: Display name reported by the provider
        last_imported: Bumped on every ingestion run, even when nothing new arrived
        owner_id: Owning account
        created_at: First successful import
    """
    __tablename__ = "products"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4
    )
    platform: Mapped[str] = mapped_column(String(20), nullable=False)
    product_id: Mapped[str] = mapped_column(String(100), nullable=False)
    product_name: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    last_imported: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    owner_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("platform", "product_id", "owner_id", name="unique_product_per_owner"),
    )

    def __repr__(self) -> str:
        return f"<Product(platform={self.platform}, product_id={self.product_id})>"
