"""
Review Store - the only shared state of the pipeline

Every operation opens its own short-lived session from the session factory,
so concurrent batch operations never share a session. Uniqueness of
(marketplace, external_review_id, owner_id) is enforced by the database;
create_review reports a rejected duplicate as None instead of raising.
"""
import logging
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Set
from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.db.session import async_session_maker
from app.models.product import Product
from app.models.product_history import ProductHistory
from app.models.review import Review, ReviewStatus

logger = logging.getLogger(__name__)

# Keeps IN (...) parameter lists well below driver limits
LOOKUP_CHUNK_SIZE = 500


class ReviewStore:

    def __init__(self, session_factory: Optional[async_sessionmaker[AsyncSession]] = None):
        self.session_factory = session_factory or async_session_maker

    # ==========================================
    # 📝 Reviews
    # ==========================================

    async def review_exists(self, marketplace: str, external_id: str, owner_id: str) -> bool:
        async with self.session_factory() as session:
            stmt = select(Review.id).where(
                Review.marketplace == marketplace,
                Review.external_review_id == external_id,
                Review.owner_id == owner_id,
            ).limit(1)
            result = await session.execute(stmt)
            return result.scalar_one_or_none() is not None

    async def existing_external_ids(
        self, marketplace: str, owner_id: str, external_ids: Iterable[str]
    ) -> Set[str]:
        """Bulk variant of review_exists: which of these ids are already stored."""
        ids = [i for i in dict.fromkeys(external_ids) if i]
        found: Set[str] = set()
        if not ids:
            return found

        async with self.session_factory() as session:
            for start in range(0, len(ids), LOOKUP_CHUNK_SIZE):
                chunk = ids[start:start + LOOKUP_CHUNK_SIZE]
                stmt = select(Review.external_review_id).where(
                    Review.marketplace == marketplace,
                    Review.owner_id == owner_id,
                    Review.external_review_id.in_(chunk),
                )
                result = await session.execute(stmt)
                found.update(result.scalars().all())
        return found

    async def create_review(self, review: Review) -> Optional[Review]:
        async with self.session_factory() as session:
            session.add(review)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                logger.info(
                    f"[Store] Duplicate rejected by constraint: "
                    f"{review.marketplace}/{review.external_review_id}"
                )
                return None
            return review

    async def list_reviews(self, owner_id: str) -> List[Review]:
        async with self.session_factory() as session:
            stmt = (
                select(Review)
                .where(Review.owner_id == owner_id)
                .order_by(Review.created_at, Review.id)
            )
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def update_review_status(
        self, review_id: UUID, owner_id: str, status: ReviewStatus
    ) -> Optional[Review]:
        """
        Move a review to `status`.

        first_response_at is stamped the first time a review leaves "open";
        resolved_at follows the resolved state (set on entry, cleared on exit).
        """
        status = ReviewStatus(status)
        async with self.session_factory() as session:
            stmt = select(Review).where(Review.id == review_id, Review.owner_id == owner_id)
            review = (await session.execute(stmt)).scalar_one_or_none()
            if review is None:
                return None

            now = datetime.now(timezone.utc)
            if status != ReviewStatus.OPEN and review.first_response_at is None:
                review.first_response_at = now
            if status == ReviewStatus.RESOLVED:
                if review.status != ReviewStatus.RESOLVED.value or review.resolved_at is None:
                    review.resolved_at = now
            else:
                review.resolved_at = None
            review.status = status.value

            await session.commit()
            return review

    # ==========================================
    # 📦 Products
    # ==========================================

    async def get_product(self, platform: str, product_id: str, owner_id: str) -> Optional[Product]:
        async with self.session_factory() as session:
            stmt = select(Product).where(
                Product.platform == platform,
                Product.product_id == product_id,
                Product.owner_id == owner_id,
            )
            return (await session.execute(stmt)).scalar_one_or_none()

    async def upsert_product(
        self,
        platform: str,
        product_id: str,
        owner_id: str,
        product_name: Optional[str] = None,
        last_imported: Optional[datetime] = None,
    ) -> Product:
        """Create the product on first import, otherwise refresh last_imported (and name)."""
        last_imported = last_imported or datetime.now(timezone.utc)
        async with self.session_factory() as session:
            stmt = select(Product).where(
                Product.platform == platform,
                Product.product_id == product_id,
                Product.owner_id == owner_id,
            )
            product = (await session.execute(stmt)).scalar_one_or_none()

            if product is None:
                product = Product(
                    platform=platform,
                    product_id=product_id,
                    owner_id=owner_id,
                    product_name=product_name,
                    last_imported=last_imported,
                )
                session.add(product)
                try:
                    await session.commit()
                    logger.info(f"[Store] Tracking new product {platform}/{product_id}")
                    return product
                except IntegrityError:
                    # Created concurrently; fall through to the update path
                    await session.rollback()
                    product = (await session.execute(stmt)).scalar_one()

            product.last_imported = last_imported
            if product_name:
                product.product_name = product_name
            await session.commit()
            return product

    async def list_products(self, owner_id: str) -> List[Product]:
        async with self.session_factory() as session:
            stmt = (
                select(Product)
                .where(Product.owner_id == owner_id)
                .order_by(Product.last_imported.desc(), Product.product_id)
            )
            return list((await session.execute(stmt)).scalars().all())

    async def list_products_by_platform(self, platform: str) -> List[Product]:
        """Every owner's products on one platform (scheduled mailbox sync)."""
        async with self.session_factory() as session:
            stmt = (
                select(Product)
                .where(Product.platform == platform)
                .order_by(Product.owner_id, Product.product_id)
            )
            return list((await session.execute(stmt)).scalars().all())

    async def delete_product(
        self,
        platform: str,
        product_id: str,
        owner_id: str,
        delete_reviews: bool = False,
    ) -> Optional[ProductHistory]:
        """Delete a tracked product, optionally with its reviews, and record it in history."""
        async with self.session_factory() as session:
            stmt = select(Product).where(
                Product.platform == platform,
                Product.product_id == product_id,
                Product.owner_id == owner_id,
            )
            product = (await session.execute(stmt)).scalar_one_or_none()
            if product is None:
                return None

            deleted_count = 0
            if delete_reviews:
                review_filter = (
                    Review.marketplace == platform,
                    Review.product_id == product_id,
                    Review.owner_id == owner_id,
                )
                deleted_count = (
                    await session.execute(select(func.count(Review.id)).where(*review_filter))
                ).scalar_one()
                await session.execute(delete(Review).where(*review_filter))

            history = ProductHistory(
                owner_id=owner_id,
                platform=platform,
                product_id=product_id,
                product_name=product.product_name,
                reviews_deleted=delete_reviews,
                reviews_deleted_count=deleted_count,
                deleted_at=datetime.now(timezone.utc),
            )
            session.add(history)
            await session.delete(product)
            await session.commit()

        logger.info(
            f"[Store] Deleted product {platform}/{product_id} "
            f"(reviews deleted: {deleted_count if delete_reviews else 'no'})"
        )
        return history

    async def add_product_history(
        self,
        owner_id: str,
        platform: str,
        product_id: str,
        product_name: Optional[str] = None,
        reviews_deleted: bool = False,
        reviews_deleted_count: int = 0,
    ) -> ProductHistory:
        async with self.session_factory() as session:
            history = ProductHistory(
                owner_id=owner_id,
                platform=platform,
                product_id=product_id,
                product_name=product_name,
                reviews_deleted=reviews_deleted,
                reviews_deleted_count=reviews_deleted_count,
                deleted_at=datetime.now(timezone.utc),
            )
            session.add(history)
            await session.commit()
            return history

    async def list_product_history(self, owner_id: str) -> List[ProductHistory]:
        async with self.session_factory() as session:
            stmt = (
                select(ProductHistory)
                .where(ProductHistory.owner_id == owner_id)
                .order_by(ProductHistory.deleted_at.desc())
            )
            return list((await session.execute(stmt)).scalars().all())
