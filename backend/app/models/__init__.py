"""
SQLAlchemy Models for DriftSignal
"""
from app.models.review import Review, Marketplace, Sentiment, Severity, ReviewStatus
from app.models.product import Product
from app.models.product_history import ProductHistory

__all__ = [
    "Review",
    "Marketplace",
    "Sentiment",
    "Severity",
    "ReviewStatus",
    "Product",
    "ProductHistory",
]
