"""
Analytics Service - review analytics snapshot

The snapshot is never stored: it is recomputed from the owner's reviews on
every request. aggregate_reviews is a pure function; it reads no clock and
emits keys in a fixed order, so the same input always yields the same output.

Provides:
1. Sentiment / category / marketplace / severity / rating / status counts
2. Severity x status matrix
3. Weekly sentiment trend (Sunday-starting weeks, last 12 weeks with data)
4. Response metrics (avg hours to first response, resolved within 48h)
5. Headline stats block for the dashboard
"""
import logging
from collections import defaultdict
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel

from app.models.review import Marketplace, ReviewStatus, Sentiment, Severity
from app.services.categories import STANDARD_CATEGORIES, normalize_category

logger = logging.getLogger(__name__)

MAX_TREND_WEEKS = 12
RESPONSE_HOURS_CAP = 72.0
RESOLUTION_WINDOW_HOURS = 48.0

SENTIMENTS = [s.value for s in Sentiment]
SEVERITIES = [s.value for s in Severity]
STATUSES = [s.value for s in ReviewStatus]
MARKETPLACES = [m.value for m in Marketplace]
RATING_BUCKETS = ["1", "2", "3", "4", "5"]


class AnalyticsFilters(BaseModel):
    """All optional, combined with AND. Empty lists mean no restriction."""
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    product_id: Optional[str] = None
    marketplaces: List[str] = []
    sentiments: List[str] = []
    statuses: List[str] = []
    ratings: List[int] = []


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; everything is stored as UTC
    if value is None:
        return None
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _hours_between(start: datetime, end: datetime) -> float:
    return (_aware(end) - _aware(start)).total_seconds() / 3600


def _percent(part: int, whole: int) -> float:
    return round(part / whole * 100, 1) if whole else 0.0


def week_start(moment: datetime) -> date:
    """Sunday that starts the week containing `moment` (UTC)."""
    day = _aware(moment).astimezone(timezone.utc).date()
    return day - timedelta(days=(day.weekday() + 1) % 7)


def week_label(start: date) -> str:
    end = start + timedelta(days=6)
    return f"{start:%b} {start.day} - {end:%b} {end.day}"


def apply_filters(reviews: Iterable[Any], filters: Optional[AnalyticsFilters]) -> List[Any]:
    if filters is None:
        return list(reviews)

    marketplaces = set(filters.marketplaces)
    sentiments = set(filters.sentiments)
    statuses = set(filters.statuses)
    ratings = set(filters.ratings)

    selected = []
    for review in reviews:
        created = _aware(review.created_at).astimezone(timezone.utc).date()
        if filters.date_from and created < filters.date_from:
            continue
        if filters.date_to and created > filters.date_to:
            continue
        if filters.product_id and review.product_id != filters.product_id:
            continue
        if marketplaces and review.marketplace not in marketplaces:
            continue
        if sentiments and review.sentiment not in sentiments:
            continue
        if statuses and review.status not in statuses:
            continue
        if ratings and review.rating not in ratings:
            continue
        selected.append(review)
    return selected


def _weekly_trends(reviews: List[Any]) -> List[Dict[str, Any]]:
    weeks: Dict[date, Dict[str, int]] = defaultdict(lambda: {s: 0 for s in SENTIMENTS})
    for review in reviews:
        if review.sentiment in SENTIMENTS:
            weeks[week_start(review.created_at)][review.sentiment] += 1

    recent = sorted(weeks)[-MAX_TREND_WEEKS:]
    return [
        {"week": week_label(start), "weekStart": start.isoformat(), **weeks[start]}
        for start in recent
    ]


def _response_metrics(reviews: List[Any]) -> Dict[str, Any]:
    response_hours = []
    resolved_total = 0
    resolved_fast = 0

    for review in reviews:
        if review.status != ReviewStatus.OPEN.value and review.first_response_at is not None:
            hours = _hours_between(review.created_at, review.first_response_at)
            response_hours.append(min(max(hours, 0.0), RESPONSE_HOURS_CAP))

        if review.status == ReviewStatus.RESOLVED.value and review.resolved_at is not None:
            resolved_total += 1
            if _hours_between(review.created_at, review.resolved_at) <= RESOLUTION_WINDOW_HOURS:
                resolved_fast += 1

    return {
        "avgResponseHours": round(sum(response_hours) / len(response_hours), 1) if response_hours else None,
        "respondedCount": len(response_hours),
        "resolvedWithin48h": round(resolved_fast / resolved_total, 4) if resolved_total else None,
        "resolvedCount": resolved_total,
    }


def aggregate_reviews(reviews: Iterable[Any], filters: Optional[AnalyticsFilters] = None) -> Dict[str, Any]:
    """
    Build the analytics snapshot.

    Args:
        reviews: Review rows (or any objects with the same attributes)
        filters: optional pre-filter

    Returns:
        dict with stats, counts, severityStatusMatrix, weeklyTrends, responseMetrics
    """
    selected = apply_filters(reviews, filters)

    sentiment_counts = {s: 0 for s in SENTIMENTS}
    category_counts = {c: 0 for c in STANDARD_CATEGORIES}
    marketplace_counts = {m: 0 for m in MARKETPLACES}
    severity_counts = {s: 0 for s in SEVERITIES}
    rating_counts = {r: 0 for r in RATING_BUCKETS}
    status_counts = {s: 0 for s in STATUSES}
    matrix = {sev: {st: 0 for st in STATUSES} for sev in SEVERITIES}
    rated = []

    for review in selected:
        if review.sentiment in sentiment_counts:
            sentiment_counts[review.sentiment] += 1
        category_counts[normalize_category(review.category)] += 1
        if review.marketplace in marketplace_counts:
            marketplace_counts[review.marketplace] += 1
        if review.severity in severity_counts:
            severity_counts[review.severity] += 1
        if review.status in status_counts:
            status_counts[review.status] += 1
        if review.severity in matrix and review.status in status_counts:
            matrix[review.severity][review.status] += 1
        if review.rating is not None and review.rating >= 1:
            bucket = str(min(int(review.rating), 5))
            rating_counts[bucket] += 1
            rated.append(review.rating)

    total = len(selected)
    stats = {
        "totalReviews": total,
        "positiveRate": _percent(sentiment_counts[Sentiment.POSITIVE.value], total),
        "negativeRate": _percent(sentiment_counts[Sentiment.NEGATIVE.value], total),
        "resolutionRate": _percent(status_counts[ReviewStatus.RESOLVED.value], total),
        "avgRating": round(sum(rated) / len(rated), 1) if rated else 0.0,
    }

    return {
        "stats": stats,
        "sentimentCounts": sentiment_counts,
        "categoryCounts": category_counts,
        "marketplaceCounts": marketplace_counts,
        "severityCounts": severity_counts,
        "ratingCounts": rating_counts,
        "statusCounts": status_counts,
        "severityStatusMatrix": matrix,
        "weeklyTrends": _weekly_trends(selected),
        "responseMetrics": _response_metrics(selected),
    }


class AnalyticsService:
    """Reads an owner's reviews from the store and aggregates them."""

    def __init__(self, store):
        self.store = store

    async def get_analytics(self, owner_id: str, filters: Optional[AnalyticsFilters] = None) -> Dict[str, Any]:
        reviews = await self.store.list_reviews(owner_id)
        snapshot = aggregate_reviews(reviews, filters)
        logger.debug(f"[Analytics] {owner_id}: {snapshot['stats']['totalReviews']} of {len(reviews)} reviews")
        return snapshot
