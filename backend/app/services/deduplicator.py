"""
Review Deduplicator

Drops items already imported for (marketplace, external id, owner) before
any AI call is paid for.

Dedup in three layers:
1. Items without a provider id get a deterministic surrogate id
2. In-memory set (duplicates inside one batch)
3. Bulk lookup against the store (already imported)
The store's unique constraint remains the final backstop for races.
"""
import hashlib
import logging
from typing import List, Set, Tuple

from app.services.sources.base import RawItem

logger = logging.getLogger(__name__)

SURROGATE_TEXT_PREFIX = 200


# ============================================================================
# 🔑 Layer 1: surrogate ids
# ============================================================================

def surrogate_id(item: RawItem) -> str:
    """Stable id from author + rating + date + text prefix."""
    composite = "|".join([
        (item.author_name or "").strip().lower(),
        "" if item.rating is None else str(item.rating),
        item.timestamp.date().isoformat() if item.timestamp_known else "",
        " ".join(item.text.split())[:SURROGATE_TEXT_PREFIX].lower(),
    ])
    return "h_" + hashlib.sha256(composite.encode("utf-8")).hexdigest()[:40]


def assign_external_ids(items: List[RawItem]) -> List[RawItem]:
    """Return items where every external_id is set."""
    keyed = []
    for item in items:
        if item.external_id:
            keyed.append(item)
        else:
            keyed.append(item.model_copy(update={"external_id": surrogate_id(item)}))
    return keyed


# ============================================================================
# 🧹 Layer 2: in-batch duplicates
# ============================================================================

def deduplicate_in_memory(items: List[RawItem]) -> List[RawItem]:
    """Keep the first occurrence of each external_id within one batch."""
    seen: Set[str] = set()
    unique = []
    for item in items:
        if item.external_id in seen:
            continue
        seen.add(item.external_id)
        unique.append(item)
    return unique


# ============================================================================
# 🗄️ Layer 3: already imported
# ============================================================================

class ReviewDeduplicator:
    """Store-backed dedup gate. Read-only; safe to call concurrently."""

    def __init__(self, store):
        self.store = store

    async def exists(self, marketplace: str, external_id: str, owner_id: str) -> bool:
        return await self.store.review_exists(marketplace, external_id, owner_id)

    async def filter_new_items(
        self,
        marketplace: str,
        owner_id: str,
        items: List[RawItem],
    ) -> Tuple[List[RawItem], int]:
        """
        Filter out items already in the store.

        Args:
            marketplace: Marketplace value
            owner_id: owning account
            items: raw items from an adapter

        Returns:
            (new_items, skipped_count); every returned item has external_id set
        """
        if not items:
            return [], 0

        keyed = assign_external_ids(items)
        unique = deduplicate_in_memory(keyed)

        existing = await self.store.existing_external_ids(
            marketplace, owner_id, [i.external_id for i in unique]
        )
        new_items = [i for i in unique if i.external_id not in existing]
        skipped = len(items) - len(new_items)

        logger.debug(
            f"[Dedup] {marketplace}: received {len(items)}, skipped {skipped}, new {len(new_items)}"
        )
        return new_items, skipped
