"""
Celery Worker Configuration and Tasks

1. task_run_ingestion - one ingestion run (same path as POST /imports)
2. task_sync_mailboxes - periodic quick sync of every tracked mailbox
"""
import asyncio
import logging
from typing import Optional

from celery import Celery
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from app.core.config import settings
from app.models.review import Marketplace
from app.services.ingestion_service import ImportOptions, IngestionService, SourceKind
from app.services.review_store import ReviewStore

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

celery_app = Celery(
    "driftsignal_worker",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
)

celery_app.conf.update(
    # ============================================================================
    # 🚀 Single ingestion queue
    # ============================================================================
    # ┌─────────────────────────────────────────────────────────────┐
    # │ ingestion  - on-demand imports + scheduled mailbox syncs    │
    # │   → one run per task, AI concurrency is bounded inside      │
    # └─────────────────────────────────────────────────────────────┘
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=1800,
    task_soft_time_limit=1500,
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_routes={
        "app.worker.task_run_ingestion": {"queue": "ingestion"},
        "app.worker.task_sync_mailboxes": {"queue": "ingestion"},
    },
    beat_schedule={
        "sync-mailboxes": {
            "task": "app.worker.task_sync_mailboxes",
            "schedule": settings.MAILBOX_SYNC_INTERVAL_MINUTES * 60.0,
        },
    },
)


# ============================================================================
# 🔌 Per-task database engine
# ============================================================================
# Each task runs its own event loop via asyncio.run, so it gets its own
# NullPool engine: pooled asyncpg connections cannot cross event loops.
def _task_store():
    engine = create_async_engine(settings.DATABASE_URL, poolclass=NullPool)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
    return engine, ReviewStore(session_factory)


async def _run_ingestion(source_kind: str, identifier: str, owner_id: str, options: ImportOptions) -> dict:
    engine, store = _task_store()
    try:
        summary = await IngestionService(store).run_ingestion(source_kind, identifier, owner_id, options)
        return summary.model_dump()
    finally:
        await engine.dispose()


async def _sync_mailboxes() -> list:
    engine, store = _task_store()
    try:
        mailboxes = await store.list_products_by_platform(Marketplace.MAILBOX.value)

        service = IngestionService(store)
        results = []
        for mailbox in mailboxes:
            owner_id, mailbox_id = mailbox.owner_id, mailbox.product_id
            summary = await service.run_ingestion(
                SourceKind.EMAIL.value, mailbox_id, owner_id, ImportOptions(sync_type="quick")
            )
            logger.info(
                f"[Email] Scheduled sync {mailbox_id} ({owner_id}): "
                f"imported {summary.imported}, skipped {summary.skipped}"
                + (f", error: {summary.error}" if summary.error else "")
            )
            results.append({"mailbox": mailbox_id, "owner_id": owner_id, **summary.model_dump()})
        return results
    finally:
        await engine.dispose()


# ============================================================================
# 📥 Tasks
# ============================================================================

@celery_app.task(bind=True, max_retries=0)
def task_run_ingestion(
    self,
    source_kind: str,
    identifier: str,
    owner_id: str,
    full_sync: bool = False,
    sync_type: str = "quick",
    max_items: Optional[int] = None,
):
    """Run one ingestion; the summary (counts or classified error) is the task result."""
    options = ImportOptions(full_sync=full_sync, sync_type=sync_type, max_items=max_items)
    logger.info(f"[Worker] Ingestion {source_kind} '{identifier}' for {owner_id}")
    return asyncio.run(_run_ingestion(source_kind, identifier, owner_id, options))


@celery_app.task(bind=True, max_retries=0)
def task_sync_mailboxes(self):
    """Quick sync of every tracked mailbox."""
    results = asyncio.run(_sync_mailboxes())
    logger.info(f"[Worker] ✅ Synced {len(results)} mailboxes")
    return results


@celery_app.task
def task_health_check():
    """Simple task to verify worker is running."""
    return {"status": "healthy", "worker": "driftsignal_worker"}
