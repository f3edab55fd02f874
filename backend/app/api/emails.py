"""
Emails API Router - inbox messages grouped into threads
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, Query

from app.api.deps import get_owner_id
from app.api.imports import status_for_error
from app.api.schemas import EmailThreadListResponse
from app.core.config import settings
from app.core.exceptions import IngestionError
from app.services.email_threads import group_threads
from app.services.sources.base import FetchOptions
from app.services.sources.email import AgentMailAdapter
from app.services.sources.identifiers import normalize_mailbox_identifier

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/emails", tags=["Emails"])


@router.get("/threads", response_model=EmailThreadListResponse)
async def list_threads(
    mailbox: str = Query(..., description="Mailbox (inbox) id"),
    full: bool = Query(False, description="Read the full sync item cap instead of the quick one"),
    owner_id: str = Depends(get_owner_id),
):
    max_items = settings.FULL_SYNC_MAX_ITEMS if full else settings.QUICK_SYNC_MAX_ITEMS
    try:
        inbox_id = normalize_mailbox_identifier(mailbox)
        messages = await AgentMailAdapter().list_messages(inbox_id, FetchOptions(max_items=max_items))
    except IngestionError as e:
        logger.error(f"[Email] Listing threads for {mailbox} failed: {e}")
        raise HTTPException(status_code=status_for_error(e.kind), detail=str(e))

    threads = group_threads(messages)
    return EmailThreadListResponse(total=len(threads), threads=threads)
