"""
Imports API Router - trigger one ingestion run per source kind
"""
import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from app.api.deps import get_ingestion_service, get_owner_id
from app.api.schemas import ImportRequest, ImportResponse
from app.services.ingestion_service import ImportOptions, IngestionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/imports", tags=["Imports"])

# error_kind -> HTTP status; anything unlisted is an upstream failure
ERROR_STATUS = {
    "validation": 400,
    "configuration": 503,
    "auth": 502,
    "rate_limit": 429,
    "store": 500,
}


def status_for_error(error_kind: str) -> int:
    return ERROR_STATUS.get(error_kind, 502)


@router.post("/{source_kind}", response_model=ImportResponse)
async def run_import(
    source_kind: str,
    request: ImportRequest,
    owner_id: str = Depends(get_owner_id),
    service: IngestionService = Depends(get_ingestion_service),
):
    """
    Import reviews for one product (amazon / walmart / shopify) or sync a mailbox (email).

    Always answers with the {imported, skipped} summary; stage-level failures
    set `error` / `error_kind` and a non-2xx status.
    """
    options = ImportOptions(
        full_sync=request.full_sync,
        sync_type=request.sync_type,
        max_items=request.max_items,
    )
    summary = await service.run_ingestion(source_kind, request.identifier, owner_id, options)

    # A run that fetched successfully reports its counts even if tracking failed afterwards
    if summary.error and not summary.served_by:
        return JSONResponse(status_code=status_for_error(summary.error_kind), content=summary.model_dump())
    return summary
