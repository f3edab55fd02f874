"""
Enrichment API Router - classify a review or draft a reply on demand

Nothing is stored; the dashboard uses these to re-run the AI on a review
after an edit, or to redraft a reply in a different tone.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException

from app.api.deps import get_enrichment_service
from app.api.imports import status_for_error
from app.api.schemas import (
    AnalyzeReviewRequest,
    AnalyzeReviewResponse,
    GenerateReplyRequest,
    GenerateReplyResponse,
)
from app.core.exceptions import IngestionError
from app.services.enrichment_service import EnrichmentService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/enrichment", tags=["Enrichment"])


@router.post("/analyze", response_model=AnalyzeReviewResponse)
async def analyze_review(
    request: AnalyzeReviewRequest,
    service: EnrichmentService = Depends(get_enrichment_service),
):
    """Classify one review: sentiment, category, severity and the detail fields."""
    try:
        classification = await service.classify(request.text, request.author, request.marketplace)
    except IngestionError as e:
        logger.error(f"[AI] Analyze failed: {e}")
        raise HTTPException(status_code=status_for_error(e.kind), detail=str(e))
    except Exception as e:
        logger.error(f"[AI] Analyze failed: {e}")
        raise HTTPException(status_code=502, detail=f"Failed to analyze review: {e}")
    return AnalyzeReviewResponse(**classification.model_dump())


@router.post("/reply", response_model=GenerateReplyResponse)
async def generate_reply(
    request: GenerateReplyRequest,
    service: EnrichmentService = Depends(get_enrichment_service),
):
    """Draft a customer-facing reply for the given tone and severity."""
    try:
        reply = await service.draft_reply(
            request.text,
            request.author,
            request.marketplace,
            request.sentiment.value,
            request.severity.value,
        )
    except IngestionError as e:
        logger.error(f"[AI] Reply failed: {e}")
        raise HTTPException(status_code=status_for_error(e.kind), detail=str(e))
    except Exception as e:
        logger.error(f"[AI] Reply failed: {e}")
        raise HTTPException(status_code=502, detail=f"Failed to generate reply: {e}")
    return GenerateReplyResponse(reply=reply)
