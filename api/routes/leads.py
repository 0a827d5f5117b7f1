"""
Lead API Routes for the Quiz Lead Pipeline.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from ..services import get_services
from pipeline.service import LeadPipeline

logger = logging.getLogger(__name__)

router = APIRouter()


# ── Models ────────────────────────────────────────────

class LeadSubmission(BaseModel):
    """Quiz submission request."""
    campaign_id: str = Field(..., min_length=1, description="Campaign id or slug")
    answers: Dict[str, Any] = Field(default_factory=dict)


class LeadAccepted(BaseModel):
    lead_id: str
    status: str
    lead_score: Optional[int] = None
    lead_quality: Optional[str] = None


class LeadStatusResponse(BaseModel):
    lead_id: str
    status: str
    lead_score: Optional[int] = None
    lead_quality: Optional[str] = None
    has_result: bool
    last_error: Optional[str] = None
    attempt_count: int


class LeadResultResponse(BaseModel):
    lead_id: str
    ai_result: str
    ai_provider: Optional[str] = None
    lead_score: Optional[int] = None
    lead_quality: Optional[str] = None
    completed_at: Optional[str] = None


def _pipeline() -> LeadPipeline:
    services = get_services()
    if not services.is_ready:
        raise HTTPException(status_code=503, detail="Pipeline not initialized")
    return services.pipeline


# ── Endpoints ─────────────────────────────────────────

@router.post("/leads", response_model=LeadAccepted, status_code=202)
async def submit_lead(request: LeadSubmission):
    """
    Submit quiz answers.

    The lead is scored synchronously; the AI result is produced in the
    background and fetched from /leads/{lead_id}/result.
    """
    lead = await _pipeline().submit_lead(request.campaign_id, request.answers)
    return LeadAccepted(
        lead_id=lead.id,
        status=lead.status.value,
        lead_score=lead.lead_score,
        lead_quality=lead.lead_quality,
    )


@router.get("/leads/{lead_id}/status", response_model=LeadStatusResponse)
async def get_lead_status(lead_id: str):
    return LeadStatusResponse(**await _pipeline().get_lead_status(lead_id))


@router.get("/leads/{lead_id}/result", response_model=LeadResultResponse)
async def get_lead_result(lead_id: str):
    """AI result of a completed lead; 404 until it is ready."""
    return LeadResultResponse(**await _pipeline().get_lead_result(lead_id))


@router.post("/leads/{lead_id}/reprocess", response_model=LeadStatusResponse, status_code=202)
async def reprocess_lead(lead_id: str):
    """Re-score the lead and queue a fresh AI job; 409 while its AI job is running."""
    lead = await _pipeline().reprocess_lead(lead_id)
    logger.info(f"Reprocess requested for lead {lead_id}")
    return LeadStatusResponse(**lead.status_view())
