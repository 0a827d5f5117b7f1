"""
Admin API Routes for the Quiz Lead Pipeline.
"""

import logging
from typing import Any, Dict, List, Optional
from datetime import datetime

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel

from ..services import get_services
from pipeline.service import LeadPipeline

logger = logging.getLogger(__name__)

router = APIRouter()

system_start_time = datetime.utcnow()


# ── Models ────────────────────────────────────────────

class SystemHealth(BaseModel):
    status: str
    services: Dict[str, Any]
    uptime_seconds: float
    timestamp: str


class QueueStatsResponse(BaseModel):
    name: str
    waiting: int
    active: int
    completed: int
    failed: int
    delayed: int
    paused: bool


class ProviderValidation(BaseModel):
    available: List[str]
    configured: List[str]


def _pipeline() -> LeadPipeline:
    services = get_services()
    if not services.is_ready:
        raise HTTPException(status_code=503, detail="Pipeline not initialized")
    return services.pipeline


# ── Endpoints ─────────────────────────────────────────

@router.get("/health", response_model=SystemHealth)
async def get_system_health():
    """Detailed system health including all sub-services."""
    services = get_services()
    uptime = (datetime.utcnow() - system_start_time).total_seconds()

    svc_health = services.health()
    if services.is_ready:
        svc_health["queues"] = (await services.pipeline.get_queue_stats())["totals"]

    return SystemHealth(
        status="healthy" if services.is_ready else "degraded",
        services=svc_health,
        uptime_seconds=uptime,
        timestamp=datetime.utcnow().isoformat(),
    )


@router.get("/queues")
async def get_all_queue_stats():
    """Job counts for every queue plus totals."""
    return await _pipeline().get_queue_stats()


@router.get("/queues/{queue_name}", response_model=QueueStatsResponse)
async def get_queue_stats(queue_name: str):
    return QueueStatsResponse(**await _pipeline().get_queue_stats(queue_name))


@router.post("/queues/{queue_name}/pause")
async def pause_queue(queue_name: str):
    """Stop workers from taking new jobs; active jobs finish."""
    await _pipeline().pause_queue(queue_name)
    logger.info(f"Queue paused via admin: {queue_name}")
    return {"queue": queue_name, "paused": True}


@router.post("/queues/{queue_name}/resume")
async def resume_queue(queue_name: str):
    await _pipeline().resume_queue(queue_name)
    logger.info(f"Queue resumed via admin: {queue_name}")
    return {"queue": queue_name, "paused": False}


@router.get("/providers")
async def get_provider_status():
    """Circuit state, cache statistics and usage per provider."""
    return _pipeline().provider_status()


@router.get("/providers/validate", response_model=ProviderValidation)
async def validate_providers():
    """Send a minimal prompt to every provider."""
    pipeline = _pipeline()
    available = await pipeline.validate_providers()
    return ProviderValidation(
        available=available,
        configured=list(pipeline.orchestrator.providers),
    )


@router.post("/providers/reset")
async def reset_provider_health(provider: Optional[str] = Query(None)):
    """Close circuits for one provider, or all of them."""
    pipeline = _pipeline()
    if provider and provider not in pipeline.orchestrator.providers:
        raise HTTPException(status_code=404, detail=f"Unknown provider: {provider}")
    pipeline.reset_provider_health(provider)
    return {"message": "Provider health reset", "provider": provider or "all"}


@router.post("/cache/clear")
async def clear_cache():
    """Drop every cached AI response."""
    removed = _pipeline().clear_cache()
    return {
        "message": "Cache cleared",
        "removed": removed,
        "timestamp": datetime.utcnow().isoformat(),
    }
