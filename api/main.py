"""
Main FastAPI application for the Quiz Lead Pipeline.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .routes import leads, admin
from .services import get_services, initialize_services, shutdown_services
from .middleware.metrics import MetricsMiddleware, metrics_endpoint
from config.settings import get_settings
from jobs.errors import PayloadValidationError, QueueUnavailable, UnknownQueue
from lead_scoring.scoring_model import InvalidSubmission
from pipeline.errors import (
    CampaignNotFound,
    InvalidTransition,
    LeadNotFound,
    ReprocessSkipped,
    ResultNotReady,
)
from pipeline.service import LeadPipeline

logger = logging.getLogger(__name__)


def _error(status_code: int, exc: Exception, **extra) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": type(exc).__name__, "detail": str(exc), **extra},
    )


def _register_exception_handlers(app: FastAPI):
    """Map pipeline errors onto HTTP responses."""

    @app.exception_handler(CampaignNotFound)
    @app.exception_handler(LeadNotFound)
    @app.exception_handler(UnknownQueue)
    async def not_found(request: Request, exc: Exception):
        return _error(404, exc)

    @app.exception_handler(ResultNotReady)
    async def result_not_ready(request: Request, exc: ResultNotReady):
        return _error(404, exc, status=exc.status)

    @app.exception_handler(InvalidSubmission)
    async def invalid_submission(request: Request, exc: InvalidSubmission):
        return _error(422, exc, missing=exc.missing)

    @app.exception_handler(PayloadValidationError)
    async def invalid_payload(request: Request, exc: PayloadValidationError):
        return _error(422, exc)

    @app.exception_handler(InvalidTransition)
    async def invalid_transition(request: Request, exc: InvalidTransition):
        return _error(409, exc, current=exc.current, target=exc.target)

    @app.exception_handler(ReprocessSkipped)
    async def reprocess_skipped(request: Request, exc: ReprocessSkipped):
        return _error(409, exc, status=exc.status)

    @app.exception_handler(QueueUnavailable)
    async def queue_unavailable(request: Request, exc: QueueUnavailable):
        logger.error(f"Job store unavailable: {exc}")
        return _error(503, exc)


def create_app(pipeline: Optional[LeadPipeline] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        pipeline: Pre-built pipeline to serve (built from settings when omitted)
    """
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager."""
        logger.info("Quiz Lead Pipeline starting up...")
        await initialize_services(pipeline)
        logger.info("Quiz Lead Pipeline ready")
        yield
        logger.info("Quiz Lead Pipeline shutting down...")
        await shutdown_services()

    app = FastAPI(
        title=f"{settings.service_name} API",
        description="Quiz submission intake, lead scoring and AI-generated results.",
        version=settings.api_version,
        docs_url="/docs",
        redoc_url="/redoc",
        debug=settings.debug,
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Prometheus metrics middleware
    app.add_middleware(MetricsMiddleware)

    _register_exception_handlers(app)

    app.include_router(leads.router, prefix="/api/v1", tags=["Leads"])
    app.include_router(admin.router, prefix="/api/v1/admin", tags=["Admin"])

    # --- Prometheus metrics endpoint ---
    app.get("/metrics", tags=["Monitoring"])(metrics_endpoint)

    # Root endpoint
    @app.get("/")
    async def root():
        return {
            "service": settings.service_name,
            "version": settings.api_version,
            "status": "operational",
            "docs": "/docs",
        }

    # Health check
    @app.get("/health")
    async def health():
        services = get_services()
        return {
            "status": "healthy" if services.is_ready else "degraded",
            "services": services.health(),
        }

    return app


# Create app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn
    settings = get_settings()
    uvicorn.run(app, host=settings.api_host, port=settings.api_port)
