"""
Service initialization and dependency injection for the Quiz Lead Pipeline API.

Creates and manages the pipeline instance used by the API.
"""

import logging
from typing import Optional

from config.settings import get_settings, Settings
from pipeline.campaigns import InMemoryCampaignSource
from pipeline.service import LeadPipeline

logger = logging.getLogger(__name__)


class Services:
    """Container for all application services."""

    def __init__(self):
        self.settings: Optional[Settings] = None
        self.pipeline: Optional[LeadPipeline] = None
        self._initialized = False
        self._started = False

    async def initialize(self, pipeline: Optional[LeadPipeline] = None):
        """Build (or adopt) the pipeline and start its workers."""
        if self._initialized:
            return

        self.settings = get_settings()
        if pipeline is not None:
            self.pipeline = pipeline
        else:
            await self._init_pipeline()
        self._initialized = True

        await self.pipeline.start()
        self._started = True
        logger.info("All services initialized successfully")

    async def _init_pipeline(self):
        """Initialize the lead pipeline from settings."""
        s = self.settings
        campaigns = None
        if s.campaigns_file and not s.database_url:
            campaigns = InMemoryCampaignSource.from_file(s.campaigns_file)
        self.pipeline = await LeadPipeline.create(s, campaigns=campaigns)
        logger.info(
            f"Lead pipeline ready (queue={s.queue_backend}, "
            f"database={'yes' if s.database_url else 'no'})"
        )

    async def shutdown(self):
        if self.pipeline is not None and self._started:
            await self.pipeline.stop()
        self.pipeline = None
        self._initialized = False
        self._started = False

    @property
    def is_ready(self) -> bool:
        return self._initialized and self.pipeline is not None

    def health(self) -> dict:
        """Return health status of all services."""
        providers = []
        if self.pipeline is not None:
            providers = list(self.pipeline.orchestrator.providers)
        return {
            "initialized": self._initialized,
            "workers_running": self._started,
            "providers": providers,
        }


# Singleton
_services = Services()


def get_services() -> Services:
    """Get the global services instance."""
    return _services


async def initialize_services(pipeline: Optional[LeadPipeline] = None):
    """Initialize all services (called at startup)."""
    await _services.initialize(pipeline)


async def shutdown_services():
    await _services.shutdown()
