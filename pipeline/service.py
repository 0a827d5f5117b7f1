"""
LeadPipeline: the assembled quiz lead pipeline.

Builds the stores, job queue, orchestrator, coordinator and downstream
handlers from settings and exposes the operations callers use.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

import httpx

from config.settings import Settings
from database.session import close_db, init_db
from jobs.models import default_queue_configs
from jobs.queue import JobQueue
from jobs.redis_store import RedisJobStore
from jobs.store import JobStore, MemoryJobStore
from llm.orchestrator import AIOrchestrator
from llm.providers import BaseProvider

from .campaigns import CampaignSource, InMemoryCampaignSource, SqlCampaignSource
from .coordinator import LeadCoordinator
from .downstream import DownstreamEnqueuers, DownstreamHandlers, WebhookDelivery
from .events import EventBus
from .lead_store import InMemoryLeadStore, LeadStore, SqlLeadStore

logger = logging.getLogger(__name__)


class LeadPipeline:
    """
    Process-scoped container for the pipeline services.

    Usage:
        pipeline = await LeadPipeline.create(settings)
        await pipeline.start()
        lead = await pipeline.submit_lead("campaign-slug", {"q1": "business"})
    """

    def __init__(
        self,
        settings: Settings,
        leads: LeadStore,
        campaigns: CampaignSource,
        job_store: JobStore,
        orchestrator: AIOrchestrator,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        uses_database: bool = False,
    ):
        self.settings = settings
        self.leads = leads
        self.campaigns = campaigns
        self.orchestrator = orchestrator
        self.bus = EventBus()
        self.queue = JobQueue(
            job_store,
            default_queue_configs(settings),
            poll_interval=settings.queue_poll_interval,
        )
        self.coordinator = LeadCoordinator(leads, campaigns, self.queue, orchestrator, self.bus)
        self.coordinator.attach()

        self.downstream = DownstreamHandlers(
            leads,
            campaigns,
            export_webhook=WebhookDelivery(
                settings.export_webhook_url, settings.webhook_api_key, transport=transport
            ),
            notification_webhook=WebhookDelivery(
                settings.notification_webhook_url, settings.webhook_api_key, transport=transport
            ),
        )
        self.downstream.register(self.queue)
        DownstreamEnqueuers(self.queue, campaigns).attach(self.bus)

        self._uses_database = uses_database
        self._sweeper: Optional[asyncio.Task] = None

    @classmethod
    async def create(
        cls,
        settings: Settings,
        campaigns: Optional[CampaignSource] = None,
        providers: Optional[Dict[str, BaseProvider]] = None,
        job_store: Optional[JobStore] = None,
        lead_store: Optional[LeadStore] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "LeadPipeline":
        """
        Build a pipeline from settings.

        Args:
            settings: Application settings
            campaigns: Campaign source (defaults to SQL when a database is configured)
            providers: Provider adapters (defaults to those with credentials)
            job_store: Job store (defaults to Redis or memory per QUEUE_BACKEND)
            lead_store: Lead store (defaults to SQL when a database is configured)
            transport: httpx transport for downstream webhooks

        Returns:
            An assembled, not yet started pipeline
        """
        uses_database = False
        if settings.database_url and (lead_store is None or campaigns is None):
            session_factory = await init_db(settings.database_url)
            uses_database = True
            lead_store = lead_store or SqlLeadStore(session_factory)
            campaigns = campaigns or SqlCampaignSource(session_factory)

        if job_store is None:
            if settings.is_redis_queue:
                job_store = RedisJobStore.from_url(settings.redis_url)
            else:
                job_store = MemoryJobStore()

        return cls(
            settings=settings,
            leads=lead_store or InMemoryLeadStore(),
            campaigns=campaigns or InMemoryCampaignSource(),
            job_store=job_store,
            orchestrator=AIOrchestrator.from_settings(settings, providers=providers),
            transport=transport,
            uses_database=uses_database,
        )

    async def start(self):
        await self.queue.start()
        if self.orchestrator.cache is not None:
            self._sweeper = asyncio.create_task(self._sweep_cache())
        logger.info("Lead pipeline started")

    async def stop(self):
        await self.queue.stop()
        if self._sweeper is not None:
            self._sweeper.cancel()
            await asyncio.gather(self._sweeper, return_exceptions=True)
            self._sweeper = None
        await self.queue.store.close()
        if self._uses_database:
            await close_db()
        logger.info("Lead pipeline stopped")

    async def _sweep_cache(self):
        while True:
            await asyncio.sleep(self.settings.ai_cache_sweep_seconds)
            self.orchestrator.cache.sweep()

    # Lead operations

    async def submit_lead(self, campaign_id: str, answers: Dict[str, Any]):
        return await self.coordinator.submit_lead(campaign_id, answers)

    async def get_lead_status(self, lead_id: str) -> Dict[str, Any]:
        return await self.coordinator.get_lead_status(lead_id)

    async def get_lead_result(self, lead_id: str) -> Dict[str, Any]:
        return await self.coordinator.get_lead_result(lead_id)

    async def reprocess_lead(self, lead_id: str):
        return await self.coordinator.reprocess_lead(lead_id)

    # Operational

    async def get_queue_stats(self, queue_name: Optional[str] = None) -> Dict[str, Any]:
        """Counts for one queue, or for every queue plus totals."""
        if queue_name:
            return (await self.queue.get_stats(queue_name)).to_dict()
        stats = await self.queue.get_all_stats()
        totals = {key: 0 for key in ("waiting", "active", "completed", "failed", "delayed")}
        for queue_stats in stats.values():
            for key in totals:
                totals[key] += getattr(queue_stats, key)
        return {"queues": {name: s.to_dict() for name, s in stats.items()}, "totals": totals}

    async def pause_queue(self, queue_name: str):
        await self.queue.pause(queue_name)

    async def resume_queue(self, queue_name: str):
        await self.queue.resume(queue_name)

    async def validate_providers(self) -> List[str]:
        return await self.orchestrator.validate_providers()

    def clear_cache(self) -> int:
        return self.orchestrator.clear_cache()

    def reset_provider_health(self, provider: Optional[str] = None):
        self.orchestrator.reset_health(provider)

    def provider_status(self) -> Dict[str, Any]:
        return self.orchestrator.status()
