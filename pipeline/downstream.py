"""
Downstream jobs for completed leads: export, notification and analytics.

Enqueuers subscribe to LeadCompleted and put jobs on the downstream queues.
Handlers run those jobs. Nothing here can change a lead's status.
"""

import logging
from collections import Counter
from datetime import datetime
from typing import Any, Dict, Optional

import httpx

from jobs.models import (
    ANALYTICS_QUEUE,
    EXPORT_QUEUE,
    NOTIFICATION_QUEUE,
    AnalyticsPayload,
    ExportPayload,
    Job,
    JobOptions,
    JobResult,
    NotificationPayload,
)
from jobs.queue import JobQueue

from .campaigns import CampaignSource
from .events import EventBus, LeadCompleted
from .lead_store import LeadStore

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = {408, 425, 429, 500, 502, 503, 504}


class WebhookDelivery:
    """
    JSON webhook sender.

    Maps the response to a job result: 2xx is success, throttling and
    server errors are retried, other client errors fail the job.
    """

    def __init__(
        self,
        url: Optional[str],
        api_key: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport

    async def send(self, payload: Dict[str, Any], label: str) -> JobResult:
        if not self.url:
            logger.info(f"No webhook URL configured for {label}, skipping")
            return JobResult.ok("skipped")

        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["X-API-Key"] = self.api_key

        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                response = await client.post(
                    self.url,
                    json=payload,
                    headers=headers,
                    timeout=self.timeout,
                )
        except httpx.HTTPError as e:
            logger.warning(f"{label} webhook error: {e}")
            return JobResult.retry(f"{label} webhook error: {e}")

        if 200 <= response.status_code < 300:
            logger.info(f"{label} delivered for lead {payload.get('lead_id')}")
            return JobResult.ok(response.status_code)
        message = f"{label} webhook returned {response.status_code}: {response.text[:200]}"
        if response.status_code in RETRYABLE_STATUS:
            logger.warning(message)
            return JobResult.retry(message)
        logger.error(message)
        return JobResult.fail(message)


class AnalyticsCollector:
    """Collects lead outcome events."""

    def __init__(self):
        self.by_quality: Counter = Counter()
        self.by_provider: Counter = Counter()
        self.events = 0

    def record_lead_event(self, payload: AnalyticsPayload):
        self.events += 1
        if payload.lead_quality:
            self.by_quality[payload.lead_quality] += 1
        if payload.provider:
            self.by_provider[payload.provider] += 1
        logger.debug(
            f"Analytics: lead={payload.lead_id} event={payload.event} "
            f"score={payload.lead_score} quality={payload.lead_quality} provider={payload.provider}"
        )

    def summary(self) -> Dict[str, Any]:
        return {
            "events": self.events,
            "by_quality": dict(self.by_quality),
            "by_provider": dict(self.by_provider),
        }


class DownstreamEnqueuers:
    """LeadCompleted subscribers that schedule downstream jobs."""

    def __init__(self, queue: JobQueue, campaigns: CampaignSource):
        self.queue = queue
        self.campaigns = campaigns

    def attach(self, bus: EventBus):
        bus.subscribe(LeadCompleted, self.enqueue_export)
        bus.subscribe(LeadCompleted, self.enqueue_notification)
        bus.subscribe(LeadCompleted, self.enqueue_analytics)

    async def enqueue_export(self, event: LeadCompleted):
        campaign = await self.campaigns.get(event.campaign_id)
        if not campaign.export_enabled:
            return
        await self.queue.enqueue(
            EXPORT_QUEUE,
            ExportPayload(lead_id=event.lead_id, campaign_id=event.campaign_id),
            JobOptions(dedupe_key=f"export:{event.lead_id}"),
        )

    async def enqueue_notification(self, event: LeadCompleted):
        campaign = await self.campaigns.get(event.campaign_id)
        if not campaign.result_delivery_mode.sends_email:
            return
        await self.queue.enqueue(
            NOTIFICATION_QUEUE,
            NotificationPayload(
                lead_id=event.lead_id,
                campaign_id=event.campaign_id,
                delivery_mode=campaign.result_delivery_mode.value,
            ),
            JobOptions(dedupe_key=f"notification:{event.lead_id}"),
        )

    async def enqueue_analytics(self, event: LeadCompleted):
        await self.queue.enqueue(
            ANALYTICS_QUEUE,
            AnalyticsPayload(
                lead_id=event.lead_id,
                campaign_id=event.campaign_id,
                lead_score=event.lead_score,
                lead_quality=event.lead_quality,
                provider=event.provider,
            ),
        )


class DownstreamHandlers:
    """Job handlers for the export, notification and analytics queues."""

    def __init__(
        self,
        leads: LeadStore,
        campaigns: CampaignSource,
        export_webhook: WebhookDelivery,
        notification_webhook: WebhookDelivery,
        analytics: Optional[AnalyticsCollector] = None,
    ):
        self.leads = leads
        self.campaigns = campaigns
        self.export_webhook = export_webhook
        self.notification_webhook = notification_webhook
        self.analytics = analytics or AnalyticsCollector()

    def register(self, queue: JobQueue):
        queue.register(EXPORT_QUEUE, self.handle_export)
        queue.register(NOTIFICATION_QUEUE, self.handle_notification)
        queue.register(ANALYTICS_QUEUE, self.handle_analytics)

    async def handle_export(self, payload: ExportPayload, job: Job) -> JobResult:
        lead = await self.leads.get(payload.lead_id)
        if lead is None:
            return JobResult.fail(f"lead {payload.lead_id} no longer exists")
        campaign = await self.campaigns.get(payload.campaign_id)
        record = {
            **lead.to_dict(),
            "campaign_slug": campaign.slug,
            "campaign_title": campaign.title,
            "exported_at": datetime.utcnow().isoformat(),
        }
        return await self.export_webhook.send(record, "Export")

    async def handle_notification(self, payload: NotificationPayload, job: Job) -> JobResult:
        lead = await self.leads.get(payload.lead_id)
        if lead is None:
            return JobResult.fail(f"lead {payload.lead_id} no longer exists")
        email = payload.email or lead.answers.get("email")
        if not email:
            logger.info(f"Lead {lead.id} has no email address, notification skipped")
            return JobResult.ok("no_email")
        message = {
            "lead_id": lead.id,
            "campaign_id": lead.campaign_id,
            "to": email,
            "delivery_mode": payload.delivery_mode,
            "lead_score": lead.lead_score,
            "lead_quality": lead.lead_quality,
            "ai_result": lead.ai_result,
        }
        return await self.notification_webhook.send(message, "Notification")

    async def handle_analytics(self, payload: AnalyticsPayload, job: Job) -> JobResult:
        self.analytics.record_lead_event(payload)
        return JobResult.ok()
