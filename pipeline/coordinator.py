"""
Lead Processing Coordinator for the Quiz Lead Pipeline.

Drives a lead through its state machine:

    submitted -> scoring -> queued_for_ai -> ai_processing -> completed

A provider outage sends the lead back to queued_for_ai while the AI job
retries; other worker errors mark it failed until the retry runs. When the
AI job runs out of attempts the lead becomes failed_permanent and stays
there until it is reprocessed.
"""

import logging
from datetime import datetime
from typing import Any, Dict

from jobs.errors import JobRetriesExhausted, QueueUnavailable
from jobs.models import AI_QUEUE, AIProcessingPayload, Job, JobOptions, JobResult, JobState
from jobs.queue import JobQueue
from lead_scoring.campaign import LeadQuality
from lead_scoring.scoring_model import ScoringRuleError, score, validate_answers
from llm.errors import AIGenerationFailed
from llm.orchestrator import AIOrchestrator, GenerateOptions
from llm.prompt_templates import PromptTemplates
from monitoring.metrics import record_lead_score, record_lead_transition

from .campaigns import CampaignSource
from .errors import ReprocessSkipped, ResultNotReady
from .events import EventBus, LeadCompleted
from .lead_store import Lead, LeadStatus, LeadStore

logger = logging.getLogger(__name__)

# Lower runs sooner
PRIORITY_BY_QUALITY = {
    LeadQuality.HOT.value: 1,
    LeadQuality.WARM.value: 5,
    LeadQuality.COLD.value: 10,
    LeadQuality.UNQUALIFIED.value: 15,
}


def ai_job_key(lead_id: str) -> str:
    return f"lead:{lead_id}"


class LeadCoordinator:
    """Owns every lead status change."""

    def __init__(
        self,
        leads: LeadStore,
        campaigns: CampaignSource,
        queue: JobQueue,
        orchestrator: AIOrchestrator,
        bus: EventBus,
    ):
        self.leads = leads
        self.campaigns = campaigns
        self.queue = queue
        self.orchestrator = orchestrator
        self.bus = bus

    def attach(self):
        """Register the AI job handler and the terminal-failure subscriber."""
        self.queue.register(AI_QUEUE, self.process_ai_job)
        self.queue.on_failed(self.on_ai_job_failed)

    async def _transition(self, lead_id: str, status: LeadStatus, **changes) -> Lead:
        lead = await self.leads.transition(lead_id, status, **changes)
        record_lead_transition(status.value)
        logger.info(f"Lead {lead_id} -> {status.value}")
        return lead

    # Submission

    async def submit_lead(self, campaign_id: str, answers: Dict[str, Any]) -> Lead:
        """
        Create a lead, score it and queue its AI job.

        Args:
            campaign_id: Campaign id or slug
            answers: Question id to answer

        Returns:
            The lead (queued_for_ai, or failed_permanent on a broken rule set)

        Raises:
            CampaignNotFound: Unknown campaign
            InvalidSubmission: Required answers missing
            QueueUnavailable: Job store unreachable (lead is left failed)
        """
        campaign = await self.campaigns.get(campaign_id)
        try:
            validate_answers(campaign, answers)
        except ScoringRuleError as e:
            # Broken visibility rules are reported through scoring below
            logger.warning(f"Cannot check required answers for campaign {campaign.id}: {e}")

        lead = await self.leads.create(Lead(campaign_id=campaign.id, answers=dict(answers)))
        record_lead_transition(LeadStatus.SUBMITTED.value)
        logger.info(f"Lead {lead.id} submitted for campaign {campaign.slug}")

        await self._transition(lead.id, LeadStatus.SCORING)
        return await self._score_and_enqueue(lead.id)

    async def _score_and_enqueue(self, lead_id: str) -> Lead:
        lead = await self.leads.require(lead_id)
        campaign = await self.campaigns.get(lead.campaign_id)

        try:
            result = score(campaign, lead.answers)
        except ScoringRuleError as e:
            logger.error(f"Scoring failed for lead {lead_id}: {e}")
            return await self._transition(
                lead_id, LeadStatus.FAILED_PERMANENT, last_error=f"ScoringRuleError: {e}"
            )

        record_lead_score(result.score)
        lead = await self._transition(
            lead_id,
            LeadStatus.QUEUED_FOR_AI,
            lead_score=result.score,
            lead_quality=result.quality.value,
        )

        payload = AIProcessingPayload(lead_id=lead_id, campaign_id=campaign.id, cycle=lead.cycle)
        options = JobOptions(
            priority=PRIORITY_BY_QUALITY[result.quality.value],
            dedupe_key=ai_job_key(lead_id),
        )
        try:
            enqueued = await self.queue.enqueue(AI_QUEUE, payload, options)
        except QueueUnavailable as e:
            await self._transition(lead_id, LeadStatus.FAILED, last_error=f"QueueUnavailable: {e}")
            raise

        if not enqueued.created:
            logger.info(f"Lead {lead_id} already has AI job {enqueued.job_id} outstanding")
        return await self.leads.update(lead_id, ai_job_id=enqueued.job_id)

    # AI worker

    async def process_ai_job(self, payload: AIProcessingPayload, job: Job) -> JobResult:
        """Handler for the ai-processing queue."""
        lead = await self.leads.get(payload.lead_id)
        if lead is None:
            return JobResult.fail(f"lead {payload.lead_id} not found")
        if lead.cycle != payload.cycle or lead.status in (LeadStatus.COMPLETED, LeadStatus.FAILED_PERMANENT):
            logger.info(f"Ignoring stale AI job {job.id} for lead {lead.id}")
            return JobResult.ok("stale")

        if lead.status == LeadStatus.AI_PROCESSING:
            # Previous attempt was lost with its worker
            lead = await self.leads.update(lead.id, attempt_count=lead.attempt_count + 1)
        else:
            lead = await self._transition(
                lead.id, LeadStatus.AI_PROCESSING, attempt_count=lead.attempt_count + 1
            )

        try:
            campaign = await self.campaigns.get(lead.campaign_id)
            variables = PromptTemplates.build_variables(
                lead.answers,
                campaign_title=campaign.title,
                lead_score=lead.lead_score,
                lead_quality=lead.lead_quality,
            )
            prompt = PromptTemplates.render(campaign.prompt_template, variables)
            result = await self.orchestrator.generate(
                prompt,
                options=GenerateOptions(
                    preferred_provider=campaign.ai_provider,
                    model=campaign.ai_model,
                    temperature=campaign.ai_temperature,
                    max_tokens=campaign.ai_max_tokens,
                    system=PromptTemplates.SYSTEM_PROMPT,
                ),
            )
        except AIGenerationFailed as e:
            error = f"attempt {job.attempts}: {e}"
            await self._transition(lead.id, LeadStatus.QUEUED_FOR_AI, last_error=error)
            return JobResult.retry(error)
        except Exception as e:
            logger.exception(f"AI job {job.id} for lead {lead.id} failed")
            error = f"attempt {job.attempts}: {type(e).__name__}: {e}"
            await self._transition(lead.id, LeadStatus.FAILED, last_error=error)
            return JobResult.retry(error)

        current = await self.leads.require(lead.id)
        if current.cycle != payload.cycle:
            logger.info(f"Lead {lead.id} was reprocessed while job {job.id} ran; result dropped")
            return JobResult.ok("stale")

        lead = await self._transition(
            lead.id,
            LeadStatus.COMPLETED,
            ai_result=result.text,
            ai_provider=result.provider,
            last_error=None,
            completed_at=datetime.utcnow(),
        )
        await self.bus.publish(LeadCompleted(
            lead_id=lead.id,
            campaign_id=lead.campaign_id,
            lead_score=lead.lead_score,
            lead_quality=lead.lead_quality,
            provider=result.provider,
        ))
        return JobResult.ok({"provider": result.provider, "cached": result.cached})

    async def on_ai_job_failed(self, job: Job, error: JobRetriesExhausted):
        """Terminal AI job failure: the lead needs a manual reprocess."""
        if job.queue_name != AI_QUEUE:
            return
        payload = AIProcessingPayload.model_validate(job.payload)
        lead = await self.leads.get(payload.lead_id)
        if lead is None or lead.cycle != payload.cycle or lead.status == LeadStatus.COMPLETED:
            return
        await self._transition(
            lead.id, LeadStatus.FAILED_PERMANENT, last_error=f"JobRetriesExhausted: {error}"
        )

    # Queries and admin

    async def get_lead_status(self, lead_id: str) -> Dict[str, Any]:
        lead = await self.leads.require(lead_id)
        return lead.status_view()

    async def get_lead_result(self, lead_id: str) -> Dict[str, Any]:
        """
        Raises:
            LeadNotFound: Unknown lead
            ResultNotReady: Lead not completed
        """
        lead = await self.leads.require(lead_id)
        if lead.status != LeadStatus.COMPLETED or not lead.ai_result:
            raise ResultNotReady(lead_id, lead.status.value)
        return {
            "lead_id": lead.id,
            "ai_result": lead.ai_result,
            "ai_provider": lead.ai_provider,
            "lead_score": lead.lead_score,
            "lead_quality": lead.lead_quality,
            "completed_at": lead.completed_at.isoformat() if lead.completed_at else None,
        }

    async def reprocess_lead(self, lead_id: str) -> Lead:
        """
        Start a fresh processing cycle at scoring.

        A waiting or delayed job from the previous cycle is cancelled.

        Raises:
            LeadNotFound: Unknown lead
            ReprocessSkipped: The lead's AI job is running
            QueueUnavailable: Job store unreachable
        """
        lead = await self.leads.require(lead_id)

        if lead.ai_job_id:
            job = await self.queue.get_job(lead.ai_job_id)
            if job is not None and job.state == JobState.ACTIVE:
                logger.info(f"Lead {lead_id} has an active AI job, reprocess skipped")
                raise ReprocessSkipped(lead_id, lead.status.value)
            if job is not None and job.state in (JobState.WAITING, JobState.DELAYED):
                if not await self.queue.cancel(job.id):
                    logger.info(f"Lead {lead_id} AI job started meanwhile, reprocess skipped")
                    current = await self.leads.require(lead_id)
                    raise ReprocessSkipped(lead_id, current.status.value)

        await self._transition(
            lead_id,
            LeadStatus.SCORING,
            cycle=lead.cycle + 1,
            ai_result=None,
            ai_provider=None,
            last_error=None,
            attempt_count=0,
            completed_at=None,
            ai_job_id=None,
        )
        logger.info(f"Lead {lead_id} reprocessing (cycle {lead.cycle + 1})")
        return await self._score_and_enqueue(lead_id)
