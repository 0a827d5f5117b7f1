"""
Repository classes for the Quiz Lead Pipeline data access layer.

Each repository encapsulates CRUD operations for a specific model.
"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .models import CampaignRecord, LeadRecord, LeadEventRecord

logger = logging.getLogger(__name__)


class CampaignRepository:
    """Data access for campaigns."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **kwargs) -> CampaignRecord:
        campaign = CampaignRecord(**kwargs)
        self.session.add(campaign)
        await self.session.flush()
        return campaign

    async def get_by_id(self, campaign_id: str) -> Optional[CampaignRecord]:
        result = await self.session.execute(
            select(CampaignRecord).where(CampaignRecord.id == campaign_id)
        )
        return result.scalar_one_or_none()

    async def get_by_slug(self, slug: str) -> Optional[CampaignRecord]:
        result = await self.session.execute(
            select(CampaignRecord).where(CampaignRecord.slug == slug)
        )
        return result.scalar_one_or_none()


class LeadRepository:
    """Data access for leads and lead events."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **kwargs) -> LeadRecord:
        lead = LeadRecord(**kwargs)
        self.session.add(lead)
        await self.session.flush()
        # Record creation event
        self.session.add(LeadEventRecord(
            lead_id=lead.id,
            event_type="created",
            details_json={"campaign_id": lead.campaign_id, "status": lead.status},
        ))
        await self.session.flush()
        return lead

    async def update(self, lead_id: str, **kwargs) -> Optional[LeadRecord]:
        lead = await self.get_by_id(lead_id)
        if not lead:
            return None
        previous_status = lead.status
        for k, v in kwargs.items():
            if hasattr(lead, k):
                setattr(lead, k, v)
        if "status" in kwargs and kwargs["status"] != previous_status:
            self.session.add(LeadEventRecord(
                lead_id=lead_id,
                event_type="status_changed",
                details_json=_event_details(previous_status, kwargs),
            ))
        await self.session.flush()
        return lead

    async def get_by_id(self, lead_id: str, for_update: bool = False) -> Optional[LeadRecord]:
        query = select(LeadRecord).where(LeadRecord.id == lead_id)
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def get_events(self, lead_id: str) -> List[LeadEventRecord]:
        result = await self.session.execute(
            select(LeadEventRecord)
            .where(LeadEventRecord.lead_id == lead_id)
            .order_by(LeadEventRecord.created_at)
        )
        return list(result.scalars().all())


def _event_details(previous_status: str, changes: Dict[str, Any]) -> Dict[str, Any]:
    details = {"from": previous_status, "to": changes["status"]}
    for key in ("last_error", "attempt_count", "ai_provider", "cycle"):
        if key in changes:
            details[key] = changes[key]
    return details
