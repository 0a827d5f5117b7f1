"""
Campaign sources: read-only lookup of campaign definitions by id or slug.
"""

import json
import logging
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from database.models import CampaignRecord
from database.repositories import CampaignRepository
from lead_scoring.campaign import Campaign

from .errors import CampaignNotFound

logger = logging.getLogger(__name__)


class CampaignSource(ABC):
    """Abstract campaign lookup."""

    @abstractmethod
    async def find(self, key: str) -> Optional[Campaign]:
        """Look up a campaign by id, then by slug."""
        pass

    async def get(self, key: str) -> Campaign:
        campaign = await self.find(key)
        if campaign is None:
            raise CampaignNotFound(key)
        return campaign


class InMemoryCampaignSource(CampaignSource):
    """Campaigns held in a dict, typically loaded from fixtures or config."""

    def __init__(self, campaigns: Optional[Iterable[Campaign]] = None):
        self._by_id: Dict[str, Campaign] = {}
        self._by_slug: Dict[str, Campaign] = {}
        for campaign in campaigns or []:
            self.add(campaign)

    @classmethod
    def from_file(cls, path: str) -> "InMemoryCampaignSource":
        """Load a JSON file holding a list of campaign configs."""
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        campaigns = [Campaign.from_config(item) for item in data]
        logger.info(f"Loaded {len(campaigns)} campaigns from {path}")
        return cls(campaigns)

    def add(self, campaign: Campaign):
        self._by_id[campaign.id] = campaign
        self._by_slug[campaign.slug] = campaign

    async def find(self, key: str) -> Optional[Campaign]:
        return self._by_id.get(key) or self._by_slug.get(key)

    def all(self) -> List[Campaign]:
        return list(self._by_id.values())


class SqlCampaignSource(CampaignSource):
    """Campaigns stored in the `campaigns` table with a JSON config column."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    @staticmethod
    def _to_campaign(record: CampaignRecord) -> Campaign:
        config = dict(record.config_json or {})
        config.update(id=record.id, slug=record.slug, title=record.title)
        return Campaign.from_config(config)

    async def find(self, key: str) -> Optional[Campaign]:
        async with self._session_factory() as session:
            repo = CampaignRepository(session)
            record = await repo.get_by_id(key) or await repo.get_by_slug(key)
            if record is None or not record.is_active:
                return None
            return self._to_campaign(record)

    async def save(self, campaign: Campaign) -> Campaign:
        """Insert a campaign definition."""
        config = campaign.model_dump(mode="json", exclude={"id", "slug", "title"})
        async with self._session_factory() as session:
            await CampaignRepository(session).create(
                id=campaign.id,
                slug=campaign.slug,
                title=campaign.title,
                config_json=config,
            )
            await session.commit()
        logger.info(f"Campaign saved: {campaign.slug}")
        return campaign
