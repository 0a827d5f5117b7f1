"""
Lead records, the lead state machine and lead storage backends.
"""

import asyncio
import copy
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from database.models import LeadRecord
from database.repositories import LeadRepository

from .errors import InvalidTransition, LeadNotFound

logger = logging.getLogger(__name__)


class LeadStatus(str, Enum):
    SUBMITTED = "submitted"
    SCORING = "scoring"
    QUEUED_FOR_AI = "queued_for_ai"
    AI_PROCESSING = "ai_processing"
    COMPLETED = "completed"
    FAILED = "failed"
    FAILED_PERMANENT = "failed_permanent"


# Allowed status changes. SCORING as a target is the reprocess re-entry.
TRANSITIONS = {
    LeadStatus.SUBMITTED: {LeadStatus.SCORING},
    LeadStatus.SCORING: {LeadStatus.QUEUED_FOR_AI, LeadStatus.FAILED_PERMANENT},
    LeadStatus.QUEUED_FOR_AI: {
        LeadStatus.AI_PROCESSING,
        LeadStatus.FAILED,
        LeadStatus.FAILED_PERMANENT,
        LeadStatus.SCORING,
    },
    LeadStatus.AI_PROCESSING: {
        LeadStatus.COMPLETED,
        LeadStatus.QUEUED_FOR_AI,
        LeadStatus.FAILED,
        LeadStatus.FAILED_PERMANENT,
        LeadStatus.SCORING,
    },
    LeadStatus.FAILED: {
        LeadStatus.AI_PROCESSING,
        LeadStatus.QUEUED_FOR_AI,
        LeadStatus.FAILED_PERMANENT,
        LeadStatus.SCORING,
    },
    LeadStatus.COMPLETED: {LeadStatus.SCORING},
    LeadStatus.FAILED_PERMANENT: {LeadStatus.SCORING},
}


def check_transition(lead_id: str, current: LeadStatus, target: LeadStatus):
    if target not in TRANSITIONS[current]:
        raise InvalidTransition(lead_id, current.value, target.value)


@dataclass
class Lead:
    """One campaign submission and its derived score and AI result."""
    campaign_id: str
    answers: Dict[str, Any]
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: LeadStatus = LeadStatus.SUBMITTED
    lead_score: Optional[int] = None
    lead_quality: Optional[str] = None
    ai_result: Optional[str] = None
    ai_provider: Optional[str] = None
    attempt_count: int = 0
    last_error: Optional[str] = None
    ai_job_id: Optional[str] = None
    cycle: int = 0
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None

    def status_view(self) -> Dict[str, Any]:
        return {
            "lead_id": self.id,
            "status": self.status.value,
            "lead_score": self.lead_score,
            "lead_quality": self.lead_quality,
            "has_result": bool(self.ai_result),
            "last_error": self.last_error,
            "attempt_count": self.attempt_count,
        }

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "campaign_id": self.campaign_id,
            "answers": self.answers,
            "status": self.status.value,
            "lead_score": self.lead_score,
            "lead_quality": self.lead_quality,
            "ai_result": self.ai_result,
            "ai_provider": self.ai_provider,
            "attempt_count": self.attempt_count,
            "last_error": self.last_error,
            "ai_job_id": self.ai_job_id,
            "cycle": self.cycle,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


class LeadStore(ABC):
    """
    Abstract lead storage.

    `transition` is the only way status changes; it checks the state machine
    and applies the accompanying field changes in one step.
    """

    @abstractmethod
    async def create(self, lead: Lead) -> Lead:
        pass

    @abstractmethod
    async def get(self, lead_id: str) -> Optional[Lead]:
        pass

    @abstractmethod
    async def update(self, lead_id: str, **changes) -> Lead:
        """Change non-status fields. Raises LeadNotFound."""
        pass

    @abstractmethod
    async def transition(self, lead_id: str, status: LeadStatus, **changes) -> Lead:
        """
        Move a lead to a new status.

        Raises:
            LeadNotFound: No such lead
            InvalidTransition: Not allowed from the current status
        """
        pass

    async def require(self, lead_id: str) -> Lead:
        lead = await self.get(lead_id)
        if lead is None:
            raise LeadNotFound(lead_id)
        return lead


class InMemoryLeadStore(LeadStore):
    """Lead store kept in process memory."""

    def __init__(self):
        self._leads: Dict[str, Lead] = {}
        self._lock = asyncio.Lock()

    async def create(self, lead: Lead) -> Lead:
        async with self._lock:
            self._leads[lead.id] = copy.deepcopy(lead)
        return lead

    async def get(self, lead_id: str) -> Optional[Lead]:
        async with self._lock:
            lead = self._leads.get(lead_id)
            return copy.deepcopy(lead) if lead is not None else None

    async def update(self, lead_id: str, **changes) -> Lead:
        if "status" in changes:
            raise ValueError("use transition() to change status")
        async with self._lock:
            lead = self._leads.get(lead_id)
            if lead is None:
                raise LeadNotFound(lead_id)
            _apply(lead, changes)
            return copy.deepcopy(lead)

    async def transition(self, lead_id: str, status: LeadStatus, **changes) -> Lead:
        async with self._lock:
            lead = self._leads.get(lead_id)
            if lead is None:
                raise LeadNotFound(lead_id)
            check_transition(lead_id, lead.status, status)
            _apply(lead, {**changes, "status": status})
            return copy.deepcopy(lead)


def _apply(lead: Lead, changes: Dict[str, Any]):
    for key, value in changes.items():
        if not hasattr(lead, key):
            raise AttributeError(f"Lead has no field {key}")
        setattr(lead, key, value)
    lead.updated_at = datetime.utcnow()


class SqlLeadStore(LeadStore):
    """Lead store backed by the `leads` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    @staticmethod
    def _to_lead(record: LeadRecord) -> Lead:
        return Lead(
            id=record.id,
            campaign_id=record.campaign_id,
            answers=dict(record.answers_json or {}),
            status=LeadStatus(record.status),
            lead_score=record.lead_score,
            lead_quality=record.lead_quality,
            ai_result=record.ai_result,
            ai_provider=record.ai_provider,
            attempt_count=record.attempt_count or 0,
            last_error=record.last_error,
            ai_job_id=record.ai_job_id,
            cycle=record.cycle or 0,
            created_at=record.created_at,
            updated_at=record.updated_at,
            completed_at=record.completed_at,
        )

    @staticmethod
    def _columns(changes: Dict[str, Any]) -> Dict[str, Any]:
        columns = dict(changes)
        if "answers" in columns:
            columns["answers_json"] = columns.pop("answers")
        if isinstance(columns.get("status"), LeadStatus):
            columns["status"] = columns["status"].value
        columns["updated_at"] = datetime.utcnow()
        return columns

    async def create(self, lead: Lead) -> Lead:
        async with self._session_factory() as session:
            repo = LeadRepository(session)
            await repo.create(
                id=lead.id,
                campaign_id=lead.campaign_id,
                answers_json=lead.answers,
                status=lead.status.value,
                cycle=lead.cycle,
                created_at=lead.created_at,
                updated_at=lead.updated_at,
            )
            await session.commit()
        return lead

    async def get(self, lead_id: str) -> Optional[Lead]:
        async with self._session_factory() as session:
            record = await LeadRepository(session).get_by_id(lead_id)
            return self._to_lead(record) if record is not None else None

    async def update(self, lead_id: str, **changes) -> Lead:
        if "status" in changes:
            raise ValueError("use transition() to change status")
        async with self._session_factory() as session:
            record = await LeadRepository(session).update(lead_id, **self._columns(changes))
            if record is None:
                raise LeadNotFound(lead_id)
            await session.commit()
            return self._to_lead(record)

    async def transition(self, lead_id: str, status: LeadStatus, **changes) -> Lead:
        async with self._session_factory() as session:
            repo = LeadRepository(session)
            record = await repo.get_by_id(lead_id, for_update=True)
            if record is None:
                raise LeadNotFound(lead_id)
            check_transition(lead_id, LeadStatus(record.status), status)
            record = await repo.update(lead_id, **self._columns({**changes, "status": status}))
            await session.commit()
            return self._to_lead(record)
