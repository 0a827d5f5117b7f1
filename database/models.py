"""
SQLAlchemy ORM models for the Quiz Lead Pipeline.

Persistent entities: campaigns, leads and lead status history.
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    Column, String, Integer, Boolean, DateTime, Text, ForeignKey, JSON, Index,
)
from sqlalchemy.orm import DeclarativeBase, relationship


def _uuid() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    pass


class CampaignRecord(Base):
    __tablename__ = "campaigns"

    id = Column(String(36), primary_key=True, default=_uuid)
    slug = Column(String(120), unique=True, nullable=False, index=True)
    title = Column(String(255), nullable=False)
    config_json = Column(JSON, default=dict)  # questions, scoring, prompt template, AI settings
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    leads = relationship("LeadRecord", back_populates="campaign")


class LeadRecord(Base):
    __tablename__ = "leads"

    id = Column(String(36), primary_key=True, default=_uuid)
    campaign_id = Column(String(36), ForeignKey("campaigns.id"), nullable=False, index=True)
    answers_json = Column(JSON, default=dict)
    status = Column(String(20), nullable=False, default="submitted")
    lead_score = Column(Integer, nullable=True)
    lead_quality = Column(String(12), nullable=True)  # hot, warm, cold, unqualified
    ai_result = Column(Text, nullable=True)
    ai_provider = Column(String(20), nullable=True)
    attempt_count = Column(Integer, default=0)
    last_error = Column(Text, nullable=True)
    ai_job_id = Column(String(36), nullable=True)
    cycle = Column(Integer, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    completed_at = Column(DateTime, nullable=True)

    campaign = relationship("CampaignRecord", back_populates="leads")
    events = relationship("LeadEventRecord", back_populates="lead", cascade="all, delete-orphan")

    __table_args__ = (
        Index("ix_lead_campaign_status", "campaign_id", "status"),
    )


class LeadEventRecord(Base):
    __tablename__ = "lead_events"

    id = Column(String(36), primary_key=True, default=_uuid)
    lead_id = Column(String(36), ForeignKey("leads.id", ondelete="CASCADE"), nullable=False, index=True)
    event_type = Column(String(30), nullable=False)  # created, status_changed
    details_json = Column(JSON, default=dict)
    created_at = Column(DateTime, default=datetime.utcnow)

    lead = relationship("LeadRecord", back_populates="events")
