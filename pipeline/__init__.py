"""
Lead Pipeline Module for the Quiz Lead Pipeline.

This module provides:
- Lead records, state machine and storage
- The coordinator driving leads from submission to AI result
- Downstream export, notification and analytics jobs
- The LeadPipeline service container
"""

from .campaigns import CampaignSource, InMemoryCampaignSource, SqlCampaignSource
from .coordinator import LeadCoordinator
from .errors import (
    CampaignNotFound,
    InvalidTransition,
    LeadNotFound,
    ReprocessSkipped,
    ResultNotReady,
)
from .events import EventBus, LeadCompleted
from .lead_store import InMemoryLeadStore, Lead, LeadStatus, LeadStore, SqlLeadStore
from .service import LeadPipeline

__all__ = [
    "CampaignNotFound",
    "CampaignSource",
    "EventBus",
    "InMemoryCampaignSource",
    "InMemoryLeadStore",
    "InvalidTransition",
    "Lead",
    "LeadCompleted",
    "LeadCoordinator",
    "LeadNotFound",
    "LeadPipeline",
    "LeadStatus",
    "LeadStore",
    "ReprocessSkipped",
    "ResultNotReady",
    "SqlCampaignSource",
    "SqlLeadStore",
]
