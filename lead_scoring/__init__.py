"""
Lead Scoring Module for the Quiz Lead Pipeline.

This module provides campaign configuration and lead scoring:
- Campaign, question and scoring-rule models
- Conditional question visibility
- Rule-based scoring (0-100 scale) and quality tiers
"""

from .campaign import Campaign, DeliveryMode, LeadQuality, Question, ScoringRule, ScoringRuleSet
from .scoring_model import (
    InvalidSubmission,
    LeadScore,
    ScoringRuleError,
    quality_for_score,
    score,
    validate_answers,
)

__all__ = [
    "Campaign",
    "DeliveryMode",
    "InvalidSubmission",
    "LeadQuality",
    "LeadScore",
    "Question",
    "ScoringRule",
    "ScoringRuleError",
    "ScoringRuleSet",
    "quality_for_score",
    "score",
    "validate_answers",
]
