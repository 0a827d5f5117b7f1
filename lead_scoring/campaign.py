"""
Campaign configuration models for the Quiz Lead Pipeline.

A campaign is the read-only definition a lead is scored against: its
questions, its scoring rules, its prompt template and its AI preferences.
"""

import logging
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from llm.registry import parse_provider, validate_model_provider

logger = logging.getLogger(__name__)


class LeadQuality(str, Enum):
    """Coarse lead quality tier."""
    HOT = "hot"
    WARM = "warm"
    COLD = "cold"
    UNQUALIFIED = "unqualified"


class DeliveryMode(str, Enum):
    """How the AI result reaches the respondent."""
    SHOW_ONLY = "show_only"
    SHOW_AND_EMAIL = "show_and_email"
    EMAIL_ONLY = "email_only"

    @property
    def sends_email(self) -> bool:
        return self != DeliveryMode.SHOW_ONLY


class ShowIf(BaseModel):
    """Visibility predicate on an earlier answer."""
    field: str
    operator: str = "equals"
    value: Any = None


class Question(BaseModel):
    """One quiz question."""
    model_config = ConfigDict(populate_by_name=True)

    id: str
    question: str = ""
    type: str = "multiple_choice"
    options: List[Any] = []
    required: bool = False
    show_if: Optional[ShowIf] = None

    @model_validator(mode="before")
    @classmethod
    def _lift_conditional(cls, data: Any) -> Any:
        # Accept {"conditional": {"showIf": {...}}} as stored by the quiz builder
        if isinstance(data, dict) and "conditional" in data and "show_if" not in data:
            data = dict(data)
            conditional = data.pop("conditional") or {}
            data["show_if"] = conditional.get("show_if") or conditional.get("showIf")
        return data


class RuleClause(BaseModel):
    """A single `{field, operator, value}` test."""
    field: str
    operator: str = "equals"
    value: Any = None


class ScoringRule(BaseModel):
    """
    Condition and consequence.

    `when` is either a mapping of question id to expected value (a list
    means membership) or an explicit list of clauses, all of which must hold.
    """
    name: Optional[str] = None
    when: Union[List[RuleClause], Dict[str, Any]]
    score: Optional[int] = None
    quality: Optional[LeadQuality] = None
    exclusive: bool = False

    @model_validator(mode="before")
    @classmethod
    def _from_if_then(cls, data: Any) -> Any:
        # Quiz builder format: {"if": {...}, "then": {"leadScore": 80, "leadQuality": "hot"}}
        if isinstance(data, dict) and "if" in data:
            data = dict(data)
            then = data.pop("then", None) or {}
            data["when"] = data.pop("if")
            data.setdefault("score", then.get("leadScore", then.get("score")))
            data.setdefault("quality", then.get("leadQuality", then.get("quality")))
        return data

    @model_validator(mode="after")
    def _has_consequence(self) -> "ScoringRule":
        if self.score is None and self.quality is None:
            raise ValueError("scoring rule must set a score or a quality")
        return self


class ScoringDefault(BaseModel):
    """Outcome when no rule matches."""
    score: int = 50
    quality: Optional[LeadQuality] = LeadQuality.WARM


class ScoringRuleSet(BaseModel):
    """Ordered rules plus the accumulation policy."""
    rules: List[ScoringRule] = []
    accumulation: Literal["additive", "first_match"] = "additive"
    default: Optional[ScoringDefault] = None


class Campaign(BaseModel):
    """Quiz campaign definition."""
    model_config = ConfigDict(populate_by_name=True)

    id: str
    slug: str
    title: str
    questions: List[Question] = []
    scoring: ScoringRuleSet = Field(default_factory=ScoringRuleSet)
    prompt_template: Optional[str] = None
    ai_provider: Optional[str] = None
    ai_model: Optional[str] = None
    ai_temperature: Optional[float] = Field(default=None, ge=0.0, le=2.0)
    ai_max_tokens: Optional[int] = Field(default=None, gt=0)
    result_delivery_mode: DeliveryMode = DeliveryMode.SHOW_ONLY
    export_enabled: bool = False

    @model_validator(mode="after")
    def _validate(self) -> "Campaign":
        seen = set()
        for question in self.questions:
            if question.id in seen:
                raise ValueError(f"duplicate question id: {question.id}")
            if question.show_if is not None and question.show_if.field not in seen:
                raise ValueError(
                    f"question {question.id} depends on {question.show_if.field}, "
                    f"which is not an earlier question"
                )
            seen.add(question.id)

        if self.ai_provider and self.ai_provider != "auto":
            self.ai_provider = parse_provider(self.ai_provider).value
        if self.ai_model:
            validate_model_provider(self.ai_model, self.ai_provider)
        return self

    @property
    def question_ids(self) -> List[str]:
        return [q.id for q in self.questions]

    def get_question(self, question_id: str) -> Optional[Question]:
        for question in self.questions:
            if question.id == question_id:
                return question
        return None

    @classmethod
    def from_config(cls, data: Dict[str, Any]) -> "Campaign":
        """Build a campaign from a stored JSON config, logging rejects."""
        try:
            return cls.model_validate(data)
        except ValueError as e:
            logger.error(f"Invalid campaign config {data.get('id') or data.get('slug')}: {e}")
            raise
