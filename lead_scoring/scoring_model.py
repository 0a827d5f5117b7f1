"""
Lead Scoring Engine for the Quiz Lead Pipeline.

Deterministic, side-effect free scoring of quiz answers against a
campaign's rule set.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .campaign import Campaign, LeadQuality, RuleClause, ScoringRule

logger = logging.getLogger(__name__)

OPERATORS = {
    "equals",
    "not_equals",
    "in",
    "not_in",
    "greater_than",
    "less_than",
    "greater_or_equal",
    "less_or_equal",
}
NUMERIC_OPERATORS = {"greater_than", "less_than", "greater_or_equal", "less_or_equal"}

# Tier thresholds
HOT_THRESHOLD = 80
WARM_THRESHOLD = 60
COLD_THRESHOLD = 40


class ScoringRuleError(Exception):
    """A campaign rule cannot be evaluated."""

    def __init__(self, message: str, rule_index: Optional[int] = None):
        if rule_index is not None:
            message = f"rule {rule_index}: {message}"
        super().__init__(message)
        self.rule_index = rule_index


class InvalidSubmission(Exception):
    """Required visible questions were left unanswered."""

    def __init__(self, missing: List[str]):
        super().__init__(f"Missing required answers: {', '.join(missing)}")
        self.missing = missing


@dataclass
class LeadScore:
    """Lead score result."""
    score: int  # 0-100
    quality: LeadQuality
    matched_rules: List[int] = field(default_factory=list)
    visible_questions: List[str] = field(default_factory=list)
    quality_from_rule: bool = False

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "score": self.score,
            "quality": self.quality.value,
            "matched_rules": self.matched_rules,
            "visible_questions": self.visible_questions,
            "quality_from_rule": self.quality_from_rule,
        }


def quality_for_score(score: int) -> LeadQuality:
    """Band a score into a quality tier."""
    if score >= HOT_THRESHOLD:
        return LeadQuality.HOT
    if score >= WARM_THRESHOLD:
        return LeadQuality.WARM
    if score >= COLD_THRESHOLD:
        return LeadQuality.COLD
    return LeadQuality.UNQUALIFIED


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def _is_answered(value: Any) -> bool:
    return value is not None and value != "" and value != []


def check_operand(operator: str, expected: Any, rule_index: Optional[int] = None):
    """Reject operators and operands that can never be evaluated."""
    if operator not in OPERATORS:
        raise ScoringRuleError(f"unknown operator '{operator}'", rule_index)
    if operator in NUMERIC_OPERATORS and _as_number(expected) is None:
        raise ScoringRuleError(f"operator '{operator}' needs a numeric value, got {expected!r}", rule_index)
    if operator in ("in", "not_in") and not isinstance(expected, (list, tuple, set)):
        raise ScoringRuleError(f"operator '{operator}' needs a list value", rule_index)


def evaluate(operator: str, actual: Any, expected: Any) -> bool:
    """
    Test one answer against an expected value.

    Unanswered (or hidden) questions never satisfy a predicate, whatever
    the operator. Multi-select answers match `equals`/`in` when any selected
    option matches.
    """
    if not _is_answered(actual):
        return False

    values = actual if isinstance(actual, list) else [actual]

    if operator == "equals":
        return expected in values
    if operator == "not_equals":
        return expected not in values
    if operator == "in":
        return any(v in expected for v in values)
    if operator == "not_in":
        return all(v not in expected for v in values)

    left = _as_number(actual)
    right = _as_number(expected)
    if left is None or right is None:
        return False
    if operator == "greater_than":
        return left > right
    if operator == "less_than":
        return left < right
    if operator == "greater_or_equal":
        return left >= right
    if operator == "less_or_equal":
        return left <= right
    raise ScoringRuleError(f"unknown operator '{operator}'")


def resolve_visibility(campaign: Campaign, answers: Dict[str, Any]) -> Tuple[Dict[str, Any], List[str]]:
    """
    Apply show-if predicates in question order.

    Returns:
        (answers with hidden questions removed, ids of visible questions)
    """
    visible_ids: List[str] = []
    hidden = set()
    for question in campaign.questions:
        predicate = question.show_if
        if predicate is not None:
            check_operand(predicate.operator, predicate.value)
            actual = None if predicate.field in hidden else answers.get(predicate.field)
            if not evaluate(predicate.operator, actual, predicate.value):
                hidden.add(question.id)
                continue
        visible_ids.append(question.id)

    visible_answers = {k: v for k, v in answers.items() if k not in hidden}
    return visible_answers, visible_ids


def _clauses(rule: ScoringRule) -> List[RuleClause]:
    if isinstance(rule.when, dict):
        return [
            RuleClause(field=key, operator="in" if isinstance(expected, list) else "equals", value=expected)
            for key, expected in rule.when.items()
        ]
    return list(rule.when)


def validate_rules(campaign: Campaign):
    """
    Check every rule of a campaign.

    Raises:
        ScoringRuleError: Unknown operator, bad operand or unknown question id
    """
    question_ids = set(campaign.question_ids)
    for index, rule in enumerate(campaign.scoring.rules):
        clauses = _clauses(rule)
        if not clauses:
            raise ScoringRuleError("rule has no conditions", index)
        for clause in clauses:
            if clause.field not in question_ids:
                raise ScoringRuleError(f"unknown question id '{clause.field}'", index)
            check_operand(clause.operator, clause.value, index)


def score(campaign: Campaign, answers: Dict[str, Any]) -> LeadScore:
    """
    Score a lead's answers.

    Rules are evaluated in order. The first matching rule that names a
    quality decides the tier; scores of matching rules add up, unless the
    rule set uses first_match or a matching rule is exclusive, in which case
    evaluation stops there.

    Args:
        campaign: Campaign definition
        answers: Question id to answer

    Returns:
        LeadScore

    Raises:
        ScoringRuleError: Malformed rule in the campaign
    """
    validate_rules(campaign)
    visible_answers, visible_ids = resolve_visibility(campaign, answers)
    rule_set = campaign.scoring

    total = 0
    quality: Optional[LeadQuality] = None
    matched: List[int] = []

    for index, rule in enumerate(rule_set.rules):
        if not all(
            evaluate(c.operator, visible_answers.get(c.field), c.value) for c in _clauses(rule)
        ):
            continue

        matched.append(index)
        if quality is None and rule.quality is not None:
            quality = rule.quality

        if rule.exclusive:
            if rule.score is not None:
                total = rule.score
            break
        total += rule.score or 0
        if rule_set.accumulation == "first_match":
            break

    if not matched and rule_set.default is not None:
        total = rule_set.default.score
        quality = rule_set.default.quality

    total = max(0, min(100, total))
    quality_from_rule = quality is not None
    if quality is None:
        quality = quality_for_score(total)

    return LeadScore(
        score=total,
        quality=quality,
        matched_rules=matched,
        visible_questions=visible_ids,
        quality_from_rule=quality_from_rule,
    )


def validate_answers(campaign: Campaign, answers: Dict[str, Any]):
    """
    Ensure every required, visible question has an answer.

    Raises:
        InvalidSubmission: Listing the missing question ids
    """
    visible_answers, visible_ids = resolve_visibility(campaign, answers)
    missing = [
        qid for qid in visible_ids
        if campaign.get_question(qid).required and not _is_answered(visible_answers.get(qid))
    ]
    if missing:
        raise InvalidSubmission(missing)
