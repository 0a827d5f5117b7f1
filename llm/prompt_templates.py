"""
Prompt Templates for the Quiz Lead Pipeline.

Campaigns carry their own prompt template with {{placeholder}} variables;
this module fills them in from a lead.
"""

import json
import re
from typing import Any, Dict, Optional

_PLACEHOLDER_RE = re.compile(r"\{\{\s*(\w+)\s*\}\}")


class PromptTemplates:
    """
    Renders campaign prompt templates.

    Supported variables: firstName, responses (JSON), responseCount,
    campaignTitle, leadScore, leadQuality. Unknown variables are left
    untouched so template typos are visible in the output.
    """

    DEFAULT_TEMPLATE = """You are an assistant writing a personalised assessment for a quiz respondent.

Campaign: {{campaignTitle}}
Lead score: {{leadScore}} ({{leadQuality}})

The respondent answered {{responseCount}} questions:
{{responses}}

Write a short, friendly assessment addressed to {{firstName}} with two or three
concrete recommendations based on their answers."""

    SYSTEM_PROMPT = (
        "You write concise, helpful assessments from quiz answers. "
        "Never invent facts about the respondent beyond their answers."
    )

    @staticmethod
    def build_variables(
        answers: Dict[str, Any],
        campaign_title: str = "",
        lead_score: Optional[int] = None,
        lead_quality: Optional[str] = None,
    ) -> Dict[str, str]:
        """Collect template variables for a lead."""
        first_name = (
            answers.get("first_name")
            or answers.get("firstName")
            or answers.get("name")
            or "there"
        )
        return {
            "firstName": str(first_name),
            "responses": json.dumps(answers, indent=2, sort_keys=True, default=str),
            "responseCount": str(len(answers)),
            "campaignTitle": campaign_title,
            "leadScore": "" if lead_score is None else str(lead_score),
            "leadQuality": lead_quality or "",
        }

    @classmethod
    def render(cls, template: Optional[str], variables: Dict[str, str]) -> str:
        """
        Substitute {{name}} placeholders.

        Args:
            template: Template text (falls back to DEFAULT_TEMPLATE when empty)
            variables: Values keyed by placeholder name

        Returns:
            Rendered prompt
        """
        text = template or cls.DEFAULT_TEMPLATE

        def _replace(match: re.Match) -> str:
            key = match.group(1)
            return variables[key] if key in variables else match.group(0)

        return _PLACEHOLDER_RE.sub(_replace, text)
