"""
Lead pipeline error types.
"""


class CampaignNotFound(Exception):
    def __init__(self, campaign_id: str):
        super().__init__(f"Campaign not found: {campaign_id}")
        self.campaign_id = campaign_id


class LeadNotFound(Exception):
    def __init__(self, lead_id: str):
        super().__init__(f"Lead not found: {lead_id}")
        self.lead_id = lead_id


class InvalidTransition(Exception):
    """A lead status change not allowed by the state machine."""

    def __init__(self, lead_id: str, current: str, target: str):
        super().__init__(f"Lead {lead_id} cannot move from {current} to {target}")
        self.lead_id = lead_id
        self.current = current
        self.target = target


class ResultNotReady(Exception):
    """The lead has no AI result yet."""

    def __init__(self, lead_id: str, status: str):
        super().__init__(f"Lead {lead_id} has no result yet (status: {status})")
        self.lead_id = lead_id
        self.status = status


class ReprocessSkipped(Exception):
    """The lead's AI job is already running, so no new cycle was started."""

    def __init__(self, lead_id: str, status: str):
        super().__init__(f"Lead {lead_id} is being processed, reprocess skipped (status: {status})")
        self.lead_id = lead_id
        self.status = status
