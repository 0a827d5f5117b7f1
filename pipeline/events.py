"""
In-process event bus for lead lifecycle events.

Subscribers run independently: an exception in one is logged and never
reaches the publisher or the other subscribers.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type

logger = logging.getLogger(__name__)


@dataclass
class LeadCompleted:
    """Published once a lead's AI result has been stored."""
    lead_id: str
    campaign_id: str
    lead_score: Optional[int]
    lead_quality: Optional[str]
    provider: Optional[str]
    completed_at: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lead_id": self.lead_id,
            "campaign_id": self.campaign_id,
            "lead_score": self.lead_score,
            "lead_quality": self.lead_quality,
            "provider": self.provider,
            "completed_at": self.completed_at.isoformat(),
        }


Subscriber = Callable[[Any], Awaitable[None]]


class EventBus:
    """Publish/subscribe keyed by event class."""

    def __init__(self):
        self._subscribers: Dict[Type, List[Subscriber]] = {}

    def subscribe(self, event_type: Type, subscriber: Subscriber):
        self._subscribers.setdefault(event_type, []).append(subscriber)

    async def publish(self, event: Any) -> int:
        """
        Deliver an event to every subscriber of its type.

        Returns:
            Number of subscribers that failed
        """
        failures = 0
        for subscriber in self._subscribers.get(type(event), []):
            try:
                await subscriber(event)
            except Exception:
                failures += 1
                logger.exception(
                    f"Subscriber {getattr(subscriber, '__name__', subscriber)} "
                    f"failed on {type(event).__name__}"
                )
        return failures
