"""
Job queue data types for the Quiz Lead Pipeline.

Jobs, per-queue payload types, queue configuration and handler results.
"""

import time
import uuid
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter

from config.settings import Settings

AI_QUEUE = "ai-processing"
EXPORT_QUEUE = "export"
NOTIFICATION_QUEUE = "notification"
ANALYTICS_QUEUE = "analytics"

DEFAULT_PRIORITY = 15


class JobState(str, Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    DELAYED = "delayed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.COMPLETED, JobState.FAILED)


# Payloads (one type per queue, discriminated by `kind`)

class AIProcessingPayload(BaseModel):
    kind: Literal["ai-processing"] = "ai-processing"
    lead_id: str
    campaign_id: str
    cycle: int = 0


class ExportPayload(BaseModel):
    kind: Literal["export"] = "export"
    lead_id: str
    campaign_id: str


class NotificationPayload(BaseModel):
    kind: Literal["notification"] = "notification"
    lead_id: str
    campaign_id: str
    delivery_mode: str = "show_and_email"
    email: Optional[str] = None


class AnalyticsPayload(BaseModel):
    kind: Literal["analytics"] = "analytics"
    lead_id: str
    campaign_id: str
    event: str = "lead_completed"
    lead_score: Optional[int] = None
    lead_quality: Optional[str] = None
    provider: Optional[str] = None


JobPayload = Annotated[
    Union[AIProcessingPayload, ExportPayload, NotificationPayload, AnalyticsPayload],
    Field(discriminator="kind"),
]

PAYLOAD_TYPES = {
    AI_QUEUE: AIProcessingPayload,
    EXPORT_QUEUE: ExportPayload,
    NOTIFICATION_QUEUE: NotificationPayload,
    ANALYTICS_QUEUE: AnalyticsPayload,
}

_payload_adapter = TypeAdapter(JobPayload)


def parse_payload(data: Dict[str, Any]) -> Union[BaseModel, Dict[str, Any]]:
    """Rebuild a typed payload from its stored form. Untyped payloads stay dicts."""
    if data.get("kind") in PAYLOAD_TYPES:
        return _payload_adapter.validate_python(data)
    return data


@dataclass
class Job:
    """A unit of deferred work."""
    queue_name: str
    payload: Dict[str, Any]
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    state: JobState = JobState.WAITING
    attempts: int = 0
    max_attempts: int = 3
    priority: int = DEFAULT_PRIORITY
    seq: int = 0
    next_run_at: Optional[float] = None
    last_error: Optional[str] = None
    dedupe_key: Optional[str] = None
    lease_expires_at: Optional[float] = None
    result: Any = None
    created_at: float = field(default_factory=time.time)
    finished_at: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        data = asdict(self)
        data["state"] = self.state.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Job":
        data = dict(data)
        data["state"] = JobState(data["state"])
        return cls(**data)


@dataclass
class JobOptions:
    """Enqueue options; unset values fall back to the queue's configuration."""
    delay: float = 0.0  # seconds
    max_attempts: Optional[int] = None
    priority: Optional[int] = None
    dedupe_key: Optional[str] = None


@dataclass
class JobResult:
    """Handler outcome."""
    status: Literal["ok", "retry", "fail"]
    value: Any = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, value: Any = None) -> "JobResult":
        return cls(status="ok", value=value)

    @classmethod
    def retry(cls, error: str) -> "JobResult":
        return cls(status="retry", error=error)

    @classmethod
    def fail(cls, error: str) -> "JobResult":
        return cls(status="fail", error=error)


@dataclass
class EnqueueResult:
    job_id: str
    created: bool


@dataclass
class QueueStats:
    """Snapshot of job counts for one queue."""
    name: str
    waiting: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0
    delayed: int = 0
    paused: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class QueueConfig:
    """Per-queue worker and retry settings."""
    name: str
    concurrency: int = 1
    max_attempts: int = 3
    backoff_type: Literal["exponential", "fixed"] = "exponential"
    backoff_ms: int = 1000
    backoff_max_ms: int = 300000
    jitter: float = 0.1
    job_timeout: float = 120.0  # seconds
    lease_grace: float = 30.0  # seconds beyond job_timeout before a lease is reaped
    keep_completed: Optional[int] = None  # None keeps every completed job
    keep_failed: Optional[int] = None

    def keep(self, state: JobState) -> Optional[int]:
        return self.keep_completed if state == JobState.COMPLETED else self.keep_failed

    @property
    def lease_seconds(self) -> float:
        return self.job_timeout + self.lease_grace


def default_queue_configs(settings: Settings) -> Dict[str, QueueConfig]:
    """Queue configuration for the four pipeline queues."""
    common = {
        "backoff_max_ms": settings.queue_backoff_max_ms,
        "jitter": settings.queue_backoff_jitter,
        "job_timeout": settings.queue_job_timeout_seconds,
    }
    return {
        AI_QUEUE: QueueConfig(
            name=AI_QUEUE,
            concurrency=settings.ai_queue_concurrency,
            max_attempts=settings.ai_queue_attempts,
            backoff_ms=settings.ai_queue_backoff_ms,
            keep_completed=settings.ai_queue_keep_completed,
            keep_failed=settings.ai_queue_keep_failed,
            **common,
        ),
        EXPORT_QUEUE: QueueConfig(
            name=EXPORT_QUEUE,
            concurrency=settings.export_queue_concurrency,
            max_attempts=settings.export_queue_attempts,
            backoff_ms=settings.export_queue_backoff_ms,
            keep_completed=settings.export_queue_keep_completed,
            keep_failed=settings.export_queue_keep_failed,
            **common,
        ),
        NOTIFICATION_QUEUE: QueueConfig(
            name=NOTIFICATION_QUEUE,
            concurrency=settings.notification_queue_concurrency,
            max_attempts=settings.notification_queue_attempts,
            backoff_ms=settings.notification_queue_backoff_ms,
            keep_completed=settings.notification_queue_keep_completed,
            keep_failed=settings.notification_queue_keep_failed,
            **common,
        ),
        ANALYTICS_QUEUE: QueueConfig(
            name=ANALYTICS_QUEUE,
            concurrency=settings.analytics_queue_concurrency,
            max_attempts=settings.analytics_queue_attempts,
            backoff_type="fixed",
            backoff_ms=settings.analytics_queue_backoff_ms,
            keep_completed=settings.analytics_queue_keep_completed,
            keep_failed=settings.analytics_queue_keep_failed,
            **common,
        ),
    }
