"""
Job Queue Module for the Quiz Lead Pipeline.

This module provides:
- Named queues with per-queue worker pools
- Retry with exponential backoff and jitter
- In-memory and Redis job stores
"""

from .errors import JobRetriesExhausted, PayloadValidationError, QueueUnavailable, UnknownQueue
from .models import (
    AI_QUEUE,
    ANALYTICS_QUEUE,
    EXPORT_QUEUE,
    NOTIFICATION_QUEUE,
    AIProcessingPayload,
    AnalyticsPayload,
    EnqueueResult,
    ExportPayload,
    Job,
    JobOptions,
    JobResult,
    JobState,
    NotificationPayload,
    QueueConfig,
    QueueStats,
    default_queue_configs,
)
from .queue import JobQueue, compute_backoff
from .redis_store import RedisJobStore
from .store import JobStore, MemoryJobStore

__all__ = [
    "AI_QUEUE",
    "ANALYTICS_QUEUE",
    "EXPORT_QUEUE",
    "NOTIFICATION_QUEUE",
    "AIProcessingPayload",
    "AnalyticsPayload",
    "EnqueueResult",
    "ExportPayload",
    "Job",
    "JobOptions",
    "JobQueue",
    "JobResult",
    "JobRetriesExhausted",
    "JobState",
    "JobStore",
    "MemoryJobStore",
    "NotificationPayload",
    "PayloadValidationError",
    "QueueConfig",
    "QueueStats",
    "QueueUnavailable",
    "RedisJobStore",
    "UnknownQueue",
    "compute_backoff",
    "default_queue_configs",
]
