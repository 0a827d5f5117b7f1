"""
Job queue error types.
"""

from typing import Optional


class QueueUnavailable(Exception):
    """The job store backend cannot be reached."""


class UnknownQueue(Exception):
    """A queue name that has no configuration."""

    def __init__(self, queue_name: str):
        super().__init__(f"Unknown queue: {queue_name}")
        self.queue_name = queue_name


class PayloadValidationError(Exception):
    """A payload does not match the payload type of its queue."""

    def __init__(self, queue_name: str, message: str):
        super().__init__(f"Invalid payload for {queue_name}: {message}")
        self.queue_name = queue_name


class JobRetriesExhausted(Exception):
    """A job failed terminally after its last allowed attempt."""

    def __init__(self, job_id: str, queue_name: str, attempts: int, last_error: Optional[str]):
        super().__init__(
            f"Job {job_id} on {queue_name} failed after {attempts} attempts: {last_error}"
        )
        self.job_id = job_id
        self.queue_name = queue_name
        self.attempts = attempts
        self.last_error = last_error
