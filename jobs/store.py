"""
Job storage backends.

The store owns every state change of a job so that leasing and dedupe are
atomic with respect to concurrent workers.
"""

import asyncio
import copy
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Set, Tuple

from .models import EnqueueResult, Job, JobState

logger = logging.getLogger(__name__)

# States that hold a dedupe marker
OUTSTANDING_STATES = (JobState.WAITING, JobState.DELAYED, JobState.ACTIVE)


class JobStore(ABC):
    """Abstract job store."""

    @abstractmethod
    async def add(self, job: Job) -> EnqueueResult:
        """
        Insert a job.

        When the job carries a dedupe key and an outstanding job with the
        same key exists, nothing is inserted and that job's id is returned
        with created=False.
        """
        pass

    @abstractmethod
    async def lease(self, queue_name: str, now: float, lease_seconds: float) -> Optional[Job]:
        """Promote due delayed jobs, then move the next ready job to active."""
        pass

    @abstractmethod
    async def complete(self, job: Job, result: Any, now: float) -> bool:
        """Mark a leased job completed. False if the lease was lost."""
        pass

    @abstractmethod
    async def fail(self, job: Job, error: str, now: float) -> bool:
        """Mark a leased job terminally failed. False if the lease was lost."""
        pass

    @abstractmethod
    async def schedule_retry(self, job: Job, error: str, run_at: float) -> bool:
        """Move a leased job to delayed. False if the lease was lost."""
        pass

    @abstractmethod
    async def reap_expired(self, queue_name: str, now: float) -> List[Job]:
        """
        Recover jobs whose lease expired.

        Jobs with attempts left go back to waiting, the rest are failed.
        Returns the recovered jobs in their new state.
        """
        pass

    @abstractmethod
    async def get(self, job_id: str) -> Optional[Job]:
        pass

    @abstractmethod
    async def cancel(self, job_id: str, now: float) -> bool:
        """Fail a waiting or delayed job with last_error="cancelled"."""
        pass

    @abstractmethod
    async def counts(self, queue_name: str) -> Dict[JobState, int]:
        pass

    @abstractmethod
    async def clean(self, queue_name: str, state: JobState, before: float) -> int:
        """Delete terminal jobs of a state finished before a timestamp."""
        pass

    @abstractmethod
    async def trim(self, queue_name: str, state: JobState, keep: int) -> int:
        """Delete the oldest terminal jobs of a state beyond the newest `keep`."""
        pass

    @abstractmethod
    async def set_paused(self, queue_name: str, paused: bool):
        pass

    @abstractmethod
    async def is_paused(self, queue_name: str) -> bool:
        pass

    async def close(self):
        pass


class MemoryJobStore(JobStore):
    """
    In-process job store.

    All mutations happen under one asyncio lock. Returned jobs are copies,
    so callers never mutate stored state directly.
    """

    def __init__(self):
        self._jobs: Dict[str, Job] = {}
        self._dedupe: Dict[str, str] = {}
        self._paused: Set[str] = set()
        self._seq = 0
        self._lock = asyncio.Lock()

    def _release_dedupe(self, job: Job):
        if job.dedupe_key and self._dedupe.get(job.dedupe_key) == job.id:
            del self._dedupe[job.dedupe_key]

    def _owned(self, job: Job) -> Optional[Job]:
        # The stored job, if the caller still holds its lease
        stored = self._jobs.get(job.id)
        if stored is None or stored.state != JobState.ACTIVE or stored.attempts != job.attempts:
            return None
        return stored

    async def add(self, job: Job) -> EnqueueResult:
        async with self._lock:
            if job.dedupe_key:
                existing_id = self._dedupe.get(job.dedupe_key)
                existing = self._jobs.get(existing_id) if existing_id else None
                if existing is not None and existing.state in OUTSTANDING_STATES:
                    return EnqueueResult(job_id=existing.id, created=False)
                self._dedupe[job.dedupe_key] = job.id

            self._seq += 1
            stored = copy.deepcopy(job)
            stored.seq = self._seq
            self._jobs[stored.id] = stored
            return EnqueueResult(job_id=stored.id, created=True)

    async def lease(self, queue_name: str, now: float, lease_seconds: float) -> Optional[Job]:
        async with self._lock:
            ready: List[Tuple[int, int, Job]] = []
            for job in self._jobs.values():
                if job.queue_name != queue_name:
                    continue
                if job.state == JobState.DELAYED and job.next_run_at is not None and job.next_run_at <= now:
                    job.state = JobState.WAITING
                    job.next_run_at = None
                if job.state == JobState.WAITING:
                    ready.append((job.priority, job.seq, job))
            if not ready:
                return None

            _, _, job = min(ready, key=lambda item: (item[0], item[1]))
            job.state = JobState.ACTIVE
            job.attempts += 1
            job.lease_expires_at = now + lease_seconds
            return copy.deepcopy(job)

    async def complete(self, job: Job, result: Any, now: float) -> bool:
        async with self._lock:
            stored = self._owned(job)
            if stored is None:
                return False
            stored.state = JobState.COMPLETED
            stored.result = result
            stored.finished_at = now
            stored.lease_expires_at = None
            self._release_dedupe(stored)
            return True

    async def fail(self, job: Job, error: str, now: float) -> bool:
        async with self._lock:
            stored = self._owned(job)
            if stored is None:
                return False
            stored.state = JobState.FAILED
            stored.last_error = error
            stored.finished_at = now
            stored.lease_expires_at = None
            self._release_dedupe(stored)
            return True

    async def schedule_retry(self, job: Job, error: str, run_at: float) -> bool:
        async with self._lock:
            stored = self._owned(job)
            if stored is None:
                return False
            stored.state = JobState.DELAYED
            stored.last_error = error
            stored.next_run_at = run_at
            stored.lease_expires_at = None
            return True

    async def reap_expired(self, queue_name: str, now: float) -> List[Job]:
        recovered = []
        async with self._lock:
            for job in self._jobs.values():
                if (
                    job.queue_name != queue_name
                    or job.state != JobState.ACTIVE
                    or job.lease_expires_at is None
                    or job.lease_expires_at > now
                ):
                    continue
                job.last_error = "lease expired"
                job.lease_expires_at = None
                if job.attempts >= job.max_attempts:
                    job.state = JobState.FAILED
                    job.finished_at = now
                    self._release_dedupe(job)
                else:
                    job.state = JobState.WAITING
                recovered.append(copy.deepcopy(job))
        return recovered

    async def get(self, job_id: str) -> Optional[Job]:
        async with self._lock:
            job = self._jobs.get(job_id)
            return copy.deepcopy(job) if job is not None else None

    async def cancel(self, job_id: str, now: float) -> bool:
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.state not in (JobState.WAITING, JobState.DELAYED):
                return False
            job.state = JobState.FAILED
            job.last_error = "cancelled"
            job.finished_at = now
            job.next_run_at = None
            self._release_dedupe(job)
            return True

    async def counts(self, queue_name: str) -> Dict[JobState, int]:
        async with self._lock:
            result = {state: 0 for state in JobState}
            for job in self._jobs.values():
                if job.queue_name == queue_name:
                    result[job.state] += 1
            return result

    async def clean(self, queue_name: str, state: JobState, before: float) -> int:
        async with self._lock:
            doomed = [
                job_id for job_id, job in self._jobs.items()
                if job.queue_name == queue_name
                and job.state == state
                and job.finished_at is not None
                and job.finished_at < before
            ]
            for job_id in doomed:
                del self._jobs[job_id]
            return len(doomed)

    async def trim(self, queue_name: str, state: JobState, keep: int) -> int:
        async with self._lock:
            finished = sorted(
                (
                    job for job in self._jobs.values()
                    if job.queue_name == queue_name and job.state == state
                ),
                key=lambda job: (job.finished_at or 0.0, job.seq),
            )
            doomed = finished[:max(len(finished) - keep, 0)]
            for job in doomed:
                del self._jobs[job.id]
            return len(doomed)

    async def set_paused(self, queue_name: str, paused: bool):
        async with self._lock:
            if paused:
                self._paused.add(queue_name)
            else:
                self._paused.discard(queue_name)

    async def is_paused(self, queue_name: str) -> bool:
        return queue_name in self._paused
