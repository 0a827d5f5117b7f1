"""
Redis-backed job store.

Layout (all keys under a prefix):
- job:<id>                JSON document of the job
- q:<queue>:<state>       sorted set of job ids per state
- dedupe:<key>            id of the outstanding job carrying a dedupe key
- seq                     enqueue sequence counter
- paused                  set of paused queue names

State changes run under WATCH/MULTI on the job document so two workers
can never both lease the same job.
"""

import contextlib
import json
import logging
from typing import Any, Callable, Dict, List, Optional

import redis.asyncio as aioredis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError
from redis.exceptions import WatchError

from .errors import QueueUnavailable
from .models import EnqueueResult, Job, JobState
from .store import OUTSTANDING_STATES, JobStore

logger = logging.getLogger(__name__)

# Waiting jobs sort by priority first, then enqueue order
PRIORITY_WEIGHT = 1e12


class RedisJobStore(JobStore):
    """Job store shared by every process pointing at the same Redis."""

    def __init__(self, client: aioredis.Redis, prefix: str = "quizlead"):
        self._redis = client
        self.prefix = prefix

    @classmethod
    def from_url(cls, url: str, prefix: str = "quizlead") -> "RedisJobStore":
        client = aioredis.from_url(url, decode_responses=True)
        logger.info(f"Redis job store configured: {url}")
        return cls(client, prefix=prefix)

    # Keys

    def _job_key(self, job_id: str) -> str:
        return f"{self.prefix}:job:{job_id}"

    def _state_key(self, queue_name: str, state: JobState) -> str:
        return f"{self.prefix}:q:{queue_name}:{state.value}"

    def _dedupe_key(self, key: str) -> str:
        return f"{self.prefix}:dedupe:{key}"

    @staticmethod
    def _score(job: Job) -> float:
        if job.state == JobState.WAITING:
            return job.priority * PRIORITY_WEIGHT + job.seq
        if job.state == JobState.DELAYED:
            return job.next_run_at or 0.0
        if job.state == JobState.ACTIVE:
            return job.lease_expires_at or 0.0
        return job.finished_at or 0.0

    @contextlib.asynccontextmanager
    async def _available(self):
        try:
            yield
        except (RedisConnectionError, RedisTimeoutError) as e:
            logger.error(f"Redis job store unavailable: {e}")
            raise QueueUnavailable(str(e)) from e

    async def _load(self, job_id: str) -> Optional[Job]:
        raw = await self._redis.get(self._job_key(job_id))
        return Job.from_dict(json.loads(raw)) if raw else None

    def _write(self, pipe, job: Job, old_state: Optional[JobState]):
        # Caller has called pipe.multi()
        pipe.set(self._job_key(job.id), json.dumps(job.to_dict(), default=str))
        if old_state is not None and old_state != job.state:
            pipe.zrem(self._state_key(job.queue_name, old_state), job.id)
        pipe.zadd(self._state_key(job.queue_name, job.state), {job.id: self._score(job)})
        if job.state.is_terminal and job.dedupe_key:
            pipe.delete(self._dedupe_key(job.dedupe_key))

    async def _update(self, job_id: str, change: Callable[[Job], bool]) -> Optional[Job]:
        """Apply `change` to a job atomically; None if it declined or the job is gone."""
        key = self._job_key(job_id)
        async with self._redis.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(key)
                    raw = await pipe.get(key)
                    if raw is None:
                        await pipe.unwatch()
                        return None
                    job = Job.from_dict(json.loads(raw))
                    old_state = job.state
                    if not change(job):
                        await pipe.unwatch()
                        return None
                    pipe.multi()
                    self._write(pipe, job, old_state)
                    await pipe.execute()
                    return job
                except WatchError:
                    continue

    # JobStore

    async def add(self, job: Job) -> EnqueueResult:
        async with self._available():
            job.seq = await self._redis.incr(f"{self.prefix}:seq")
            if not job.dedupe_key:
                async with self._redis.pipeline(transaction=True) as pipe:
                    self._write(pipe, job, None)
                    await pipe.execute()
                return EnqueueResult(job_id=job.id, created=True)

            marker = self._dedupe_key(job.dedupe_key)
            async with self._redis.pipeline(transaction=True) as pipe:
                while True:
                    try:
                        await pipe.watch(marker)
                        existing_id = await pipe.get(marker)
                        if existing_id:
                            existing = await self._load(existing_id)
                            if existing is not None and existing.state in OUTSTANDING_STATES:
                                await pipe.unwatch()
                                return EnqueueResult(job_id=existing.id, created=False)
                        pipe.multi()
                        pipe.set(marker, job.id)
                        self._write(pipe, job, None)
                        await pipe.execute()
                        return EnqueueResult(job_id=job.id, created=True)
                    except WatchError:
                        continue

    async def lease(self, queue_name: str, now: float, lease_seconds: float) -> Optional[Job]:
        async with self._available():
            due = await self._redis.zrangebyscore(
                self._state_key(queue_name, JobState.DELAYED), "-inf", now
            )
            for job_id in due:
                await self._update(job_id, lambda j: _promote(j, now))

            waiting_key = self._state_key(queue_name, JobState.WAITING)
            while True:
                candidates = await self._redis.zrange(waiting_key, 0, 4)
                if not candidates:
                    return None
                for job_id in candidates:
                    leased = await self._update(job_id, lambda j: _activate(j, now, lease_seconds))
                    if leased is not None:
                        return leased
                    # Lost the race or stale index entry
                    job = await self._load(job_id)
                    if job is None or job.state != JobState.WAITING:
                        await self._redis.zrem(waiting_key, job_id)

    async def complete(self, job: Job, result: Any, now: float) -> bool:
        def change(stored: Job) -> bool:
            if not _owns(stored, job):
                return False
            stored.state = JobState.COMPLETED
            stored.result = result
            stored.finished_at = now
            stored.lease_expires_at = None
            return True

        async with self._available():
            return await self._update(job.id, change) is not None

    async def fail(self, job: Job, error: str, now: float) -> bool:
        def change(stored: Job) -> bool:
            if not _owns(stored, job):
                return False
            stored.state = JobState.FAILED
            stored.last_error = error
            stored.finished_at = now
            stored.lease_expires_at = None
            return True

        async with self._available():
            return await self._update(job.id, change) is not None

    async def schedule_retry(self, job: Job, error: str, run_at: float) -> bool:
        def change(stored: Job) -> bool:
            if not _owns(stored, job):
                return False
            stored.state = JobState.DELAYED
            stored.last_error = error
            stored.next_run_at = run_at
            stored.lease_expires_at = None
            return True

        async with self._available():
            return await self._update(job.id, change) is not None

    async def reap_expired(self, queue_name: str, now: float) -> List[Job]:
        def change(stored: Job) -> bool:
            if stored.state != JobState.ACTIVE or (stored.lease_expires_at or 0) > now:
                return False
            stored.last_error = "lease expired"
            stored.lease_expires_at = None
            if stored.attempts >= stored.max_attempts:
                stored.state = JobState.FAILED
                stored.finished_at = now
            else:
                stored.state = JobState.WAITING
            return True

        recovered = []
        async with self._available():
            expired = await self._redis.zrangebyscore(
                self._state_key(queue_name, JobState.ACTIVE), "-inf", now
            )
            for job_id in expired:
                job = await self._update(job_id, change)
                if job is not None:
                    recovered.append(job)
        return recovered

    async def get(self, job_id: str) -> Optional[Job]:
        async with self._available():
            return await self._load(job_id)

    async def cancel(self, job_id: str, now: float) -> bool:
        def change(stored: Job) -> bool:
            if stored.state not in (JobState.WAITING, JobState.DELAYED):
                return False
            stored.state = JobState.FAILED
            stored.last_error = "cancelled"
            stored.finished_at = now
            stored.next_run_at = None
            return True

        async with self._available():
            return await self._update(job_id, change) is not None

    async def counts(self, queue_name: str) -> Dict[JobState, int]:
        async with self._available():
            async with self._redis.pipeline(transaction=False) as pipe:
                for state in JobState:
                    pipe.zcard(self._state_key(queue_name, state))
                values = await pipe.execute()
        return dict(zip(JobState, values))

    async def clean(self, queue_name: str, state: JobState, before: float) -> int:
        key = self._state_key(queue_name, state)
        async with self._available():
            doomed = await self._redis.zrangebyscore(key, "-inf", f"({before}")
            if not doomed:
                return 0
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.delete(*[self._job_key(job_id) for job_id in doomed])
                pipe.zrem(key, *doomed)
                await pipe.execute()
        return len(doomed)

    async def trim(self, queue_name: str, state: JobState, keep: int) -> int:
        # Terminal sets are scored by finished_at, oldest first
        key = self._state_key(queue_name, state)
        async with self._available():
            excess = await self._redis.zcard(key) - keep
            if excess <= 0:
                return 0
            doomed = await self._redis.zrange(key, 0, excess - 1)
            if not doomed:
                return 0
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.delete(*[self._job_key(job_id) for job_id in doomed])
                pipe.zrem(key, *doomed)
                await pipe.execute()
        return len(doomed)

    async def set_paused(self, queue_name: str, paused: bool):
        async with self._available():
            if paused:
                await self._redis.sadd(f"{self.prefix}:paused", queue_name)
            else:
                await self._redis.srem(f"{self.prefix}:paused", queue_name)

    async def is_paused(self, queue_name: str) -> bool:
        async with self._available():
            return bool(await self._redis.sismember(f"{self.prefix}:paused", queue_name))

    async def close(self):
        await self._redis.aclose()


def _owns(stored: Job, leased: Job) -> bool:
    return stored.state == JobState.ACTIVE and stored.attempts == leased.attempts


def _promote(job: Job, now: float) -> bool:
    if job.state != JobState.DELAYED or (job.next_run_at or 0) > now:
        return False
    job.state = JobState.WAITING
    job.next_run_at = None
    return True


def _activate(job: Job, now: float, lease_seconds: float) -> bool:
    if job.state != JobState.WAITING:
        return False
    job.state = JobState.ACTIVE
    job.attempts += 1
    job.lease_expires_at = now + lease_seconds
    return True
