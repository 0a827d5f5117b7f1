"""
Job Queue for the Quiz Lead Pipeline.

Named queues with a fixed pool of asyncio workers each, explicit retry
results, exponential backoff with jitter and lease recovery.
"""

import asyncio
import logging
import random
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from pydantic import BaseModel, ValidationError

from monitoring.metrics import (
    ACTIVE_JOBS,
    JOB_DURATION,
    JOBS_COMPLETED,
    JOBS_ENQUEUED,
    JOBS_FAILED,
    JOBS_RETRIED,
)

from .errors import JobRetriesExhausted, PayloadValidationError, UnknownQueue
from .models import (
    DEFAULT_PRIORITY,
    PAYLOAD_TYPES,
    EnqueueResult,
    Job,
    JobOptions,
    JobResult,
    JobState,
    QueueConfig,
    QueueStats,
    parse_payload,
)
from .store import JobStore

logger = logging.getLogger(__name__)

Handler = Callable[[BaseModel, Job], Awaitable[JobResult]]
FailedCallback = Callable[[Job, JobRetriesExhausted], Awaitable[None]]
AttemptFailedCallback = Callable[[Job, str, bool], Awaitable[None]]


def compute_backoff(
    config: QueueConfig,
    attempt: int,
    rand: Callable[[], float] = random.random,
) -> float:
    """
    Delay in seconds before retrying after a failed attempt.

    Exponential: base * 2^(attempt-1), scaled by a random factor in
    [1 - jitter, 1 + jitter] and capped at backoff_max_ms.
    Fixed: base, with the same jitter.

    Args:
        config: Queue configuration
        attempt: Number of the attempt that just failed (1-based)
        rand: Source of uniform [0, 1) numbers

    Returns:
        Delay in seconds
    """
    if config.backoff_type == "fixed":
        base_ms = float(config.backoff_ms)
    else:
        base_ms = config.backoff_ms * (2 ** max(attempt - 1, 0))
    factor = 1.0 + config.jitter * (2.0 * rand() - 1.0)
    return min(base_ms * factor, config.backoff_max_ms) / 1000.0


class JobQueue:
    """
    Multi-queue job scheduler.

    Usage:
        queue = JobQueue(MemoryJobStore(), configs)
        queue.register("ai-processing", handler)
        await queue.start()
        await queue.enqueue("ai-processing", payload)
    """

    def __init__(
        self,
        store: JobStore,
        configs: Dict[str, QueueConfig],
        poll_interval: float = 0.5,
        reaper_interval: float = 5.0,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.configs = configs
        self.poll_interval = poll_interval
        self.reaper_interval = reaper_interval
        self._clock = clock

        self._handlers: Dict[str, Handler] = {}
        self._failed_callbacks: List[FailedCallback] = []
        self._attempt_failed_callbacks: List[AttemptFailedCallback] = []
        self._wakeups: Dict[str, asyncio.Event] = {}
        self._tasks: List[asyncio.Task] = []
        self._running = False

    def _config(self, queue_name: str) -> QueueConfig:
        config = self.configs.get(queue_name)
        if config is None:
            raise UnknownQueue(queue_name)
        return config

    def register(self, queue_name: str, handler: Handler):
        """Attach the handler that processes a queue's jobs."""
        self._config(queue_name)
        self._handlers[queue_name] = handler

    def on_failed(self, callback: FailedCallback):
        """Subscribe to terminal job failures."""
        self._failed_callbacks.append(callback)

    def on_attempt_failed(self, callback: AttemptFailedCallback):
        """Subscribe to every failed attempt (callback gets job, error, will_retry)."""
        self._attempt_failed_callbacks.append(callback)

    # Producer side

    async def enqueue(
        self,
        queue_name: str,
        payload: Union[BaseModel, Dict[str, Any]],
        options: Optional[JobOptions] = None,
    ) -> EnqueueResult:
        """
        Add a job to a queue.

        Args:
            queue_name: Target queue
            payload: Payload model or dict; validated against the queue's type
            options: Delay, attempts, priority and dedupe key

        Returns:
            EnqueueResult (created=False when the dedupe key matched)

        Raises:
            UnknownQueue: No such queue
            PayloadValidationError: Payload does not fit the queue
            QueueUnavailable: Store unreachable
        """
        config = self._config(queue_name)
        options = options or JobOptions()

        payload_type = PAYLOAD_TYPES.get(queue_name)
        data = payload.model_dump() if isinstance(payload, BaseModel) else dict(payload)
        if payload_type is not None:
            try:
                data = payload_type.model_validate(data).model_dump(mode="json")
            except ValidationError as e:
                raise PayloadValidationError(queue_name, str(e)) from e

        now = self._clock()
        job = Job(
            queue_name=queue_name,
            payload=data,
            max_attempts=options.max_attempts or config.max_attempts,
            priority=options.priority if options.priority is not None else DEFAULT_PRIORITY,
            dedupe_key=options.dedupe_key,
            created_at=now,
        )
        if options.delay > 0:
            job.state = JobState.DELAYED
            job.next_run_at = now + options.delay

        result = await self.store.add(job)
        if result.created:
            JOBS_ENQUEUED.labels(queue=queue_name).inc()
            self._wake(queue_name)
            logger.debug(f"Enqueued job {result.job_id} on {queue_name}")
        else:
            logger.info(f"Job for {options.dedupe_key} already outstanding on {queue_name}: {result.job_id}")
        return result

    def _wake(self, queue_name: str):
        event = self._wakeups.get(queue_name)
        if event is not None:
            event.set()

    # Inspection and control

    async def get_stats(self, queue_name: str) -> QueueStats:
        self._config(queue_name)
        counts = await self.store.counts(queue_name)
        return QueueStats(
            name=queue_name,
            waiting=counts[JobState.WAITING],
            active=counts[JobState.ACTIVE],
            completed=counts[JobState.COMPLETED],
            failed=counts[JobState.FAILED],
            delayed=counts[JobState.DELAYED],
            paused=await self.store.is_paused(queue_name),
        )

    async def get_all_stats(self) -> Dict[str, QueueStats]:
        return {name: await self.get_stats(name) for name in self.configs}

    async def pause(self, queue_name: str):
        self._config(queue_name)
        await self.store.set_paused(queue_name, True)
        logger.info(f"Queue paused: {queue_name}")

    async def resume(self, queue_name: str):
        self._config(queue_name)
        await self.store.set_paused(queue_name, False)
        self._wake(queue_name)
        logger.info(f"Queue resumed: {queue_name}")

    async def get_job(self, job_id: str) -> Optional[Job]:
        return await self.store.get(job_id)

    async def cancel(self, job_id: str) -> bool:
        """Cancel a waiting or delayed job. Active jobs cannot be cancelled."""
        cancelled = await self.store.cancel(job_id, self._clock())
        if cancelled:
            logger.info(f"Cancelled job {job_id}")
            job = await self.store.get(job_id)
            if job is not None:
                await self._enforce_retention(job.queue_name, JobState.FAILED)
        return cancelled

    async def clean(self, queue_name: str, state: JobState = JobState.COMPLETED, older_than: float = 0.0) -> int:
        """Delete completed or failed jobs finished more than `older_than` seconds ago."""
        self._config(queue_name)
        if not state.is_terminal:
            raise ValueError(f"Only completed or failed jobs can be cleaned, not {state.value}")
        removed = await self.store.clean(queue_name, state, self._clock() - older_than)
        logger.info(f"Cleaned {removed} {state.value} jobs from {queue_name}")
        return removed

    async def _enforce_retention(self, queue_name: str, state: JobState):
        """Drop the oldest finished jobs beyond the queue's keep limit for `state`."""
        config = self.configs.get(queue_name)
        keep = config.keep(state) if config is not None else None
        if keep is None:
            return
        removed = await self.store.trim(queue_name, state, keep)
        if removed:
            logger.debug(f"Trimmed {removed} {state.value} jobs from {queue_name} (keep {keep})")

    # Worker side

    async def process_next(self, queue_name: str) -> bool:
        """
        Lease and run one ready job.

        Returns:
            True if a job was processed
        """
        config = self._config(queue_name)
        if await self.store.is_paused(queue_name):
            return False
        job = await self.store.lease(queue_name, self._clock(), config.lease_seconds)
        if job is None:
            return False
        await self._run(job, config)
        return True

    async def _run(self, job: Job, config: QueueConfig):
        handler = self._handlers.get(job.queue_name)
        ACTIVE_JOBS.labels(queue=job.queue_name).inc()
        start = time.perf_counter()
        try:
            if handler is None:
                result = JobResult.fail(f"no handler registered for {job.queue_name}")
            else:
                result = await self._invoke(handler, job, config)
        finally:
            ACTIVE_JOBS.labels(queue=job.queue_name).dec()
            JOB_DURATION.labels(queue=job.queue_name).observe(time.perf_counter() - start)

        now = self._clock()
        if result.status == "ok":
            if await self.store.complete(job, result.value, now):
                JOBS_COMPLETED.labels(queue=job.queue_name).inc()
                logger.debug(f"Job {job.id} completed on attempt {job.attempts}")
                await self._enforce_retention(job.queue_name, JobState.COMPLETED)
            else:
                logger.warning(f"Job {job.id} finished after its lease was lost")
            return

        await self._record_failure(job, config, result.error or "unknown error", retryable=result.status == "retry")

    async def _invoke(self, handler: Handler, job: Job, config: QueueConfig) -> JobResult:
        try:
            payload = parse_payload(job.payload)
            result = await asyncio.wait_for(handler(payload, job), config.job_timeout)
        except asyncio.TimeoutError:
            return JobResult.retry(f"handler timed out after {config.job_timeout}s")
        except Exception as e:
            logger.exception(f"Handler for {job.queue_name} raised on job {job.id}")
            return JobResult.retry(f"{type(e).__name__}: {e}")
        if not isinstance(result, JobResult):
            return JobResult.ok(result)
        return result

    async def _record_failure(self, job: Job, config: QueueConfig, error: str, retryable: bool):
        now = self._clock()
        will_retry = retryable and job.attempts < job.max_attempts
        if will_retry:
            delay = compute_backoff(config, job.attempts)
            if not await self.store.schedule_retry(job, error, now + delay):
                logger.warning(f"Job {job.id} lease lost before retry could be scheduled")
                return
            JOBS_RETRIED.labels(queue=job.queue_name).inc()
            logger.warning(
                f"Job {job.id} on {job.queue_name} failed attempt {job.attempts}/{job.max_attempts}, "
                f"retrying in {delay:.2f}s: {error}"
            )
        else:
            if not await self.store.fail(job, error, now):
                logger.warning(f"Job {job.id} lease lost before failure could be recorded")
                return
            JOBS_FAILED.labels(queue=job.queue_name).inc()
            logger.error(
                f"Job {job.id} on {job.queue_name} failed permanently after "
                f"{job.attempts} attempts: {error}"
            )

        job.last_error = error
        await self._emit_attempt_failed(job, error, will_retry)
        if not will_retry:
            await self._emit_failed(job, error)
            await self._enforce_retention(job.queue_name, JobState.FAILED)

    async def _emit_attempt_failed(self, job: Job, error: str, will_retry: bool):
        for callback in self._attempt_failed_callbacks:
            try:
                await callback(job, error, will_retry)
            except Exception:
                logger.exception(f"on_attempt_failed subscriber raised for job {job.id}")

    async def _emit_failed(self, job: Job, error: str):
        exhausted = JobRetriesExhausted(job.id, job.queue_name, job.attempts, error)
        for callback in self._failed_callbacks:
            try:
                await callback(job, exhausted)
            except Exception:
                logger.exception(f"on_failed subscriber raised for job {job.id}")

    async def reap(self) -> int:
        """Recover expired leases on every queue. Returns the number recovered."""
        recovered = 0
        for queue_name in self.configs:
            for job in await self.store.reap_expired(queue_name, self._clock()):
                recovered += 1
                will_retry = job.state == JobState.WAITING
                logger.warning(f"Recovered job {job.id} with expired lease (retry={will_retry})")
                await self._emit_attempt_failed(job, "lease expired", will_retry)
                if not will_retry:
                    JOBS_FAILED.labels(queue=queue_name).inc()
                    await self._emit_failed(job, "lease expired")
                else:
                    self._wake(queue_name)
            await self._enforce_retention(queue_name, JobState.FAILED)
        return recovered

    async def _worker(self, queue_name: str, index: int):
        wakeup = self._wakeups[queue_name]
        logger.debug(f"Worker {queue_name}#{index} started")
        while self._running:
            try:
                processed = await self.process_next(queue_name)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception(f"Worker {queue_name}#{index} failed to process a job")
                processed = False
            if processed:
                continue
            wakeup.clear()
            try:
                await asyncio.wait_for(wakeup.wait(), self.poll_interval)
            except asyncio.TimeoutError:
                pass

    async def _reaper(self):
        while self._running:
            await asyncio.sleep(self.reaper_interval)
            try:
                await self.reap()
            except Exception:
                logger.exception("Lease reaper failed")

    async def start(self):
        """Start worker pools for every queue with a registered handler."""
        if self._running:
            return
        self._running = True
        for queue_name, config in self.configs.items():
            if queue_name not in self._handlers:
                logger.warning(f"No handler registered for {queue_name}; not starting workers")
                continue
            self._wakeups[queue_name] = asyncio.Event()
            for index in range(config.concurrency):
                self._tasks.append(asyncio.create_task(self._worker(queue_name, index)))
        self._tasks.append(asyncio.create_task(self._reaper()))
        logger.info(f"Job queue started with {len(self._tasks) - 1} workers")

    async def stop(self):
        """Stop workers. In-flight jobs are cancelled and recovered by lease expiry."""
        if not self._running:
            return
        self._running = False
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        self._wakeups = {}
        logger.info("Job queue stopped")

    async def wait_until_idle(self, queue_names: Optional[List[str]] = None, timeout: float = 10.0):
        """
        Wait until the given queues hold no waiting, delayed or active jobs.

        Raises:
            asyncio.TimeoutError: Still busy after `timeout` seconds
        """
        names = queue_names or list(self.configs)

        async def _idle() -> bool:
            for name in names:
                stats = await self.get_stats(name)
                if stats.waiting or stats.active or stats.delayed:
                    return False
            return True

        async def _poll():
            while not await _idle():
                await asyncio.sleep(0.01)

        await asyncio.wait_for(_poll(), timeout)
