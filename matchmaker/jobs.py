"""Job queue for embedding generation.

`JobQueue` is the interface the profile path talks to. `AsyncioJobQueue` is an
in-process worker pool: enqueue schedules an asyncio task and returns at once,
a semaphore bounds how many jobs run together, and each job's attempts are
driven by tenacity with exponential backoff.
"""
from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable

from tenacity import AsyncRetrying, RetryCallState, RetryError, stop_after_attempt, wait_exponential

from .config import settings
from .domain import new_id, utcnow
from .errors import JobExhausted, NotFound

logger = logging.getLogger(__name__)


class JobStatus(str, Enum):
    """Queue-level job state."""
    WAITING = "waiting"
    ACTIVE = "active"
    FAILED = "failed"
    COMPLETED = "completed"


@dataclass
class EmbeddingJobPayload:
    user_id: str
    profile_id: str


@dataclass
class EmbeddingJob:
    """Bookkeeping for one enqueued payload."""
    payload: EmbeddingJobPayload
    max_attempts: int
    backoff_base: float
    id: str = field(default_factory=new_id)
    status: JobStatus = JobStatus.WAITING
    attempts: int = 0
    error: JobExhausted | None = None
    created_at: datetime = field(default_factory=utcnow)
    finished_at: datetime | None = None

    @property
    def user_id(self) -> str:
        return self.payload.user_id


JobHandler = Callable[[EmbeddingJobPayload], Awaitable[Any]]


class JobQueue(ABC):
    """Fire-and-forget job queue with per-job retry configuration."""

    @abstractmethod
    def enqueue(
        self,
        payload: EmbeddingJobPayload,
        *,
        max_attempts: int | None = None,
        backoff_base: float | None = None,
    ) -> str:
        """Schedule a job and return its id without waiting for it."""

    @abstractmethod
    def get_job(self, job_id: str) -> EmbeddingJob:
        ...

    @abstractmethod
    def latest_for_user(self, user_id: str) -> EmbeddingJob | None:
        ...

    def status(self, job_id: str) -> JobStatus:
        return self.get_job(job_id).status


class AsyncioJobQueue(JobQueue):
    """In-process asyncio worker pool.

    Only each user's newest job is kept once finished; a superseded job is
    dropped as soon as it completes, so `get_job` on it raises NotFound.

    Args:
        handler: Coroutine run for each payload; any exception counts as a
            failed attempt.
        concurrency: Maximum jobs running at once.
        max_backoff: Upper bound on a single backoff delay, in seconds.
        sleep: Awaitable used between attempts (injectable for tests).
    """

    def __init__(
        self,
        handler: JobHandler,
        *,
        concurrency: int | None = None,
        max_backoff: float | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._handler = handler
        self._semaphore = asyncio.Semaphore(concurrency or settings.queue.concurrency)
        self._max_backoff = max_backoff if max_backoff is not None else settings.queue.max_backoff
        self._sleep = sleep
        self._jobs: dict[str, EmbeddingJob] = {}
        self._latest: dict[str, EmbeddingJob] = {}
        self._tasks: set[asyncio.Task] = set()

    def enqueue(
        self,
        payload: EmbeddingJobPayload,
        *,
        max_attempts: int | None = None,
        backoff_base: float | None = None,
    ) -> str:
        job = EmbeddingJob(
            payload=payload,
            max_attempts=max_attempts or settings.queue.max_attempts,
            backoff_base=backoff_base if backoff_base is not None else settings.queue.backoff_base,
        )
        previous = self._latest.get(payload.user_id)
        if previous is not None and previous.finished_at is not None:
            del self._jobs[previous.id]
        self._jobs[job.id] = job
        self._latest[payload.user_id] = job

        task = asyncio.get_running_loop().create_task(self._run(job))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

        logger.info(f"Queued embedding job {job.id} for user {payload.user_id}, profile {payload.profile_id}")
        return job.id

    def get_job(self, job_id: str) -> EmbeddingJob:
        job = self._jobs.get(job_id)
        if job is None:
            raise NotFound(f"Job {job_id} not found")
        return job

    def latest_for_user(self, user_id: str) -> EmbeddingJob | None:
        return self._latest.get(user_id)

    @property
    def tracked_jobs(self) -> int:
        """Each user's newest job plus superseded ones still in flight."""
        return len(self._jobs)

    def _finish(self, job: EmbeddingJob, status: JobStatus) -> None:
        job.status = status
        job.finished_at = utcnow()
        if self._latest.get(job.user_id) is not job:
            self._jobs.pop(job.id, None)

    async def join(self) -> None:
        """Wait until every scheduled job has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """Let in-flight jobs finish; there is no cancellation."""
        pending = len(self._tasks)
        if pending:
            logger.info(f"Waiting for {pending} embedding jobs before shutdown")
        await self.join()

    def _log_retry(self, job: EmbeddingJob) -> Callable[[RetryCallState], None]:
        def before_sleep(retry_state: RetryCallState) -> None:
            outcome = retry_state.outcome
            error = outcome.exception() if outcome is not None else None
            delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
            logger.warning(
                f"Embedding job {job.id} attempt {retry_state.attempt_number}/{job.max_attempts} "
                f"failed: {error}. Retrying in {delay:.1f}s"
            )

        return before_sleep

    async def _run(self, job: EmbeddingJob) -> None:
        async with self._semaphore:
            job.status = JobStatus.ACTIVE
            retrying = AsyncRetrying(
                stop=stop_after_attempt(job.max_attempts),
                # backoff_base, 2x, 4x, ... seconds between attempts
                wait=wait_exponential(multiplier=job.backoff_base, exp_base=2, max=self._max_backoff),
                sleep=self._sleep,
                before_sleep=self._log_retry(job),
                reraise=False,
            )
            try:
                async for attempt in retrying:
                    with attempt:
                        job.attempts = attempt.retry_state.attempt_number
                        await self._handler(job.payload)
            except RetryError as e:
                last_error = e.last_attempt.exception()
                job.error = JobExhausted(
                    f"Embedding failed for user {job.user_id} after {job.attempts} attempts: {last_error}"
                )
                self._finish(job, JobStatus.FAILED)
                logger.error(str(job.error))
                return

            self._finish(job, JobStatus.COMPLETED)
            logger.info(f"Embedding job {job.id} completed for user {job.user_id} in {job.attempts} attempt(s)")
