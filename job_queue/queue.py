"""
Job Queue - Durable Queue.

============================================================
PURPOSE
============================================================
Named, persistent FIFO of normalized events between the
chain event listener (producer) and the queue worker
(consumer).

BEHAVIOR:
- enqueue: new WAITING job carrying the kind and the payload
- dequeue: next due job, ACTIVE, attempt incremented
- ack: COMPLETED
- nack: DELAYED with exponential backoff while attempts
  remain, FAILED (dead letter) afterwards
- discard: FAILED immediately (permanent errors)

Jobs survive producer and consumer restarts because state
lives in the backend (Redis or SQL), never in this process.

============================================================
"""

import asyncio
import logging
import uuid
from datetime import timedelta
from typing import Any, Dict, List, Mapping, Optional, Union

from core.clock import ClockProtocol, get_clock
from core.exceptions import InvalidJobTransitionError
from data_ingestion.types import DomainEvent, EventKind

from .backends.base import QueueBackend
from .models import JobState, QueueJob, RetryPolicy
from .state_machine import JobStateMachine


logger = logging.getLogger(__name__)


class DurableQueue:
    """
    Producer and consumer API of the named queue.

    Usage:
        queue = DurableQueue(backend, name="tx-queue")
        job_id = await queue.enqueue(event)
        job = await queue.dequeue(timeout=5)
        await queue.ack(job)
    """

    def __init__(
        self,
        backend: QueueBackend,
        name: str = "tx-queue",
        default_policy: Optional[RetryPolicy] = None,
        clock: Optional[ClockProtocol] = None,
        poll_interval: float = 0.5,
    ) -> None:
        self._backend = backend
        self._name = name
        self._policy = default_policy or RetryPolicy()
        self._policy.validate()
        self._clock = clock or get_clock()
        self._poll_interval = poll_interval
        self._state_machine = JobStateMachine()

    @property
    def name(self) -> str:
        return self._name

    @property
    def backend(self) -> QueueBackend:
        return self._backend

    @property
    def default_policy(self) -> RetryPolicy:
        return self._policy

    # =========================================================
    # PRODUCER
    # =========================================================

    async def enqueue(
        self,
        event_or_kind: Union[DomainEvent, EventKind, str],
        payload: Optional[Mapping[str, Any]] = None,
        policy: Optional[RetryPolicy] = None,
    ) -> str:
        """
        Add a job; it survives process restarts once this returns.

        Accepts a DomainEvent, or an event kind plus its payload.

        Returns:
            The job id

        Raises:
            QueueUnavailableError: If the backing resource is unreachable
        """
        if isinstance(event_or_kind, DomainEvent):
            kind = event_or_kind.kind
            body = event_or_kind.to_payload()
        else:
            kind = EventKind.parse(event_or_kind)
            if payload is None:
                raise ValueError("payload is required when enqueuing by kind")
            body = dict(payload)

        now = self._clock.now()
        job = QueueJob(
            id=uuid.uuid4().hex,
            queue_name=self._name,
            kind=kind.value,
            payload=body,
            policy=policy or self._policy,
            created_at=now,
            available_at=now,
        )
        await self._backend.add(job)
        logger.debug(f"[queue:{self._name}] Enqueued {job.kind} job {job.id}")
        return job.id

    # =========================================================
    # CONSUMER
    # =========================================================

    async def dequeue(self, timeout: Optional[float] = None) -> Optional[QueueJob]:
        """
        Take the next due job.

        Args:
            timeout: Seconds to wait for a job. 0 returns at once,
                None waits until one is available.
        """
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        while True:
            job = await self._backend.claim_next(self._clock.now())
            if job is not None:
                logger.debug(
                    f"[queue:{self._name}] Delivered {job.kind} job {job.id} "
                    f"(attempt {job.attempt}/{job.policy.attempts})"
                )
                return job
            if deadline is not None and loop.time() >= deadline:
                return None
            sleep_for = self._poll_interval
            if deadline is not None:
                sleep_for = max(min(sleep_for, deadline - loop.time()), 0)
            await asyncio.sleep(sleep_for)

    async def _move(
        self,
        job: QueueJob,
        to_state: JobState,
        error: Optional[str] = None,
        available_at=None,
    ) -> QueueJob:
        from_state = job.state
        self._state_machine.transition(
            job, to_state, self._clock.now(), error=error, available_at=available_at
        )
        await self._backend.update(job, from_state)
        return job

    async def ack(self, job: QueueJob, receipt: Optional[Dict[str, Any]] = None) -> QueueJob:
        """Mark a delivered job completed."""
        job.receipt = receipt
        return await self._move(job, JobState.COMPLETED)

    async def nack(self, job: QueueJob, error: str) -> QueueJob:
        """
        Record a failed attempt.

        The job goes back to DELAYED for
        ``base_delay * 2^(attempt-1)`` while attempts remain,
        otherwise to FAILED.
        """
        if job.policy.can_retry(job.attempt):
            delay_ms = job.policy.delay_ms(job.attempt)
            available_at = self._clock.now() + timedelta(milliseconds=delay_ms)
            await self._move(job, JobState.DELAYED, error=error, available_at=available_at)
            logger.info(
                f"[queue:{self._name}] Job {job.id} attempt {job.attempt}/{job.policy.attempts} "
                f"failed, retrying in {delay_ms}ms: {error}"
            )
        else:
            await self._move(job, JobState.FAILED, error=error)
            logger.error(
                f"[queue:{self._name}] Job {job.id} failed after {job.attempt} attempts: {error}"
            )
        return job

    async def discard(self, job: QueueJob, error: str) -> QueueJob:
        """Fail a job without further attempts."""
        await self._move(job, JobState.FAILED, error=error)
        logger.error(f"[queue:{self._name}] Job {job.id} discarded: {error}")
        return job

    # =========================================================
    # INSPECTION / OPERATOR
    # =========================================================

    async def get_job(self, job_id: str) -> Optional[QueueJob]:
        return await self._backend.get(job_id)

    async def failed_jobs(self, limit: int = 100) -> List[QueueJob]:
        """Dead-lettered jobs, kept for operator inspection."""
        return await self._backend.list_by_state(JobState.FAILED, limit)

    async def requeue_failed(self, job_id: str) -> QueueJob:
        """
        Move a dead-lettered job back to WAITING with a fresh
        attempt budget.

        Raises:
            KeyError: If the job does not exist
            InvalidJobTransitionError: If the job is not FAILED
        """
        job = await self._backend.get(job_id)
        if job is None:
            raise KeyError(job_id)
        if job.state != JobState.FAILED:
            raise InvalidJobTransitionError(job.id, job.state.value, JobState.WAITING.value)
        await self._move(job, JobState.WAITING)
        logger.info(f"[queue:{self._name}] Requeued failed job {job.id}")
        return job

    async def counts(self) -> Dict[str, int]:
        counts = await self._backend.count_by_state()
        return {state.value: counts.get(state, 0) for state in JobState}

    async def recover_stalled(self) -> int:
        """
        Return ACTIVE jobs to WAITING.

        Call at worker start-up: jobs left ACTIVE belong to a
        consumer that stopped without acknowledging them. Being
        held as ACTIVE by the backend decides, not the state the
        record carries.
        """
        recovered = 0
        for job in await self._backend.list_active():
            if job.state != JobState.ACTIVE:
                logger.warning(
                    f"[queue:{self._name}] Job {job.id} held as active but recorded as "
                    f"{job.state.value}"
                )
                if job.state.is_terminal:
                    await self._backend.release_active(job.id)
                    continue
                job.state = JobState.ACTIVE
            await self._move(job, JobState.WAITING)
            recovered += 1
        if recovered:
            logger.warning(f"[queue:{self._name}] Recovered {recovered} stalled job(s)")
        return recovered

    async def close(self) -> None:
        await self._backend.close()
