"""
Worker - Queue Worker.

============================================================
RESPONSIBILITY
============================================================
Consumes the durable queue one job at a time and writes each
event to the entity store.

PER JOB:
1. Resolve the handler for the job's event kind
2. Rebuild the DomainEvent from the job payload
3. Run the handler (one store write)
4. ack on success, nack on failure

Retry timing belongs to the queue: the worker never sleeps,
counts attempts or re-enqueues by itself.

============================================================
FAILURE CLASSES
============================================================
- No handler for the kind: discarded, not retried
- Payload cannot be decoded: discarded, not retried
- Handler raised: nack (retried with backoff, dead-lettered
  once attempts are spent)
- Queue unreachable: logged; the loop keeps polling and jobs
  left ACTIVE are recovered at the next start
- Any other error: logged and counted; the loop keeps running

============================================================
"""

import asyncio
import inspect
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from core.exceptions import (
    HandlerNotFoundError,
    InfrastructureError,
    MalformedEventError,
)
from data_ingestion.normalizers import EventNormalizer
from entity_store.models import EntityReceipt
from job_queue.models import QueueJob
from job_queue.queue import DurableQueue

from .registry import HandlerRegistry


logger = logging.getLogger(__name__)


WORKER_EVENTS = ("completed", "failed")


class QueueWorker:
    """
    Single-concurrency consumer of the durable queue.

    Usage:
        worker = QueueWorker(queue, registry, normalizer)
        worker.on("completed", lambda job_id, receipt: ...)
        worker.on("failed", lambda job, error: ...)
        task = asyncio.create_task(worker.run())
        ...
        await worker.stop()
    """

    def __init__(
        self,
        queue: DurableQueue,
        registry: HandlerRegistry,
        normalizer: EventNormalizer,
        name: str = "tx-worker",
        dequeue_timeout: float = 1.0,
        error_backoff_seconds: float = 1.0,
        recover_on_start: bool = True,
    ) -> None:
        self._queue = queue
        self._registry = registry
        self._normalizer = normalizer
        self._name = name
        self._dequeue_timeout = dequeue_timeout
        self._error_backoff_seconds = error_backoff_seconds
        self._recover_on_start = recover_on_start

        self._running = False
        self._idle = asyncio.Event()
        self._idle.set()
        self._current_job: Optional[QueueJob] = None
        self._callbacks: Dict[str, List[Callable]] = {event: [] for event in WORKER_EVENTS}

        self._started_at: Optional[datetime] = None
        self._processed = 0
        self._completed = 0
        self._failed_attempts = 0
        self._discarded = 0
        self._dead_lettered = 0
        self._queue_errors = 0
        self._unexpected_errors = 0

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def concurrency(self) -> int:
        return 1

    # --------------------------------------------------------
    # CALLBACKS
    # --------------------------------------------------------

    def on(self, event: str, callback: Callable) -> None:
        """
        Register a listener.

        - "completed": callback(job_id, receipt)
        - "failed": callback(job, error)
        """
        if event not in self._callbacks:
            raise ValueError(f"Unknown worker event '{event}', expected one of {WORKER_EVENTS}")
        self._callbacks[event].append(callback)

    async def _emit(self, event: str, *args: Any) -> None:
        for callback in self._callbacks[event]:
            try:
                result = callback(*args)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"[worker:{self._name}] {event} callback error: {e}")

    # --------------------------------------------------------
    # PROCESSING
    # --------------------------------------------------------

    async def _discard(self, job: QueueJob, error: Exception) -> None:
        self._discarded += 1
        await self._queue.discard(job, f"{type(error).__name__}: {error}")
        await self._emit("failed", job, error)

    async def process(self, job: QueueJob) -> Optional[EntityReceipt]:
        """
        Process one delivered job end to end.

        Returns:
            The store receipt on success, None otherwise
        """
        self._processed += 1

        try:
            handler = self._registry.get(job.kind)
        except HandlerNotFoundError as e:
            logger.error(f"[worker:{self._name}] Job {job.id}: {e}")
            await self._discard(job, e)
            return None

        try:
            event = self._normalizer.from_payload(job.kind, job.payload)
        except MalformedEventError as e:
            logger.error(f"[worker:{self._name}] Job {job.id} has an undecodable payload: {e}")
            await self._discard(job, e)
            return None

        try:
            receipt = await handler(event)
        except Exception as e:
            self._failed_attempts += 1
            logger.warning(
                f"[worker:{self._name}] Job {job.id} ({job.kind}) attempt "
                f"{job.attempt}/{job.policy.attempts} failed: {type(e).__name__}: {e}"
            )
            await self._queue.nack(job, f"{type(e).__name__}: {e}")
            if job.state.is_terminal:
                self._dead_lettered += 1
            await self._emit("failed", job, e)
            return None

        await self._queue.ack(job, receipt.to_dict())
        self._completed += 1
        logger.info(
            f"[worker:{self._name}] Job {job.id} ({job.kind}) completed on attempt "
            f"{job.attempt}: entity {receipt.entity_key}"
        )
        await self._emit("completed", job.id, receipt)
        return receipt

    # --------------------------------------------------------
    # LIFECYCLE
    # --------------------------------------------------------

    async def run(self) -> None:
        """Process jobs until stop() is called."""
        self._running = True
        self._started_at = datetime.now(timezone.utc)
        logger.info(
            f"[worker:{self._name}] Started on queue '{self._queue.name}' "
            f"(handlers: {self._registry.kinds()})"
        )

        if self._recover_on_start:
            try:
                await self._queue.recover_stalled()
            except InfrastructureError as e:
                self._queue_errors += 1
                logger.error(f"[worker:{self._name}] Stalled job recovery failed: {e}")
            except Exception as e:
                self._unexpected_errors += 1
                logger.error(
                    f"[worker:{self._name}] Stalled job recovery failed: {type(e).__name__}: {e}",
                    exc_info=True,
                )

        try:
            while self._running:
                try:
                    job = await self._queue.dequeue(timeout=self._dequeue_timeout)
                except InfrastructureError as e:
                    self._queue_errors += 1
                    logger.error(f"[worker:{self._name}] Dequeue failed: {e}")
                    await asyncio.sleep(self._error_backoff_seconds)
                    continue
                except Exception as e:
                    self._unexpected_errors += 1
                    logger.error(
                        f"[worker:{self._name}] Dequeue failed: {type(e).__name__}: {e}",
                        exc_info=True,
                    )
                    await asyncio.sleep(self._error_backoff_seconds)
                    continue

                if job is None:
                    continue

                self._idle.clear()
                self._current_job = job
                try:
                    await self.process(job)
                except InfrastructureError as e:
                    self._queue_errors += 1
                    logger.error(
                        f"[worker:{self._name}] Could not record outcome of job {job.id}: {e}"
                    )
                except Exception as e:
                    # The job stays ACTIVE and is recovered at the next start.
                    self._unexpected_errors += 1
                    logger.error(
                        f"[worker:{self._name}] Job {job.id} left unfinished: {type(e).__name__}: {e}",
                        exc_info=True,
                    )
                finally:
                    self._current_job = None
                    self._idle.set()
        finally:
            self._running = False
            logger.info(f"[worker:{self._name}] Stopped ({self._processed} jobs processed)")

    async def stop(self) -> None:
        """Stop taking jobs and wait for the in-flight job to finish."""
        self._running = False
        await self._idle.wait()

    def get_stats(self) -> Dict[str, Any]:
        return {
            "name": self._name,
            "queue": self._queue.name,
            "running": self._running,
            "concurrency": self.concurrency,
            "current_job": self._current_job.id if self._current_job else None,
            "processed": self._processed,
            "completed": self._completed,
            "failed_attempts": self._failed_attempts,
            "discarded": self._discarded,
            "dead_lettered": self._dead_lettered,
            "queue_errors": self._queue_errors,
            "unexpected_errors": self._unexpected_errors,
            "started_at": self._started_at.isoformat() if self._started_at else None,
        }
