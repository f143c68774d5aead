"""
Data Ingestion - Chain Event Listener.

============================================================
RESPONSIBILITY
============================================================
Single long-lived loop between the chain subscriber and the
durable queue.

- Receives decoded lending pool logs from a LogSource
- Normalizes each log into a DomainEvent
- Enqueues one job per event and moves on

The listener never waits for a job to be processed: enqueue
returns once the queue has persisted the job.

============================================================
FAILURE HANDLING
============================================================
- Malformed log: dropped, logged, counted. Loop continues.
- Queue unreachable: logged, counted. Loop continues; the
  event is lost for this listener.

============================================================
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, Optional

from core.exceptions import InfrastructureError, MalformedEventError
from data_ingestion.normalizers import EventNormalizer
from data_ingestion.types import RawChainLog


logger = logging.getLogger(__name__)


# =============================================================
# LOG SOURCES
# =============================================================

class LogSource(ABC):
    """Async stream of decoded chain logs."""

    @abstractmethod
    def __aiter__(self) -> AsyncIterator[RawChainLog]:
        pass

    async def close(self) -> None:
        """Stop producing logs."""
        pass


_CLOSED = object()


class QueueLogSource(LogSource):
    """
    LogSource fed by an external RPC subscriber.

    Usage:
        source = QueueLogSource()
        await source.push(RawChainLog("Supply", args, tx_hash))
        ...
        await source.close()
    """

    def __init__(self, maxsize: int = 0) -> None:
        self._queue: "asyncio.Queue[Any]" = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def push(self, log: RawChainLog) -> None:
        if self._closed:
            raise RuntimeError("Log source is closed")
        await self._queue.put(log)

    def push_nowait(self, log: RawChainLog) -> None:
        if self._closed:
            raise RuntimeError("Log source is closed")
        self._queue.put_nowait(log)

    async def close(self) -> None:
        if not self._closed:
            self._closed = True
            await self._queue.put(_CLOSED)

    async def __aiter__(self) -> AsyncIterator[RawChainLog]:
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield item


# =============================================================
# LISTENER
# =============================================================

class ChainEventListener:
    """
    Normalizes chain logs and enqueues them for the worker.

    ``queue`` is anything with an async ``enqueue(event)`` method,
    normally a ``job_queue.DurableQueue``.
    """

    def __init__(
        self,
        source: LogSource,
        normalizer: EventNormalizer,
        queue: Any,
        name: str = "lending-pool",
    ) -> None:
        self._source = source
        self._normalizer = normalizer
        self._queue = queue
        self._name = name
        self._running = False
        self._started_at: Optional[datetime] = None
        self._last_event_at: Optional[datetime] = None
        self._received = 0
        self._enqueued = 0
        self._dropped = 0
        self._enqueue_failures = 0

    @property
    def is_running(self) -> bool:
        return self._running

    async def handle_log(self, log: RawChainLog) -> Optional[str]:
        """
        Normalize and enqueue one log.

        Returns:
            The job id, or None when the log was dropped or could
            not be enqueued
        """
        self._received += 1
        try:
            event = self._normalizer.normalize_log(log)
        except MalformedEventError as e:
            self._dropped += 1
            logger.warning(f"[listener:{self._name}] Dropping malformed log: {e}")
            return None

        try:
            job_id = await self._queue.enqueue(event)
        except InfrastructureError as e:
            self._enqueue_failures += 1
            logger.error(
                f"[listener:{self._name}] Failed to enqueue {event.kind.value} "
                f"from tx {event.tx_hash}: {e}"
            )
            return None

        self._enqueued += 1
        self._last_event_at = datetime.now(timezone.utc)
        logger.debug(f"[listener:{self._name}] {event.kind.value} tx={event.tx_hash} -> job {job_id}")
        return job_id

    async def run(self) -> None:
        """Consume the source until it ends or stop() is called."""
        self._running = True
        self._started_at = datetime.now(timezone.utc)
        logger.info(f"[listener:{self._name}] Listening for {self._normalizer.supported_events()}")
        try:
            async for log in self._source:
                await self.handle_log(log)
                if not self._running:
                    break
        finally:
            self._running = False
            logger.info(
                f"[listener:{self._name}] Stopped "
                f"(received={self._received}, enqueued={self._enqueued}, "
                f"dropped={self._dropped}, enqueue_failures={self._enqueue_failures})"
            )

    async def stop(self) -> None:
        self._running = False
        await self._source.close()

    def get_stats(self) -> Dict[str, Any]:
        return {
            "name": self._name,
            "running": self._running,
            "received": self._received,
            "enqueued": self._enqueued,
            "dropped": self._dropped,
            "enqueue_failures": self._enqueue_failures,
            "started_at": self._started_at.isoformat() if self._started_at else None,
            "last_event_at": self._last_event_at.isoformat() if self._last_event_at else None,
        }
