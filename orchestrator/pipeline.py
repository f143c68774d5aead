"""
Orchestrator - Pipeline.

============================================================
RESPONSIBILITY
============================================================
Explicit wiring and lifecycle of the event pipeline.

    LogSource -> ChainEventListener -> DurableQueue
                                          |
                                     QueueWorker -> EntityStoreWriter -> store
                                                                           |
                                                      QueryEngine <--------+

Every component is constructed here and injected into its
consumers. There are no module-level client singletons.

============================================================
LIFECYCLE
============================================================
start(): launches the listener and worker loops as tasks
stop(): stops the listener, lets the worker finish its
        in-flight job, then closes queue and store clients

============================================================
"""

import asyncio
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from core.clock import ClockProtocol
from data_ingestion.listener import ChainEventListener, LogSource, QueueLogSource
from data_ingestion.normalizers import EventNormalizer
from entity_store import EntityStoreClient, EntityStoreWriter, StoreConfig, create_store_client
from job_queue import DurableQueue, QueueConfig, create_queue
from query_engine import QueryConfig, QueryEngine
from worker import HandlerRegistry, QueueWorker


logger = logging.getLogger(__name__)


# ============================================================
# CONFIGURATION
# ============================================================

@dataclass
class PipelineConfig:
    """Aggregated configuration of every component."""

    queue: QueueConfig = field(default_factory=QueueConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    query: QueryConfig = field(default_factory=QueryConfig)
    log_level: str = "INFO"
    log_format: str = "text"

    @classmethod
    def from_env(cls) -> "PipelineConfig":
        return cls(
            queue=QueueConfig.from_env(),
            store=StoreConfig.from_env(),
            query=QueryConfig.from_env(),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            log_format=os.getenv("LOG_FORMAT", "text").lower(),
        )

    def to_safe_dict(self) -> Dict[str, Any]:
        return {
            "queue": self.queue.to_safe_dict(),
            "store": self.store.to_safe_dict(),
            "query": {
                "protocol": self.query.protocol,
                "average_block_time_ms": self.query.average_block_time_ms,
                "window": self.query.window,
            },
            "log_level": self.log_level,
            "log_format": self.log_format,
        }


# ============================================================
# PIPELINE
# ============================================================

class Pipeline:
    """Container of the wired components."""

    def __init__(
        self,
        normalizer: EventNormalizer,
        queue: DurableQueue,
        store_client: EntityStoreClient,
        writer: EntityStoreWriter,
        registry: HandlerRegistry,
        worker: QueueWorker,
        source: LogSource,
        listener: ChainEventListener,
        query_engine: QueryEngine,
    ) -> None:
        self.normalizer = normalizer
        self.queue = queue
        self.store_client = store_client
        self.writer = writer
        self.registry = registry
        self.worker = worker
        self.source = source
        self.listener = listener
        self.query_engine = query_engine
        self._tasks: List[asyncio.Task] = []
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self, run_listener: bool = True, run_worker: bool = True) -> None:
        if self._running:
            logger.warning("[pipeline] Already running")
            return
        if run_worker:
            self._tasks.append(asyncio.create_task(self.worker.run(), name="queue-worker"))
        if run_listener:
            self._tasks.append(asyncio.create_task(self.listener.run(), name="chain-listener"))
        self._running = True
        logger.info(
            f"[pipeline] Started (listener={run_listener}, worker={run_worker}, "
            f"queue='{self.queue.name}', backend={self.queue.backend.name})"
        )

    async def stop(self) -> None:
        """Graceful shutdown: no new jobs, in-flight job drained."""
        if not self._running:
            return
        logger.info("[pipeline] Stopping...")
        await self.listener.stop()
        await self.worker.stop()

        results = await asyncio.gather(*self._tasks, return_exceptions=True)
        for task, result in zip(self._tasks, results):
            if isinstance(result, Exception):
                logger.error(f"[pipeline] Task {task.get_name()} ended with error: {result}")
        self._tasks.clear()

        await self.queue.close()
        await self.store_client.close()
        self._running = False
        logger.info("[pipeline] Stopped")

    async def get_status(self) -> Dict[str, Any]:
        return {
            "running": self._running,
            "listener": self.listener.get_stats(),
            "worker": self.worker.get_stats(),
            "writer": self.writer.get_stats(),
            "queue": await self.queue.counts(),
        }


def build_pipeline(
    config: PipelineConfig,
    clock: Optional[ClockProtocol] = None,
    queue: Optional[DurableQueue] = None,
    store_client: Optional[EntityStoreClient] = None,
    source: Optional[LogSource] = None,
) -> Pipeline:
    """
    Construct and wire every component.

    ``queue``, ``store_client`` and ``source`` override the ones
    the configuration would build.
    """
    normalizer = EventNormalizer()
    if queue is None:
        queue = create_queue(config.queue, clock=clock)
    if store_client is None:
        store_client = create_store_client(config.store, clock=clock)

    writer = EntityStoreWriter(
        store_client,
        ttl_policy=config.store.ttl_policy,
        protocol=config.query.protocol,
        dedup=config.store.dedup,
    )
    registry = HandlerRegistry()
    writer.register_default_handlers(registry)

    worker = QueueWorker(
        queue,
        registry,
        normalizer,
        dequeue_timeout=max(config.queue.poll_interval_seconds, 0.1),
    )
    if source is None:
        source = QueueLogSource()
    listener = ChainEventListener(source, normalizer, queue)
    query_engine = QueryEngine(store_client, normalizer, config=config.query, clock=clock)

    logger.info(f"[pipeline] Built with config: {config.to_safe_dict()}")
    return Pipeline(
        normalizer=normalizer,
        queue=queue,
        store_client=store_client,
        writer=writer,
        registry=registry,
        worker=worker,
        source=source,
        listener=listener,
        query_engine=query_engine,
    )
