"""
Job Queue Package.

Durable, named job queue between the chain event listener
and the queue worker, with per-job retry and backoff.
"""

from .backends import QueueBackend, RedisQueueBackend, SqlQueueBackend
from .config import QueueConfig
from .models import BackoffType, JobState, QueueJob, RetryPolicy
from .queue import DurableQueue
from .state_machine import VALID_TRANSITIONS, JobStateMachine


def create_queue(config: QueueConfig, clock=None) -> DurableQueue:
    """Build the DurableQueue described by ``config``."""
    if config.backend == "sql":
        backend: QueueBackend = SqlQueueBackend.from_url(config.database_url, config.queue_name)
    else:
        backend = RedisQueueBackend.from_config(config)
    return DurableQueue(
        backend,
        name=config.queue_name,
        default_policy=config.retry_policy,
        clock=clock,
        poll_interval=config.poll_interval_seconds,
    )


__all__ = [
    "BackoffType",
    "DurableQueue",
    "JobState",
    "JobStateMachine",
    "QueueBackend",
    "QueueConfig",
    "QueueJob",
    "RedisQueueBackend",
    "RetryPolicy",
    "SqlQueueBackend",
    "VALID_TRANSITIONS",
    "create_queue",
]
