"""
Worker Package.

Single-concurrency queue consumer that stores each event in
the entity store.
"""

from .registry import EventHandler, HandlerRegistry
from .worker import WORKER_EVENTS, QueueWorker


__all__ = [
    "EventHandler",
    "HandlerRegistry",
    "QueueWorker",
    "WORKER_EVENTS",
]
