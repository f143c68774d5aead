"""
Job Queue - Backends.

- redis_backend: Redis lists + sorted set
- sql_backend: SQLAlchemy table (SQLite / PostgreSQL)
"""

from .base import QueueBackend
from .redis_backend import RedisQueueBackend
from .sql_backend import SqlQueueBackend


__all__ = [
    "QueueBackend",
    "RedisQueueBackend",
    "SqlQueueBackend",
]
