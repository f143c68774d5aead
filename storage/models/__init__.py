"""
Storage Models Package.

Models:
- QueueJobRecord: rows of the SQL-backed durable queue
"""

from storage.models.base import Base, from_db_time, to_db_time
from storage.models.queue_job import QueueJobRecord


__all__ = [
    "Base",
    "QueueJobRecord",
    "from_db_time",
    "to_db_time",
]
