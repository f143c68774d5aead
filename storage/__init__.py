"""
Storage Package.

SQL persistence used by the durable queue's SQL backend.

Modules:
- database: Engine, sessions and transactions
- models/: ORM tables
"""

from storage.database import (
    create_all_tables,
    create_database_engine,
    create_session_factory,
    transaction_scope,
    verify_connection,
)
from storage.models import Base, QueueJobRecord


__all__ = [
    "Base",
    "QueueJobRecord",
    "create_all_tables",
    "create_database_engine",
    "create_session_factory",
    "transaction_scope",
    "verify_connection",
]
