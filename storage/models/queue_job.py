"""
Queue Job ORM Model.

============================================================
PURPOSE
============================================================
Persistent row per job of the SQL-backed durable queue.

============================================================
DATA LIFECYCLE ROLE
============================================================
- Mutability: MUTABLE (state, attempt and timestamps change)
- Producers: chain event listener (enqueue)
- Consumers: queue worker (claim / ack / nack)

============================================================
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from storage.models.base import Base


class QueueJobRecord(Base):
    """One queued job."""

    __tablename__ = "queue_jobs"

    id: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
        comment="Job identifier",
    )

    queue_name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        comment="Logical queue name",
    )

    kind: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        comment="Event kind the payload belongs to",
    )

    payload: Mapped[dict] = mapped_column(
        JSON,
        nullable=False,
        comment="Normalized event payload (camelCase)",
    )

    state: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="waiting | delayed | active | completed | failed",
    )

    attempt: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Deliveries made so far",
    )

    max_attempts: Mapped[int] = mapped_column(Integer, nullable=False)

    backoff_type: Mapped[str] = mapped_column(String(20), nullable=False)

    backoff_delay_ms: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(nullable=False)

    available_at: Mapped[datetime] = mapped_column(
        nullable=False,
        comment="Earliest time the job may be delivered",
    )

    processed_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)

    finished_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)

    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    errors: Mapped[list] = mapped_column(
        JSON,
        nullable=False,
        default=list,
        comment="Error message per failed attempt",
    )

    receipt: Mapped[Optional[dict]] = mapped_column(
        JSON,
        nullable=True,
        comment="Entity store receipt of a completed job",
    )

    __table_args__ = (
        Index("ix_queue_jobs_claim", "queue_name", "state", "available_at"),
    )

    def __repr__(self) -> str:
        return f"<QueueJobRecord {self.id} {self.kind} {self.state} attempt={self.attempt}>"
