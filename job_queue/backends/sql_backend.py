"""
Job Queue - SQL Backend.

============================================================
PURPOSE
============================================================
Durable queue persisted in a SQL table through SQLAlchemy.

- SQLite for single-host deployments and tests
- PostgreSQL for shared deployments; claims use
  SELECT ... FOR UPDATE SKIP LOCKED so that concurrent
  workers never receive the same job

Calls are synchronous inside the async interface. The
queries are single-row and short.

============================================================
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from core.exceptions import InvalidJobTransitionError, QueueUnavailableError
from storage.database import (
    create_all_tables,
    create_database_engine,
    create_session_factory,
    transaction_scope,
)
from storage.models import QueueJobRecord, from_db_time, to_db_time

from ..models import BackoffType, JobState, QueueJob, RetryPolicy
from .base import QueueBackend


logger = logging.getLogger(__name__)


def _record_to_job(record: QueueJobRecord) -> QueueJob:
    return QueueJob(
        id=record.id,
        queue_name=record.queue_name,
        kind=record.kind,
        payload=dict(record.payload),
        state=JobState(record.state),
        attempt=record.attempt,
        policy=RetryPolicy(
            attempts=record.max_attempts,
            backoff=BackoffType(record.backoff_type),
            base_delay_ms=record.backoff_delay_ms,
        ),
        created_at=from_db_time(record.created_at),
        available_at=from_db_time(record.available_at),
        processed_at=from_db_time(record.processed_at),
        finished_at=from_db_time(record.finished_at),
        last_error=record.last_error,
        errors=list(record.errors or []),
        receipt=record.receipt,
    )


def _apply_job(record: QueueJobRecord, job: QueueJob) -> None:
    record.state = job.state.value
    record.attempt = job.attempt
    record.available_at = to_db_time(job.available_at)
    record.processed_at = to_db_time(job.processed_at)
    record.finished_at = to_db_time(job.finished_at)
    record.last_error = job.last_error
    record.errors = list(job.errors)
    record.receipt = job.receipt


class SqlQueueBackend(QueueBackend):
    """
    Queue backed by the ``queue_jobs`` table.

    Usage:
        backend = SqlQueueBackend.from_url("sqlite:///queue.db", "tx-queue")
    """

    def __init__(self, session_factory: sessionmaker, queue_name: str) -> None:
        super().__init__(queue_name)
        self._session_factory = session_factory

    @classmethod
    def from_url(cls, database_url: str, queue_name: str, echo: bool = False) -> "SqlQueueBackend":
        """Create the engine and make sure the table exists."""
        engine = create_database_engine(database_url, echo=echo)
        try:
            create_all_tables(engine)
        except SQLAlchemyError as e:
            raise QueueUnavailableError(
                f"Cannot initialize queue database: {e}",
                queue_name=queue_name,
                operation="init",
                cause=e,
            )
        return cls(create_session_factory(engine), queue_name)

    @property
    def name(self) -> str:
        return "sql"

    def _unavailable(self, operation: str, error: Exception) -> QueueUnavailableError:
        logger.error(f"[sql_queue] {operation} failed on {self.queue_name}: {error}")
        return QueueUnavailableError(
            f"Queue database error during {operation}: {error}",
            queue_name=self.queue_name,
            operation=operation,
            cause=error,
        )

    async def add(self, job: QueueJob) -> None:
        record = QueueJobRecord(
            id=job.id,
            queue_name=job.queue_name,
            kind=job.kind,
            payload=dict(job.payload),
            state=job.state.value,
            attempt=job.attempt,
            max_attempts=job.policy.attempts,
            backoff_type=job.policy.backoff.value,
            backoff_delay_ms=job.policy.base_delay_ms,
            created_at=to_db_time(job.created_at),
            available_at=to_db_time(job.available_at),
            errors=list(job.errors),
        )
        try:
            with transaction_scope(self._session_factory) as session:
                session.add(record)
        except SQLAlchemyError as e:
            raise self._unavailable("add", e)

    async def claim_next(self, now: datetime) -> Optional[QueueJob]:
        due = to_db_time(now)
        stmt = (
            select(QueueJobRecord)
            .where(QueueJobRecord.queue_name == self.queue_name)
            .where(
                or_(
                    QueueJobRecord.state == JobState.WAITING.value,
                    (QueueJobRecord.state == JobState.DELAYED.value)
                    & (QueueJobRecord.available_at <= due),
                )
            )
            .order_by(QueueJobRecord.available_at, QueueJobRecord.created_at)
            .limit(1)
            .with_for_update(skip_locked=True)
        )
        try:
            with transaction_scope(self._session_factory) as session:
                record = session.execute(stmt).scalars().first()
                if record is None:
                    return None
                job = _record_to_job(record)
                self._state_machine.transition(job, JobState.ACTIVE, now)
                _apply_job(record, job)
                return job
        except SQLAlchemyError as e:
            raise self._unavailable("claim", e)

    async def update(self, job: QueueJob, from_state: JobState) -> None:
        try:
            with transaction_scope(self._session_factory) as session:
                record = session.get(QueueJobRecord, job.id, with_for_update=True)
                if record is None:
                    logger.warning(f"[sql_queue] Job {job.id} vanished before update")
                    return
                if record.state != from_state.value:
                    raise InvalidJobTransitionError(job.id, record.state, job.state.value)
                _apply_job(record, job)
        except SQLAlchemyError as e:
            raise self._unavailable("update", e)

    def _select(self, session: Session, state: JobState, limit: Optional[int]) -> List[QueueJob]:
        stmt = (
            select(QueueJobRecord)
            .where(QueueJobRecord.queue_name == self.queue_name)
            .where(QueueJobRecord.state == state.value)
            .order_by(QueueJobRecord.created_at)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return [_record_to_job(r) for r in session.execute(stmt).scalars().all()]

    async def get(self, job_id: str) -> Optional[QueueJob]:
        try:
            with transaction_scope(self._session_factory) as session:
                record = session.get(QueueJobRecord, job_id)
                if record is None or record.queue_name != self.queue_name:
                    return None
                return _record_to_job(record)
        except SQLAlchemyError as e:
            raise self._unavailable("get", e)

    async def list_by_state(self, state: JobState, limit: int = 100) -> List[QueueJob]:
        try:
            with transaction_scope(self._session_factory) as session:
                return self._select(session, state, limit)
        except SQLAlchemyError as e:
            raise self._unavailable("list", e)

    async def list_active(self) -> List[QueueJob]:
        try:
            with transaction_scope(self._session_factory) as session:
                return self._select(session, JobState.ACTIVE, None)
        except SQLAlchemyError as e:
            raise self._unavailable("list", e)

    async def count_by_state(self) -> Dict[JobState, int]:
        stmt = (
            select(QueueJobRecord.state, func.count())
            .where(QueueJobRecord.queue_name == self.queue_name)
            .group_by(QueueJobRecord.state)
        )
        counts = {state: 0 for state in JobState}
        try:
            with transaction_scope(self._session_factory) as session:
                for state, count in session.execute(stmt).all():
                    counts[JobState(state)] = count
        except SQLAlchemyError as e:
            raise self._unavailable("count", e)
        return counts

    async def close(self) -> None:
        engine = self._session_factory.kw.get("bind")
        if engine is not None:
            engine.dispose()
