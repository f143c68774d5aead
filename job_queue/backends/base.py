"""
Job Queue - Backend Interface.

============================================================
PURPOSE
============================================================
Storage contract implemented by every durable queue backend.

Backends persist jobs and hand out due jobs atomically.
State changes are decided by DurableQueue through the
JobStateMachine; backends only record them.

============================================================
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional

from ..models import JobState, QueueJob
from ..state_machine import JobStateMachine


class QueueBackend(ABC):
    """Persistence of one named queue."""

    def __init__(self, queue_name: str) -> None:
        self.queue_name = queue_name
        self._state_machine = JobStateMachine()

    @property
    @abstractmethod
    def name(self) -> str:
        """Backend identifier (redis, sql)."""
        pass

    @abstractmethod
    async def add(self, job: QueueJob) -> None:
        """Persist a new WAITING job."""
        pass

    @abstractmethod
    async def claim_next(self, now: datetime) -> Optional[QueueJob]:
        """
        Atomically hand out the next due job.

        A job is due when it is WAITING, or DELAYED with
        ``available_at <= now``. The returned job is ACTIVE with
        its attempt counter incremented. No job is handed out twice.
        """
        pass

    @abstractmethod
    async def update(self, job: QueueJob, from_state: JobState) -> None:
        """
        Persist a job after a transition out of ``from_state``.

        Compare-and-set: raises InvalidJobTransitionError when the
        stored job is no longer in ``from_state``.
        """
        pass

    @abstractmethod
    async def get(self, job_id: str) -> Optional[QueueJob]:
        pass

    @abstractmethod
    async def list_by_state(self, state: JobState, limit: int = 100) -> List[QueueJob]:
        pass

    @abstractmethod
    async def count_by_state(self) -> Dict[JobState, int]:
        pass

    @abstractmethod
    async def list_active(self) -> List[QueueJob]:
        """Every job held as ACTIVE, for stalled job recovery."""
        pass

    async def release_active(self, job_id: str) -> None:
        """Forget an ACTIVE entry whose record already finished."""
        pass

    async def close(self) -> None:
        """Release connections."""
        pass
