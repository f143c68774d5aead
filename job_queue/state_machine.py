"""
Job Queue - Job State Machine.

============================================================
PURPOSE
============================================================
Guards every state change of a queued job.

STATE MACHINE:

    WAITING ──────┐
                  ▼
    DELAYED ──► ACTIVE ──► COMPLETED
       ▲          │
       └──────────┤
                  ▼
    WAITING ◄── FAILED   (operator requeue only)

    ACTIVE ──► WAITING   (stalled job recovery)

INVARIANTS:
- COMPLETED is final
- attempt only grows on delivery (-> ACTIVE)
- All transitions are logged

============================================================
"""

import logging
from datetime import datetime
from typing import Dict, Optional, Set

from core.exceptions import InvalidJobTransitionError

from .models import JobState, QueueJob


logger = logging.getLogger(__name__)


VALID_TRANSITIONS: Dict[JobState, Set[JobState]] = {
    JobState.WAITING: {JobState.ACTIVE},
    JobState.DELAYED: {JobState.ACTIVE},
    JobState.ACTIVE: {
        JobState.COMPLETED,
        JobState.DELAYED,
        JobState.FAILED,
        JobState.WAITING,
    },
    JobState.FAILED: {JobState.WAITING},
    JobState.COMPLETED: set(),
}


class JobStateMachine:
    """Applies validated transitions to QueueJob objects."""

    @staticmethod
    def can_transition(from_state: JobState, to_state: JobState) -> bool:
        return to_state in VALID_TRANSITIONS.get(from_state, set())

    def transition(
        self,
        job: QueueJob,
        to_state: JobState,
        now: datetime,
        error: Optional[str] = None,
        available_at: Optional[datetime] = None,
    ) -> QueueJob:
        """
        Move a job to ``to_state`` in place.

        Raises:
            InvalidJobTransitionError: If the transition is not allowed
        """
        from_state = job.state
        if not self.can_transition(from_state, to_state):
            raise InvalidJobTransitionError(job.id, from_state.value, to_state.value)

        if to_state == JobState.ACTIVE:
            job.attempt += 1
            job.processed_at = now
        elif to_state == JobState.DELAYED:
            job.available_at = available_at or now
        elif to_state in (JobState.COMPLETED, JobState.FAILED):
            job.finished_at = now
        elif to_state == JobState.WAITING:
            job.available_at = now
            if from_state == JobState.FAILED:
                job.attempt = 0
                job.finished_at = None

        if error:
            job.last_error = error
            job.errors.append(error)

        job.state = to_state
        logger.debug(
            f"[job_state] {job.id} {from_state.value} -> {to_state.value} "
            f"(attempt {job.attempt}/{job.policy.attempts})"
        )
        return job
