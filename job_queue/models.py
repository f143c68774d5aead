"""
Job Queue - Models.

============================================================
PURPOSE
============================================================
Jobs, job states and retry policies of the durable queue.

LIFECYCLE:
- created on enqueue (WAITING)
- attempt incremented each time the queue delivers it (ACTIVE)
- DELAYED with exponential backoff after a failed attempt
- COMPLETED on success, FAILED once the budget is spent

============================================================
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


DEFAULT_ATTEMPTS = 5
DEFAULT_BACKOFF_DELAY_MS = 1000


# ============================================================
# ENUMS
# ============================================================

class JobState(str, Enum):
    """State of a queued job."""
    WAITING = "waiting"
    DELAYED = "delayed"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.COMPLETED, JobState.FAILED)


class BackoffType(str, Enum):
    """Delay growth between attempts."""
    EXPONENTIAL = "exponential"
    FIXED = "fixed"


# ============================================================
# RETRY POLICY
# ============================================================

@dataclass(frozen=True)
class RetryPolicy:
    """
    Retry configuration of a job.

    Delay after the n-th failed attempt:
    - exponential: base_delay_ms * 2^(n-1)  (1s, 2s, 4s, 8s...)
    - fixed: base_delay_ms
    """

    attempts: int = DEFAULT_ATTEMPTS
    """Total deliveries allowed, first one included."""

    backoff: BackoffType = BackoffType.EXPONENTIAL
    """Delay growth."""

    base_delay_ms: int = DEFAULT_BACKOFF_DELAY_MS
    """Delay after the first failure."""

    def validate(self) -> None:
        if self.attempts < 1:
            raise ValueError("attempts must be >= 1")
        if self.base_delay_ms < 0:
            raise ValueError("base_delay_ms must be >= 0")

    def can_retry(self, attempts_made: int) -> bool:
        """Whether another delivery is allowed after ``attempts_made`` deliveries."""
        return attempts_made < self.attempts

    def delay_ms(self, failed_attempts: int) -> int:
        """Delay before the next delivery after ``failed_attempts`` failures."""
        if failed_attempts < 1:
            return 0
        if self.backoff == BackoffType.FIXED:
            return self.base_delay_ms
        return self.base_delay_ms * 2 ** (failed_attempts - 1)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attempts": self.attempts,
            "backoff": self.backoff.value,
            "base_delay_ms": self.base_delay_ms,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RetryPolicy":
        return cls(
            attempts=int(data.get("attempts", DEFAULT_ATTEMPTS)),
            backoff=BackoffType(data.get("backoff", BackoffType.EXPONENTIAL.value)),
            base_delay_ms=int(data.get("base_delay_ms", DEFAULT_BACKOFF_DELAY_MS)),
        )


# ============================================================
# QUEUE JOB
# ============================================================

def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(dt: Optional[datetime]) -> Optional[str]:
    return dt.isoformat() if dt else None


def _parse_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


@dataclass
class QueueJob:
    """A unit of work: one normalized event waiting to be stored."""

    id: str
    queue_name: str
    kind: str
    payload: Dict[str, Any]
    state: JobState = JobState.WAITING
    attempt: int = 0
    policy: RetryPolicy = field(default_factory=RetryPolicy)
    created_at: datetime = field(default_factory=_utcnow)
    available_at: datetime = field(default_factory=_utcnow)
    processed_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    last_error: Optional[str] = None
    errors: List[str] = field(default_factory=list)
    receipt: Optional[Dict[str, Any]] = None

    @property
    def attempts_remaining(self) -> int:
        return max(self.policy.attempts - self.attempt, 0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "queue_name": self.queue_name,
            "kind": self.kind,
            "payload": self.payload,
            "state": self.state.value,
            "attempt": self.attempt,
            "policy": self.policy.to_dict(),
            "created_at": _iso(self.created_at),
            "available_at": _iso(self.available_at),
            "processed_at": _iso(self.processed_at),
            "finished_at": _iso(self.finished_at),
            "last_error": self.last_error,
            "errors": list(self.errors),
            "receipt": self.receipt,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QueueJob":
        return cls(
            id=data["id"],
            queue_name=data["queue_name"],
            kind=data["kind"],
            payload=data["payload"],
            state=JobState(data["state"]),
            attempt=int(data.get("attempt", 0)),
            policy=RetryPolicy.from_dict(data.get("policy") or {}),
            created_at=_parse_iso(data.get("created_at")) or _utcnow(),
            available_at=_parse_iso(data.get("available_at")) or _utcnow(),
            processed_at=_parse_iso(data.get("processed_at")),
            finished_at=_parse_iso(data.get("finished_at")),
            last_error=data.get("last_error"),
            errors=list(data.get("errors") or []),
            receipt=data.get("receipt"),
        )
