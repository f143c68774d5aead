"""
Core Module - System Clock.

============================================================
RESPONSIBILITY
============================================================
Provides a testable clock abstraction for the pipeline.

- Queue backoff scheduling reads time from here
- Entity expiry in the in-memory store reads time from here
- Block numbers are converted to timestamps here

============================================================
DESIGN PRINCIPLES
============================================================
- UTC only
- Mockable for testing
- Thread-safe

============================================================
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Optional
import threading
import time


DEFAULT_AVERAGE_BLOCK_TIME_MS = 12_000


# ============================================================
# CLOCK PROTOCOL
# ============================================================

class ClockProtocol(ABC):
    """Abstract interface for system clock."""

    @abstractmethod
    def now(self) -> datetime:
        """Get current UTC datetime."""
        pass

    @abstractmethod
    def timestamp(self) -> float:
        """Get current Unix timestamp."""
        pass


# ============================================================
# SYSTEM CLOCK (PRODUCTION)
# ============================================================

class SystemClock(ClockProtocol):
    """Production clock using actual system time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def timestamp(self) -> float:
        return time.time()


# ============================================================
# MOCK CLOCK (TESTING)
# ============================================================

class MockClock(ClockProtocol):
    """
    Mock clock for testing.

    Allows time manipulation for deterministic tests.
    """

    def __init__(self, initial_time: Optional[datetime] = None):
        self._time = initial_time or datetime(2024, 1, 1, tzinfo=timezone.utc)
        if self._time.tzinfo is None:
            self._time = self._time.replace(tzinfo=timezone.utc)
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            return self._time

    def timestamp(self) -> float:
        with self._lock:
            return self._time.timestamp()

    def set_time(self, new_time: datetime) -> None:
        """Set the current time."""
        with self._lock:
            if new_time.tzinfo is None:
                new_time = new_time.replace(tzinfo=timezone.utc)
            self._time = new_time

    def advance(self, seconds: float = 0, **kwargs) -> None:
        """
        Advance time by the specified amount.

        Args:
            seconds: Number of seconds to advance
            **kwargs: Passed to timedelta (milliseconds, minutes, hours...)
        """
        with self._lock:
            self._time = self._time + timedelta(seconds=seconds, **kwargs)


# ============================================================
# BLOCK TIME
# ============================================================

def block_to_datetime(
    block_number: int,
    average_block_time_ms: int = DEFAULT_AVERAGE_BLOCK_TIME_MS,
) -> datetime:
    """
    Approximate a block's wall-clock time.

    The store only reports the block an entity was created at, so the
    timestamp is derived as ``block_number * average_block_time_ms``
    milliseconds since the Unix epoch.
    """
    millis = block_number * average_block_time_ms
    return datetime.fromtimestamp(millis / 1000, tz=timezone.utc)


# ============================================================
# DEFAULT CLOCK
# ============================================================

_default_clock: ClockProtocol = SystemClock()


def get_clock() -> ClockProtocol:
    """Get the process default clock."""
    return _default_clock
