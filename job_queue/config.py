"""
Job Queue - Configuration.

============================================================
PURPOSE
============================================================
Connection and retry configuration of the durable queue.

Loaded from environment variables; `.env` files are read by
the process entry point.

============================================================
"""

import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

from core.exceptions import InvalidConfigError
from core.logging_utils import mask_url, mask_value

from .models import BackoffType, RetryPolicy


SUPPORTED_BACKENDS = ("redis", "sql")


def _int_env(key: str, default: int) -> int:
    raw = os.getenv(key)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise InvalidConfigError(key, raw, "expected an integer")


def _float_env(key: str, default: float) -> float:
    raw = os.getenv(key)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise InvalidConfigError(key, raw, "expected a number")


@dataclass
class QueueConfig:
    """Durable queue configuration."""

    backend: str = "redis"
    """Backing resource: redis or sql."""

    queue_name: str = "tx-queue"
    """Logical queue name shared by producers and the worker."""

    redis_host: str = "127.0.0.1"
    redis_port: int = 6379
    redis_password: Optional[str] = None
    redis_db: int = 0
    key_prefix: str = "pipeline"
    """Redis key namespace."""

    database_url: str = "sqlite:///queue.db"
    """SQLAlchemy URL for the sql backend."""

    attempts: int = 5
    """Deliveries per job before it is dead-lettered."""

    backoff: BackoffType = BackoffType.EXPONENTIAL
    backoff_delay_ms: int = 1000
    """Delay after the first failed attempt."""

    poll_interval_seconds: float = 0.5
    """Worker sleep between empty dequeue polls."""

    completed_retention_seconds: int = 3600
    """How long completed job records are kept (redis)."""

    def validate(self) -> None:
        if self.backend not in SUPPORTED_BACKENDS:
            raise InvalidConfigError("QUEUE_BACKEND", self.backend, f"expected one of {SUPPORTED_BACKENDS}")
        if self.attempts < 1:
            raise InvalidConfigError("QUEUE_ATTEMPTS", self.attempts, "must be >= 1")
        if self.backoff_delay_ms < 0:
            raise InvalidConfigError("QUEUE_BACKOFF_DELAY_MS", self.backoff_delay_ms, "must be >= 0")
        if self.poll_interval_seconds <= 0:
            raise InvalidConfigError("QUEUE_POLL_INTERVAL_SECONDS", self.poll_interval_seconds, "must be > 0")
        if not 0 < self.redis_port < 65536:
            raise InvalidConfigError("REDIS_PORT", self.redis_port, "not a valid port")

    @property
    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            attempts=self.attempts,
            backoff=self.backoff,
            base_delay_ms=self.backoff_delay_ms,
        )

    @classmethod
    def from_env(cls) -> "QueueConfig":
        """Load configuration from environment variables."""
        backoff_raw = os.getenv("QUEUE_BACKOFF", BackoffType.EXPONENTIAL.value)
        try:
            backoff = BackoffType(backoff_raw)
        except ValueError:
            raise InvalidConfigError("QUEUE_BACKOFF", backoff_raw, "expected exponential or fixed")

        config = cls(
            backend=os.getenv("QUEUE_BACKEND", "redis").lower(),
            queue_name=os.getenv("QUEUE_NAME", "tx-queue"),
            redis_host=os.getenv("REDIS_HOST", "127.0.0.1"),
            redis_port=_int_env("REDIS_PORT", 6379),
            redis_password=os.getenv("REDIS_PASSWORD") or None,
            redis_db=_int_env("REDIS_DB", 0),
            key_prefix=os.getenv("QUEUE_KEY_PREFIX", "pipeline"),
            database_url=os.getenv("QUEUE_DATABASE_URL", "sqlite:///queue.db"),
            attempts=_int_env("QUEUE_ATTEMPTS", 5),
            backoff=backoff,
            backoff_delay_ms=_int_env("QUEUE_BACKOFF_DELAY_MS", 1000),
            poll_interval_seconds=_float_env("QUEUE_POLL_INTERVAL_SECONDS", 0.5),
            completed_retention_seconds=_int_env("QUEUE_COMPLETED_RETENTION_SECONDS", 3600),
        )
        config.validate()
        return config

    def to_safe_dict(self) -> Dict[str, Any]:
        """Configuration with secrets masked, for logging."""
        return {
            "backend": self.backend,
            "queue_name": self.queue_name,
            "redis_host": self.redis_host,
            "redis_port": self.redis_port,
            "redis_password": mask_value(self.redis_password) if self.redis_password else None,
            "redis_db": self.redis_db,
            "database_url": mask_url(self.database_url),
            "attempts": self.attempts,
            "backoff": self.backoff.value,
            "backoff_delay_ms": self.backoff_delay_ms,
        }
