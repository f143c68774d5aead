"""
Query Engine - Configuration.
"""

import os
from dataclasses import dataclass

from core.clock import DEFAULT_AVERAGE_BLOCK_TIME_MS
from core.exceptions import InvalidConfigError
from data_ingestion.types import PROTOCOL_NAME


@dataclass
class QueryConfig:
    """Read-path settings."""

    protocol: str = PROTOCOL_NAME
    """Value of the protocol attribute used as the broad predicate."""

    average_block_time_ms: int = DEFAULT_AVERAGE_BLOCK_TIME_MS
    """Block -> timestamp conversion factor."""

    window: int = 1000
    """Entities fetched for client-side residual filtering and stats."""

    recent_events: int = 10
    """Events kept in EventStats.recent_events."""

    def validate(self) -> None:
        if not self.protocol:
            raise InvalidConfigError("QUERY_PROTOCOL", self.protocol, "must not be empty")
        if self.average_block_time_ms <= 0:
            raise InvalidConfigError("AVERAGE_BLOCK_TIME_MS", self.average_block_time_ms, "must be > 0")
        if self.window < 1:
            raise InvalidConfigError("QUERY_WINDOW", self.window, "must be >= 1")

    @classmethod
    def from_env(cls) -> "QueryConfig":
        def int_env(key: str, default: int) -> int:
            raw = os.getenv(key)
            if raw is None or raw == "":
                return default
            try:
                return int(raw)
            except ValueError:
                raise InvalidConfigError(key, raw, "expected an integer")

        config = cls(
            protocol=os.getenv("QUERY_PROTOCOL", PROTOCOL_NAME),
            average_block_time_ms=int_env("AVERAGE_BLOCK_TIME_MS", DEFAULT_AVERAGE_BLOCK_TIME_MS),
            window=int_env("QUERY_WINDOW", 1000),
            recent_events=int_env("QUERY_RECENT_EVENTS", 10),
        )
        config.validate()
        return config
