"""
Entity Store - Configuration.
"""

import os
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Optional

from core.exceptions import InvalidConfigError, MissingConfigError
from core.logging_utils import mask_value
from data_ingestion.types import EventKind

from .writer import DEFAULT_TTL_SECONDS, SHORT_TTL_SECONDS, TtlPolicy


SUPPORTED_BACKENDS = ("http", "memory")

_TRUE_VALUES = ("1", "true", "yes", "on")
_FALSE_VALUES = ("0", "false", "no", "off", "")


def _bool_env(key: str, default: bool) -> bool:
    raw = os.getenv(key)
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise InvalidConfigError(key, raw, "expected a boolean")


def _int_env(key: str, default: int) -> int:
    raw = os.getenv(key)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise InvalidConfigError(key, raw, "expected an integer")


def parse_kinds(raw: str, key: str = "ENTITY_SHORT_LIVED_KINDS") -> FrozenSet[EventKind]:
    """Comma separated kind list -> set of EventKind."""
    kinds = set()
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        try:
            kinds.add(EventKind.parse(part))
        except ValueError:
            raise InvalidConfigError(key, part, "unknown event kind")
    return frozenset(kinds)


@dataclass
class StoreConfig:
    """Entity store connection and write policy."""

    backend: str = "http"
    url: Optional[str] = None
    api_key: Optional[str] = None
    timeout_seconds: float = 30.0
    ttl_seconds: int = DEFAULT_TTL_SECONDS
    short_ttl_seconds: int = SHORT_TTL_SECONDS
    short_lived_kinds: FrozenSet[EventKind] = field(default_factory=frozenset)
    dedup: bool = False

    def validate(self) -> None:
        if self.backend not in SUPPORTED_BACKENDS:
            raise InvalidConfigError("ENTITY_STORE_BACKEND", self.backend, f"expected one of {SUPPORTED_BACKENDS}")
        if self.backend == "http" and not self.url:
            raise MissingConfigError("ENTITY_STORE_URL")
        if self.ttl_seconds <= 0:
            raise InvalidConfigError("ENTITY_TTL_SECONDS", self.ttl_seconds, "must be > 0")
        if self.short_ttl_seconds <= 0:
            raise InvalidConfigError("ENTITY_SHORT_TTL_SECONDS", self.short_ttl_seconds, "must be > 0")
        if self.timeout_seconds <= 0:
            raise InvalidConfigError("ENTITY_STORE_TIMEOUT_SECONDS", self.timeout_seconds, "must be > 0")

    @property
    def ttl_policy(self) -> TtlPolicy:
        return TtlPolicy(
            default_seconds=self.ttl_seconds,
            short_lived_seconds=self.short_ttl_seconds,
            short_lived_kinds=self.short_lived_kinds,
        )

    @classmethod
    def from_env(cls) -> "StoreConfig":
        timeout_raw = os.getenv("ENTITY_STORE_TIMEOUT_SECONDS", "30")
        try:
            timeout = float(timeout_raw)
        except ValueError:
            raise InvalidConfigError("ENTITY_STORE_TIMEOUT_SECONDS", timeout_raw, "expected a number")

        config = cls(
            backend=os.getenv("ENTITY_STORE_BACKEND", "http").lower(),
            url=os.getenv("ENTITY_STORE_URL") or None,
            api_key=os.getenv("ENTITY_STORE_API_KEY") or None,
            timeout_seconds=timeout,
            ttl_seconds=_int_env("ENTITY_TTL_SECONDS", DEFAULT_TTL_SECONDS),
            short_ttl_seconds=_int_env("ENTITY_SHORT_TTL_SECONDS", SHORT_TTL_SECONDS),
            short_lived_kinds=parse_kinds(os.getenv("ENTITY_SHORT_LIVED_KINDS", "")),
            dedup=_bool_env("ENTITY_STORE_DEDUP", False),
        )
        config.validate()
        return config

    def to_safe_dict(self) -> Dict[str, Any]:
        return {
            "backend": self.backend,
            "url": self.url,
            "api_key": mask_value(self.api_key) if self.api_key else None,
            "timeout_seconds": self.timeout_seconds,
            "ttl_seconds": self.ttl_seconds,
            "short_ttl_seconds": self.short_ttl_seconds,
            "short_lived_kinds": sorted(k.value for k in self.short_lived_kinds),
            "dedup": self.dedup,
        }
