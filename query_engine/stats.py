"""
Query Engine - Statistics.

EventStats is recomputed from a window of parsed events on
every call; nothing is persisted.
"""

from collections import Counter
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Sequence, Set

from .parsing import ParsedEvent
from .pricing import format_usd


DEFAULT_RECENT_EVENTS = 10


@dataclass
class EventStats:
    """Aggregate view over a window of events."""

    total_events: int = 0
    events_by_type: Dict[str, int] = field(default_factory=dict)
    total_volume_wei: Dict[str, str] = field(default_factory=dict)
    """Exact integer volume per asset address, as decimal strings."""
    total_volume_usd: Decimal = Decimal(0)
    unique_users: int = 0
    recent_events: List[ParsedEvent] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalEvents": self.total_events,
            "eventsByType": dict(self.events_by_type),
            "totalVolumeWei": dict(self.total_volume_wei),
            "totalVolumeUSD": format_usd(self.total_volume_usd),
            "uniqueUsers": self.unique_users,
            "recentEvents": [e.to_dict() for e in self.recent_events],
        }


def compute_event_stats(
    events: Sequence[ParsedEvent],
    recent_count: int = DEFAULT_RECENT_EVENTS,
) -> EventStats:
    """
    Fold events into EventStats.

    ``events`` is expected newest first; the first ``recent_count``
    become ``recent_events``.
    """
    by_type: Counter = Counter()
    volumes: Dict[str, int] = {}
    users: Set[str] = set()
    volume_usd = Decimal(0)

    for parsed in events:
        by_type[parsed.event_type] += 1
        users.update(address.lower() for address in parsed.participants)
        asset = parsed.asset
        if asset:
            volumes[asset] = volumes.get(asset, 0) + parsed.primary_amount
        if parsed.amount_usd:
            volume_usd += parsed.amount_usd

    return EventStats(
        total_events=len(events),
        events_by_type=dict(by_type),
        total_volume_wei={asset: str(total) for asset, total in volumes.items()},
        total_volume_usd=volume_usd,
        unique_users=len(users),
        recent_events=list(events[:recent_count]),
    )
