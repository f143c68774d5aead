"""
Query Engine Package.

Read path of the pipeline: typed events and statistics
reconstructed from the entity store.

Modules:
- engine: QueryEngine
- parsing: StoredEntity -> ParsedEvent
- filters: EventFilters validation
- stats: EventStats fold
- pricing: token symbols, USD values, display helpers
- config: QueryConfig
"""

from .config import QueryConfig
from .engine import QueryEngine
from .filters import EventFilters, ValidatedFilters
from .parsing import ParsedEvent, parse_entity
from .pricing import (
    format_event_type,
    format_token_amount,
    format_usd,
    shorten_address,
    token_symbol,
    usd_value,
)
from .stats import EventStats, compute_event_stats


__all__ = [
    "EventFilters",
    "EventStats",
    "ParsedEvent",
    "QueryConfig",
    "QueryEngine",
    "ValidatedFilters",
    "compute_event_stats",
    "format_event_type",
    "format_token_amount",
    "format_usd",
    "parse_entity",
    "shorten_address",
    "token_symbol",
    "usd_value",
]
