"""
Query Engine - Engine.

============================================================
RESPONSIBILITY
============================================================
Read path over the entity store.

TWO-PHASE QUERIES:
The store accepts a single equality predicate per query.
Every call picks the most selective predicate available
(eventType, else protocol), fetches, parses, then applies
the remaining filters in memory.

KNOWN LIMITATION:
User, asset and combined filters only see the most recent
``window`` (default 1000) entities of the broad fetch.
Older matching events are not returned.

============================================================
"""

import logging
from typing import List, Optional, Union

from core.clock import ClockProtocol, get_clock
from core.exceptions import MalformedEventError, QueryExecutionError, QueryValidationError, StoreError
from data_ingestion.normalizers import EventNormalizer
from data_ingestion.types import EventKind
from entity_store.base import EntityStoreClient
from entity_store.models import EntityQuery, Predicate, eq

from .config import QueryConfig
from .filters import EventFilters, validate_address, validate_limit
from .parsing import ParsedEvent, parse_entity
from .stats import EventStats, compute_event_stats


logger = logging.getLogger(__name__)


class QueryEngine:
    """
    Queries and aggregates stored lending events.

    Usage:
        engine = QueryEngine(store_client)
        latest = await engine.query_all(limit=20)
        stats = await engine.compute_stats()
    """

    def __init__(
        self,
        client: EntityStoreClient,
        normalizer: Optional[EventNormalizer] = None,
        config: Optional[QueryConfig] = None,
        clock: Optional[ClockProtocol] = None,
    ) -> None:
        self._client = client
        self._normalizer = normalizer or EventNormalizer()
        self._config = config or QueryConfig()
        self._clock = clock or get_clock()

    @property
    def config(self) -> QueryConfig:
        return self._config

    # =========================================================
    # FETCH + PARSE
    # =========================================================

    async def _fetch(self, predicate: Predicate) -> List[ParsedEvent]:
        """Run one store query and parse the entities, newest first."""
        try:
            entities = await self._client.query(
                EntityQuery(predicate=predicate, with_payload=True, with_attributes=True)
            )
        except StoreError as e:
            raise QueryExecutionError(
                f"Entity store query {predicate.key}={predicate.value} failed: {e.message}",
                context={"predicate": predicate.to_dict()},
                cause=e,
            )

        parsed: List[ParsedEvent] = []
        for entity in entities:
            try:
                parsed.append(
                    parse_entity(
                        entity,
                        self._normalizer,
                        average_block_time_ms=self._config.average_block_time_ms,
                        clock=self._clock,
                    )
                )
            except MalformedEventError as e:
                logger.warning(f"[query] Skipping unreadable entity {entity.key}: {e.message}")

        parsed.sort(key=lambda p: p.timestamp, reverse=True)
        return parsed

    def _resolve_kind(self, event_type: Union[str, EventKind]) -> EventKind:
        try:
            return EventKind.parse(event_type)
        except ValueError:
            raise QueryValidationError(
                f"Unknown event type '{event_type}', expected one of {[k.value for k in EventKind]}",
                field_name="event_type",
                value=event_type,
            )

    # =========================================================
    # QUERIES
    # =========================================================

    async def query_all(self, limit: int = 100) -> List[ParsedEvent]:
        """Most recent events of the protocol."""
        limit = validate_limit(limit)
        events = await self._fetch(eq("protocol", self._config.protocol))
        return events[:limit]

    async def query_by_type(self, event_type: Union[str, EventKind], limit: int = 100) -> List[ParsedEvent]:
        """Most recent events of one kind."""
        kind = self._resolve_kind(event_type)
        limit = validate_limit(limit)
        events = await self._fetch(eq("eventType", kind.value))
        return events[:limit]

    async def query_withdraw_events(self, limit: int = 100) -> List[ParsedEvent]:
        return await self.query_by_type(EventKind.WITHDRAW, limit)

    async def query_supply_events(self, limit: int = 100) -> List[ParsedEvent]:
        return await self.query_by_type(EventKind.SUPPLY, limit)

    async def query_flash_loan_events(self, limit: int = 100) -> List[ParsedEvent]:
        return await self.query_by_type(EventKind.FLASH_LOAN, limit)

    async def query_liquidation_events(self, limit: int = 100) -> List[ParsedEvent]:
        return await self.query_by_type(EventKind.LIQUIDATION_CALL, limit)

    async def query_by_user(self, address: str, limit: int = 100) -> List[ParsedEvent]:
        """
        Events whose user (or flash loan initiator) is ``address``.

        Matches within the most recent ``window`` events only.
        """
        address = validate_address(address, "address")
        limit = validate_limit(limit)
        events = await self.query_all(self._config.window)
        return [e for e in events if e.matches_user(address)][:limit]

    async def query_by_asset(self, address: str, limit: int = 100) -> List[ParsedEvent]:
        """
        Events on reserve / asset / collateral asset ``address``.

        Matches within the most recent ``window`` events only.
        """
        address = validate_address(address, "address")
        limit = validate_limit(limit)
        events = await self.query_all(self._config.window)
        return [e for e in events if e.matches_asset(address)][:limit]

    async def query_with_filters(self, filters: EventFilters) -> List[ParsedEvent]:
        """
        Combined filters.

        Server predicate: eventType when given, else protocol.
        Then, in memory and in order: user, asset, min/max amount,
        start/end date, limit.
        """
        spec = filters.validate(self._config.protocol)

        if spec.kind is not None:
            events = await self.query_by_type(spec.kind, self._config.window)
        else:
            events = await self.query_all(self._config.window)

        if spec.user:
            events = [e for e in events if e.matches_user(spec.user)]
        if spec.asset:
            events = [e for e in events if e.matches_asset(spec.asset)]
        if spec.min_amount is not None:
            events = [e for e in events if e.primary_amount >= spec.min_amount]
        if spec.max_amount is not None:
            events = [e for e in events if e.primary_amount <= spec.max_amount]
        if spec.start is not None:
            events = [e for e in events if e.timestamp >= spec.start]
        if spec.end is not None:
            events = [e for e in events if e.timestamp <= spec.end]

        return events[:spec.limit]

    async def compute_stats(self) -> EventStats:
        """Aggregate statistics over the most recent ``window`` events."""
        events = await self.query_all(self._config.window)
        stats = compute_event_stats(events, recent_count=self._config.recent_events)
        logger.debug(
            f"[query] Stats over {stats.total_events} events: {stats.events_by_type}"
        )
        return stats
