"""
Query Engine - Entity Parsing.

Rebuilds typed events from stored entities and derives the
query-side fields (timestamp, symbol, USD value).
"""

import json
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

from core.clock import DEFAULT_AVERAGE_BLOCK_TIME_MS, ClockProtocol, block_to_datetime, get_clock
from core.exceptions import MalformedEventError
from data_ingestion.normalizers import EventNormalizer
from data_ingestion.types import PROTOCOL_NAME, DomainEvent, EventKind
from entity_store.models import StoredEntity

from .pricing import format_usd, token_symbol, usd_value


@dataclass
class ParsedEvent:
    """A stored event decoded back into its DomainEvent plus derived fields."""

    event: DomainEvent
    entity_key: str
    event_type: str
    protocol: str
    timestamp: datetime
    created_at_block: Optional[int] = None
    reserve_symbol: Optional[str] = None
    amount_usd: Optional[Decimal] = None

    @property
    def kind(self) -> EventKind:
        return self.event.kind

    @property
    def tx_hash(self) -> str:
        return self.event.tx_hash

    @property
    def asset(self) -> str:
        return self.event.asset_address

    @property
    def primary_amount(self) -> int:
        return self.event.primary_amount

    @property
    def participants(self) -> Tuple[str, ...]:
        return self.event.participants

    def matches_user(self, address: str) -> bool:
        target = address.lower()
        return any(user.lower() == target for user in self.event.users)

    def matches_asset(self, address: str) -> bool:
        return self.asset.lower() == address.lower()

    def to_dict(self) -> Dict[str, Any]:
        return {
            **self.event.to_payload(),
            "entityKey": self.entity_key,
            "eventType": self.event_type,
            "protocol": self.protocol,
            "timestamp": self.timestamp.isoformat(),
            "reserveSymbol": self.reserve_symbol,
            "amountUSD": format_usd(self.amount_usd),
        }


def parse_entity(
    entity: StoredEntity,
    normalizer: EventNormalizer,
    average_block_time_ms: int = DEFAULT_AVERAGE_BLOCK_TIME_MS,
    clock: Optional[ClockProtocol] = None,
) -> ParsedEvent:
    """
    Decode one entity.

    The event type comes from the ``eventType`` attribute, falling
    back to the payload tag. The timestamp is derived from the
    creation block; entities without one are stamped with the
    current time.

    Raises:
        MalformedEventError: If the payload is not a valid event
    """
    try:
        data = json.loads(entity.payload_text())
    except (UnicodeDecodeError, ValueError) as e:
        raise MalformedEventError(f"Entity {entity.key} payload is not JSON: {e}")
    if not isinstance(data, dict):
        raise MalformedEventError(f"Entity {entity.key} payload is not an object")

    event_type = entity.attribute("eventType") or data.get("eventType")
    if not event_type:
        raise MalformedEventError(f"Entity {entity.key} has no eventType")

    event = normalizer.from_payload(event_type, data)

    if entity.created_at_block is not None:
        timestamp = block_to_datetime(entity.created_at_block, average_block_time_ms)
    else:
        timestamp = (clock or get_clock()).now()

    asset = event.asset_address
    return ParsedEvent(
        event=event,
        entity_key=entity.key,
        event_type=event.kind.value,
        protocol=entity.attribute("protocol") or data.get("protocol") or PROTOCOL_NAME,
        timestamp=timestamp,
        created_at_block=entity.created_at_block,
        reserve_symbol=token_symbol(asset),
        amount_usd=usd_value(event.primary_amount, asset),
    )
