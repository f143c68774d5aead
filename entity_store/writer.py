"""
Entity Store - Event Writer.

============================================================
RESPONSIBILITY
============================================================
Turns a domain event into one entity create request and
submits it.

ENTITY LAYOUT:
- payload: UTF-8 JSON of the event's camelCase fields plus
  the protocol and eventType tags
- contentType: application/json
- attributes: protocol, eventType, then one attribute per
  event field (booleans as "true"/"false")
- expiresIn: per-kind TTL policy

Store errors propagate unchanged; the queue decides whether
to retry.

============================================================
"""

import json
import logging
from dataclasses import dataclass, field
from typing import FrozenSet, List, Optional

from data_ingestion.types import PROTOCOL_NAME, DomainEvent, EventKind

from .base import EntityStoreClient
from .models import Attribute, CreateEntityRequest, EntityQuery, EntityReceipt, eq


logger = logging.getLogger(__name__)


CONTENT_TYPE_JSON = "application/json"
DEFAULT_TTL_SECONDS = 86400
SHORT_TTL_SECONDS = 200
DEDUP_ATTRIBUTE = "dedupKey"


@dataclass(frozen=True)
class TtlPolicy:
    """Entity lifetime per event kind."""

    default_seconds: int = DEFAULT_TTL_SECONDS
    short_lived_seconds: int = SHORT_TTL_SECONDS
    short_lived_kinds: FrozenSet[EventKind] = field(default_factory=frozenset)

    def expires_in(self, kind: EventKind) -> int:
        if kind in self.short_lived_kinds:
            return self.short_lived_seconds
        return self.default_seconds


def encode_attribute_value(value) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class EntityStoreWriter:
    """
    Writes domain events to the entity store.

    Usage:
        writer = EntityStoreWriter(client)
        receipt = await writer.write(event)
    """

    def __init__(
        self,
        client: EntityStoreClient,
        ttl_policy: Optional[TtlPolicy] = None,
        protocol: str = PROTOCOL_NAME,
        dedup: bool = False,
    ) -> None:
        self._client = client
        self._ttl = ttl_policy or TtlPolicy()
        self._protocol = protocol
        self._dedup = dedup
        self._writes = 0
        self._duplicates = 0

    @property
    def ttl_policy(self) -> TtlPolicy:
        return self._ttl

    def build_attributes(self, event: DomainEvent) -> List[Attribute]:
        attributes = [
            Attribute("protocol", self._protocol),
            Attribute("eventType", event.kind.value),
        ]
        for name, value in event.to_payload().items():
            attributes.append(Attribute(name, encode_attribute_value(value)))
        if self._dedup:
            attributes.append(Attribute(DEDUP_ATTRIBUTE, event.dedup_key))
        return attributes

    def build_create_request(self, event: DomainEvent) -> CreateEntityRequest:
        body = {
            **event.to_payload(),
            "protocol": self._protocol,
            "eventType": event.kind.value,
        }
        return CreateEntityRequest(
            payload=json.dumps(body, separators=(",", ":")).encode("utf-8"),
            content_type=CONTENT_TYPE_JSON,
            attributes=self.build_attributes(event),
            expires_in=self._ttl.expires_in(event.kind),
        )

    async def find_existing(self, event: DomainEvent) -> Optional[EntityReceipt]:
        """Receipt of an entity already stored for this event, if any."""
        matches = await self._client.query(
            EntityQuery(
                predicate=eq(DEDUP_ATTRIBUTE, event.dedup_key),
                with_payload=False,
                with_attributes=False,
                limit=1,
            )
        )
        if not matches:
            return None
        entity = matches[0]
        return EntityReceipt(
            entity_key=entity.key,
            block_number=entity.created_at_block,
            expires_at_block=entity.expires_at_block,
            duplicate=True,
        )

    async def write(self, event: DomainEvent) -> EntityReceipt:
        """
        Store one event.

        Raises:
            StoreWriteError: If the store rejects or cannot be reached
            StoreQueryError: If the duplicate check cannot run
        """
        if self._dedup:
            existing = await self.find_existing(event)
            if existing is not None:
                self._duplicates += 1
                logger.info(
                    f"[writer] {event.kind.value} tx={event.tx_hash} already stored "
                    f"as {existing.entity_key}"
                )
                return existing

        request = self.build_create_request(event)
        receipt = await self._client.create(request)
        self._writes += 1
        logger.info(
            f"[writer] Stored {event.kind.value} tx={event.tx_hash} "
            f"entity={receipt.entity_key} expiresIn={request.expires_in}s"
        )
        return receipt

    def register_default_handlers(self, registry) -> None:
        """Register ``write`` as the handler of every event kind."""
        for kind in EventKind:
            registry.register(kind, self.write)

    def get_stats(self) -> dict:
        return {
            "writes": self._writes,
            "duplicates": self._duplicates,
            "dedup_enabled": self._dedup,
        }
