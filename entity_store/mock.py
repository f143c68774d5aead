"""
Entity Store - In-Memory Store.

============================================================
PURPOSE
============================================================
Entity store kept in process memory, for tests and local
runs without a remote store.

- Entities expire ``expires_in`` seconds after creation,
  measured on the injected clock
- Each create advances a block counter; entities carry the
  block they were created at
- Create and query calls are recorded
- Failures can be injected for the next N creates / queries

============================================================
"""

import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from core.clock import ClockProtocol, get_clock
from core.exceptions import StoreQueryError, StoreWriteError

from .base import EntityStoreClient
from .models import CreateEntityRequest, EntityQuery, EntityReceipt, StoredEntity


logger = logging.getLogger(__name__)


@dataclass
class _Entry:
    entity: StoredEntity
    expires_at: datetime


class InMemoryEntityStore(EntityStoreClient):
    """In-memory EntityStoreClient."""

    def __init__(
        self,
        clock: Optional[ClockProtocol] = None,
        start_block: int = 1,
        block_time_seconds: int = 12,
    ) -> None:
        self._clock = clock or get_clock()
        self._block = start_block
        self._block_time_seconds = block_time_seconds
        self._entries: Dict[str, _Entry] = {}
        self.create_calls: List[CreateEntityRequest] = []
        self.query_calls: List[EntityQuery] = []
        self.fail_next_creates = 0
        self.fail_next_queries = 0

    @property
    def current_block(self) -> int:
        return self._block

    def __len__(self) -> int:
        self._purge_expired()
        return len(self._entries)

    def _purge_expired(self) -> None:
        now = self._clock.now()
        expired = [key for key, entry in self._entries.items() if entry.expires_at <= now]
        for key in expired:
            del self._entries[key]

    async def create(self, request: CreateEntityRequest) -> EntityReceipt:
        self.create_calls.append(request)
        if self.fail_next_creates > 0:
            self.fail_next_creates -= 1
            raise StoreWriteError("Injected create failure", status_code=503)

        self._block += 1
        key = "0x" + hashlib.sha256(f"entity:{len(self.create_calls)}:{self._block}".encode()).hexdigest()
        expires_at_block = self._block + max(request.expires_in // self._block_time_seconds, 1)
        entity = StoredEntity(
            key=key,
            payload=request.payload,
            content_type=request.content_type,
            attributes=list(request.attributes),
            created_at_block=self._block,
            expires_at_block=expires_at_block,
        )
        self._entries[key] = _Entry(
            entity=entity,
            expires_at=self._clock.now() + timedelta(seconds=request.expires_in),
        )
        logger.debug(f"[memory_store] Created entity {key} at block {self._block}")
        return EntityReceipt(
            entity_key=key,
            tx_hash="0x" + hashlib.sha256(key.encode()).hexdigest(),
            block_number=self._block,
            expires_at_block=expires_at_block,
        )

    async def query(self, query: EntityQuery) -> List[StoredEntity]:
        self.query_calls.append(query)
        if self.fail_next_queries > 0:
            self.fail_next_queries -= 1
            raise StoreQueryError("Injected query failure", status_code=503)

        self._purge_expired()
        results = []
        for entry in self._entries.values():
            entity = entry.entity
            if query.predicate and not query.predicate.matches(entity.attributes):
                continue
            results.append(
                StoredEntity(
                    key=entity.key,
                    payload=entity.payload if query.with_payload else None,
                    content_type=entity.content_type,
                    attributes=list(entity.attributes) if query.with_attributes else [],
                    created_at_block=entity.created_at_block,
                    expires_at_block=entity.expires_at_block,
                )
            )
            if query.limit is not None and len(results) >= query.limit:
                break
        return results
