"""
Entity Store Package.

Client for the remote entity store and the writer that maps
domain events onto entities.

Modules:
- models: Wire types (attributes, requests, receipts, queries)
- base: Client interface
- http_client: aiohttp gateway client
- mock: In-memory store
- writer: DomainEvent -> entity
- config: StoreConfig
"""

from .base import EntityStoreClient
from .config import StoreConfig
from .http_client import HttpEntityStoreClient
from .mock import InMemoryEntityStore
from .models import (
    Attribute,
    CreateEntityRequest,
    EntityQuery,
    EntityReceipt,
    Predicate,
    StoredEntity,
    eq,
)
from .writer import EntityStoreWriter, TtlPolicy


def create_store_client(config: StoreConfig, clock=None) -> EntityStoreClient:
    """Build the EntityStoreClient described by ``config``."""
    if config.backend == "memory":
        return InMemoryEntityStore(clock=clock)
    return HttpEntityStoreClient(
        config.url,
        api_key=config.api_key,
        timeout_seconds=config.timeout_seconds,
    )


__all__ = [
    "Attribute",
    "CreateEntityRequest",
    "EntityQuery",
    "EntityReceipt",
    "EntityStoreClient",
    "EntityStoreWriter",
    "HttpEntityStoreClient",
    "InMemoryEntityStore",
    "Predicate",
    "StoreConfig",
    "StoredEntity",
    "TtlPolicy",
    "create_store_client",
    "eq",
]
