"""
Entity Store - Client Interface.
"""

from abc import ABC, abstractmethod
from typing import List

from .models import CreateEntityRequest, EntityQuery, EntityReceipt, StoredEntity


class EntityStoreClient(ABC):
    """
    Create and query entities in the remote store.

    Implementations raise StoreWriteError / StoreQueryError for
    every store-side or transport failure.
    """

    @abstractmethod
    async def create(self, request: CreateEntityRequest) -> EntityReceipt:
        pass

    @abstractmethod
    async def query(self, query: EntityQuery) -> List[StoredEntity]:
        pass

    async def close(self) -> None:
        pass
