"""
Entity Store - HTTP Client.

============================================================
PURPOSE
============================================================
aiohttp client for the entity store's JSON gateway.

ENDPOINTS:
- POST {base_url}/entities         create one entity
- POST {base_url}/entities/query   query with one predicate

Payloads travel base64-encoded. Every transport error and
non-2xx status becomes StoreWriteError / StoreQueryError so
that the queue retries the job.

============================================================
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Type

import aiohttp

from core.exceptions import StoreError, StoreQueryError, StoreWriteError

from .base import EntityStoreClient
from .models import CreateEntityRequest, EntityQuery, EntityReceipt, StoredEntity


logger = logging.getLogger(__name__)


class HttpEntityStoreClient(EntityStoreClient):
    """Entity store over HTTP."""

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout_seconds: float = 30.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout_seconds = timeout_seconds
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self._timeout_seconds)
            headers = {"Content-Type": "application/json"}
            if self._api_key:
                headers["Authorization"] = f"Bearer {self._api_key}"
            self._session = aiohttp.ClientSession(timeout=timeout, headers=headers)
        return self._session

    async def _post(
        self,
        path: str,
        body: Dict[str, Any],
        error_cls: Type[StoreError],
    ) -> Dict[str, Any]:
        session = await self._get_session()
        url = f"{self.base_url}{path}"
        try:
            async with session.post(url, json=body) as response:
                if response.status >= 400:
                    text = await response.text()
                    raise error_cls(
                        f"Entity store returned HTTP {response.status} for {path}",
                        status_code=response.status,
                        response_body=text,
                    )
                data = await response.json()
        except aiohttp.ClientError as e:
            raise error_cls(f"Entity store request to {path} failed: {e}", cause=e)
        except asyncio.TimeoutError as e:
            raise error_cls(
                f"Entity store request to {path} timed out after {self._timeout_seconds}s",
                cause=e,
            )
        except ValueError as e:
            raise error_cls(f"Entity store returned invalid JSON for {path}: {e}", cause=e)

        if not isinstance(data, dict):
            raise error_cls(
                f"Entity store returned a non-object body for {path}",
                response_body=str(data)[:200],
            )
        return data

    async def create(self, request: CreateEntityRequest) -> EntityReceipt:
        data = await self._post("/entities", request.to_dict(), StoreWriteError)
        try:
            receipt = EntityReceipt.from_dict(data)
        except (KeyError, TypeError) as e:
            raise StoreWriteError(f"Unexpected create response: {data!r}", cause=e)
        logger.debug(f"[entity_store] Created entity {receipt.entity_key}")
        return receipt

    async def query(self, query: EntityQuery) -> List[StoredEntity]:
        data = await self._post("/entities/query", query.to_dict(), StoreQueryError)
        try:
            return [StoredEntity.from_dict(item) for item in data.get("entities", [])]
        except (KeyError, TypeError, ValueError) as e:
            raise StoreQueryError(f"Unexpected query response: {e}", cause=e)

    async def close(self) -> None:
        """Close the aiohttp session."""
        if self._session and not self._session.closed:
            await self._session.close()
