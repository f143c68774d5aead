"""
Worker - Handler Registry.

Maps each event kind to the coroutine that stores it. A
missing handler is a wiring error, reported as
HandlerNotFoundError and never retried.
"""

import logging
from typing import Awaitable, Callable, Dict, List, Union

from core.exceptions import HandlerNotFoundError
from data_ingestion.types import DomainEvent, EventKind
from entity_store.models import EntityReceipt


logger = logging.getLogger(__name__)


EventHandler = Callable[[DomainEvent], Awaitable[EntityReceipt]]


class HandlerRegistry:
    """
    Registry of store-write handlers by event kind.

    Usage:
        registry = HandlerRegistry()
        registry.register(EventKind.WITHDRAW, writer.write)
        handler = registry.get("Withdraw")
    """

    def __init__(self) -> None:
        self._handlers: Dict[EventKind, EventHandler] = {}

    def register(self, kind: Union[EventKind, str], handler: EventHandler) -> None:
        kind = EventKind.parse(kind)
        if kind in self._handlers:
            logger.warning(f"[registry] Replacing handler for {kind.value}")
        self._handlers[kind] = handler

    def unregister(self, kind: Union[EventKind, str]) -> None:
        self._handlers.pop(EventKind.parse(kind), None)

    def get(self, kind: Union[EventKind, str]) -> EventHandler:
        """
        Raises:
            HandlerNotFoundError: If no handler is registered for the kind
        """
        try:
            resolved = EventKind.parse(kind)
        except ValueError:
            raise HandlerNotFoundError(str(kind), self.kinds())
        handler = self._handlers.get(resolved)
        if handler is None:
            raise HandlerNotFoundError(resolved.value, self.kinds())
        return handler

    def has(self, kind: Union[EventKind, str]) -> bool:
        try:
            return EventKind.parse(kind) in self._handlers
        except ValueError:
            return False

    def kinds(self) -> List[str]:
        return [kind.value for kind in self._handlers]

    def __len__(self) -> int:
        return len(self._handlers)
