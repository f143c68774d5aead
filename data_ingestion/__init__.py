"""
Data Ingestion Package.

Turns decoded lending pool logs into domain events and hands
them to the durable queue. No storage logic here.

Modules:
- types: Domain event model
- normalizers: Decoded logs -> DomainEvents
- listener: Source -> normalizer -> queue loop
"""

from data_ingestion.types import (
    EVENT_TYPES,
    PROTOCOL_NAME,
    DomainEvent,
    EventField,
    EventKind,
    FieldType,
    FlashLoanEvent,
    LiquidationCallEvent,
    RawChainLog,
    SupplyEvent,
    WithdrawEvent,
)
from data_ingestion.normalizers import EventNormalizer
from data_ingestion.listener import ChainEventListener, LogSource, QueueLogSource


__all__ = [
    # Types
    "EVENT_TYPES",
    "PROTOCOL_NAME",
    "DomainEvent",
    "EventField",
    "EventKind",
    "FieldType",
    "FlashLoanEvent",
    "LiquidationCallEvent",
    "RawChainLog",
    "SupplyEvent",
    "WithdrawEvent",
    # Normalizer
    "EventNormalizer",
    # Listener
    "ChainEventListener",
    "LogSource",
    "QueueLogSource",
]
