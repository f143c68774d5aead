"""
Data Ingestion - Type Definitions.

============================================================
PURPOSE
============================================================
Domain event model for the lending protocol events.

- EventKind tag enum
- One frozen dataclass per event variant
- Field schemas shared by the normalizer, the store writer
  and the query engine
- Raw chain log envelope handed over by the RPC subscriber

============================================================
DESIGN PRINCIPLES
============================================================
- Immutable data structures
- Amounts are decimal strings of uint256 values, never floats
- Addresses and hashes are lower-cased hex strings
- Canonical (wire) field names are camelCase

============================================================
"""

import hashlib
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Dict, Mapping, Optional, Sequence, Tuple, Type, Union


PROTOCOL_NAME = "aave-v3"


# =============================================================
# ENUMS
# =============================================================

class EventKind(str, Enum):
    """Lending pool events captured by the pipeline."""
    WITHDRAW = "Withdraw"
    SUPPLY = "Supply"
    FLASH_LOAN = "FlashLoan"
    LIQUIDATION_CALL = "LiquidationCall"

    @classmethod
    def parse(cls, value: Union[str, "EventKind"]) -> "EventKind":
        """
        Resolve an event kind from any of its common spellings.

        Accepts "FlashLoan", "flashLoan", "flash-loan", "flash_loan"
        and "FLASH_LOAN".

        Raises:
            ValueError: If the value names no known kind
        """
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            raise ValueError(f"Unknown event kind: {value!r}")
        key = value.replace("-", "").replace("_", "").lower()
        for kind in cls:
            if kind.value.lower() == key:
                return kind
        raise ValueError(f"Unknown event kind: {value!r}")


class FieldType(str, Enum):
    """Solidity argument types used by the captured events."""
    ADDRESS = "address"
    UINT256 = "uint256"
    UINT16 = "uint16"
    UINT8 = "uint8"
    BOOL = "bool"
    TX_HASH = "bytes32"


# =============================================================
# FIELD SCHEMA
# =============================================================

@dataclass(frozen=True)
class EventField:
    """One event field: Python attribute, wire name and type."""
    attr: str
    wire_name: str
    field_type: FieldType

    @property
    def is_integer(self) -> bool:
        return self.field_type in (FieldType.UINT256, FieldType.UINT16, FieldType.UINT8)


TX_HASH_FIELD = EventField("tx_hash", "txHash", FieldType.TX_HASH)


# =============================================================
# DOMAIN EVENTS
# =============================================================

@dataclass(frozen=True)
class DomainEvent:
    """
    Base for the four lending event variants.

    Subclasses declare their field schema in ABI argument order
    (``FIELDS``, tx hash last) and which attributes play the
    asset / primary amount / user roles.
    """

    KIND: ClassVar[EventKind]
    FIELDS: ClassVar[Tuple[EventField, ...]]
    ASSET_ATTR: ClassVar[str]
    AMOUNT_ATTR: ClassVar[str]
    USER_ATTRS: ClassVar[Tuple[str, ...]]
    PARTICIPANT_ATTRS: ClassVar[Tuple[str, ...]]

    @property
    def kind(self) -> EventKind:
        return self.KIND

    @classmethod
    def argument_fields(cls) -> Tuple[EventField, ...]:
        """Fields carried by the decoded log arguments (everything but the tx hash)."""
        return tuple(f for f in cls.FIELDS if f.field_type != FieldType.TX_HASH)

    def to_payload(self) -> Dict[str, Any]:
        """Canonical camelCase representation."""
        return {f.wire_name: getattr(self, f.attr) for f in self.FIELDS}

    @property
    def asset_address(self) -> str:
        return getattr(self, self.ASSET_ATTR)

    @property
    def primary_amount(self) -> int:
        """Main monetary amount as an exact integer."""
        return int(getattr(self, self.AMOUNT_ATTR))

    @property
    def users(self) -> Tuple[str, ...]:
        """Addresses matched by user lookups."""
        return tuple(getattr(self, attr) for attr in self.USER_ATTRS)

    @property
    def participants(self) -> Tuple[str, ...]:
        """Addresses counted as distinct protocol users."""
        return tuple(getattr(self, attr) for attr in self.PARTICIPANT_ATTRS)

    @property
    def dedup_key(self) -> str:
        """Deterministic idempotency key for this event."""
        canonical = json.dumps(
            {"kind": self.KIND.value, **self.to_payload()},
            sort_keys=True,
            separators=(",", ":"),
        )
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class WithdrawEvent(DomainEvent):
    """Emitted on withdraw()."""
    reserve: str
    user: str
    to: str
    amount: str
    tx_hash: str

    KIND: ClassVar[EventKind] = EventKind.WITHDRAW
    FIELDS: ClassVar[Tuple[EventField, ...]] = (
        EventField("reserve", "reserve", FieldType.ADDRESS),
        EventField("user", "user", FieldType.ADDRESS),
        EventField("to", "to", FieldType.ADDRESS),
        EventField("amount", "amount", FieldType.UINT256),
        TX_HASH_FIELD,
    )
    ASSET_ATTR: ClassVar[str] = "reserve"
    AMOUNT_ATTR: ClassVar[str] = "amount"
    USER_ATTRS: ClassVar[Tuple[str, ...]] = ("user",)
    PARTICIPANT_ATTRS: ClassVar[Tuple[str, ...]] = ("user",)


@dataclass(frozen=True)
class SupplyEvent(DomainEvent):
    """Emitted on supply()."""
    reserve: str
    user: str
    on_behalf_of: str
    amount: str
    referral_code: str
    tx_hash: str

    KIND: ClassVar[EventKind] = EventKind.SUPPLY
    FIELDS: ClassVar[Tuple[EventField, ...]] = (
        EventField("reserve", "reserve", FieldType.ADDRESS),
        EventField("user", "user", FieldType.ADDRESS),
        EventField("on_behalf_of", "onBehalfOf", FieldType.ADDRESS),
        EventField("amount", "amount", FieldType.UINT256),
        EventField("referral_code", "referralCode", FieldType.UINT16),
        TX_HASH_FIELD,
    )
    ASSET_ATTR: ClassVar[str] = "reserve"
    AMOUNT_ATTR: ClassVar[str] = "amount"
    USER_ATTRS: ClassVar[Tuple[str, ...]] = ("user",)
    PARTICIPANT_ATTRS: ClassVar[Tuple[str, ...]] = ("user",)


@dataclass(frozen=True)
class FlashLoanEvent(DomainEvent):
    """
    Emitted on flashLoan().

    interest_rate_mode: 0 regular flash loan, 1 stable (deprecated
    since v3.2.0), 2 variable.
    """
    target: str
    initiator: str
    asset: str
    amount: str
    interest_rate_mode: str
    premium: str
    referral_code: str
    tx_hash: str

    KIND: ClassVar[EventKind] = EventKind.FLASH_LOAN
    FIELDS: ClassVar[Tuple[EventField, ...]] = (
        EventField("target", "target", FieldType.ADDRESS),
        EventField("initiator", "initiator", FieldType.ADDRESS),
        EventField("asset", "asset", FieldType.ADDRESS),
        EventField("amount", "amount", FieldType.UINT256),
        EventField("interest_rate_mode", "interestRateMode", FieldType.UINT8),
        EventField("premium", "premium", FieldType.UINT256),
        EventField("referral_code", "referralCode", FieldType.UINT16),
        TX_HASH_FIELD,
    )
    ASSET_ATTR: ClassVar[str] = "asset"
    AMOUNT_ATTR: ClassVar[str] = "amount"
    USER_ATTRS: ClassVar[Tuple[str, ...]] = ("initiator",)
    PARTICIPANT_ATTRS: ClassVar[Tuple[str, ...]] = ("initiator",)


@dataclass(frozen=True)
class LiquidationCallEvent(DomainEvent):
    """Emitted on liquidationCall()."""
    collateral_asset: str
    debt_asset: str
    user: str
    debt_to_cover: str
    liquidated_collateral_amount: str
    liquidator: str
    receive_a_token: bool
    tx_hash: str

    KIND: ClassVar[EventKind] = EventKind.LIQUIDATION_CALL
    FIELDS: ClassVar[Tuple[EventField, ...]] = (
        EventField("collateral_asset", "collateralAsset", FieldType.ADDRESS),
        EventField("debt_asset", "debtAsset", FieldType.ADDRESS),
        EventField("user", "user", FieldType.ADDRESS),
        EventField("debt_to_cover", "debtToCover", FieldType.UINT256),
        EventField("liquidated_collateral_amount", "liquidatedCollateralAmount", FieldType.UINT256),
        EventField("liquidator", "liquidator", FieldType.ADDRESS),
        EventField("receive_a_token", "receiveAToken", FieldType.BOOL),
        TX_HASH_FIELD,
    )
    ASSET_ATTR: ClassVar[str] = "collateral_asset"
    AMOUNT_ATTR: ClassVar[str] = "liquidated_collateral_amount"
    USER_ATTRS: ClassVar[Tuple[str, ...]] = ("user",)
    PARTICIPANT_ATTRS: ClassVar[Tuple[str, ...]] = ("user", "liquidator")


EVENT_TYPES: Dict[EventKind, Type[DomainEvent]] = {
    EventKind.WITHDRAW: WithdrawEvent,
    EventKind.SUPPLY: SupplyEvent,
    EventKind.FLASH_LOAN: FlashLoanEvent,
    EventKind.LIQUIDATION_CALL: LiquidationCallEvent,
}


# =============================================================
# RAW CHAIN LOG
# =============================================================

DecodedArgs = Union[Sequence[Any], Mapping[str, Any]]


@dataclass
class RawChainLog:
    """Decoded log as handed over by the chain subscriber."""
    event_name: str
    args: DecodedArgs
    tx_hash: Any
    block_number: Optional[int] = None
    log_index: Optional[int] = None
    received_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
