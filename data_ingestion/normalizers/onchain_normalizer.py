"""
Data Ingestion - On-Chain Normalizer.

============================================================
RESPONSIBILITY
============================================================
Converts decoded lending pool logs into typed domain events.

- Maps event names to DomainEvent variants
- Converts integers to canonical decimal strings
- Lower-cases addresses and transaction hashes
- Rebuilds events from stored/queued payloads (inverse)

============================================================
DESIGN PRINCIPLES
============================================================
- No floating point at any point
- Malformed input raises MalformedEventError, never a
  partially filled event
- Stateless and safe to share

============================================================
"""

import logging
import operator
import re
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Type

from core.exceptions import MalformedEventError
from data_ingestion.types import (
    EVENT_TYPES,
    DecodedArgs,
    DomainEvent,
    EventField,
    EventKind,
    FieldType,
    RawChainLog,
    TX_HASH_FIELD,
)


logger = logging.getLogger(__name__)


ADDRESS_PATTERN = re.compile(r"^0x[0-9a-fA-F]{40}$")
TX_HASH_PATTERN = re.compile(r"^0x[0-9a-fA-F]{64}$")

UINT_MAX: Dict[FieldType, int] = {
    FieldType.UINT256: 2 ** 256 - 1,
    FieldType.UINT16: 2 ** 16 - 1,
    FieldType.UINT8: 2 ** 8 - 1,
}


class EventNormalizer:
    """
    Normalizes decoded chain logs into DomainEvents.

    Usage:
        normalizer = EventNormalizer()
        event = normalizer.normalize(
            "Withdraw",
            [reserve, user, to, 10**18],
            "0xabc...",
        )
    """

    def __init__(self, event_types: Optional[Dict[EventKind, Type[DomainEvent]]] = None) -> None:
        self._event_types = dict(event_types or EVENT_TYPES)

    def supported_events(self) -> List[str]:
        """Event names this normalizer accepts."""
        return [kind.value for kind in self._event_types]

    def resolve_kind(self, event_name: Any) -> EventKind:
        """Map an event name to its kind, or raise MalformedEventError."""
        try:
            kind = EventKind.parse(event_name)
        except ValueError:
            raise MalformedEventError(
                f"Unsupported event: {event_name!r}",
                event_name=str(event_name),
            )
        if kind not in self._event_types:
            raise MalformedEventError(
                f"Unsupported event: {event_name!r}",
                event_name=str(event_name),
            )
        return kind

    # ---------------------------------------------------------
    # Chain log -> DomainEvent
    # ---------------------------------------------------------

    def normalize(
        self,
        event_name: str,
        decoded_args: DecodedArgs,
        tx_hash: Any,
    ) -> DomainEvent:
        """
        Build a DomainEvent from a decoded log.

        Args:
            event_name: Solidity event name (e.g. "LiquidationCall")
            decoded_args: Arguments in ABI order, or a mapping keyed by
                canonical (camelCase) or attribute (snake_case) name
            tx_hash: Hash of the emitting transaction

        Raises:
            MalformedEventError: If a field is missing or invalid
        """
        kind = self.resolve_kind(event_name)
        event_cls = self._event_types[kind]
        fields = event_cls.argument_fields()
        tx_hash_str = self._coerce(TX_HASH_FIELD, tx_hash, kind, None, strict=True)

        raw_values = self._extract_values(fields, decoded_args, kind, tx_hash_str)
        values = {
            f.attr: self._coerce(f, raw_values[f.attr], kind, tx_hash_str, strict=True)
            for f in fields
        }
        values[TX_HASH_FIELD.attr] = tx_hash_str
        return event_cls(**values)

    def normalize_log(self, log: RawChainLog) -> DomainEvent:
        """Normalize a RawChainLog envelope."""
        return self.normalize(log.event_name, log.args, log.tx_hash)

    def normalize_batch(self, logs: Iterable[RawChainLog]) -> List[DomainEvent]:
        """
        Normalize many logs, dropping malformed ones.

        Dropped logs are logged at WARNING level.
        """
        events: List[DomainEvent] = []
        for log in logs:
            try:
                events.append(self.normalize_log(log))
            except MalformedEventError as e:
                logger.warning(f"[normalizer] Dropping log: {e.to_log_format()}")
        return events

    # ---------------------------------------------------------
    # Payload -> DomainEvent
    # ---------------------------------------------------------

    def from_payload(self, kind: Any, payload: Mapping[str, Any]) -> DomainEvent:
        """
        Rebuild a DomainEvent from its canonical payload.

        Extra keys (protocol/eventType tags) are ignored. Booleans may
        be given as "true"/"false" strings.

        Raises:
            MalformedEventError: If the payload does not match the schema
        """
        resolved = self.resolve_kind(kind)
        event_cls = self._event_types[resolved]
        if not isinstance(payload, Mapping):
            raise MalformedEventError(
                f"Payload must be a mapping, got {type(payload).__name__}",
                event_name=resolved.value,
            )

        tx_hash = payload.get(TX_HASH_FIELD.wire_name)
        values: Dict[str, Any] = {}
        for f in event_cls.FIELDS:
            if f.wire_name in payload:
                raw = payload[f.wire_name]
            elif f.attr in payload:
                raw = payload[f.attr]
            else:
                raise MalformedEventError(
                    f"Missing field '{f.wire_name}'",
                    event_name=resolved.value,
                    field_name=f.wire_name,
                    tx_hash=str(tx_hash) if tx_hash else None,
                )
            values[f.attr] = self._coerce(f, raw, resolved, tx_hash, strict=False)
        return event_cls(**values)

    # ---------------------------------------------------------
    # Helpers
    # ---------------------------------------------------------

    def _extract_values(
        self,
        fields: Sequence[EventField],
        decoded_args: DecodedArgs,
        kind: EventKind,
        tx_hash: str,
    ) -> Dict[str, Any]:
        if isinstance(decoded_args, Mapping):
            values = {}
            for f in fields:
                if f.wire_name in decoded_args:
                    values[f.attr] = decoded_args[f.wire_name]
                elif f.attr in decoded_args:
                    values[f.attr] = decoded_args[f.attr]
                else:
                    raise MalformedEventError(
                        f"Missing argument '{f.wire_name}'",
                        event_name=kind.value,
                        field_name=f.wire_name,
                        tx_hash=tx_hash,
                    )
            return values

        if isinstance(decoded_args, (str, bytes)) or not isinstance(decoded_args, Sequence):
            raise MalformedEventError(
                f"Decoded arguments must be a sequence or mapping, got {type(decoded_args).__name__}",
                event_name=kind.value,
                tx_hash=tx_hash,
            )

        if len(decoded_args) != len(fields):
            missing = fields[len(decoded_args)].wire_name if len(decoded_args) < len(fields) else None
            raise MalformedEventError(
                f"Expected {len(fields)} arguments, got {len(decoded_args)}",
                event_name=kind.value,
                field_name=missing,
                tx_hash=tx_hash,
            )
        return {f.attr: value for f, value in zip(fields, decoded_args)}

    def _coerce(
        self,
        f: EventField,
        value: Any,
        kind: EventKind,
        tx_hash: Optional[str],
        strict: bool,
    ) -> Any:
        def fail(reason: str) -> MalformedEventError:
            return MalformedEventError(
                f"Invalid '{f.wire_name}': {reason}",
                event_name=kind.value,
                field_name=f.wire_name,
                tx_hash=tx_hash,
            )

        if value is None:
            raise fail("value is missing")

        if f.field_type == FieldType.ADDRESS:
            return _coerce_hex(value, ADDRESS_PATTERN, 20, fail)
        if f.field_type == FieldType.TX_HASH:
            return _coerce_hex(value, TX_HASH_PATTERN, 32, fail)
        if f.field_type == FieldType.BOOL:
            if isinstance(value, bool):
                return value
            if not strict and isinstance(value, str) and value.lower() in ("true", "false"):
                return value.lower() == "true"
            raise fail(f"expected bool, got {value!r}")
        return _coerce_uint(value, UINT_MAX[f.field_type], fail)


def _coerce_hex(value: Any, pattern: "re.Pattern[str]", size: int, fail) -> str:
    if isinstance(value, (bytes, bytearray)):
        if len(value) != size:
            raise fail(f"expected {size} bytes, got {len(value)}")
        return "0x" + bytes(value).hex()
    if not isinstance(value, str) or not pattern.match(value):
        raise fail(f"not a {size}-byte hex string: {value!r}")
    return value.lower()


def _coerce_uint(value: Any, max_value: int, fail) -> str:
    if isinstance(value, bool) or isinstance(value, float):
        raise fail(f"expected integer, got {type(value).__name__}")

    if isinstance(value, str):
        text = value.strip()
        try:
            if text.lower().startswith("0x"):
                number = int(text, 16)
            elif text.isdigit():
                number = int(text)
            else:
                raise ValueError(text)
        except ValueError:
            raise fail(f"not an integer: {value!r}")
    else:
        try:
            number = operator.index(value)
        except TypeError:
            raise fail(f"expected integer, got {type(value).__name__}")

    if number < 0:
        raise fail(f"negative value {number}")
    if number > max_value:
        raise fail(f"value {number} exceeds {max_value}")
    return str(number)
