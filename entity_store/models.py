"""
Entity Store - Models.

============================================================
PURPOSE
============================================================
Wire-level types of the remote entity store.

An entity is an opaque payload with a content type, a list
of string key/value attributes and an expiry (in seconds
from creation). Queries carry at most one equality
predicate over attributes.

============================================================
"""

import base64
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class Attribute:
    """Indexed string attribute of an entity."""
    key: str
    value: str

    def to_dict(self) -> Dict[str, str]:
        return {"key": self.key, "value": self.value}


def _find(attributes: List[Attribute], key: str) -> Optional[str]:
    for attribute in attributes:
        if attribute.key == key:
            return attribute.value
    return None


@dataclass
class CreateEntityRequest:
    """One entity to create."""
    payload: bytes
    content_type: str
    attributes: List[Attribute]
    expires_in: int

    def attribute(self, key: str) -> Optional[str]:
        return _find(self.attributes, key)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "payload": base64.b64encode(self.payload).decode("ascii"),
            "contentType": self.content_type,
            "attributes": [a.to_dict() for a in self.attributes],
            "expiresIn": self.expires_in,
        }


@dataclass(frozen=True)
class EntityReceipt:
    """Store acknowledgment of a create."""
    entity_key: str
    tx_hash: Optional[str] = None
    block_number: Optional[int] = None
    expires_at_block: Optional[int] = None
    duplicate: bool = False
    """True when an existing entity was returned instead of writing."""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entityKey": self.entity_key,
            "txHash": self.tx_hash,
            "blockNumber": self.block_number,
            "expiresAtBlock": self.expires_at_block,
            "duplicate": self.duplicate,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EntityReceipt":
        return cls(
            entity_key=data["entityKey"],
            tx_hash=data.get("txHash"),
            block_number=data.get("blockNumber"),
            expires_at_block=data.get("expiresAtBlock"),
            duplicate=bool(data.get("duplicate", False)),
        )


@dataclass
class StoredEntity:
    """Entity as returned by a query."""
    key: str
    payload: Optional[bytes] = None
    content_type: Optional[str] = None
    attributes: List[Attribute] = field(default_factory=list)
    owner: Optional[str] = None
    created_at_block: Optional[int] = None
    expires_at_block: Optional[int] = None

    def attribute(self, key: str) -> Optional[str]:
        return _find(self.attributes, key)

    def payload_text(self) -> str:
        if self.payload is None:
            return ""
        return self.payload.decode("utf-8")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StoredEntity":
        raw_payload = data.get("payload")
        return cls(
            key=data["key"],
            payload=base64.b64decode(raw_payload) if raw_payload is not None else None,
            content_type=data.get("contentType"),
            attributes=[Attribute(a["key"], str(a["value"])) for a in data.get("attributes") or []],
            owner=data.get("owner"),
            created_at_block=data.get("createdAtBlock"),
            expires_at_block=data.get("expiresAtBlock"),
        )


@dataclass(frozen=True)
class Predicate:
    """Equality predicate ``key == value`` over attributes."""
    key: str
    value: str

    def matches(self, attributes: List[Attribute]) -> bool:
        return _find(attributes, self.key) == self.value

    def to_dict(self) -> Dict[str, str]:
        return {"op": "eq", "key": self.key, "value": self.value}


def eq(key: str, value: str) -> Predicate:
    return Predicate(key, value)


@dataclass
class EntityQuery:
    """Query with at most one predicate."""
    predicate: Optional[Predicate] = None
    with_payload: bool = True
    with_attributes: bool = True
    limit: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "where": self.predicate.to_dict() if self.predicate else None,
            "withPayload": self.with_payload,
            "withAttributes": self.with_attributes,
            "limit": self.limit,
        }
