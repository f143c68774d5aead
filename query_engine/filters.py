"""
Query Engine - Filters.

============================================================
PURPOSE
============================================================
Caller-facing filter input for query_with_filters and its
validated form.

Amounts are compared as exact integers. Dates accept ISO
8601 strings or datetimes; naive values are taken as UTC.

============================================================
"""

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Union

from core.exceptions import QueryValidationError
from data_ingestion.types import EventKind


ADDRESS_PATTERN = re.compile(r"^0x[0-9a-fA-F]{40}$")

ALL = "all"

DateLike = Union[str, datetime]
AmountLike = Union[str, int]


def validate_address(value: str, field_name: str) -> str:
    if not isinstance(value, str) or not ADDRESS_PATTERN.match(value):
        raise QueryValidationError(
            f"{field_name} must be a 0x-prefixed 20-byte hex address",
            field_name=field_name,
            value=value,
        )
    return value.lower()


def validate_limit(value: int, field_name: str = "limit") -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise QueryValidationError(f"{field_name} must be a positive integer", field_name=field_name, value=value)
    return value


def _parse_amount(value: AmountLike, field_name: str) -> int:
    if isinstance(value, bool):
        raise QueryValidationError(f"{field_name} must be an integer amount", field_name=field_name, value=value)
    if isinstance(value, int):
        amount = value
    elif isinstance(value, str) and value.strip().isdigit():
        amount = int(value.strip())
    else:
        raise QueryValidationError(
            f"{field_name} must be a non-negative integer amount in the token's smallest unit",
            field_name=field_name,
            value=value,
        )
    if amount < 0:
        raise QueryValidationError(f"{field_name} must not be negative", field_name=field_name, value=value)
    return amount


def _parse_date(value: DateLike, field_name: str) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            raise QueryValidationError(f"{field_name} is not an ISO 8601 date", field_name=field_name, value=value)
    else:
        raise QueryValidationError(f"{field_name} is not an ISO 8601 date", field_name=field_name, value=value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class ValidatedFilters:
    """Typed filters ready for matching."""
    kind: Optional[EventKind] = None
    user: Optional[str] = None
    asset: Optional[str] = None
    min_amount: Optional[int] = None
    max_amount: Optional[int] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    limit: int = 100


@dataclass
class EventFilters:
    """
    Filter input of QueryEngine.query_with_filters.

    ``event_type`` and ``protocol`` accept "all" for no restriction.
    """

    protocol: Optional[str] = None
    event_type: Optional[Union[str, EventKind]] = None
    user: Optional[str] = None
    asset: Optional[str] = None
    min_amount: Optional[AmountLike] = None
    max_amount: Optional[AmountLike] = None
    start_date: Optional[DateLike] = None
    end_date: Optional[DateLike] = None
    limit: int = 100

    def validate(self, protocol: str) -> ValidatedFilters:
        """
        Raises:
            QueryValidationError: If any filter is malformed
        """
        if self.protocol not in (None, "", ALL, protocol):
            raise QueryValidationError(
                f"Unsupported protocol '{self.protocol}', expected '{protocol}'",
                field_name="protocol",
                value=self.protocol,
            )

        kind = None
        if self.event_type not in (None, "", ALL):
            try:
                kind = EventKind.parse(self.event_type)
            except ValueError:
                raise QueryValidationError(
                    f"Unknown event type '{self.event_type}'",
                    field_name="event_type",
                    value=self.event_type,
                )

        min_amount = _parse_amount(self.min_amount, "min_amount") if self.min_amount not in (None, "") else None
        max_amount = _parse_amount(self.max_amount, "max_amount") if self.max_amount not in (None, "") else None
        if min_amount is not None and max_amount is not None and min_amount > max_amount:
            raise QueryValidationError("min_amount is greater than max_amount", field_name="min_amount")

        start = _parse_date(self.start_date, "start_date") if self.start_date else None
        end = _parse_date(self.end_date, "end_date") if self.end_date else None
        if start is not None and end is not None and start > end:
            raise QueryValidationError("start_date is after end_date", field_name="start_date")

        return ValidatedFilters(
            kind=kind,
            user=validate_address(self.user, "user") if self.user else None,
            asset=validate_address(self.asset, "asset") if self.asset else None,
            min_amount=min_amount,
            max_amount=max_amount,
            start=start,
            end=end,
            limit=validate_limit(self.limit),
        )
