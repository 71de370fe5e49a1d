"""Base model and enums for pymarkers records.

Every persisted record inherits from :class:`MarkersBaseModel` which
provides:

* ``alias_generator=to_camel`` so snake_case fields serialize to the
  camelCase keys used on disk and on the wire.
* frozen instances; changes go through ``model_validate`` so invariants
  are re-checked at the store boundary.

Timestamps use :data:`EpochTimestamp`: UTC-aware datetimes in Python,
epoch milliseconds in JSON.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, PlainSerializer
from pydantic.alias_generators import to_camel

# Threshold to distinguish seconds from milliseconds.
_MS_THRESHOLD = 1_000_000_000_000


def parse_epoch_timestamp(value: Any) -> datetime:
    """Convert an epoch timestamp (seconds **or** milliseconds) to a UTC datetime.

    Naive datetimes are taken to be UTC.  ISO-8601 strings are accepted.
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)
    if isinstance(value, str):
        try:
            ts = float(value)
        except ValueError:
            return parse_epoch_timestamp(datetime.fromisoformat(value))
    else:
        ts = float(value)
    if ts >= _MS_THRESHOLD:
        ts /= 1000.0
    return datetime.fromtimestamp(ts, tz=UTC)


def to_epoch_ms(value: datetime) -> int:
    return int(round(value.timestamp() * 1000))


EpochTimestamp = Annotated[
    datetime,
    BeforeValidator(parse_epoch_timestamp),
    PlainSerializer(to_epoch_ms, return_type=int, when_used="json"),
]
"""Annotated type that accepts epoch ints (seconds or ms) and dumps epoch ms to JSON."""


class MarkerStatus(StrEnum):
    GREEN = "green"
    RED = "red"
    ORANGE = "orange"


class VoteColor(StrEnum):
    GREEN = "green"
    RED = "red"

    @property
    def as_status(self) -> MarkerStatus:
        return MarkerStatus(self.value)

    @property
    def opposite(self) -> VoteColor:
        return VoteColor.RED if self is VoteColor.GREEN else VoteColor.GREEN


class MarkersBaseModel(BaseModel):
    """Base for pymarkers records."""

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        populate_by_name=True,
        alias_generator=to_camel,
    )
