"""Data models for markers and votes."""

from pymarkers.models._base import (
    EpochTimestamp,
    MarkersBaseModel,
    MarkerStatus,
    VoteColor,
    parse_epoch_timestamp,
)
from pymarkers.models.marker import IMMUTABLE_FIELDS, Marker, MarkerDetails
from pymarkers.models.vote import ClearedResult, ResultingStatus, Vote, VoteAction, VoteEvent

VoteOutcome = Marker | ClearedResult
"""What :meth:`pymarkers.engine.ReconciliationEngine.submit_vote` returns."""

__all__ = [
    "ClearedResult",
    "EpochTimestamp",
    "IMMUTABLE_FIELDS",
    "Marker",
    "MarkerDetails",
    "MarkerStatus",
    "MarkersBaseModel",
    "ResultingStatus",
    "Vote",
    "VoteAction",
    "VoteColor",
    "VoteEvent",
    "VoteOutcome",
    "parse_epoch_timestamp",
]
