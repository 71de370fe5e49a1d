"""Marker record and detail view."""

from __future__ import annotations

from pydantic import Field, computed_field, field_validator, model_validator

from pymarkers.models._base import EpochTimestamp, MarkersBaseModel, MarkerStatus, VoteColor
from pymarkers.models.vote import VoteEvent

# Fields a store update may never change.
IMMUTABLE_FIELDS: frozenset[str] = frozenset({"id", "latitude", "longitude", "created_at"})

# Lifetime counters a store update may never lower.
MONOTONIC_FIELDS: frozenset[str] = frozenset({"red_press_count", "green_press_count"})


class Marker(MarkersBaseModel):
    """A persisted map point with one reconciled status.

    Parameters
    ----------
    id : str
        Unique, immutable identifier.
    latitude, longitude : float
        Location in degrees.  A marker never moves.
    status : MarkerStatus
        Current authoritative status.
    created_at : datetime
        Creation time (UTC).
    last_action_at : datetime
        Time of the most recent vote that affected the marker.
    confirmation_count : int
        Votes received since the marker turned orange.  Always ``0`` for
        green and red markers.
    red_press_count, green_press_count : int
        Lifetime vote counters per color.
    pending_intent : VoteColor or None
        Color an orange marker is trying to confirm.
    pending_red_votes, pending_green_votes : int
        Votes of each color since the marker turned orange.
    """

    id: str = Field(min_length=1)
    latitude: float = Field(ge=-90.0, le=90.0)
    longitude: float = Field(ge=-180.0, le=180.0)
    status: MarkerStatus
    created_at: EpochTimestamp
    last_action_at: EpochTimestamp
    confirmation_count: int = Field(default=0, ge=0)
    red_press_count: int = Field(default=0, ge=0)
    green_press_count: int = Field(default=0, ge=0)
    pending_intent: VoteColor | None = None
    pending_red_votes: int = Field(default=0, ge=0)
    pending_green_votes: int = Field(default=0, ge=0)

    @field_validator("id")
    @classmethod
    def _strip_id(cls, value: str) -> str:
        marker_id = value.strip()
        if not marker_id:
            raise ValueError("id must be non-empty")
        return marker_id

    @model_validator(mode="after")
    def _check_orange_bookkeeping(self) -> Marker:
        if self.status is MarkerStatus.ORANGE:
            if self.pending_intent is None:
                raise ValueError("orange marker requires pending_intent")
            return self
        if self.confirmation_count or self.pending_red_votes or self.pending_green_votes:
            raise ValueError(f"{self.status} marker must not carry confirmation state")
        if self.pending_intent is not None:
            raise ValueError(f"{self.status} marker must not carry pending_intent")
        return self

    def press_count(self, color: VoteColor) -> int:
        return self.red_press_count if color is VoteColor.RED else self.green_press_count


class MarkerDetails(MarkersBaseModel):
    """Detail view of a single marker."""

    marker: Marker
    latest_event: VoteEvent | None = None
    history_length: int = 0

    @computed_field  # type: ignore[prop-decorator]
    @property
    def interaction_count(self) -> int:
        return self.marker.red_press_count + self.marker.green_press_count
