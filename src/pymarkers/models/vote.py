"""Vote input, vote events and vote results."""

from __future__ import annotations

from enum import StrEnum

from pydantic import Field, field_validator

from pymarkers.models._base import EpochTimestamp, MarkersBaseModel, MarkerStatus, VoteColor


class ResultingStatus(StrEnum):
    """Marker status after a vote, plus the terminal ``cleared`` outcome."""

    GREEN = "green"
    RED = "red"
    ORANGE = "orange"
    CLEARED = "cleared"

    @classmethod
    def from_status(cls, status: MarkerStatus) -> ResultingStatus:
        return cls(status.value)


class VoteAction(StrEnum):
    """What a vote did to its marker."""

    CREATED = "created"
    CLEARED = "cleared"
    DISPUTED = "disputed"
    CONFIRMED = "confirmed"
    RESOLVED = "resolved"
    COVERED = "covered"


class Vote(MarkersBaseModel):
    """A validated vote, ready for planning."""

    reporter_identity: str = Field(min_length=1)
    latitude: float = Field(ge=-90.0, le=90.0)
    longitude: float = Field(ge=-180.0, le=180.0)
    color: VoteColor
    request_id: str | None = None


class VoteEvent(MarkersBaseModel):
    """Immutable record of one vote against one marker."""

    marker_id: str
    reporter_identity: str
    color: VoteColor
    prior_status: MarkerStatus | None = None
    resulting_status: ResultingStatus
    distance_meters: float = Field(ge=0.0)
    timestamp: EpochTimestamp
    action: VoteAction
    vote_latitude: float = Field(ge=-90.0, le=90.0)
    vote_longitude: float = Field(ge=-180.0, le=180.0)
    request_id: str | None = None

    @field_validator("request_id")
    @classmethod
    def _blank_request_id_is_none(cls, value: str | None) -> str | None:
        if value is None:
            return None
        stripped = value.strip()
        return stripped or None

    def to_vote(self) -> Vote:
        return Vote(
            reporter_identity=self.reporter_identity,
            latitude=self.vote_latitude,
            longitude=self.vote_longitude,
            color=self.color,
            request_id=self.request_id,
        )


class ClearedResult(MarkersBaseModel):
    """Outcome of a green vote that removed a red marker."""

    marker_id: str
    cleared_at: EpochTimestamp
    distance_meters: float
    event: VoteEvent
