"""Deterministic vote reconciliation policy.

This module is pure: it sees a vote and the markers around it (with
their exact distances) and decides what the vote does.  Nothing here
touches the store or the clock; the engine feeds it a consistent
snapshot and applies the result inside a store transaction.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from pymarkers._constants import DISTANCE_EPSILON_M
from pymarkers.models._base import MarkerStatus, VoteColor
from pymarkers.models.marker import Marker
from pymarkers.models.vote import Vote, VoteAction


@dataclass(frozen=True, slots=True)
class Candidate:
    """A marker near a vote, with its exact distance to the vote."""

    marker: Marker
    distance_m: float


@dataclass(frozen=True, slots=True)
class VotePlan:
    """What a vote should do.  ``target`` is ``None`` only for ``CREATED``."""

    action: VoteAction
    target: Candidate | None = None

    @property
    def target_id(self) -> str | None:
        return self.target.marker.id if self.target is not None else None


def in_band(distance_m: float, *, radius_min_m: float, radius_max_m: float) -> bool:
    """Inclusive match band check."""
    return radius_min_m - DISTANCE_EPSILON_M <= distance_m <= radius_max_m + DISTANCE_EPSILON_M


def _closest(candidates: Iterable[Candidate]) -> Candidate | None:
    # Lowest id breaks distance ties so that planning is deterministic.
    return min(candidates, key=lambda c: (c.distance_m, c.marker.id), default=None)


def _closest_with_status(candidates: list[Candidate], status: MarkerStatus) -> Candidate | None:
    return _closest(c for c in candidates if c.marker.status is status)


def plan_vote(
    vote: Vote,
    candidates: Iterable[Candidate],
    *,
    radius_min_m: float,
    radius_max_m: float,
) -> VotePlan:
    """Decide the effect of *vote* given the markers around it.

    Order of precedence:

    1. a marker closer than the band is the same incident (``COVERED``);
    2. a green vote clears the closest red marker in the band;
    3. any vote confirms the closest orange marker in the band;
    4. a red vote disputes the closest green marker in the band;
    5. otherwise a new marker is created.
    """
    nearby = list(candidates)

    inner = _closest(c for c in nearby if c.distance_m < radius_min_m - DISTANCE_EPSILON_M)
    if inner is not None:
        return VotePlan(VoteAction.COVERED, inner)

    band = [c for c in nearby if in_band(c.distance_m, radius_min_m=radius_min_m, radius_max_m=radius_max_m)]

    if vote.color is VoteColor.GREEN:
        red = _closest_with_status(band, MarkerStatus.RED)
        if red is not None:
            return VotePlan(VoteAction.CLEARED, red)

    orange = _closest_with_status(band, MarkerStatus.ORANGE)
    if orange is not None:
        return VotePlan(VoteAction.CONFIRMED, orange)

    if vote.color is VoteColor.RED:
        green = _closest_with_status(band, MarkerStatus.GREEN)
        if green is not None:
            return VotePlan(VoteAction.DISPUTED, green)

    return VotePlan(VoteAction.CREATED)


def next_intent(red_votes: int, green_votes: int, previous: VoteColor) -> VoteColor:
    """Majority color of votes since a marker turned orange; ties keep *previous*."""
    if red_votes > green_votes:
        return VoteColor.RED
    if green_votes > red_votes:
        return VoteColor.GREEN
    return previous


def _press(marker: Marker, color: VoteColor) -> dict[str, Any]:
    if color is VoteColor.RED:
        return {"red_press_count": marker.red_press_count + 1}
    return {"green_press_count": marker.green_press_count + 1}


_CLEARED_ORANGE_STATE: dict[str, Any] = {
    "confirmation_count": 0,
    "pending_intent": None,
    "pending_red_votes": 0,
    "pending_green_votes": 0,
}


def marker_mutation(
    plan: VotePlan,
    vote: Vote,
    *,
    now: datetime,
    confirmation_threshold: int,
) -> tuple[VoteAction, dict[str, Any]]:
    """Field changes for a plan that keeps its target marker.

    Returns the final action (``CONFIRMED`` becomes ``RESOLVED`` when the
    threshold is met) and the mutation to apply.  Only valid for
    ``COVERED``, ``CONFIRMED`` and ``DISPUTED`` plans.
    """
    if plan.target is None or plan.action not in (VoteAction.COVERED, VoteAction.CONFIRMED, VoteAction.DISPUTED):
        raise ValueError(f"plan {plan.action} does not mutate an existing marker")

    marker = plan.target.marker
    changes: dict[str, Any] = {"last_action_at": now, **_press(marker, vote.color)}

    if plan.action is VoteAction.COVERED:
        return plan.action, changes

    if plan.action is VoteAction.DISPUTED:
        changes.update(
            status=MarkerStatus.ORANGE,
            confirmation_count=0,
            pending_intent=vote.color,
            pending_red_votes=1 if vote.color is VoteColor.RED else 0,
            pending_green_votes=1 if vote.color is VoteColor.GREEN else 0,
        )
        return plan.action, changes

    assert marker.pending_intent is not None  # noqa: S101
    count = marker.confirmation_count + 1
    red_votes = marker.pending_red_votes + (1 if vote.color is VoteColor.RED else 0)
    green_votes = marker.pending_green_votes + (1 if vote.color is VoteColor.GREEN else 0)
    intent = next_intent(red_votes, green_votes, marker.pending_intent)

    if vote.color is intent and count >= confirmation_threshold:
        changes.update(status=intent.as_status, **_CLEARED_ORANGE_STATE)
        return VoteAction.RESOLVED, changes

    changes.update(
        confirmation_count=count,
        pending_intent=intent,
        pending_red_votes=red_votes,
        pending_green_votes=green_votes,
    )
    return VoteAction.CONFIRMED, changes
