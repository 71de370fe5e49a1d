"""Marker reconciliation engine.

Turns votes into marker changes::

    async with ReconciliationEngine(config=MarkersConfig.from_env()) as engine:
        outcome = await engine.submit_vote("reporter-token", 49.4229, 26.9871, "green")

Each vote is planned on a snapshot, then the target marker is locked and
the vote is re-planned and applied inside one store transaction, so the
marker change and its :class:`VoteEvent` land together or not at all.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from datetime import UTC, datetime
from typing import Any

from pymarkers._constants import DISTANCE_EPSILON_M
from pymarkers._redact import redact_for_log, redact_reporter
from pymarkers.config import MarkersConfig
from pymarkers.exceptions import ConcurrencyConflictError, InvalidInputError, UnauthenticatedError
from pymarkers.geo import distance_meters, validate_coordinates
from pymarkers.models._base import MarkerStatus, VoteColor
from pymarkers.models.marker import Marker, MarkerDetails
from pymarkers.models.vote import ClearedResult, ResultingStatus, Vote, VoteAction, VoteEvent
from pymarkers.state.file_store import JsonFileMarkerStore
from pymarkers.state.locks import KeyedLock
from pymarkers.state.policy import Candidate, VotePlan, marker_mutation, plan_vote
from pymarkers.state.store import InMemoryMarkerStore, MarkerStore, StoreTransaction

_logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class _TargetMoved(Exception):
    """The planned target changed between snapshot and commit."""


def create_store(config: MarkersConfig, *, clock: Callable[[], datetime] = _utcnow) -> InMemoryMarkerStore:
    """Build the store described by *config* (JSON file or in-memory)."""
    if config.store_path:
        return JsonFileMarkerStore(config.store_path, clock=clock, timeout=config.storage_timeout)
    return InMemoryMarkerStore(clock=clock, timeout=config.storage_timeout)


def _parse_color(color: Any) -> VoteColor:
    if isinstance(color, VoteColor):
        return color
    if isinstance(color, str):
        try:
            return VoteColor(color.strip().lower())
        except ValueError:
            pass
    raise InvalidInputError(f"color must be 'green' or 'red', got {color!r}")


class ReconciliationEngine:
    """Reconciles votes against nearby markers.

    Parameters
    ----------
    store : MarkerStore or None
        Backing store.  Defaults to :func:`create_store` for *config*.
    config : MarkersConfig or None
        Radii, threshold and timeouts.  Defaults to ``MarkersConfig()``.
    clock : callable
        Returns the current UTC time; injectable for tests.
    """

    def __init__(
        self,
        store: MarkerStore | None = None,
        config: MarkersConfig | None = None,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._config = config if config is not None else MarkersConfig()
        self._clock = clock
        self._store: MarkerStore = store if store is not None else create_store(self._config, clock=clock)
        self._locks = KeyedLock(timeout=self._config.lock_timeout)

    @property
    def store(self) -> MarkerStore:
        return self._store

    @property
    def config(self) -> MarkersConfig:
        return self._config

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> ReconciliationEngine:
        await self._store.open()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self._store.close()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def submit_vote(
        self,
        reporter_identity: str | None,
        latitude: Any,
        longitude: Any,
        color: VoteColor | str,
        *,
        request_id: str | None = None,
    ) -> Marker | ClearedResult:
        """Apply one vote and return the affected marker or the cleared result.

        Raises
        ------
        UnauthenticatedError
            *reporter_identity* is missing or blank.
        InvalidInputError
            Coordinates or color are malformed.
        StorageUnavailableError
            The store timed out or failed; nothing was written.
        ConcurrencyConflictError
            The target marker stayed busy; nothing was written.
        NotFoundError
            *request_id* was already applied and its marker no longer exists.
        """
        vote = self._validate_vote(reporter_identity, latitude, longitude, color, request_id)
        outcome, _event = await self._reconcile(vote)
        return outcome

    async def get_marker(self, marker_id: str) -> MarkerDetails:
        """Marker with its latest event and interaction totals."""
        marker = await self._store.get(marker_id)
        history = await self._store.history_for(marker_id)
        return MarkerDetails(
            marker=marker,
            latest_event=history[-1] if history else None,
            history_length=len(history),
        )

    async def all_markers(self) -> list[Marker]:
        return await self._store.all_markers()

    async def history_for(self, marker_id: str) -> list[VoteEvent]:
        return await self._store.history_for(marker_id)

    async def replay(self, events: Iterable[VoteEvent]) -> int:
        """Re-apply a recorded vote history to this engine's store.

        Events are applied in timestamp order with their recorded time and
        created marker ids, so replaying a full history into an empty
        store reproduces the recorded markers.  Returns the number of
        events whose replayed outcome differs from the recorded one.
        """
        divergent = 0
        for recorded in sorted(events, key=lambda event: event.timestamp):
            new_marker_id = recorded.marker_id if recorded.action is VoteAction.CREATED else None
            _outcome, replayed = await self._reconcile(
                recorded.to_vote(),
                at=recorded.timestamp,
                new_marker_id=new_marker_id,
            )
            if (replayed.marker_id, replayed.action, replayed.resulting_status) != (
                recorded.marker_id,
                recorded.action,
                recorded.resulting_status,
            ):
                divergent += 1
                _logger.warning(
                    "Replay diverged for marker=%s: recorded %s/%s, replayed %s/%s on marker=%s",
                    recorded.marker_id,
                    recorded.action,
                    recorded.resulting_status,
                    replayed.action,
                    replayed.resulting_status,
                    replayed.marker_id,
                )
                _logger.debug("Diverged event: %s", redact_for_log(recorded.model_dump(mode="json", by_alias=True)))
        return divergent

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _validate_vote(
        reporter_identity: Any,
        latitude: Any,
        longitude: Any,
        color: Any,
        request_id: str | None,
    ) -> Vote:
        if not isinstance(reporter_identity, str) or not reporter_identity.strip():
            raise UnauthenticatedError("A reporter identity is required to vote")
        lat, lon = validate_coordinates(latitude, longitude)
        vote_color = _parse_color(color)
        if request_id is not None:
            if not isinstance(request_id, str):
                raise InvalidInputError(f"request_id must be a string, got {request_id!r}")
            request_id = request_id.strip() or None
        return Vote(
            reporter_identity=reporter_identity.strip(),
            latitude=lat,
            longitude=lon,
            color=vote_color,
            request_id=request_id,
        )

    def _candidates(self, vote: Vote, markers: Iterable[Marker]) -> list[Candidate]:
        return [
            Candidate(
                marker=marker,
                distance_m=distance_meters(vote.latitude, vote.longitude, marker.latitude, marker.longitude),
            )
            for marker in markers
        ]

    def _plan(self, vote: Vote, markers: Iterable[Marker]) -> VotePlan:
        return plan_vote(
            vote,
            self._candidates(vote, markers),
            radius_min_m=self._config.match_radius_min_m,
            radius_max_m=self._config.match_radius_max_m,
        )

    @property
    def _search_radius(self) -> float:
        return self._config.match_radius_max_m + DISTANCE_EPSILON_M

    async def _reconcile(
        self,
        vote: Vote,
        *,
        at: datetime | None = None,
        new_marker_id: str | None = None,
    ) -> tuple[Marker | ClearedResult, VoteEvent]:
        last_target: str | None = None
        for attempt in range(1, self._config.max_replans + 1):
            nearby = await self._store.find_within_radius(vote.latitude, vote.longitude, self._search_radius)
            plan = self._plan(vote, nearby)
            last_target = plan.target_id
            async with self._locks.hold(plan.target_id):
                try:
                    return await self._commit(vote, plan.target_id, at=at, new_marker_id=new_marker_id)
                except _TargetMoved:
                    _logger.debug("Target of vote moved (was marker=%s), replanning attempt=%d", last_target, attempt)
        raise ConcurrencyConflictError(
            f"Vote could not settle on a marker after {self._config.max_replans} attempts",
            marker_id=last_target or "",
        )

    async def _commit(
        self,
        vote: Vote,
        locked_target: str | None,
        *,
        at: datetime | None,
        new_marker_id: str | None,
    ) -> tuple[Marker | ClearedResult, VoteEvent]:
        async with self._store.transaction() as txn:
            if vote.request_id is not None:
                duplicate = txn.find_event_by_request_id(vote.request_id)
                if duplicate is not None:
                    _logger.debug("Vote request_id=%s already applied", vote.request_id)
                    return self._recorded_outcome(txn, duplicate), duplicate

            plan = self._plan(vote, txn.find_within_radius(vote.latitude, vote.longitude, self._search_radius))
            if plan.target_id is not None and plan.target_id != locked_target:
                raise _TargetMoved

            now = at if at is not None else self._clock()
            outcome, event = self._apply(txn, vote, plan, now, new_marker_id)
            txn.append_event(event)

        _logger.debug(
            "Vote color=%s by %s at (%.6f, %.6f): %s marker=%s distance=%.1fm",
            vote.color,
            redact_reporter(vote.reporter_identity),
            vote.latitude,
            vote.longitude,
            event.action,
            event.marker_id,
            event.distance_meters,
        )
        return outcome, event

    def _apply(
        self,
        txn: StoreTransaction,
        vote: Vote,
        plan: VotePlan,
        now: datetime,
        new_marker_id: str | None,
    ) -> tuple[Marker | ClearedResult, VoteEvent]:
        event_fields: dict[str, Any] = {
            "reporter_identity": vote.reporter_identity,
            "color": vote.color,
            "timestamp": now,
            "vote_latitude": vote.latitude,
            "vote_longitude": vote.longitude,
            "request_id": vote.request_id,
        }

        if plan.target is None:
            created = txn.create(
                vote.latitude,
                vote.longitude,
                vote.color.as_status,
                marker_id=new_marker_id,
                at=now,
            )
            press_field = "red_press_count" if vote.color is VoteColor.RED else "green_press_count"
            marker = txn.update(created.id, {press_field: 1})
            event = VoteEvent(
                marker_id=marker.id,
                prior_status=None,
                resulting_status=ResultingStatus.from_status(marker.status),
                distance_meters=0.0,
                action=VoteAction.CREATED,
                **event_fields,
            )
            return marker, event

        target = plan.target
        if plan.action is VoteAction.CLEARED:
            removed = txn.remove(target.marker.id)
            event = VoteEvent(
                marker_id=removed.id,
                prior_status=MarkerStatus.RED,
                resulting_status=ResultingStatus.CLEARED,
                distance_meters=target.distance_m,
                action=VoteAction.CLEARED,
                **event_fields,
            )
            return ClearedResult(
                marker_id=removed.id,
                cleared_at=now,
                distance_meters=target.distance_m,
                event=event,
            ), event

        action, mutation = marker_mutation(
            plan,
            vote,
            now=now,
            confirmation_threshold=self._config.confirmation_threshold,
        )
        marker = txn.update(target.marker.id, mutation)
        event = VoteEvent(
            marker_id=marker.id,
            prior_status=target.marker.status,
            resulting_status=ResultingStatus.from_status(marker.status),
            distance_meters=target.distance_m,
            action=action,
            **event_fields,
        )
        return marker, event

    @staticmethod
    def _recorded_outcome(txn: StoreTransaction, event: VoteEvent) -> Marker | ClearedResult:
        if event.resulting_status is ResultingStatus.CLEARED:
            return ClearedResult(
                marker_id=event.marker_id,
                cleared_at=event.timestamp,
                distance_meters=event.distance_meters,
                event=event,
            )
        return txn.get(event.marker_id)
