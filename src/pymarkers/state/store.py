"""Marker store contract and the in-memory implementation.

The store is the only component allowed to change markers.  All writes
go through a :class:`StoreTransaction`: a single-writer scope whose
staged marker changes and vote events become visible (and durable, for
persistent subclasses) together when the scope exits cleanly.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import secrets
from collections.abc import AsyncIterator, Callable, Iterable, Mapping
from contextlib import AbstractAsyncContextManager
from datetime import UTC, datetime
from typing import Any, Protocol

from pydantic import ValidationError

from pymarkers._constants import STORAGE_TIMEOUT_S
from pymarkers.exceptions import InvalidInputError, MarkersError, NotFoundError, StorageUnavailableError
from pymarkers.geo import distance_meters
from pymarkers.models._base import MarkerStatus
from pymarkers.models.marker import IMMUTABLE_FIELDS, MONOTONIC_FIELDS, Marker
from pymarkers.models.vote import VoteEvent
from pymarkers.state.events import EventLog
from pymarkers.state.policy import Candidate

_logger = logging.getLogger(__name__)

# camelCase keys accepted in mutations alongside the snake_case field names.
_FIELD_BY_ALIAS: dict[str, str] = {
    (info.alias or name): name for name, info in Marker.model_fields.items()
}


def _utcnow() -> datetime:
    return datetime.now(UTC)


def new_marker_id(now: datetime) -> str:
    """Time-sortable id: epoch milliseconds plus 8 random hex chars."""
    return f"{int(now.timestamp() * 1000):013d}{secrets.token_hex(4)}"


def _statuses(status_filter: MarkerStatus | Iterable[MarkerStatus] | None) -> frozenset[MarkerStatus] | None:
    if status_filter is None:
        return None
    if isinstance(status_filter, MarkerStatus):
        return frozenset({status_filter})
    return frozenset(status_filter)


def find_candidates(
    markers: Iterable[Marker],
    latitude: float,
    longitude: float,
    radius_m: float,
    status_filter: MarkerStatus | Iterable[MarkerStatus] | None = None,
) -> list[Candidate]:
    """Markers within *radius_m* (inclusive, exact haversine), closest first."""
    wanted = _statuses(status_filter)
    found: list[Candidate] = []
    for marker in markers:
        if wanted is not None and marker.status not in wanted:
            continue
        distance = distance_meters(latitude, longitude, marker.latitude, marker.longitude)
        if distance <= radius_m:
            found.append(Candidate(marker=marker, distance_m=distance))
    found.sort(key=lambda c: (c.distance_m, c.marker.id))
    return found


def apply_mutation(marker: Marker, mutation: Mapping[str, Any]) -> Marker:
    """Return a validated copy of *marker* with *mutation* applied."""
    changes: dict[str, Any] = {}
    for key, value in mutation.items():
        field_name = _FIELD_BY_ALIAS.get(key, key)
        if field_name not in Marker.model_fields:
            raise InvalidInputError(f"Unknown marker field {key!r}")
        if field_name in IMMUTABLE_FIELDS:
            raise InvalidInputError(f"Marker field {field_name!r} is immutable")
        changes[field_name] = value
    try:
        updated = Marker.model_validate({**marker.model_dump(), **changes})
    except ValidationError as exc:
        raise InvalidInputError(f"Invalid mutation for marker {marker.id}: {exc}") from exc
    for counter in sorted(MONOTONIC_FIELDS):
        if getattr(updated, counter) < getattr(marker, counter):
            raise InvalidInputError(f"Marker field {counter!r} can only increase")
    return updated


class StoreTransaction:
    """Staged view of a store inside a write scope.

    Reads see the staged state.  Nothing is visible outside the
    transaction until the owning store commits it.
    """

    def __init__(
        self,
        markers: dict[str, Marker],
        events: EventLog,
        *,
        clock: Callable[[], datetime],
        id_factory: Callable[[datetime], str],
    ) -> None:
        self._markers = markers
        self._committed_events = events
        self._clock = clock
        self._id_factory = id_factory
        self.staged_events: list[VoteEvent] = []
        self.dirty = False

    @property
    def markers(self) -> dict[str, Marker]:
        return self._markers

    def all_markers(self) -> list[Marker]:
        return list(self._markers.values())

    def get(self, marker_id: str) -> Marker:
        marker = self._markers.get(marker_id)
        if marker is None:
            raise NotFoundError(f"Marker {marker_id} not found", marker_id=marker_id)
        return marker

    def find_candidates(
        self,
        latitude: float,
        longitude: float,
        radius_m: float,
        status_filter: MarkerStatus | Iterable[MarkerStatus] | None = None,
    ) -> list[Candidate]:
        return find_candidates(self._markers.values(), latitude, longitude, radius_m, status_filter)

    def find_within_radius(
        self,
        latitude: float,
        longitude: float,
        radius_m: float,
        status_filter: MarkerStatus | Iterable[MarkerStatus] | None = None,
    ) -> list[Marker]:
        return [c.marker for c in self.find_candidates(latitude, longitude, radius_m, status_filter)]

    def create(
        self,
        latitude: float,
        longitude: float,
        status: MarkerStatus,
        *,
        marker_id: str | None = None,
        at: datetime | None = None,
    ) -> Marker:
        now = at if at is not None else self._clock()
        new_id = marker_id if marker_id is not None else self._id_factory(now)
        if new_id in self._markers:
            raise InvalidInputError(f"Marker {new_id} already exists")
        try:
            marker = Marker(
                id=new_id,
                latitude=latitude,
                longitude=longitude,
                status=status,
                created_at=now,
                last_action_at=now,
            )
        except ValidationError as exc:
            raise InvalidInputError(f"Invalid marker: {exc}") from exc
        self._markers[marker.id] = marker
        self.dirty = True
        return marker

    def update(self, marker_id: str, mutation: Mapping[str, Any]) -> Marker:
        marker = apply_mutation(self.get(marker_id), mutation)
        self._markers[marker_id] = marker
        self.dirty = True
        return marker

    def remove(self, marker_id: str) -> Marker:
        marker = self.get(marker_id)
        del self._markers[marker_id]
        self.dirty = True
        return marker

    def append_event(self, event: VoteEvent) -> None:
        self.staged_events.append(event)
        self.dirty = True

    def find_event_by_request_id(self, request_id: str) -> VoteEvent | None:
        for event in self.staged_events:
            if event.request_id == request_id:
                return event
        return self._committed_events.find_by_request_id(request_id)


class MarkerStore(Protocol):
    """Structural store interface used by the reconciliation engine.

    Having a protocol here makes it easy to plug in another durable
    backend while keeping the shipped implementations concrete.
    """

    async def open(self) -> None: ...

    async def close(self) -> None: ...

    async def all_markers(self) -> list[Marker]: ...

    async def get(self, marker_id: str) -> Marker: ...

    async def find_within_radius(
        self,
        latitude: float,
        longitude: float,
        radius_m: float,
        status_filter: MarkerStatus | Iterable[MarkerStatus] | None = None,
    ) -> list[Marker]: ...

    async def create(
        self,
        latitude: float,
        longitude: float,
        status: MarkerStatus,
        *,
        marker_id: str | None = None,
        at: datetime | None = None,
    ) -> Marker: ...

    async def update(self, marker_id: str, mutation: Mapping[str, Any]) -> Marker: ...

    async def remove(self, marker_id: str) -> Marker: ...

    async def append_event(self, event: VoteEvent) -> None: ...

    async def history_for(self, marker_id: str) -> list[VoteEvent]: ...

    async def find_event_by_request_id(self, request_id: str) -> VoteEvent | None: ...

    def transaction(self) -> AbstractAsyncContextManager[StoreTransaction]: ...


class InMemoryMarkerStore:
    """Process-local marker store.

    State lives on the instance and is only reachable through the store
    operations; nothing is shared at module level.  Subclasses add
    durability by overriding :meth:`_load` and :meth:`_persist`.
    """

    def __init__(
        self,
        *,
        clock: Callable[[], datetime] = _utcnow,
        id_factory: Callable[[datetime], str] = new_marker_id,
        timeout: float = STORAGE_TIMEOUT_S,
    ) -> None:
        self._clock = clock
        self._id_factory = id_factory
        self._timeout = timeout
        self._markers: dict[str, Marker] = {}
        self._events = EventLog()
        self._write_lock = asyncio.Lock()
        self._opened = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self) -> None:
        if self._opened:
            return
        try:
            async with asyncio.timeout(self._timeout):
                markers, events = await self._load()
        except TimeoutError as exc:
            raise StorageUnavailableError(f"Loading markers timed out after {self._timeout}s") from exc
        self._markers = {marker.id: marker for marker in markers}
        self._events = EventLog(events)
        self._opened = True
        _logger.debug("Store opened with %d markers and %d events", len(self._markers), len(self._events))

    async def close(self) -> None:
        self._opened = False

    async def __aenter__(self) -> InMemoryMarkerStore:
        await self.open()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def _load(self) -> tuple[list[Marker], list[VoteEvent]]:
        return list(self._markers.values()), list(self._events)

    async def _persist(self, markers: list[Marker], events: list[VoteEvent]) -> None:
        """Make a committed state durable.  No-op for the in-memory store."""

    def _persist_landed(self) -> bool:
        """After a timed-out :meth:`_persist`, settle whether its write is durable.

        Returning ``False`` promises the write will never become visible,
        so the commit is reported as failed.
        """
        return False

    def _require_open(self) -> None:
        if not self._opened:
            raise StorageUnavailableError("Store is not open. Use 'async with store:' or call open()")

    # ------------------------------------------------------------------
    # Write scope
    # ------------------------------------------------------------------

    @contextlib.asynccontextmanager
    async def transaction(self) -> AsyncIterator[StoreTransaction]:
        """Single-writer atomic write scope.

        Staged changes are committed when the block exits cleanly and
        discarded when it raises.
        """
        self._require_open()
        try:
            async with asyncio.timeout(self._timeout):
                await self._write_lock.acquire()
        except TimeoutError as exc:
            _logger.warning("Store write lock timeout after %.1fs", self._timeout)
            raise StorageUnavailableError(f"Store busy for more than {self._timeout}s") from exc

        try:
            txn = StoreTransaction(
                dict(self._markers),
                self._events,
                clock=self._clock,
                id_factory=self._id_factory,
            )
            yield txn
            if txn.dirty:
                await self._commit(txn)
        finally:
            self._write_lock.release()

    async def _commit(self, txn: StoreTransaction) -> None:
        markers = list(txn.markers.values())
        events = [*self._events, *txn.staged_events]
        try:
            async with asyncio.timeout(self._timeout):
                await self._persist(markers, events)
        except TimeoutError as exc:
            if not self._persist_landed():
                _logger.warning("Persisting markers timed out after %.1fs", self._timeout)
                raise StorageUnavailableError(f"Persisting markers timed out after {self._timeout}s") from exc
            _logger.warning("Persist finished after its %.1fs deadline, keeping the commit", self._timeout)
        except MarkersError:
            raise
        except OSError as exc:
            _logger.warning("Persisting markers failed: %s", exc)
            raise StorageUnavailableError(f"Persisting markers failed: {exc}") from exc

        self._markers = txn.markers
        for event in txn.staged_events:
            self._events.append(event)
        _logger.debug("Committed %d markers, %d new events", len(markers), len(txn.staged_events))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def all_markers(self) -> list[Marker]:
        self._require_open()
        return list(self._markers.values())

    async def get(self, marker_id: str) -> Marker:
        self._require_open()
        marker = self._markers.get(marker_id)
        if marker is None:
            raise NotFoundError(f"Marker {marker_id} not found", marker_id=marker_id)
        return marker

    async def find_within_radius(
        self,
        latitude: float,
        longitude: float,
        radius_m: float,
        status_filter: MarkerStatus | Iterable[MarkerStatus] | None = None,
    ) -> list[Marker]:
        self._require_open()
        candidates = find_candidates(self._markers.values(), latitude, longitude, radius_m, status_filter)
        return [c.marker for c in candidates]

    async def history_for(self, marker_id: str) -> list[VoteEvent]:
        self._require_open()
        return self._events.history_for(marker_id)

    async def latest_event_for(self, marker_id: str) -> VoteEvent | None:
        self._require_open()
        return self._events.latest_for(marker_id)

    async def find_event_by_request_id(self, request_id: str) -> VoteEvent | None:
        self._require_open()
        return self._events.find_by_request_id(request_id)

    async def all_events(self) -> list[VoteEvent]:
        self._require_open()
        return list(self._events)

    # ------------------------------------------------------------------
    # Single-operation writes
    # ------------------------------------------------------------------

    async def create(
        self,
        latitude: float,
        longitude: float,
        status: MarkerStatus,
        *,
        marker_id: str | None = None,
        at: datetime | None = None,
    ) -> Marker:
        async with self.transaction() as txn:
            return txn.create(latitude, longitude, status, marker_id=marker_id, at=at)

    async def update(self, marker_id: str, mutation: Mapping[str, Any]) -> Marker:
        async with self.transaction() as txn:
            return txn.update(marker_id, mutation)

    async def remove(self, marker_id: str) -> Marker:
        async with self.transaction() as txn:
            return txn.remove(marker_id)

    async def append_event(self, event: VoteEvent) -> None:
        async with self.transaction() as txn:
            txn.append_event(event)
