"""Append-only per-marker vote history.

The log is owned by a marker store; it is only ever appended to from a
committed store transaction so that a marker change and its event become
visible together.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator

from pymarkers.models.vote import VoteEvent


class EventLog:
    """In-memory append-only log of :class:`VoteEvent` records."""

    def __init__(self, events: Iterable[VoteEvent] = ()) -> None:
        self._events: list[VoteEvent] = []
        self._by_marker: dict[str, list[VoteEvent]] = {}
        self._by_request: dict[str, VoteEvent] = {}
        for event in events:
            self.append(event)

    def append(self, event: VoteEvent) -> None:
        self._events.append(event)
        self._by_marker.setdefault(event.marker_id, []).append(event)
        if event.request_id is not None:
            self._by_request.setdefault(event.request_id, event)

    def history_for(self, marker_id: str) -> list[VoteEvent]:
        """Events of one marker ordered by timestamp (append order breaks ties)."""
        events = self._by_marker.get(marker_id, [])
        return sorted(events, key=lambda event: event.timestamp)

    def latest_for(self, marker_id: str) -> VoteEvent | None:
        history = self.history_for(marker_id)
        return history[-1] if history else None

    def find_by_request_id(self, request_id: str) -> VoteEvent | None:
        return self._by_request.get(request_id)

    def __iter__(self) -> Iterator[VoteEvent]:
        return iter(list(self._events))

    def __len__(self) -> int:
        return len(self._events)
