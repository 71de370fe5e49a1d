"""JSON file backed marker store.

The whole state is one JSON document::

    {"markers": [<Marker>, ...], "events": [<VoteEvent>, ...]}

Every commit writes a temp file next to the target and renames it over
the target, so readers see either the previous or the new document.
A commit whose write outlives the storage timeout either lands before the
timeout is handled (and is kept) or never lands at all.
A bare list of markers (the older single-collection layout, which used
``timestamp``/``lastActionTimestamp`` keys) is also accepted on load.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
import threading
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import Any, TypeVar

from pydantic import ValidationError

from pymarkers._constants import STORAGE_TIMEOUT_S
from pymarkers._redact import redact_for_log
from pymarkers.exceptions import StorageUnavailableError
from pymarkers.models.marker import Marker
from pymarkers.models.vote import VoteEvent
from pymarkers.state.store import InMemoryMarkerStore, _utcnow, new_marker_id

_logger = logging.getLogger(__name__)

_RecordT = TypeVar("_RecordT", Marker, VoteEvent)


def _legacy_marker(raw: Any) -> Any:
    """Map a marker from the single-collection layout onto the current keys."""
    if not isinstance(raw, dict) or "createdAt" in raw or "timestamp" not in raw:
        return raw
    converted = {k: v for k, v in raw.items() if k not in ("timestamp", "lastActionTimestamp")}
    converted["createdAt"] = raw["timestamp"]
    converted["lastActionAt"] = raw.get("lastActionTimestamp") or raw["timestamp"]
    if converted.get("status") == "orange" and "pendingIntent" not in converted:
        # Older records do not say which color an orange marker was heading to.
        converted["pendingIntent"] = "red"
    return converted


def _decode_document(text: str) -> tuple[list[Marker], list[VoteEvent]]:
    document = json.loads(text) if text.strip() else {}
    if isinstance(document, list):
        raw_markers, raw_events = document, []
    elif isinstance(document, dict):
        raw_markers = document.get("markers", [])
        raw_events = document.get("events", [])
    else:
        raise ValueError(f"unexpected top-level JSON type {type(document).__name__}")
    markers = [_validate_record(Marker, _legacy_marker(item)) for item in raw_markers]
    events = [_validate_record(VoteEvent, item) for item in raw_events]
    return markers, events


def _validate_record(model: type[_RecordT], raw: Any) -> _RecordT:
    try:
        return model.model_validate(raw)
    except ValidationError:
        _logger.debug("Rejected %s record %s", model.__name__, redact_for_log(raw, max_string=80))
        raise


def _encode_document(markers: list[Marker], events: list[VoteEvent]) -> str:
    document = {
        "markers": [marker.model_dump(mode="json", by_alias=True) for marker in markers],
        "events": [event.model_dump(mode="json", by_alias=True) for event in events],
    }
    return json.dumps(document, indent=2, ensure_ascii=False)


class _WriteClaim:
    """Settles, exactly once, whether a background write may replace the target.

    The rename and the abandon decision share one lock, so after
    :meth:`abandon` returns the outcome of the write is final.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._abandoned = False
        self.landed = False

    def replace(self, tmp_name: str, path: Path) -> None:
        with self._lock:
            if self._abandoned:
                return
            os.replace(tmp_name, path)
            self.landed = True

    def abandon(self) -> bool:
        """Refuse any later rename; return whether the write already landed."""
        with self._lock:
            self._abandoned = True
            return self.landed


def _write_atomic(path: Path, text: str, claim: _WriteClaim) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(text)
            handle.flush()
            os.fsync(handle.fileno())
        claim.replace(tmp_name, path)
    finally:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)


class JsonFileMarkerStore(InMemoryMarkerStore):
    """Marker store persisted to a single JSON file.

    Parameters
    ----------
    path : str or Path
        JSON file holding the store.  Missing files start an empty store;
        parent directories are created on first commit.
    """

    def __init__(
        self,
        path: str | Path,
        *,
        clock: Callable[[], datetime] = _utcnow,
        id_factory: Callable[[datetime], str] = new_marker_id,
        timeout: float = STORAGE_TIMEOUT_S,
    ) -> None:
        super().__init__(clock=clock, id_factory=id_factory, timeout=timeout)
        self._path = Path(path)
        self._claim: _WriteClaim | None = None

    @property
    def path(self) -> Path:
        return self._path

    async def _load(self) -> tuple[list[Marker], list[VoteEvent]]:
        _logger.debug("Loading markers from %s", self._path)
        try:
            text = await asyncio.to_thread(self._path.read_text, encoding="utf-8")
        except FileNotFoundError:
            _logger.debug("No store file at %s, starting empty", self._path)
            return [], []
        except OSError as exc:
            raise StorageUnavailableError(f"Cannot read {self._path}: {exc}") from exc

        try:
            return _decode_document(text)
        except (TypeError, ValueError, ValidationError) as exc:
            raise StorageUnavailableError(f"Store file {self._path} is corrupt: {exc}") from exc

    def _write_file(self, text: str, claim: _WriteClaim) -> None:
        """Blocking write of *text*; runs in a worker thread."""
        _write_atomic(self._path, text, claim)

    async def _persist(self, markers: list[Marker], events: list[VoteEvent]) -> None:
        text = _encode_document(markers, events)
        claim = _WriteClaim()
        self._claim = claim
        try:
            await asyncio.to_thread(self._write_file, text, claim)
        except asyncio.CancelledError:
            # The worker thread keeps running; stop it from renaming later.
            claim.abandon()
            raise
        self._claim = None
        _logger.debug("Wrote %d markers and %d events to %s", len(markers), len(events), self._path)

    def _persist_landed(self) -> bool:
        claim, self._claim = self._claim, None
        return claim is not None and claim.abandon()
