from __future__ import annotations

import asyncio
import json
import time
from datetime import UTC, datetime
from pathlib import Path

import pytest

from pymarkers.config import MarkersConfig
from pymarkers.engine import ReconciliationEngine, create_store
from pymarkers.exceptions import StorageUnavailableError
from pymarkers.models import Marker, MarkerStatus, VoteAction, VoteColor
from pymarkers.state.file_store import JsonFileMarkerStore, _WriteClaim
from pymarkers.state.store import InMemoryMarkerStore

CENTER = (49.4229, 26.9871)
_T0 = datetime(2026, 1, 1, tzinfo=UTC)


@pytest.mark.asyncio
async def test_missing_file_is_empty_store(tmp_path: Path) -> None:
    async with JsonFileMarkerStore(tmp_path / "markers.json") as store:
        assert await store.all_markers() == []
    assert not (tmp_path / "markers.json").exists()


@pytest.mark.asyncio
async def test_commit_persists_markers_and_events(tmp_path: Path) -> None:
    path = tmp_path / "data" / "markers.json"
    config = MarkersConfig(store_path=str(path))

    async with ReconciliationEngine(config=config, clock=lambda: _T0) as engine:
        created = await engine.submit_vote("alice", *CENTER, "red")
        assert isinstance(created, Marker)

    document = json.loads(path.read_text(encoding="utf-8"))
    assert document["markers"][0]["id"] == created.id
    assert document["markers"][0]["createdAt"] == 1_767_225_600_000
    assert document["markers"][0]["redPressCount"] == 1
    assert document["events"][0]["markerId"] == created.id
    assert document["events"][0]["action"] == "created"

    async with JsonFileMarkerStore(path) as reopened:
        assert await reopened.all_markers() == [created]
        history = await reopened.history_for(created.id)
        assert [e.action for e in history] == [VoteAction.CREATED]
        assert history[0].color is VoteColor.RED


@pytest.mark.asyncio
async def test_no_temp_files_left_behind(tmp_path: Path) -> None:
    path = tmp_path / "markers.json"
    async with JsonFileMarkerStore(path, clock=lambda: _T0) as store:
        await store.create(*CENTER, MarkerStatus.GREEN)
        await store.create(0.0, 0.0, MarkerStatus.RED)
    assert sorted(p.name for p in tmp_path.iterdir()) == ["markers.json"]


@pytest.mark.asyncio
async def test_loads_single_collection_layout(tmp_path: Path) -> None:
    path = tmp_path / "markers.json"
    path.write_text(
        json.dumps(
            [
                {
                    "id": "1700000000000abc",
                    "latitude": 49.4229,
                    "longitude": 26.9871,
                    "status": "red",
                    "timestamp": 1_700_000_000_000,
                },
                {
                    "id": "1700000005000def",
                    "latitude": 49.4240,
                    "longitude": 26.9885,
                    "status": "orange",
                    "timestamp": 1_700_000_005_000,
                    "lastActionTimestamp": 1_700_000_009_000,
                    "confirmationCount": 4,
                },
            ]
        ),
        encoding="utf-8",
    )

    async with JsonFileMarkerStore(path) as store:
        red = await store.get("1700000000000abc")
        assert red.status is MarkerStatus.RED
        assert red.created_at == datetime(2023, 11, 14, 22, 13, 20, tzinfo=UTC)
        assert red.last_action_at == red.created_at

        orange = await store.get("1700000005000def")
        assert orange.confirmation_count == 4
        assert orange.pending_intent is VoteColor.RED
        assert orange.last_action_at == datetime(2023, 11, 14, 22, 13, 29, tzinfo=UTC)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "content",
    ["not json", '{"markers": [{"id": "x"}]}', '{"markers": [5]}', '{"markers": 5}', "42"],
)
async def test_corrupt_file_is_unavailable(tmp_path: Path, content: str) -> None:
    path = tmp_path / "markers.json"
    path.write_text(content, encoding="utf-8")

    with pytest.raises(StorageUnavailableError):
        await JsonFileMarkerStore(path).open()


@pytest.mark.asyncio
async def test_unwritable_location_is_unavailable(tmp_path: Path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("", encoding="utf-8")

    async with JsonFileMarkerStore(blocker / "markers.json") as store:
        with pytest.raises(StorageUnavailableError):
            await store.create(*CENTER, MarkerStatus.RED)
        assert await store.all_markers() == []


def test_create_store_follows_config(tmp_path: Path) -> None:
    file_store = create_store(MarkersConfig(store_path=str(tmp_path / "m.json")))
    assert isinstance(file_store, JsonFileMarkerStore)
    assert file_store.path == tmp_path / "m.json"

    memory_store = create_store(MarkersConfig())
    assert isinstance(memory_store, InMemoryMarkerStore)
    assert not isinstance(memory_store, JsonFileMarkerStore)


class _SlowBeforeRename(JsonFileMarkerStore):
    """Worker thread stalls before writing, past the storage timeout."""

    def _write_file(self, text: str, claim: _WriteClaim) -> None:
        time.sleep(0.3)
        super()._write_file(text, claim)


class _SlowAfterRename(JsonFileMarkerStore):
    """Worker thread writes at once, then stalls past the storage timeout."""

    def _write_file(self, text: str, claim: _WriteClaim) -> None:
        super()._write_file(text, claim)
        time.sleep(0.3)


@pytest.mark.asyncio
async def test_timed_out_write_never_lands_later(tmp_path: Path) -> None:
    path = tmp_path / "markers.json"
    async with _SlowBeforeRename(path, clock=lambda: _T0, timeout=0.05) as store:
        with pytest.raises(StorageUnavailableError):
            await store.create(*CENTER, MarkerStatus.RED)

        await asyncio.sleep(0.5)
        assert await store.all_markers() == []

    assert not path.exists()
    assert list(tmp_path.iterdir()) == []


@pytest.mark.asyncio
async def test_write_that_landed_before_timeout_is_kept(tmp_path: Path) -> None:
    path = tmp_path / "markers.json"
    async with _SlowAfterRename(path, clock=lambda: _T0, timeout=0.05) as store:
        created = await store.create(*CENTER, MarkerStatus.RED, marker_id="r1")
        assert await store.all_markers() == [created]

    async with JsonFileMarkerStore(path) as reopened:
        assert await reopened.all_markers() == [created]


def test_write_claim_settles_once(tmp_path: Path) -> None:
    target = tmp_path / "target.json"

    refused = _WriteClaim()
    assert refused.abandon() is False
    staged = tmp_path / "staged"
    staged.write_text("{}", encoding="utf-8")
    refused.replace(str(staged), target)
    assert not target.exists()

    landed = _WriteClaim()
    landed.replace(str(staged), target)
    assert target.exists()
    assert landed.abandon() is True
