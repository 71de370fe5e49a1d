from __future__ import annotations

import pytest

from pymarkers.config import MarkersConfig
from pymarkers.exceptions import MarkersConfigError


def test_defaults_match_reconciliation_constants() -> None:
    config = MarkersConfig()
    assert config.match_radius_min_m == 150.0
    assert config.match_radius_max_m == 300.0
    assert config.confirmation_threshold == 10
    assert config.store_path is None


def test_from_env_reads_markers_variables(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MARKERS_MATCH_RADIUS_MIN_M", "100")
    monkeypatch.setenv("MARKERS_MATCH_RADIUS_MAX_M", "250.5")
    monkeypatch.setenv("MARKERS_CONFIRMATION_THRESHOLD", "3")
    monkeypatch.setenv("MARKERS_STORE_PATH", "/tmp/markers.json")

    config = MarkersConfig.from_env()

    assert config.match_radius_min_m == 100.0
    assert config.match_radius_max_m == 250.5
    assert config.confirmation_threshold == 3
    assert config.store_path == "/tmp/markers.json"


def test_from_env_overrides_win(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MARKERS_CONFIRMATION_THRESHOLD", "3")
    config = MarkersConfig.from_env(confirmation_threshold=7)
    assert config.confirmation_threshold == 7


def test_from_env_rejects_garbage(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MARKERS_LOCK_TIMEOUT", "soon")
    with pytest.raises(MarkersConfigError):
        MarkersConfig.from_env()


@pytest.mark.parametrize(
    "kwargs",
    [
        {"match_radius_min_m": -1.0},
        {"match_radius_min_m": 400.0},
        {"confirmation_threshold": 0},
        {"lock_timeout": 0.0},
        {"max_replans": 0},
    ],
)
def test_inconsistent_values_rejected(kwargs: dict[str, float]) -> None:
    with pytest.raises(MarkersConfigError):
        MarkersConfig(**kwargs)
