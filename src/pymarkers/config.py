"""Engine and store configuration for pymarkers."""

from __future__ import annotations

import dataclasses
import os
from collections.abc import Mapping
from typing import Any

from pymarkers._constants import (
    CONFIRMATION_THRESHOLD,
    LOCK_TIMEOUT_S,
    MATCH_RADIUS_MAX_M,
    MATCH_RADIUS_MIN_M,
    MAX_REPLANS,
    STORAGE_TIMEOUT_S,
)
from pymarkers.exceptions import MarkersConfigError


def _env_float(env: Mapping[str, str], key: str) -> float | None:
    value = env.get(key)
    if value is None or not value.strip():
        return None
    try:
        return float(value)
    except ValueError as exc:
        raise MarkersConfigError(f"{key} must be a number, got {value!r}") from exc


def _env_int(env: Mapping[str, str], key: str) -> int | None:
    value = env.get(key)
    if value is None or not value.strip():
        return None
    try:
        return int(value)
    except ValueError as exc:
        raise MarkersConfigError(f"{key} must be an integer, got {value!r}") from exc


@dataclasses.dataclass(frozen=True)
class MarkersConfig:
    """Reconciliation engine configuration.

    Parameters
    ----------
    match_radius_min_m : float
        Inner edge of the match band in meters.  Markers closer than this
        are treated as the same incident as the vote.
    match_radius_max_m : float
        Outer edge of the match band in meters.  Markers farther than this
        are unrelated to the vote.
    confirmation_threshold : int
        Number of confirmation votes an orange marker needs before it
        resolves to its intended color.
    lock_timeout : float
        Seconds to wait for a per-marker lock before failing the vote with
        :class:`~pymarkers.exceptions.ConcurrencyConflictError`.
    storage_timeout : float
        Upper bound in seconds for a single store operation before failing
        with :class:`~pymarkers.exceptions.StorageUnavailableError`.
    max_replans : int
        How many times a vote is re-planned when a concurrent vote changed
        its target between planning and commit.
    store_path : str or None
        JSON file backing the store.  ``None`` keeps markers in memory only.
    """

    match_radius_min_m: float = MATCH_RADIUS_MIN_M
    match_radius_max_m: float = MATCH_RADIUS_MAX_M
    confirmation_threshold: int = CONFIRMATION_THRESHOLD
    lock_timeout: float = LOCK_TIMEOUT_S
    storage_timeout: float = STORAGE_TIMEOUT_S
    max_replans: int = MAX_REPLANS
    store_path: str | None = None

    def __post_init__(self) -> None:
        if self.match_radius_min_m < 0:
            raise MarkersConfigError("match_radius_min_m must be >= 0")
        if self.match_radius_max_m < self.match_radius_min_m:
            raise MarkersConfigError(
                f"match_radius_max_m ({self.match_radius_max_m}) must be >= "
                f"match_radius_min_m ({self.match_radius_min_m})"
            )
        if self.confirmation_threshold < 1:
            raise MarkersConfigError("confirmation_threshold must be >= 1")
        if self.lock_timeout <= 0 or self.storage_timeout <= 0:
            raise MarkersConfigError("timeouts must be positive")
        if self.max_replans < 1:
            raise MarkersConfigError("max_replans must be >= 1")

    @classmethod
    def from_env(cls, **overrides: Any) -> MarkersConfig:
        """Create configuration from environment variables.

        Reads optional ``MARKERS_*`` variables.  Explicit keyword arguments
        override environment values.

        Parameters
        ----------
        **overrides
            Explicit field values that take precedence over env vars.

        Returns
        -------
        MarkersConfig
            Populated configuration.
        """
        env = os.environ
        config_kwargs: dict[str, Any] = {}

        _ENV_FLOAT_MAP = {
            "MARKERS_MATCH_RADIUS_MIN_M": "match_radius_min_m",
            "MARKERS_MATCH_RADIUS_MAX_M": "match_radius_max_m",
            "MARKERS_LOCK_TIMEOUT": "lock_timeout",
            "MARKERS_STORAGE_TIMEOUT": "storage_timeout",
        }
        for env_key, field_name in _ENV_FLOAT_MAP.items():
            float_val = _env_float(env, env_key)
            if float_val is not None:
                config_kwargs[field_name] = float_val

        _ENV_INT_MAP = {
            "MARKERS_CONFIRMATION_THRESHOLD": "confirmation_threshold",
            "MARKERS_MAX_REPLANS": "max_replans",
        }
        for env_key, field_name in _ENV_INT_MAP.items():
            int_val = _env_int(env, env_key)
            if int_val is not None:
                config_kwargs[field_name] = int_val

        store_path = env.get("MARKERS_STORE_PATH")
        if store_path:
            config_kwargs["store_path"] = store_path

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
