"""pymarkers - Proximity reconciliation for crowd-reported map markers."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pymarkers")
except PackageNotFoundError:
    __version__ = "0+local"
from pymarkers.config import MarkersConfig
from pymarkers.engine import ReconciliationEngine, create_store
from pymarkers.exceptions import (
    ConcurrencyConflictError,
    InvalidInputError,
    MarkersConfigError,
    MarkersError,
    NotFoundError,
    StorageUnavailableError,
    UnauthenticatedError,
)
from pymarkers.geo import distance_meters, validate_coordinates
from pymarkers.models import (
    ClearedResult,
    Marker,
    MarkerDetails,
    MarkerStatus,
    ResultingStatus,
    VoteAction,
    VoteColor,
    VoteEvent,
    VoteOutcome,
)
from pymarkers.state.events import EventLog
from pymarkers.state.file_store import JsonFileMarkerStore
from pymarkers.state.store import InMemoryMarkerStore, MarkerStore

__all__ = [
    "__version__",
    "ClearedResult",
    "ConcurrencyConflictError",
    "EventLog",
    "InMemoryMarkerStore",
    "InvalidInputError",
    "JsonFileMarkerStore",
    "Marker",
    "MarkerDetails",
    "MarkerStatus",
    "MarkerStore",
    "MarkersConfig",
    "MarkersConfigError",
    "MarkersError",
    "NotFoundError",
    "ReconciliationEngine",
    "ResultingStatus",
    "StorageUnavailableError",
    "UnauthenticatedError",
    "VoteAction",
    "VoteColor",
    "VoteEvent",
    "VoteOutcome",
    "create_store",
    "distance_meters",
    "validate_coordinates",
]
