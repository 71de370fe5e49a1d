"""Helpers for safe debug logging.

Reporter identities are opaque to pymarkers and are frequently bearer
tokens handed through from an auth layer.  This module keeps them out of
DEBUG logs while still letting the same reporter be recognised across
log lines.
"""

from __future__ import annotations

import hashlib
from collections.abc import Mapping
from typing import Any

# Compared case-insensitively against JSON keys of stored records.
_REPORTER_KEYS: frozenset[str] = frozenset({"reporteridentity", "reporter_identity", "reporter", "token"})


def redact_reporter(identity: str | None) -> str:
    """Return a short stable fingerprint of a reporter identity."""
    if not identity:
        return "<anonymous>"
    digest = hashlib.sha256(identity.encode("utf-8")).hexdigest()
    return f"reporter:{digest[:10]}"


def redact_for_log(value: Any, *, max_string: int = 512) -> Any:
    """Copy of a JSON-shaped record with reporter identities fingerprinted.

    Intended for ``model_dump(mode="json")`` output of markers and vote
    events, or raw records read from a store file.  Long strings are
    truncated to *max_string* characters.
    """
    if isinstance(value, Mapping):
        return {str(key): _redact_entry(str(key), item, max_string) for key, item in value.items()}
    if isinstance(value, list | tuple):
        return [redact_for_log(item, max_string=max_string) for item in value]
    if isinstance(value, str) and len(value) > max_string:
        return f"{value[:max_string]}…<truncated>"
    return value


def _redact_entry(key: str, item: Any, max_string: int) -> Any:
    if key.lower() in _REPORTER_KEYS:
        return redact_reporter(item if isinstance(item, str) else None)
    return redact_for_log(item, max_string=max_string)
