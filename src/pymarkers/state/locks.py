"""Per-key asyncio locks with bounded waits."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator

from pymarkers.exceptions import ConcurrencyConflictError

_logger = logging.getLogger(__name__)


class KeyedLock:
    """One :class:`asyncio.Lock` per key, created on demand.

    Locks are dropped once nobody holds or waits for them, so the table
    only ever contains hot keys.
    """

    def __init__(self, *, timeout: float) -> None:
        self._timeout = timeout
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @contextlib.asynccontextmanager
    async def hold(self, key: str | None) -> AsyncIterator[None]:
        """Hold the lock for *key*; ``None`` means there is nothing to lock."""
        if key is None:
            yield
            return

        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            try:
                async with asyncio.timeout(self._timeout):
                    await lock.acquire()
            except TimeoutError as exc:
                _logger.warning("Lock timeout after %.1fs for marker=%s", self._timeout, key)
                raise ConcurrencyConflictError(
                    f"Marker {key} is busy, retry later",
                    marker_id=key,
                ) from exc
            try:
                yield
            finally:
                lock.release()
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                self._locks.pop(key, None)

    def __len__(self) -> int:
        return len(self._locks)
