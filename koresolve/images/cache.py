"""Keyed single-flight cache.

Each key owns an entry with its own gate. The first caller for a key runs
the computation while holding the gate; concurrent callers block on the gate
and then read the published result. An entry moves from ABSENT through
IN_FLIGHT to RESOLVED or FAILED. A FAILED entry stays failed for the
callers that waited on it, but the next new caller for the key gets a fresh
entry and tries again. A computation abandoned with ResolveTimeoutError
publishes nothing: the entry goes back to ABSENT and the next caller to take
the gate computes it.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Hashable
from typing import Any, Generic, TypeVar

from koresolve.errors import ResolveTimeoutError
from koresolve.types import EntryState

logger = logging.getLogger(__name__)

V = TypeVar("V")


class CacheEntry(Generic[V]):
    """State for one cache key."""

    def __init__(self, key: Hashable) -> None:
        self.key = key
        self.gate = threading.Lock()
        self.state = EntryState.ABSENT
        self.value: V | None = None
        self.error: Exception | None = None


class SingleFlightCache(Generic[V]):
    """Memoizes computations per key, running each at most once at a time."""

    def __init__(self, name: str = "cache") -> None:
        self.name = name
        self._lock = threading.Lock()
        self._entries: dict[Hashable, CacheEntry[V]] = {}

    def _entry_for(self, key: Hashable) -> CacheEntry[V]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry.state is EntryState.FAILED:
                entry = CacheEntry(key)
                self._entries[key] = entry
            return entry

    def get_or_compute(
        self,
        key: Hashable,
        compute: Callable[[], V],
        timeout: float | None = None,
    ) -> V:
        """Return the cached value for ``key``, computing it if needed.

        Args:
            key: Cache key.
            compute: Computation to run when the key has no value yet.
            timeout: Seconds to wait for another caller's computation
                (None = wait forever).

        Returns:
            The value computed for ``key`` by whichever caller ran first.

        Raises:
            ResolveTimeoutError: If ``timeout`` expires while waiting.
            Exception: Whatever ``compute`` raised, for the caller that ran
                it and every caller that waited on that attempt.
        """
        entry = self._entry_for(key)
        if entry.state is EntryState.RESOLVED:
            return entry.value  # type: ignore[return-value]

        acquired = entry.gate.acquire(timeout=-1 if timeout is None else timeout)
        if not acquired:
            logger.debug("%s: gave up waiting for %s after %ss", self.name, key, timeout)
            raise ResolveTimeoutError(str(key), timeout or 0.0)

        try:
            # Re-check after acquiring the gate: another caller may have finished
            if entry.state is EntryState.RESOLVED:
                return entry.value  # type: ignore[return-value]
            if entry.state is EntryState.FAILED:
                assert entry.error is not None
                raise entry.error

            entry.state = EntryState.IN_FLIGHT
            logger.debug("%s: computing %s", self.name, key)
            try:
                value = compute()
            except ResolveTimeoutError:
                # An abandoned attempt leaves the key free for the next caller
                entry.state = EntryState.ABSENT
                raise
            except Exception as e:
                entry.error = e
                entry.state = EntryState.FAILED
                raise
            entry.value = value
            entry.state = EntryState.RESOLVED
            return value
        finally:
            entry.gate.release()

    def state(self, key: Hashable) -> EntryState:
        """Current state of the entry for ``key``."""
        with self._lock:
            entry = self._entries.get(key)
        return entry.state if entry is not None else EntryState.ABSENT

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def snapshot(self) -> dict[Hashable, Any]:
        """Resolved values by key."""
        with self._lock:
            return {
                key: entry.value
                for key, entry in self._entries.items()
                if entry.state is EntryState.RESOLVED
            }


__all__ = ["CacheEntry", "SingleFlightCache"]
