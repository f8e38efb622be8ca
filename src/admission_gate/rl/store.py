"""
Window store implementations for rate limiting.

A window store maps a rate limit key to the usage accumulated in its current
fixed window. It has no knowledge of policies: callers pass the current time
and the window length on every call, and the store only reports counts.

Fixed windows allow a burst of up to twice the policy maximum across a window
boundary (the tail of one window plus the head of the next). This is the
accepted approximation of the fixed-window model, not a bug.
"""

import threading
import time
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)


@dataclass
class WindowEntry:
    """Accumulated usage for one key within its active window."""
    key: str
    count: int
    window_start: float
    window_seconds: float

    def is_expired(self, now: float, window_seconds: Optional[float] = None) -> bool:
        """
        An entry whose window has elapsed is logically absent.

        `window_seconds` overrides the length recorded when the window opened;
        callers always judge expiry against the window they are asking about.
        """
        if window_seconds is None:
            window_seconds = self.window_seconds
        return now - self.window_start >= window_seconds


class WindowStore(ABC):
    """Abstract base class for window stores."""

    @abstractmethod
    def increment(self, key: str, now: float, window_seconds: float) -> Tuple[int, float]:
        """
        Atomically count one event for `key`.

        If the key has no entry, or its window has elapsed
        (now - window_start >= window_seconds), a new window is started with
        count 1 and window_start = now. Otherwise the count is incremented and
        the existing window_start is returned.

        Returns:
            (count, window_start) after the increment
        """

    @abstractmethod
    def peek(self, key: str, now: float, window_seconds: float) -> Tuple[int, float]:
        """
        Read the usage for `key` without mutating it.

        An absent or elapsed entry reports a fresh, empty window: (0, now).
        """

    @abstractmethod
    def reset(self, key: str) -> None:
        """Clear the entry for `key`."""


class MemoryWindowStore(WindowStore):
    """
    Thread-safe in-memory window store.

    Increments are serialized per key through lock striping: every key hashes
    to one of a fixed number of locks, so two increments of the same key
    never interleave while increments of unrelated keys usually take
    different locks. There is no lock covering all keys.

    Expired entries are removed lazily: an elapsed entry is replaced on the
    next increment, and `purge_expired` sweeps idle keys. The sweep runs
    opportunistically from `increment` at most once per sweep interval.

    Per-process only: running several workers multiplies the effective limit.
    Use `RedisWindowStore` to share counters between instances.
    """

    DEFAULT_STRIPES = 64
    DEFAULT_SWEEP_INTERVAL_SECONDS = 60.0

    def __init__(
        self,
        stripes: int = DEFAULT_STRIPES,
        sweep_interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS
    ):
        if stripes < 1:
            raise ValueError("stripes must be >= 1")
        if sweep_interval_seconds <= 0:
            raise ValueError("sweep_interval_seconds must be > 0")

        self._entries: Dict[str, WindowEntry] = {}
        self._locks: List[threading.Lock] = [threading.Lock() for _ in range(stripes)]
        self._sweep_interval = sweep_interval_seconds
        self._sweep_lock = threading.Lock()
        self._last_sweep = time.monotonic()

    def _lock_for(self, key: str) -> threading.Lock:
        return self._locks[hash(key) % len(self._locks)]

    def increment(self, key: str, now: float, window_seconds: float) -> Tuple[int, float]:
        """
        Atomically increment the counter for `key` in its current window.
        Return (count, window_start).
        """
        with self._lock_for(key):
            entry = self._entries.get(key)
            if entry is None or entry.is_expired(now, window_seconds):
                # Replace, never merge, an elapsed window
                entry = WindowEntry(key=key, count=1, window_start=now, window_seconds=window_seconds)
                self._entries[key] = entry
            else:
                entry.count += 1
                entry.window_seconds = window_seconds
            result = entry.count, entry.window_start

        self._maybe_sweep(now)
        return result

    def peek(self, key: str, now: float, window_seconds: float) -> Tuple[int, float]:
        """Return (count, window_start) for `key` without counting an event."""
        with self._lock_for(key):
            entry = self._entries.get(key)
            if entry is None or entry.is_expired(now, window_seconds):
                return 0, now
            return entry.count, entry.window_start

    def reset(self, key: str) -> None:
        """Clear the entry for `key`."""
        with self._lock_for(key):
            self._entries.pop(key, None)

    def purge_expired(self, now: float) -> int:
        """
        Remove every entry whose window has elapsed.

        Each candidate is re-checked under its own stripe lock, so an entry
        renewed by a concurrent increment is never dropped.

        Returns:
            Number of entries removed
        """
        removed = 0
        for key, entry in self._entries.copy().items():
            if not entry.is_expired(now):
                continue
            with self._lock_for(key):
                current = self._entries.get(key)
                if current is not None and current.is_expired(now):
                    del self._entries[key]
                    removed += 1

        if removed:
            logger.debug(
                "Purged expired rate limit windows",
                extra={"removed": removed, "remaining_entries": len(self._entries)}
            )
        return removed

    def _maybe_sweep(self, now: float) -> None:
        """Run `purge_expired` if the sweep interval has passed."""
        started = time.monotonic()
        if started - self._last_sweep < self._sweep_interval:
            return
        # Only one thread sweeps; others carry on without waiting
        if not self._sweep_lock.acquire(blocking=False):
            return
        try:
            self._last_sweep = started
            self.purge_expired(now)
        finally:
            self._sweep_lock.release()

    def __len__(self) -> int:
        return len(self._entries)
