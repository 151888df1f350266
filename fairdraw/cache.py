"""Small thread-safe TTL cache with an injectable clock."""

from __future__ import annotations

import threading
import time
from typing import Any, Callable, Dict, Hashable, Tuple


class TTLCache:
    """Bounded key/value store whose entries expire after ``ttl`` seconds.

    The clock is injected so that expiry can be driven by tests without
    sleeping. ``clock`` must return monotonically increasing seconds.

    Parameters
    ----------
    ttl : float
        Lifetime of every entry, in seconds.
    maxsize : int, default: 1024
        Maximum number of live entries. When full, expired entries are
        purged first; :meth:`set` then evicts the entry closest to expiry,
        while :meth:`add` refuses the new key.
    clock : Callable[[], float], default: time.monotonic
        Time source.
    """

    def __init__(
        self,
        ttl: float,
        maxsize: int = 1024,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        if maxsize < 1:
            raise ValueError("maxsize must be at least 1")
        self.ttl = ttl
        self.maxsize = maxsize
        self._clock = clock
        self._data: Dict[Hashable, Tuple[float, Any]] = {}
        self._lock = threading.Lock()

    def _purge(self, now: float) -> None:
        expired = [key for key, (expires, _) in self._data.items() if expires <= now]
        for key in expired:
            del self._data[key]

    def _make_room(self, now: float) -> None:
        if len(self._data) < self.maxsize:
            return
        self._purge(now)
        if len(self._data) >= self.maxsize:
            oldest = min(self._data, key=lambda k: self._data[k][0])
            del self._data[oldest]

    def get(self, key: Hashable, default: Any = None) -> Any:
        with self._lock:
            item = self._data.get(key)
            if item is None:
                return default
            expires, value = item
            if expires <= self._clock():
                del self._data[key]
                return default
            return value

    def set(self, key: Hashable, value: Any) -> None:
        with self._lock:
            now = self._clock()
            if key not in self._data:
                self._make_room(now)
            self._data[key] = (now + self.ttl, value)

    def add(self, key: Hashable, value: Any = True) -> bool:
        """Store ``value`` only if ``key`` is absent or expired.

        Returns ``True`` when the key was claimed by this call. Live entries
        are never evicted to make room, so a full cache returns ``False``.
        """
        with self._lock:
            now = self._clock()
            item = self._data.get(key)
            if item is not None and item[0] > now:
                return False
            if item is None and len(self._data) >= self.maxsize:
                self._purge(now)
                if len(self._data) >= self.maxsize:
                    return False
            self._data[key] = (now + self.ttl, value)
            return True

    def pop(self, key: Hashable, default: Any = None) -> Any:
        with self._lock:
            item = self._data.pop(key, None)
            if item is None or item[0] <= self._clock():
                return default
            return item[1]

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    def __contains__(self, key: Hashable) -> bool:
        sentinel = object()
        return self.get(key, sentinel) is not sentinel

    def __len__(self) -> int:
        with self._lock:
            self._purge(self._clock())
            return len(self._data)
