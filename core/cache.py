"""Thread-safe TTL cache for question pools and practice sessions."""

import time
from threading import Lock
from typing import Any, Callable, Dict, List, Optional, Tuple


class TTLCache:
    """
    Key/value cache where every entry expires after a fixed time-to-live.

    The clock is injectable so expiry can be tested without sleeping.
    """

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, Tuple[float, Any]] = {}
        self._lock = Lock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            stored_at, value = entry
            if self._clock() - stored_at >= self.ttl_seconds:
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._entries[key] = (self._clock(), value)

    def get_or_load(self, key: str, loader: Callable[[], Any]) -> Any:
        """Return the cached value, calling `loader` on a miss."""
        value = self.get(key)
        if value is None:
            value = loader()
            self.set(key, value)
        return value

    def touch(self, key: str) -> None:
        """Restart the TTL of an existing entry."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None:
                self._entries[key] = (self._clock(), entry[1])

    def pop(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._entries.pop(key, None)
            return entry[1] if entry else None

    def invalidate(self, prefix: str = "") -> int:
        """Drop every entry whose key starts with `prefix`. Returns the count."""
        with self._lock:
            doomed: List[str] = [k for k in self._entries if k.startswith(prefix)]
            for key in doomed:
                del self._entries[key]
            return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
