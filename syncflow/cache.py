"""Small in-process read cache for list endpoints.

Entries expire after ``ttl_seconds``; routers drop entries by key prefix after
every write so a read never outlives the mutation that invalidated it.
"""
import threading
import time
from collections import OrderedDict
from typing import Any

from syncflow.config import settings

_MISSING = object()


class TTLCache:
    def __init__(self, ttl_seconds: float, max_size: int = 1000):
        self.ttl_seconds = ttl_seconds
        self.max_size = max_size
        self._data: OrderedDict[str, tuple[float, Any]] = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            entry = self._data.get(key, _MISSING)
            if entry is _MISSING:
                return default
            expires_at, value = entry
            if expires_at <= time.monotonic():
                del self._data[key]
                return default
            self._data.move_to_end(key)
            return value

    def set(self, key: str, value: Any) -> None:
        if self.ttl_seconds <= 0:
            return
        with self._lock:
            self._data[key] = (time.monotonic() + self.ttl_seconds, value)
            self._data.move_to_end(key)
            while len(self._data) > self.max_size:
                self._data.popitem(last=False)

    def invalidate(self, *prefixes: str) -> None:
        """Drop entries starting with any of ``prefixes``; no prefix clears everything."""
        with self._lock:
            if not prefixes:
                self._data.clear()
                return
            for key in [k for k in self._data if k.startswith(prefixes)]:
                del self._data[key]

    def __len__(self) -> int:
        return len(self._data)


cache = TTLCache(settings.CACHE_TTL_SECONDS, settings.CACHE_MAX_SIZE)
