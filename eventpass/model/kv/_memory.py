from __future__ import annotations
from collections import OrderedDict
from typing import Optional, Tuple
import time


class KVStore:
    """Process-local TTL map, bounded by entry count (oldest evicted first).

    Values are strings, like the redis backend with decode_responses=True.
    """

    def __init__(self, max_entries: int = 10_000) -> None:
        self.max_entries = max_entries
        self._data: OrderedDict[str, Tuple[str, Optional[float]]] = (
            OrderedDict()
        )

    def _live(self, key: str) -> Optional[str]:
        item = self._data.get(key)
        if item is None:
            return None
        value, expires_at = item
        if expires_at is not None and expires_at <= time.monotonic():
            del self._data[key]
            return None
        return value

    def _put(self, key: str, value: str, ttl: Optional[int]) -> None:
        expires_at = time.monotonic() + ttl if ttl else None
        self._data[key] = (value, expires_at)
        self._data.move_to_end(key)
        while len(self._data) > self.max_entries:
            self._data.popitem(last=False)

    async def get(self, key: str) -> Optional[str]:
        return self._live(key)

    async def set(self, key: str, value: str,
                  ttl: Optional[int] = None) -> None:
        self._put(key, str(value), ttl)

    async def set_if_absent(self, key: str, value: str,
                            ttl: Optional[int] = None) -> bool:
        if self._live(key) is not None:
            return False
        self._put(key, str(value), ttl)
        return True

    async def incr(self, key: str, ttl: Optional[int] = None) -> int:
        current = self._live(key)
        n = int(current or 0) + 1
        if current is None:
            self._put(key, str(n), ttl)
        else:
            # keep the original expiry
            _, expires_at = self._data[key]
            self._data[key] = (str(n), expires_at)
        return n

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)
