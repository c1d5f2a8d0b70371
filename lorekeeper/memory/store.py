from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Dict, List, Optional


@dataclass(frozen=True)
class CacheEntry:
    cache_key: str
    campaign_id: int
    remote_handle: str
    expires_at: float  # epoch seconds, already shortened by the safety margin

    def expired(self, now: float) -> bool:
        return now >= self.expires_at


class CacheStore:
    """Table of live context caches. Swap for a shared store when running several processes."""

    def get(self, key: str) -> Optional[CacheEntry]:
        raise NotImplementedError

    def put(self, entry: CacheEntry) -> None:
        raise NotImplementedError

    def pop(self, key: str) -> Optional[CacheEntry]:
        raise NotImplementedError

    def entries(self) -> List[CacheEntry]:
        raise NotImplementedError


class InMemoryCacheStore(CacheStore):
    # Process-wide: cache_key -> CacheEntry. Handles are kept server-side only.

    def __init__(self):
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[CacheEntry]:
        with self._lock:
            return self._entries.get(key)

    def put(self, entry: CacheEntry) -> None:
        with self._lock:
            self._entries[entry.cache_key] = entry

    def pop(self, key: str) -> Optional[CacheEntry]:
        with self._lock:
            return self._entries.pop(key, None)

    def entries(self) -> List[CacheEntry]:
        with self._lock:
            return list(self._entries.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
