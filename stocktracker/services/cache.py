"""Simple in-memory response cache with TTL, scoped per owner."""

import threading
import time
from typing import Any, Dict, Hashable, Optional, Tuple


class OwnerCache:
    """
    Entries are keyed by (owner_id, key). Any write for an owner evicts all
    of that owner's entries so a changed history is never served stale.
    """

    def __init__(self):
        self._entries: Dict[Tuple[str, Hashable], Tuple[float, float, Any]] = {}
        self._lock = threading.Lock()

    def get(self, owner_id: str, key: Hashable) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get((owner_id, key))
            if entry is None:
                return None
            cached_time, ttl_seconds, value = entry
            if time.time() - cached_time < ttl_seconds:
                return value
            del self._entries[(owner_id, key)]
        return None

    def set(self, owner_id: str, key: Hashable, value: Any, ttl_seconds: float) -> None:
        with self._lock:
            self._entries[(owner_id, key)] = (time.time(), ttl_seconds, value)

    def evict_owner(self, owner_id: str) -> None:
        with self._lock:
            for cache_key in [k for k in self._entries if k[0] == owner_id]:
                del self._entries[cache_key]

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


# Shared by every request in the process
portfolio_cache = OwnerCache()
