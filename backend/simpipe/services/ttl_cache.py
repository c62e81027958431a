# backend/simpipe/services/ttl_cache.py
"""
In-process read-through cache with an explicit TTL.

Used for shared reference data (benchmark distributions, competitor
profiles). Stale reads are acceptable: a value is refreshed on the first read
after it expires. Thread-safe so analyzers can run in worker threads.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Hashable, Optional, TypeVar

from simpipe.clock import Clock, utcnow

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class _Slot:
    value: Any
    stored_at: datetime
    expires_at: datetime


class TTLCache:
    """Key/value cache whose entries expire `ttl_seconds` after they are stored."""

    def __init__(self, ttl_seconds: float, clock: Clock = utcnow, name: str = "cache"):
        self.ttl = timedelta(seconds=ttl_seconds)
        self.clock = clock
        self.name = name
        self._slots: Dict[Hashable, _Slot] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, key: Hashable) -> Optional[Any]:
        with self._lock:
            slot = self._slots.get(key)
            if slot is None or self.clock() >= slot.expires_at:
                self.misses += 1
                return None
            self.hits += 1
            return slot.value

    def set(self, key: Hashable, value: Any) -> None:
        now = self.clock()
        with self._lock:
            self._slots[key] = _Slot(value=value, stored_at=now, expires_at=now + self.ttl)

    def get_or_load(self, key: Hashable, loader: Callable[[], T]) -> T:
        """Return the cached value or compute, store and return a fresh one."""
        value = self.get(key)
        if value is not None:
            return value
        logger.debug(f"{self.name}: refreshing {key}")
        value = loader()
        self.set(key, value)
        return value

    def stored_at(self, key: Hashable) -> Optional[datetime]:
        with self._lock:
            slot = self._slots.get(key)
            return slot.stored_at if slot else None

    def purge_expired(self) -> int:
        now = self.clock()
        with self._lock:
            expired = [key for key, slot in self._slots.items() if now >= slot.expires_at]
            for key in expired:
                del self._slots[key]
        if expired:
            logger.info(f"{self.name}: purged {len(expired)} expired entries")
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._slots.clear()

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            total = self.hits + self.misses
            return {
                "name": self.name,
                "size": len(self._slots),
                "hits": self.hits,
                "misses": self.misses,
                "hit_rate": round(self.hits / total, 4) if total else 0.0,
            }

    def __len__(self) -> int:
        return len(self._slots)
