# backend/simpipe/services/result_cache.py
"""
Result cache for completed simulations.

Keyed by a fingerprint of (campaign id, timeframe, sorted metric types).
Entries expire at `expires_at`; an expired entry is a miss and is evicted
on read. The cache is an optimization only: a miss always recomputes.
"""

import hashlib
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

import redis.asyncio as redis
from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import async_sessionmaker

from simpipe.clock import Clock, ensure_utc, parse_datetime, utcnow
from simpipe.models import SimulationCacheEntry

logger = logging.getLogger(__name__)

FINGERPRINT_PREFIX = "sim_"


def fingerprint(campaign_id: str, timeframe: Optional[Dict[str, Any]], metric_types: Iterable[str]) -> str:
    """Stable cache key for a simulation request."""
    payload = json.dumps(
        {
            "campaign_id": campaign_id,
            "timeframe": timeframe or {},
            "metrics": sorted(metric_types),
        },
        sort_keys=True,
        default=str,
    )
    return FINGERPRINT_PREFIX + hashlib.sha256(payload.encode()).hexdigest()


@dataclass
class CacheEntry:
    fingerprint: str
    campaign_id: str
    value: Dict[str, Any]
    created_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fingerprint": self.fingerprint,
            "campaign_id": self.campaign_id,
            "value": self.value,
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CacheEntry":
        return cls(
            fingerprint=data["fingerprint"],
            campaign_id=data["campaign_id"],
            value=data["value"],
            created_at=parse_datetime(data["created_at"]),
            expires_at=parse_datetime(data["expires_at"]),
        )


# ============================================================================
# BACKENDS
# ============================================================================

class CacheBackend(ABC):
    """Storage for cache entries. Expiry is decided by ResultCache."""

    @abstractmethod
    async def load(self, key: str) -> Optional[CacheEntry]:
        pass

    @abstractmethod
    async def save(self, entry: CacheEntry) -> None:
        pass

    @abstractmethod
    async def remove(self, key: str) -> None:
        pass

    @abstractmethod
    async def remove_campaign(self, campaign_id: str) -> int:
        pass

    @abstractmethod
    async def remove_expired(self, now: datetime) -> int:
        pass

    @abstractmethod
    async def entries(self) -> List[CacheEntry]:
        pass

    async def close(self):
        pass


class InMemoryCacheBackend(CacheBackend):

    def __init__(self):
        self._entries: Dict[str, CacheEntry] = {}

    async def load(self, key: str) -> Optional[CacheEntry]:
        return self._entries.get(key)

    async def save(self, entry: CacheEntry) -> None:
        self._entries[entry.fingerprint] = entry

    async def remove(self, key: str) -> None:
        self._entries.pop(key, None)

    async def remove_campaign(self, campaign_id: str) -> int:
        keys = [k for k, e in self._entries.items() if e.campaign_id == campaign_id]
        for key in keys:
            del self._entries[key]
        return len(keys)

    async def remove_expired(self, now: datetime) -> int:
        keys = [k for k, e in self._entries.items() if e.is_expired(now)]
        for key in keys:
            del self._entries[key]
        return len(keys)

    async def entries(self) -> List[CacheEntry]:
        return list(self._entries.values())


class SqlCacheBackend(CacheBackend):
    """Cache rows in the `simulation_cache` table."""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    @staticmethod
    def _to_entry(row: SimulationCacheEntry) -> CacheEntry:
        return CacheEntry(
            fingerprint=row.cache_key,
            campaign_id=row.campaign_id,
            value=row.results,
            created_at=ensure_utc(row.created_at),
            expires_at=ensure_utc(row.expires_at),
        )

    async def load(self, key: str) -> Optional[CacheEntry]:
        async with self.session_factory() as session:
            row = await session.get(SimulationCacheEntry, key)
            return self._to_entry(row) if row else None

    async def save(self, entry: CacheEntry) -> None:
        async with self.session_factory() as session:
            row = await session.get(SimulationCacheEntry, entry.fingerprint)
            if row is None:
                session.add(SimulationCacheEntry(
                    cache_key=entry.fingerprint,
                    campaign_id=entry.campaign_id,
                    results=entry.value,
                    created_at=entry.created_at,
                    expires_at=entry.expires_at,
                ))
            else:
                row.results = entry.value
                row.expires_at = entry.expires_at
            await session.commit()

    async def remove(self, key: str) -> None:
        async with self.session_factory() as session:
            await session.execute(delete(SimulationCacheEntry).where(SimulationCacheEntry.cache_key == key))
            await session.commit()

    async def remove_campaign(self, campaign_id: str) -> int:
        async with self.session_factory() as session:
            result = await session.execute(
                delete(SimulationCacheEntry).where(SimulationCacheEntry.campaign_id == campaign_id)
            )
            await session.commit()
            return result.rowcount or 0

    async def remove_expired(self, now: datetime) -> int:
        async with self.session_factory() as session:
            result = await session.execute(
                delete(SimulationCacheEntry).where(SimulationCacheEntry.expires_at <= now)
            )
            await session.commit()
            return result.rowcount or 0

    async def entries(self) -> List[CacheEntry]:
        async with self.session_factory() as session:
            result = await session.execute(select(SimulationCacheEntry))
            return [self._to_entry(row) for row in result.scalars().all()]


class RedisCacheBackend(CacheBackend):
    """
    Cache entries as JSON strings with a Redis TTL, plus one set per campaign
    listing its keys so a campaign can be invalidated in one call.
    """

    KEY_PREFIX = "simulation:cache:"
    CAMPAIGN_PREFIX = "simulation:cache-campaign:"

    def __init__(self, redis_url: str, clock: Clock = utcnow, client=None):
        self.redis_url = redis_url
        self.clock = clock
        self.redis_client = client

    async def initialize(self):
        """Initialize Redis connection."""
        if not self.redis_client:
            self.redis_client = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True
            )
            logger.info("Redis connection initialized for result cache")

    async def close(self):
        """Close Redis connection."""
        if self.redis_client:
            await self.redis_client.aclose()
            self.redis_client = None

    async def load(self, key: str) -> Optional[CacheEntry]:
        await self.initialize()
        raw = await self.redis_client.get(self.KEY_PREFIX + key)
        return CacheEntry.from_dict(json.loads(raw)) if raw else None

    async def save(self, entry: CacheEntry) -> None:
        await self.initialize()
        ttl = int((entry.expires_at - self.clock()).total_seconds())
        if ttl <= 0:
            return
        await self.redis_client.setex(self.KEY_PREFIX + entry.fingerprint, ttl, json.dumps(entry.to_dict()))
        await self.redis_client.sadd(self.CAMPAIGN_PREFIX + entry.campaign_id, entry.fingerprint)

    async def remove(self, key: str) -> None:
        await self.initialize()
        await self.redis_client.delete(self.KEY_PREFIX + key)

    async def remove_campaign(self, campaign_id: str) -> int:
        await self.initialize()
        members = await self.redis_client.smembers(self.CAMPAIGN_PREFIX + campaign_id)
        removed = 0
        if members:
            removed = await self.redis_client.delete(*[self.KEY_PREFIX + m for m in members])
        await self.redis_client.delete(self.CAMPAIGN_PREFIX + campaign_id)
        return removed

    async def remove_expired(self, now: datetime) -> int:
        # Redis evicts on TTL
        return 0

    async def entries(self) -> List[CacheEntry]:
        await self.initialize()
        found = []
        async for key in self.redis_client.scan_iter(match=self.KEY_PREFIX + "*"):
            raw = await self.redis_client.get(key)
            if raw:
                found.append(CacheEntry.from_dict(json.loads(raw)))
        return found


def create_cache_backend(kind: str, session_factory=None, redis_url: Optional[str] = None, clock: Clock = utcnow) -> CacheBackend:
    """
    Build the configured cache backend.

    Raises:
        ValueError: If the backend kind is unknown or missing its dependency
    """
    kind = kind.lower()
    if kind == "memory":
        return InMemoryCacheBackend()
    if kind == "database":
        if session_factory is None:
            raise ValueError("database cache backend requires a session factory")
        return SqlCacheBackend(session_factory)
    if kind == "redis":
        if not redis_url:
            raise ValueError("redis cache backend requires REDIS_URL")
        return RedisCacheBackend(redis_url, clock=clock)
    raise ValueError(f"Unknown cache backend '{kind}'. Available: memory, database, redis")


# ============================================================================
# RESULT CACHE
# ============================================================================

class ResultCache:
    """get / put / get_or_compute over a backend, with hit/miss accounting."""

    def __init__(self, backend: CacheBackend, default_ttl_seconds: float = 86400, clock: Clock = utcnow):
        self.backend = backend
        self.default_ttl_seconds = default_ttl_seconds
        self.clock = clock
        self.hits = 0
        self.misses = 0

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        entry = await self.backend.load(key)
        if entry is None:
            self.misses += 1
            return None
        if entry.is_expired(self.clock()):
            await self.backend.remove(key)
            self.misses += 1
            logger.debug(f"Evicted expired cache entry {key}")
            return None
        self.hits += 1
        logger.debug(f"Cache hit {key}")
        return entry.value

    async def put(self, key: str, value: Dict[str, Any], campaign_id: str, ttl_seconds: Optional[float] = None) -> CacheEntry:
        now = self.clock()
        ttl = self.default_ttl_seconds if ttl_seconds is None else ttl_seconds
        entry = CacheEntry(
            fingerprint=key,
            campaign_id=campaign_id,
            value=value,
            created_at=now,
            expires_at=now + timedelta(seconds=ttl),
        )
        await self.backend.save(entry)
        return entry

    async def get_or_compute(
        self,
        key: str,
        campaign_id: str,
        compute: Callable[[], Awaitable[Dict[str, Any]]],
        ttl_seconds: Optional[float] = None
    ) -> Dict[str, Any]:
        cached = await self.get(key)
        if cached is not None:
            return cached
        value = await compute()
        await self.put(key, value, campaign_id, ttl_seconds)
        return value

    async def invalidate_campaign(self, campaign_id: str) -> int:
        removed = await self.backend.remove_campaign(campaign_id)
        logger.info(f"Invalidated {removed} cache entries for campaign {campaign_id}")
        return removed

    async def cleanup_expired(self) -> int:
        removed = await self.backend.remove_expired(self.clock())
        if removed:
            logger.info(f"Removed {removed} expired cache entries")
        return removed

    async def statistics(self) -> Dict[str, Any]:
        now = self.clock()
        entries = await self.backend.entries()
        valid = [e for e in entries if not e.is_expired(now)]
        ages = [(now - e.created_at).total_seconds() for e in valid]
        lookups = self.hits + self.misses
        return {
            "total_entries": len(entries),
            "valid_entries": len(valid),
            "expired_entries": len(entries) - len(valid),
            "average_entry_age_seconds": sum(ages) / len(ages) if ages else 0.0,
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": self.hits / lookups if lookups else 0.0,
        }

    async def close(self):
        await self.backend.close()
