"""Concrete implementation of the response cache.

Keeps upstream read responses in memory with a per-entry TTL. Entries are
dropped on expiry or explicitly: by exact key, by key prefix (a family of
keys for one endpoint or resource) or wholesale.
"""

import logging
import time
import asyncio
from typing import Any, Optional, Dict
from dataclasses import dataclass

# Domain Layer Imports
from skyfi_mcp.domain.interfaces.cache import CacheService
from skyfi_mcp.domain.models.common import CacheKey, CachePrefix

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 5 * 60  # 5 minutes

@dataclass
class CacheEntry:
    """Internal representation of a cache entry with expiry."""
    key: CacheKey
    value: Any
    expires_at: float  # Unix timestamp when the entry expires

    def is_expired(self, now: Optional[float] = None) -> bool:
        return (now if now is not None else time.time()) >= self.expires_at

class ResponseCache(CacheService):
    """In-memory TTL cache; the whole map is guarded by one asyncio lock."""

    def __init__(self, default_ttl: int = DEFAULT_TTL_SECONDS):
        """Initializes the cache.

        Args:
            default_ttl: TTL in seconds used when `set` is called without one.
        """
        self.entries: Dict[CacheKey, CacheEntry] = {}
        self.default_ttl = default_ttl
        self._lock = asyncio.Lock()
        # Bumped on every invalidation; in-flight reads compare it before storing
        self._generation = 0
        logger.info(f"ResponseCache initialized (default_ttl={default_ttl}s)")

    def __len__(self) -> int:
        return len(self.entries)

    def _prune(self, now: float) -> None:
        """Removes expired entries. Caller must hold the lock."""
        expired_keys = [k for k, v in self.entries.items() if v.is_expired(now)]
        for k in expired_keys:
            del self.entries[k]
        if expired_keys:
            logger.debug(f"Pruned {len(expired_keys)} expired cache entries")

    # --- CacheService Interface Implementation ---

    @property
    def generation(self) -> int:
        return self._generation

    async def get(self, key: CacheKey, default: Any = None) -> Any:
        """Returns the cached value, or `default` on miss or expiry."""
        async with self._lock:
            entry = self.entries.get(key)
            if entry is None:
                logger.debug(f"Cache miss for key: {key}")
                return default
            if entry.is_expired():
                del self.entries[key]
                logger.debug(f"Cache entry expired for key: {key}")
                return default
            logger.debug(f"Cache hit for key: {key}")
            return entry.value

    async def set(
        self,
        key: CacheKey,
        value: Any,
        ttl: Optional[int] = None,
        if_generation: Optional[int] = None,
    ) -> bool:
        now = time.time()
        effective_ttl = ttl if ttl is not None else self.default_ttl
        async with self._lock:
            if if_generation is not None and if_generation != self._generation:
                logger.debug(f"Skipped stale cache write for key: {key} (generation {if_generation} != {self._generation})")
                return False
            self._prune(now)
            self.entries[key] = CacheEntry(key=key, value=value, expires_at=now + effective_ttl)
        logger.debug(f"Stored cache entry: key={key}, ttl={effective_ttl}s")
        return True

    async def delete(self, key: CacheKey) -> bool:
        async with self._lock:
            self._generation += 1
            removed = self.entries.pop(key, None) is not None
        if removed:
            logger.debug(f"Deleted cache entry: key={key}")
        return removed

    async def delete_prefix(self, prefix: CachePrefix) -> int:
        async with self._lock:
            self._generation += 1
            matching = [k for k in self.entries if k.startswith(prefix)]
            for k in matching:
                del self.entries[k]
        logger.debug(f"Deleted {len(matching)} cache entries with prefix: {prefix}")
        return len(matching)

    async def clear(self) -> int:
        async with self._lock:
            self._generation += 1
            removed = len(self.entries)
            self.entries.clear()
        logger.info(f"Cleared response cache ({removed} entries).")
        return removed
