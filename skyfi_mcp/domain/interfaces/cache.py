"""Interface for response caching.

Defines the contract for storing, retrieving and invalidating cached upstream
responses with a per-entry TTL.
"""

import abc
from typing import Any, Optional

# Import relevant domain models
from skyfi_mcp.domain.models.common import CacheKey, CachePrefix

class CacheService(abc.ABC):
    """Abstract Base Class for caching operations."""

    @property
    @abc.abstractmethod
    def generation(self) -> int:
        """Counter bumped by every invalidation (delete, delete_prefix, clear)."""
        pass

    @abc.abstractmethod
    async def get(self, key: CacheKey, default: Any = None) -> Any:
        """Retrieves an item from the cache asynchronously.

        Args:
            key: The cache key to retrieve.
            default: Returned on a miss or expiry, so a cached None stays distinguishable.

        Returns:
            The cached item if found and not expired, otherwise `default`.
        """
        pass

    @abc.abstractmethod
    async def set(
        self,
        key: CacheKey,
        value: Any,
        ttl: Optional[int] = None,
        if_generation: Optional[int] = None,
    ) -> bool:
        """Stores an item asynchronously.

        Args:
            key: The cache key to store the item under.
            value: The item to store.
            ttl: Time-to-live in seconds (uses the service default if None).
            if_generation: Only store when no invalidation happened since this generation.

        Returns:
            True if the item was stored.
        """
        pass

    @abc.abstractmethod
    async def delete(self, key: CacheKey) -> bool:
        """Deletes a single item. Returns True if an entry was removed."""
        pass

    @abc.abstractmethod
    async def delete_prefix(self, prefix: CachePrefix) -> int:
        """Deletes every item whose key starts with `prefix`.

        Returns:
            The number of removed entries.
        """
        pass

    @abc.abstractmethod
    async def clear(self) -> int:
        """Clears all items. Returns the number of removed entries."""
        pass
