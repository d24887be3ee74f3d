"""Lock-guarded user profile cache backed by the users table.

Chat turns need the student's profile on every request. The LRU keeps the
recent ones in memory; on a miss the stored copy is loaded and cached.
"""

import asyncio
from typing import Any, Callable, Dict, Optional, TYPE_CHECKING

from core.config import Settings
from core.logging import get_logger, log_cache_operation
from core.lru_cache import LRUCache
from models.user import UserProfile

if TYPE_CHECKING:
    from core.database import Database

logger = get_logger(__name__)


class UserCache:
    """Bounded, expiring profile cache.

    One lock per instance serializes every check-then-fill sequence, so two
    concurrent misses for the same user never interleave their store reads
    and writes. Concurrent fetches are not merged: the second caller runs its
    own lookup once the first has released the lock.
    """

    def __init__(self, database: "Database", settings: Settings,
                 clock: Optional[Callable[[], int]] = None):
        self.database = database
        self._lru = LRUCache(
            capacity=settings.user_cache_capacity,
            ttl_seconds=settings.user_cache_ttl,
            clock=clock
        )
        self._lock = asyncio.Lock()
        self._hits = 0
        self._misses = 0

    async def get_user_data(self, user_id: str) -> Optional[UserProfile]:
        """Return the profile from memory, falling back to the database.

        Store failures are logged and reported as a miss.
        """
        async with self._lock:
            cached = self._lru.get(user_id)
            if cached is not None:
                self._hits += 1
                log_cache_operation(logger, "get", user_id, hit=True)
                return cached

            self._misses += 1
            log_cache_operation(logger, "get", user_id, hit=False)

            try:
                profile = await self.database.get_user_profile(user_id)
            except Exception as e:
                logger.error("User profile lookup failed", user_id=user_id, error=str(e))
                return None

            if profile is not None:
                self._lru.put(user_id, profile)
                log_cache_operation(logger, "fill", user_id, source="database")
            return profile

    async def set_user_data(self, user_id: str, profile: UserProfile) -> None:
        """Cache a fresh profile and mirror it to the database (best effort)."""
        async with self._lock:
            self._lru.put(user_id, profile)
            log_cache_operation(logger, "put", user_id)

            try:
                await self.database.upsert_user_profile(profile)
            except Exception as e:
                logger.error("User profile save failed", user_id=user_id, error=str(e))

    def invalidate(self, user_id: str) -> None:
        self._lru.delete(user_id)
        log_cache_operation(logger, "delete", user_id)

    def __len__(self) -> int:
        return len(self._lru)

    def stats(self) -> Dict[str, Any]:
        return {
            "size": len(self._lru),
            "capacity": self._lru.capacity,
            "ttl_seconds": self._lru.ttl_seconds,
            "hits": self._hits,
            "misses": self._misses,
        }
