"""
Read-through Redis cache of active sibling allocations.

Keys are ``availability:{fund_type}:{parent_id}`` and hold a JSON list of
``[breakdown_id, allocated_budget]`` pairs. Mutations always read the database;
only the read-only availability and violation-check endpoints consult the cache.
Every committed breakdown write invalidates its parent's key. Redis errors are
logged and treated as a miss.
"""
import json
import logging
from typing import Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from budget_tracker.core.config import settings

logger = logging.getLogger(__name__)


class AvailabilityCache:
    PREFIX = "availability"

    def __init__(self, redis_url: Optional[str] = None, ttl: Optional[int] = None):
        self.redis_url = settings.REDIS_URL if redis_url is None else redis_url
        self.ttl = ttl or settings.AVAILABILITY_CACHE_TTL
        self._client: Optional[redis.Redis] = None

    @property
    def enabled(self) -> bool:
        return bool(self.redis_url)

    def key(self, fund_type: str, parent_id: int) -> str:
        return f"{self.PREFIX}:{fund_type}:{parent_id}"

    async def get_client(self) -> redis.Redis:
        if self._client is None:
            self._client = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
        return self._client

    async def close(self):
        if self._client:
            await self._client.aclose()
            self._client = None

    async def get_siblings(self, fund_type: str, parent_id: int) -> Optional[list[tuple[int, float]]]:
        if not self.enabled:
            return None
        key = self.key(fund_type, parent_id)
        try:
            client = await self.get_client()
            raw = await client.get(key)
        except (RedisError, OSError) as e:
            logger.warning(f"Availability cache get failed for {key}: {e}")
            return None
        if raw is None:
            return None
        try:
            return [(int(item[0]), float(item[1])) for item in json.loads(raw)]
        except (ValueError, TypeError, IndexError):
            logger.warning(f"Discarding malformed availability cache entry {key}")
            return None

    async def set_siblings(self, fund_type: str, parent_id: int, siblings: list[tuple[int, float]]) -> bool:
        if not self.enabled:
            return False
        key = self.key(fund_type, parent_id)
        try:
            client = await self.get_client()
            await client.setex(key, self.ttl, json.dumps([[i, a] for i, a in siblings]))
            return True
        except (RedisError, OSError) as e:
            logger.warning(f"Availability cache set failed for {key}: {e}")
            return False

    async def invalidate(self, fund_type: str, *parent_ids: int | None) -> None:
        keys = [self.key(fund_type, pid) for pid in parent_ids if pid is not None]
        if not self.enabled or not keys:
            return
        try:
            client = await self.get_client()
            await client.delete(*keys)
        except (RedisError, OSError) as e:
            logger.warning(f"Availability cache invalidate failed for {keys}: {e}")


availability_cache = AvailabilityCache()


def get_availability_cache() -> AvailabilityCache:
    return availability_cache
