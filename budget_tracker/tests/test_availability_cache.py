"""
Tests for the Redis-backed sibling allocation cache
"""
import json
import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from budget_tracker.services.availability_cache import AvailabilityCache
from budget_tracker.services.breakdown_service import BreakdownService


class FakeRedis:
    def __init__(self):
        self.store = {}
        self.deleted = []

    async def get(self, key):
        return self.store.get(key)

    async def setex(self, key, ttl, value):
        self.store[key] = value

    async def delete(self, *keys):
        self.deleted.extend(keys)
        for key in keys:
            self.store.pop(key, None)

    async def aclose(self):
        pass


class BrokenRedis:
    async def get(self, key):
        raise RedisConnectionError("connection refused")

    async def setex(self, key, ttl, value):
        raise RedisConnectionError("connection refused")

    async def delete(self, *keys):
        raise RedisConnectionError("connection refused")


def make_cache(client) -> AvailabilityCache:
    cache = AvailabilityCache(redis_url="redis://cache.test:6379/0", ttl=60)
    cache._client = client
    return cache


@pytest.mark.unit
@pytest.mark.asyncio
class TestAvailabilityCache:
    async def test_disabled_cache_is_a_miss(self):
        cache = AvailabilityCache(redis_url="")
        assert cache.enabled is False
        assert await cache.set_siblings("project", 1, [(1, 10.0)]) is False
        assert await cache.get_siblings("project", 1) is None

    async def test_set_then_get(self):
        client = FakeRedis()
        cache = make_cache(client)
        assert await cache.set_siblings("project", 7, [(1, 30000.0), (2, 40000.0)]) is True
        assert json.loads(client.store["availability:project:7"]) == [[1, 30000.0], [2, 40000.0]]
        assert await cache.get_siblings("project", 7) == [(1, 30000.0), (2, 40000.0)]

    async def test_invalidate_skips_orphans(self):
        client = FakeRedis()
        cache = make_cache(client)
        await cache.invalidate("trust_fund", 3, None)
        assert client.deleted == ["availability:trust_fund:3"]

    async def test_malformed_entry_is_a_miss(self):
        client = FakeRedis()
        client.store["availability:project:1"] = "not json at all"
        assert await make_cache(client).get_siblings("project", 1) is None

    async def test_redis_errors_are_swallowed_as_misses(self):
        cache = make_cache(BrokenRedis())
        assert await cache.get_siblings("project", 1) is None
        assert await cache.set_siblings("project", 1, []) is False
        await cache.invalidate("project", 1)


@pytest.mark.integration
@pytest.mark.asyncio
class TestCachedAvailability:
    async def test_read_through_and_invalidation(self, test_db, project, project_adapter, admin_user):
        client = FakeRedis()
        cache = make_cache(client)
        service = BreakdownService(test_db, cache=cache)
        key = f"availability:project:{project.id}"

        availability = await service.compute_availability(project_adapter, project.id)
        assert availability.available == 100000
        assert key in client.store

        await service.create_breakdown(
            project_adapter, project.id,
            {"project_name": "A", "implementing_office": "PEO", "allocated_budget": 40000}, admin_user,
        )
        assert key not in client.store

        availability = await service.compute_availability(project_adapter, project.id)
        assert availability.already_allocated == 40000
        assert availability.available == 60000
