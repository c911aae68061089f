"""Unit tests for the Redis-backed event log and registry."""

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from deploywatch.core.event_log import RedisProgressEventLog
from deploywatch.core.exceptions import EventStoreUnavailableError, RegistryUnavailableError
from deploywatch.models.progress import ProgressEventType
from deploywatch.models.resource import DeployedResource
from deploywatch.services.registry import RedisResourceRegistry

from tests.fakes import make_event


class FakePipeline:
    def __init__(self, redis: "FakeRedis"):
        self.redis = redis
        self.commands = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def __getattr__(self, name):
        def queue(*args, **kwargs):
            self.commands.append((name, args, kwargs))
            return self

        return queue

    async def execute(self):
        return [
            await getattr(self.redis, name)(*args, **kwargs)
            for name, args, kwargs in self.commands
        ]


class FakeRedis:
    """Just enough of ``redis.asyncio.Redis`` for the backends."""

    def __init__(self):
        self.lists: dict[str, list[str]] = {}
        self.values: dict[str, str] = {}
        self.sets: dict[str, set[str]] = {}
        self.ttls: dict = {}
        self.down = False

    def _check(self):
        if self.down:
            raise RedisConnectionError("Connection refused")

    def pipeline(self, transaction=True):
        return FakePipeline(self)

    async def rpush(self, key, value):
        self._check()
        self.lists.setdefault(key, []).append(value)
        return len(self.lists[key])

    async def lrange(self, key, start, end):
        self._check()
        items = self.lists.get(key, [])
        return items[start:] if end == -1 else items[start : end + 1]

    async def expire(self, key, ttl):
        self._check()
        self.ttls[key] = ttl
        return True

    async def delete(self, key):
        self._check()
        existed = key in self.values or key in self.lists
        self.values.pop(key, None)
        self.lists.pop(key, None)
        return int(existed)

    async def set(self, key, value, ex=None):
        self._check()
        self.values[key] = value
        self.ttls[key] = ex
        return True

    async def get(self, key):
        self._check()
        return self.values.get(key)

    async def mget(self, keys):
        self._check()
        return [self.values.get(k) for k in keys]

    async def sadd(self, key, member):
        self._check()
        self.sets.setdefault(key, set()).add(member)
        return 1

    async def srem(self, key, member):
        self._check()
        self.sets.get(key, set()).discard(member)
        return 1

    async def smembers(self, key):
        self._check()
        return set(self.sets.get(key, set()))

    async def ping(self):
        self._check()
        return True


@pytest.fixture
def redis() -> FakeRedis:
    return FakeRedis()


class TestRedisProgressEventLog:
    """Tests for the Redis list backend."""

    @pytest.mark.asyncio
    async def test_append_and_read(self, redis: FakeRedis):
        log = RedisProgressEventLog(redis, key_prefix="t:", ttl_seconds=300)

        assert await log.append("res-1", make_event("res-1", ProgressEventType.BUILDING)) == 0
        assert await log.append("res-1", make_event("res-1", ProgressEventType.COMPLETE)) == 1

        entries = await log.read("res-1", cursor=1)
        assert [(e.position, e.event.type) for e in entries] == [(1, ProgressEventType.COMPLETE)]
        assert redis.ttls["t:deploy:progress:res-1"] == 300

    @pytest.mark.asyncio
    async def test_malformed_entries_consume_positions(self, redis: FakeRedis):
        log = RedisProgressEventLog(redis, key_prefix="t:")
        redis.lists["t:deploy:progress:res-1"] = [
            "not json",
            make_event("res-1", ProgressEventType.TESTING).to_wire(),
        ]

        entries = await log.read("res-1")

        assert [e.position for e in entries] == [1]

    @pytest.mark.asyncio
    async def test_store_down_is_distinct_from_empty(self, redis: FakeRedis):
        log = RedisProgressEventLog(redis, key_prefix="t:")
        assert await log.read("res-1") == []

        redis.down = True
        with pytest.raises(EventStoreUnavailableError):
            await log.read("res-1")
        assert await log.ping() is False


class TestRedisResourceRegistry:
    """Tests for the Redis registry backend."""

    @pytest.mark.asyncio
    async def test_save_get_list_delete(self, redis: FakeRedis):
        registry = RedisResourceRegistry(redis, key_prefix="t:")
        await registry.save(DeployedResource(resource_id="b", name="beta"))
        await registry.save(DeployedResource(resource_id="a", name="alpha"))

        assert (await registry.get("a")).name == "alpha"
        assert [r.resource_id for r in await registry.list()] == ["a", "b"]

        assert await registry.delete("a") is True
        assert await registry.get("a") is None
        assert [r.resource_id for r in await registry.list()] == ["b"]

    @pytest.mark.asyncio
    async def test_list_skips_expired_and_malformed(self, redis: FakeRedis):
        registry = RedisResourceRegistry(redis, key_prefix="t:")
        await registry.save(DeployedResource(resource_id="ok"))
        redis.sets["t:resources:index"].update({"expired", "broken"})
        redis.values["t:resources:broken"] = "{"

        assert [r.resource_id for r in await registry.list()] == ["ok"]

    @pytest.mark.asyncio
    async def test_unavailable(self, redis: FakeRedis):
        registry = RedisResourceRegistry(redis, key_prefix="t:")
        redis.down = True

        with pytest.raises(RegistryUnavailableError):
            await registry.list()
        with pytest.raises(RegistryUnavailableError):
            await registry.save(DeployedResource(resource_id="a"))
