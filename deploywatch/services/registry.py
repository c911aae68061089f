"""Persisted registry of deployed resources."""

import asyncio
from abc import ABC, abstractmethod
from datetime import timedelta
from functools import lru_cache

from pydantic import ValidationError as PydanticValidationError
from redis.asyncio import Redis
from redis.exceptions import RedisError

from deploywatch.config import settings
from deploywatch.core.exceptions import RegistryUnavailableError
from deploywatch.models.resource import DeployedResource
from deploywatch.services.redis_client import get_redis
from deploywatch.utils.logging import get_logger

logger = get_logger(__name__)

# Registry records outlive progress logs by far
RESOURCE_TTL = timedelta(days=7)


class ResourceRegistry(ABC):
    """Read/write contract for registry backends."""

    @abstractmethod
    async def get(self, resource_id: str) -> DeployedResource | None:
        """Get a resource by ID."""

    @abstractmethod
    async def save(self, resource: DeployedResource) -> DeployedResource:
        """Insert or replace a resource."""

    @abstractmethod
    async def delete(self, resource_id: str) -> bool:
        """Delete a resource. Returns whether it existed."""

    @abstractmethod
    async def list(self) -> list[DeployedResource]:
        """List all resources."""

    async def ping(self) -> bool:
        """Check that the backend is reachable."""
        return True


class InMemoryResourceRegistry(ResourceRegistry):
    """Registry kept in process memory.

    Note: records are lost on restart; use the Redis backend in production.
    """

    def __init__(self):
        self._resources: dict[str, DeployedResource] = {}
        self._lock = asyncio.Lock()

    async def get(self, resource_id: str) -> DeployedResource | None:
        resource = self._resources.get(resource_id)
        return resource.model_copy(deep=True) if resource else None

    async def save(self, resource: DeployedResource) -> DeployedResource:
        async with self._lock:
            self._resources[resource.resource_id] = resource.model_copy(deep=True)
        return resource

    async def delete(self, resource_id: str) -> bool:
        async with self._lock:
            return self._resources.pop(resource_id, None) is not None

    async def list(self) -> list[DeployedResource]:
        return [r.model_copy(deep=True) for r in self._resources.values()]

    def clear(self) -> None:
        """Remove all resources (primarily for tests)."""
        self._resources.clear()


class RedisResourceRegistry(ResourceRegistry):
    """Registry stored as one JSON value per resource plus an index set."""

    def __init__(self, redis: Redis, key_prefix: str | None = None):
        self._redis = redis
        self._prefix = f"{key_prefix or settings.redis_key_prefix}resources:"
        self._index = self._prefix + "index"

    def _key(self, resource_id: str) -> str:
        return self._prefix + resource_id

    def _parse(self, data: str) -> DeployedResource | None:
        try:
            return DeployedResource.model_validate_json(data)
        except PydanticValidationError as e:
            logger.warning("registry.malformed_record", error=str(e))
            return None

    async def get(self, resource_id: str) -> DeployedResource | None:
        try:
            data = await self._redis.get(self._key(resource_id))
            if data is None:
                return None
            # Refresh TTL on access
            await self._redis.expire(self._key(resource_id), RESOURCE_TTL)
        except (RedisError, OSError) as e:
            raise RegistryUnavailableError(str(e)) from e
        return self._parse(data)

    async def save(self, resource: DeployedResource) -> DeployedResource:
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.set(
                    self._key(resource.resource_id),
                    resource.model_dump_json(),
                    ex=RESOURCE_TTL,
                )
                pipe.sadd(self._index, resource.resource_id)
                await pipe.execute()
        except (RedisError, OSError) as e:
            raise RegistryUnavailableError(str(e)) from e
        return resource

    async def delete(self, resource_id: str) -> bool:
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.delete(self._key(resource_id))
                pipe.srem(self._index, resource_id)
                deleted, _ = await pipe.execute()
        except (RedisError, OSError) as e:
            raise RegistryUnavailableError(str(e)) from e
        return bool(deleted)

    async def list(self) -> list[DeployedResource]:
        try:
            ids = sorted(await self._redis.smembers(self._index))
            if not ids:
                return []
            values = await self._redis.mget([self._key(rid) for rid in ids])
        except (RedisError, OSError) as e:
            raise RegistryUnavailableError(str(e)) from e

        resources = []
        for value in values:
            if value is None:
                # Expired record still referenced by the index
                continue
            resource = self._parse(value)
            if resource:
                resources.append(resource)
        return resources

    async def ping(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except (RedisError, OSError):
            return False


@lru_cache
def get_registry() -> ResourceRegistry:
    """Get the registry singleton for the configured backend."""
    redis = get_redis()
    if redis is None:
        logger.info("registry.backend", backend="memory")
        return InMemoryResourceRegistry()
    logger.info("registry.backend", backend="redis")
    return RedisResourceRegistry(redis)
