"""Append-only progress event log with cursor reads.

The deploy worker appends events per resource; any number of tailers read
from their own cursor. A cursor is the position of the next entry to read.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from functools import lru_cache

from pydantic import ValidationError as PydanticValidationError
from redis.asyncio import Redis
from redis.exceptions import RedisError

from deploywatch.config import settings
from deploywatch.core.exceptions import EventStoreUnavailableError
from deploywatch.models.progress import LoggedEvent, ProgressEvent
from deploywatch.services.redis_client import get_redis
from deploywatch.utils.logging import get_logger

logger = get_logger(__name__)


class ProgressEventLog(ABC):
    """Contract shared by all event log backends.

    ``read`` raises ``EventStoreUnavailableError`` when the store cannot be
    reached, which callers must treat differently from an empty result.
    """

    @abstractmethod
    async def append(self, resource_id: str, event: ProgressEvent) -> int:
        """Record an event and return its position."""

    @abstractmethod
    async def read(self, resource_id: str, cursor: int = 0) -> list[LoggedEvent]:
        """Return all entries at or after ``cursor`` in append order."""

    @abstractmethod
    async def clear(self, resource_id: str) -> None:
        """Drop every entry for a resource."""

    async def ping(self) -> bool:
        """Check that the store is reachable."""
        return True

    async def close(self) -> None:
        """Release backend resources."""


@dataclass
class _Entries:
    events: list[ProgressEvent] = field(default_factory=list)
    expires_at: float = 0.0


class InMemoryProgressEventLog(ProgressEventLog):
    """Event log kept in process memory.

    Entries expire ``ttl_seconds`` after the last append, matching the
    retention of the Redis backend.
    """

    def __init__(
        self,
        ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._ttl = ttl_seconds if ttl_seconds is not None else settings.progress_ttl_seconds
        self._clock = clock
        self._logs: dict[str, _Entries] = {}
        self._lock = asyncio.Lock()

    def _live(self, resource_id: str) -> _Entries | None:
        entries = self._logs.get(resource_id)
        if entries and self._clock() >= entries.expires_at:
            del self._logs[resource_id]
            return None
        return entries

    async def append(self, resource_id: str, event: ProgressEvent) -> int:
        async with self._lock:
            entries = self._live(resource_id)
            if entries is None:
                entries = self._logs[resource_id] = _Entries()
            entries.events.append(event)
            entries.expires_at = self._clock() + self._ttl
            return len(entries.events) - 1

    async def read(self, resource_id: str, cursor: int = 0) -> list[LoggedEvent]:
        cursor = max(cursor, 0)
        async with self._lock:
            entries = self._live(resource_id)
            if entries is None:
                return []
            return [
                LoggedEvent(position=position, event=event)
                for position, event in enumerate(entries.events[cursor:], start=cursor)
            ]

    async def clear(self, resource_id: str) -> None:
        async with self._lock:
            self._logs.pop(resource_id, None)


class RedisProgressEventLog(ProgressEventLog):
    """Event log stored as one Redis list per resource."""

    def __init__(
        self,
        redis: Redis,
        key_prefix: str | None = None,
        ttl_seconds: int | None = None,
    ):
        self._redis = redis
        self._prefix = f"{key_prefix or settings.redis_key_prefix}deploy:progress:"
        self._ttl = ttl_seconds or settings.progress_ttl_seconds

    def _key(self, resource_id: str) -> str:
        return self._prefix + resource_id

    async def append(self, resource_id: str, event: ProgressEvent) -> int:
        key = self._key(resource_id)
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.rpush(key, event.to_wire())
                pipe.expire(key, self._ttl)
                length, _ = await pipe.execute()
        except (RedisError, OSError) as e:
            raise EventStoreUnavailableError(str(e)) from e
        return int(length) - 1

    async def read(self, resource_id: str, cursor: int = 0) -> list[LoggedEvent]:
        cursor = max(cursor, 0)
        try:
            items = await self._redis.lrange(self._key(resource_id), cursor, -1)
        except (RedisError, OSError) as e:
            raise EventStoreUnavailableError(str(e)) from e

        entries = []
        for position, item in enumerate(items, start=cursor):
            try:
                event = ProgressEvent.model_validate_json(item)
            except PydanticValidationError as e:
                # Position is still consumed so the cursor moves past it
                logger.warning(
                    "event_log.malformed_entry",
                    resource_id=resource_id,
                    position=position,
                    error=str(e),
                )
                continue
            entries.append(LoggedEvent(position=position, event=event))
        return entries

    async def clear(self, resource_id: str) -> None:
        try:
            await self._redis.delete(self._key(resource_id))
        except (RedisError, OSError) as e:
            raise EventStoreUnavailableError(str(e)) from e

    async def ping(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except (RedisError, OSError):
            return False


@lru_cache
def get_event_log() -> ProgressEventLog:
    """Get the event log singleton for the configured backend."""
    redis = get_redis()
    if redis is None:
        logger.info("event_log.backend", backend="memory")
        return InMemoryProgressEventLog()
    logger.info("event_log.backend", backend="redis")
    return RedisProgressEventLog(redis)
