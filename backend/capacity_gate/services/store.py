"""Key-value store backing the usage ledger, rate limiter and result cache.

Counters rely on the store's own atomic increment; nothing above this layer
does read-modify-write. Failures surface as ``StoreUnavailableError`` so the
admission gate can apply its fail-open/fail-closed policy.
"""
from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Callable, Dict, Optional, Tuple, Union

import redis.asyncio as redis
from redis.exceptions import RedisError

from capacity_gate.core.exceptions import StoreUnavailableError
from capacity_gate.core.logger import LoggerMixin

Number = Union[int, float]


class KeyValueStore(ABC, LoggerMixin):
    """Durable key-value store with atomic counters and expiry"""

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Get a string value, None when absent or expired"""

    @abstractmethod
    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        """Set a string value with a time-to-live"""

    @abstractmethod
    async def incr(self, key: str, amount: int = 1, expire_at: Optional[datetime] = None) -> int:
        """Atomically add ``amount`` to a counter (absent counts as 0) and return the new value"""

    @abstractmethod
    async def get_record(self, key: str) -> Dict[str, str]:
        """Get all fields of a hash record, empty when absent"""

    @abstractmethod
    async def increment_record(
        self,
        key: str,
        field: str,
        amount: int = 1,
        defaults: Optional[Dict[str, str]] = None,
        updates: Optional[Dict[str, str]] = None,
        expire_at: Optional[datetime] = None,
        increments: Optional[Dict[str, Number]] = None,
    ) -> Dict[str, str]:
        """Atomically increment one field of a hash record.

        ``defaults`` are written only when the field does not exist yet,
        ``updates`` are written every time. ``increments`` adds to further
        numeric fields in the same transaction (floats use float addition).
        Returns the whole record after the update.
        """

    @abstractmethod
    async def ping(self) -> bool:
        """Check if the store is reachable"""

    async def connect(self) -> None:
        pass

    async def close(self) -> None:
        pass


class RedisStore(KeyValueStore):
    """Redis-backed store"""

    def __init__(self, redis_url: str, password: Optional[str] = None, key_prefix: str = "capacity_gate:"):
        self.redis_url = redis_url
        self.password = password
        self.key_prefix = key_prefix
        self.redis: Optional[redis.Redis] = None

    def _make_key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    def _client(self) -> redis.Redis:
        if self.redis is None:
            self.redis = redis.from_url(
                self.redis_url,
                password=self.password,
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True,
                health_check_interval=30
            )
        return self.redis

    async def connect(self) -> None:
        """Connect to Redis and verify the connection"""
        try:
            await self._client().ping()
            self.logger.info("Connected to Redis store")
        except (RedisError, OSError) as e:
            self.logger.error(f"Failed to connect to Redis: {e}")
            raise StoreUnavailableError("connect", cause=e) from e

    async def close(self) -> None:
        if self.redis:
            await self.redis.close()
            self.redis = None
            self.logger.info("Closed Redis connection")

    async def ping(self) -> bool:
        try:
            return bool(await self._client().ping())
        except (RedisError, OSError):
            return False

    async def get(self, key: str) -> Optional[str]:
        try:
            return await self._client().get(self._make_key(key))
        except (RedisError, OSError) as e:
            raise StoreUnavailableError("get", key, e) from e

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        try:
            await self._client().setex(self._make_key(key), ttl_seconds, value)
        except (RedisError, OSError) as e:
            raise StoreUnavailableError("set", key, e) from e

    async def incr(self, key: str, amount: int = 1, expire_at: Optional[datetime] = None) -> int:
        full_key = self._make_key(key)
        try:
            # MULTI/EXEC so the counter never exists without its expiry
            async with self._client().pipeline(transaction=True) as pipe:
                pipe.incrby(full_key, amount)
                if expire_at is not None:
                    pipe.expireat(full_key, expire_at)
                results = await pipe.execute()
            return int(results[0])
        except (RedisError, OSError) as e:
            raise StoreUnavailableError("incr", key, e) from e

    async def get_record(self, key: str) -> Dict[str, str]:
        try:
            return await self._client().hgetall(self._make_key(key)) or {}
        except (RedisError, OSError) as e:
            raise StoreUnavailableError("get_record", key, e) from e

    async def increment_record(
        self,
        key: str,
        field: str,
        amount: int = 1,
        defaults: Optional[Dict[str, str]] = None,
        updates: Optional[Dict[str, str]] = None,
        expire_at: Optional[datetime] = None,
        increments: Optional[Dict[str, Number]] = None,
    ) -> Dict[str, str]:
        full_key = self._make_key(key)
        try:
            async with self._client().pipeline(transaction=True) as pipe:
                for name, value in (defaults or {}).items():
                    pipe.hsetnx(full_key, name, value)
                pipe.hincrby(full_key, field, amount)
                for name, value in (increments or {}).items():
                    if isinstance(value, float):
                        pipe.hincrbyfloat(full_key, name, value)
                    else:
                        pipe.hincrby(full_key, name, value)
                if updates:
                    pipe.hset(full_key, mapping=updates)
                if expire_at is not None:
                    pipe.expireat(full_key, expire_at)
                pipe.hgetall(full_key)
                results = await pipe.execute()
            return results[-1] or {}
        except (RedisError, OSError) as e:
            raise StoreUnavailableError("increment_record", key, e) from e


class InMemoryStore(KeyValueStore):
    """In-process store with the same atomicity and expiry semantics as Redis.

    ``clock`` returns epoch seconds. Setting ``available = False`` makes every
    call raise ``StoreUnavailableError``.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self.clock = clock
        self.available = True
        self._values: Dict[str, Tuple[str, Optional[float]]] = {}
        self._records: Dict[str, Tuple[Dict[str, str], Optional[float]]] = {}
        self._lock = asyncio.Lock()

    def _check(self, operation: str, key: Optional[str] = None) -> None:
        if not self.available:
            raise StoreUnavailableError(operation, key)

    def _alive(self, expires: Optional[float]) -> bool:
        return expires is None or expires > self.clock()

    async def ping(self) -> bool:
        return self.available

    async def get(self, key: str) -> Optional[str]:
        self._check("get", key)
        entry = self._values.get(key)
        if entry is None or not self._alive(entry[1]):
            return None
        return entry[0]

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self._check("set", key)
        async with self._lock:
            self._values[key] = (value, self.clock() + ttl_seconds)

    async def incr(self, key: str, amount: int = 1, expire_at: Optional[datetime] = None) -> int:
        self._check("incr", key)
        async with self._lock:
            entry = self._values.get(key)
            current, expires = (entry if entry and self._alive(entry[1]) else ("0", None))
            # yield while holding the lock so concurrent callers really interleave
            await asyncio.sleep(0)
            new_value = int(current) + amount
            if expire_at is not None:
                expires = expire_at.timestamp()
            self._values[key] = (str(new_value), expires)
            return new_value

    async def get_record(self, key: str) -> Dict[str, str]:
        self._check("get_record", key)
        entry = self._records.get(key)
        if entry is None or not self._alive(entry[1]):
            return {}
        return dict(entry[0])

    async def increment_record(
        self,
        key: str,
        field: str,
        amount: int = 1,
        defaults: Optional[Dict[str, str]] = None,
        updates: Optional[Dict[str, str]] = None,
        expire_at: Optional[datetime] = None,
        increments: Optional[Dict[str, Number]] = None,
    ) -> Dict[str, str]:
        self._check("increment_record", key)
        async with self._lock:
            entry = self._records.get(key)
            record, expires = (entry if entry and self._alive(entry[1]) else ({}, None))
            await asyncio.sleep(0)
            for name, value in (defaults or {}).items():
                record.setdefault(name, value)
            record[field] = str(int(record.get(field, "0")) + amount)
            for name, value in (increments or {}).items():
                if isinstance(value, float):
                    record[name] = repr(float(record.get(name, "0")) + value)
                else:
                    record[name] = str(int(record.get(name, "0")) + value)
            record.update(updates or {})
            if expire_at is not None:
                expires = expire_at.timestamp()
            self._records[key] = (record, expires)
            return dict(record)
