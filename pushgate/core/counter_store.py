"""Atomic hash-of-counters store backing metrics and the response cache.

The store is optional infrastructure. Backends raise
``CounterStoreUnavailable`` for connection or server faults; consumers
catch it and degrade to no-ops so update decisions are never affected.

Backends:
- ``InMemoryCounterStore``: thread-safe, process-local.
- ``RedisCounterStore``: Redis hashes; batches run as MULTI/EXEC pipelines.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from typing import TYPE_CHECKING, Protocol, runtime_checkable

import redis

if TYPE_CHECKING:
    from pushgate.config import Settings

# (hash key, field, delta)
Increment = tuple[str, str, int]


class CounterStoreUnavailable(RuntimeError):
    """The counter store could not be reached or rejected the command."""


@runtime_checkable
class CounterStore(Protocol):
    def increment_batch(self, increments: Sequence[Increment]) -> None: ...

    def get_all(self, key: str) -> dict[str, str]: ...

    def get_field(self, key: str, field: str) -> str | None: ...

    def set_field(
        self, key: str, field: str, value: str, *, expire_new_seconds: int | None = None
    ) -> None: ...

    def delete_field(self, key: str, field: str) -> None: ...

    def delete(self, *keys: str) -> None: ...

    def close(self) -> None: ...


class InMemoryCounterStore:
    """Process-local store with the same semantics as the Redis backend.

    All operations take a single lock, so a batch is atomic relative to
    every other operation.
    """

    def __init__(self) -> None:
        self._hashes: dict[str, dict[str, str]] = {}
        self._expires_at: dict[str, float] = {}
        self._lock = threading.Lock()

    def _live(self, key: str) -> dict[str, str] | None:
        deadline = self._expires_at.get(key)
        if deadline is not None and time.monotonic() >= deadline:
            self._hashes.pop(key, None)
            self._expires_at.pop(key, None)
        return self._hashes.get(key)

    def increment_batch(self, increments: Sequence[Increment]) -> None:
        with self._lock:
            for key, field, delta in increments:
                fields = self._live(key)
                if fields is None:
                    fields = self._hashes[key] = {}
                fields[field] = str(int(fields.get(field, "0")) + delta)

    def get_all(self, key: str) -> dict[str, str]:
        with self._lock:
            return dict(self._live(key) or {})

    def get_field(self, key: str, field: str) -> str | None:
        with self._lock:
            return (self._live(key) or {}).get(field)

    def set_field(
        self, key: str, field: str, value: str, *, expire_new_seconds: int | None = None
    ) -> None:
        with self._lock:
            fields = self._live(key)
            if fields is None:
                fields = self._hashes[key] = {}
                if expire_new_seconds is not None:
                    self._expires_at[key] = time.monotonic() + expire_new_seconds
            fields[field] = value

    def delete_field(self, key: str, field: str) -> None:
        with self._lock:
            fields = self._live(key)
            if fields is not None:
                fields.pop(field, None)
                if not fields:
                    del self._hashes[key]
                    self._expires_at.pop(key, None)

    def delete(self, *keys: str) -> None:
        with self._lock:
            for key in keys:
                self._hashes.pop(key, None)
                self._expires_at.pop(key, None)

    def close(self) -> None:
        pass


class RedisCounterStore:
    """Redis-backed store.

    Parameters
    ----------
    client:
        A ``redis.Redis`` created with ``decode_responses=True``.
    """

    def __init__(self, client: redis.Redis) -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> RedisCounterStore:
        return cls(redis.Redis.from_url(url, encoding="utf-8", decode_responses=True))

    @contextmanager
    def _guard(self) -> Iterator[None]:
        try:
            yield
        except redis.RedisError as exc:
            raise CounterStoreUnavailable(str(exc)) from exc

    def increment_batch(self, increments: Sequence[Increment]) -> None:
        with self._guard():
            pipe = self._client.pipeline(transaction=True)
            for key, field, delta in increments:
                pipe.hincrby(key, field, delta)
            pipe.execute()

    def get_all(self, key: str) -> dict[str, str]:
        with self._guard():
            return dict(self._client.hgetall(key) or {})

    def get_field(self, key: str, field: str) -> str | None:
        with self._guard():
            return self._client.hget(key, field)

    def set_field(
        self, key: str, field: str, value: str, *, expire_new_seconds: int | None = None
    ) -> None:
        with self._guard():
            is_new = not self._client.exists(key)
            pipe = self._client.pipeline(transaction=True)
            pipe.hset(key, field, value)
            if is_new and expire_new_seconds is not None:
                pipe.expire(key, expire_new_seconds)
            pipe.execute()

    def delete_field(self, key: str, field: str) -> None:
        with self._guard():
            self._client.hdel(key, field)

    def delete(self, *keys: str) -> None:
        if not keys:
            return
        with self._guard():
            self._client.delete(*keys)

    def close(self) -> None:
        self._client.close()


def create_counter_store(settings: Settings) -> CounterStore | None:
    """Redis store when ``redis_url`` is configured, otherwise None."""
    if not settings.counters_enabled:
        return None
    return RedisCounterStore.from_url(settings.redis_url)
