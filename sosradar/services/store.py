"""Namespaced record store with a Redis backend and an in-process backend.

Signals, incidents and reporter profiles are all kept as JSON documents
under prefixed keys (``signal:``, ``incident:``, ``profile:``).  When a
Redis URL is configured and reachable the records live in Redis;
otherwise they live in process memory.  The choice is made once, at
startup, by :func:`open_backend`.

Besides documents, a backend keeps two auxiliary structures:

* **score indexes** (sorted sets, ``index:`` keys) so time-window and
  active-set reads touch only the matching records, and
* **named locks** (``lock:`` keys) shared by every process using the
  backend.  On Redis these are ``SET NX PX`` locks with an expiry; in
  memory they are :class:`asyncio.Lock` objects dropped once unused.

Unlike a cache, a record store never silently drops data: backend
failures surface as :class:`~sosradar.services.errors.StoreError` so the
layer above can decide whether the failure is fatal (signal
persistence) or degradable (incident aggregation).
"""

from __future__ import annotations

import asyncio
import bisect
import contextlib
import math
from collections import OrderedDict
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

import orjson
import structlog
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import LockError
from redis.exceptions import TimeoutError as RedisTimeoutError
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from sosradar.services.errors import StoreError

logger = structlog.get_logger(__name__)

_TRANSIENT_REDIS_ERRORS = (RedisConnectionError, RedisTimeoutError)

_redis_retry = retry(
    retry=retry_if_exception_type(_TRANSIENT_REDIS_ERRORS),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.05, min=0.05, max=0.5),
    reraise=True,
)


# ---------------------------------------------------------------------------
# Store backend protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class StoreBackend(Protocol):
    """Async key-value backend interface."""

    async def get(self, key: str) -> bytes | None: ...

    async def get_many(self, keys: list[str]) -> list[bytes | None]: ...

    async def set(self, key: str, value: bytes) -> None: ...

    async def delete(self, key: str) -> bool: ...

    async def keys(self, prefix: str) -> list[str]: ...

    async def zadd(self, key: str, member: str, score: float) -> None: ...

    async def zrem(self, key: str, member: str) -> None: ...

    async def zrangebyscore(self, key: str, low: float, high: float) -> list[str]: ...

    async def acquire_lock(self, name: str) -> Any: ...

    async def release_lock(self, name: str, token: Any) -> None: ...


# ---------------------------------------------------------------------------
# Redis backend
# ---------------------------------------------------------------------------


class RedisStoreBackend:
    """Redis-backed store using ``redis.asyncio`` with connection pooling.

    Parameters
    ----------
    url:
        Redis connection URL.
    max_connections:
        Pool size.
    lock_timeout:
        Seconds a named lock is held at most (it expires afterwards, so a
        crashed worker cannot block the others) and also how long
        :meth:`acquire_lock` waits before giving up.
    """

    __slots__ = ("_lock_timeout", "_pool", "_redis")

    def __init__(
        self,
        url: str = "redis://localhost:6379/0",
        *,
        max_connections: int = 20,
        lock_timeout: float = 10.0,
    ) -> None:
        import redis.asyncio as aioredis

        self._pool = aioredis.ConnectionPool.from_url(
            url,
            max_connections=max_connections,
            decode_responses=False,
        )
        self._redis = aioredis.Redis(connection_pool=self._pool)
        self._lock_timeout = lock_timeout

    # -- StoreBackend interface ------------------------------------------------

    @_redis_retry
    async def get(self, key: str) -> bytes | None:
        return await self._redis.get(key)

    @_redis_retry
    async def get_many(self, keys: list[str]) -> list[bytes | None]:
        if not keys:
            return []
        return list(await self._redis.mget(keys))

    @_redis_retry
    async def set(self, key: str, value: bytes) -> None:
        await self._redis.set(key, value)

    @_redis_retry
    async def delete(self, key: str) -> bool:
        return bool(await self._redis.delete(key))

    @_redis_retry
    async def keys(self, prefix: str) -> list[str]:
        found: list[str] = []
        async for raw in self._redis.scan_iter(match=f"{prefix}*", count=500):
            found.append(raw.decode() if isinstance(raw, bytes) else raw)
        return found

    @_redis_retry
    async def zadd(self, key: str, member: str, score: float) -> None:
        await self._redis.zadd(key, {member: score})

    @_redis_retry
    async def zrem(self, key: str, member: str) -> None:
        await self._redis.zrem(key, member)

    @_redis_retry
    async def zrangebyscore(self, key: str, low: float, high: float) -> list[str]:
        members = await self._redis.zrangebyscore(key, low, high)
        return [m.decode() if isinstance(m, bytes) else m for m in members]

    # No retry: each attempt carries a fresh token.
    async def acquire_lock(self, name: str) -> Any:
        lock = self._redis.lock(name, timeout=self._lock_timeout, blocking_timeout=self._lock_timeout)
        if not await lock.acquire():
            raise LockError(f"timed out waiting for lock {name!r}")
        return lock

    async def release_lock(self, name: str, token: Any) -> None:
        try:
            await token.release()
        except LockError:
            # Expired while held; another worker may already own it.
            logger.warning("store.lock_expired", name=name, lock_timeout=self._lock_timeout)

    # -- Lifecycle -------------------------------------------------------------

    async def close(self) -> None:
        await self._redis.aclose()
        await self._pool.aclose()

    async def ping(self) -> bool:
        """Return *True* if the Redis server is reachable."""
        try:
            return bool(await self._redis.ping())
        except Exception:
            return False


# ---------------------------------------------------------------------------
# In-memory backend
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class _NamedLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class InMemoryStoreBackend:
    """OrderedDict-based store preserving insertion order.

    Guarded by an :class:`asyncio.Lock` (sufficient for single-process
    async workloads).  Nothing is ever evicted.  Score indexes are kept
    as sorted ``(score, member)`` lists; named locks exist only while
    someone holds or waits for them.
    """

    __slots__ = ("_data", "_indexes", "_lock", "_named_locks", "_scores")

    def __init__(self) -> None:
        self._data: OrderedDict[str, bytes] = OrderedDict()
        self._lock = asyncio.Lock()
        self._indexes: dict[str, list[tuple[float, str]]] = {}
        self._scores: dict[str, dict[str, float]] = {}
        self._named_locks: dict[str, _NamedLock] = {}

    async def get(self, key: str) -> bytes | None:
        async with self._lock:
            return self._data.get(key)

    async def get_many(self, keys: list[str]) -> list[bytes | None]:
        async with self._lock:
            return [self._data.get(key) for key in keys]

    async def set(self, key: str, value: bytes) -> None:
        async with self._lock:
            self._data[key] = value

    async def delete(self, key: str) -> bool:
        async with self._lock:
            return self._data.pop(key, None) is not None

    async def keys(self, prefix: str) -> list[str]:
        async with self._lock:
            return [key for key in self._data if key.startswith(prefix)]

    def _unindex(self, key: str, member: str) -> None:
        score = self._scores.get(key, {}).pop(member, None)
        if score is None:
            return
        entries = self._indexes[key]
        del entries[bisect.bisect_left(entries, (score, member))]

    async def zadd(self, key: str, member: str, score: float) -> None:
        async with self._lock:
            self._unindex(key, member)
            self._scores.setdefault(key, {})[member] = score
            bisect.insort(self._indexes.setdefault(key, []), (score, member))

    async def zrem(self, key: str, member: str) -> None:
        async with self._lock:
            self._unindex(key, member)

    async def zrangebyscore(self, key: str, low: float, high: float) -> list[str]:
        async with self._lock:
            entries = self._indexes.get(key, [])
            start = bisect.bisect_left(entries, low, key=lambda e: e[0])
            stop = bisect.bisect_right(entries, high, key=lambda e: e[0])
            return [member for _, member in entries[start:stop]]

    async def acquire_lock(self, name: str) -> None:
        named = self._named_locks.setdefault(name, _NamedLock())
        named.users += 1
        try:
            await named.lock.acquire()
        except BaseException:
            self._forget_lock(name, named)
            raise

    async def release_lock(self, name: str, token: Any) -> None:
        named = self._named_locks[name]
        named.lock.release()
        self._forget_lock(name, named)

    def _forget_lock(self, name: str, named: _NamedLock) -> None:
        named.users -= 1
        if named.users == 0:
            del self._named_locks[name]

    @property
    def size(self) -> int:
        return len(self._data)

    @property
    def lock_count(self) -> int:
        """Named locks currently held or awaited."""
        return len(self._named_locks)


# ---------------------------------------------------------------------------
# Backend selection
# ---------------------------------------------------------------------------


async def open_backend(redis_url: str | None, *, lock_timeout: float = 10.0) -> StoreBackend:
    """Return a Redis backend if *redis_url* is set and reachable, else in-memory."""
    if not redis_url:
        logger.info("store.inmemory_selected")
        return InMemoryStoreBackend()

    try:
        redis_backend = RedisStoreBackend(url=redis_url, lock_timeout=lock_timeout)
    except Exception:
        logger.warning("store.redis_init_failed", redis_url=redis_url, exc_info=True)
        return InMemoryStoreBackend()

    if await redis_backend.ping():
        logger.info("store.redis_connected")
        return redis_backend

    logger.warning("store.redis_unavailable_using_inmemory", redis_url=redis_url)
    await redis_backend.close()
    return InMemoryStoreBackend()


async def close_backend(backend: StoreBackend) -> None:
    """Release connection pools held by *backend* (no-op for in-memory)."""
    if isinstance(backend, RedisStoreBackend):
        with contextlib.suppress(Exception):
            await backend.close()


# ---------------------------------------------------------------------------
# RecordStore  --  public API
# ---------------------------------------------------------------------------


class RecordStore:
    """JSON document store scoped to one key namespace.

    Parameters
    ----------
    backend:
        The key-value backend; several namespaces may share one.
    namespace:
        Prefix prepended to every key (e.g. ``"signal:"``).
    """

    __slots__ = ("_backend", "_namespace")

    def __init__(self, backend: StoreBackend | None = None, *, namespace: str = "") -> None:
        self._backend: StoreBackend = backend if backend is not None else InMemoryStoreBackend()
        self._namespace = namespace

    # -- Internal helpers ------------------------------------------------------

    def _make_key(self, key: str) -> str:
        return f"{self._namespace}{key}"

    def _strip_key(self, full_key: str) -> str:
        return full_key[len(self._namespace):]

    def _index_key(self, index: str) -> str:
        return f"index:{self._namespace}{index}"

    async def _call(self, method: str, *args: Any) -> Any:
        try:
            return await getattr(self._backend, method)(*args)
        except Exception as exc:
            logger.warning("store.op_failed", method=method, namespace=self._namespace, exc_info=True)
            raise StoreError(f"{method} failed in namespace {self._namespace!r}") from exc

    # -- Public API ------------------------------------------------------------

    @property
    def namespace(self) -> str:
        return self._namespace

    @property
    def backend(self) -> StoreBackend:
        return self._backend

    async def get(self, key: str) -> Any:
        """Return the stored document for *key*, or *None*."""
        raw: bytes | None = await self._call("get", self._make_key(key))
        if raw is None:
            return None
        return orjson.loads(raw)

    async def get_many(self, keys: list[str]) -> list[Any]:
        """Return documents for *keys*, skipping keys that vanished meanwhile."""
        raws: list[bytes | None] = await self._call("get_many", [self._make_key(k) for k in keys])
        return [orjson.loads(raw) for raw in raws if raw is not None]

    async def put(self, key: str, document: Any) -> None:
        """Serialise *document* via *orjson* and store it under *key*."""
        await self._call("set", self._make_key(key), orjson.dumps(document))

    async def delete(self, key: str) -> bool:
        """Delete *key*; return *True* if it existed."""
        return bool(await self._call("delete", self._make_key(key)))

    async def keys(self) -> list[str]:
        """Return all keys in this namespace (without the prefix)."""
        full_keys: list[str] = await self._call("keys", self._namespace)
        return [self._strip_key(k) for k in full_keys]

    async def all(self) -> list[Any]:
        """Return every document in this namespace."""
        return await self.get_many(await self.keys())

    # -- Score indexes ---------------------------------------------------------

    async def index_add(self, index: str, key: str, score: float) -> None:
        """Record *key* under *score* in the named index (re-adding moves it)."""
        await self._call("zadd", self._index_key(index), key, score)

    async def index_remove(self, index: str, key: str) -> None:
        await self._call("zrem", self._index_key(index), key)

    async def index_range(self, index: str, low: float = -math.inf, high: float = math.inf) -> list[str]:
        """Return keys scored within ``[low, high]``, lowest score first."""
        return await self._call("zrangebyscore", self._index_key(index), low, high)

    # -- Locks -----------------------------------------------------------------

    @contextlib.asynccontextmanager
    async def lock(self, name: str) -> AsyncIterator[None]:
        """Hold the named lock, shared by every user of the backend.

        Raises
        ------
        StoreError
            If the lock cannot be acquired (backend down or wait timed out).
        """
        full_name = f"lock:{self._namespace}{name}"
        token = await self._call("acquire_lock", full_name)
        try:
            yield
        finally:
            await self._call("release_lock", full_name, token)

    async def ping(self) -> bool:
        """Round-trip a probe value through the backend, outside the namespace."""
        probe_key = f"health-check:{self._namespace}"
        try:
            await self._call("set", probe_key, b'"ok"')
            ok = await self._call("get", probe_key) == b'"ok"'
            await self._call("delete", probe_key)
        except StoreError:
            return False
        return ok

    def for_namespace(self, namespace: str) -> RecordStore:
        """Create a sibling store sharing this store's backend.

        Example::

            root = RecordStore(await open_backend(settings.redis_url))
            signals = root.for_namespace("signal:")
            incidents = root.for_namespace("incident:")
        """
        return RecordStore(self._backend, namespace=namespace)
