"""
Key-value session storage with expiry.

Sessions are stored as JSON-compatible dicts. Three adapters share one
interface:

- InMemorySessionStore: process-local, TTL checked on read.
- RedisSessionStore: redis.asyncio with SETEX.
- WriteBehindSessionStore: wraps another store, coalesces writes per key and
  flushes them in batches after a short delay, retrying failures in the
  background so a computed reply is never held back by the store.
"""

import asyncio
import json
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

import redis.asyncio as redis

from concierge.config import AppConfig

logger = logging.getLogger(__name__)

SESSION_KEY_PREFIX = "concierge:session:"


class SessionStoreError(Exception):
    """Raised when the backing store cannot complete an operation."""


class SessionStore(ABC):
    """get/set/delete by key with a TTL, plus an explicit lifecycle."""

    async def open(self) -> None:
        """Acquire connections. Default is a no-op."""

    async def close(self) -> None:
        """Release connections. Default is a no-op."""

    @abstractmethod
    async def get(self, key: str) -> Optional[dict[str, Any]]:
        ...

    @abstractmethod
    async def set(self, key: str, value: dict[str, Any], ttl: int) -> None:
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        ...


class InMemorySessionStore(SessionStore):
    """Dict-backed store. The clock is injectable so expiry can be tested."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._data: dict[str, tuple[float, str]] = {}

    async def get(self, key: str) -> Optional[dict[str, Any]]:
        entry = self._data.get(key)
        if entry is None:
            return None
        expires_at, payload = entry
        if self._clock() >= expires_at:
            del self._data[key]
            return None
        return json.loads(payload)

    async def set(self, key: str, value: dict[str, Any], ttl: int) -> None:
        self._data[key] = (self._clock() + ttl, json.dumps(value))

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def __len__(self) -> int:
        return len(self._data)


class RedisSessionStore(SessionStore):
    """Redis-backed store using SETEX and JSON payloads."""

    def __init__(self, url: str, prefix: str = SESSION_KEY_PREFIX) -> None:
        self.url = url
        self.prefix = prefix
        self._client: Optional[redis.Redis] = None

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            raise SessionStoreError("RedisSessionStore used before open()")
        return self._client

    async def open(self) -> None:
        self._client = redis.from_url(self.url, decode_responses=True)
        try:
            await self._client.ping()
        except redis.RedisError as exc:
            raise SessionStoreError(f"Redis unavailable at {self.url}: {exc}") from exc
        logger.info("Connected to Redis session store")

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def get(self, key: str) -> Optional[dict[str, Any]]:
        try:
            payload = await self.client.get(self._key(key))
        except redis.RedisError as exc:
            raise SessionStoreError(f"get {key} failed: {exc}") from exc
        return json.loads(payload) if payload else None

    async def set(self, key: str, value: dict[str, Any], ttl: int) -> None:
        try:
            await self.client.setex(self._key(key), ttl, json.dumps(value))
        except redis.RedisError as exc:
            raise SessionStoreError(f"set {key} failed: {exc}") from exc

    async def delete(self, key: str) -> None:
        try:
            await self.client.delete(self._key(key))
        except redis.RedisError as exc:
            raise SessionStoreError(f"delete {key} failed: {exc}") from exc


class WriteBehindSessionStore(SessionStore):
    """Coalescing, batching wrapper around another store.

    Reads see pending writes, so a session written at the end of one turn is
    visible to the next turn even before it reaches the inner store. An entry
    stays readable from here until the inner write for it has completed.
    """

    def __init__(
        self,
        inner: SessionStore,
        delay: float = 0.25,
        batch_size: int = 20,
        max_retries: int = 3,
        retry_backoff: float = 0.5,
    ) -> None:
        self.inner = inner
        self.delay = delay
        self.batch_size = batch_size
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff
        self._pending: dict[str, tuple[dict[str, Any], int]] = {}
        self._inflight: dict[str, tuple[dict[str, Any], int]] = {}
        self._deleted: set[str] = set()
        self._attempts: dict[str, int] = {}
        self._flush_lock = asyncio.Lock()
        self._flush_task: Optional[asyncio.Task] = None
        self._retry_tasks: set[asyncio.Task] = set()
        self._closing = False
        self.flush_count = 0
        self.failed_writes = 0

    async def open(self) -> None:
        self._closing = False
        await self.inner.open()

    async def close(self) -> None:
        self._closing = True
        tasks = [
            task for task in (self._flush_task, *self._retry_tasks)
            if task is not None and not task.done()
        ]
        for task in tasks:
            task.cancel()
        # A cancelled flush puts its unwritten entries back on the queue.
        await asyncio.gather(*tasks, return_exceptions=True)
        for _ in range(self.max_retries + 1):
            await self.flush()
            if not self._pending:
                break
        if self._pending:
            logger.error("Dropping %d unflushed session writes on close", len(self._pending))
        await self.inner.close()

    async def get(self, key: str) -> Optional[dict[str, Any]]:
        entry = self._pending.get(key) or self._inflight.get(key)
        if entry is not None:
            return entry[0]
        return await self.inner.get(key)

    async def set(self, key: str, value: dict[str, Any], ttl: int) -> None:
        self._pending[key] = (value, ttl)
        if len(self._pending) >= self.batch_size:
            self._schedule_flush(0.0)
        else:
            self._schedule_flush(self.delay)

    async def delete(self, key: str) -> None:
        self._pending.pop(key, None)
        self._attempts.pop(key, None)
        if self._inflight.pop(key, None) is not None:
            # The write already started; undo it once it lands.
            self._deleted.add(key)
        await self.inner.delete(key)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def _schedule_flush(self, delay: float) -> None:
        if self._flush_task is not None and not self._flush_task.done():
            if delay > 0:
                return
            self._flush_task.cancel()
        self._flush_task = asyncio.get_running_loop().create_task(self._flush_after(delay))

    async def _flush_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        await self.flush()

    async def flush(self) -> int:
        """Write every pending entry once. Returns the number written."""
        async with self._flush_lock:
            if not self._pending:
                return 0
            batch, self._pending = self._pending, {}
            self._inflight.update(batch)
            written = 0
            try:
                for key, (value, ttl) in batch.items():
                    if key not in self._inflight:
                        self._deleted.discard(key)
                        continue
                    try:
                        await self.inner.set(key, value, ttl)
                    except Exception as exc:
                        self._inflight.pop(key, None)
                        if key in self._deleted:
                            self._deleted.discard(key)
                            continue
                        self._requeue(key, value, ttl, exc)
                        continue
                    self._inflight.pop(key, None)
                    self._attempts.pop(key, None)
                    if key in self._deleted:
                        self._deleted.discard(key)
                        await self.inner.delete(key)
                        continue
                    written += 1
            finally:
                for key in batch:
                    entry = self._inflight.pop(key, None)
                    if entry is not None:
                        self._pending.setdefault(key, entry)
            self.flush_count += 1
            logger.debug("Flushed %d/%d session writes", written, len(batch))
            return written

    def _requeue(self, key: str, value: dict[str, Any], ttl: int, exc: Exception) -> None:
        attempts = self._attempts.get(key, 0) + 1
        if attempts > self.max_retries:
            self._attempts.pop(key, None)
            self.failed_writes += 1
            logger.error("Giving up on session write %s after %d attempts: %s", key, attempts, exc)
            return
        self._attempts[key] = attempts
        # A newer write for the same key supersedes the failed one.
        self._pending.setdefault(key, (value, ttl))
        logger.warning("Session write %s failed (attempt %d): %s", key, attempts, exc)
        if self._closing:
            return
        task = asyncio.get_running_loop().create_task(
            self._flush_after(self.retry_backoff * attempts)
        )
        self._retry_tasks.add(task)
        task.add_done_callback(self._retry_tasks.discard)


def build_session_store(config: AppConfig) -> SessionStore:
    """Redis when REDIS_URL is set, otherwise in-process; always write-behind."""
    if config.session.redis_url:
        inner: SessionStore = RedisSessionStore(config.session.redis_url)
    else:
        logger.info("REDIS_URL not set; sessions are kept in memory")
        inner = InMemorySessionStore()
    return WriteBehindSessionStore(
        inner,
        delay=config.session.write_delay_sec,
        batch_size=config.session.write_batch_size,
        max_retries=config.session.max_write_retries,
    )
