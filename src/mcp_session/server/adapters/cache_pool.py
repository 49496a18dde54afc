import logging
import time
from typing import Any, NamedTuple, Protocol, runtime_checkable

from cachetools import TLRUCache

from mcp_session.server.adapters.base import (
    DEFAULT_MESSAGE_TTL,
    DEFAULT_PREFIX,
    SAMPLING_CAPABILITY_TTL,
    KeyBuilder,
)
from mcp_session.shared.exceptions import AdapterError

logger = logging.getLogger(__name__)


@runtime_checkable
class CachePool(Protocol):
    """A generic key/value cache with per-item expiry."""

    def get(self, key: str) -> Any | None: ...

    def set(self, key: str, value: Any, ttl: int) -> None: ...

    def delete(self, key: str) -> None: ...

    def has(self, key: str) -> bool: ...


class _Entry(NamedTuple):
    value: Any
    ttl: int


def _time_to_use(_key: str, entry: _Entry, now: float) -> float:
    return now + entry.ttl


class TTLCachePool:
    """In-process CachePool built on a cachetools TLRU cache."""

    def __init__(self, maxsize: int = 10_000) -> None:
        self._cache: TLRUCache[str, _Entry] = TLRUCache(maxsize=maxsize, ttu=_time_to_use, timer=time.monotonic)

    def get(self, key: str) -> Any | None:
        entry = self._cache.get(key)
        return entry.value if entry is not None else None

    def set(self, key: str, value: Any, ttl: int) -> None:
        self._cache[key] = _Entry(value, ttl)

    def delete(self, key: str) -> None:
        self._cache.pop(key, None)

    def has(self, key: str) -> bool:
        return key in self._cache


class CachePoolAdapter:
    """SseAdapter implementation storing lists and values in a CachePool.

    Queue operations are a get followed by a set. Nothing awaits between the
    two, so they are atomic inside one event loop, but two processes sharing a
    remote pool can lose writes to the same client. Use the Redis adapter when
    several processes serve one client concurrently.
    """

    def __init__(
        self,
        cache: CachePool,
        prefix: str = DEFAULT_PREFIX,
        ttl: int = DEFAULT_MESSAGE_TTL,
    ) -> None:
        self._cache = cache
        self._keys = KeyBuilder(prefix)
        self._ttl = ttl

    def _fail(self, operation: str, exc: Exception) -> AdapterError:
        logger.error(f"Failed to {operation} in cache: {exc}")
        return AdapterError(f"Failed to {operation} in cache: {exc}")

    def _messages(self, client_id: str) -> list[str]:
        return list(self._cache.get(self._keys.queue(client_id)) or [])

    async def push_message(self, client_id: str, message: str) -> None:
        try:
            messages = self._messages(client_id)
            messages.append(message)
            self._cache.set(self._keys.queue(client_id), messages, self._ttl)
        except Exception as e:
            raise self._fail("add message to queue", e) from e

    async def remove_all_messages(self, client_id: str) -> None:
        try:
            self._cache.delete(self._keys.queue(client_id))
        except Exception as e:
            raise self._fail("remove messages from queue", e) from e

    async def receive_messages(self, client_id: str) -> list[str]:
        try:
            messages = self._messages(client_id)
            self._cache.delete(self._keys.queue(client_id))
        except Exception as e:
            raise self._fail("receive messages from queue", e) from e
        return messages

    async def pop_message(self, client_id: str) -> str | None:
        try:
            messages = self._messages(client_id)
            if not messages:
                return None
            message = messages.pop(0)
            self._cache.set(self._keys.queue(client_id), messages, self._ttl)
        except Exception as e:
            raise self._fail("pop message from queue", e) from e
        return message

    async def has_messages(self, client_id: str) -> bool:
        return await self.get_message_count(client_id) > 0

    async def get_message_count(self, client_id: str) -> int:
        try:
            return len(self._messages(client_id))
        except Exception as e:
            logger.error(f"Failed to get message count from cache: {e}")
            return 0

    async def store_last_pong_response_timestamp(self, client_id: str, timestamp: int | None = None) -> None:
        value = timestamp if timestamp is not None else int(time.time())
        try:
            self._cache.set(self._keys.last_pong(client_id), value, self._ttl)
        except Exception as e:
            raise self._fail("store last pong timestamp", e) from e

    async def get_last_pong_response_timestamp(self, client_id: str) -> int | None:
        try:
            return self._cache.get(self._keys.last_pong(client_id))
        except Exception as e:
            logger.error(f"Failed to get last pong timestamp from cache: {e}")
            return None

    async def store_sampling_capability(self, client_id: str, has_sampling_capability: bool) -> None:
        try:
            self._cache.set(self._keys.sampling(client_id), has_sampling_capability, SAMPLING_CAPABILITY_TTL)
        except Exception as e:
            raise self._fail("store sampling capability", e) from e

    async def has_sampling_capability(self, client_id: str) -> bool:
        try:
            return bool(self._cache.get(self._keys.sampling(client_id)))
        except Exception as e:
            logger.error(f"Failed to check sampling capability in cache: {e}")
            return False

    async def store_pending_response(self, message_id: str, data: dict[str, Any]) -> None:
        try:
            self._cache.set(self._keys.pending_response(message_id), dict(data), self._ttl)
        except Exception as e:
            raise self._fail("store pending response", e) from e

    async def get_pending_response(self, message_id: str) -> dict[str, Any] | None:
        try:
            data = self._cache.get(self._keys.pending_response(message_id))
        except Exception as e:
            raise self._fail("get pending response", e) from e
        return dict(data) if data is not None else None

    async def remove_pending_response(self, message_id: str) -> None:
        try:
            self._cache.delete(self._keys.pending_response(message_id))
        except Exception as e:
            raise self._fail("remove pending response", e) from e

    async def has_pending_response(self, message_id: str) -> bool:
        try:
            return self._cache.has(self._keys.pending_response(message_id))
        except Exception as e:
            logger.error(f"Failed to check pending response in cache: {e}")
            return False

    async def cleanup_old_pending_responses(self, max_age: int) -> int:
        # The pool expires pending responses after the message TTL.
        return 0

    async def close(self) -> None:
        pass
