import json
import logging
import time
from typing import Any

import redis.asyncio as redis
from redis.exceptions import RedisError

from mcp_session.server.adapters.base import (
    DEFAULT_MESSAGE_TTL,
    DEFAULT_PREFIX,
    SAMPLING_CAPABILITY_TTL,
    KeyBuilder,
)
from mcp_session.shared.exceptions import AdapterError

logger = logging.getLogger(__name__)


class RedisAdapter:
    """Redis implementation of the SseAdapter interface.

    Client queues are Redis lists, everything else is a string key. Every key
    carries an expiry so abandoned sessions disappear on their own. Single
    commands are atomic in Redis; draining a queue runs LRANGE and DEL inside
    one MULTI transaction so two processes never receive the same message.
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        prefix: str = DEFAULT_PREFIX,
        ttl: int = DEFAULT_MESSAGE_TTL,
        client: "redis.Redis | None" = None,
    ) -> None:
        """Initialize the Redis adapter.

        Args:
            redis_url: Redis connection string
            prefix: Key prefix to avoid collisions with other applications
            ttl: Expiry in seconds of queues, pong timestamps and pending responses
            client: An already configured client; it must decode responses
        """
        self._redis = client if client is not None else redis.from_url(redis_url, decode_responses=True)  # type: ignore
        self._keys = KeyBuilder(prefix)
        self._ttl = ttl or DEFAULT_MESSAGE_TTL
        logger.debug(f"Redis adapter initialized: {redis_url}")

    def _fail(self, operation: str, exc: Exception) -> AdapterError:
        logger.error(f"Failed to {operation} in Redis: {exc}")
        return AdapterError(f"Failed to {operation} in Redis: {exc}")

    async def push_message(self, client_id: str, message: str) -> None:
        key = self._keys.queue(client_id)
        try:
            async with self._redis.pipeline(transaction=True) as pipe:  # type: ignore[attr-defined]
                pipe.rpush(key, message)
                pipe.expire(key, self._ttl)
                await pipe.execute()
        except RedisError as e:
            raise self._fail("add message to queue", e) from e

    async def remove_all_messages(self, client_id: str) -> None:
        try:
            await self._redis.delete(self._keys.queue(client_id))
        except RedisError as e:
            raise self._fail("remove messages from queue", e) from e

    async def receive_messages(self, client_id: str) -> list[str]:
        key = self._keys.queue(client_id)
        try:
            async with self._redis.pipeline(transaction=True) as pipe:  # type: ignore[attr-defined]
                pipe.lrange(key, 0, -1)
                pipe.delete(key)
                messages, _ = await pipe.execute()
        except RedisError as e:
            raise self._fail("receive messages from queue", e) from e
        return list(messages or [])

    async def pop_message(self, client_id: str) -> str | None:
        try:
            return await self._redis.lpop(self._keys.queue(client_id))  # type: ignore[misc]
        except RedisError as e:
            raise self._fail("pop message from queue", e) from e

    async def has_messages(self, client_id: str) -> bool:
        return await self.get_message_count(client_id) > 0

    async def get_message_count(self, client_id: str) -> int:
        try:
            return int(await self._redis.llen(self._keys.queue(client_id)))  # type: ignore[misc]
        except RedisError as e:
            logger.error(f"Failed to get message count from Redis queue: {e}")
            return 0

    async def store_last_pong_response_timestamp(self, client_id: str, timestamp: int | None = None) -> None:
        value = timestamp if timestamp is not None else int(time.time())
        try:
            await self._redis.set(self._keys.last_pong(client_id), value, ex=self._ttl)
        except RedisError as e:
            raise self._fail("store last pong timestamp", e) from e

    async def get_last_pong_response_timestamp(self, client_id: str) -> int | None:
        try:
            value = await self._redis.get(self._keys.last_pong(client_id))
        except RedisError as e:
            logger.error(f"Failed to get last pong timestamp from Redis: {e}")
            return None
        return int(value) if value is not None else None

    async def store_sampling_capability(self, client_id: str, has_sampling_capability: bool) -> None:
        try:
            await self._redis.set(
                self._keys.sampling(client_id),
                "1" if has_sampling_capability else "0",
                ex=SAMPLING_CAPABILITY_TTL,
            )
        except RedisError as e:
            raise self._fail("store sampling capability", e) from e

    async def has_sampling_capability(self, client_id: str) -> bool:
        try:
            return await self._redis.get(self._keys.sampling(client_id)) == "1"
        except RedisError as e:
            logger.error(f"Failed to check sampling capability in Redis: {e}")
            return False

    async def store_pending_response(self, message_id: str, data: dict[str, Any]) -> None:
        try:
            await self._redis.set(self._keys.pending_response(message_id), json.dumps(data), ex=self._ttl)
        except (RedisError, TypeError, ValueError) as e:
            raise self._fail("store pending response", e) from e

    async def get_pending_response(self, message_id: str) -> dict[str, Any] | None:
        try:
            value = await self._redis.get(self._keys.pending_response(message_id))
            return json.loads(value) if value is not None else None
        except (RedisError, ValueError) as e:
            raise self._fail("get pending response", e) from e

    async def remove_pending_response(self, message_id: str) -> None:
        try:
            await self._redis.delete(self._keys.pending_response(message_id))
        except RedisError as e:
            raise self._fail("remove pending response", e) from e

    async def has_pending_response(self, message_id: str) -> bool:
        try:
            return bool(await self._redis.exists(self._keys.pending_response(message_id)))
        except RedisError as e:
            logger.error(f"Failed to check pending response in Redis: {e}")
            return False

    async def cleanup_old_pending_responses(self, max_age: int) -> int:
        # Pending responses carry an EXPIRE; Redis removes them by itself.
        return 0

    async def close(self) -> None:
        await self._redis.aclose()  # type: ignore[attr-defined]
