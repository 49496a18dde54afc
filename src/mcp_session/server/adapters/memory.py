import logging
import time
from collections import deque
from typing import Any

from mcp_session.server.adapters.base import DEFAULT_MESSAGE_TTL, SAMPLING_CAPABILITY_TTL

logger = logging.getLogger(__name__)


class InMemoryAdapter:
    """Default in-memory implementation of the SseAdapter interface.

    State lives in this process only. Use it for tests or a single-process
    server; a deployment with several workers needs the Redis adapter, since a
    client's reply may reach a different worker than the one waiting for it.
    """

    def __init__(self, ttl: int = DEFAULT_MESSAGE_TTL) -> None:
        self._ttl = ttl
        self._queues: dict[str, deque[str]] = {}
        self._queue_expiry: dict[str, float] = {}
        self._last_pong: dict[str, tuple[int, float]] = {}
        self._sampling: dict[str, tuple[bool, float]] = {}
        self._pending_responses: dict[str, tuple[dict[str, Any], float]] = {}

    def _expires_at(self, ttl: int | None = None) -> float:
        return time.monotonic() + (ttl if ttl is not None else self._ttl)

    def _queue(self, client_id: str) -> deque[str] | None:
        if self._queue_expiry.get(client_id, 0) <= time.monotonic():
            self._queues.pop(client_id, None)
            self._queue_expiry.pop(client_id, None)
            return None
        return self._queues.get(client_id)

    @staticmethod
    def _live(store: dict[str, tuple[Any, float]], key: str) -> Any | None:
        entry = store.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at <= time.monotonic():
            del store[key]
            return None
        return value

    async def push_message(self, client_id: str, message: str) -> None:
        queue = self._queue(client_id)
        if queue is None:
            queue = self._queues[client_id] = deque()
        queue.append(message)
        self._queue_expiry[client_id] = self._expires_at()

    async def remove_all_messages(self, client_id: str) -> None:
        self._queues.pop(client_id, None)
        self._queue_expiry.pop(client_id, None)

    async def receive_messages(self, client_id: str) -> list[str]:
        queue = self._queue(client_id)
        await self.remove_all_messages(client_id)
        return list(queue) if queue else []

    async def pop_message(self, client_id: str) -> str | None:
        queue = self._queue(client_id)
        if not queue:
            return None
        return queue.popleft()

    async def has_messages(self, client_id: str) -> bool:
        return bool(self._queue(client_id))

    async def get_message_count(self, client_id: str) -> int:
        queue = self._queue(client_id)
        return len(queue) if queue else 0

    async def store_last_pong_response_timestamp(self, client_id: str, timestamp: int | None = None) -> None:
        value = timestamp if timestamp is not None else int(time.time())
        self._last_pong[client_id] = (value, self._expires_at())

    async def get_last_pong_response_timestamp(self, client_id: str) -> int | None:
        return self._live(self._last_pong, client_id)

    async def store_sampling_capability(self, client_id: str, has_sampling_capability: bool) -> None:
        self._sampling[client_id] = (has_sampling_capability, self._expires_at(SAMPLING_CAPABILITY_TTL))

    async def has_sampling_capability(self, client_id: str) -> bool:
        return bool(self._live(self._sampling, client_id))

    async def store_pending_response(self, message_id: str, data: dict[str, Any]) -> None:
        self._pending_responses[message_id] = (dict(data), self._expires_at())

    async def get_pending_response(self, message_id: str) -> dict[str, Any] | None:
        data = self._live(self._pending_responses, message_id)
        return dict(data) if data is not None else None

    async def remove_pending_response(self, message_id: str) -> None:
        self._pending_responses.pop(message_id, None)

    async def has_pending_response(self, message_id: str) -> bool:
        return self._live(self._pending_responses, message_id) is not None

    async def cleanup_old_pending_responses(self, max_age: int) -> int:
        now = int(time.time())
        stale = [
            message_id
            for message_id, (data, _) in self._pending_responses.items()
            if now - int(data.get("timestamp", now)) > max_age
        ]
        for message_id in stale:
            del self._pending_responses[message_id]
            logger.debug(f"Removed stale pending response {message_id}")
        return len(stale)

    async def close(self) -> None:
        pass
