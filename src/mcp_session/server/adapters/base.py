from typing import Any, Final, Protocol, runtime_checkable

DEFAULT_PREFIX: Final[str] = "mcp_sse_"
DEFAULT_MESSAGE_TTL: Final[int] = 100
SAMPLING_CAPABILITY_TTL: Final[int] = 86400


@runtime_checkable
class SseAdapter(Protocol):
    """Abstract interface for the external store backing client sessions.

    Every piece of state a client session needs across processes lives behind
    this interface: the queue of messages awaiting delivery, the last pong
    timestamp, the sampling capability flag and the pending sampling
    responses. Atomicity is whatever the backing store offers for a single key.
    """

    async def push_message(self, client_id: str, message: str) -> None:
        """Append a message to the tail of a client's queue.

        Args:
            client_id: The client the message is for
            message: The serialized JSON-RPC message

        Raises:
            AdapterError: If the store is unreachable
        """
        ...

    async def remove_all_messages(self, client_id: str) -> None:
        """Purge a client's queue. Purging an empty queue is not an error."""
        ...

    async def receive_messages(self, client_id: str) -> list[str]:
        """Remove and return every queued message, oldest first."""
        ...

    async def pop_message(self, client_id: str) -> str | None:
        """Remove and return the oldest queued message, or None if the queue is empty."""
        ...

    async def has_messages(self, client_id: str) -> bool: ...

    async def get_message_count(self, client_id: str) -> int: ...

    async def store_last_pong_response_timestamp(self, client_id: str, timestamp: int | None = None) -> None:
        """Record a liveness acknowledgment; defaults to the current time."""
        ...

    async def get_last_pong_response_timestamp(self, client_id: str) -> int | None: ...

    async def store_sampling_capability(self, client_id: str, has_sampling_capability: bool) -> None: ...

    async def has_sampling_capability(self, client_id: str) -> bool: ...

    async def store_pending_response(self, message_id: str, data: dict[str, Any]) -> None:
        """Store the pending-response record of a sampling request, keyed by message id."""
        ...

    async def get_pending_response(self, message_id: str) -> dict[str, Any] | None: ...

    async def remove_pending_response(self, message_id: str) -> None: ...

    async def has_pending_response(self, message_id: str) -> bool: ...

    async def cleanup_old_pending_responses(self, max_age: int) -> int:
        """Remove pending responses older than max_age seconds.

        Returns:
            int: The number of entries removed. Stores that expire keys on
            their own may return 0 and rely on the TTL.
        """
        ...

    async def close(self) -> None:
        """Release the connection to the backing store."""
        ...


class KeyBuilder:
    """Builds the store keys shared by every adapter backend."""

    def __init__(self, prefix: str = DEFAULT_PREFIX) -> None:
        self.prefix = prefix

    def queue(self, client_id: str) -> str:
        return f"{self.prefix}|client|{client_id}"

    def last_pong(self, client_id: str) -> str:
        return f"{self.queue(client_id)}|last_pong"

    def sampling(self, client_id: str) -> str:
        return f"{self.queue(client_id)}|sampling"

    def pending_response(self, message_id: str) -> str:
        return f"{self.prefix}|pending_response|{message_id}"
