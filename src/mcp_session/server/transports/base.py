"""Transport interface and the base class shared by the SSE and streamable HTTP transports."""

import abc
import inspect
import json
import logging
import time
from collections.abc import Callable
from typing import Any, Final, Protocol, runtime_checkable
from uuid import uuid4

import anyio
from anyio.abc import ObjectSendStream
from sse_starlette import ServerSentEvent

from mcp_session.server.adapters.base import SseAdapter
from mcp_session.shared.exceptions import TransportError

logger = logging.getLogger(__name__)

# Multiplier applied to the ping interval to decide that a silent client is gone.
PONG_TOLERANCE: Final[float] = 1.8

# Response headers keeping proxies from buffering or caching the event stream.
STREAMING_HEADERS: Final[dict[str, str]] = {
    "Cache-Control": "no-cache, private",
    "X-Accel-Buffering": "no",
}

Handler = Callable[..., Any]


def generate_request_id() -> str:
    """Return a unique id for a server-initiated request."""
    return f"r{uuid4().hex}"


def encode_message(message: dict[str, Any]) -> str:
    return json.dumps(message, separators=(",", ":"))


async def invoke_handler(handler: Handler, *args: Any) -> Any:
    """Call a sync or async handler and return its result."""
    result = handler(*args)
    if inspect.isawaitable(result):
        return await result
    return result


@runtime_checkable
class Transport(Protocol):
    """The lifecycle of one client connection.

    See https://modelcontextprotocol.io/docs/concepts/transports
    """

    async def start(self) -> None: ...

    async def send(self, message: str | dict[str, Any]) -> None: ...

    async def close(self) -> None: ...

    def on_close(self, handler: Handler) -> None: ...

    def on_error(self, handler: Handler) -> None: ...

    def on_message(self, handler: Handler) -> None: ...

    async def initialize(self) -> None: ...

    async def is_connected(self) -> bool: ...

    async def receive(self) -> list[str]: ...

    async def process_message(self, client_id: str, message: dict[str, Any]) -> None: ...

    async def push_message(self, client_id: str, message: dict[str, Any]) -> None: ...

    def get_client_id(self) -> str: ...

    async def set_client_sampling_capability(self, has_sampling_capability: bool) -> None: ...

    def get_adapter(self) -> SseAdapter | None: ...


class BaseTransport(abc.ABC):
    """Common lifecycle, handler lists and ping-based liveness of a transport.

    A transport moves from uninitialized to started on ``start()`` and to
    closed on ``close()``; both calls are idempotent. Frames are written to an
    optional anyio object stream of encoded Server-Sent Events; every frame is
    sent on its own so the client never sees a partial one. All state shared
    with other processes lives in the adapter.
    """

    MIN_PING_INTERVAL: int = 5
    MAX_PING_INTERVAL: int = 30

    def __init__(
        self,
        adapter: SseAdapter | None = None,
        stream: ObjectSendStream[bytes] | None = None,
        ping_enabled: bool = False,
        ping_interval: int = 10,
    ):
        self._adapter = adapter
        self._stream = stream
        self._ping_enabled = ping_enabled
        self._ping_interval = self.MIN_PING_INTERVAL
        self.set_ping_interval(ping_interval)

        self._client_id: str | None = None
        self._connected = False
        self._closed = False
        self._aborted = False
        self._last_ping_timestamp = 0

        self._close_handlers: list[Handler] = []
        self._error_handlers: list[Handler] = []
        self._message_handlers: list[Handler] = []

    @abc.abstractmethod
    def get_transport_name(self) -> str:
        """Name of the transport for log and error messages."""
        raise NotImplementedError

    def get_client_id(self) -> str:
        """Return the client id, generating it on first access."""
        if self._client_id is None:
            self._client_id = uuid4().hex
        return self._client_id

    def set_client_id(self, client_id: str) -> None:
        """Bind the transport to an existing session.

        Raises:
            TransportError: If the transport already has a different client id
        """
        if self._client_id is not None and self._client_id != client_id:
            raise TransportError(f"{self.get_transport_name()} is already bound to client {self._client_id}")
        self._client_id = client_id

    def get_adapter(self) -> SseAdapter | None:
        return self._adapter

    def set_adapter(self, adapter: SseAdapter | None) -> None:
        self._adapter = adapter

    @property
    def ping_interval(self) -> int:
        return self._ping_interval

    def set_ping_interval(self, ping_interval: int) -> None:
        """Set the ping interval, clamped to the range allowed for this transport."""
        self._ping_interval = max(self.MIN_PING_INTERVAL, min(self.MAX_PING_INTERVAL, ping_interval))

    async def start(self) -> None:
        if self._connected:
            return
        self._connected = True
        self._closed = False
        await self.initialize()

    async def initialize(self) -> None:
        """Assign the client id and record an initial pong.

        The initial pong keeps the first liveness check from failing before the
        client had a chance to answer a ping.
        """
        client_id = self.get_client_id()
        self._last_ping_timestamp = int(time.time())
        if self._adapter is not None:
            try:
                await self._adapter.store_last_pong_response_timestamp(client_id, self._last_ping_timestamp)
            except Exception as e:
                logger.warning(f"{self.get_transport_name()}: failed to store initial pong for {client_id}: {e}")

    async def send(self, message: str | dict[str, Any]) -> None:
        """Send a message event to the client.

        Dicts are JSON-encoded. A dict that is neither a notification nor
        already carries an id is given a generated request id.
        """
        if isinstance(message, dict):
            if "id" not in message and "method" not in message:
                message = {"id": generate_request_id(), **message}
            message = encode_message(message)
        await self._send_event("message", message)

    async def _send_event(self, event: str, data: str) -> None:
        if self._stream is None:
            logger.debug(f"{self.get_transport_name()}: no output stream, dropping '{event}' event")
            return
        frame = ServerSentEvent(data=data, event=event, sep="\n").encode()
        try:
            await self._stream.send(frame)
        except (anyio.BrokenResourceError, anyio.ClosedResourceError):
            self._aborted = True
            logger.info(f"{self.get_transport_name()}: client {self._client_id} disconnected")

    async def close(self) -> None:
        """Close the connection.

        Every close handler runs even if another one fails, queued messages
        are purged and a final ``close`` event is sent. Never raises.
        """
        if not self._connected:
            return
        self._connected = False
        self._closed = True

        for handler in self._close_handlers:
            try:
                await invoke_handler(handler)
            except Exception as e:
                logger.error(f"Error in {self.get_transport_name()} close handler: {e}")

        if self._adapter is not None and self._client_id is not None:
            try:
                await self._adapter.remove_all_messages(self._client_id)
            except Exception as e:
                logger.error(f"Error cleaning up {self.get_transport_name()} adapter resources on close: {e}")

        try:
            await self._send_event("close", encode_message({"reason": "server_closed"}))
        except Exception as e:
            logger.error(f"Error sending {self.get_transport_name()} close event: {e}")

    def on_close(self, handler: Handler) -> None:
        self._close_handlers.append(handler)

    def on_error(self, handler: Handler) -> None:
        self._error_handlers.append(handler)

    def on_message(self, handler: Handler) -> None:
        self._message_handlers.append(handler)

    async def trigger_error(self, error: str) -> None:
        """Run every error handler with the error text."""
        logger.error(f"{self.get_transport_name()} error: {error}")
        for handler in self._error_handlers:
            try:
                await invoke_handler(handler, error)
            except Exception as e:
                logger.error(f"Error in {self.get_transport_name()} error handler: {e}")

    async def is_connected(self) -> bool:
        """Check whether the client is still there.

        With pings enabled a ping is sent whenever the interval has elapsed,
        and the client counts as connected while its last pong is younger than
        ``ping_interval * PONG_TOLERANCE`` seconds.
        """
        if self._closed or self._aborted or not self._connected:
            return False
        if not self._ping_enabled or self._adapter is None:
            return True

        now = int(time.time())
        if now - self._last_ping_timestamp >= self._ping_interval:
            await self.send({"jsonrpc": "2.0", "id": generate_request_id(), "method": "ping"})
            self._last_ping_timestamp = now

        last_pong = await self._adapter.get_last_pong_response_timestamp(self.get_client_id())
        if last_pong is None:
            return False
        return now - last_pong <= self._ping_interval * PONG_TOLERANCE and not self._aborted

    async def receive(self) -> list[str]:
        """Drain the messages queued for this client. Never raises."""
        if self._adapter is None:
            logger.info(f"{self.get_transport_name()}::receive called but no adapter is configured.")
            return []
        try:
            return await self._adapter.receive_messages(self.get_client_id())
        except Exception as e:
            await self.trigger_error(f"Error receiving messages: {e}")
            return []

    async def process_message(self, client_id: str, message: dict[str, Any]) -> None:
        # Handlers registered while a message is processed take effect from the next one.
        for handler in list(self._message_handlers):
            try:
                await invoke_handler(handler, client_id, message)
            except Exception as e:
                logger.error(f"Error processing {self.get_transport_name()} message via handler: {e}")

    async def push_message(self, client_id: str, message: dict[str, Any]) -> None:
        """Queue a message for delivery to a client.

        Raises:
            TransportError: If no adapter is configured or the message cannot be encoded
            AdapterError: If the adapter fails to store the message
        """
        if self._adapter is None:
            raise TransportError("Cannot push message: adapter is not configured.")
        try:
            encoded = encode_message(message)
        except (TypeError, ValueError) as e:
            raise TransportError(f"Failed to JSON encode message for pushing: {e}") from e
        logger.debug(f"{self.get_transport_name()}::push_message: clientId: {client_id}")
        await self._adapter.push_message(client_id, encoded)

    async def set_client_sampling_capability(self, has_sampling_capability: bool) -> None:
        if self._adapter is None:
            raise TransportError("Cannot store sampling capability: adapter is not configured.")
        await self._adapter.store_sampling_capability(self.get_client_id(), has_sampling_capability)
