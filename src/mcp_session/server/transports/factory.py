import logging

from anyio.abc import ObjectSendStream

from mcp_session.server.adapters.base import SseAdapter
from mcp_session.server.transports.base import BaseTransport
from mcp_session.server.transports.sse import SseTransport
from mcp_session.server.transports.streamable_http import StreamableHttpTransport
from mcp_session.shared.exceptions import TransportFactoryError
from mcp_session.types import (
    PROTOCOL_VERSION_SSE,
    PROTOCOL_VERSION_STREAMABLE_HTTP,
    PROTOCOL_VERSION_STREAMABLE_HTTP_NO_BATCH,
)

logger = logging.getLogger(__name__)

SUPPORTED_PROTOCOL_VERSIONS = [
    PROTOCOL_VERSION_SSE,
    PROTOCOL_VERSION_STREAMABLE_HTTP,
    PROTOCOL_VERSION_STREAMABLE_HTTP_NO_BATCH,
]


class TransportFactory:
    """Creates the transport matching a protocol version.

    A factory serves one request: it creates at most one transport and pins
    the protocol version it was created for.
    """

    def __init__(
        self,
        adapter: SseAdapter | None = None,
        ping_enabled: bool = False,
        ping_interval: int = 10,
        message_path: str = "/mcp/message",
    ):
        self._adapter = adapter
        self._ping_enabled = ping_enabled
        self._ping_interval = ping_interval
        self._message_path = message_path
        self._transport: BaseTransport | None = None
        self._protocol_version: str | None = None

    def create(self, protocol_version: str, stream: ObjectSendStream[bytes] | None = None) -> BaseTransport:
        """Create the transport for a protocol version.

        Raises:
            ValueError: If the version is unsupported or differs from the one
                this factory already created a transport for
        """
        if protocol_version not in SUPPORTED_PROTOCOL_VERSIONS:
            raise ValueError(
                f"Unsupported protocol version: {protocol_version}. "
                f"Supported versions: {', '.join(SUPPORTED_PROTOCOL_VERSIONS)}"
            )
        if self._protocol_version is not None and self._protocol_version != protocol_version:
            raise ValueError("Protocol version already set to a different value.")
        self._protocol_version = protocol_version

        if protocol_version == PROTOCOL_VERSION_SSE:
            self._transport = SseTransport(
                adapter=self._adapter,
                stream=stream,
                ping_enabled=self._ping_enabled,
                ping_interval=self._ping_interval,
                message_path=self._message_path,
            )
        else:
            self._transport = StreamableHttpTransport(
                adapter=self._adapter,
                stream=stream,
                ping_enabled=self._ping_enabled,
                ping_interval=self._ping_interval,
            )
        logger.debug(f"Created {self._transport.get_transport_name()} for protocol {protocol_version}")
        return self._transport

    def get(self) -> BaseTransport:
        """Return the transport created by ``create()``.

        Raises:
            TransportFactoryError: If no transport was created yet
        """
        if self._transport is None:
            raise TransportFactoryError("Transport must be initialized first. Please use create() method.")
        return self._transport

    def get_supported_versions(self) -> list[str]:
        return list(SUPPORTED_PROTOCOL_VERSIONS)
