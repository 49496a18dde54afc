"""
SSE Server Transport Module

Server-Sent Events are one-way, server-to-client. The client answers by
POSTing to the message endpoint announced in the initial ``endpoint`` event,
possibly on another server process; replies reach this transport through the
adapter queue.

See https://developer.mozilla.org/en-US/docs/Web/API/Server-sent_events
"""

import logging

from anyio.abc import ObjectSendStream

from mcp_session.server.adapters.base import SseAdapter
from mcp_session.server.transports.base import BaseTransport

logger = logging.getLogger(__name__)


class SseTransport(BaseTransport):
    """SSE transport for protocol revision 2024-11-05."""

    MIN_PING_INTERVAL = 5
    MAX_PING_INTERVAL = 30

    def __init__(
        self,
        adapter: SseAdapter | None = None,
        stream: ObjectSendStream[bytes] | None = None,
        ping_enabled: bool = False,
        ping_interval: int = 10,
        message_path: str = "/mcp/message",
    ):
        """
        Args:
            adapter: Store for queued messages and session state
            stream: Where encoded events are written, None for transports that only push
            ping_enabled: Whether liveness is checked with pings
            ping_interval: Seconds between pings, clamped to [5, 30]
            message_path: Path clients POST their messages to
        """
        super().__init__(adapter=adapter, stream=stream, ping_enabled=ping_enabled, ping_interval=ping_interval)
        self._message_path = message_path

    def get_transport_name(self) -> str:
        return "SSE Transport"

    def get_endpoint(self, session_id: str) -> str:
        return f"{self._message_path}?sessionId={session_id}"

    async def initialize(self) -> None:
        """Assign the client id and announce the message endpoint to the client."""
        await super().initialize()
        await self._send_event("endpoint", self.get_endpoint(self.get_client_id()))
        logger.debug(f"SSE session started for client {self.get_client_id()}")
