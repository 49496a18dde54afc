"""
Streamable HTTP Server Transport Module

Each client POST gets its own short-lived event stream carrying the replies
to that request. Messages for the client are still queued in the adapter so
that a request handled elsewhere can reach it.

See https://modelcontextprotocol.io/specification/2025-03-26/basic/transports
"""

import logging
import time
from typing import Any

from mcp_session.server.transports.base import BaseTransport

logger = logging.getLogger(__name__)

MCP_SESSION_ID_HEADER = "mcp-session-id"
MCP_PROTOCOL_VERSION_HEADER = "mcp-protocol-version"


class StreamableHttpTransport(BaseTransport):
    """Streamable HTTP transport for protocol revisions 2025-03-26 and later."""

    MIN_PING_INTERVAL = 1
    MAX_PING_INTERVAL = 10

    def get_transport_name(self) -> str:
        return "Streamable HTTP Transport"

    def set_connected(self, connected: bool) -> None:
        """Mark the per-request stream as open or finished."""
        self._connected = connected
        self._closed = not connected
        self._last_ping_timestamp = int(time.time())

    async def is_connected(self) -> bool:
        adapter = self.get_adapter()
        has_messages = adapter is not None and await adapter.has_messages(self.get_client_id())
        logger.debug(f"Streamable HTTP Transport::is_connected: has_messages: {has_messages}")
        return has_messages and await super().is_connected()

    async def push_message(self, client_id: str, message: dict[str, Any]) -> None:
        """Queue the message, then flush the client's queue onto the open stream.

        Everything drained is sent in queue order, so messages queued by other
        requests for this client go out on this stream as well.
        """
        await super().push_message(client_id, message)
        if self._stream is None or client_id != self.get_client_id():
            return
        for queued in await self.receive():
            await self.send(queued)
