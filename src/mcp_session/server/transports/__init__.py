from mcp_session.server.transports.base import BaseTransport, Transport
from mcp_session.server.transports.factory import TransportFactory
from mcp_session.server.transports.sse import SseTransport
from mcp_session.server.transports.streamable_http import StreamableHttpTransport

__all__ = [
    "Transport",
    "BaseTransport",
    "SseTransport",
    "StreamableHttpTransport",
    "TransportFactory",
]
