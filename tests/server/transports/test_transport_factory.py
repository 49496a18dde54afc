import pytest

from mcp_session.server.adapters import InMemoryAdapter
from mcp_session.server.transports import SseTransport, StreamableHttpTransport, Transport, TransportFactory
from mcp_session.shared.exceptions import TransportFactoryError
from mcp_session.types import (
    PROTOCOL_VERSION_SSE,
    PROTOCOL_VERSION_STREAMABLE_HTTP,
    PROTOCOL_VERSION_STREAMABLE_HTTP_NO_BATCH,
)


@pytest.mark.parametrize(
    ("protocol_version", "transport_class"),
    [
        (PROTOCOL_VERSION_SSE, SseTransport),
        (PROTOCOL_VERSION_STREAMABLE_HTTP, StreamableHttpTransport),
        (PROTOCOL_VERSION_STREAMABLE_HTTP_NO_BATCH, StreamableHttpTransport),
    ],
)
def test_create_selects_transport(protocol_version, transport_class):
    adapter = InMemoryAdapter()
    factory = TransportFactory(adapter=adapter, ping_enabled=True, ping_interval=20)

    transport = factory.create(protocol_version)

    assert isinstance(transport, transport_class)
    assert isinstance(transport, Transport)
    assert transport.get_adapter() is adapter
    assert factory.get() is transport


def test_create_passes_ping_settings():
    factory = TransportFactory(ping_enabled=True, ping_interval=20)
    assert factory.create(PROTOCOL_VERSION_SSE).ping_interval == 20

    # Clamped to the streamable HTTP range
    factory = TransportFactory(ping_enabled=True, ping_interval=20)
    assert factory.create(PROTOCOL_VERSION_STREAMABLE_HTTP).ping_interval == 10


def test_create_rejects_unsupported_version():
    with pytest.raises(ValueError, match="Supported versions: 2024-11-05, 2025-03-26, 2025-06-18"):
        TransportFactory().create("1999-01-01")


def test_protocol_version_is_pinned():
    factory = TransportFactory()
    factory.create(PROTOCOL_VERSION_STREAMABLE_HTTP)
    factory.create(PROTOCOL_VERSION_STREAMABLE_HTTP)

    with pytest.raises(ValueError, match="already set to a different value"):
        factory.create(PROTOCOL_VERSION_SSE)


def test_get_before_create():
    with pytest.raises(TransportFactoryError, match="Please use create"):
        TransportFactory().get()


def test_supported_versions():
    assert TransportFactory().get_supported_versions() == [
        PROTOCOL_VERSION_SSE,
        PROTOCOL_VERSION_STREAMABLE_HTTP,
        PROTOCOL_VERSION_STREAMABLE_HTTP_NO_BATCH,
    ]
