import json
import time

import anyio
import pytest

from mcp_session.server.protocol import MCPProtocol
from mcp_session.server.transports import SseTransport
from mcp_session.shared.exceptions import McpError
from mcp_session.types import (
    INTERNAL_ERROR,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    ErrorData,
    SamplingContent,
)


@pytest.fixture
def transport(memory_adapter):
    transport = SseTransport(adapter=memory_adapter)
    transport.set_client_id("c1")
    return transport


@pytest.fixture
def protocol(transport):
    return MCPProtocol(transport, server_name="test-server", server_version="1.2.3")


async def sent_messages(adapter, client_id: str = "c1") -> list[dict]:
    return [json.loads(message) for message in await adapter.receive_messages(client_id)]


class RecordingResponseHandler:
    def __init__(self, handles: bool):
        self.handles = handles
        self.executed: list[tuple] = []

    async def is_handle(self, message_id):
        return self.handles

    async def execute(self, client_id, message_id, result=None, error=None):
        self.executed.append((client_id, message_id, result, error))
        return {}


@pytest.mark.anyio
async def test_ping(protocol, memory_adapter):
    await protocol.request_message("c1", {"jsonrpc": "2.0", "id": 1, "method": "ping"})
    assert await sent_messages(memory_adapter) == [{"jsonrpc": "2.0", "id": 1, "result": {}}]


@pytest.mark.anyio
async def test_initialize_stores_sampling_capability(protocol, memory_adapter):
    await protocol.request_message(
        "c1",
        {
            "jsonrpc": "2.0",
            "id": "init",
            "method": "initialize",
            "params": {
                "protocolVersion": "2025-06-18",
                "capabilities": {"sampling": {}},
                "clientInfo": {"name": "test-client", "version": "0.0.1"},
            },
        },
    )

    [response] = await sent_messages(memory_adapter)
    assert response["id"] == "init"
    assert response["result"] == {
        "protocolVersion": "2025-06-18",
        "capabilities": {},
        "serverInfo": {"name": "test-server", "version": "1.2.3"},
    }
    assert await memory_adapter.has_sampling_capability("c1")


@pytest.mark.anyio
async def test_initialize_without_sampling(protocol, memory_adapter):
    await protocol.request_message("c1", {"jsonrpc": "2.0", "id": 1, "method": "initialize", "params": {}})
    assert not await memory_adapter.has_sampling_capability("c1")


@pytest.mark.anyio
async def test_initialized_notification(protocol, memory_adapter):
    await protocol.request_message("c1", {"jsonrpc": "2.0", "method": "notifications/initialized"})
    assert await sent_messages(memory_adapter) == []


@pytest.mark.anyio
async def test_unknown_method(protocol, memory_adapter):
    await protocol.request_message("c1", {"jsonrpc": "2.0", "id": 7, "method": "tools/list"})
    await protocol.request_message("c1", {"jsonrpc": "2.0", "method": "notifications/unknown"})

    request_error, notification_error = await sent_messages(memory_adapter)
    assert request_error["id"] == 7
    assert request_error["error"]["code"] == METHOD_NOT_FOUND
    assert notification_error["id"] is None
    assert notification_error["error"]["code"] == METHOD_NOT_FOUND


@pytest.mark.anyio
@pytest.mark.parametrize(
    "message",
    [
        {"jsonrpc": "1.0", "id": 1, "method": "ping"},
        {"id": 1, "method": "ping"},
        {"jsonrpc": "2.0", "id": 1},
        {"jsonrpc": "2.0", "id": 1, "method": 5},
    ],
)
async def test_invalid_request(protocol, memory_adapter, message):
    await protocol.request_message("c1", message)

    [response] = await sent_messages(memory_adapter)
    assert response["id"] == 1
    assert response["error"]["code"] == INVALID_REQUEST


@pytest.mark.anyio
async def test_registered_request_handlers(protocol, memory_adapter):
    async def echo(client_id, params):
        return {"client": client_id, "params": params}

    def model_result(client_id, params):
        return SamplingContent(type="text", mime_type="text/plain")

    async def rejecting(client_id, params):
        raise McpError(ErrorData(code=-32602, message="bad params"))

    async def failing(client_id, params):
        raise RuntimeError("boom")

    protocol.register_request_handler("echo", echo)
    protocol.register_request_handler("model", model_result)
    protocol.register_request_handler("reject", rejecting)
    protocol.register_request_handler("fail", failing)

    for index, method in enumerate(["echo", "model", "reject", "fail"]):
        await protocol.request_message("c1", {"jsonrpc": "2.0", "id": index, "method": method, "params": {"a": 1}})

    echo_response, model_response, reject_response, fail_response = await sent_messages(memory_adapter)
    assert echo_response["result"] == {"client": "c1", "params": {"a": 1}}
    assert model_response["result"] == {"type": "text", "mimeType": "text/plain"}
    assert reject_response["error"] == {"code": -32602, "message": "bad params"}
    assert fail_response["error"] == {"code": INTERNAL_ERROR, "message": "boom"}


@pytest.mark.anyio
async def test_registered_notification_handler(protocol):
    received = []
    protocol.register_notification_handler("notifications/cancelled", lambda client_id, params: received.append(params))

    await protocol.request_message("c1", {"jsonrpc": "2.0", "method": "notifications/cancelled", "params": {"x": 1}})
    assert received == [{"x": 1}]


@pytest.mark.anyio
async def test_response_routing(protocol, memory_adapter):
    declining = RecordingResponseHandler(handles=False)
    claiming = RecordingResponseHandler(handles=True)
    never_asked = RecordingResponseHandler(handles=True)
    for handler in (declining, claiming, never_asked):
        protocol.register_response_handler(handler)

    await protocol.request_message("c1", {"jsonrpc": "2.0", "id": "s1", "result": {"ok": True}})
    await protocol.request_message("c1", {"jsonrpc": "2.0", "id": "s2", "error": {"code": -1, "message": "no"}})

    assert claiming.executed == [
        ("c1", "s1", {"ok": True}, None),
        ("c1", "s2", None, {"code": -1, "message": "no"}),
    ]
    assert declining.executed == [] and never_asked.executed == []
    assert await sent_messages(memory_adapter) == []


@pytest.mark.anyio
async def test_any_response_counts_as_pong(protocol, memory_adapter):
    await memory_adapter.store_last_pong_response_timestamp("c1", 0)

    await protocol.request_message("c1", {"jsonrpc": "2.0", "id": "r123", "result": {}})

    assert await memory_adapter.get_last_pong_response_timestamp("c1") >= int(time.time()) - 1


@pytest.mark.anyio
async def test_connect_relays_queued_messages(memory_adapter):
    send_stream, receive_stream = anyio.create_memory_object_stream[bytes](100)
    transport = SseTransport(adapter=memory_adapter, stream=send_stream)
    protocol = MCPProtocol(transport)

    async with send_stream, receive_stream:
        with anyio.fail_after(5):
            async with anyio.create_task_group() as tg:
                tg.start_soon(protocol.connect)

                endpoint = await receive_stream.receive()
                assert endpoint.startswith(b"event: endpoint\n")

                await transport.push_message(transport.get_client_id(), {"jsonrpc": "2.0", "method": "notifications/message"})
                message = await receive_stream.receive()
                assert message == b'event: message\ndata: {"jsonrpc":"2.0","method":"notifications/message"}\n\n'

                await transport.close()

            assert await receive_stream.receive() == b'event: close\ndata: {"reason":"server_closed"}\n\n'
