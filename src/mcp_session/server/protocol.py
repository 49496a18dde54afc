"""
JSON-RPC dispatch for one client connection.

MCPProtocol drives a transport: it relays queued messages to the client while
the connection is alive, and it classifies every message the client posts as a
request, a notification or a response to a server-initiated request.

Request handlers are called with the client id and the request params and
return the result; raising McpError sends its error back to the client:

    protocol = MCPProtocol(transport)

    async def list_tools(client_id: str, params: dict[str, Any]) -> dict[str, Any]:
        return {"tools": []}

    protocol.register_request_handler("tools/list", list_tools)
"""

import logging
from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable

import anyio
from pydantic import BaseModel, ValidationError

from mcp_session.server.transports.base import BaseTransport, invoke_handler
from mcp_session.shared.exceptions import McpError
from mcp_session.types import (
    INTERNAL_ERROR,
    INVALID_REQUEST,
    JSONRPC_VERSION,
    LATEST_PROTOCOL_VERSION,
    METHOD_NOT_FOUND,
    ErrorData,
    JSONRPCErrorResponse,
    JSONRPCNotification,
    JSONRPCRequest,
    JSONRPCResultResponse,
    RequestId,
    parse_message,
)

logger = logging.getLogger(__name__)

# Pause between two drains of the client's queue.
RELAY_INTERVAL = 0.01

RequestHandler = Callable[[str, dict[str, Any]], Any]
NotificationHandler = Callable[[str, dict[str, Any]], Any]


@runtime_checkable
class ResponseHandler(Protocol):
    """Claims responses to requests the server sent to the client."""

    async def is_handle(self, message_id: RequestId) -> bool: ...

    async def execute(
        self,
        client_id: str,
        message_id: RequestId,
        result: Any = None,
        error: dict[str, Any] | None = None,
    ) -> dict[str, Any]: ...


class MCPProtocol:
    def __init__(
        self,
        transport: BaseTransport,
        server_name: str = "mcp-session-server",
        server_version: str = "0.1.0",
        protocol_version: str = LATEST_PROTOCOL_VERSION,
        capabilities: dict[str, Any] | None = None,
    ):
        self.transport = transport
        self.server_name = server_name
        self.server_version = server_version
        self.protocol_version = protocol_version
        self.capabilities = capabilities or {}

        self._request_handlers: dict[str, RequestHandler] = {
            "ping": self._handle_ping,
            "initialize": self._handle_initialize,
        }
        self._notification_handlers: dict[str, NotificationHandler] = {
            "notifications/initialized": self._handle_initialized,
        }
        self._response_handlers: list[ResponseHandler] = []

        transport.on_message(self.handle_message)

    def register_request_handler(self, method: str, handler: RequestHandler) -> None:
        self._request_handlers[method] = handler

    def register_notification_handler(self, method: str, handler: NotificationHandler) -> None:
        self._notification_handlers[method] = handler

    def register_response_handler(self, handler: ResponseHandler) -> None:
        self._response_handlers.append(handler)

    async def connect(self) -> None:
        """Start the transport and relay queued messages until the client goes away."""
        await self.transport.start()
        try:
            while await self.transport.is_connected():
                for message in await self.transport.receive():
                    await self.transport.send(message)
                await anyio.sleep(RELAY_INTERVAL)
        finally:
            with anyio.CancelScope(shield=True):
                await self.transport.close()

    async def request_message(self, client_id: str, message: dict[str, Any]) -> None:
        """Process a message posted by a client."""
        await self.transport.process_message(client_id, message)

    async def handle_message(self, client_id: str, message: Any) -> None:
        if not isinstance(message, dict) or message.get("jsonrpc") != JSONRPC_VERSION:
            message_id = message.get("id") if isinstance(message, dict) else None
            await self._send_error(client_id, message_id, INVALID_REQUEST, "Invalid Request")
            return

        try:
            parsed = parse_message(message)
        except ValidationError as e:
            logger.warning(f"Invalid message from client {client_id}: {e}")
            parsed = None

        match parsed:
            case JSONRPCRequest():
                await self._handle_request(client_id, parsed)
            case JSONRPCNotification():
                await self._handle_notification(client_id, parsed)
            case JSONRPCResultResponse() | JSONRPCErrorResponse():
                await self._handle_response(client_id, parsed)
            case _:
                await self._send_error(client_id, message.get("id"), INVALID_REQUEST, "Invalid Request")

    async def _handle_request(self, client_id: str, request: JSONRPCRequest) -> None:
        logger.debug(f"Processing request {request.method} ({request.id}) from client {client_id}")
        handler = self._request_handlers.get(request.method)
        if handler is None:
            await self._send_error(client_id, request.id, METHOD_NOT_FOUND, f"Method not found: {request.method}")
            return

        try:
            result = await invoke_handler(handler, client_id, request.params or {})
        except McpError as err:
            await self._send(client_id, {"jsonrpc": JSONRPC_VERSION, "id": request.id, "error": _dump(err.error)})
            return
        except Exception as err:
            logger.exception(f"Error handling request {request.method} from client {client_id}")
            await self._send_error(client_id, request.id, INTERNAL_ERROR, str(err))
            return

        if isinstance(result, BaseModel):
            result = result.model_dump(by_alias=True, exclude_none=True)
        await self._send(
            client_id,
            {"jsonrpc": JSONRPC_VERSION, "id": request.id, "result": result if result is not None else {}},
        )

    async def _handle_notification(self, client_id: str, notification: JSONRPCNotification) -> None:
        handler = self._notification_handlers.get(notification.method)
        if handler is None:
            await self._send_error(client_id, None, METHOD_NOT_FOUND, f"Method not found: {notification.method}")
            return
        try:
            await invoke_handler(handler, client_id, notification.params or {})
        except Exception:
            logger.exception(f"Uncaught exception in notification handler for {notification.method}")

    async def _handle_response(
        self, client_id: str, response: JSONRPCResultResponse | JSONRPCErrorResponse
    ) -> None:
        # Any reply shows the client is alive.
        adapter = self.transport.get_adapter()
        if adapter is not None:
            try:
                await adapter.store_last_pong_response_timestamp(client_id)
            except Exception as e:
                logger.warning(f"Failed to store pong timestamp for client {client_id}: {e}")

        if response.id is None:
            logger.debug(f"Ignoring error response without id from client {client_id}")
            return

        for handler in self._response_handlers:
            if await handler.is_handle(response.id):
                if isinstance(response, JSONRPCErrorResponse):
                    await handler.execute(client_id, response.id, error=_dump(response.error))
                else:
                    await handler.execute(client_id, response.id, result=response.result)
                return
        logger.debug(f"No handler for response {response.id} from client {client_id}")

    async def _handle_ping(self, client_id: str, params: dict[str, Any]) -> dict[str, Any]:
        return {}

    async def _handle_initialize(self, client_id: str, params: dict[str, Any]) -> dict[str, Any]:
        client_capabilities = params.get("capabilities") or {}
        has_sampling = isinstance(client_capabilities, dict) and "sampling" in client_capabilities
        try:
            await self.transport.set_client_sampling_capability(has_sampling)
        except Exception as e:
            logger.warning(f"Failed to store sampling capability for client {client_id}: {e}")

        client_info = params.get("clientInfo") or {}
        logger.info(f"Client {client_id} initialized ({client_info.get('name', 'unknown')}, sampling={has_sampling})")
        return {
            "protocolVersion": self.protocol_version,
            "capabilities": self.capabilities,
            "serverInfo": {"name": self.server_name, "version": self.server_version},
        }

    async def _handle_initialized(self, client_id: str, params: dict[str, Any]) -> None:
        pass

    async def _send(self, client_id: str, message: dict[str, Any]) -> None:
        await self.transport.push_message(client_id, message)

    async def _send_error(self, client_id: str, message_id: RequestId | None, code: int, message: str) -> None:
        error = ErrorData(code=code, message=message)
        await self._send(client_id, {"jsonrpc": JSONRPC_VERSION, "id": message_id, "error": _dump(error)})


def _dump(error: ErrorData) -> dict[str, Any]:
    return error.model_dump(exclude_none=True)
