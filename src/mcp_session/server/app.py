"""
Starlette application serving MCP sessions over SSE and streamable HTTP.

One adapter and one ResponseWaiter are shared by every request of the
application. Everything else (transport factory, transport, protocol and
sampling client) is built per request, so any process sharing the adapter can
serve any request of a session.

Example:

    app = create_app(Settings(sse_adapter="redis"))

    async def call_tool(client_id: str, params: dict[str, Any]) -> dict[str, Any]:
        response = await get_sampling_client().create_text_request("Summarize ...")
        return {"content": [{"type": "text", "text": response.content.text}]}

    app.state.request_handlers["tools/call"] = call_tool
"""

import contextlib
import json
import logging
import math
from collections.abc import AsyncIterator, Iterator
from contextvars import ContextVar
from http import HTTPStatus
from typing import Any

import anyio
import uvicorn
from sse_starlette import EventSourceResponse
from starlette.applications import Starlette
from starlette.datastructures import State
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from mcp_session.server.adapters import SseAdapter, create_adapter
from mcp_session.server.progress import ProgressNotifier, ProgressNotifierRepository
from mcp_session.server.protocol import MCPProtocol, RequestHandler
from mcp_session.server.sampling import ResponseWaiter, SamplingClient, SamplingResponseHandler
from mcp_session.server.settings import Settings
from mcp_session.server.transports.base import STREAMING_HEADERS, BaseTransport
from mcp_session.server.transports.factory import SUPPORTED_PROTOCOL_VERSIONS, TransportFactory
from mcp_session.server.transports.streamable_http import (
    MCP_PROTOCOL_VERSION_HEADER,
    MCP_SESSION_ID_HEADER,
    StreamableHttpTransport,
)
from mcp_session.server.utilities.logging import configure_logging
from mcp_session.shared.exceptions import SamplingError, SessionError
from mcp_session.types import (
    INVALID_REQUEST,
    JSONRPC_VERSION,
    LATEST_PROTOCOL_VERSION,
    PARSE_ERROR,
    PROTOCOL_VERSION_SSE,
    PROTOCOL_VERSION_STREAMABLE_HTTP,
    RequestId,
    get_progress_token,
)

logger = logging.getLogger(__name__)

# Method prefixes announcing a server capability when a handler is registered for them.
CAPABILITY_PREFIXES = {"tools/": "tools", "prompts/": "prompts", "resources/": "resources"}

sampling_client_ctx: ContextVar[SamplingClient] = ContextVar("sampling_client")
progress_notifier_ctx: ContextVar[ProgressNotifier | None] = ContextVar("progress_notifier")


def get_sampling_client() -> SamplingClient:
    """Return the sampling client of the request being processed.

    Raises:
        SamplingError: If called outside of a request handler
    """
    try:
        return sampling_client_ctx.get()
    except LookupError:
        raise SamplingError("No sampling client: not called from a request handler") from None


def get_progress_notifier() -> ProgressNotifier | None:
    """Return the progress notifier of the request being processed.

    None when the client sent no ``_meta.progressToken`` with the request.

    Raises:
        SessionError: If called outside of a request handler
    """
    try:
        return progress_notifier_ctx.get()
    except LookupError:
        raise SessionError("No progress notifier: not called from a request handler") from None


def _error_response(
    code: int,
    message: str,
    status_code: int = HTTPStatus.BAD_REQUEST,
    message_id: RequestId | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    return JSONResponse(
        {"jsonrpc": JSONRPC_VERSION, "id": message_id, "error": {"code": code, "message": message}},
        status_code=status_code,
        headers=headers,
    )


def _capabilities(request_handlers: dict[str, RequestHandler]) -> dict[str, Any]:
    capabilities: dict[str, Any] = {}
    for method in request_handlers:
        for prefix, capability in CAPABILITY_PREFIXES.items():
            if method.startswith(prefix):
                capabilities[capability] = {}
    return capabilities


class _Session:
    """The objects serving one HTTP request of a session."""

    def __init__(self, state: State, protocol_version: str, stream: Any = None):
        settings: Settings = state.settings
        self.factory = TransportFactory(
            adapter=state.adapter,
            ping_enabled=settings.ping_enabled,
            ping_interval=settings.ping_interval,
            message_path=settings.message_path,
        )
        self.transport: BaseTransport = self.factory.create(protocol_version, stream)
        self.protocol = MCPProtocol(
            self.transport,
            server_name=settings.server_name,
            server_version=settings.server_version,
            protocol_version=protocol_version,
            capabilities=_capabilities(state.request_handlers),
        )
        for method, handler in state.request_handlers.items():
            self.protocol.register_request_handler(method, handler)

        self.sampling_client = SamplingClient(
            self.factory,
            response_waiter=state.response_waiter,
            default_timeout=settings.sampling_timeout,
        )
        self.sampling_client.set_enabled(settings.sampling_enabled)
        self.protocol.register_response_handler(SamplingResponseHandler(self.sampling_client))
        self.progress_notifiers = ProgressNotifierRepository(self.factory)

    def bind(self, client_id: str) -> None:
        self.transport.set_client_id(client_id)
        self.sampling_client.set_current_client_id(client_id)

    async def dispatch(self, messages: list[Any]) -> None:
        token = sampling_client_ctx.set(self.sampling_client)
        try:
            for message in messages:
                with self._progress_scope(message):
                    await self.protocol.request_message(self.transport.get_client_id(), message)
        finally:
            sampling_client_ctx.reset(token)

    @contextlib.contextmanager
    def _progress_scope(self, message: Any) -> Iterator[None]:
        """Expose a progress notifier while a request carrying a progress token is handled."""
        progress_token = None
        if isinstance(message, dict) and "method" in message and message.get("id") is not None:
            progress_token = get_progress_token(message.get("params"))
        notifier = None
        if progress_token is not None:
            notifier = self.progress_notifiers.register_token(progress_token, self.transport.get_client_id())

        token = progress_notifier_ctx.set(notifier)
        try:
            yield
        finally:
            progress_notifier_ctx.reset(token)
            if notifier is not None:
                self.progress_notifiers.unregister_token(progress_token)


async def handle_sse(request: Request) -> Response:
    """Open the event stream of a new SSE session."""
    send_stream, receive_stream = anyio.create_memory_object_stream[bytes](math.inf)
    session = _Session(request.app.state, PROTOCOL_VERSION_SSE, send_stream)
    session.bind(session.transport.get_client_id())
    logger.info(f"New SSE connection for client {session.transport.get_client_id()}")

    async def run_session() -> None:
        async with send_stream:
            await session.protocol.connect()
        logger.debug(f"SSE session {session.transport.get_client_id()} ended")

    return EventSourceResponse(content=receive_stream, data_sender_callable=run_session, headers=STREAMING_HEADERS)


async def handle_post_message(request: Request) -> Response:
    """Accept a message posted by an SSE client."""
    session_id = request.query_params.get("sessionId")
    if not session_id:
        return _error_response(INVALID_REQUEST, "Missing sessionId query parameter")

    try:
        payload = json.loads(await request.body())
    except ValueError as e:
        logger.warning(f"Invalid JSON from client {session_id}: {e}")
        return _error_response(PARSE_ERROR, "Parse error")

    session = _Session(request.app.state, PROTOCOL_VERSION_SSE)
    session.bind(session_id)
    await session.dispatch(payload if isinstance(payload, list) else [payload])
    return JSONResponse({"success": True})


async def handle_streamable_http(request: Request) -> Response:
    """Serve one POST of a streamable HTTP session.

    Requests are answered on an event stream opened for this POST only. A
    POST carrying only notifications and responses is accepted with 202.
    """
    if request.method != "POST":
        return _error_response(
            INVALID_REQUEST,
            "Method not allowed",
            status_code=HTTPStatus.METHOD_NOT_ALLOWED,
            headers={"Allow": "POST"},
        )

    protocol_version = request.headers.get(MCP_PROTOCOL_VERSION_HEADER, LATEST_PROTOCOL_VERSION)
    if protocol_version == PROTOCOL_VERSION_SSE or protocol_version not in SUPPORTED_PROTOCOL_VERSIONS:
        return _error_response(INVALID_REQUEST, f"Unsupported protocol version: {protocol_version}")

    try:
        payload = json.loads(await request.body())
    except ValueError as e:
        logger.warning(f"Invalid JSON in streamable HTTP request: {e}")
        return _error_response(PARSE_ERROR, "Parse error")

    if isinstance(payload, list):
        if protocol_version != PROTOCOL_VERSION_STREAMABLE_HTTP:
            return _error_response(
                INVALID_REQUEST, f"Batch requests are not supported in protocol version {protocol_version}"
            )
        if not payload:
            return _error_response(INVALID_REQUEST, "Empty batch")
        messages = payload
    else:
        messages = [payload]

    has_requests = any(isinstance(m, dict) and "method" in m and m.get("id") is not None for m in messages)
    send_stream, receive_stream = anyio.create_memory_object_stream[bytes](math.inf)
    # Without requests there is no stream to answer on; anything pushed stays queued.
    session = _Session(request.app.state, protocol_version, send_stream if has_requests else None)
    transport = session.transport
    assert isinstance(transport, StreamableHttpTransport)
    session.bind(request.headers.get(MCP_SESSION_ID_HEADER) or transport.get_client_id())
    headers = {MCP_SESSION_ID_HEADER: transport.get_client_id()}

    await transport.start()

    if not has_requests:
        send_stream.close()
        receive_stream.close()
        await session.dispatch(messages)
        transport.set_connected(False)
        return Response(status_code=HTTPStatus.ACCEPTED, headers=headers)

    async def run_request() -> None:
        async with send_stream:
            try:
                await session.dispatch(messages)
            finally:
                transport.set_connected(False)

    return EventSourceResponse(
        content=receive_stream,
        data_sender_callable=run_request,
        headers={**STREAMING_HEADERS, **headers},
    )


async def _sweep_pending_responses(response_waiter: ResponseWaiter, adapter: SseAdapter, interval: float) -> None:
    max_age = int(interval * 2)
    while True:
        await anyio.sleep(interval)
        removed = response_waiter.cleanup(max_age)
        try:
            removed += await adapter.cleanup_old_pending_responses(max_age)
        except Exception as e:
            logger.warning(f"Failed to clean up pending responses in adapter: {e}")
        if removed:
            logger.info(f"Removed {removed} stale pending responses")


def create_app(settings: Settings | None = None, adapter: SseAdapter | None = None) -> Starlette:
    """Build the Starlette application.

    Args:
        settings: Server settings, read from the environment if omitted
        adapter: Session store, built from the settings if omitted

    Returns:
        The application; ``app.state.request_handlers`` maps MCP methods to
        the handlers serving them
    """
    settings = settings or Settings()
    adapter = adapter if adapter is not None else create_adapter(settings)
    response_waiter = ResponseWaiter(adapter=adapter, default_timeout=settings.sampling_timeout)

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        async with anyio.create_task_group() as tg:
            tg.start_soon(_sweep_pending_responses, response_waiter, adapter, settings.sampling_timeout)
            try:
                yield
            finally:
                tg.cancel_scope.cancel()
                await adapter.close()

    app = Starlette(
        debug=settings.debug,
        routes=[
            Route(settings.sse_path, endpoint=handle_sse, methods=["GET"]),
            Route(settings.message_path, endpoint=handle_post_message, methods=["POST"]),
            Route(settings.streamable_http_path, endpoint=handle_streamable_http, methods=["GET", "POST"]),
        ],
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.adapter = adapter
    app.state.response_waiter = response_waiter
    app.state.request_handlers = {}
    return app


def run(settings: Settings | None = None) -> None:
    """Serve the application with uvicorn."""
    settings = settings or Settings()
    configure_logging(settings.log_level)

    config = uvicorn.Config(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )
    server = uvicorn.Server(config)
    anyio.run(server.serve)
