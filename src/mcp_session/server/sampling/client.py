"""
Server-initiated sampling requests.

Sampling lets a server ask the connected client to run an LLM completion on
its behalf. The request is queued for the client through the transport, and
the reply, which may be posted to any process sharing the adapter, resolves it
through a ResponseWaiter.
"""

import logging
from typing import Any
from uuid import uuid4

from pydantic import ValidationError

from mcp_session.server.sampling.response_waiter import ResponseWaiter
from mcp_session.server.transports.base import BaseTransport
from mcp_session.server.transports.factory import TransportFactory
from mcp_session.shared.exceptions import SamplingUnavailableError, TransportFactoryError
from mcp_session.types import (
    JSONRPC_VERSION,
    LATEST_PROTOCOL_VERSION,
    ModelPreferences,
    SamplingContent,
    SamplingMessage,
    SamplingRequest,
    SamplingResponse,
)

logger = logging.getLogger(__name__)

SAMPLING_METHOD = "sampling/createMessage"


class SamplingClient:
    def __init__(
        self,
        transport_factory: TransportFactory,
        response_waiter: ResponseWaiter | None = None,
        default_timeout: float = 30,
    ):
        self._transport_factory = transport_factory
        self._response_waiter = response_waiter
        self._default_timeout = default_timeout
        self._enabled = True
        self._current_client_id: str | None = None
        self._handler_registered_on: BaseTransport | None = None

    def is_enabled(self) -> bool:
        return self._enabled

    def set_enabled(self, enabled: bool) -> None:
        self._enabled = enabled

    def set_current_client_id(self, client_id: str | None) -> None:
        self._current_client_id = client_id

    def get_current_client_id(self) -> str | None:
        return self._current_client_id

    def _get_transport(self) -> BaseTransport:
        try:
            return self._transport_factory.get()
        except TransportFactoryError:
            return self._transport_factory.create(LATEST_PROTOCOL_VERSION)

    def get_response_waiter(self) -> ResponseWaiter:
        """Return the response waiter, building one on the transport's adapter if none was given."""
        if self._response_waiter is None:
            self._response_waiter = ResponseWaiter(
                adapter=self._get_transport().get_adapter(),
                default_timeout=self._default_timeout,
            )
        return self._response_waiter

    async def can_sample(self) -> bool:
        """Whether the current client declared the sampling capability."""
        if not self._enabled or self._current_client_id is None:
            return False
        adapter = self._get_transport().get_adapter()
        if adapter is None:
            return False
        return await adapter.has_sampling_capability(self._current_client_id)

    async def create_text_request(
        self,
        prompt: str,
        model_preferences: ModelPreferences | dict[str, Any] | None = None,
        system_prompt: str | None = None,
        max_tokens: int | None = None,
        timeout: float | None = None,
    ) -> SamplingResponse:
        """Ask the client to complete a single user prompt."""
        message = SamplingMessage(role="user", content=SamplingContent(type="text", text=prompt))
        return await self.create_request(
            [message],
            model_preferences=model_preferences,
            system_prompt=system_prompt,
            max_tokens=max_tokens,
            timeout=timeout,
        )

    async def create_request(
        self,
        messages: list[SamplingMessage],
        model_preferences: ModelPreferences | dict[str, Any] | None = None,
        system_prompt: str | None = None,
        max_tokens: int | None = None,
        timeout: float | None = None,
    ) -> SamplingResponse:
        """Send a ``sampling/createMessage`` request and wait for the client's answer.

        Args:
            messages: The conversation to complete
            model_preferences: Model selection hints for the client
            system_prompt: Optional system prompt
            max_tokens: Maximum number of tokens to sample
            timeout: Seconds to wait, None for the default timeout

        Returns:
            The parsed response. A malformed reply yields a response with
            ``stop_reason`` set to ``"error"`` instead of raising.

        Raises:
            SamplingUnavailableError: If the current client cannot sample
            SamplingTimeoutError: If the client did not answer in time
            McpError: If the client answered with an error
        """
        client_id = self._current_client_id
        if client_id is None or not await self.can_sample():
            raise SamplingUnavailableError("Sampling is not available for the current client")

        if isinstance(model_preferences, dict):
            model_preferences = ModelPreferences.model_validate(model_preferences)
        request = SamplingRequest(
            messages=messages,
            model_preferences=model_preferences,
            system_prompt=system_prompt,
            max_tokens=max_tokens,
        )
        message_id = f"sampling_{uuid4().hex}"

        transport = self._get_transport()
        self._ensure_handler_registered(transport)

        logger.debug(f"Sending sampling request {message_id} to client {client_id}")
        await transport.push_message(
            client_id,
            {
                "jsonrpc": JSONRPC_VERSION,
                "id": message_id,
                "method": SAMPLING_METHOD,
                "params": request.to_dict(),
            },
        )

        result = await self.get_response_waiter().wait_for_response(
            message_id, timeout if timeout is not None else self._default_timeout
        )
        return self._parse_result(result)

    @staticmethod
    def _parse_result(result: Any) -> SamplingResponse:
        if not isinstance(result, dict):
            logger.warning(f"Invalid sampling response format: {type(result).__name__}")
            return SamplingResponse.error("Error: Invalid response format")
        try:
            return SamplingResponse.model_validate(result)
        except ValidationError as e:
            logger.warning(f"Failed to parse sampling response: {e}")
            return SamplingResponse.error(f"Error: Failed to parse response - {e}")

    def _ensure_handler_registered(self, transport: BaseTransport) -> None:
        if self._handler_registered_on is transport:
            return
        transport.on_message(self.handle_incoming_message)
        self._handler_registered_on = transport

    async def handle_incoming_message(self, client_id: str, message: dict[str, Any]) -> None:
        """Forward replies from the current client to the response waiter."""
        if client_id != self._current_client_id or "id" not in message:
            return
        if "method" in message:
            return
        await self.get_response_waiter().handle_response(message)
