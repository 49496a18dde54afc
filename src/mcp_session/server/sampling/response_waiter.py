"""Awaiting replies to sampling requests that may arrive in another process."""

import logging
import time
from collections.abc import Callable
from typing import Any

import anyio

from mcp_session.server.adapters.base import SseAdapter
from mcp_session.server.transports.base import invoke_handler
from mcp_session.shared.exceptions import McpError, SamplingTimeoutError
from mcp_session.types import INTERNAL_ERROR, ErrorData, RequestId

logger = logging.getLogger(__name__)

ResponseCallback = Callable[[Any], Any]


class ResponseWaiter:
    """Turns the reply to a server-initiated request into an awaitable result.

    Pending responses are kept in memory and, when an adapter is configured,
    in the shared store, so the reply may be delivered to any process. A
    waiter in the same process as the resolver is woken at once through an
    ``anyio.Event``; otherwise the store is polled every ``poll_interval``
    seconds. Message ids are compared as strings, so ``0`` and ``"0"`` name
    the same request.
    """

    def __init__(
        self,
        adapter: SseAdapter | None = None,
        default_timeout: float = 30,
        poll_interval: float = 0.05,
    ):
        self._adapter = adapter
        self.default_timeout = default_timeout
        self.poll_interval = poll_interval
        self._pending_responses: dict[str, dict[str, Any]] = {}
        self._response_callbacks: dict[str, ResponseCallback] = {}
        self._events: dict[str, anyio.Event] = {}

    async def wait_for_response(self, message_id: RequestId, timeout: float | None = None) -> Any:
        """Register a request and wait for its response.

        Args:
            message_id: The id of the request
            timeout: Seconds to wait, None for the default timeout

        Returns:
            The ``result`` of the reply

        Raises:
            McpError: If the client replied with an error
            SamplingTimeoutError: If no reply arrived in time
        """
        key = str(message_id)
        timeout = self.default_timeout if timeout is None else timeout
        started = time.monotonic()

        await self._register(key)
        logger.debug(f"Waiting for response {key} (timeout {timeout}s)")

        try:
            response = await self._poll(key, timeout, started)
        finally:
            with anyio.CancelScope(shield=True):
                await self._forget(key)

        logger.debug(f"Response {key} received after {time.monotonic() - started:.2f}s")
        if isinstance(response, McpError):
            raise response
        return response

    async def _register(self, key: str) -> None:
        record = self._pending_responses.get(key)
        if record is not None and self._is_resolved(record):
            return

        stored = await self._get_stored(key)
        if stored is not None and self._is_resolved(stored):
            self._pending_responses[key] = {**stored, "response": self._decode(stored)}
            return

        record = {"response": None, "timestamp": int(time.time())}
        self._pending_responses[key] = record
        if self._adapter is not None:
            try:
                await self._adapter.store_pending_response(key, record)
            except Exception as e:
                logger.warning(f"Failed to store pending response {key} in adapter: {e}")

    async def _poll(self, key: str, timeout: float, started: float) -> Any:
        event = self._events.setdefault(key, anyio.Event())
        while True:
            found, response = await self._check_for_response(key)
            if found:
                return response

            remaining = timeout - (time.monotonic() - started)
            if remaining <= 0:
                elapsed = time.monotonic() - started
                logger.error(f"Response timeout for {key} after {elapsed:.2f}s")
                raise SamplingTimeoutError(key, round(elapsed, 2))

            with anyio.move_on_after(min(self.poll_interval, remaining)):
                await event.wait()

    async def _forget(self, key: str) -> None:
        self._pending_responses.pop(key, None)
        self._events.pop(key, None)
        if self._adapter is not None:
            try:
                await self._adapter.remove_pending_response(key)
            except Exception as e:
                logger.warning(f"Failed to remove pending response {key} from adapter: {e}")

    async def _get_stored(self, key: str) -> dict[str, Any] | None:
        if self._adapter is None:
            return None
        try:
            return await self._adapter.get_pending_response(key)
        except Exception as e:
            logger.warning(f"Failed to check adapter for response {key}: {e}")
            return None

    async def _check_for_response(self, key: str) -> tuple[bool, Any]:
        record = self._pending_responses.get(key)
        if record is not None and self._is_resolved(record):
            return True, record["response"]

        stored = await self._get_stored(key)
        if stored is not None and self._is_resolved(stored):
            response = self._decode(stored)
            self._pending_responses[key] = {**stored, "response": response}
            return True, response
        return False, None

    @staticmethod
    def _is_resolved(record: dict[str, Any]) -> bool:
        return bool(record.get("resolved")) or record.get("response") is not None

    @staticmethod
    def _decode(record: dict[str, Any]) -> Any:
        """Rebuild the resolved value of a record read back from the store."""
        error = record.get("error")
        if error is not None:
            return McpError(ErrorData.model_validate(error))
        return record.get("response")

    async def handle_response(self, message: dict[str, Any]) -> None:
        """Resolve the pending request a reply belongs to.

        Replies whose id nobody waits for are ignored, so unrelated JSON-RPC
        traffic can be passed through safely.
        """
        message_id = message.get("id")
        if isinstance(message_id, bool) or not isinstance(message_id, str | int):
            return
        key = str(message_id)
        if not await self.is_waiting_for(key):
            return

        logger.debug(f"Handling response {key}")

        error = message.get("error")
        if error is not None:
            error = error if isinstance(error, dict) else {}
            code = error.get("code")
            error_data = ErrorData(
                code=code if isinstance(code, int) and not isinstance(code, bool) else INTERNAL_ERROR,
                message=str(error.get("message") or "Unknown error"),
            )
            value: Any = McpError(error_data)
            stored_fields: dict[str, Any] = {"response": None, "error": error_data.model_dump(exclude_none=True)}
        else:
            value = message.get("result")
            stored_fields = {"response": value}

        record = self._pending_responses.get(key)
        if record is not None:
            record.update(response=value, resolved=True)

        if self._adapter is not None:
            try:
                stored = await self._adapter.get_pending_response(key)
                if stored is not None:
                    stored.update(stored_fields, resolved=True)
                    await self._adapter.store_pending_response(key, stored)
            except Exception as e:
                logger.warning(f"Failed to update response {key} in adapter: {e}")

        if (event := self._events.get(key)) is not None:
            event.set()

        callback = self._response_callbacks.pop(key, None)
        if callback is not None:
            try:
                await invoke_handler(callback, value)
            except Exception as e:
                logger.error(f"Response callback error for {key}: {e}")

    def register_callback(self, message_id: RequestId, callback: ResponseCallback) -> None:
        """Register a callback run with the resolved value when the reply arrives."""
        self._response_callbacks[str(message_id)] = callback

    async def is_waiting_for(self, message_id: RequestId) -> bool:
        key = str(message_id)
        if key in self._pending_responses:
            return True
        if self._adapter is not None:
            try:
                return await self._adapter.has_pending_response(key)
            except Exception as e:
                logger.warning(f"Failed to check adapter for pending response {key}: {e}")
        return False

    def cleanup(self, max_age: float | None = None) -> int:
        """Drop in-memory pending responses older than ``max_age`` seconds.

        Catches waits abandoned without consuming their result. Defaults to
        twice the default timeout.

        Returns:
            int: The number of entries removed
        """
        now = int(time.time())
        max_age = self.default_timeout * 2 if max_age is None else max_age
        removed = 0
        for key, data in list(self._pending_responses.items()):
            age = now - int(data.get("timestamp", now))
            if age > max_age:
                del self._pending_responses[key]
                self._response_callbacks.pop(key, None)
                self._events.pop(key, None)
                removed += 1
                logger.warning(f"Cleaned up stale response {key} (age {age}s)")
        return removed
