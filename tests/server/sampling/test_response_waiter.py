import time
from unittest.mock import AsyncMock

import anyio
import pytest

from mcp_session.server.adapters import InMemoryAdapter
from mcp_session.server.sampling import ResponseWaiter
from mcp_session.shared.exceptions import AdapterError, McpError, SamplingTimeoutError
from mcp_session.types import INTERNAL_ERROR


@pytest.mark.anyio
async def test_wait_and_resolve(adapter):
    """A reply handled while the wait is running resolves it."""
    waiter = ResponseWaiter(adapter=adapter, default_timeout=5)
    results = []

    async def wait():
        results.append(await waiter.wait_for_response("m1"))

    with anyio.fail_after(5):
        async with anyio.create_task_group() as tg:
            tg.start_soon(wait)
            await anyio.sleep(0.1)
            assert await waiter.is_waiting_for("m1")
            await waiter.handle_response({"jsonrpc": "2.0", "id": "m1", "result": {"ok": True}})

    assert results == [{"ok": True}]
    assert not await waiter.is_waiting_for("m1")
    assert not await adapter.has_pending_response("m1")


@pytest.mark.anyio
async def test_reply_from_another_process(adapter):
    """Two waiters sharing a store stand in for two server processes."""
    waiting = ResponseWaiter(adapter=adapter, default_timeout=5, poll_interval=0.01)
    resolving = ResponseWaiter(adapter=adapter, default_timeout=5)
    results = []

    async def wait():
        results.append(await waiting.wait_for_response("m1"))

    with anyio.fail_after(5):
        async with anyio.create_task_group() as tg:
            tg.start_soon(wait)
            await anyio.sleep(0.1)
            assert await resolving.is_waiting_for("m1")
            await resolving.handle_response({"jsonrpc": "2.0", "id": "m1", "result": "done"})

    assert results == ["done"]


@pytest.mark.anyio
async def test_timeout(memory_adapter):
    waiter = ResponseWaiter(adapter=memory_adapter)

    started = time.monotonic()
    with pytest.raises(SamplingTimeoutError) as exc_info:
        await waiter.wait_for_response("m1", timeout=0.2)

    assert time.monotonic() - started >= 0.2
    assert exc_info.value.message_id == "m1"
    assert exc_info.value.elapsed >= 0.2
    assert "timed out" in str(exc_info.value)
    assert not await waiter.is_waiting_for("m1")
    assert not await memory_adapter.has_pending_response("m1")


@pytest.mark.anyio
async def test_error_reply_is_raised(memory_adapter):
    waiter = ResponseWaiter(adapter=memory_adapter, default_timeout=5)

    # The pending record was stored by a waiter in another process
    await memory_adapter.store_pending_response("m1", {"response": None, "timestamp": int(time.time())})
    await waiter.handle_response({"jsonrpc": "2.0", "id": "m1", "error": {"code": -1, "message": "boom"}})

    with anyio.fail_after(5):
        with pytest.raises(McpError, match="boom") as exc_info:
            await waiter.wait_for_response("m1")
    assert exc_info.value.error.code == -1
    assert not await memory_adapter.has_pending_response("m1")


@pytest.mark.anyio
async def test_error_reply_defaults():
    waiter = ResponseWaiter(default_timeout=5)

    async def reply():
        await anyio.sleep(0.05)
        await waiter.handle_response({"jsonrpc": "2.0", "id": "m1", "error": "not an object"})

    with anyio.fail_after(5):
        async with anyio.create_task_group() as tg:
            tg.start_soon(reply)
            with pytest.raises(McpError, match="Unknown error") as exc_info:
                await waiter.wait_for_response("m1")
    assert exc_info.value.error.code == INTERNAL_ERROR


@pytest.mark.anyio
async def test_null_result_resolves():
    waiter = ResponseWaiter(default_timeout=5)
    results = []

    async def wait():
        results.append(await waiter.wait_for_response("m1"))

    with anyio.fail_after(5):
        async with anyio.create_task_group() as tg:
            tg.start_soon(wait)
            await anyio.sleep(0.05)
            await waiter.handle_response({"jsonrpc": "2.0", "id": "m1", "result": None})

    assert results == [None]


@pytest.mark.anyio
async def test_resolved_record_is_kept(memory_adapter):
    """A reply stored before the wait began is returned at once."""
    waiter = ResponseWaiter(adapter=memory_adapter)
    await memory_adapter.store_pending_response(
        "m1", {"response": {"early": True}, "timestamp": int(time.time()), "resolved": True}
    )

    with anyio.fail_after(1):
        assert await waiter.wait_for_response("m1") == {"early": True}


@pytest.mark.anyio
async def test_ids_are_compared_as_strings():
    waiter = ResponseWaiter(default_timeout=5)
    results = []

    async def wait():
        results.append(await waiter.wait_for_response(0))

    with anyio.fail_after(5):
        async with anyio.create_task_group() as tg:
            tg.start_soon(wait)
            await anyio.sleep(0.05)
            assert await waiter.is_waiting_for("0")
            await waiter.handle_response({"jsonrpc": "2.0", "id": "0", "result": "zero"})

    assert results == ["zero"]


@pytest.mark.anyio
async def test_unrelated_message_is_ignored(memory_adapter):
    waiter = ResponseWaiter(adapter=memory_adapter)

    await waiter.handle_response({"jsonrpc": "2.0", "id": "unknown", "result": {}})
    await waiter.handle_response({"jsonrpc": "2.0", "id": True, "result": {}})
    await waiter.handle_response({"jsonrpc": "2.0", "method": "notifications/message"})

    assert waiter._pending_responses == {}
    assert not await memory_adapter.has_pending_response("unknown")


@pytest.mark.anyio
async def test_callback_receives_value():
    waiter = ResponseWaiter(default_timeout=5)
    received = []
    waiter.register_callback("m1", received.append)

    async def failing_callback(value):
        raise RuntimeError("callback failed")

    waiter.register_callback("m2", failing_callback)

    with anyio.fail_after(5):
        async with anyio.create_task_group() as tg:
            tg.start_soon(waiter.wait_for_response, "m1")
            tg.start_soon(waiter.wait_for_response, "m2")
            await anyio.sleep(0.05)
            await waiter.handle_response({"jsonrpc": "2.0", "id": "m1", "result": "one"})
            await waiter.handle_response({"jsonrpc": "2.0", "id": "m2", "result": "two"})

    assert received == ["one"]
    assert waiter._response_callbacks == {}


@pytest.mark.anyio
async def test_cancelled_wait_removes_record(memory_adapter):
    waiter = ResponseWaiter(adapter=memory_adapter)

    async with anyio.create_task_group() as tg:
        tg.start_soon(waiter.wait_for_response, "m1")
        await anyio.sleep(0.05)
        assert await memory_adapter.has_pending_response("m1")
        tg.cancel_scope.cancel()

    assert not await waiter.is_waiting_for("m1")
    assert not await memory_adapter.has_pending_response("m1")


@pytest.mark.anyio
async def test_adapter_failures_degrade_to_memory():
    adapter = AsyncMock()
    error = AdapterError("store down")
    for name in (
        "store_pending_response",
        "get_pending_response",
        "remove_pending_response",
        "has_pending_response",
    ):
        getattr(adapter, name).side_effect = error
    waiter = ResponseWaiter(adapter=adapter, default_timeout=5)
    results = []

    async def wait():
        results.append(await waiter.wait_for_response("m1"))

    with anyio.fail_after(5):
        async with anyio.create_task_group() as tg:
            tg.start_soon(wait)
            await anyio.sleep(0.05)
            await waiter.handle_response({"jsonrpc": "2.0", "id": "m1", "result": "ok"})

    assert results == ["ok"]
    assert not await waiter.is_waiting_for("unknown")


def test_cleanup_sweeps_stale_entries():
    waiter = ResponseWaiter(default_timeout=30)
    now = int(time.time())
    for message_id, age in (("old", 100), ("stale", 65), ("fresh", 10)):
        waiter._pending_responses[message_id] = {"response": None, "timestamp": now - age}
        waiter.register_callback(message_id, lambda value: None)

    assert waiter.cleanup(max_age=60) == 2
    assert list(waiter._pending_responses) == ["fresh"]
    assert list(waiter._response_callbacks) == ["fresh"]


def test_cleanup_defaults_to_twice_the_timeout():
    waiter = ResponseWaiter(default_timeout=30)
    now = int(time.time())
    waiter._pending_responses["a"] = {"response": None, "timestamp": now - 65}
    waiter._pending_responses["b"] = {"response": None, "timestamp": now - 55}

    assert waiter.cleanup() == 1
    assert list(waiter._pending_responses) == ["b"]
