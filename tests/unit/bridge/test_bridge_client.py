"""Tests for the RPC bridge client."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from contextkit.bridge import BridgeClient, RpcError


@pytest.mark.asyncio
async def test_call_passes_method_and_args():
    transport = AsyncMock(return_value={"ok": True})
    client = BridgeClient(transport)

    result = await client.call("get_document_info", documentId="d1")

    assert result == {"ok": True}
    transport.assert_awaited_once_with("get_document_info", {"documentId": "d1"})


@pytest.mark.asyncio
async def test_transport_exception_wrapped_in_rpc_error():
    cause = ConnectionError("socket closed")
    client = BridgeClient(AsyncMock(side_effect=cause))

    with pytest.raises(RpcError) as excinfo:
        await client.call("get_all_documents")

    assert excinfo.value.method == "get_all_documents"
    assert excinfo.value.cause is cause
    assert excinfo.value.__cause__ is cause
    assert "get_all_documents" in str(excinfo.value)


@pytest.mark.asyncio
async def test_rpc_error_passes_through_unwrapped():
    inner = RpcError("inner", "backend said no")
    client = BridgeClient(AsyncMock(side_effect=inner))

    with pytest.raises(RpcError) as excinfo:
        await client.call("outer")

    assert excinfo.value is inner


@pytest.mark.asyncio
async def test_timeout_raises_rpc_error():
    async def never(method, args):
        await asyncio.sleep(10)

    client = BridgeClient(never, timeout=0.01)

    with pytest.raises(RpcError, match="timed out"):
        await client.call("analyze_conversation_context")


@pytest.mark.asyncio
async def test_no_timeout_by_default():
    assert BridgeClient(AsyncMock()).timeout is None


@pytest.mark.asyncio
async def test_cancellation_is_not_wrapped():
    started = asyncio.Event()

    async def blocking(method, args):
        started.set()
        await asyncio.sleep(10)

    client = BridgeClient(blocking)
    task = asyncio.create_task(client.call("slow"))
    await started.wait()
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
