import asyncio
import json

import pytest

from services.realtime.correlation import (
    CorrelationGateway,
    CorrelationTimeoutError,
    NoDisplayConnectedError,
    RemoteExecutionError,
)


class FakeChannel:
    """Records broadcasts instead of sending them."""

    def __init__(self, clients=1):
        self.client_count = clients
        self.sent = []

    async def broadcast(self, event, data):
        self.sent.append((event, data))
        return self.client_count


def _result_frame(request_id, **data):
    return json.dumps({"event": "canvas:result", "data": {"requestId": request_id, **data}})


def test_no_display_rejects_without_broadcasting():
    channel = FakeChannel(clients=0)
    gateway = CorrelationGateway(channel)

    with pytest.raises(NoDisplayConnectedError):
        asyncio.run(gateway.send_and_wait("canvas:execute", {"code": "x"}, timeout=1))

    assert channel.sent == []
    assert gateway.pending_count == 0


def test_response_resolves_matching_request():
    channel = FakeChannel()
    gateway = CorrelationGateway(channel)

    async def scenario():
        task = asyncio.create_task(gateway.send_and_wait("canvas:execute", {"code": "x"}, timeout=5))
        await asyncio.sleep(0)
        event, data = channel.sent[0]
        assert event == "canvas:execute"
        assert data["code"] == "x"
        assert gateway.handle_message(_result_frame(data["requestId"], dataUrl="data:image/png;base64,AAAA"))
        return await task

    result = asyncio.run(scenario())

    assert result["dataUrl"] == "data:image/png;base64,AAAA"
    assert gateway.pending_count == 0


def test_error_payload_rejects():
    channel = FakeChannel()
    gateway = CorrelationGateway(channel)

    async def scenario():
        task = asyncio.create_task(gateway.send_and_wait("canvas:execute", {"code": "boom"}, timeout=5))
        await asyncio.sleep(0)
        request_id = channel.sent[0][1]["requestId"]
        gateway.handle_message(_result_frame(request_id, error="ReferenceError: foo is not defined"))
        with pytest.raises(RemoteExecutionError, match="ReferenceError"):
            await task

    asyncio.run(scenario())
    assert gateway.pending_count == 0


def test_timeout_fires_after_deadline_and_late_reply_is_ignored():
    channel = FakeChannel()
    gateway = CorrelationGateway(channel)

    async def scenario():
        task = asyncio.create_task(gateway.send_and_wait("canvas:execute", {}, timeout=0.2))
        await asyncio.sleep(0.05)
        assert not task.done()
        with pytest.raises(CorrelationTimeoutError, match="timed out"):
            await task
        request_id = channel.sent[0][1]["requestId"]
        return gateway.handle_message(_result_frame(request_id, dataUrl="late"))

    assert asyncio.run(scenario()) is False
    assert gateway.pending_count == 0


def test_concurrent_requests_are_independent():
    channel = FakeChannel()
    gateway = CorrelationGateway(channel)

    async def scenario():
        first = asyncio.create_task(gateway.send_and_wait("canvas:execute", {"n": 1}, timeout=5))
        second = asyncio.create_task(gateway.send_and_wait("canvas:execute", {"n": 2}, timeout=5))
        await asyncio.sleep(0)
        ids = {data["n"]: data["requestId"] for _, data in channel.sent}
        assert ids[1] != ids[2]
        assert gateway.pending_count == 2
        gateway.handle_message(_result_frame(ids[2], dataUrl="two"))
        gateway.handle_message(_result_frame(ids[1], dataUrl="one"))
        return await first, await second

    first, second = asyncio.run(scenario())

    assert first["dataUrl"] == "one"
    assert second["dataUrl"] == "two"


def test_duplicate_response_only_counts_once():
    channel = FakeChannel()
    gateway = CorrelationGateway(channel)

    async def scenario():
        task = asyncio.create_task(gateway.send_and_wait("canvas:execute", {}, timeout=5))
        await asyncio.sleep(0)
        request_id = channel.sent[0][1]["requestId"]
        assert gateway.resolve(request_id, {"dataUrl": "first"}) is True
        assert gateway.resolve(request_id, {"dataUrl": "second"}) is False
        return await task

    assert asyncio.run(scenario())["dataUrl"] == "first"


@pytest.mark.parametrize(
    "frame",
    [
        "not json",
        json.dumps(["canvas:result"]),
        json.dumps({"event": "screenshot:added", "data": {"requestId": "x"}}),
        json.dumps({"event": "canvas:result", "data": "nope"}),
        json.dumps({"event": "canvas:result", "data": {"dataUrl": "no id"}}),
        _result_frame("unknown-id", dataUrl="x"),
    ],
)
def test_unmatched_frames_are_ignored(frame):
    gateway = CorrelationGateway(FakeChannel())

    assert gateway.handle_message(frame) is False


def test_broadcast_failure_discards_pending_request():
    class BrokenChannel(FakeChannel):
        async def broadcast(self, event, data):
            raise RuntimeError("socket gone")

    gateway = CorrelationGateway(BrokenChannel())

    with pytest.raises(RuntimeError):
        asyncio.run(gateway.send_and_wait("canvas:execute", {}, timeout=5))
    assert gateway.pending_count == 0
