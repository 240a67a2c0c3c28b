"""GlimeshSession tests over a fake websocket connection."""

import json
from unittest.mock import AsyncMock, patch

import pytest
from structlog.testing import capture_logs
from websockets.exceptions import ConnectionClosedError

from conftest import FakeWebSocket, push_frame
from glimesh_bridge.errors import SessionError
from glimesh_bridge.session import GlimeshSession


async def _collect(session):
    received = []
    with pytest.raises(SessionError):
        async for message in session.messages():
            received.append(message)
    return received


@pytest.mark.asyncio
async def test_join_sends_join_then_subscribe():
    ws = FakeWebSocket()
    session = GlimeshSession(ws, channel_id=10)
    await session.join()
    assert ws.sent[0] == '["1","1","__absinthe__:control","phx_join",{}]'
    subscribe = json.loads(ws.sent[1])
    assert subscribe[3] == "doc"
    assert "chatMessage(channelId: 10)" in subscribe[4]["query"]


@pytest.mark.asyncio
async def test_join_failure_is_session_error():
    ws = FakeWebSocket()
    ws.send_error = ConnectionResetError("reset")
    session = GlimeshSession(ws, channel_id=10)
    with pytest.raises(SessionError, match="join"):
        await session.join()


@pytest.mark.asyncio
async def test_connect_builds_url_and_joins():
    ws = FakeWebSocket()
    with patch(
        "glimesh_bridge.session.websockets.connect", new=AsyncMock(return_value=ws)
    ) as connect:
        session = await GlimeshSession.connect("wss://example.test/socket", "tok en", 5)
    url = connect.await_args.args[0]
    assert url == "wss://example.test/socket?vsn=2.0.0&token=tok+en"
    assert session.channel_id == 5
    assert len(ws.sent) == 2


@pytest.mark.asyncio
async def test_connect_failure_is_session_error():
    with patch(
        "glimesh_bridge.session.websockets.connect",
        new=AsyncMock(side_effect=OSError("refused")),
    ):
        with pytest.raises(SessionError, match="Could not connect"):
            await GlimeshSession.connect("wss://example.test/socket", "t", 5)


@pytest.mark.asyncio
async def test_messages_yields_only_data_pushes():
    ws = FakeWebSocket([
        json.dumps(["1", "1", "__absinthe__:control", "phx_reply", {"status": "ok", "response": {}}]),
        push_frame("first", "alice"),
        json.dumps(["1", "3", "phoenix", "phx_reply", {"status": "ok", "response": {}}]),
        push_frame("second", "bob"),
        None,
    ])
    received = await _collect(GlimeshSession(ws, channel_id=1))
    assert [(m.author, m.text) for m in received] == [("alice", "first"), ("bob", "second")]


@pytest.mark.asyncio
async def test_messages_skips_undecodable_frames():
    ws = FakeWebSocket([
        "garbage{",
        json.dumps([None, None, "t", "subscription:data", {"result": {"data": {}}}]),
        b"\x00binary",
        push_frame("still here"),
        None,
    ])
    with capture_logs() as logs:
        received = await _collect(GlimeshSession(ws, channel_id=1))
    assert [m.text for m in received] == ["still here"]
    errors = [e for e in logs if e["event"] == "glimesh.decode_failed"]
    assert len(errors) == 2


@pytest.mark.asyncio
async def test_remote_close_is_fatal():
    ws = FakeWebSocket([None])
    with pytest.raises(SessionError, match="closed by remote"):
        async for _ in GlimeshSession(ws, channel_id=1).messages():
            pass


@pytest.mark.asyncio
async def test_read_error_is_fatal():
    ws = FakeWebSocket([None], error=ConnectionClosedError(None, None))
    with pytest.raises(SessionError, match="Could not read"):
        async for _ in GlimeshSession(ws, channel_id=1).messages():
            pass


@pytest.mark.asyncio
async def test_send_heartbeat():
    ws = FakeWebSocket()
    await GlimeshSession(ws, channel_id=1).send_heartbeat()
    assert ws.sent == ['["1","3","phoenix","heartbeat",{}]']


@pytest.mark.asyncio
async def test_send_heartbeat_failure_is_session_error():
    ws = FakeWebSocket()
    ws.send_error = ConnectionClosedError(None, None)
    with pytest.raises(SessionError, match="heartbeat"):
        await GlimeshSession(ws, channel_id=1).send_heartbeat()


@pytest.mark.asyncio
async def test_send_chat_message_writes_mutation():
    ws = FakeWebSocket()
    await GlimeshSession(ws, channel_id=77).send_chat_message(' say "hi" ')
    frame = json.loads(ws.sent[0])
    assert frame[:4] == ["1", "4", "__absinthe__:control", "doc"]
    assert 'message: {message: "say \\"hi\\""}' in frame[4]["query"]
    assert "channelId: 77" in frame[4]["query"]


@pytest.mark.asyncio
async def test_send_chat_message_failure_is_session_error():
    ws = FakeWebSocket()
    ws.send_error = ConnectionResetError("reset")
    with pytest.raises(SessionError, match="Could not send chat message"):
        await GlimeshSession(ws, channel_id=1).send_chat_message("hi")


@pytest.mark.asyncio
async def test_close_uses_going_away():
    ws = FakeWebSocket()
    await GlimeshSession(ws, channel_id=1).close()
    assert ws.close_args == (1001, "app was closed")
