"""Test fixtures — in-memory fakes for the store, session and websocket.

Learn: The relay only talks to KeyValueStore and ChatSession, so tests
swap in fakes that record every write and let the test push inbound
traffic through asyncio queues. No Redis, no network.
"""

import asyncio
import json

import pytest
import structlog

from glimesh_bridge.errors import SessionError, StoreError
from glimesh_bridge.models import ChatMessage, KeyEvent
from glimesh_bridge.session import ChatSession
from glimesh_bridge.store import KeySubscription, KeyValueStore, StoreKeys


# ─── Store fake ─────────────────────────────────────────────


class FakeSubscription(KeySubscription):
    """Queue-backed subscription. Put None to end it."""

    def __init__(self, key: str = ""):
        self.key = key
        self.events: asyncio.Queue = asyncio.Queue()
        self.closed = False

    def __aiter__(self):
        return self._listen()

    async def _listen(self):
        while True:
            event = await self.events.get()
            if event is None:
                return
            yield event

    async def close(self):
        self.closed = True


class FakeStore(KeyValueStore):
    def __init__(self):
        self.data: dict[str, str] = {}
        self.writes: list[tuple[str, object]] = []
        self.published: list[tuple[str, str]] = []
        self.fail_keys: set[str] = set()
        self.subscription = FakeSubscription()
        self.closed = False

    def writes_to(self, key: str) -> list:
        return [value for k, value in self.writes if k == key]

    async def get_json(self, key):
        raw = self.data.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as exc:
            raise StoreError(f"Could not decode {key}") from exc

    async def set_json(self, key, value):
        await asyncio.sleep(0)
        if key in self.fail_keys:
            raise StoreError(f"Could not write {key}")
        payload = json.dumps(value)
        self.data[key] = payload
        self.writes.append((key, json.loads(payload)))

    async def publish(self, key, value):
        self.published.append((key, value))
        if key == self.subscription.key:
            await self.subscription.events.put(KeyEvent(key=key, value=value))

    async def subscribe_key(self, key):
        self.subscription.key = key
        return self.subscription

    async def close(self):
        self.closed = True


# ─── Session fake ───────────────────────────────────────────


class FakeSession(ChatSession):
    """Records outgoing traffic. Put None on `incoming` to close the socket."""

    def __init__(self):
        self.incoming: asyncio.Queue = asyncio.Queue()
        self.heartbeats: list[float] = []
        self.sent: list[str] = []
        self.fail_heartbeat = False
        self.fail_send = False
        self.closed = False

    async def messages(self):
        while True:
            message = await self.incoming.get()
            if message is None:
                raise SessionError("Connection was closed by remote")
            yield message

    async def send_heartbeat(self):
        if self.fail_heartbeat:
            raise SessionError("Could not send heartbeat")
        self.heartbeats.append(asyncio.get_running_loop().time())

    async def send_chat_message(self, text):
        if self.fail_send:
            raise SessionError("Could not send chat message")
        self.sent.append(text)

    async def close(self):
        self.closed = True


# ─── Websocket fake (for GlimeshSession) ────────────────────


class FakeWebSocket:
    """Stands in for a websockets client connection."""

    def __init__(self, frames=(), error=None):
        self.frames: asyncio.Queue = asyncio.Queue()
        for frame in frames:
            self.frames.put_nowait(frame)
        self.error = error
        self.sent: list[str] = []
        self.send_error = None
        self.close_args = None

    def __aiter__(self):
        return self._iter()

    async def _iter(self):
        while True:
            frame = await self.frames.get()
            if frame is None:
                if self.error is not None:
                    raise self.error
                return
            yield frame

    async def send(self, data):
        if self.send_error is not None:
            raise self.send_error
        self.sent.append(data)

    async def close(self, code=1000, reason=""):
        self.close_args = (code, reason)


# ─── Helpers ────────────────────────────────────────────────


def chat(text: str, author: str = "viewer") -> ChatMessage:
    return ChatMessage.create(text, author)


def push_frame(text: str, author: str = "viewer") -> str:
    """A subscription data push as Glimesh sends it."""
    return json.dumps([
        None,
        None,
        "__absinthe__:doc:-576460752303423390:ABC",
        "subscription:data",
        {
            "result": {
                "data": {
                    "chatMessage": {"message": text, "user": {"username": author}},
                },
            },
            "subscriptionId": "__absinthe__:doc:-576460752303423390:ABC",
        },
    ])


async def wait_until(predicate, timeout: float = 2.0):
    """Poll predicate until true, yielding to the event loop."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.001)


@pytest.fixture()
def keys():
    return StoreKeys.from_prefix("glimesh/")


@pytest.fixture()
def store():
    return FakeStore()


@pytest.fixture()
def session():
    return FakeSession()


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """No GLIMESH_BRIDGE_* leakage from the host, no leftover log config."""
    import os

    for name in list(os.environ):
        if name.startswith("GLIMESH_BRIDGE_"):
            monkeypatch.delenv(name)
    yield
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()
