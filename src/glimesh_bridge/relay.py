"""Relay loop — routes chat between the Glimesh session and the store.

Learn: The relay waits on three sources at once and reacts to whichever is
ready, one reaction at a time:

1. Heartbeat deadline → send a heartbeat (failure is fatal)
2. Chat message from the socket → publish "latest", append + persist history
3. RPC request from the store subscription → send it as a chat message

A background reader task pulls messages off the socket into a queue of size
one, so a slow relay stalls the socket reader instead of dropping messages.
Because reactions never overlap, the history needs no lock.

Nothing here has a timeout: a stalled store or socket call stalls the
relay. Recovery is a process restart.
"""

import asyncio
from typing import Any, AsyncIterator

import structlog

from glimesh_bridge.errors import SessionError, StoreError
from glimesh_bridge.models import ChatHistory, ChatMessage, KeyEvent, parse_history
from glimesh_bridge.session import ChatSession
from glimesh_bridge.store import KeySubscription, KeyValueStore, StoreKeys

logger = structlog.get_logger()

HEARTBEAT_INTERVAL = 30.0


async def load_history(
    store: KeyValueStore, key: str, capacity: int
) -> ChatHistory:
    """Read the persisted history, or start (and persist) an empty one."""
    messages = None
    try:
        snapshot = await store.get_json(key)
        if snapshot is not None:
            messages = parse_history(snapshot)
    except (StoreError, ValueError) as exc:
        logger.warning("relay.history_unreadable", key=key, error=str(exc))

    if messages is None:
        history = ChatHistory(capacity)
        try:
            await store.set_json(key, history.dump())
        except StoreError as exc:
            logger.error("relay.history_write_failed", key=key, error=str(exc))
        logger.info("relay.history_initialized", key=key)
        return history

    history = ChatHistory(capacity, messages)
    logger.info("relay.history_loaded", key=key, size=len(history))
    return history


async def _next(iterator: AsyncIterator[Any]) -> Any:
    """Next item, or None once the iterator is exhausted."""
    try:
        return await iterator.__anext__()
    except StopAsyncIteration:
        return None


class Relay:
    """Single-instance event loop owning the store, session and history."""

    def __init__(
        self,
        store: KeyValueStore,
        session: ChatSession,
        requests: KeySubscription,
        keys: StoreKeys,
        history: ChatHistory,
        heartbeat_interval: float = HEARTBEAT_INTERVAL,
    ):
        self.store = store
        self.session = session
        self.requests = requests
        self.keys = keys
        self.history = history
        self.heartbeat_interval = heartbeat_interval
        self._inbox: asyncio.Queue[ChatMessage] = asyncio.Queue(maxsize=1)

    async def run(self) -> None:
        """Run until a fatal error (raised) or cancellation."""
        loop = asyncio.get_running_loop()
        reader = asyncio.create_task(self._read_messages(), name="glimesh-reader")
        request_iter = self.requests.__aiter__()
        next_beat = loop.time() + self.heartbeat_interval
        waiting: dict[str, asyncio.Task] = {}

        try:
            while True:
                if "heartbeat" not in waiting:
                    delay = max(0.0, next_beat - loop.time())
                    waiting["heartbeat"] = asyncio.create_task(asyncio.sleep(delay))
                if "message" not in waiting:
                    waiting["message"] = asyncio.create_task(self._inbox.get())
                if "request" not in waiting:
                    waiting["request"] = asyncio.create_task(_next(request_iter))

                done, _ = await asyncio.wait(
                    [reader, *waiting.values()],
                    return_when=asyncio.FIRST_COMPLETED,
                )

                if reader in done:
                    # Re-raises the reader's SessionError
                    reader.result()
                    raise SessionError("Connection was closed by remote")

                # Heartbeat first so a message burst cannot starve it
                for source in ("heartbeat", "message", "request"):
                    task = waiting.get(source)
                    if task is None or task not in done:
                        continue
                    del waiting[source]
                    if source == "heartbeat":
                        await self.on_heartbeat()
                        next_beat = self._advance(next_beat, loop.time())
                    elif source == "message":
                        await self.on_chat_message(task.result())
                    else:
                        event = task.result()
                        if event is None:
                            raise StoreError(
                                f"Subscription to {self.keys.send_chat} ended"
                            )
                        await self.on_request(event)
        finally:
            pending = [reader, *waiting.values()]
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

    def _advance(self, deadline: float, now: float) -> float:
        """Next deadline on the fixed schedule; missed ticks are dropped."""
        deadline += self.heartbeat_interval
        while deadline <= now:
            deadline += self.heartbeat_interval
        return deadline

    async def _read_messages(self) -> None:
        async for message in self.session.messages():
            await self._inbox.put(message)

    # ─── Reactions ────────────────────────────────────────

    async def on_heartbeat(self) -> None:
        await self.session.send_heartbeat()
        logger.debug("relay.heartbeat_sent")

    async def on_chat_message(self, message: ChatMessage) -> None:
        logger.debug("relay.chat_message", user=message.author)
        await self._write(self.keys.chat_event, message.model_dump())
        self.history.append(message)
        await self._write(self.keys.chat_history, self.history.dump())

    async def on_request(self, event: KeyEvent) -> None:
        logger.debug("relay.rpc_request", key=event.key)
        try:
            await self.session.send_chat_message(event.value)
        except SessionError as exc:
            logger.error("relay.send_failed", error=str(exc))
            return
        logger.debug("relay.message_sent")

    async def _write(self, key: str, value: Any) -> None:
        try:
            await self.store.set_json(key, value)
        except StoreError as exc:
            logger.error("relay.store_write_failed", key=key, error=str(exc))
