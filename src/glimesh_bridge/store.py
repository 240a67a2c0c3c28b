"""Key-value store — Redis GET/SET with JSON values plus key pub/sub.

Learn: The bridge treats Redis like a small observable key-value store:

- set_json() writes the key AND publishes the same payload on a channel
  named after the key, so every write is seen by subscribers.
- publish() is a pub/sub-only write, used for RPC keys (e.g.
  "glimesh/@send-chat-message") which carry a command, not state.
- subscribe_key() listens on the channel named after a key.

Redis pub/sub is fire-and-forget: if the relay is not subscribed when an
RPC write happens, that request is lost. The persisted keys are the durable
part.

Channel naming: the key itself, with the configured prefix.
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, AsyncIterator, Optional

import redis.asyncio as aioredis
import structlog
from redis.exceptions import RedisError

from glimesh_bridge.errors import StoreError
from glimesh_bridge.models import KeyEvent

logger = structlog.get_logger()


@dataclass(frozen=True)
class StoreKeys:
    """Key layout under the configured namespace prefix."""

    chat_event: str
    send_chat: str
    chat_history: str

    @classmethod
    def from_prefix(cls, prefix: str) -> "StoreKeys":
        return cls(
            chat_event=f"{prefix}ev/chat-message",
            send_chat=f"{prefix}@send-chat-message",
            chat_history=f"{prefix}chat-history",
        )


class KeySubscription(ABC):
    """Async iterator of writes to one key."""

    @abstractmethod
    def __aiter__(self) -> AsyncIterator[KeyEvent]:
        ...

    @abstractmethod
    async def close(self) -> None:
        ...


class KeyValueStore(ABC):
    """Interface the relay uses to talk to the store."""

    @abstractmethod
    async def get_json(self, key: str) -> Any:
        """Return the decoded value, or None if the key does not exist."""

    @abstractmethod
    async def set_json(self, key: str, value: Any) -> None:
        """Encode and write value, notifying subscribers."""

    @abstractmethod
    async def publish(self, key: str, value: str) -> None:
        """Notify subscribers of key without persisting anything."""

    @abstractmethod
    async def subscribe_key(self, key: str) -> KeySubscription:
        """Subscribe to writes on key."""

    @abstractmethod
    async def close(self) -> None:
        ...


# ─── Redis ────────────────────────────────────────────────


class RedisSubscription(KeySubscription):
    def __init__(self, pubsub, key: str):
        self._pubsub = pubsub
        self.key = key

    def __aiter__(self) -> AsyncIterator[KeyEvent]:
        return self._listen()

    async def _listen(self) -> AsyncIterator[KeyEvent]:
        try:
            async for message in self._pubsub.listen():
                if message["type"] == "message":
                    yield KeyEvent(key=message["channel"], value=message["data"])
        except RedisError as exc:
            raise StoreError(f"Subscription to {self.key} failed: {exc}") from exc
        raise StoreError(f"Subscription to {self.key} was closed")

    async def close(self) -> None:
        try:
            await self._pubsub.unsubscribe(self.key)
            await self._pubsub.close()
        except RedisError as exc:
            logger.warning("store.unsubscribe_failed", key=self.key, error=str(exc))


class RedisStore(KeyValueStore):
    def __init__(self, redis: aioredis.Redis):
        self._redis = redis

    @classmethod
    async def connect(cls, url: str, password: Optional[str] = None) -> "RedisStore":
        """Create the client and verify the connection."""
        try:
            redis = aioredis.from_url(
                url,
                password=password,
                encoding="utf-8",
                decode_responses=True,
            )
            await redis.ping()
        except (RedisError, ValueError) as exc:
            raise StoreError(f"Connection to store failed: {exc}") from exc
        return cls(redis)

    async def get_json(self, key: str) -> Any:
        try:
            raw = await self._redis.get(key)
        except RedisError as exc:
            raise StoreError(f"Could not read {key}: {exc}") from exc
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as exc:
            raise StoreError(f"Could not decode {key}: {exc}") from exc

    async def set_json(self, key: str, value: Any) -> None:
        try:
            payload = json.dumps(value)
        except (TypeError, ValueError) as exc:
            raise StoreError(f"Could not encode value for {key}: {exc}") from exc
        try:
            await self._redis.set(key, payload)
            await self._redis.publish(key, payload)
        except RedisError as exc:
            raise StoreError(f"Could not write {key}: {exc}") from exc

    async def publish(self, key: str, value: str) -> None:
        try:
            await self._redis.publish(key, value)
        except RedisError as exc:
            raise StoreError(f"Could not publish to {key}: {exc}") from exc

    async def subscribe_key(self, key: str) -> RedisSubscription:
        pubsub = self._redis.pubsub()
        try:
            await pubsub.subscribe(key)
        except RedisError as exc:
            raise StoreError(f"Could not subscribe to {key}: {exc}") from exc
        logger.debug("store.subscribed", key=key)
        return RedisSubscription(pubsub, key)

    async def close(self) -> None:
        await self._redis.close()
