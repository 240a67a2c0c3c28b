"""Remote session — the one websocket connection to Glimesh.

Learn: ChatSession is the seam the relay depends on. GlimeshSession is the
real implementation over `websockets`; tests drive the relay with an
in-memory fake. Nothing here reconnects: a closed or broken socket raises
SessionError and the process exits, leaving restarts to the supervisor.
"""

from abc import ABC, abstractmethod
from typing import AsyncIterator
from urllib.parse import urlencode

import structlog
import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from glimesh_bridge.errors import SessionError
from glimesh_bridge.models import ChatMessage
from glimesh_bridge.protocol import (
    PROTOCOL_VERSION,
    Frame,
    FrameError,
    decode_chat_message,
    decode_frame,
    heartbeat_frame,
    join_frame,
    send_message_frame,
    subscribe_frame,
)

logger = structlog.get_logger()


class ChatSession(ABC):
    """Interface the relay uses to talk to the chat service."""

    @abstractmethod
    def messages(self) -> AsyncIterator[ChatMessage]:
        """Yield chat messages until the connection ends (then raise)."""

    @abstractmethod
    async def send_heartbeat(self) -> None:
        """Send a keepalive frame. Raises SessionError on failure."""

    @abstractmethod
    async def send_chat_message(self, text: str) -> None:
        """Send text to the channel. Raises SessionError on failure."""

    @abstractmethod
    async def close(self) -> None:
        """Close the connection."""


class GlimeshSession(ChatSession):
    """Phoenix/Absinthe websocket session subscribed to one channel's chat."""

    def __init__(self, ws, channel_id: int):
        self._ws = ws
        self.channel_id = channel_id

    @classmethod
    async def connect(
        cls, socket_url: str, token: str, channel_id: int
    ) -> "GlimeshSession":
        """Open the websocket, then join and subscribe to the channel chat."""
        query = urlencode({"vsn": PROTOCOL_VERSION, "token": token})
        try:
            ws = await websockets.connect(f"{socket_url}?{query}")
        except (OSError, WebSocketException) as exc:
            raise SessionError(f"Could not connect to Glimesh websocket: {exc}") from exc

        session = cls(ws, channel_id)
        try:
            await session.join()
        except SessionError:
            await session.close()
            raise
        logger.info("glimesh.connected", channel_id=channel_id)
        return session

    async def join(self) -> None:
        """Send the control-channel join and the chat subscription document."""
        try:
            await self._write(join_frame())
            await self._write(subscribe_frame(self.channel_id))
        except (OSError, WebSocketException) as exc:
            raise SessionError(f"Could not send join message: {exc}") from exc

    async def messages(self) -> AsyncIterator[ChatMessage]:
        try:
            async for raw in self._ws:
                logger.debug("glimesh.frame_received", raw=raw)
                if not isinstance(raw, str):
                    continue
                try:
                    frame = decode_frame(raw)
                    if not frame.is_push:
                        continue
                    message = decode_chat_message(frame)
                except FrameError as exc:
                    logger.error("glimesh.decode_failed", error=str(exc))
                    continue
                yield message
        except ConnectionClosed as exc:
            raise SessionError(f"Could not read from websocket: {exc}") from exc
        raise SessionError("Connection was closed by remote")

    async def send_heartbeat(self) -> None:
        try:
            await self._write(heartbeat_frame())
        except (OSError, WebSocketException) as exc:
            raise SessionError(f"Could not send heartbeat: {exc}") from exc

    async def send_chat_message(self, text: str) -> None:
        try:
            data = send_message_frame(self.channel_id, text).encode()
        except (TypeError, ValueError) as exc:
            raise SessionError(f"Could not encode chat message: {exc}") from exc
        logger.debug("glimesh.frame_sending", raw=data)
        try:
            await self._ws.send(data)
        except (OSError, WebSocketException) as exc:
            raise SessionError(f"Could not send chat message: {exc}") from exc

    async def close(self) -> None:
        try:
            await self._ws.close(code=1001, reason="app was closed")
        except (OSError, WebSocketException) as exc:
            logger.warning("glimesh.close_failed", error=str(exc))

    async def _write(self, frame: Frame) -> None:
        await self._ws.send(frame.encode())
