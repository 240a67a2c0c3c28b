"""Glimesh websocket protocol — Phoenix channel frames carrying Absinthe GraphQL.

Learn: Every frame, in both directions, is a 5-element JSON array:

    [join_ref, ref, topic, event, payload]

Replies and other control traffic carry the refs of the request they answer.
Subscription data pushes have both refs null:

    [null, null, "__absinthe__:doc:...", "subscription:data",
     {"result": {"data": {"chatMessage": {...}}}, "subscriptionId": "..."}]

Frames are decoded through a pydantic schema (Frame + ChatMessagePush)
instead of positional indexing, so a malformed frame is a FrameError rather
than a silently misread field.
"""

import json
from typing import Any, NamedTuple, Optional

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from glimesh_bridge.models import ChatMessage

PROTOCOL_VERSION = "2.0.0"
CONTROL_TOPIC = "__absinthe__:control"
PHOENIX_TOPIC = "phoenix"
JOIN_REF = "1"

SUBSCRIPTION_QUERY = (
    "subscription{ chatMessage(channelId: %d) { user { username } message } }"
)
SEND_MUTATION = (
    'mutation {createChatMessage(channelId: %d, message: {message: "%s"}) '
    "{ message }}"
)


class FrameError(ValueError):
    """A frame could not be decoded."""


class Frame(NamedTuple):
    join_ref: Optional[str]
    ref: Optional[str]
    topic: str
    event: str
    payload: dict[str, Any]

    @property
    def is_push(self) -> bool:
        """Data pushes carry no refs; everything else is control traffic."""
        return self.join_ref is None and self.ref is None

    def encode(self) -> str:
        return json.dumps(list(self), separators=(",", ":"))


# ─── Inbound ──────────────────────────────────────────────


class _ChatMessageData(BaseModel):
    chat_message: ChatMessage = Field(alias="chatMessage")


class _ChatMessageResult(BaseModel):
    data: _ChatMessageData


class ChatMessagePush(BaseModel):
    result: _ChatMessageResult


_frame_adapter = TypeAdapter(Frame)


def decode_frame(raw: str | bytes) -> Frame:
    try:
        return _frame_adapter.validate_json(raw)
    except ValidationError as exc:
        raise FrameError(f"invalid frame: {exc}") from exc


def decode_chat_message(frame: Frame) -> ChatMessage:
    """Extract the chat message from a subscription data push."""
    try:
        push = ChatMessagePush.model_validate(frame.payload)
    except ValidationError as exc:
        raise FrameError(f"invalid chat message payload: {exc}") from exc
    return push.result.data.chat_message


# ─── Outbound ─────────────────────────────────────────────


def escape_message(text: str) -> str:
    """Make text safe to embed in a double-quoted GraphQL string literal.

    Surrounding whitespace is trimmed.
    """
    return text.strip().replace("\\", "\\\\").replace('"', '\\"')


def join_frame() -> Frame:
    return Frame(JOIN_REF, "1", CONTROL_TOPIC, "phx_join", {})


def subscribe_frame(channel_id: int) -> Frame:
    return Frame(
        JOIN_REF,
        "2",
        CONTROL_TOPIC,
        "doc",
        {"query": SUBSCRIPTION_QUERY % channel_id, "variables": {}},
    )


def heartbeat_frame() -> Frame:
    return Frame(JOIN_REF, "3", PHOENIX_TOPIC, "heartbeat", {})


def send_message_frame(channel_id: int, text: str) -> Frame:
    query = SEND_MUTATION % (channel_id, escape_message(text))
    return Frame(JOIN_REF, "4", CONTROL_TOPIC, "doc", {"query": query, "variables": {}})
