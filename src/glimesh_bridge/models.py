"""Domain types shared by the session, store and relay.

Learn: ChatMessage keeps the Glimesh GraphQL shape
({"message": ..., "user": {"username": ...}}) so the JSON written to the
store is exactly what the API returned — consumers of the store keys never
need to know about this bridge's Python names. `text` and `author` are
convenience accessors.
"""

from collections import deque
from typing import Any, Iterable, Optional

from pydantic import BaseModel, TypeAdapter


# ─── Chat ─────────────────────────────────────────────────


class ChatUser(BaseModel):
    username: str

    model_config = {"frozen": True}


class ChatMessage(BaseModel):
    message: str
    user: ChatUser

    model_config = {"frozen": True}

    @classmethod
    def create(cls, text: str, author: str) -> "ChatMessage":
        return cls(message=text, user=ChatUser(username=author))

    @property
    def text(self) -> str:
        return self.message

    @property
    def author(self) -> str:
        return self.user.username


_history_adapter = TypeAdapter(list[ChatMessage])


class ChatHistory:
    """Bounded, most-recent-last window of chat messages.

    Appending past capacity drops the oldest entries. A capacity of zero
    keeps nothing.
    """

    def __init__(self, capacity: int, messages: Iterable[ChatMessage] = ()):
        if capacity < 0:
            raise ValueError("capacity must be >= 0")
        self.capacity = capacity
        self._messages: deque[ChatMessage] = deque(messages, maxlen=capacity)

    def append(self, message: ChatMessage) -> None:
        self._messages.append(message)

    def dump(self) -> list[dict[str, Any]]:
        """JSON-ready snapshot, oldest first."""
        return [m.model_dump() for m in self._messages]

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self):
        return iter(list(self._messages))

    def __repr__(self) -> str:
        return f"ChatHistory(capacity={self.capacity}, size={len(self)})"


def parse_history(snapshot: Any) -> list[ChatMessage]:
    """Validate a stored history snapshot. Raises ValueError when malformed."""
    return _history_adapter.validate_python(snapshot)


# ─── Store ────────────────────────────────────────────────


class KeyEvent(BaseModel):
    """A write observed on a subscribed store key."""

    key: str
    value: str


# ─── OAuth ────────────────────────────────────────────────


class ClientCredentials(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None
    created_at: Optional[str] = None
    expires_in: Optional[int] = None
    scope: Optional[str] = None
    token_type: Optional[str] = None
