"""Glimesh bridge — relay Glimesh.tv channel chat through a Redis key-value store.

Chat messages arriving on the Glimesh websocket are written to Redis keys
(latest message + bounded history). Writes to an RPC key in Redis are sent
back to the channel as chat messages.
"""

__version__ = "0.1.0"
