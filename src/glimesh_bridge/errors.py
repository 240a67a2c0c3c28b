"""Error hierarchy.

Learn: Every error in this module is fatal when it reaches the CLI — the
process exits 1 and a supervisor restarts it. Recoverable failures (a bad
frame, a failed store write, a dropped outgoing message) are caught and
logged where they happen and never leave the relay loop.
"""


class BridgeError(Exception):
    """Base class for all bridge errors."""


class ConfigError(BridgeError):
    """Required configuration is missing or invalid."""


class AuthError(BridgeError):
    """The OAuth credential exchange failed."""


class SessionError(BridgeError):
    """The Glimesh websocket could not be connected, read, or written."""


class StoreError(BridgeError):
    """A key-value store operation failed."""
