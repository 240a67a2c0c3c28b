"""Bridge configuration via environment variables and CLI overrides.

Uses pydantic-settings to load config from env vars with GLIMESH_BRIDGE_
prefix. CLI options (see cli.py) are passed as init kwargs, which take
precedence over the environment.

Learn: Settings are read once at startup and never mutated. The required
Glimesh credentials have empty defaults so the object can always be built
(e.g. for `send`/`history`, which only need the store); `check_required()`
enforces them for `run`.
"""

from typing import Optional

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings

from glimesh_bridge.errors import ConfigError

# Accepted log level spellings → canonical name
LOG_LEVELS = {
    "error": "error",
    "warn": "warn",
    "warning": "warn",
    "info": "info",
    "notice": "info",
    "debug": "debug",
    "trace": "trace",
}


class Settings(BaseSettings):
    """All bridge configuration. Set via GLIMESH_BRIDGE_* env vars."""

    # Store (Redis)
    store_url: str = "redis://localhost:6379/0"
    store_password: Optional[str] = None
    prefix: str = "glimesh/"

    # Glimesh
    channel_id: Optional[int] = None
    client_id: str = ""
    client_secret: str = ""
    api_url: str = "https://glimesh.tv"
    socket_url: str = "wss://glimesh.tv/api/socket/websocket"

    # Relay
    chat_history: int = Field(default=6, ge=0)
    heartbeat_interval: float = Field(default=30.0, gt=0)

    # Logging
    log_level: str = "info"

    model_config = {"env_prefix": "GLIMESH_BRIDGE_"}

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, value):
        """Unknown levels fall back to info."""
        if value is None:
            return "info"
        return LOG_LEVELS.get(str(value).strip().lower(), "info")

    @field_validator("store_password", mode="before")
    @classmethod
    def empty_password_is_none(cls, value):
        return value or None

    @property
    def token_url(self) -> str:
        return f"{self.api_url.rstrip('/')}/api/oauth/token"

    def check_required(self) -> None:
        """Ensure the settings needed to talk to Glimesh are present."""
        if not self.client_id or not self.client_secret:
            raise ConfigError(
                "You must provide a client ID and secret key, check "
                "https://glimesh.tv/users/settings/applications/new to make "
                "a new Glimesh.tv application"
            )
        if self.channel_id is None or self.channel_id < 0:
            raise ConfigError("You must provide a channel ID")


def get_settings(**overrides) -> Settings:
    """Build settings from the environment, applying non-None overrides."""
    values = {k: v for k, v in overrides.items() if v is not None}
    try:
        return Settings(**values)
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration: {exc}") from exc
