"""OAuth client-credentials exchange against the Glimesh API."""

from typing import Optional

import httpx
import structlog
from pydantic import ValidationError

from glimesh_bridge.errors import AuthError
from glimesh_bridge.models import ClientCredentials

logger = structlog.get_logger()


async def fetch_token(
    token_url: str,
    client_id: str,
    client_secret: str,
    scope: str = "chat",
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ClientCredentials:
    """Exchange app credentials for an access token.

    Learn: One-shot call at startup. Any failure is fatal — without a token
    the websocket cannot be opened.
    """
    form = {
        "grant_type": "client_credentials",
        "client_id": client_id,
        "client_secret": client_secret,
        "scope": scope,
    }
    try:
        async with httpx.AsyncClient(timeout=30.0, transport=transport) as client:
            resp = await client.post(token_url, data=form)
            resp.raise_for_status()
    except httpx.HTTPError as exc:
        raise AuthError(f"Could not retrieve Glimesh API token: {exc}") from exc

    try:
        credentials = ClientCredentials.model_validate_json(resp.content)
    except ValidationError as exc:
        raise AuthError(f"Could not decode Glimesh API response: {exc}") from exc

    logger.info(
        "auth.token_obtained",
        scope=credentials.scope,
        expires_in=credentials.expires_in,
    )
    return credentials
