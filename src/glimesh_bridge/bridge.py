"""Bridge startup — connect everything in order, then hand off to the relay.

Learn: Startup order matters and every step is fatal on failure:

1. Store connect (ping)
2. Load (or initialize) chat history
3. OAuth token exchange
4. Websocket connect + join + subscribe
5. Subscribe to the RPC key
6. Relay loop

Teardown runs in reverse on any exit, including cancellation.
"""

import structlog

from glimesh_bridge.auth import fetch_token
from glimesh_bridge.config import Settings
from glimesh_bridge.relay import Relay, load_history
from glimesh_bridge.session import GlimeshSession
from glimesh_bridge.store import RedisStore, StoreKeys

logger = structlog.get_logger()


async def run_bridge(settings: Settings) -> None:
    """Run the bridge until a fatal error or cancellation."""
    settings.check_required()
    keys = StoreKeys.from_prefix(settings.prefix)
    structlog.contextvars.bind_contextvars(channel_id=settings.channel_id)

    store = await RedisStore.connect(settings.store_url, settings.store_password)
    logger.info("bridge.store_connected", url=settings.store_url)

    try:
        history = await load_history(store, keys.chat_history, settings.chat_history)

        credentials = await fetch_token(
            settings.token_url, settings.client_id, settings.client_secret
        )
        session = await GlimeshSession.connect(
            settings.socket_url, credentials.access_token, settings.channel_id
        )
        try:
            requests = await store.subscribe_key(keys.send_chat)
            try:
                relay = Relay(
                    store,
                    session,
                    requests,
                    keys,
                    history,
                    heartbeat_interval=settings.heartbeat_interval,
                )
                logger.info(
                    "bridge.relay_started",
                    history_size=settings.chat_history,
                    prefix=settings.prefix,
                )
                await relay.run()
            finally:
                await requests.close()
        finally:
            await session.close()
    finally:
        await store.close()
        logger.info("bridge.stopped")
