"""glimesh-bridge CLI — run the relay, poke the store.

Usage:
    glimesh-bridge run --channel-id 1234 --client-id ID --client-secret SECRET
    glimesh-bridge send "hello chat"        # Ask a running relay to send a message
    glimesh-bridge history                  # Print the persisted chat history

Every option can also be set with a GLIMESH_BRIDGE_* environment variable
(e.g. GLIMESH_BRIDGE_CLIENT_SECRET).
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import contextlib
import json
import signal
import sys
from typing import Optional

import click
import structlog

from glimesh_bridge import __version__
from glimesh_bridge.bridge import run_bridge
from glimesh_bridge.config import LOG_LEVELS, Settings, get_settings
from glimesh_bridge.errors import BridgeError, StoreError
from glimesh_bridge.log import configure_logging
from glimesh_bridge.models import parse_history
from glimesh_bridge.store import RedisStore, StoreKeys

logger = structlog.get_logger()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run(coro):
    """Run an async coroutine from a synchronous Click handler.

    Handles nested event loops (e.g. when invoked via Click CliRunner
    inside an existing async context like tests) by offloading to a thread.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    else:
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            return pool.submit(asyncio.run, coro).result()


def _fail(exc: BridgeError):
    click.secho(f"Error: {exc}", fg="red", err=True)
    sys.exit(1)


def store_options(func):
    """Options shared by every command that talks to the store."""
    func = click.option(
        "--prefix", help='Prefix/namespace for keys (default "glimesh/")'
    )(func)
    func = click.option("--password", help="Optional password for the store")(func)
    func = click.option(
        "--store-url", help="Redis URL (default redis://localhost:6379/0)"
    )(func)
    return func


async def _serve(settings: Settings):
    """Run the bridge, turning SIGINT/SIGTERM into a clean shutdown."""
    task = asyncio.create_task(run_bridge(settings))
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError, RuntimeError, ValueError):
            loop.add_signal_handler(sig, task.cancel)
    try:
        await task
    except asyncio.CancelledError:
        logger.info("bridge.shutdown")


async def _open_store(settings: Settings) -> RedisStore:
    return await RedisStore.connect(settings.store_url, settings.store_password)


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version=__version__, prog_name="glimesh-bridge")
def main():
    """Relay Glimesh.tv chat to and from a Redis key-value store."""


# ---------------------------------------------------------------------------
# glimesh-bridge run
# ---------------------------------------------------------------------------


@main.command()
@store_options
@click.option("--channel-id", type=int, help="Glimesh channel ID")
@click.option("--client-id", help="Glimesh app client ID")
@click.option("--client-secret", help="Glimesh app secret key")
@click.option(
    "--chat-history", type=int, help="Number of chat messages to keep in history"
)
@click.option(
    "--log-level",
    type=click.Choice(sorted(LOG_LEVELS), case_sensitive=False),
    help="Logging level (default info)",
)
def run(store_url: Optional[str], password: Optional[str], prefix: Optional[str],
        channel_id: Optional[int], client_id: Optional[str],
        client_secret: Optional[str], chat_history: Optional[int],
        log_level: Optional[str]):
    """Relay chat between a Glimesh channel and the store."""
    try:
        settings = get_settings(
            store_url=store_url,
            store_password=password,
            prefix=prefix,
            channel_id=channel_id,
            client_id=client_id,
            client_secret=client_secret,
            chat_history=chat_history,
            log_level=log_level,
        )
        configure_logging(settings.log_level)
        _run(_serve(settings))
    except BridgeError as exc:
        _fail(exc)


# ---------------------------------------------------------------------------
# glimesh-bridge send
# ---------------------------------------------------------------------------


@main.command()
@store_options
@click.argument("text")
def send(store_url: Optional[str], password: Optional[str], prefix: Optional[str],
         text: str):
    """Ask a running relay to send TEXT to the channel chat."""
    try:
        settings = get_settings(store_url=store_url, store_password=password, prefix=prefix)
        _run(_send_impl(settings, text))
    except BridgeError as exc:
        _fail(exc)


async def _send_impl(settings: Settings, text: str):
    store = await _open_store(settings)
    try:
        await store.publish(StoreKeys.from_prefix(settings.prefix).send_chat, text)
    finally:
        await store.close()
    click.secho("Sent.", fg="green")


# ---------------------------------------------------------------------------
# glimesh-bridge history
# ---------------------------------------------------------------------------


@main.command()
@store_options
@click.option("--json", "as_json", is_flag=True, help="Print raw JSON")
def history(store_url: Optional[str], password: Optional[str], prefix: Optional[str],
            as_json: bool):
    """Print the persisted chat history, oldest first."""
    try:
        settings = get_settings(store_url=store_url, store_password=password, prefix=prefix)
        _run(_history_impl(settings, as_json))
    except BridgeError as exc:
        _fail(exc)


async def _history_impl(settings: Settings, as_json: bool):
    store = await _open_store(settings)
    try:
        snapshot = await store.get_json(StoreKeys.from_prefix(settings.prefix).chat_history)
    finally:
        await store.close()

    if as_json:
        click.echo(json.dumps(snapshot or [], indent=2))
        return
    if not snapshot:
        click.echo("No chat history.")
        return
    try:
        messages = parse_history(snapshot)
    except ValueError as exc:
        raise StoreError(f"Stored chat history is malformed: {exc}") from exc
    for message in messages:
        click.echo(f"{click.style(message.author, bold=True)}: {message.text}")
