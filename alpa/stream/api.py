"""
Functional entry points over the stream clients.

    handle = await start("market_data", on_event, trades=["AAPL"])
    await subscribe(handle, quotes=["MSFT"])
    status(handle)  # ConnectionState.CONNECTED
    await stop(handle)

The handle is the client object itself; these are thin wrappers for callers
who prefer not to touch the classes.
"""

from __future__ import annotations

from typing import Any, Iterable, Union

from alpa.stream.clients import MarketDataStream, TradeUpdatesStream
from alpa.stream.config import StreamKind
from alpa.stream.connection import StreamConnection
from alpa.stream.errors import ConfigurationError
from alpa.stream.router import StreamCallback
from alpa.stream.types import ConnectionState
from alpa.types.aliases import Channel, Symbol, SubscriptionSpec

_CLIENTS: dict[StreamKind, type[StreamConnection]] = {
    StreamKind.MARKET_DATA: MarketDataStream,
    StreamKind.TRADE_UPDATES: TradeUpdatesStream,
}


def create(kind: Union[StreamKind, str], callback: StreamCallback, **opts: Any) -> StreamConnection:
    """Build a client of the given kind without starting it."""
    try:
        stream_kind = StreamKind(kind)
    except ValueError as e:
        raise ConfigurationError(
            f"Unknown stream kind: {kind!r}",
            field="kind",
            value=kind,
        ) from e
    return _CLIENTS[stream_kind](callback, **opts)


async def start(kind: Union[StreamKind, str], callback: StreamCallback, **opts: Any) -> StreamConnection:
    """
    Create and start a stream.

    Args:
        kind: "market_data" or "trade_updates"
        callback: Callable (sync or async) or (callable, *args) tuple
        **opts: Passed to the client constructor (config, credentials, trades=..., ...)

    Raises:
        MissingCredentialsError: If credentials cannot be resolved
    """
    client = create(kind, callback, **opts)
    await client.start()
    return client


async def stop(handle: StreamConnection) -> None:
    await handle.stop()


async def subscribe(handle: StreamConnection, **channels: Iterable[Symbol]) -> SubscriptionSpec:
    return await handle.subscribe(**channels)


async def unsubscribe(handle: StreamConnection, **channels: Iterable[Symbol]) -> SubscriptionSpec:
    return await handle.unsubscribe(**channels)


def status(handle: StreamConnection) -> ConnectionState:
    return handle.status


def subscriptions(handle: StreamConnection) -> dict[Channel, list[Symbol]]:
    return handle.subscriptions
