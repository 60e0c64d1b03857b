"""
Real-time Stream Client Module.

Long-lived, self-healing WebSocket clients for the brokerage's two event feeds:
order updates for the account and market data (trades, quotes, bars).

Components:
- MarketDataStream / TradeUpdatesStream: one connection actor each
- SubscriptionRegistry: desired subscriptions, replayed after every re-auth
- ReconnectSupervisor: capped exponential backoff with jitter
- MessageRouter: control/data split, decoding, callback isolation
- Credentials: secret handling and post-auth redaction

Usage:
    from alpa.stream import MarketDataStream

    async def on_event(event) -> None:
        print(event)

    stream = MarketDataStream(on_event, trades=["AAPL"])
    await stream.start()
    await stream.subscribe(bars=["MSFT"])
    ...
    await stream.stop()
"""

from alpa.stream.clients import MarketDataStream, TradeUpdatesStream
from alpa.stream.config import (
    ConnectionConfig,
    Feed,
    MarketDataConfig,
    StreamKind,
    TradeUpdatesConfig,
)
from alpa.stream.connection import StreamConnection
from alpa.stream.credentials import Credentials
from alpa.stream.errors import (
    AuthenticationError,
    CallbackError,
    ConfigurationError,
    MessageParseError,
    MissingCredentialsError,
    StreamConnectionError,
    StreamError,
    SubscriptionError,
)
from alpa.stream.types import ConnectionHealth, ConnectionState

__all__ = [
    # Clients
    "MarketDataStream",
    "TradeUpdatesStream",
    "StreamConnection",
    # Config
    "ConnectionConfig",
    "MarketDataConfig",
    "TradeUpdatesConfig",
    "Feed",
    "StreamKind",
    "Credentials",
    # Types
    "ConnectionState",
    "ConnectionHealth",
    # Errors
    "StreamError",
    "MissingCredentialsError",
    "AuthenticationError",
    "StreamConnectionError",
    "SubscriptionError",
    "MessageParseError",
    "CallbackError",
    "ConfigurationError",
]
