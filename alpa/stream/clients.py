"""
Concrete stream clients: market data (trades/quotes/bars) and trade updates (order events).
"""

from __future__ import annotations

import random
from typing import Any, Callable, Iterable, Literal, Mapping, Optional

from alpa.adapters.aiohttp_transport import AiohttpTransport
from alpa.ports.credentials_provider import CredentialProvider
from alpa.ports.transport import Transport
from alpa.stream.config import (
    MARKET_DATA_CHANNELS,
    TRADE_UPDATES_CHANNEL,
    MarketDataConfig,
    TradeUpdatesConfig,
)
from alpa.stream.connection import StreamConnection
from alpa.stream.credentials import Credentials
from alpa.stream.registry import SubscriptionRegistry, normalize_stream_name
from alpa.stream.router import (
    CallbackInvoker,
    MarketDataRouter,
    MessageRouter,
    StreamCallback,
    TradeUpdatesRouter,
)
from alpa.stream.types import ConnectionState
from alpa.types.aliases import Channel, Symbol, SubscriptionSpec

# Registry channel of the trade updates stream; its entries are stream names
LISTEN_CHANNEL = "streams"


def _provider(credentials: Optional[CredentialProvider | Credentials]) -> CredentialProvider:
    # deferred: alpa.adapters.env_provider imports alpa.stream
    from alpa.adapters.env_provider import EnvCredentialProvider, StaticCredentialProvider

    if credentials is None:
        return EnvCredentialProvider()
    if isinstance(credentials, Credentials):
        return StaticCredentialProvider(credentials)
    return credentials


class MarketDataStream(StreamConnection):
    """
    Real-time trades, quotes and bars.

    Example:
        async def on_event(event: MarketDataEvent) -> None:
            print(event)

        stream = MarketDataStream(on_event, trades=["AAPL"], bars=["*"])
        await stream.start()
    """

    def __init__(
        self,
        callback: StreamCallback,
        config: Optional[MarketDataConfig] = None,
        credentials: Optional[CredentialProvider | Credentials] = None,
        transport: Optional[Transport] = None,
        *,
        trades: Iterable[Symbol] = (),
        quotes: Iterable[Symbol] = (),
        bars: Iterable[Symbol] = (),
        on_state_change: Optional[Callable[[ConnectionState], Any]] = None,
        name: str = "market_data",
        rng: Optional[random.Random] = None,
    ) -> None:
        self._stream_config = config or MarketDataConfig()
        super().__init__(
            callback,
            connection_config=self._stream_config.connection,
            credentials=_provider(credentials),
            transport=transport or AiohttpTransport(),
            initial_subscriptions={"trades": trades, "quotes": quotes, "bars": bars},
            on_state_change=on_state_change,
            name=name,
            rng=rng,
        )

    @property
    def config(self) -> MarketDataConfig:
        return self._stream_config

    def _create_router(self, invoker: CallbackInvoker) -> MessageRouter:
        return MarketDataRouter(deliver=invoker, name=self._name)

    def _create_registry(
        self, initial: Optional[Mapping[Channel, Iterable[Symbol]]]
    ) -> SubscriptionRegistry:
        return SubscriptionRegistry(MARKET_DATA_CHANNELS, initial=initial)

    def _resolve_url(self, credentials: Credentials) -> str:
        return self._stream_config.get_ws_url()

    def _subscription_message(
        self, action: Literal["subscribe", "unsubscribe"], spec: SubscriptionSpec
    ) -> Optional[dict[str, Any]]:
        if not any(spec.values()):
            return None
        return {"action": action, **{ch: spec.get(ch, []) for ch in MARKET_DATA_CHANNELS}}

    def _replay_message(self, snapshot: SubscriptionSpec) -> Optional[dict[str, Any]]:
        return self._subscription_message("subscribe", snapshot)


class TradeUpdatesStream(StreamConnection):
    """
    Order lifecycle events for the account behind the credentials.

    Listens to "trade_updates" by default; the endpoint (paper or live)
    follows the credentials' use_paper flag unless the config sets a url.
    """

    def __init__(
        self,
        callback: StreamCallback,
        config: Optional[TradeUpdatesConfig] = None,
        credentials: Optional[CredentialProvider | Credentials] = None,
        transport: Optional[Transport] = None,
        *,
        streams: Iterable[str] = (TRADE_UPDATES_CHANNEL,),
        on_state_change: Optional[Callable[[ConnectionState], Any]] = None,
        name: str = "trade_updates",
        rng: Optional[random.Random] = None,
    ) -> None:
        self._stream_config = config or TradeUpdatesConfig()
        super().__init__(
            callback,
            connection_config=self._stream_config.connection,
            credentials=_provider(credentials),
            transport=transport or AiohttpTransport(),
            initial_subscriptions={LISTEN_CHANNEL: streams},
            on_state_change=on_state_change,
            name=name,
            rng=rng,
        )

    @property
    def config(self) -> TradeUpdatesConfig:
        return self._stream_config

    def _create_router(self, invoker: CallbackInvoker) -> MessageRouter:
        return TradeUpdatesRouter(deliver=invoker, name=self._name)

    def _create_registry(
        self, initial: Optional[Mapping[Channel, Iterable[Symbol]]]
    ) -> SubscriptionRegistry:
        return SubscriptionRegistry(
            (LISTEN_CHANNEL,), initial=initial, normalizer=normalize_stream_name
        )

    def _resolve_url(self, credentials: Credentials) -> str:
        return self._stream_config.get_ws_url(credentials.use_paper)

    def _listen_message(self) -> dict[str, Any]:
        # "listen" replaces the whole server-side set
        return {"action": "listen", "data": {"streams": self._registry.symbols(LISTEN_CHANNEL)}}

    def _subscription_message(
        self, action: Literal["subscribe", "unsubscribe"], spec: SubscriptionSpec
    ) -> Optional[dict[str, Any]]:
        if not any(spec.values()):
            return None
        return self._listen_message()

    def _replay_message(self, snapshot: SubscriptionSpec) -> Optional[dict[str, Any]]:
        if not snapshot.get(LISTEN_CHANNEL):
            return None
        return self._listen_message()
