"""
Configuration types for the streaming client.

Provides immutable, validated configuration dataclasses for both stream kinds.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from alpa.stream.errors import ConfigurationError


class StreamKind(str, Enum):
    """The two logical feeds, each its own WebSocket endpoint."""

    TRADE_UPDATES = "trade_updates"
    MARKET_DATA = "market_data"


class Feed(str, Enum):
    """Market data feeds."""

    IEX = "iex"  # IEX exchange only (free)
    SIP = "sip"  # All US exchanges (subscription required)


MARKET_DATA_ENDPOINTS: dict[Feed, str] = {
    Feed.IEX: "wss://stream.data.alpaca.markets/v2/iex",
    Feed.SIP: "wss://stream.data.alpaca.markets/v2/sip",
}

PAPER_TRADE_UPDATES_URL = "wss://paper-api.alpaca.markets/stream"
LIVE_TRADE_UPDATES_URL = "wss://api.alpaca.markets/stream"

MARKET_DATA_CHANNELS: tuple[str, ...] = ("trades", "quotes", "bars")
TRADE_UPDATES_CHANNEL = "trade_updates"


@dataclass(frozen=True)
class ConnectionConfig:
    """Connection and reconnection behaviour shared by both stream kinds."""

    # Explicit endpoint; None means "derive from feed / paper flag"
    url: Optional[str] = None

    connect_timeout_s: float = 30.0

    # Reconnect supervisor
    max_reconnect_attempts: int = 10
    base_reconnect_delay_s: float = 1.0
    max_reconnect_delay_s: float = 60.0
    jitter_min: float = 0.5
    jitter_max: float = 1.5

    # Consecutive callback failures before log severity is raised
    callback_error_threshold: int = 10

    def __post_init__(self) -> None:
        if self.connect_timeout_s <= 0:
            raise ConfigurationError(
                "connect_timeout_s must be positive",
                field="connect_timeout_s",
                value=self.connect_timeout_s,
            )
        if self.max_reconnect_attempts < 0:
            raise ConfigurationError(
                "max_reconnect_attempts must be non-negative",
                field="max_reconnect_attempts",
                value=self.max_reconnect_attempts,
            )
        if self.base_reconnect_delay_s < 0:
            raise ConfigurationError(
                "base_reconnect_delay_s must be non-negative",
                field="base_reconnect_delay_s",
                value=self.base_reconnect_delay_s,
            )
        if self.max_reconnect_delay_s < self.base_reconnect_delay_s:
            raise ConfigurationError(
                "max_reconnect_delay_s must be >= base_reconnect_delay_s",
                field="max_reconnect_delay_s",
                value=self.max_reconnect_delay_s,
            )
        if not (0 <= self.jitter_min <= self.jitter_max):
            raise ConfigurationError(
                "jitter range must satisfy 0 <= jitter_min <= jitter_max",
                field="jitter_min",
                value=(self.jitter_min, self.jitter_max),
            )
        if self.callback_error_threshold <= 0:
            raise ConfigurationError(
                "callback_error_threshold must be positive",
                field="callback_error_threshold",
                value=self.callback_error_threshold,
            )


@dataclass(frozen=True)
class MarketDataConfig:
    """
    Configuration for the market data stream.

    Example:
        config = MarketDataConfig(
            feed=Feed.SIP,
            connection=ConnectionConfig(max_reconnect_attempts=5),
        )
    """

    feed: Feed = Feed.IEX
    connection: ConnectionConfig = field(default_factory=ConnectionConfig)

    def __post_init__(self) -> None:
        if not isinstance(self.feed, Feed):
            try:
                object.__setattr__(self, "feed", Feed(self.feed))
            except ValueError as e:
                raise ConfigurationError(
                    "feed must be 'iex' or 'sip'",
                    field="feed",
                    value=self.feed,
                ) from e

    def get_ws_url(self) -> str:
        return self.connection.url or MARKET_DATA_ENDPOINTS[self.feed]


@dataclass(frozen=True)
class TradeUpdatesConfig:
    """Configuration for the order/trade-updates stream."""

    connection: ConnectionConfig = field(default_factory=ConnectionConfig)

    def get_ws_url(self, use_paper: bool) -> str:
        """Paper or live endpoint; an explicit url wins."""
        if self.connection.url:
            return self.connection.url
        return PAPER_TRADE_UPDATES_URL if use_paper else LIVE_TRADE_UPDATES_URL
