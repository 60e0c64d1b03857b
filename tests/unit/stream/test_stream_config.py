"""
Unit tests for stream configuration.
"""

import pytest

from alpa.stream.config import (
    LIVE_TRADE_UPDATES_URL,
    PAPER_TRADE_UPDATES_URL,
    ConnectionConfig,
    Feed,
    MarketDataConfig,
    TradeUpdatesConfig,
)
from alpa.stream.errors import ConfigurationError


class TestConnectionConfig:
    """Tests for ConnectionConfig."""

    def test_defaults(self) -> None:
        """Test default reconnect policy."""
        config = ConnectionConfig()

        assert config.url is None
        assert config.max_reconnect_attempts == 10
        assert config.base_reconnect_delay_s == 1.0
        assert config.max_reconnect_delay_s == 60.0
        assert (config.jitter_min, config.jitter_max) == (0.5, 1.5)
        assert config.callback_error_threshold == 10

    def test_frozen(self) -> None:
        """Test config cannot be mutated."""
        config = ConnectionConfig()

        with pytest.raises(AttributeError):
            config.max_reconnect_attempts = 3  # type: ignore[misc]

    def test_zero_attempts_allowed(self) -> None:
        """Test that reconnect can be disabled entirely."""
        assert ConnectionConfig(max_reconnect_attempts=0).max_reconnect_attempts == 0

    @pytest.mark.parametrize(
        "kwargs, field",
        [
            ({"connect_timeout_s": 0}, "connect_timeout_s"),
            ({"max_reconnect_attempts": -1}, "max_reconnect_attempts"),
            ({"base_reconnect_delay_s": -0.1}, "base_reconnect_delay_s"),
            ({"base_reconnect_delay_s": 5.0, "max_reconnect_delay_s": 1.0}, "max_reconnect_delay_s"),
            ({"jitter_min": 2.0, "jitter_max": 1.0}, "jitter_min"),
            ({"callback_error_threshold": 0}, "callback_error_threshold"),
        ],
    )
    def test_invalid_values(self, kwargs: dict, field: str) -> None:
        """Test validation rejects invalid values."""
        with pytest.raises(ConfigurationError) as exc_info:
            ConnectionConfig(**kwargs)

        assert exc_info.value.field == field


class TestMarketDataConfig:
    """Tests for MarketDataConfig."""

    def test_default_feed_is_iex(self) -> None:
        config = MarketDataConfig()

        assert config.feed == Feed.IEX
        assert config.get_ws_url() == "wss://stream.data.alpaca.markets/v2/iex"

    def test_feed_from_string(self) -> None:
        """Test feed given as a plain string is coerced."""
        config = MarketDataConfig(feed="sip")  # type: ignore[arg-type]

        assert config.feed == Feed.SIP
        assert config.get_ws_url().endswith("/v2/sip")

    def test_invalid_feed(self) -> None:
        with pytest.raises(ConfigurationError, match="feed must be"):
            MarketDataConfig(feed="otc")  # type: ignore[arg-type]

    def test_url_override(self) -> None:
        config = MarketDataConfig(connection=ConnectionConfig(url="ws://localhost:9000"))

        assert config.get_ws_url() == "ws://localhost:9000"


class TestTradeUpdatesConfig:
    """Tests for TradeUpdatesConfig."""

    def test_paper_and_live_urls(self) -> None:
        config = TradeUpdatesConfig()

        assert config.get_ws_url(use_paper=True) == PAPER_TRADE_UPDATES_URL
        assert config.get_ws_url(use_paper=False) == LIVE_TRADE_UPDATES_URL

    def test_url_override_wins(self) -> None:
        config = TradeUpdatesConfig(connection=ConnectionConfig(url="ws://localhost:9001"))

        assert config.get_ws_url(use_paper=False) == "ws://localhost:9001"
