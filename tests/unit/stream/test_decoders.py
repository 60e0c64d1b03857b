"""
Unit tests for the frame decoders and handlers.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

import pytest

from alpa.stream.errors import MessageParseError
from alpa.stream.handlers import (
    TradeHandler,
    decode_bar,
    decode_order_event,
    decode_quote,
    decode_trade,
    parse_timestamp,
)
from alpa.stream.types import MessageType, RoutedMessage
from alpa.types.events import OrderClass, OrderStatus, OrderType, Side, TimeInForce, Trade


class TestParseTimestamp:
    def test_nanoseconds_truncated(self) -> None:
        ts = parse_timestamp("2024-01-15T14:30:00.123456789Z")

        assert ts == datetime(2024, 1, 15, 14, 30, 0, 123456, tzinfo=timezone.utc)

    def test_offset_converted_to_utc(self) -> None:
        ts = parse_timestamp("2024-01-15T09:30:00-05:00")

        assert ts == datetime(2024, 1, 15, 14, 30, tzinfo=timezone.utc)

    def test_no_fraction(self) -> None:
        assert parse_timestamp("2024-01-15T14:30:00Z") == datetime(2024, 1, 15, 14, 30, tzinfo=timezone.utc)

    @pytest.mark.parametrize("value", ["not a time", "", None, 1705329000, "2024-13-45T99:00:00Z"])
    def test_unparseable_is_none(self, value: Any) -> None:
        assert parse_timestamp(value) is None


class TestMarketDataDecoders:
    def test_decode_trade(self) -> None:
        trade = decode_trade(
            {
                "T": "t",
                "S": "AAPL",
                "t": "2024-01-15T14:30:00.5Z",
                "p": 185.5,
                "s": 100,
                "x": "V",
                "i": 52983525029461,
                "c": ["@"],
                "z": "C",
            }
        )

        assert trade.symbol == "AAPL"
        assert trade.price == Decimal("185.5")
        assert trade.size == 100
        assert trade.exchange == "V"
        assert trade.id == 52983525029461
        assert trade.conditions == ("@",)
        assert trade.tape == "C"
        assert trade.timestamp == datetime(2024, 1, 15, 14, 30, 0, 500000, tzinfo=timezone.utc)

    def test_decode_trade_symbol_hint(self) -> None:
        trade = decode_trade({"p": 1, "s": 1}, symbol="MSFT")

        assert trade.symbol == "MSFT"

    def test_decode_trade_without_symbol(self) -> None:
        with pytest.raises(MessageParseError):
            decode_trade({"T": "t", "p": 1.0, "s": 1})

    def test_decode_trade_bad_price(self) -> None:
        with pytest.raises(MessageParseError):
            decode_trade({"T": "t", "S": "AAPL", "p": "abc", "s": 1})

    def test_float_prices_keep_shortest_form(self) -> None:
        trade = decode_trade({"S": "AAPL", "p": 0.1, "s": 1})

        assert trade.price == Decimal("0.1")

    def test_decode_quote(self) -> None:
        quote = decode_quote(
            {"T": "q", "S": "AAPL", "bp": 185.49, "bs": 2, "bx": "V", "ap": 185.51, "as": 3, "ax": "Q"}
        )

        assert quote.bid_price == Decimal("185.49")
        assert quote.ask_size == 3
        assert quote.ask_exchange == "Q"
        assert quote.mid_price == Decimal("185.50")
        assert quote.spread == Decimal("0.02")

    def test_decode_bar(self) -> None:
        bar = decode_bar(
            {"T": "b", "S": "SPY", "o": 470, "h": 471.5, "l": 469.25, "c": 471, "v": 12000, "n": 310, "vw": 470.4}
        )

        assert bar.symbol == "SPY"
        assert bar.open == Decimal(470)
        assert bar.low == Decimal("469.25")
        assert bar.volume == 12000
        assert bar.trade_count == 310
        assert bar.vwap == Decimal("470.4")


class TestOrderEventDecoder:
    @pytest.fixture
    def fill_payload(self) -> dict[str, Any]:
        return {
            "event": "fill",
            "timestamp": "2024-01-15T14:30:01.000000001Z",
            "execution_id": "exec-1",
            "position_qty": "100",
            "price": "185.50",
            "qty": "100",
            "order": {
                "id": "ord-1",
                "client_order_id": "cli-1",
                "symbol": "AAPL",
                "side": "buy",
                "order_type": "limit",
                "time_in_force": "day",
                "status": "filled",
                "order_class": "bracket",
                "qty": "100",
                "filled_qty": "100",
                "filled_avg_price": "185.50",
                "limit_price": "186",
                "created_at": "2024-01-15T14:29:00Z",
                "legs": [
                    {"id": "leg-1", "symbol": "AAPL", "side": "sell", "type": "stop", "status": "held"}
                ],
            },
        }

    def test_decode_fill(self, fill_payload: dict[str, Any]) -> None:
        event = decode_order_event(fill_payload)

        assert event.event_type == "fill"
        assert event.price == Decimal("185.50")
        assert event.position_qty == Decimal("100")
        assert event.execution_id == "exec-1"

        order = event.order
        assert order is not None
        assert order.side == Side.BUY
        assert order.order_type == OrderType.LIMIT
        assert order.time_in_force == TimeInForce.DAY
        assert order.status == OrderStatus.FILLED
        assert order.order_class == OrderClass.BRACKET
        assert order.is_terminal
        assert order.legs[0].order_type == OrderType.STOP
        assert order.legs[0].status == OrderStatus.HELD

    def test_unknown_enum_value_becomes_none(self, fill_payload: dict[str, Any]) -> None:
        fill_payload["order"]["side"] = "sideways"

        event = decode_order_event(fill_payload)

        assert event.order is not None
        assert event.order.side is None

    def test_missing_event(self) -> None:
        with pytest.raises(MessageParseError):
            decode_order_event({"order": {}})

    def test_order_optional(self) -> None:
        assert decode_order_event({"event": "new"}).order is None


class TestTradeHandler:
    @pytest.mark.asyncio
    async def test_delivers_decoded_event(self) -> None:
        received: list[Trade] = []

        async def on_event(event: Trade) -> None:
            received.append(event)

        handler = TradeHandler(on_event=on_event)
        msg = RoutedMessage(MessageType.TRADE, {"T": "t", "S": "AAPL", "p": 1.5, "s": 10}, recv_ts=1)

        assert await handler.handle(msg) is True
        assert received[0].symbol == "AAPL"
        assert handler.stats.by_symbol == {"AAPL": 1}

    @pytest.mark.asyncio
    async def test_parse_error_counted_not_raised(self) -> None:
        async def on_event(event: Trade) -> None:
            raise AssertionError("should not be called")

        handler = TradeHandler(on_event=on_event)
        msg = RoutedMessage(MessageType.TRADE, {"T": "t", "p": 1.5}, recv_ts=1)

        assert await handler.handle(msg) is False
        assert handler.stats.parse_errors == 1
