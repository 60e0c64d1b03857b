"""
Unit tests for the MessageRouter implementations and callback isolation.
"""

import logging
from typing import Any

import orjson
import pytest

from alpa.stream.errors import ConfigurationError
from alpa.stream.router import (
    BoundCallback,
    CallbackInvoker,
    MarketDataRouter,
    TradeUpdatesRouter,
    as_stream_callback,
)
from alpa.stream.types import ControlSignal
from alpa.types.events import Bar, OrderEvent, Quote, Trade


def frame(payload: Any) -> str:
    return orjson.dumps(payload).decode()


class Collector:
    def __init__(self) -> None:
        self.events: list[Any] = []

    async def __call__(self, event: Any) -> None:
        self.events.append(event)


class TestMarketDataRouter:
    """Tests for MarketDataRouter."""

    @pytest.fixture
    def sink(self) -> Collector:
        return Collector()

    @pytest.fixture
    def router(self, sink: Collector) -> MarketDataRouter:
        return MarketDataRouter(deliver=sink, name="test")

    @pytest.mark.asyncio
    async def test_batch_of_data_messages(self, router: MarketDataRouter, sink: Collector) -> None:
        """Test an array frame is routed element by element."""
        signals = await router.route(
            frame(
                [
                    {"T": "t", "S": "AAPL", "p": 185.5, "s": 100},
                    {"T": "q", "S": "AAPL", "bp": 185.4, "bs": 1, "ap": 185.6, "as": 2},
                    {"T": "b", "S": "SPY", "o": 1, "h": 2, "l": 0.5, "c": 1.5, "v": 10},
                ]
            ),
            recv_ts=1,
        )

        assert signals == []
        assert [type(e) for e in sink.events] == [Trade, Quote, Bar]
        assert router.stats.routed_messages == 3

    @pytest.mark.asyncio
    async def test_auth_success_signal(self, router: MarketDataRouter) -> None:
        signals = await router.route(frame([{"T": "success", "msg": "authenticated"}]), recv_ts=1)

        assert signals == [ControlSignal.AUTH_SUCCESS]

    @pytest.mark.asyncio
    async def test_connected_greeting_is_not_a_signal(self, router: MarketDataRouter) -> None:
        signals = await router.route(frame([{"T": "success", "msg": "connected"}]), recv_ts=1)

        assert signals == []
        assert router.stats.control_messages == 1

    @pytest.mark.parametrize("code", [402, 404, 406])
    @pytest.mark.asyncio
    async def test_auth_error_codes(self, router: MarketDataRouter, code: int) -> None:
        signals = await router.route(frame([{"T": "error", "code": code, "msg": "nope"}]), recv_ts=1)

        assert signals == [ControlSignal.AUTH_FAILURE]

    @pytest.mark.asyncio
    async def test_other_error_is_logged_only(
        self, router: MarketDataRouter, caplog: pytest.LogCaptureFixture
    ) -> None:
        with caplog.at_level(logging.ERROR):
            signals = await router.route(
                frame([{"T": "error", "code": 405, "msg": "symbol limit exceeded"}]), recv_ts=1
            )

        assert signals == []
        assert "symbol limit exceeded" in caplog.text

    @pytest.mark.asyncio
    async def test_invalid_json_is_skipped(self, router: MarketDataRouter, sink: Collector) -> None:
        """Test a malformed frame never raises."""
        signals = await router.route("{not json", recv_ts=1)

        assert signals == []
        assert sink.events == []
        assert router.decode_errors == 1

    @pytest.mark.asyncio
    async def test_bad_element_does_not_affect_others(
        self, router: MarketDataRouter, sink: Collector
    ) -> None:
        await router.route(
            frame(
                [
                    {"T": "t", "p": 1.0},  # no symbol
                    "garbage",
                    {"T": "t", "S": "MSFT", "p": 400.1, "s": 5},
                ]
            ),
            recv_ts=1,
        )

        assert [e.symbol for e in sink.events] == ["MSFT"]
        assert router.decode_errors == 2

    @pytest.mark.asyncio
    async def test_binary_frame(self, router: MarketDataRouter, sink: Collector) -> None:
        await router.route(orjson.dumps([{"T": "t", "S": "AAPL", "p": 1, "s": 1}]), recv_ts=1)

        assert len(sink.events) == 1

    @pytest.mark.asyncio
    async def test_unknown_type_dropped(self, router: MarketDataRouter) -> None:
        await router.route(frame([{"T": "d", "S": "AAPL"}, {"no_tag": True}]), recv_ts=1)

        assert router.stats.dropped_messages == 2
        assert router.decode_errors == 0

    @pytest.mark.asyncio
    async def test_control_sink_runs_before_later_messages(
        self, router: MarketDataRouter, sink: Collector
    ) -> None:
        """Test the control sink is awaited before the data that follows it in the frame."""
        order: list[Any] = []

        async def on_control(signal: ControlSignal) -> bool:
            order.append((signal, len(sink.events)))
            return True

        await router.route(
            frame(
                [
                    {"T": "t", "S": "MSFT", "p": 1, "s": 1},
                    {"T": "success", "msg": "authenticated"},
                    {"T": "t", "S": "AAPL", "p": 1, "s": 1},
                ]
            ),
            recv_ts=1,
            on_control=on_control,
        )

        assert order == [(ControlSignal.AUTH_SUCCESS, 1)]
        assert [e.symbol for e in sink.events] == ["MSFT", "AAPL"]

    @pytest.mark.asyncio
    async def test_control_sink_can_drop_rest_of_frame(
        self, router: MarketDataRouter, sink: Collector
    ) -> None:
        async def on_control(signal: ControlSignal) -> bool:
            return False

        signals = await router.route(
            frame([{"T": "error", "code": 402, "msg": "auth failed"}, {"T": "t", "S": "AAPL", "p": 1, "s": 1}]),
            recv_ts=1,
            on_control=on_control,
        )

        assert signals == [ControlSignal.AUTH_FAILURE]
        assert sink.events == []


class TestTradeUpdatesRouter:
    """Tests for TradeUpdatesRouter."""

    @pytest.fixture
    def sink(self) -> Collector:
        return Collector()

    @pytest.fixture
    def router(self, sink: Collector) -> TradeUpdatesRouter:
        return TradeUpdatesRouter(deliver=sink, name="test")

    @pytest.mark.asyncio
    async def test_authorized(self, router: TradeUpdatesRouter) -> None:
        signals = await router.route(
            frame({"stream": "authorization", "data": {"status": "authorized", "action": "authenticate"}}),
            recv_ts=1,
        )

        assert signals == [ControlSignal.AUTH_SUCCESS]

    @pytest.mark.asyncio
    async def test_unauthorized(self, router: TradeUpdatesRouter) -> None:
        signals = await router.route(
            frame({"stream": "authorization", "data": {"status": "unauthorized", "action": "authenticate"}}),
            recv_ts=1,
        )

        assert signals == [ControlSignal.AUTH_FAILURE]

    @pytest.mark.asyncio
    async def test_listening_is_control(self, router: TradeUpdatesRouter, sink: Collector) -> None:
        signals = await router.route(
            frame({"stream": "listening", "data": {"streams": ["trade_updates"]}}), recv_ts=1
        )

        assert signals == []
        assert sink.events == []

    @pytest.mark.asyncio
    async def test_trade_update_delivered(self, router: TradeUpdatesRouter, sink: Collector) -> None:
        await router.route(
            orjson.dumps(
                {
                    "stream": "trade_updates",
                    "data": {"event": "new", "order": {"id": "o1", "symbol": "AAPL", "status": "new"}},
                }
            ),
            recv_ts=1,
        )

        assert len(sink.events) == 1
        event = sink.events[0]
        assert isinstance(event, OrderEvent)
        assert event.order is not None and event.order.symbol == "AAPL"

    @pytest.mark.asyncio
    async def test_missing_data_section(self, router: TradeUpdatesRouter) -> None:
        signals = await router.route(frame({"stream": "trade_updates"}), recv_ts=1)

        assert signals == []
        assert router.decode_errors == 1


class TestCallbackShapes:
    def test_plain_callable(self) -> None:
        def cb(event: Any) -> None:
            pass

        assert as_stream_callback(cb) is cb

    def test_tuple_form(self) -> None:
        calls: list[tuple] = []

        def target(event: Any, *args: Any) -> None:
            calls.append((event, *args))

        callback = as_stream_callback((target, "ctx", 42))
        callback("evt")

        assert isinstance(callback, BoundCallback)
        assert calls == [("evt", "ctx", 42)]

    @pytest.mark.parametrize("bad", [(), ("not callable",), 42])
    def test_invalid(self, bad: Any) -> None:
        with pytest.raises(ConfigurationError):
            as_stream_callback(bad)


class TestCallbackInvoker:
    """Tests for callback failure isolation."""

    @pytest.mark.asyncio
    async def test_sync_and_async_callbacks(self) -> None:
        seen: list[Any] = []

        async def async_cb(event: Any) -> None:
            seen.append(("async", event))

        await CallbackInvoker(seen.append)("a")
        await CallbackInvoker(async_cb)("b")

        assert seen == ["a", ("async", "b")]

    @pytest.mark.asyncio
    async def test_exceptions_are_contained(self, caplog: pytest.LogCaptureFixture) -> None:
        def broken(event: Any) -> None:
            raise ValueError("boom")

        invoker = CallbackInvoker(broken, error_threshold=3, name="test")

        with caplog.at_level(logging.ERROR):
            for _ in range(5):
                await invoker("evt")

        assert invoker.stats.failed == 5
        assert invoker.consecutive_errors == 5
        critical = [r for r in caplog.records if r.levelno == logging.CRITICAL]
        assert len(critical) == 3  # errors 3, 4, 5

    @pytest.mark.asyncio
    async def test_success_resets_consecutive_counter(self) -> None:
        fail = {"on": True}

        def flaky(event: Any) -> None:
            if fail["on"]:
                raise RuntimeError("nope")

        invoker = CallbackInvoker(flaky)
        await invoker(1)
        await invoker(2)
        fail["on"] = False
        await invoker(3)

        assert invoker.consecutive_errors == 0
        assert invoker.stats.succeeded == 1
