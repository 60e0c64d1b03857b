"""
Message handlers (frame decoders) for the streaming client.

Handlers turn one classified wire message into a typed domain event:
- TradeHandler / QuoteHandler / BarHandler: compact market data messages
- OrderEventHandler: trade_updates payloads with their order snapshot

The decode_* functions are usable on their own (raw map + optional symbol
hint -> event); the handler classes wrap them with statistics and hand the
event to the dispatcher.
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

from alpa.stream.errors import MessageParseError
from alpa.stream.types import RoutedMessage
from alpa.types.events import (
    Bar,
    Order,
    OrderClass,
    OrderEvent,
    OrderStatus,
    OrderType,
    Quote,
    Side,
    TimeInForce,
    Trade,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")
E = TypeVar("E", bound=Enum)

# 2024-01-15T14:30:00.123456789Z -> groups: base, fraction, offset
_RFC3339 = re.compile(
    r"^(\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}:\d{2})(?:\.(\d+))?(Z|z|[+-]\d{2}:?\d{2})?$"
)


@dataclass
class HandlerStats:
    """Statistics for a message handler."""

    messages_received: int = 0
    messages_processed: int = 0
    messages_skipped: int = 0
    parse_errors: int = 0
    by_symbol: dict[str, int] = field(default_factory=dict)


class BaseHandler(ABC, Generic[T]):
    """
    Abstract base class for message handlers.

    Each handler:
    1. Receives a RoutedMessage from the router
    2. Decodes the wire map into a domain event
    3. Passes the event on to the dispatcher's delivery callback

    Decode failures are logged and counted here and never propagate.
    """

    def __init__(
        self,
        on_event: Callable[[T], Awaitable[None]],
        name: str = "handler",
    ) -> None:
        """
        Initialize the handler.

        Args:
            on_event: Async callback to receive decoded events
            name: Handler name for logging
        """
        self._on_event = on_event
        self._name = name
        self._stats = HandlerStats()

    @property
    def stats(self) -> HandlerStats:
        """Get handler statistics."""
        return self._stats

    async def handle(self, msg: RoutedMessage) -> bool:
        """
        Decode a message and deliver the resulting event.

        Returns:
            True if an event was delivered, False if the message was skipped
            or failed to decode.
        """
        self._stats.messages_received += 1

        try:
            event = self._parse(msg)
        except MessageParseError as e:
            self._stats.parse_errors += 1
            logger.warning(f"[{self._name}] Parse error: {e}")
            return False
        except Exception as e:
            self._stats.parse_errors += 1
            logger.error(f"[{self._name}] Unexpected decode error: {e}", exc_info=True)
            return False

        if event is None:
            self._stats.messages_skipped += 1
            return False

        self._stats.messages_processed += 1
        symbol = self._get_symbol(event)
        if symbol:
            self._stats.by_symbol[symbol] = self._stats.by_symbol.get(symbol, 0) + 1

        await self._on_event(event)
        return True

    @abstractmethod
    def _parse(self, msg: RoutedMessage) -> Optional[T]:
        """Parse the message into an event. Return None to skip."""
        ...

    @abstractmethod
    def _get_symbol(self, event: T) -> Optional[str]:
        """Extract symbol from event for statistics."""
        ...

    def reset_stats(self) -> None:
        """Reset handler statistics."""
        self._stats = HandlerStats()


# --- Value conversion helpers ---


def _safe_decimal(value: Any, field_name: str) -> Optional[Decimal]:
    """Convert a wire number (string, int or float) to Decimal. None passes through."""
    if value is None:
        return None
    if isinstance(value, bool):
        raise MessageParseError(
            f"Invalid decimal value for {field_name}: {value}",
            expected_type="decimal",
        )
    if isinstance(value, Decimal):
        return value
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        # repr gives the shortest round-tripping form: 185.5 -> Decimal("185.5")
        return Decimal(repr(value))
    if isinstance(value, str):
        try:
            return Decimal(value)
        except InvalidOperation as e:
            raise MessageParseError(
                f"Invalid decimal value for {field_name}: {value}",
                expected_type="decimal",
            ) from e
    raise MessageParseError(
        f"Invalid decimal value for {field_name}: {value!r}",
        expected_type="decimal",
    )


def _safe_int(value: Any, field_name: str) -> Optional[int]:
    """Convert a wire integer. Integral floats are accepted, None passes through."""
    if value is None:
        return None
    if isinstance(value, bool):
        raise MessageParseError(
            f"Invalid integer value for {field_name}: {value}",
            expected_type="int",
        )
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError as e:
            raise MessageParseError(
                f"Invalid integer value for {field_name}: {value}",
                expected_type="int",
            ) from e
    raise MessageParseError(
        f"Invalid integer value for {field_name}: {value!r}",
        expected_type="int",
    )


def _safe_str(value: Any, field_name: str) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    raise MessageParseError(
        f"Invalid string value for {field_name}: {value!r}",
        expected_type="str",
    )


def _conditions(value: Any) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, list) and all(isinstance(c, str) for c in value):
        return tuple(value)
    raise MessageParseError(f"Invalid conditions: {value!r}", expected_type="list[str]")


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse an RFC 3339 timestamp into an aware UTC datetime.

    Nanosecond fractions are truncated to microseconds. Values that do not
    parse yield None rather than an error; a bad timestamp never costs the
    rest of the event.
    """
    if not isinstance(value, str):
        return None

    match = _RFC3339.match(value.strip())
    if match is None:
        logger.debug(f"Unparseable timestamp: {value!r}")
        return None

    base, fraction, offset = match.groups()
    text = base.replace(" ", "T")
    if fraction:
        text += "." + fraction[:6].ljust(6, "0")
    if offset is None or offset in ("Z", "z"):
        text += "+00:00"
    elif ":" not in offset:
        text += f"{offset[:3]}:{offset[3:]}"
    else:
        text += offset

    try:
        return datetime.fromisoformat(text).astimezone(timezone.utc)
    except ValueError:
        logger.debug(f"Unparseable timestamp: {value!r}")
        return None


def _enum_or_none(enum_cls: type[E], value: Any) -> Optional[E]:
    if value is None:
        return None
    try:
        return enum_cls(value)
    except ValueError:
        logger.warning(f"Unknown {enum_cls.__name__} value: {value!r}")
        return None


def _symbol(data: dict[str, Any], symbol: Optional[str], expected_type: str) -> str:
    resolved = symbol or data.get("S")
    if not isinstance(resolved, str) or not resolved:
        raise MessageParseError(
            f"Missing symbol in {expected_type} message",
            expected_type=expected_type,
        )
    return resolved


# --- Decoders ---


def decode_trade(data: dict[str, Any], symbol: Optional[str] = None) -> Trade:
    """
    Decode a compact trade message.

    {"T": "t", "S": "AAPL", "t": "2024-01-15T10:30:00Z", "p": 185.5, "s": 100,
     "x": "V", "i": 12345, "c": ["@"], "z": "A"}
    """
    return Trade(
        symbol=_symbol(data, symbol, "trade"),
        timestamp=parse_timestamp(data.get("t")),
        price=_safe_decimal(data.get("p"), "price"),
        size=_safe_int(data.get("s"), "size"),
        exchange=_safe_str(data.get("x"), "exchange"),
        id=_safe_int(data.get("i"), "id"),
        conditions=_conditions(data.get("c")),
        tape=_safe_str(data.get("z"), "tape"),
    )


def decode_quote(data: dict[str, Any], symbol: Optional[str] = None) -> Quote:
    """
    Decode a compact quote message.

    {"T": "q", "S": "AAPL", "bp": 185.49, "bs": 200, "bx": "V",
     "ap": 185.51, "as": 300, "ax": "V", "t": "...", "c": ["R"], "z": "A"}
    """
    return Quote(
        symbol=_symbol(data, symbol, "quote"),
        timestamp=parse_timestamp(data.get("t")),
        bid_price=_safe_decimal(data.get("bp"), "bid_price"),
        bid_size=_safe_int(data.get("bs"), "bid_size"),
        ask_price=_safe_decimal(data.get("ap"), "ask_price"),
        ask_size=_safe_int(data.get("as"), "ask_size"),
        bid_exchange=_safe_str(data.get("bx"), "bid_exchange"),
        ask_exchange=_safe_str(data.get("ax"), "ask_exchange"),
        conditions=_conditions(data.get("c")),
        tape=_safe_str(data.get("z"), "tape"),
    )


def decode_bar(data: dict[str, Any], symbol: Optional[str] = None) -> Bar:
    """
    Decode a compact minute bar message.

    {"T": "b", "S": "SPY", "o": 185.0, "h": 186.0, "l": 184.5, "c": 185.5,
     "v": 10000, "t": "...", "n": 500, "vw": 185.25}
    """
    return Bar(
        symbol=_symbol(data, symbol, "bar"),
        timestamp=parse_timestamp(data.get("t")),
        open=_safe_decimal(data.get("o"), "open"),
        high=_safe_decimal(data.get("h"), "high"),
        low=_safe_decimal(data.get("l"), "low"),
        close=_safe_decimal(data.get("c"), "close"),
        volume=_safe_int(data.get("v"), "volume"),
        trade_count=_safe_int(data.get("n"), "trade_count"),
        vwap=_safe_decimal(data.get("vw"), "vwap"),
    )


def decode_order(data: Optional[dict[str, Any]]) -> Optional[Order]:
    """Decode the order snapshot carried by a trade update."""
    if data is None:
        return None
    if not isinstance(data, dict):
        raise MessageParseError(f"Invalid order snapshot: {data!r}", expected_type="order")

    legs_raw = data.get("legs") or []
    if not isinstance(legs_raw, list):
        raise MessageParseError(f"Invalid order legs: {legs_raw!r}", expected_type="order")

    return Order(
        id=_safe_str(data.get("id"), "id"),
        client_order_id=_safe_str(data.get("client_order_id"), "client_order_id"),
        symbol=_safe_str(data.get("symbol"), "symbol"),
        side=_enum_or_none(Side, data.get("side")),
        order_type=_enum_or_none(OrderType, data.get("order_type") or data.get("type")),
        time_in_force=_enum_or_none(TimeInForce, data.get("time_in_force")),
        status=_enum_or_none(OrderStatus, data.get("status")),
        order_class=_enum_or_none(OrderClass, data.get("order_class") or "simple")
        or OrderClass.SIMPLE,
        asset_class=_safe_str(data.get("asset_class"), "asset_class"),
        qty=_safe_decimal(data.get("qty"), "qty"),
        notional=_safe_decimal(data.get("notional"), "notional"),
        filled_qty=_safe_decimal(data.get("filled_qty"), "filled_qty"),
        filled_avg_price=_safe_decimal(data.get("filled_avg_price"), "filled_avg_price"),
        limit_price=_safe_decimal(data.get("limit_price"), "limit_price"),
        stop_price=_safe_decimal(data.get("stop_price"), "stop_price"),
        trail_percent=_safe_decimal(data.get("trail_percent"), "trail_percent"),
        trail_price=_safe_decimal(data.get("trail_price"), "trail_price"),
        extended_hours=data.get("extended_hours"),
        created_at=parse_timestamp(data.get("created_at")),
        updated_at=parse_timestamp(data.get("updated_at")),
        submitted_at=parse_timestamp(data.get("submitted_at")),
        filled_at=parse_timestamp(data.get("filled_at")),
        canceled_at=parse_timestamp(data.get("canceled_at")),
        legs=tuple(leg for leg in (decode_order(raw) for raw in legs_raw) if leg is not None),
    )


def decode_order_event(data: dict[str, Any]) -> OrderEvent:
    """
    Decode the data section of a trade_updates message.

    {"event": "fill", "timestamp": "...", "order": {...}, "execution_id": "...",
     "position_qty": "100", "price": "185.50", "qty": "100"}
    """
    if not isinstance(data, dict):
        raise MessageParseError(f"Invalid trade update payload: {data!r}", expected_type="trade_updates")

    event_type = data.get("event")
    if not isinstance(event_type, str) or not event_type:
        raise MessageParseError("Missing event in trade update", expected_type="trade_updates")

    return OrderEvent(
        event_type=event_type,
        timestamp=parse_timestamp(data.get("timestamp")),
        order=decode_order(data.get("order")),
        execution_id=_safe_str(data.get("execution_id"), "execution_id"),
        position_qty=_safe_decimal(data.get("position_qty"), "position_qty"),
        price=_safe_decimal(data.get("price"), "price"),
        qty=_safe_decimal(data.get("qty"), "qty"),
    )


# --- Handlers ---


class TradeHandler(BaseHandler[Trade]):
    def __init__(self, on_event: Callable[[Trade], Awaitable[None]]) -> None:
        super().__init__(on_event, name="TradeHandler")

    def _parse(self, msg: RoutedMessage) -> Optional[Trade]:
        return decode_trade(msg.data)

    def _get_symbol(self, event: Trade) -> Optional[str]:
        return event.symbol


class QuoteHandler(BaseHandler[Quote]):
    def __init__(self, on_event: Callable[[Quote], Awaitable[None]]) -> None:
        super().__init__(on_event, name="QuoteHandler")

    def _parse(self, msg: RoutedMessage) -> Optional[Quote]:
        return decode_quote(msg.data)

    def _get_symbol(self, event: Quote) -> Optional[str]:
        return event.symbol


class BarHandler(BaseHandler[Bar]):
    def __init__(self, on_event: Callable[[Bar], Awaitable[None]]) -> None:
        super().__init__(on_event, name="BarHandler")

    def _parse(self, msg: RoutedMessage) -> Optional[Bar]:
        return decode_bar(msg.data)

    def _get_symbol(self, event: Bar) -> Optional[str]:
        return event.symbol


class OrderEventHandler(BaseHandler[OrderEvent]):
    """
    Handler for trade_updates messages.

    {"stream": "trade_updates", "data": {"event": "fill", "order": {...}, ...}}

    The router hands over the inner "data" section.
    """

    def __init__(self, on_event: Callable[[OrderEvent], Awaitable[None]]) -> None:
        super().__init__(on_event, name="OrderEventHandler")

    def _parse(self, msg: RoutedMessage) -> Optional[OrderEvent]:
        return decode_order_event(msg.data)

    def _get_symbol(self, event: OrderEvent) -> Optional[str]:
        return event.order.symbol if event.order else None
