from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, Union

from alpa.types.aliases import Symbol


class Side(str, Enum):
    BUY = "buy"
    SELL = "sell"


class OrderType(str, Enum):
    MARKET = "market"
    LIMIT = "limit"
    STOP = "stop"  # stop-market
    STOP_LIMIT = "stop_limit"
    TRAILING_STOP = "trailing_stop"


class OrderClass(str, Enum):
    SIMPLE = "simple"
    BRACKET = "bracket"
    OCO = "oco"  # one-cancels-other
    OTO = "oto"  # one-triggers-other


class TimeInForce(str, Enum):
    DAY = "day"
    GTC = "gtc"  # good till canceled
    OPG = "opg"  # market/limit on open
    CLS = "cls"  # market/limit on close
    IOC = "ioc"  # immediate or cancel
    FOK = "fok"  # fill or kill


class OrderStatus(str, Enum):
    NEW = "new"
    PARTIALLY_FILLED = "partially_filled"
    FILLED = "filled"
    DONE_FOR_DAY = "done_for_day"
    CANCELED = "canceled"
    EXPIRED = "expired"
    REPLACED = "replaced"
    PENDING_CANCEL = "pending_cancel"
    PENDING_REPLACE = "pending_replace"
    PENDING_NEW = "pending_new"
    ACCEPTED = "accepted"
    ACCEPTED_FOR_BIDDING = "accepted_for_bidding"
    STOPPED = "stopped"
    REJECTED = "rejected"
    SUSPENDED = "suspended"
    CALCULATED = "calculated"
    HELD = "held"


class TradeUpdateEvent(str, Enum):
    """Event names carried by the trade_updates stream."""

    NEW = "new"
    FILL = "fill"
    PARTIAL_FILL = "partial_fill"
    CANCELED = "canceled"
    EXPIRED = "expired"
    DONE_FOR_DAY = "done_for_day"
    REPLACED = "replaced"
    REJECTED = "rejected"
    PENDING_NEW = "pending_new"
    PENDING_CANCEL = "pending_cancel"
    PENDING_REPLACE = "pending_replace"
    STOPPED = "stopped"
    SUSPENDED = "suspended"
    CALCULATED = "calculated"
    ORDER_REPLACE_REJECTED = "order_replace_rejected"
    ORDER_CANCEL_REJECTED = "order_cancel_rejected"


# --- Market data ---


@dataclass(frozen=True, slots=True)
class Trade:
    """Single print from the market data stream."""

    symbol: Symbol
    timestamp: Optional[datetime]
    price: Optional[Decimal]
    size: Optional[int]
    exchange: Optional[str] = None
    id: Optional[int] = None
    conditions: tuple[str, ...] = ()
    tape: Optional[str] = None


@dataclass(frozen=True, slots=True)
class Quote:
    """NBBO quote."""

    symbol: Symbol
    timestamp: Optional[datetime]
    bid_price: Optional[Decimal]
    bid_size: Optional[int]
    ask_price: Optional[Decimal]
    ask_size: Optional[int]
    bid_exchange: Optional[str] = None
    ask_exchange: Optional[str] = None
    conditions: tuple[str, ...] = ()
    tape: Optional[str] = None

    @property
    def mid_price(self) -> Optional[Decimal]:
        """Mid price, or None if either side is missing."""
        if self.bid_price is None or self.ask_price is None:
            return None
        return (self.bid_price + self.ask_price) / 2

    @property
    def spread(self) -> Optional[Decimal]:
        if self.bid_price is None or self.ask_price is None:
            return None
        return self.ask_price - self.bid_price


@dataclass(frozen=True, slots=True)
class Bar:
    """Minute OHLCV bar."""

    symbol: Symbol
    timestamp: Optional[datetime]
    open: Optional[Decimal]
    high: Optional[Decimal]
    low: Optional[Decimal]
    close: Optional[Decimal]
    volume: Optional[int]
    trade_count: Optional[int] = None
    vwap: Optional[Decimal] = None


# --- Trading ---


@dataclass(frozen=True, slots=True)
class Order:
    """Order snapshot embedded in a trade update."""

    id: Optional[str]
    client_order_id: Optional[str]
    symbol: Optional[Symbol]
    side: Optional[Side]
    order_type: Optional[OrderType]
    time_in_force: Optional[TimeInForce]
    status: Optional[OrderStatus]
    order_class: OrderClass = OrderClass.SIMPLE
    asset_class: Optional[str] = None
    qty: Optional[Decimal] = None
    notional: Optional[Decimal] = None
    filled_qty: Optional[Decimal] = None
    filled_avg_price: Optional[Decimal] = None
    limit_price: Optional[Decimal] = None
    stop_price: Optional[Decimal] = None
    trail_percent: Optional[Decimal] = None
    trail_price: Optional[Decimal] = None
    extended_hours: Optional[bool] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    submitted_at: Optional[datetime] = None
    filled_at: Optional[datetime] = None
    canceled_at: Optional[datetime] = None
    legs: tuple["Order", ...] = ()

    @property
    def is_terminal(self) -> bool:
        return self.status in (
            OrderStatus.FILLED,
            OrderStatus.CANCELED,
            OrderStatus.EXPIRED,
            OrderStatus.REJECTED,
            OrderStatus.REPLACED,
        )


@dataclass(frozen=True, slots=True)
class OrderEvent:
    """Decoded trade_updates message."""

    event_type: str  # Raw event name, see TradeUpdateEvent for known values
    timestamp: Optional[datetime]
    order: Optional[Order]
    execution_id: Optional[str] = None
    position_qty: Optional[Decimal] = None
    price: Optional[Decimal] = None
    qty: Optional[Decimal] = None

    @property
    def is_fill(self) -> bool:
        return self.event_type in (TradeUpdateEvent.FILL.value, TradeUpdateEvent.PARTIAL_FILL.value)


MarketDataEvent = Union[Trade, Quote, Bar]
DomainEvent = Union[Trade, Quote, Bar, OrderEvent]
