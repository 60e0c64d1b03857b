"""
Message Router (event dispatcher) for the streaming client.

Decodes raw frames, separates control messages from data messages, hands
data messages to the per-type handlers and reports auth outcomes back to the
connection as ControlSignals. The user callback is invoked through
CallbackInvoker, which isolates its failures from the connection.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, ClassVar, Optional, Union

import orjson

from alpa.stream.errors import AuthenticationError, CallbackError, ConfigurationError, MessageParseError
from alpa.stream.handlers import (
    BarHandler,
    BaseHandler,
    OrderEventHandler,
    QuoteHandler,
    TradeHandler,
)
from alpa.stream.types import ControlSignal, MessageType, RoutedMessage
from alpa.types.events import DomainEvent

logger = logging.getLogger(__name__)

# Market data error codes that mean the handshake did not go through:
# 402 auth failed, 404 auth timeout, 406 connection limit exceeded
AUTH_ERROR_CODES: frozenset[int] = frozenset({402, 404, 406})


# --- Callback handling ---


class BoundCallback:
    """Callback given as (target, *extra_args); invoked as target(event, *extra_args)."""

    __slots__ = ("_target", "_args")

    def __init__(self, target: Callable[..., Any], args: tuple[Any, ...] = ()) -> None:
        self._target = target
        self._args = args

    def __call__(self, event: Any) -> Any:
        return self._target(event, *self._args)

    def __repr__(self) -> str:
        name = getattr(self._target, "__qualname__", repr(self._target))
        return f"BoundCallback({name}, args={self._args!r})"


StreamCallback = Union[Callable[[Any], Any], tuple[Any, ...]]

# Acts on a control signal; False means the rest of the frame is stale
ControlSink = Callable[[ControlSignal], Awaitable[bool]]


def as_stream_callback(callback: StreamCallback) -> Callable[[Any], Any]:
    """
    Normalize the two accepted callback shapes into one single-argument callable.

    Raises:
        ConfigurationError: If the callback is neither callable nor a (callable, *args) tuple
    """
    if isinstance(callback, tuple):
        if not callback or not callable(callback[0]):
            raise ConfigurationError(
                "callback tuple must start with a callable",
                field="callback",
                value=callback,
            )
        return BoundCallback(callback[0], tuple(callback[1:]))
    if callable(callback):
        return callback
    raise ConfigurationError(
        "callback must be callable or a (callable, *args) tuple",
        field="callback",
        value=callback,
    )


@dataclass
class CallbackStats:
    invoked: int = 0
    succeeded: int = 0
    failed: int = 0
    consecutive_errors: int = 0


class CallbackInvoker:
    """
    Invokes the user callback with failure isolation.

    Exceptions are logged and counted. Every success resets the consecutive
    error counter; reaching the threshold only raises the log level to
    CRITICAL, delivery continues either way. Async callbacks are awaited
    inline, so a slow callback delays the next frame on the same connection.
    """

    def __init__(
        self,
        callback: Callable[[Any], Any],
        error_threshold: int = 10,
        name: str = "stream",
    ) -> None:
        self._callback = callback
        self._error_threshold = error_threshold
        self._name = name
        self._stats = CallbackStats()

    @property
    def stats(self) -> CallbackStats:
        return self._stats

    @property
    def consecutive_errors(self) -> int:
        return self._stats.consecutive_errors

    async def __call__(self, event: DomainEvent) -> None:
        self._stats.invoked += 1
        try:
            result = self._callback(event)
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._stats.failed += 1
            self._stats.consecutive_errors += 1
            error = CallbackError(
                f"Callback raised {type(e).__name__}: {e}",
                event_type=type(event).__name__,
                consecutive_errors=self._stats.consecutive_errors,
                component=self._name,
            )
            if self._stats.consecutive_errors >= self._error_threshold:
                logger.critical(f"[{self._name}] {error}", exc_info=e)
            else:
                logger.error(f"[{self._name}] {error}", exc_info=e)
            return

        self._stats.succeeded += 1
        self._stats.consecutive_errors = 0


# --- Routing ---


@dataclass
class RouterStats:
    """Statistics for message routing."""

    total_frames: int = 0
    total_messages: int = 0
    routed_messages: int = 0
    control_messages: int = 0
    dropped_messages: int = 0
    parse_errors: int = 0
    by_type: dict[str, int] = field(default_factory=dict)


class MessageRouter(ABC):
    """
    Routes decoded frames to control handling or to the data handlers.

    A frame is either one JSON object or a JSON array of objects. Invalid
    JSON, non-object elements and messages that fail to decode are logged and
    skipped; route() never raises for bad input.
    """

    CONTROL_TYPES: ClassVar[frozenset[MessageType]] = frozenset()

    def __init__(
        self,
        deliver: Callable[[Any], Awaitable[None]],
        name: str = "router",
    ) -> None:
        """
        Args:
            deliver: Async sink for decoded domain events (usually a CallbackInvoker)
            name: Name for logging purposes
        """
        self._deliver = deliver
        self._name = name
        self._handlers: dict[MessageType, BaseHandler[Any]] = {}
        self._stats = RouterStats()
        self._setup_handlers()

    @property
    def stats(self) -> RouterStats:
        """Get routing statistics."""
        return self._stats

    @property
    def decode_errors(self) -> int:
        """Frame-level plus handler-level decode failures."""
        return self._stats.parse_errors + sum(
            h.stats.parse_errors for h in self._handlers.values()
        )

    @property
    def handlers(self) -> dict[MessageType, BaseHandler[Any]]:
        return dict(self._handlers)

    def register_handler(self, message_type: MessageType, handler: BaseHandler[Any]) -> None:
        self._handlers[message_type] = handler
        logger.debug(f"[{self._name}] Registered handler for {message_type.value}")

    async def route(
        self,
        raw: Union[str, bytes],
        recv_ts: int,
        on_control: Optional[ControlSink] = None,
    ) -> list[ControlSignal]:
        """
        Route one frame.

        Args:
            raw: Frame payload as received (text or binary JSON)
            recv_ts: Receive timestamp in milliseconds
            on_control: Awaited for each control signal before the next message
                is routed. Returning False drops the rest of the frame.

        Returns:
            Control signals for the connection, in frame order.
        """
        self._stats.total_frames += 1

        try:
            payload = orjson.loads(raw)
        except orjson.JSONDecodeError as e:
            self._stats.parse_errors += 1
            logger.warning(f"[{self._name}] Failed to parse frame: {e}")
            return []

        messages = payload if isinstance(payload, list) else [payload]
        signals: list[ControlSignal] = []

        for data in messages:
            self._stats.total_messages += 1

            if not isinstance(data, dict):
                self._stats.parse_errors += 1
                logger.warning(f"[{self._name}] Skipping non-object message: {data!r:.80}")
                continue

            try:
                routed = self._classify(data, recv_ts)
            except MessageParseError as e:
                self._stats.parse_errors += 1
                logger.warning(f"[{self._name}] Failed to classify message: {e}")
                continue

            type_key = routed.message_type.value
            self._stats.by_type[type_key] = self._stats.by_type.get(type_key, 0) + 1

            if routed.message_type in self.CONTROL_TYPES:
                self._stats.control_messages += 1
                try:
                    signal = self._handle_control(routed)
                except Exception as e:
                    self._stats.parse_errors += 1
                    logger.error(f"[{self._name}] Control message error: {e}", exc_info=True)
                    continue
                if signal is None:
                    continue
                signals.append(signal)
                if on_control is not None and not await on_control(signal):
                    logger.debug(f"[{self._name}] Dropping rest of frame after {signal.value}")
                    break
                continue

            handler = self._handlers.get(routed.message_type)
            if handler is None:
                if routed.message_type != MessageType.UNKNOWN:
                    logger.debug(f"[{self._name}] No handler for message type: {type_key}")
                else:
                    logger.debug(f"[{self._name}] Unhandled message: {data!r:.200}")
                self._stats.dropped_messages += 1
                continue

            if await handler.handle(routed):
                self._stats.routed_messages += 1

        return signals

    @abstractmethod
    def _setup_handlers(self) -> None:
        """Create and register the data handlers for this stream kind."""
        ...

    @abstractmethod
    def _classify(self, data: dict[str, Any], recv_ts: int) -> RoutedMessage:
        """Classify a single message object."""
        ...

    @abstractmethod
    def _handle_control(self, msg: RoutedMessage) -> Optional[ControlSignal]:
        """Consume a control message; return a signal for the connection, if any."""
        ...

    def reset_stats(self) -> None:
        """Reset routing statistics."""
        self._stats = RouterStats()


class MarketDataRouter(MessageRouter):
    """
    Router for the market data stream.

    Every message is tagged by "T":
        {"T": "success", "msg": "connected"}
        {"T": "success", "msg": "authenticated"}
        {"T": "error", "code": 402, "msg": "auth failed"}
        {"T": "subscription", "trades": ["AAPL"], "quotes": [], "bars": []}
        {"T": "t", "S": "AAPL", "p": 185.5, "s": 100, ...}
    Frames usually carry a JSON array of such messages.
    """

    TYPE_MAP: ClassVar[dict[str, MessageType]] = {
        "t": MessageType.TRADE,
        "q": MessageType.QUOTE,
        "b": MessageType.BAR,
        "success": MessageType.SUCCESS,
        "error": MessageType.ERROR,
        "subscription": MessageType.SUBSCRIPTION,
    }

    CONTROL_TYPES: ClassVar[frozenset[MessageType]] = frozenset(
        {MessageType.SUCCESS, MessageType.ERROR, MessageType.SUBSCRIPTION}
    )

    def _setup_handlers(self) -> None:
        self.register_handler(MessageType.TRADE, TradeHandler(on_event=self._deliver))
        self.register_handler(MessageType.QUOTE, QuoteHandler(on_event=self._deliver))
        self.register_handler(MessageType.BAR, BarHandler(on_event=self._deliver))

    def _classify(self, data: dict[str, Any], recv_ts: int) -> RoutedMessage:
        tag = data.get("T")
        message_type = self.TYPE_MAP.get(tag, MessageType.UNKNOWN) if isinstance(tag, str) else MessageType.UNKNOWN
        return RoutedMessage(message_type=message_type, data=data, recv_ts=recv_ts)

    def _handle_control(self, msg: RoutedMessage) -> Optional[ControlSignal]:
        data = msg.data

        if msg.message_type == MessageType.SUCCESS:
            text = data.get("msg")
            if text == "authenticated":
                logger.info(f"[{self._name}] Authenticated successfully")
                return ControlSignal.AUTH_SUCCESS
            if text == "connected":
                logger.debug(f"[{self._name}] Connected message received")
            else:
                logger.debug(f"[{self._name}] Success message: {text}")
            return None

        if msg.message_type == MessageType.ERROR:
            code = data.get("code")
            text = data.get("msg")
            logger.error(f"[{self._name}] Error {code}: {text}")
            if code in AUTH_ERROR_CODES:
                error = AuthenticationError(
                    f"Authentication rejected: {text}",
                    code=code,
                    component=self._name,
                )
                logger.error(f"[{self._name}] {error}")
                return ControlSignal.AUTH_FAILURE
            return None

        if msg.message_type == MessageType.SUBSCRIPTION:
            counts = ", ".join(
                f"{channel}={len(data.get(channel) or [])}" for channel in ("trades", "quotes", "bars")
            )
            logger.info(f"[{self._name}] Subscription updated: {counts}")
            return None

        return None


class TradeUpdatesRouter(MessageRouter):
    """
    Router for the trade updates (order events) stream.

    Messages are wrapped in a stream envelope:
        {"stream": "authorization", "data": {"status": "authorized", "action": "authenticate"}}
        {"stream": "listening", "data": {"streams": ["trade_updates"]}}
        {"stream": "trade_updates", "data": {"event": "fill", "order": {...}, ...}}
    """

    STREAM_MAP: ClassVar[dict[str, MessageType]] = {
        "authorization": MessageType.AUTHORIZATION,
        "listening": MessageType.LISTENING,
        "trade_updates": MessageType.ORDER_UPDATE,
    }

    CONTROL_TYPES: ClassVar[frozenset[MessageType]] = frozenset(
        {MessageType.AUTHORIZATION, MessageType.LISTENING}
    )

    def _setup_handlers(self) -> None:
        self.register_handler(MessageType.ORDER_UPDATE, OrderEventHandler(on_event=self._deliver))

    def _classify(self, data: dict[str, Any], recv_ts: int) -> RoutedMessage:
        stream = data.get("stream")
        message_type = (
            self.STREAM_MAP.get(stream, MessageType.UNKNOWN)
            if isinstance(stream, str)
            else MessageType.UNKNOWN
        )
        if message_type == MessageType.UNKNOWN:
            return RoutedMessage(message_type=message_type, data=data, recv_ts=recv_ts)

        inner = data.get("data")
        if not isinstance(inner, dict):
            raise MessageParseError(
                f"Missing data section in '{stream}' message",
                expected_type=stream,
            )
        return RoutedMessage(message_type=message_type, data=inner, recv_ts=recv_ts)

    def _handle_control(self, msg: RoutedMessage) -> Optional[ControlSignal]:
        data = msg.data

        if msg.message_type == MessageType.AUTHORIZATION:
            status = data.get("status")
            if status == "authorized":
                logger.info(f"[{self._name}] Authenticated successfully")
                return ControlSignal.AUTH_SUCCESS
            error = AuthenticationError(
                f"Authentication failed: {status}",
                status=str(status),
                component=self._name,
            )
            logger.error(f"[{self._name}] {error}")
            return ControlSignal.AUTH_FAILURE

        if msg.message_type == MessageType.LISTENING:
            logger.info(f"[{self._name}] Subscribed to: {data.get('streams')}")
            return None

        return None
