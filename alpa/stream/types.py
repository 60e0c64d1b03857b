"""
Shared types, enums, and data structures for the streaming client.

This module contains types that are used across multiple components
of the stream system.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from alpa.types.aliases import UnixMillis


class ConnectionState(str, Enum):
    """
    State machine for a stream connection.

        [CONNECTING] -> [AUTHENTICATING] -> [CONNECTED] <-> [DISCONNECTED]
                                                                  |
                                          stop() from any state -> [CLOSED]
    """

    CONNECTING = "connecting"
    AUTHENTICATING = "authenticating"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    CLOSED = "closed"


class MessageType(str, Enum):
    """Types of messages received from either stream."""

    # Market data
    TRADE = "trade"
    QUOTE = "quote"
    BAR = "bar"
    SUCCESS = "success"
    ERROR = "error"
    SUBSCRIPTION = "subscription"

    # Trade updates
    ORDER_UPDATE = "trade_updates"
    AUTHORIZATION = "authorization"
    LISTENING = "listening"

    UNKNOWN = "unknown"


class ControlSignal(str, Enum):
    """What the dispatcher tells the connection after interpreting a control message."""

    AUTH_SUCCESS = "auth_success"
    AUTH_FAILURE = "auth_failure"


@dataclass(frozen=True, slots=True)
class RoutedMessage:
    """Single classified message out of a frame."""

    message_type: MessageType
    data: dict[str, Any]
    recv_ts: UnixMillis  # Local receive timestamp

    @property
    def symbol(self) -> Optional[str]:
        """Market data messages carry their symbol under 'S'."""
        symbol = self.data.get("S")
        return symbol if isinstance(symbol, str) else None


@dataclass
class ConnectionHealth:
    """Health snapshot for a single stream connection."""

    name: str
    state: ConnectionState
    url: str
    connected_since: Optional[datetime] = None
    last_message_at: Optional[datetime] = None
    reconnect_count: int = 0
    reconnect_attempts: int = 0
    reconnect_exhausted: bool = False
    message_count: int = 0
    error_count: int = 0
    decode_errors: int = 0
    callback_errors: int = 0
    consecutive_callback_errors: int = 0
    last_error: Optional[str] = None
    last_error_at: Optional[datetime] = None

    @property
    def uptime_s(self) -> Optional[float]:
        """Connection uptime in seconds, or None if not connected."""
        if self.connected_since is None:
            return None
        now = datetime.now(timezone.utc)
        return (now - self.connected_since).total_seconds()

    @property
    def is_healthy(self) -> bool:
        """Check if connection is in a healthy state."""
        return self.state == ConnectionState.CONNECTED

    @property
    def seconds_since_message(self) -> Optional[float]:
        """Seconds since last message, or None if no messages yet."""
        if self.last_message_at is None:
            return None
        now = datetime.now(timezone.utc)
        return (now - self.last_message_at).total_seconds()


@dataclass
class ConnectionMetrics:
    """Counters for a stream connection across all its transport sessions."""

    frames_received: int = 0
    bytes_received: int = 0
    pings_answered: int = 0
    connects: int = 0
    reconnections: int = 0  # sessions re-established after a loss
    auth_failures: int = 0
    errors: int = 0

    # Timing
    connected_at: Optional[float] = None  # monotonic time
    last_message_at: Optional[float] = None  # monotonic time
