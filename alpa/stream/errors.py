"""
Custom exceptions for the streaming client.

Exception hierarchy:
- StreamError (base)
  - MissingCredentialsError: No API key/secret could be resolved at start
  - AuthenticationError: Server rejected the auth handshake
  - StreamConnectionError: WebSocket connection issues
  - SubscriptionError: Invalid subscription request
  - MessageParseError: Invalid/malformed frames
  - CallbackError: User callback raised while handling an event
  - ConfigurationError: Invalid configuration
"""

from __future__ import annotations

from typing import Any, Optional


class StreamError(Exception):
    """Base exception for all streaming errors."""

    def __init__(
        self,
        message: str,
        *,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.component = component
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        parts = [super().__str__()]
        if self.component:
            parts.append(f"[component={self.component}]")
        if self.details:
            parts.append(f"[details={self.details}]")
        return " ".join(parts)


class MissingCredentialsError(StreamError):
    """Raised by start() when no usable key/secret pair can be resolved."""

    def __init__(
        self,
        message: str = "API key and secret are required",
        *,
        missing: Optional[list[str]] = None,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.missing = missing or []
        details = details or {}
        if missing:
            details["missing"] = missing
        super().__init__(message, component=component, details=details)


class AuthenticationError(StreamError):
    """Raised (and logged) when the server rejects the auth handshake."""

    def __init__(
        self,
        message: str,
        *,
        status: Optional[str] = None,
        code: Optional[int] = None,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.status = status
        self.code = code
        details = details or {}
        if status:
            details["status"] = status
        if code is not None:
            details["code"] = code
        super().__init__(message, component=component, details=details)


class StreamConnectionError(StreamError):
    """Raised when the WebSocket connection fails or is lost."""

    def __init__(
        self,
        message: str,
        *,
        url: Optional[str] = None,
        reconnect_attempt: int = 0,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.url = url
        self.reconnect_attempt = reconnect_attempt
        details = details or {}
        if url:
            details["url"] = url
        details["reconnect_attempt"] = reconnect_attempt
        super().__init__(message, component=component, details=details)


class SubscriptionError(StreamError):
    """Raised when a subscription request names an unknown channel."""

    def __init__(
        self,
        message: str,
        *,
        channel: Optional[str] = None,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.channel = channel
        details = details or {}
        if channel:
            details["channel"] = channel
        super().__init__(message, component=component, details=details)


class MessageParseError(StreamError):
    """Raised when a frame or one of its messages cannot be decoded."""

    def __init__(
        self,
        message: str,
        *,
        raw_data: Optional[str] = None,
        expected_type: Optional[str] = None,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.raw_data = raw_data
        self.expected_type = expected_type
        details = details or {}
        if expected_type:
            details["expected_type"] = expected_type
        # raw_data stays out of details to keep log lines short
        super().__init__(message, component=component, details=details)


class CallbackError(StreamError):
    """Wraps an exception raised by the user callback. Logged, never propagated."""

    def __init__(
        self,
        message: str,
        *,
        event_type: Optional[str] = None,
        consecutive_errors: int = 0,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.event_type = event_type
        self.consecutive_errors = consecutive_errors
        details = details or {}
        if event_type:
            details["event_type"] = event_type
        details["consecutive_errors"] = consecutive_errors
        super().__init__(message, component=component, details=details)


class ConfigurationError(StreamError):
    """Raised when configuration is invalid."""

    def __init__(
        self,
        message: str,
        *,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.field = field
        self.value = value
        details = details or {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)
        super().__init__(message, component=component, details=details)
