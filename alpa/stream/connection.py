"""
Stream Connection for the streaming client.

Each stream runs as a single actor task that owns all of its mutable state:
the WebSocket, the subscription registry, the reconnect supervisor and the
live credentials. Everything that can change that state arrives as a message
on one asyncio.Queue and is handled strictly in arrival order:

- frames, pings and disconnects forwarded by the reader task
- subscribe/unsubscribe/stop commands from the public API
- reconnect timer expiries

The reader task tags every message with the generation of the socket it read
from; messages from a socket that has since been torn down are dropped.

Lifecycle:
    DISCONNECTED -start()-> CONNECTING -> AUTHENTICATING -> CONNECTED
    CONNECTED -socket lost-> DISCONNECTED -timer-> CONNECTING ...
    any state -stop()-> CLOSED
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import random
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Literal, Mapping, Optional, Union

import aiohttp
import orjson

from alpa.ports.credentials_provider import CredentialProvider
from alpa.ports.transport import Transport, WebSocket
from alpa.stream.config import ConnectionConfig
from alpa.stream.credentials import Credentials
from alpa.stream.errors import AuthenticationError, StreamConnectionError
from alpa.stream.registry import SubscriptionRegistry
from alpa.stream.router import CallbackInvoker, MessageRouter, StreamCallback, as_stream_callback
from alpa.stream.supervisor import ReconnectSupervisor
from alpa.stream.types import ConnectionHealth, ConnectionMetrics, ConnectionState, ControlSignal
from alpa.types.aliases import Channel, Symbol, SubscriptionSpec

logger = logging.getLogger(__name__)


# --- Mailbox messages ---


@dataclass(frozen=True, slots=True)
class _Connect:
    pass


@dataclass(frozen=True, slots=True)
class _Authenticate:
    generation: int


@dataclass(frozen=True, slots=True)
class _Frame:
    generation: int
    data: Union[str, bytes]
    recv_ts: int


@dataclass(frozen=True, slots=True)
class _Ping:
    generation: int
    payload: bytes


@dataclass(frozen=True, slots=True)
class _Disconnected:
    generation: int
    reason: str


@dataclass(frozen=True, slots=True)
class _Command:
    action: Literal["subscribe", "unsubscribe"]
    spec: SubscriptionSpec
    done: asyncio.Future[SubscriptionSpec]


@dataclass(frozen=True, slots=True)
class _Stop:
    done: asyncio.Future[None]


_MailboxMessage = Union[_Connect, _Authenticate, _Frame, _Ping, _Disconnected, _Command, _Stop]


class StreamConnection(ABC):
    """
    Base actor for one authenticated, self-healing stream.

    Subclasses supply the router, the registry layout, the endpoint and the
    wire format of subscription messages.

    Usage:
        stream = MarketDataStream(on_event, trades=["AAPL"])
        await stream.start()
        await stream.subscribe(quotes=["MSFT"])
        ...
        await stream.stop()
    """

    def __init__(
        self,
        callback: StreamCallback,
        *,
        connection_config: ConnectionConfig,
        credentials: CredentialProvider,
        transport: Transport,
        initial_subscriptions: Optional[Mapping[Channel, Iterable[Symbol]]] = None,
        on_state_change: Optional[Callable[[ConnectionState], Any]] = None,
        name: str = "stream",
        rng: Optional[random.Random] = None,
    ) -> None:
        """
        Args:
            callback: Receives every decoded event; a callable or a (callable, *args) tuple
            connection_config: Timeouts, reconnect policy and callback error threshold
            credentials: Provider consulted on start() and before every connection attempt
            transport: WebSocket transport
            initial_subscriptions: Registry contents sent after the first authentication
            on_state_change: Optional listener for state transitions (sync or async)
            name: Name for logging purposes
            rng: Random source for reconnect jitter
        """
        self._name = name
        self._config = connection_config
        self._credentials_provider = credentials
        self._transport = transport
        self._on_state_change = on_state_change
        self._rng = rng

        self._invoker = CallbackInvoker(
            as_stream_callback(callback),
            error_threshold=connection_config.callback_error_threshold,
            name=name,
        )
        self._router = self._create_router(self._invoker)
        self._registry = self._create_registry(initial_subscriptions)
        self._supervisor = ReconnectSupervisor.from_config(connection_config, rng=rng)

        # State
        self._state = ConnectionState.DISCONNECTED
        self._url: Optional[str] = None
        self._ws: Optional[WebSocket] = None
        self._credentials: Optional[Credentials] = None
        self._generation = 0
        self._lifecycle = 0
        self._stopped = False
        self._reconnect_exhausted = False
        self._has_connected = False

        # Tasks
        self._mailbox: Optional[asyncio.Queue[_MailboxMessage]] = None
        self._actor_task: Optional[asyncio.Task[None]] = None
        self._reader_task: Optional[asyncio.Task[None]] = None
        self._reconnect_timer: Optional[asyncio.TimerHandle] = None
        self._state_waiters: dict[ConnectionState, list[asyncio.Future[None]]] = {}

        # Metrics
        self._metrics = ConnectionMetrics()
        self._connected_at: Optional[datetime] = None
        self._last_message_at: Optional[datetime] = None
        self._last_error: Optional[str] = None
        self._last_error_at: Optional[datetime] = None

    # --- Subclass hooks ---

    @abstractmethod
    def _create_router(self, invoker: CallbackInvoker) -> MessageRouter:
        ...

    @abstractmethod
    def _create_registry(
        self, initial: Optional[Mapping[Channel, Iterable[Symbol]]]
    ) -> SubscriptionRegistry:
        ...

    @abstractmethod
    def _resolve_url(self, credentials: Credentials) -> str:
        ...

    @abstractmethod
    def _subscription_message(
        self, action: Literal["subscribe", "unsubscribe"], spec: SubscriptionSpec
    ) -> Optional[dict[str, Any]]:
        """Wire message for an incremental change while connected; None to send nothing."""
        ...

    @abstractmethod
    def _replay_message(self, snapshot: SubscriptionSpec) -> Optional[dict[str, Any]]:
        """Single consolidated message restoring the registry after authentication."""
        ...

    # --- Properties ---

    @property
    def name(self) -> str:
        return self._name

    @property
    def state(self) -> ConnectionState:
        """Current connection state."""
        return self._state

    @property
    def status(self) -> ConnectionState:
        """Alias of state."""
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED

    @property
    def reconnect_exhausted(self) -> bool:
        """True once the reconnect cap was hit; start() must be called again."""
        return self._reconnect_exhausted

    @property
    def subscriptions(self) -> SubscriptionSpec:
        """Snapshot of the desired subscription state."""
        return self._registry.snapshot()

    @property
    def metrics(self) -> ConnectionMetrics:
        return self._metrics

    @property
    def router(self) -> MessageRouter:
        return self._router

    @property
    def url(self) -> Optional[str]:
        return self._url

    # --- Public API ---

    async def start(self) -> None:
        """
        Resolve credentials and start connecting in the background.

        Returns once the actor is running; it does not wait for the handshake
        (see wait_for_state). Also re-arms a stream whose reconnect attempts
        were exhausted.

        Raises:
            MissingCredentialsError: If no complete key/secret pair is available
        """
        task = self._actor_task
        if self._stopped and task is not None and not task.done():
            if asyncio.current_task() is task:
                logger.warning(f"[{self._name}] start() from the callback during stop ignored")
                return
            logger.debug(f"[{self._name}] Waiting for the previous stop to finish")
            await asyncio.wait([task])

        if self._actor_task is not None and not self._actor_task.done():
            if self._reconnect_exhausted:
                self._credentials_provider.resolve()
                logger.info(f"[{self._name}] Restarting after exhausted reconnect attempts")
                self._reconnect_exhausted = False
                self._supervisor = ReconnectSupervisor.from_config(self._config, rng=self._rng)
                self._post(_Connect())
                return
            logger.warning(f"[{self._name}] Already started")
            return

        credentials = self._credentials_provider.resolve()
        self._url = self._resolve_url(credentials)

        self._stopped = False
        self._reconnect_exhausted = False
        self._lifecycle += 1
        self._supervisor = ReconnectSupervisor.from_config(self._config, rng=self._rng)
        self._mailbox = asyncio.Queue()

        logger.info(f"[{self._name}] Starting stream to {self._url}")
        self._actor_task = asyncio.create_task(self._run(), name=f"{self._name}_actor")
        self._post(_Connect())

    async def stop(self) -> None:
        """
        Stop the stream: cancel any pending reconnect, close the socket, enter CLOSED.

        Idempotent. Subscribe/unsubscribe calls made afterwards only update
        the registry.
        """
        already_stopped = self._stopped
        self._stopped = True
        self._cancel_reconnect_timer()

        task = self._actor_task
        if task is None or task.done():
            if not already_stopped:
                await self._set_state(ConnectionState.CLOSED)
            return

        if not already_stopped:
            done: asyncio.Future[None] = asyncio.get_running_loop().create_future()
            self._post(_Stop(done))
        if asyncio.current_task() is task:
            # called from the callback; the stop is handled once the current frame is done
            return
        await task

    async def subscribe(
        self,
        spec: Optional[Mapping[Channel, Iterable[Symbol]]] = None,
        **channels: Iterable[Symbol],
    ) -> SubscriptionSpec:
        """
        Add symbols to the registry; sends an incremental subscribe when connected.

        Returns:
            The symbols that were newly added, per channel.

        Raises:
            SubscriptionError: On unknown channels or invalid symbols
        """
        return await self._command("subscribe", spec, channels)

    async def unsubscribe(
        self,
        spec: Optional[Mapping[Channel, Iterable[Symbol]]] = None,
        **channels: Iterable[Symbol],
    ) -> SubscriptionSpec:
        """
        Remove symbols from the registry; sends an incremental unsubscribe when connected.

        Returns:
            The symbols that were actually removed, per channel.
        """
        return await self._command("unsubscribe", spec, channels)

    async def wait_for_state(
        self, state: ConnectionState, timeout: Optional[float] = None
    ) -> None:
        """
        Wait until the stream enters `state` (returns immediately if it is already there).

        Raises:
            asyncio.TimeoutError: If the state is not reached in time
        """
        if self._state == state:
            return
        future: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._state_waiters.setdefault(state, []).append(future)
        try:
            await asyncio.wait_for(future, timeout=timeout)
        finally:
            waiters = self._state_waiters.get(state, [])
            if future in waiters:
                waiters.remove(future)

    def get_health(self) -> ConnectionHealth:
        """Get current connection health snapshot."""
        invoker_stats = self._invoker.stats
        return ConnectionHealth(
            name=self._name,
            state=self._state,
            url=self._url or "",
            connected_since=self._connected_at,
            last_message_at=self._last_message_at,
            reconnect_count=self._metrics.reconnections,
            reconnect_attempts=self._supervisor.attempts,
            reconnect_exhausted=self._reconnect_exhausted,
            message_count=self._metrics.frames_received,
            error_count=self._metrics.errors,
            decode_errors=self._router.decode_errors,
            callback_errors=invoker_stats.failed,
            consecutive_callback_errors=invoker_stats.consecutive_errors,
            last_error=self._last_error,
            last_error_at=self._last_error_at,
        )

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self._name!r}, state={self._state.value})"

    # --- Actor ---

    def _post(self, message: _MailboxMessage) -> None:
        if self._mailbox is None:
            return
        self._mailbox.put_nowait(message)

    def _actor_running(self) -> bool:
        return (
            not self._stopped
            and self._actor_task is not None
            and not self._actor_task.done()
        )

    async def _run(self) -> None:
        """Main loop: handle mailbox messages one at a time until stopped."""
        assert self._mailbox is not None
        mailbox = self._mailbox

        while True:
            message = await mailbox.get()

            if isinstance(message, _Stop):
                try:
                    await self._handle_stop()
                finally:
                    self._drain(mailbox)
                    if not message.done.done():
                        message.done.set_result(None)
                return

            try:
                await self._handle(message)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(
                    f"[{self._name}] Error handling {type(message).__name__}: {e}",
                    exc_info=True,
                )
                self._record_error(e)

    async def _handle(self, message: _MailboxMessage) -> None:
        if isinstance(message, _Frame):
            await self._handle_frame(message)
        elif isinstance(message, _Ping):
            await self._handle_ping(message)
        elif isinstance(message, _Command):
            await self._handle_command(message)
        elif isinstance(message, _Connect):
            await self._handle_connect()
        elif isinstance(message, _Authenticate):
            await self._handle_authenticate(message)
        elif isinstance(message, _Disconnected):
            await self._handle_disconnected(message)

    def _drain(self, mailbox: asyncio.Queue[_MailboxMessage]) -> None:
        """Settle whatever was queued behind the stop; commands still reach the registry."""
        while not mailbox.empty():
            message = mailbox.get_nowait()
            if isinstance(message, _Command):
                if message.done.done():
                    continue
                try:
                    message.done.set_result(self._apply(message.action, message.spec))
                except Exception as e:
                    message.done.set_exception(e)
            elif isinstance(message, _Stop) and not message.done.done():
                message.done.set_result(None)

    # --- Connect / authenticate ---

    async def _handle_connect(self) -> None:
        if self._stopped:
            return
        if self._ws is not None:
            logger.debug(f"[{self._name}] Connect requested while a socket is open, ignoring")
            return

        self._reconnect_timer = None
        await self._set_state(ConnectionState.CONNECTING)
        self._metrics.connects += 1

        try:
            credentials = self._credentials_provider.resolve()
            url = self._resolve_url(credentials)
            logger.info(f"[{self._name}] Connecting to {url}")
            ws = await self._transport.connect(url, timeout_s=self._config.connect_timeout_s)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            error = StreamConnectionError(
                f"Connection attempt failed: {e}",
                url=self._url,
                reconnect_attempt=self._supervisor.attempts,
                component=self._name,
            )
            logger.warning(f"[{self._name}] {error}")
            self._record_error(error)
            await self._enter_disconnected()
            return

        self._generation += 1
        self._ws = ws
        self._url = url
        self._credentials = credentials
        self._connected_at = datetime.now(timezone.utc)
        self._metrics.connected_at = time.monotonic()

        self._reader_task = asyncio.create_task(
            self._read_loop(ws, self._generation), name=f"{self._name}_reader"
        )
        await self._set_state(ConnectionState.AUTHENTICATING)
        self._post(_Authenticate(self._generation))

    async def _handle_authenticate(self, message: _Authenticate) -> None:
        if message.generation != self._generation or self._credentials is None:
            return
        logger.debug(f"[{self._name}] Sending auth")
        await self._send(self._credentials.auth_message())

    async def _on_auth_success(self) -> None:
        if self._state == ConnectionState.CONNECTED:
            logger.debug(f"[{self._name}] Duplicate auth confirmation ignored")
            return

        await self._set_state(ConnectionState.CONNECTED)
        if self._has_connected:
            self._metrics.reconnections += 1
        self._has_connected = True
        self._supervisor.reset()
        self._reconnect_exhausted = False
        if self._credentials is not None:
            self._credentials = self._credentials.redacted()
        logger.info(f"[{self._name}] Connected")

        replay = self._replay_message(self._registry.snapshot())
        if replay is not None:
            logger.info(f"[{self._name}] Restoring subscriptions")
            await self._send(replay)

    async def _on_auth_failure(self) -> None:
        self._metrics.auth_failures += 1
        error = AuthenticationError(
            "Authentication rejected, closing connection",
            component=self._name,
        )
        logger.error(f"[{self._name}] {error}")
        self._record_error(error)
        await self._teardown_socket()
        await self._enter_disconnected()

    # --- Inbound ---

    async def _read_loop(self, ws: WebSocket, generation: int) -> None:
        """Forward everything from one socket to the mailbox, then report its end."""
        reason = "closed by server"
        try:
            async for msg in ws:
                if msg.type in (aiohttp.WSMsgType.TEXT, aiohttp.WSMsgType.BINARY):
                    self._post(_Frame(generation, msg.data, int(time.time() * 1000)))

                elif msg.type == aiohttp.WSMsgType.PING:
                    self._post(_Ping(generation, msg.data or b""))

                elif msg.type == aiohttp.WSMsgType.PONG:
                    pass

                elif msg.type in (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSED):
                    break

                elif msg.type == aiohttp.WSMsgType.ERROR:
                    reason = f"websocket error: {ws.exception()}"
                    break

        except asyncio.CancelledError:
            raise
        except Exception as e:
            reason = f"receive error: {e}"

        self._post(_Disconnected(generation, reason))

    async def _handle_frame(self, message: _Frame) -> None:
        if message.generation != self._generation:
            return

        self._metrics.frames_received += 1
        self._metrics.bytes_received += len(message.data)
        self._metrics.last_message_at = time.monotonic()
        self._last_message_at = datetime.now(timezone.utc)

        async def on_control(signal: ControlSignal) -> bool:
            if signal == ControlSignal.AUTH_SUCCESS:
                await self._on_auth_success()
            elif signal == ControlSignal.AUTH_FAILURE:
                await self._on_auth_failure()
            return message.generation == self._generation

        await self._router.route(message.data, message.recv_ts, on_control=on_control)

    async def _handle_ping(self, message: _Ping) -> None:
        if message.generation != self._generation or self._ws is None:
            return
        try:
            await self._ws.pong(message.payload)
            self._metrics.pings_answered += 1
        except Exception as e:
            logger.warning(f"[{self._name}] Pong failed: {e}")

    async def _handle_disconnected(self, message: _Disconnected) -> None:
        if message.generation != self._generation:
            return
        logger.warning(f"[{self._name}] Connection lost: {message.reason}")
        await self._teardown_socket()
        await self._enter_disconnected()

    # --- Reconnect ---

    async def _enter_disconnected(self) -> None:
        await self._set_state(ConnectionState.DISCONNECTED)
        if self._stopped:
            return

        delay = self._supervisor.next_delay()
        if delay is None:
            self._reconnect_exhausted = True
            logger.error(
                f"[{self._name}] Giving up after {self._supervisor.max_attempts} reconnect "
                f"attempts; call start() to try again"
            )
            return

        logger.info(
            f"[{self._name}] Reconnecting in {delay:.2f}s "
            f"(attempt {self._supervisor.attempts}/{self._supervisor.max_attempts})"
        )
        loop = asyncio.get_running_loop()
        self._reconnect_timer = loop.call_later(delay, self._on_reconnect_timer, self._lifecycle)

    def _on_reconnect_timer(self, lifecycle: int) -> None:
        self._reconnect_timer = None
        if self._stopped or lifecycle != self._lifecycle:
            logger.debug(f"[{self._name}] Stale reconnect timer ignored")
            return
        self._post(_Connect())

    def _cancel_reconnect_timer(self) -> None:
        if self._reconnect_timer is not None:
            self._reconnect_timer.cancel()
            self._reconnect_timer = None

    # --- Commands ---

    async def _command(
        self,
        action: Literal["subscribe", "unsubscribe"],
        spec: Optional[Mapping[Channel, Iterable[Symbol]]],
        channels: Mapping[Channel, Iterable[Symbol]],
    ) -> SubscriptionSpec:
        merged: dict[Channel, Iterable[Symbol]] = dict(spec or {})
        merged.update(channels)
        normalized = self._registry.normalize(merged)

        if not self._actor_running():
            return self._apply(action, normalized)

        done: asyncio.Future[SubscriptionSpec] = asyncio.get_running_loop().create_future()
        command = _Command(action, normalized, done)
        if asyncio.current_task() is self._actor_task:
            await self._handle_command(command)
        else:
            self._post(command)
        return await done

    def _apply(
        self, action: Literal["subscribe", "unsubscribe"], spec: SubscriptionSpec
    ) -> SubscriptionSpec:
        if action == "subscribe":
            return self._registry.add(spec)
        return self._registry.remove(spec)

    async def _handle_command(self, message: _Command) -> None:
        try:
            changed = self._apply(message.action, message.spec)
            if self._state == ConnectionState.CONNECTED:
                wire = self._subscription_message(message.action, message.spec)
                if wire is not None:
                    await self._send(wire)
        except Exception as e:
            if not message.done.done():
                message.done.set_exception(e)
            return
        if not message.done.done():
            message.done.set_result(changed)

    # --- Outbound ---

    async def _send(self, payload: dict[str, Any]) -> bool:
        """Send one JSON message. A failed send closes the socket and triggers a reconnect."""
        ws = self._ws
        if ws is None or ws.closed:
            logger.debug(f"[{self._name}] Not connected, dropping outbound {payload.get('action')}")
            return False
        try:
            await ws.send_str(orjson.dumps(payload).decode())
            return True
        except Exception as e:
            logger.warning(f"[{self._name}] Send failed: {e}")
            self._record_error(e)
            await self._teardown_socket()
            await self._enter_disconnected()
            return False

    # --- Teardown ---

    async def _teardown_socket(self) -> None:
        """Close the current socket and stop its reader; anything it already queued goes stale."""
        self._generation += 1
        self._credentials = None
        self._connected_at = None

        reader, self._reader_task = self._reader_task, None
        if reader is not None and not reader.done():
            reader.cancel()
            try:
                await reader
            except asyncio.CancelledError:
                pass

        ws, self._ws = self._ws, None
        if ws is not None and not ws.closed:
            try:
                await ws.close()
            except Exception as e:
                logger.debug(f"[{self._name}] Error closing socket: {e}")

    async def _handle_stop(self) -> None:
        logger.info(f"[{self._name}] Stopping")
        self._cancel_reconnect_timer()
        await self._teardown_socket()
        try:
            await self._transport.aclose()
        except Exception as e:
            logger.warning(f"[{self._name}] Error closing transport: {e}")
        await self._set_state(ConnectionState.CLOSED)
        logger.info(f"[{self._name}] Stopped")

    # --- State ---

    async def _set_state(self, new_state: ConnectionState) -> None:
        """Update state and notify listeners."""
        old_state = self._state
        self._state = new_state

        if old_state == new_state:
            return

        logger.debug(f"[{self._name}] State: {old_state.value} -> {new_state.value}")
        for future in self._state_waiters.pop(new_state, []):
            if not future.done():
                future.set_result(None)

        if self._on_state_change:
            try:
                result = self._on_state_change(new_state)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.warning(f"[{self._name}] State change callback error: {e}")

    def _record_error(self, error: BaseException) -> None:
        self._metrics.errors += 1
        self._last_error = str(error)
        self._last_error_at = datetime.now(timezone.utc)

