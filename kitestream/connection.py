"""Connection manager: one WebSocket session with auto-reconnect.

State machine
-------------
::

    DISCONNECTED --connect()--> CONNECTING
    CONNECTING   --open ok-----> CONNECTED      replay subscriptions, emit connect
    CONNECTING   --open failed-> RECONNECTING   (or CLOSED when not allowed)
    CONNECTED    --drop--------> RECONNECTING   (or CLOSED when not allowed)
    RECONNECTING --delay-------> CONNECTING
    any          --close()-----> CLOSED         terminal until connect()

Backoff is exponential (see :class:`~kitestream.config.ReconnectPolicy`); the
attempt counter resets on every successful open.  An HTTP 401/403 handshake
rejection is fatal and never retried.

The only suspension points are the socket read and the backoff sleep, both in
the session task.  Attempts are strictly sequential.  All writes to the socket
go through :meth:`ConnectionManager.send`.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any
from urllib.parse import urlencode

from websockets.asyncio.client import connect as ws_connect
from websockets.exceptions import ConnectionClosed, InvalidURI

from kitestream.config import Credentials, TickerConfig
from kitestream.decoder import decode_frame
from kitestream.errors import AuthenticationError, ReconnectExhaustedError
from kitestream.events import EventDispatcher, EventKind
from kitestream.postback import parse_text_message
from kitestream.subscriptions import SubscriptionRegistry
from kitestream.ticks import Mode

logger = logging.getLogger(__name__)

KITE_VERSION = "3"
AUTH_REJECT_STATUSES = frozenset({401, 403})

Connector = Callable[..., Awaitable[Any]]
Sleeper = Callable[[float], Awaitable[Any]]


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"


_LIVE_STATES = frozenset({
    ConnectionState.CONNECTING,
    ConnectionState.CONNECTED,
    ConnectionState.RECONNECTING,
})


def _rejection_status(exc: BaseException) -> int | None:
    """HTTP status of a rejected handshake, if *exc* is one."""
    response = getattr(exc, "response", None)
    status = getattr(response, "status_code", None)
    if status is None:
        status = getattr(exc, "status_code", None)
    return status if isinstance(status, int) else None


def build_url(root: str, credentials: Credentials) -> str:
    query = urlencode({
        "api_key": credentials.api_key,
        "access_token": credentials.access_token,
        "uid": str(int(time.time() * 1000)),
    })
    return f"{root.rstrip('/')}/?{query}"


class ConnectionManager:
    """Owns the transport, its state and the reconnect loop.

    Parameters
    ----------
    credentials : Credentials
        api_key / access_token for the stream URL.
    config : TickerConfig
        Endpoint, timeouts and reconnect policy.
    registry : SubscriptionRegistry
        Replayed on every successful connect; only read here.
    dispatcher : EventDispatcher
        Receives every lifecycle and data event.
    connector : callable, optional
        ``await connector(url, **kwargs)`` returning a socket with
        ``recv``/``send``/``close``.  Defaults to ``websockets.asyncio.client.connect``.
    sleep : callable, optional
        Backoff sleep, defaults to ``asyncio.sleep``.
    """

    def __init__(
        self,
        credentials: Credentials,
        config: TickerConfig,
        registry: SubscriptionRegistry,
        dispatcher: EventDispatcher,
        connector: Connector | None = None,
        sleep: Sleeper | None = None,
    ) -> None:
        self._credentials = credentials
        self._config = config
        self._registry = registry
        self._dispatcher = dispatcher
        self._connector = connector or ws_connect
        self._sleep = sleep or asyncio.sleep

        self._state = ConnectionState.DISCONNECTED
        self._ws: Any | None = None
        self._task: asyncio.Task | None = None
        self._closing = False
        self._attempts = 0

        self._frames_received = 0
        self._ticks_received = 0
        self._total_reconnects = 0
        self._last_message_time = 0.0

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def attempts(self) -> int:
        return self._attempts

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED and self._ws is not None

    def _set_state(self, state: ConnectionState) -> None:
        if state is not self._state:
            logger.debug("Connection state %s -> %s", self._state.value, state.value)
            self._state = state

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Start the session task; no-op while a session is live."""
        if self._state in _LIVE_STATES:
            logger.debug("connect() ignored, session already %s", self._state.value)
            return
        self._closing = False
        self._attempts = 0
        self._set_state(ConnectionState.CONNECTING)
        self._task = asyncio.create_task(self._run(), name="kitestream-session")

    async def close(self, reason: str = "closed by client") -> None:
        """Caller-initiated close; cancels pending reconnects and timers."""
        if self._state is ConnectionState.CLOSED:
            return
        if self._closing:
            logger.debug("close() already in progress")
            return
        self._closing = True
        task, self._task = self._task, None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        await self._release_transport()
        self._enter_closed(reason)

    async def wait_closed(self) -> None:
        """Wait until the session task has finished."""
        task = self._task
        if task is not None:
            try:
                await asyncio.shield(task)
            except asyncio.CancelledError:
                if not task.cancelled():
                    raise

    def _enter_closed(self, reason: str) -> None:
        if self._state is ConnectionState.CLOSED:
            return
        self._set_state(ConnectionState.CLOSED)
        logger.info("Ticker closed: %s", reason)
        self._dispatcher.emit(EventKind.CLOSE, reason)

    async def _release_transport(self) -> None:
        ws, self._ws = self._ws, None
        if ws is None:
            return
        try:
            await ws.close()
        except Exception as e:
            logger.debug("WebSocket close failed: %s", e)

    # ------------------------------------------------------------------
    # Session loop
    # ------------------------------------------------------------------

    async def _open(self) -> Any:
        url = build_url(self._config.root, self._credentials)
        logger.info("Connecting to %s", self._config.root)
        return await self._connector(
            url,
            additional_headers={
                "X-Kite-Version": KITE_VERSION,
                "User-Agent": self._config.user_agent,
            },
            open_timeout=self._config.connect_timeout,
            close_timeout=self._config.close_timeout,
            max_size=self._config.max_frame_size,
        )

    async def _run(self) -> None:
        try:
            while not self._closing:
                self._set_state(ConnectionState.CONNECTING)
                try:
                    ws = await self._open()
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    if self._is_fatal(e):
                        self._fail_fatally(e)
                        return
                    logger.warning("Connect failed: %s", e)
                    self._dispatcher.emit(EventKind.ERROR, e)
                    if not await self._backoff():
                        return
                    continue

                self._ws = ws
                self._attempts = 0
                self._set_state(ConnectionState.CONNECTED)
                logger.info("Connected")
                await self._replay()
                self._dispatcher.emit(EventKind.CONNECT)

                reason = await self._read_loop(ws)
                await self._release_transport()
                if self._closing:
                    return

                logger.warning("Disconnected: %s", reason)
                self._set_state(
                    ConnectionState.RECONNECTING
                    if self._config.reconnect.enabled
                    else ConnectionState.DISCONNECTED
                )
                self._dispatcher.emit(EventKind.DISCONNECT, reason)
                if not await self._backoff():
                    return
        finally:
            await self._release_transport()

    def _is_fatal(self, exc: Exception) -> bool:
        return isinstance(exc, InvalidURI) or _rejection_status(exc) in AUTH_REJECT_STATUSES

    def _fail_fatally(self, exc: Exception) -> None:
        status = _rejection_status(exc)
        error = AuthenticationError(status) if status in AUTH_REJECT_STATUSES else exc
        logger.error("Fatal connection failure, not reconnecting: %s", error)
        self._dispatcher.emit(EventKind.ERROR, error)
        self._dispatcher.emit(EventKind.NORECONNECT)
        self._enter_closed(str(error))

    async def _backoff(self) -> bool:
        """Wait before the next attempt.

        Returns False (after entering CLOSED) when no further attempt is
        allowed.
        """
        policy = self._config.reconnect
        if not policy.enabled:
            logger.info("Auto-reconnect disabled")
            self._dispatcher.emit(EventKind.NORECONNECT)
            self._enter_closed("reconnect disabled")
            return False

        self._attempts += 1
        if self._attempts > policy.max_attempts:
            logger.error("Max reconnect attempts (%d) exhausted", policy.max_attempts)
            self._dispatcher.emit(EventKind.ERROR, ReconnectExhaustedError(policy.max_attempts))
            self._dispatcher.emit(EventKind.NORECONNECT)
            self._enter_closed("reconnect attempts exhausted")
            return False

        delay = policy.delay_for(self._attempts)
        self._set_state(ConnectionState.RECONNECTING)
        self._total_reconnects += 1
        logger.info(
            "Reconnect attempt %d/%d in %.1fs",
            self._attempts, policy.max_attempts, delay,
        )
        self._dispatcher.emit(EventKind.RECONNECT, self._attempts, delay)
        await self._sleep(delay)
        return not self._closing

    async def _read_loop(self, ws: Any) -> Exception | str:
        """Read frames until the transport fails; returns the reason."""
        self._last_message_time = time.monotonic()
        while not self._closing:
            try:
                message = await asyncio.wait_for(ws.recv(), timeout=self._config.read_timeout)
            except asyncio.TimeoutError:
                return f"no data for {self._config.read_timeout:.0f}s"
            except ConnectionClosed as e:
                return e
            except asyncio.CancelledError:
                raise
            except Exception as e:
                return e
            self._last_message_time = time.monotonic()
            self._handle_message(message)
        return "closing"

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    def _handle_message(self, message: bytes | str) -> None:
        self._frames_received += 1
        if isinstance(message, (bytes, bytearray, memoryview)):
            raw = bytes(message)
            self._dispatcher.emit(EventKind.MESSAGE, raw)
            ticks = decode_frame(raw, self._config.price_divisors)
            if ticks:
                self._ticks_received += len(ticks)
                self._dispatcher.emit(EventKind.TICKS, ticks)
            return

        parsed = parse_text_message(message)
        if parsed is not None:
            kind, payload = parsed
            self._dispatcher.emit(kind, payload)

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    async def send(self, payload: dict) -> bool:
        """Write one JSON command; returns False when not connected."""
        ws = self._ws
        if not self.is_connected or ws is None:
            return False
        try:
            await ws.send(json.dumps(payload))
        except Exception as e:
            logger.warning("Send failed, dropping connection: %s", e)
            await self._release_transport()
            return False
        return True

    async def send_subscribe(self, tokens: list[int]) -> bool:
        if not tokens:
            return False
        return await self.send({"a": "subscribe", "v": tokens})

    async def send_unsubscribe(self, tokens: list[int]) -> bool:
        if not tokens:
            return False
        return await self.send({"a": "unsubscribe", "v": tokens})

    async def send_mode(self, mode: Mode, tokens: list[int]) -> bool:
        if not tokens:
            return False
        return await self.send({"a": "mode", "v": [Mode(mode).value, tokens]})

    async def _replay(self) -> None:
        groups = self._registry.by_mode()
        if not groups:
            return
        for mode, tokens in groups.items():
            await self.send_subscribe(tokens)
            await self.send_mode(mode, tokens)
        logger.info(
            "Replayed %d subscriptions (%s)",
            sum(len(t) for t in groups.values()),
            ", ".join(f"{m.value}={len(t)}" for m, t in groups.items()),
        )

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def stats(self) -> dict[str, Any]:
        return {
            "state": self._state.value,
            "attempts": self._attempts,
            "max_attempts": self._config.reconnect.max_attempts,
            "frames_received": self._frames_received,
            "ticks_received": self._ticks_received,
            "total_reconnects": self._total_reconnects,
            "last_message_time": self._last_message_time,
            "subscriptions": len(self._registry),
        }
