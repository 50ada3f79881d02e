"""KiteTicker: streaming session facade.

Wires the subscription registry, event dispatcher and connection manager into
one object per session.

Usage::

    ticker = KiteTicker(load_credentials())

    @ticker.on("ticks")
    def on_ticks(ticks):
        for t in ticks:
            print(t.instrument_token, t.last_price)

    async with ticker:
        await ticker.subscribe([738561, 256265])
        await ticker.set_mode("full", [738561])
        await ticker.connect()
        await ticker.wait_closed()

Subscriptions made while disconnected are recorded and sent on the next
successful connect; every reconnect replays the full registry.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from kitestream.config import Credentials, TickerConfig
from kitestream.connection import ConnectionManager, ConnectionState, Connector, Sleeper
from kitestream.decoder import decode_frame
from kitestream.events import EventDispatcher, EventKind, Handler
from kitestream.subscriptions import DEFAULT_MODE, SubscriptionRegistry
from kitestream.ticks import Mode, Tick

logger = logging.getLogger(__name__)


class KiteTicker:
    """One market-data streaming session."""

    MODE_LTP = Mode.LTP
    MODE_QUOTE = Mode.QUOTE
    MODE_FULL = Mode.FULL

    def __init__(
        self,
        credentials: Credentials,
        config: TickerConfig | None = None,
        *,
        connector: Connector | None = None,
        sleep: Sleeper | None = None,
    ) -> None:
        self.config = config or TickerConfig()
        self.registry = SubscriptionRegistry()
        self.dispatcher = EventDispatcher()
        self._connection = ConnectionManager(
            credentials,
            self.config,
            self.registry,
            self.dispatcher,
            connector=connector,
            sleep=sleep,
        )

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def on(self, kind: EventKind | str, handler: Handler | None = None):
        """Register a handler; see :class:`~kitestream.events.EventDispatcher`."""
        return self.dispatcher.on(kind, handler)

    def off(self, kind: EventKind | str, handler: Handler) -> None:
        self.dispatcher.off(kind, handler)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._connection.state

    @property
    def is_connected(self) -> bool:
        return self._connection.is_connected

    async def connect(self) -> None:
        await self._connection.connect()

    async def close(self, reason: str = "closed by client") -> None:
        await self._connection.close(reason)

    async def wait_closed(self) -> None:
        await self._connection.wait_closed()

    async def __aenter__(self) -> KiteTicker:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    async def subscribe(
        self,
        tokens: Iterable[int],
        mode: Mode | str = DEFAULT_MODE,
    ) -> list[int]:
        """Subscribe *tokens*; returns the ones newly added.

        A non-default *mode* is also pushed to the server for the new tokens.
        """
        mode = Mode(mode)
        added = self.registry.subscribe(tokens, mode)
        if added and await self._connection.send_subscribe(added):
            if mode is not DEFAULT_MODE:
                await self._connection.send_mode(mode, added)
        return added

    async def unsubscribe(self, tokens: Iterable[int]) -> list[int]:
        removed = self.registry.unsubscribe(tokens)
        await self._connection.send_unsubscribe(removed)
        return removed

    async def set_mode(self, mode: Mode | str, tokens: Iterable[int]) -> list[int]:
        """Change the mode of *tokens*, subscribing any that are missing."""
        mode = Mode(mode)
        before = self.registry.snapshot()
        changed = self.registry.set_mode(mode, tokens)
        new = [t for t in changed if t not in before]
        if new:
            await self._connection.send_subscribe(new)
        await self._connection.send_mode(mode, changed)
        return changed

    @property
    def subscriptions(self) -> dict[int, Mode]:
        return self.registry.snapshot()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def parse_binary(self, frame: bytes) -> list[Tick]:
        """Decode a binary frame with this ticker's divisor settings."""
        return decode_frame(frame, self.config.price_divisors)

    def stats(self) -> dict[str, Any]:
        return {**self._connection.stats(), **self.dispatcher.stats()}
