"""Shared fixtures: binary packet builders and an in-memory transport."""

from __future__ import annotations

import asyncio
import json
import struct

import pytest

from kitestream.config import Credentials, ReconnectPolicy, TickerConfig

NSE_TOKEN = 738561          # segment 1 (NSE_CM)
NIFTY_TOKEN = 256265        # segment 9 (INDICES)
CDS_TOKEN = (1234 << 8) | 3  # segment 3 (NSE_CD)


# ---------------------------------------------------------------------------
# Packet builders
# ---------------------------------------------------------------------------

def ltp_packet(token: int, price: int) -> bytes:
    return struct.pack(">Ii", token, price)


def quote_packet(
    token: int,
    ltp: int = 250000,
    last_qty: int = 10,
    avg_price: int = 249500,
    volume: int = 123456,
    buy_qty: int = 5000,
    sell_qty: int = 6000,
    ohlc: tuple[int, int, int, int] = (248000, 251000, 247000, 245000),
) -> bytes:
    return struct.pack(
        ">IiIiIIIiiii",
        token, ltp, last_qty, avg_price, volume, buy_qty, sell_qty, *ohlc,
    )


def full_packet(
    token: int,
    last_trade_time: int = 1_700_000_000,
    oi: int = 1000,
    oi_high: int = 1200,
    oi_low: int = 900,
    exchange_ts: int = 1_700_000_005,
    depth: bool = True,
    **quote_kwargs,
) -> bytes:
    body = quote_packet(token, **quote_kwargs)
    body += struct.pack(">IIIII", last_trade_time, oi, oi_high, oi_low, exchange_ts)
    if depth:
        for i in range(10):
            # buy levels 249900, 249800, ... ; sell levels 250100, 250200, ...
            price = 249900 - i * 100 if i < 5 else 250100 + (i - 5) * 100
            body += struct.pack(">IiH2x", 100 + i, price, i + 1)
    return body


def index_packet(
    token: int,
    ltp: int = 2350000,
    ohlc: tuple[int, int, int, int] = (2340000, 2360000, 2330000, 2300000),
    change: int = 0,
    exchange_ts: int | None = None,
) -> bytes:
    open_, high, low, close = ohlc
    body = struct.pack(">Iiiiiii", token, ltp, high, low, open_, close, change)
    if exchange_ts is not None:
        body += struct.pack(">I", exchange_ts)
    return body


def frame(*packets: bytes) -> bytes:
    out = struct.pack(">H", len(packets))
    for p in packets:
        out += struct.pack(">H", len(p)) + p
    return out


# ---------------------------------------------------------------------------
# Fake transport
# ---------------------------------------------------------------------------

class FakeSocket:
    """Stands in for a websockets client connection."""

    def __init__(self) -> None:
        self.incoming: asyncio.Queue = asyncio.Queue()
        self.sent: list[dict] = []
        self.closed = False

    async def recv(self):
        item = await self.incoming.get()
        if isinstance(item, BaseException):
            raise item
        return item

    async def send(self, data: str) -> None:
        if self.closed:
            raise ConnectionResetError("socket closed")
        self.sent.append(json.loads(data))

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self.incoming.put_nowait(ConnectionResetError("closed locally"))

    def push(self, message) -> None:
        self.incoming.put_nowait(message)

    def drop(self, reason: str = "connection reset by peer") -> None:
        self.incoming.put_nowait(ConnectionResetError(reason))


class FakeConnector:
    """Connector returning scripted outcomes, one per connection attempt.

    Each outcome is a FakeSocket or an exception to raise.  Once the script
    runs out, every further attempt gets a fresh FakeSocket.
    """

    def __init__(self, *outcomes) -> None:
        self.outcomes = list(outcomes)
        self.calls: list[tuple[str, dict]] = []
        self.sockets: list[FakeSocket] = []

    async def __call__(self, url: str, **kwargs):
        self.calls.append((url, kwargs))
        outcome = self.outcomes.pop(0) if self.outcomes else FakeSocket()
        if isinstance(outcome, BaseException):
            raise outcome
        self.sockets.append(outcome)
        return outcome


class RecordingSleep:
    """Backoff sleep that records delays and returns immediately."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


class HandshakeRejected(Exception):
    """Mimics websockets' InvalidStatus (status on ``response``)."""

    def __init__(self, status_code: int) -> None:
        super().__init__(f"server rejected WebSocket connection: HTTP {status_code}")
        self.response = type("Response", (), {"status_code": status_code})()


async def wait_until(predicate, timeout: float = 1.0) -> None:
    """Yield to the loop until *predicate* holds."""
    async def _poll():
        while not predicate():
            await asyncio.sleep(0)
    await asyncio.wait_for(_poll(), timeout)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def credentials() -> Credentials:
    return Credentials(api_key="test_key", access_token="test_token")


@pytest.fixture
def fast_config() -> TickerConfig:
    return TickerConfig(
        read_timeout=5.0,
        reconnect=ReconnectPolicy(max_attempts=5, base_delay=1.0, max_delay=30.0),
    )


@pytest.fixture
def sleeper() -> RecordingSleep:
    return RecordingSleep()
