"""kitestream: Kite Connect market-data streaming client.

Components:
- KiteTicker: session facade (subscriptions, events, reconnect)
- decode_frame: pure binary tick decoder
- SubscriptionRegistry / EventDispatcher / ConnectionManager: building blocks
"""

from kitestream.config import Credentials, ReconnectPolicy, TickerConfig, load_credentials
from kitestream.connection import ConnectionManager, ConnectionState
from kitestream.decoder import decode_frame, decode_packet, split_packets
from kitestream.errors import (
    AuthenticationError,
    ReconnectExhaustedError,
    ServerMessageError,
    TickerError,
)
from kitestream.events import EventDispatcher, EventKind
from kitestream.subscriptions import SubscriptionRegistry
from kitestream.ticker import KiteTicker
from kitestream.ticks import OHLC, DepthLevel, MarketDepth, Mode, Tick, ticks_to_frame

__all__ = [
    "KiteTicker",
    "Credentials",
    "ReconnectPolicy",
    "TickerConfig",
    "load_credentials",
    "ConnectionManager",
    "ConnectionState",
    "SubscriptionRegistry",
    "EventDispatcher",
    "EventKind",
    "decode_frame",
    "decode_packet",
    "split_packets",
    "Tick",
    "Mode",
    "OHLC",
    "DepthLevel",
    "MarketDepth",
    "ticks_to_frame",
    "TickerError",
    "AuthenticationError",
    "ServerMessageError",
    "ReconnectExhaustedError",
]

__version__ = "0.1.0"
