"""Tick data model.

A :class:`Tick` is a frozen snapshot of one instrument, produced fresh for
every packet decoded.  Fields the packet does not carry stay ``None`` so a
QUOTE tick never shows depth left over from an earlier FULL tick.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Iterable

import pandas as pd


class Mode(str, Enum):
    """Streaming detail level; values are the wire strings."""

    LTP = "ltp"
    QUOTE = "quote"
    FULL = "full"


DEPTH_LEVELS = 5


@dataclass(frozen=True)
class OHLC:
    open: float
    high: float
    low: float
    close: float


@dataclass(frozen=True)
class DepthLevel:
    """One resting price level of the order book."""

    quantity: int
    price: float
    orders: int


@dataclass(frozen=True)
class MarketDepth:
    """Top five bid and ask levels, best first."""

    buy: tuple[DepthLevel, ...]
    sell: tuple[DepthLevel, ...]


@dataclass(frozen=True)
class Tick:
    """Decoded market snapshot for one instrument."""

    instrument_token: int
    mode: Mode
    last_price: float
    tradable: bool = True

    # QUOTE and FULL
    last_traded_quantity: int | None = None
    average_traded_price: float | None = None
    volume_traded: int | None = None
    total_buy_quantity: int | None = None
    total_sell_quantity: int | None = None
    ohlc: OHLC | None = None
    change: float | None = None

    # FULL
    last_trade_time: datetime | None = None
    exchange_timestamp: datetime | None = None
    oi: int | None = None
    oi_day_high: int | None = None
    oi_day_low: int | None = None
    depth: MarketDepth | None = None


def _flatten(tick: Tick) -> dict:
    row = {
        "instrument_token": tick.instrument_token,
        "mode": tick.mode.value,
        "tradable": tick.tradable,
        "last_price": tick.last_price,
        "last_traded_quantity": tick.last_traded_quantity,
        "average_traded_price": tick.average_traded_price,
        "volume_traded": tick.volume_traded,
        "total_buy_quantity": tick.total_buy_quantity,
        "total_sell_quantity": tick.total_sell_quantity,
        "change": tick.change,
        "last_trade_time": tick.last_trade_time,
        "exchange_timestamp": tick.exchange_timestamp,
        "oi": tick.oi,
        "oi_day_high": tick.oi_day_high,
        "oi_day_low": tick.oi_day_low,
    }
    ohlc = tick.ohlc
    for name in ("open", "high", "low", "close"):
        row[f"ohlc_{name}"] = getattr(ohlc, name) if ohlc else None

    depth = tick.depth
    for side, prefix in (("buy", "bid"), ("sell", "ask")):
        levels = getattr(depth, side) if depth else ()
        for i in range(DEPTH_LEVELS):
            level = levels[i] if i < len(levels) else None
            row[f"{prefix}_price_{i}"] = level.price if level else None
            row[f"{prefix}_qty_{i}"] = level.quantity if level else None
            row[f"{prefix}_orders_{i}"] = level.orders if level else None
    return row


def ticks_to_frame(ticks: Iterable[Tick]) -> pd.DataFrame:
    """Flatten a tick batch into one row per tick.

    OHLC and depth become ``ohlc_*``, ``bid_*_{i}`` and ``ask_*_{i}`` columns;
    fields absent for a tick's mode are left as nulls.
    """
    rows = [_flatten(t) for t in ticks]
    if not rows:
        return pd.DataFrame(columns=list(_flatten(Tick(0, Mode.LTP, 0.0)).keys()))
    return pd.DataFrame(rows)
