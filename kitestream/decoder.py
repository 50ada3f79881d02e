"""Binary tick decoder.

Decodes the binary frames pushed by the ticker into :class:`Tick` objects.
Pure functions only: no I/O, no state carried between frames.

Frame layout
------------
All integers are **big-endian**::

    [u16 packet count N]
    N x ( [u16 packet length L] [L bytes packet] )

The packet shape is identified by ``L`` alone (there is no tag byte):

======  ==================================  ===========
Length  Shape                               Mode
======  ==================================  ===========
8       token, last price                   ltp
28      index quote (ohlc, change)          quote
32      index full (+ exchange timestamp)   full
44      quote                               quote
64      full without market depth           full
184     full with 5+5 depth levels          full
======  ==================================  ===========

Unknown lengths are skipped so newer server packet shapes do not break older
clients.  Adding a shape means adding an entry to :data:`PACKET_DECODERS`.
"""

from __future__ import annotations

import logging
import struct
from collections.abc import Callable, Mapping
from datetime import datetime, timezone

from kitestream.segments import is_tradable, price_divisor
from kitestream.ticks import DEPTH_LEVELS, OHLC, DepthLevel, MarketDepth, Mode, Tick

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Wire structs
# ---------------------------------------------------------------------------

_U16 = struct.Struct(">H")
_U32 = struct.Struct(">I")

# token, last_price
_LTP = struct.Struct(">Ii")
# token, last_price, high, low, open, close, change
_INDEX = struct.Struct(">Iiiiiii")
# token, last_price, last_qty, avg_price, volume, buy_qty, sell_qty,
# open, high, low, close
_QUOTE = struct.Struct(">IiIiIIIiiii")
# last_trade_time, oi, oi_day_high, oi_day_low, exchange_timestamp
_FULL_EXT = struct.Struct(">IIIII")
# quantity, price, orders, 2 bytes padding
_LEVEL = struct.Struct(">IiH2x")

LTP_PACKET = _LTP.size
INDEX_QUOTE_PACKET = _INDEX.size
INDEX_FULL_PACKET = _INDEX.size + _U32.size
QUOTE_PACKET = _QUOTE.size
FULL_PACKET = _QUOTE.size + _FULL_EXT.size
FULL_DEPTH_PACKET = FULL_PACKET + 2 * DEPTH_LEVELS * _LEVEL.size

Buffer = bytes | bytearray | memoryview
PacketDecoder = Callable[[memoryview, int, float], Tick]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _epoch_to_utc(seconds: int) -> datetime | None:
    """Epoch seconds to an aware UTC datetime; 0 means "not set"."""
    if not seconds:
        return None
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


def _change(last_price: float, close: float, fallback: float = 0.0) -> float:
    """Percentage change of *last_price* against the previous close."""
    if close == 0:
        return fallback
    return (last_price - close) * 100.0 / close


# ---------------------------------------------------------------------------
# Packet decoders
# ---------------------------------------------------------------------------

def _decode_ltp(packet: memoryview, token: int, divisor: float) -> Tick:
    _, ltp = _LTP.unpack_from(packet, 0)
    return Tick(
        instrument_token=token,
        mode=Mode.LTP,
        last_price=ltp / divisor,
        tradable=is_tradable(token),
    )


def _decode_index(packet: memoryview, token: int, divisor: float) -> Tick:
    _, ltp, high, low, open_, close, wire_change = _INDEX.unpack_from(packet, 0)
    last_price = ltp / divisor
    ohlc = OHLC(
        open=open_ / divisor,
        high=high / divisor,
        low=low / divisor,
        close=close / divisor,
    )
    full = len(packet) == INDEX_FULL_PACKET
    timestamp = None
    if full:
        timestamp = _epoch_to_utc(_U32.unpack_from(packet, _INDEX.size)[0])
    return Tick(
        instrument_token=token,
        mode=Mode.FULL if full else Mode.QUOTE,
        last_price=last_price,
        tradable=is_tradable(token),
        ohlc=ohlc,
        change=_change(last_price, ohlc.close, fallback=float(wire_change)),
        exchange_timestamp=timestamp,
    )


def _decode_depth(packet: memoryview, divisor: float) -> MarketDepth:
    levels = []
    for i in range(2 * DEPTH_LEVELS):
        quantity, price, orders = _LEVEL.unpack_from(packet, FULL_PACKET + i * _LEVEL.size)
        levels.append(DepthLevel(quantity=quantity, price=price / divisor, orders=orders))
    return MarketDepth(buy=tuple(levels[:DEPTH_LEVELS]), sell=tuple(levels[DEPTH_LEVELS:]))


def _decode_quote(packet: memoryview, token: int, divisor: float) -> Tick:
    (
        _, ltp, last_qty, avg_price, volume, buy_qty, sell_qty,
        open_, high, low, close,
    ) = _QUOTE.unpack_from(packet, 0)
    last_price = ltp / divisor
    ohlc = OHLC(
        open=open_ / divisor,
        high=high / divisor,
        low=low / divisor,
        close=close / divisor,
    )
    fields = dict(
        instrument_token=token,
        mode=Mode.QUOTE,
        last_price=last_price,
        tradable=is_tradable(token),
        last_traded_quantity=last_qty,
        average_traded_price=avg_price / divisor,
        volume_traded=volume,
        total_buy_quantity=buy_qty,
        total_sell_quantity=sell_qty,
        ohlc=ohlc,
        change=_change(last_price, ohlc.close),
    )

    if len(packet) >= FULL_PACKET:
        ltt, oi, oi_high, oi_low, ts = _FULL_EXT.unpack_from(packet, QUOTE_PACKET)
        fields.update(
            mode=Mode.FULL,
            last_trade_time=_epoch_to_utc(ltt),
            exchange_timestamp=_epoch_to_utc(ts),
            oi=oi,
            oi_day_high=oi_high,
            oi_day_low=oi_low,
        )
    if len(packet) == FULL_DEPTH_PACKET:
        fields["depth"] = _decode_depth(packet, divisor)

    return Tick(**fields)


PACKET_DECODERS: dict[int, PacketDecoder] = {
    LTP_PACKET: _decode_ltp,
    INDEX_QUOTE_PACKET: _decode_index,
    INDEX_FULL_PACKET: _decode_index,
    QUOTE_PACKET: _decode_quote,
    FULL_PACKET: _decode_quote,
    FULL_DEPTH_PACKET: _decode_quote,
}


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def split_packets(frame: Buffer) -> list[memoryview]:
    """Split a frame into its raw packets, in frame order.

    A packet whose declared length runs past the end of the frame stops the
    split; packets before it are still returned.
    """
    view = memoryview(frame)
    if len(view) < _U16.size:
        return []

    (count,) = _U16.unpack_from(view, 0)
    packets: list[memoryview] = []
    offset = _U16.size
    for i in range(count):
        if offset + _U16.size > len(view):
            logger.warning("Frame truncated before packet %d/%d header", i + 1, count)
            break
        (size,) = _U16.unpack_from(view, offset)
        offset += _U16.size
        if offset + size > len(view):
            logger.warning(
                "Frame truncated in packet %d/%d (need %d bytes, have %d)",
                i + 1, count, size, len(view) - offset,
            )
            break
        packets.append(view[offset:offset + size])
        offset += size
    return packets


def decode_packet(
    packet: Buffer,
    divisors: Mapping[int, float] | None = None,
) -> Tick | None:
    """Decode one packet, or return ``None`` for an unrecognised length."""
    view = memoryview(packet)
    decoder = PACKET_DECODERS.get(len(view))
    if decoder is None:
        logger.debug("Skipping packet of unknown length %d", len(view))
        return None
    (token,) = _U32.unpack_from(view, 0)
    return decoder(view, token, price_divisor(token, divisors))


def decode_frame(
    frame: Buffer,
    divisors: Mapping[int, float] | None = None,
) -> list[Tick]:
    """Decode every recognised packet in *frame*.

    Parameters
    ----------
    frame : bytes
        One binary WebSocket message.
    divisors : Mapping[int, float], optional
        Segment id -> price divisor overrides (see :mod:`kitestream.segments`).

    Returns
    -------
    list[Tick]
        Ticks in packet order.  Heartbeats and zero-count frames give ``[]``.
    """
    ticks: list[Tick] = []
    for packet in split_packets(frame):
        tick = decode_packet(packet, divisors)
        if tick is not None:
            ticks.append(tick)
    return ticks
