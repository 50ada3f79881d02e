"""Exchange segments and price divisors.

Prices travel on the wire as integers.  The divisor that turns them into
rupees (or the segment's quote currency) is not part of the packet: it is
inferred from the low byte of the instrument token, which encodes the
exchange segment.

=========  ====  ===========
Segment    Id    Divisor
=========  ====  ===========
NSE_CD     3     10,000,000
BSE_CD     6     10,000
(others)   -     100
=========  ====  ===========

Only the pairs above are confirmed against live packets.  Anything else can be
supplied by the caller through ``TickerConfig.price_divisors``.
"""

from __future__ import annotations

from collections.abc import Mapping
from enum import IntEnum


class Segment(IntEnum):
    """Exchange segment id carried in ``instrument_token & 0xFF``."""

    NSE_CM = 1
    NSE_FO = 2
    NSE_CD = 3
    BSE_CM = 4
    BSE_FO = 5
    BSE_CD = 6
    MCX_FO = 7
    MCX_SX = 8
    INDICES = 9


DEFAULT_DIVISOR: float = 100.0

PRICE_DIVISORS: Mapping[int, float] = {
    Segment.NSE_CD: 10_000_000.0,
    Segment.BSE_CD: 10_000.0,
}


def segment_of(instrument_token: int) -> int:
    """Return the raw segment id of *instrument_token*."""
    return instrument_token & 0xFF


def price_divisor(
    instrument_token: int,
    overrides: Mapping[int, float] | None = None,
) -> float:
    """Divisor for prices of *instrument_token*.

    *overrides* maps segment id to divisor and takes precedence over the
    built-in table.
    """
    segment = segment_of(instrument_token)
    if overrides and segment in overrides:
        return float(overrides[segment])
    return PRICE_DIVISORS.get(segment, DEFAULT_DIVISOR)


def is_tradable(instrument_token: int) -> bool:
    """Indices stream prices but cannot be traded."""
    return segment_of(instrument_token) != Segment.INDICES
