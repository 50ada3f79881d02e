"""CLI for the Kite market-data stream.

Usage:
    python -m kitestream stream 738561 256265               # quote mode until Ctrl-C
    python -m kitestream stream 738561 --mode full --duration 60
    python -m kitestream decode captured.packet             # decode a saved frame
    python -m kitestream decode captured.packet --head 5
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from kitestream.config import ReconnectPolicy, TickerConfig, load_credentials
from kitestream.decoder import decode_frame
from kitestream.ticks import Mode, ticks_to_frame

logger = logging.getLogger("kitestream")


async def _stream(args: argparse.Namespace) -> None:
    from kitestream.ticker import KiteTicker

    config = TickerConfig(
        reconnect=ReconnectPolicy.bounded(args.max_retry, args.max_delay),
    )
    ticker = KiteTicker(load_credentials(args.env), config)

    @ticker.on("ticks")
    def on_ticks(ticks):
        for t in ticks:
            logger.info(
                "%-10d %-5s ltp=%-12.4f vol=%s oi=%s",
                t.instrument_token, t.mode.value, t.last_price, t.volume_traded, t.oi,
            )

    @ticker.on("reconnect")
    def on_reconnect(attempt, delay):
        logger.warning("Reconnecting (attempt %d, in %.0fs)", attempt, delay)

    @ticker.on("order_update")
    def on_order(payload):
        logger.info("Order update: %s", payload)

    await ticker.set_mode(args.mode, args.tokens)
    async with ticker:
        await ticker.connect()
        if args.duration:
            try:
                await asyncio.wait_for(ticker.wait_closed(), timeout=args.duration)
            except asyncio.TimeoutError:
                logger.info("Duration %ds reached", args.duration)
        else:
            await ticker.wait_closed()
    logger.info("Stats: %s", ticker.stats())


def cmd_stream(args: argparse.Namespace) -> None:
    """Stream live ticks to the log."""
    try:
        asyncio.run(_stream(args))
    except KeyboardInterrupt:
        pass


def cmd_decode(args: argparse.Namespace) -> None:
    """Decode a captured binary frame."""
    data = Path(args.file).read_bytes()
    ticks = decode_frame(data)
    if not ticks:
        print(f"No ticks in {args.file} ({len(data)} bytes)")
        return

    df = ticks_to_frame(ticks).dropna(axis=1, how="all")
    print(f"Ticks: {len(ticks)}")
    print(df.head(args.head).to_string())


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="kitestream",
        description="Kite Connect market-data stream client",
    )
    sub = parser.add_subparsers(dest="command")

    p_stream = sub.add_parser("stream", help="Stream live ticks")
    p_stream.add_argument("tokens", type=int, nargs="+", help="Instrument tokens")
    p_stream.add_argument(
        "--mode", choices=[m.value for m in Mode], default=Mode.QUOTE.value,
        help="Streaming mode (default: quote)",
    )
    p_stream.add_argument(
        "--duration", type=int, default=None,
        help="Stop after N seconds (default: run until closed)",
    )
    p_stream.add_argument(
        "--max-retry", type=int, default=None,
        help="Maximum reconnect attempts (default: 50, capped at 300)",
    )
    p_stream.add_argument(
        "--max-delay", type=float, default=None,
        help="Maximum reconnect delay in seconds (default: 60, minimum 5)",
    )
    p_stream.add_argument("--env", type=Path, default=None, help="Path to .env file")

    p_decode = sub.add_parser("decode", help="Decode a captured binary frame")
    p_decode.add_argument("file", help="File holding one raw binary frame")
    p_decode.add_argument("--head", type=int, default=20, help="Show first N ticks")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    if args.command == "stream":
        cmd_stream(args)
    elif args.command == "decode":
        cmd_decode(args)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
