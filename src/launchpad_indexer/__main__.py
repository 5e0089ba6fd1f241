"""Command-line entry point.

Usage:
    python -m launchpad_indexer run [--create-schema]
    python -m launchpad_indexer sync
    python -m launchpad_indexer init-db
    python -m launchpad_indexer quote buy --stx 10 --tokens-sold 0
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import signal
import sys
from collections.abc import Sequence
from decimal import Decimal, InvalidOperation

from launchpad_indexer.config import Settings, get_settings
from launchpad_indexer.ingestor.poller import PollSyncError
from launchpad_indexer.pipeline import Pipeline
from launchpad_indexer.pricing.curve import BondingCurve
from launchpad_indexer.storage.database import DatabaseManager

logger = logging.getLogger("launchpad_indexer")


def _decimal_arg(value: str) -> Decimal:
    try:
        parsed = Decimal(value)
    except InvalidOperation as exc:
        raise argparse.ArgumentTypeError(f"Not a number: {value}") from exc
    if not parsed.is_finite() or parsed < 0:
        raise argparse.ArgumentTypeError(f"Must be a non-negative number: {value}")
    return parsed


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="launchpad-indexer", description="Stacks launchpad chain-state indexer")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_cmd = subparsers.add_parser("run", help="Run the poll loop and HTTP server until interrupted")
    run_cmd.add_argument("--create-schema", action="store_true", help="Create missing tables on start")
    run_cmd.add_argument("--no-poll", action="store_true", help="Disable the background poll loop")

    subparsers.add_parser("sync", help="Run one poll cycle and print the counts")
    subparsers.add_parser("init-db", help="Create database tables from the models")

    quote_cmd = subparsers.add_parser("quote", help="Quote the bonding curve (no database needed)")
    quote_cmd.add_argument("side", choices=("buy", "sell", "progress"))
    quote_cmd.add_argument("--stx", type=_decimal_arg, default=Decimal(0), help="STX in (buy)")
    quote_cmd.add_argument("--tokens", type=_decimal_arg, default=Decimal(0), help="Tokens in (sell)")
    quote_cmd.add_argument("--tokens-sold", type=_decimal_arg, default=Decimal(0), help="Current tokens sold")

    return parser


def _configure_logging(settings: Settings | None) -> None:
    level = settings.get_logging_level() if settings else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def quote(side: str, *, stx: Decimal, tokens: Decimal, tokens_sold: Decimal) -> dict[str, str | float]:
    curve = BondingCurve()
    if side == "buy":
        return {
            "tokens_out": str(curve.quote_buy(stx, tokens_sold)),
            "price": str(curve.price(tokens_sold)),
        }
    if side == "sell":
        gross = curve.sell_gross(tokens, tokens_sold)
        net = curve.quote_sell(tokens, tokens_sold)
        return {"stx_out": str(net), "fee": str(gross - net), "price": str(curve.price(tokens_sold))}
    market_cap = curve.market_cap(tokens_sold)
    return {"market_cap": str(market_cap), "progress_percent": curve.progress_percent(market_cap)}


async def _run(settings: Settings, *, create_schema: bool, poll: bool) -> None:
    pipeline = Pipeline(settings, run_poll_loop=poll and settings.sync.enabled, create_schema=create_schema)
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, pipeline.request_stop)
    await pipeline.run()


async def _sync(settings: Settings) -> int:
    async with Pipeline(settings, serve_http=False, run_poll_loop=False) as pipeline:
        try:
            result = await pipeline.sync_once()
        except PollSyncError as e:
            logger.error("Sync failed: %s", e)
            return 1
    print(json.dumps(result.to_dict(), sort_keys=True))
    return 0


async def _init_db(settings: Settings) -> None:
    db = DatabaseManager(settings.database.url)
    try:
        await db.init_schema_async()
    finally:
        await db.dispose_async()


def main(argv: Sequence[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)

    if args.command == "quote":
        _configure_logging(None)
        print(json.dumps(quote(args.side, stx=args.stx, tokens=args.tokens, tokens_sold=args.tokens_sold)))
        return 0

    settings = get_settings()
    _configure_logging(settings)
    logger.info("Configuration: %s", json.dumps(settings.redacted_summary(), sort_keys=True))

    if args.command == "run":
        asyncio.run(_run(settings, create_schema=args.create_schema, poll=not args.no_poll))
        return 0
    if args.command == "sync":
        return asyncio.run(_sync(settings))
    if args.command == "init-db":
        asyncio.run(_init_db(settings))
        return 0
    return 2


if __name__ == "__main__":
    sys.exit(main())
