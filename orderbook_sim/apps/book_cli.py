"""
Live Book Watcher

Streams one venue / symbol and periodically logs:
- top of book, spread and imbalance
- the impact of a hypothetical order (``--side``, ``--qty``, ``--limit``)
- connection status and feed counters

Usage:
    python -m orderbook_sim.apps.book_cli --venue bybit --symbol BTCUSDT --qty 5
"""
import argparse
import asyncio
import time

from loguru import logger

from orderbook_sim.core.config import ConfigError, load_settings
from orderbook_sim.core.errors import ExhaustedRetries
from orderbook_sim.core.events import Side, Venue
from orderbook_sim.live.feed import BookFeed
from orderbook_sim.sim.analytics import (
    cumulative_depth,
    estimate_time_to_fill,
    imbalance_percentage,
    spread,
    spread_percentage,
)


def setup_logging(level: str = "INFO") -> None:
    logger.remove()
    logger.add(
        lambda msg: print(msg, end=""),
        level=level,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <level>{message}</level>",
        colorize=True,
    )


def parse_args(argv=None):
    p = argparse.ArgumentParser(description="Order book watcher & impact simulator")
    p.add_argument("--config", default=None, help="YAML settings file (defaults are used when omitted)")
    p.add_argument("--venue", choices=[v.value for v in Venue], default=None)
    p.add_argument("--symbol", default=None)
    p.add_argument("--side", choices=[s.value for s in Side], default="buy")
    p.add_argument("--qty", type=float, default=1.0)
    p.add_argument("--limit", type=float, default=None, help="limit price; market order when omitted")
    p.add_argument("--duration", type=float, default=60.0, help="seconds to run (0 = until Ctrl+C)")
    p.add_argument("--interval", type=float, default=2.0, help="seconds between reports")
    p.add_argument("--seed-rest", action="store_true", help="load a REST snapshot before streaming")
    return p.parse_args(argv)


def report(feed: BookFeed, venue: Venue, symbol: str, args) -> None:
    book = feed.store.get(venue, symbol)
    status = feed.statuses().get(venue)
    state = status.state.value if status else "n/a"
    if book is None or not book.bids or not book.asks:
        logger.info(f"[{venue.value}:{symbol}] status={state} waiting for book...")
        return
    bb, ba = book.best_bid, book.best_ask
    logger.info(
        f"[{venue.value}:{symbol}] status={state} bid={bb.price}x{bb.quantity} ask={ba.price}x{ba.quantity} "
        f"spread={spread(book):.4f} ({spread_percentage(book):.4f}%) imbalance={imbalance_percentage(book):+.1f}%"
    )
    res = feed.simulate(venue, symbol, args.side, args.qty, args.limit)
    levels = book.side_levels(Side(args.side))
    sim = feed.settings.simulation
    ttf = estimate_time_to_fill(args.qty, levels, sim.avg_volume_per_second)
    depth = cumulative_depth(levels, sim.depth_levels)
    msg = (
        f"  {args.side} {args.qty}: filled={res.filled_quantity:.6g} ({res.fill_percentage:.1f}%) "
        f"avg={res.average_fill_price:.6g} slippage={res.slippage_percent:.4f}% "
        f"impact={res.market_impact_percent:.2f}% remaining={res.remaining_quantity:.6g} ttf~{ttf}s "
        f"depth{sim.depth_levels}={depth[-1][2]:.6g}"
    )
    if res.insertion_index is not None:
        msg += f" queue_pos={res.insertion_index}"
    logger.info(msg)


async def main(argv=None):
    args = parse_args(argv)
    try:
        settings = load_settings(args.config)
    except ConfigError as e:
        logger.error(f"Failed to start due to configuration error: {e}")
        return 2
    setup_logging(settings.logging.level)

    venue = Venue(args.venue) if args.venue else settings.runtime.default_venue
    symbol = args.symbol or (settings.runtime.default_symbol if venue is settings.runtime.default_venue
                             else settings.runtime.symbols.get(venue, [settings.runtime.default_symbol])[0])

    feed = BookFeed(settings)
    try:
        if args.seed_rest:
            await feed.seed_from_rest(venue, symbol)
        await feed.switch(venue, symbol)
        start = time.time()
        while args.duration <= 0 or time.time() - start < args.duration:
            await asyncio.sleep(args.interval)
            report(feed, venue, symbol, args)
            try:
                feed.raise_for_status(venue)
            except ExhaustedRetries as e:
                logger.error(str(e))
                return 1
        logger.info(f"feed counters: {feed.metrics.snapshot()['counters']}")
        return 0
    finally:
        await feed.aclose()


def run():  # pragma: no cover
    """Entry point: configures loguru and runs the watcher."""
    setup_logging()
    try:
        raise SystemExit(asyncio.run(main()))
    except KeyboardInterrupt:
        logger.info("Shutdown requested by user (Ctrl+C).")


if __name__ == "__main__":  # pragma: no cover
    run()
