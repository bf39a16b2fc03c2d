#!/usr/bin/env python3
"""Fetch candles for a symbol and print the enabled indicators as JSON."""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from mychart.config import DEFAULT_COUNT, DEFAULT_TIMEFRAME, TIMEFRAMES, load_settings  # noqa: E402
from mychart.data_provider import MarketDataProvider  # noqa: E402
from mychart.exceptions import ChartError  # noqa: E402
from mychart.indicator_store import IndicatorConfigStore  # noqa: E402
from mychart.indicators import compute_enabled  # noqa: E402
from mychart.kv_storage import open_storage  # noqa: E402

logger = logging.getLogger("mychart.scripts.compute_indicators")


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Compute chart indicators for one symbol.")
    parser.add_argument("symbol", help="Instrument code, e.g. 005930 or AAPL")
    parser.add_argument("--timeframe", default=DEFAULT_TIMEFRAME, choices=TIMEFRAMES)
    parser.add_argument("--count", type=int, default=DEFAULT_COUNT)
    parser.add_argument("--mock", action="store_true", help="Use generated candles instead of the provider")
    parser.add_argument("--verbose", "-v", action="store_true")
    return parser.parse_args()


async def main() -> int:
    args = parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    settings = load_settings()
    provider = MarketDataProvider(
        data_source="mock" if args.mock else settings.data_source,
        http_timeout=settings.http_timeout,
    )
    config = IndicatorConfigStore(open_storage(settings)).snapshot()

    try:
        bars = await provider.fetch_candles(args.symbol, args.timeframe, args.count)
    except (ChartError, ValueError) as exc:
        logger.error("Could not load candles for %s: %s", args.symbol, exc)
        return 1

    output = {
        "symbol": args.symbol,
        "timeframe": args.timeframe,
        "bars": len(bars),
        "indicators": compute_enabled(bars, config),
    }
    json.dump(output, sys.stdout, ensure_ascii=False)
    sys.stdout.write("\n")
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
