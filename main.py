# main.py
"""
Command line entry point for the Crude SMC paper trader.

    python main.py replay data/crudeoilm_1m.csv [--ticks] [--journal PATH] [--ignore-window]
    python main.py demo [--candles N] [--seed S]
    python main.py status
"""

import argparse
import logging
import sys

from backtest import run_csv_replay, run_demo
from config import JOURNAL_PATH, LOG_LEVEL, RiskParameters
from formatting import format_replay_result
from market_hours import market_status


logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="ICT/SMC paper trading for MCX crude oil")
    sub = parser.add_subparsers(dest="command", required=True)

    replay = sub.add_parser("replay", help="Replay a CSV of 1m candles or ticks")
    replay.add_argument("csv", help="Path to the CSV file")
    replay.add_argument("--ticks", action="store_true", help="CSV holds ticks, not 1m candles")
    replay.add_argument("--journal", nargs="?", const=JOURNAL_PATH, default=None,
                        help=f"Write closed trades to a JSON journal (default {JOURNAL_PATH})")
    replay.add_argument("--ignore-window", action="store_true",
                        help="Allow entries outside the 18:00 - 20:30 IST window")

    demo = sub.add_parser("demo", help="Run on synthetic crude oil data")
    demo.add_argument("--candles", type=int, default=6000, help="Number of 1m candles to generate")
    demo.add_argument("--seed", type=int, default=7, help="Random seed")

    sub.add_parser("status", help="Show MCX session status and the entry window")

    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
    )

    if args.command == "replay":
        try:
            result = run_csv_replay(
                args.csv,
                is_ticks=args.ticks,
                journal_path=args.journal,
                ignore_window=args.ignore_window,
            )
        except (OSError, ValueError) as e:
            logger.error("[main] replay failed: %s", e)
            return 1
    elif args.command == "status":
        status = market_status()
        window = RiskParameters().trading_window
        print(f"MCX {status['status']} at {status['local_time']} IST")
        print(f"Entry window: {window.start} - {window.end} ({window.timezone})")
        return 0
    else:
        result = run_demo(num_candles=args.candles, seed=args.seed, warmup=args.candles * 4 // 5)

    print(format_replay_result(result))
    return 0


if __name__ == "__main__":
    sys.exit(main())
