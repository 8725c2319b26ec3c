"""
Replay backtester for the Crude SMC paper trader.

Feeds recorded ticks (or candles expanded into ticks) through a
TradingSession in time order. The session clock follows the tick
timestamps, so trading-window checks, daily resets and cooldowns behave as
they would have live.
"""

import logging
from datetime import datetime
from typing import Dict, Iterable, Optional

from config import TIMEFRAMES, RiskParameters, StrategyParams
from data import (
    aggregate_candles,
    candles_to_ticks,
    generate_sample_candles,
    load_candles_csv,
    load_ticks_csv,
)
from market_hours import from_epoch
from pipeline import TradingSession
from trade_export import TradeJournal


logger = logging.getLogger(__name__)

# hour-aligned so aggregated history lines up with every bucket
DEMO_START_TIME = 1_699_999_200


class ReplayClock:
    """Callable clock that is moved forward by the replay loop."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def set_epoch(self, seconds: int) -> datetime:
        self.now = from_epoch(seconds)
        return self.now


def run_replay(ticks: Iterable, session: TradingSession,
               clock: Optional[ReplayClock] = None) -> Dict:
    """
    Replay ticks through a session.

    Returns:
        {ticks, dropped_ticks, candles: {tf: count}, signals, rejections,
         trades, statistics, final_state}
    """
    count = 0
    for tick in ticks:
        if clock is not None:
            clock.set_epoch(tick.time)
        session.poll()
        session.on_tick(tick)
        count += 1

    result = {
        "ticks": count,
        "dropped_ticks": session.dropped_ticks,
        "candles": {tf: len(session.get_candles(tf)) for tf in TIMEFRAMES},
        "signals": [s.to_dict() for s in session.signals],
        "rejections": list(session.rejections),
        "trades": [t.to_dict() for t in session.trader.closed_trades],
        "statistics": session.get_statistics(),
        "final_state": session.get_state().to_dict(),
    }
    logger.info("[backtest] replayed %d ticks: %d signals, %d trades",
                count, len(result["signals"]), len(result["trades"]))
    return result


def run_csv_replay(
    path: str,
    is_ticks: bool = False,
    journal_path: Optional[str] = None,
    ignore_window: bool = False,
    risk_params: Optional[RiskParameters] = None,
    strategy_params: Optional[StrategyParams] = None,
) -> Dict:
    """
    Replay a CSV file: 1m candles by default, raw ticks with is_ticks=True.
    """
    ticks = load_ticks_csv(path) if is_ticks else candles_to_ticks(load_candles_csv(path))
    if not ticks:
        raise ValueError(f"No data in {path}")

    clock = ReplayClock(from_epoch(ticks[0].time))
    session = TradingSession(
        risk_params=risk_params,
        strategy_params=strategy_params,
        clock=clock,
        journal=TradeJournal(journal_path) if journal_path else None,
        enforce_window=not ignore_window,
    )
    return run_replay(ticks, session, clock)


def run_demo(num_candles: int = 6000, seed: Optional[int] = 7, warmup: int = 4800,
             journal_path: Optional[str] = None) -> Dict:
    """
    Synthetic session: the first `warmup` 1m candles seed every timeframe's
    history, the rest are replayed tick by tick outside the entry window
    check so the demo trades at any hour.
    """
    warmup = min(warmup, num_candles) // 60 * 60
    candles = generate_sample_candles(num_candles, "1m", seed=seed, start_time=DEMO_START_TIME)
    history, live = candles[:warmup], candles[warmup:]
    if not live:
        raise ValueError("Demo needs more candles than the warmup")

    ticks = candles_to_ticks(live)
    clock = ReplayClock(from_epoch(ticks[0].time))
    session = TradingSession(
        clock=clock,
        journal=TradeJournal(journal_path) if journal_path else None,
        enforce_window=False,
    )
    for tf, ratio in (("1m", 1), ("5m", 5), ("15m", 15), ("1h", 60)):
        session.initialize_history(tf, aggregate_candles(history, ratio))
    return run_replay(ticks, session, clock)
