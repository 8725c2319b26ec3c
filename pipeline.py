# pipeline.py
"""
Trading session wiring for the Crude SMC paper trader.

ticks -> candle aggregators (1m/5m/15m/1h) -> strategy caches
      -> signal engine -> risk gate -> paper trader -> journal

All components are constructed here and passed in explicitly; nothing in
the pipeline is a module-level singleton.
"""

import logging
from dataclasses import replace
from datetime import datetime
from typing import Callable, Dict, List, Optional

from candles import Candle, CandleUpdate, CumulativeVolumeNormalizer, MultiTimeframeAggregator, Tick
from config import TIMEFRAMES, RiskParameters, StrategyParams
from contracts import ContractCalendar, ContractSwitch
from formatting import format_trade_update
from market_hours import SessionClock, exchange_now, trading_day_key
from paper_trader import PaperTrader, ProcessResult
from price_validation import LATE_TICK_DROP
from risk_manager import RiskGate, SessionState, SessionStateStore
from strategy import StrategyEngine
from trade_export import TradeJournal


logger = logging.getLogger(__name__)


class TradingSession:
    """
    One trading session for one instrument.

    on_tick() is the single ingestion point and must be called from one
    producer in time order. poll() is the timer hook for day/week
    boundaries, cooldown expiry and contract roll notices.
    """

    def __init__(
        self,
        risk_params: Optional[RiskParameters] = None,
        strategy_params: Optional[StrategyParams] = None,
        clock: Optional[Callable[[], datetime]] = None,
        journal: Optional[TradeJournal] = None,
        contracts: Optional[ContractCalendar] = None,
        enforce_window: bool = True,
        cumulative_volume: bool = False,
        late_tick_policy: str = LATE_TICK_DROP,
        max_history: int = 2000,
    ):
        self.risk_params = risk_params or RiskParameters()
        self.strategy_params = strategy_params or StrategyParams()
        self.clock = clock or (lambda: exchange_now())
        self.journal = journal
        self.contracts = contracts

        self.aggregator = MultiTimeframeAggregator(
            TIMEFRAMES, max_history=max_history, late_tick_policy=late_tick_policy
        )
        self.volume_normalizer = CumulativeVolumeNormalizer() if cumulative_volume else None
        self.strategy = StrategyEngine(self.strategy_params)
        self.risk_gate = RiskGate(self.risk_params, clock=self.clock, enforce_window=enforce_window)
        self.store = SessionStateStore(self.risk_gate.initial_state(trading_day_key(self.clock())))
        self.trader = PaperTrader(self.risk_gate, self.store, self.strategy, clock=self.clock)
        self.session_clock = SessionClock()

        self.tick_count = 0
        self.dropped_ticks = 0
        self.signals: List = []
        self.rejections: List[str] = []
        self.contract_notices: List[ContractSwitch] = []

    # ---- ingestion ------------------------------------------------------

    def initialize_history(self, timeframe: str, candles: List[Candle]) -> None:
        """Seed an aggregator and the matching strategy cache from history."""
        self.aggregator.initialize_history(timeframe, candles)
        self.strategy.update_cache(timeframe, self.aggregator[timeframe].get_confirmed_candles())

    def on_tick(self, tick: Tick) -> Optional[ProcessResult]:
        """
        Feed one tick through the pipeline. Open positions are always marked
        to this tick's price; when the tick closes a 1m candle a trading pass
        runs as well. Returns None for a dropped tick.
        """
        self.tick_count += 1
        if self.volume_normalizer is not None:
            tick = self.volume_normalizer.normalize(tick)

        updates: Dict[str, CandleUpdate] = self.aggregator.process_tick(tick)
        if not all(u.accepted for u in updates.values()):
            # a dropped tick never reaches the positions
            self.dropped_ticks += 1
            return None

        for tf, update in updates.items():
            if update.last_confirmed is not None:
                self.strategy.process_new_candle(tf, update.last_confirmed)

        now = self.clock()
        one_minute = updates.get("1m")
        if one_minute is not None and one_minute.last_confirmed is not None:
            result = self.trader.process_market_data(self.strategy.snapshot(), now, current_price=tick.price)
        else:
            closed, position_updates = self.trader.update_positions(tick.price, now)
            result = ProcessResult(closed_trades=closed, position_updates=position_updates,
                                   state=self.store.snapshot())

        self._record(result)
        return result

    def _record(self, result: ProcessResult) -> None:
        if result.new_trade is not None:
            logger.info("[pipeline] %s", format_trade_update(result.new_trade))
        for trade in result.closed_trades:
            logger.info("[pipeline] %s", format_trade_update(trade))
        if result.analysis is not None and result.analysis.signal is not None:
            self.signals.append(result.analysis.signal)
        if result.rejection:
            self.rejections.append(result.rejection)
        if self.journal is not None:
            for trade in result.closed_trades:
                self.journal.log_trade(trade, context={"state": self.store.snapshot().to_dict()})

    # ---- timers ---------------------------------------------------------

    def poll(self, now: Optional[datetime] = None) -> Dict[str, object]:
        """
        Timer hook. Each action runs at most once per period however often
        poll is called.
        """
        now = now or self.clock()
        actions = {"daily_reset": False, "weekly_reset": False, "cooldown_released": False,
                   "contract_switch": None}

        if self.session_clock.new_week(now):
            self.store.apply(self.risk_gate.reset_weekly)
            actions["weekly_reset"] = True
            logger.info("[pipeline] new trading week, weekly lock cleared")

        if self.session_clock.new_day(now):
            self.trader.reset_daily_state(now)
            actions["daily_reset"] = True

        before = self.store.snapshot()
        after = self.store.apply(lambda s: self.risk_gate.release_cooldown(s, now))
        actions["cooldown_released"] = before.is_paused and not after.is_paused

        if self.contracts is not None:
            switch = self.contracts.check_switch(trading_day_key(now))
            if switch is not None:
                self.contract_notices.append(switch)
                actions["contract_switch"] = switch

        return actions

    # ---- read API -------------------------------------------------------

    def get_candles(self, timeframe: str) -> List[Candle]:
        """Confirmed candles plus the live candle, for charting."""
        return self.aggregator[timeframe].get_all_candles()

    def get_live_candle(self, timeframe: str) -> Optional[Candle]:
        return self.aggregator[timeframe].get_live_candle()

    def get_statistics(self) -> Dict:
        return self.trader.get_statistics()

    def get_state(self) -> SessionState:
        return self.store.snapshot()

    def set_trading_enabled(self, enabled: bool) -> SessionState:
        return self.store.apply(lambda s: replace(s, is_trading_enabled=enabled))

    def set_glass_mode(self, enabled: bool) -> SessionState:
        """Read-only mode: positions are still managed, no new entries."""
        return self.store.apply(lambda s: self.risk_gate.set_glass_mode(s, enabled))

    def emergency_kill(self) -> SessionState:
        return self.store.apply(self.risk_gate.emergency_lock)
