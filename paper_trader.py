# paper_trader.py
"""
Paper trading simulator for the Crude SMC paper trader.

Virtual positions against real (or replayed) prices:
- one open position at a time
- each price update can stop the position out or take profit
- closed trades feed the risk gate's session state and the ledger

The closed-trade ledger is the only source for statistics.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from candles import Candle
from market_hours import trading_day_key
from risk_manager import RiskGate, SessionState, SessionStateStore, trading_block_reason
from strategy import LONG, SHORT, AnalysisResult, StrategyEngine, TradeSignal
from structure import MarketCondition


logger = logging.getLogger(__name__)

STATUS_OPEN = "OPEN"
STATUS_CLOSED = "CLOSED"
STATUS_STOPPED = "STOPPED"

EXIT_STOP_LOSS = "Stop Loss"
EXIT_TAKE_PROFIT = "Take Profit"

STRATEGY_ID = "ict-smc-hybrid"


@dataclass
class Trade:
    id: str
    symbol: str
    direction: str
    entry_price: float
    entry_time: datetime
    stop_loss: float
    take_profit: float
    position_size: int
    risk_reward_ratio: float = 2.0
    status: str = STATUS_OPEN
    strategy_id: str = STRATEGY_ID
    entry_reason: str = ""
    exit_reason: Optional[str] = None
    exit_price: Optional[float] = None
    exit_time: Optional[datetime] = None
    profit_loss_points: Optional[float] = None
    profit_loss_amount: Optional[float] = None
    confidence: float = 0.0
    market_condition: Optional[MarketCondition] = None
    timeframe_bias: Dict[str, str] = field(default_factory=dict)
    patterns_detected: List = field(default_factory=list)
    trading_mode: str = "PAPER"

    @property
    def is_open(self) -> bool:
        return self.status == STATUS_OPEN

    def to_dict(self) -> Dict:
        condition = self.market_condition
        return {
            "id": self.id,
            "symbol": self.symbol,
            "strategy_id": self.strategy_id,
            "direction": self.direction,
            "entry_price": self.entry_price,
            "entry_time": self.entry_time.isoformat() if self.entry_time else None,
            "stop_loss": self.stop_loss,
            "take_profit": self.take_profit,
            "position_size": self.position_size,
            "risk_reward_ratio": self.risk_reward_ratio,
            "status": self.status,
            "entry_reason": self.entry_reason,
            "exit_reason": self.exit_reason,
            "exit_price": self.exit_price,
            "exit_time": self.exit_time.isoformat() if self.exit_time else None,
            "profit_loss_points": self.profit_loss_points,
            "profit_loss_amount": self.profit_loss_amount,
            "confidence": round(self.confidence, 2),
            "market_condition": {
                "trend": condition.trend,
                "volatility": condition.volatility,
                "session": condition.session,
                "regime": condition.regime,
                "atr": round(condition.atr, 4),
            } if condition else None,
            "timeframe_bias": dict(self.timeframe_bias),
            "patterns_detected": [p.to_dict() for p in self.patterns_detected],
            "trading_mode": self.trading_mode,
        }


@dataclass
class PositionUpdate:
    """Scale-out advice for a position that is still open."""
    trade_id: str
    current_price: float
    unrealized_points: float
    scale_out_percent: int = 0


@dataclass
class ProcessResult:
    new_trade: Optional[Trade] = None
    closed_trades: List[Trade] = field(default_factory=list)
    position_updates: List[PositionUpdate] = field(default_factory=list)
    analysis: Optional[AnalysisResult] = None
    rejection: Optional[str] = None
    state: Optional[SessionState] = None


def _generate_trade_id(now: datetime) -> str:
    return f"TRADE-{int(now.timestamp() * 1000)}-{uuid.uuid4().hex[:9]}"


class PaperTrader:
    def __init__(self, risk_gate: RiskGate, store: Optional[SessionStateStore] = None,
                 strategy: Optional[StrategyEngine] = None, clock=None):
        self.risk_gate = risk_gate
        self.store = store or SessionStateStore(risk_gate.initial_state())
        self.strategy = strategy or StrategyEngine()
        self.clock = clock or risk_gate.clock
        self.open_trades: Dict[str, Trade] = {}
        self.closed_trades: List[Trade] = []

    @property
    def state(self) -> SessionState:
        return self.store.snapshot()

    @property
    def open_trade(self) -> Optional[Trade]:
        return next(iter(self.open_trades.values()), None)

    def process_market_data(self, market_data: Dict[str, Sequence[Candle]],
                            now: Optional[datetime] = None,
                            current_price: Optional[float] = None) -> ProcessResult:
        """
        One paper-trading pass over a multi-timeframe snapshot:
        mark open positions to `current_price` (default: the 1m close), then
        (if flat, enabled and in NORMAL mode) analyse, gate and execute.
        """
        now = now or self.clock()
        if current_price is None:
            one_minute = market_data.get("1m") or []
            if not one_minute:
                return ProcessResult(state=self.state)
            current_price = one_minute[-1].close

        closed, updates = self.update_positions(current_price, now)
        result = ProcessResult(closed_trades=closed, position_updates=updates)

        state = self.state
        if self.open_trades:
            result.state = state
            return result

        blocked = trading_block_reason(state)
        if blocked:
            logger.info("[paper_trader] trade blocked: %s", blocked)
            result.state = state
            return result

        if not state.is_trading_enabled:
            result.state = state
            return result

        analysis = self.strategy.analyze_snapshot(market_data)
        result.analysis = analysis
        if not analysis.should_trade or analysis.signal is None:
            logger.debug("[paper_trader] no trade: %s", analysis.explanation)
            result.state = state
            return result

        signal = analysis.signal
        is_valid, reason = self.risk_gate.validate(signal, state, now)
        if not is_valid:
            logger.info("[paper_trader] signal rejected: %s", reason)
            result.rejection = reason
            result.state = state
            return result

        condition = self.strategy.get_market_condition(now, market_data.get("15m") or [])
        trade = self.execute_trade(signal, now, condition)
        if trade is None:
            result.rejection = "Position size below 1 lot for this stop distance"
            logger.info("[paper_trader] signal rejected: %s", result.rejection)
        result.new_trade = trade
        result.state = self.state
        return result

    def execute_trade(self, signal: TradeSignal, now: Optional[datetime] = None,
                      market_condition: Optional[MarketCondition] = None) -> Optional[Trade]:
        """Open a position for an accepted signal. Returns None when it sizes below one lot."""
        if self.open_trades:
            logger.warning("[paper_trader] position already open, ignoring %s signal", signal.direction)
            return None

        now = now or self.clock()
        gate = self.risk_gate
        base_size = gate.calculate_position_size(gate.params.account_balance, signal.stop_loss_points)
        if base_size < 1:
            return None
        size = base_size
        if market_condition is not None:
            size = max(1, gate.adjust_position_for_regime(
                base_size, market_condition.regime, market_condition.volatility
            ))

        trade = Trade(
            id=_generate_trade_id(now),
            symbol=signal.symbol,
            direction=signal.direction,
            entry_price=signal.entry_price,
            entry_time=now,
            stop_loss=signal.stop_loss,
            take_profit=signal.take_profit,
            position_size=size,
            risk_reward_ratio=signal.risk_reward_ratio,
            entry_reason=signal.reason,
            confidence=signal.confidence,
            market_condition=market_condition,
            timeframe_bias=dict(signal.timeframe_bias),
            patterns_detected=list(signal.patterns_detected),
            trading_mode=self.state.trading_mode,
        )
        self.open_trades[trade.id] = trade

        logger.info("[paper_trader] NEW %s trade @ %.2f", trade.direction, trade.entry_price)
        logger.info("[paper_trader]   SL: %.2f | TP: %.2f | RR: 1:%g | size: %d",
                    trade.stop_loss, trade.take_profit, trade.risk_reward_ratio, trade.position_size)
        logger.info("[paper_trader]   Reason: %s (confidence %.0f%%)", trade.entry_reason, signal.confidence)
        return trade

    def update_positions(self, current_price: float, now: Optional[datetime] = None):
        """
        Mark open positions to `current_price`.

        Returns:
            (closed_trades, position_updates)
        """
        now = now or self.clock()
        closed: List[Trade] = []
        updates: List[PositionUpdate] = []

        for trade_id, trade in list(self.open_trades.items()):
            is_long = trade.direction == LONG
            exit_reason = None

            if (is_long and current_price <= trade.stop_loss) or \
                    (trade.direction == SHORT and current_price >= trade.stop_loss):
                exit_reason = EXIT_STOP_LOSS
                trade.status = STATUS_STOPPED

            if (is_long and current_price >= trade.take_profit) or \
                    (trade.direction == SHORT and current_price <= trade.take_profit):
                exit_reason = EXIT_TAKE_PROFIT
                trade.status = STATUS_CLOSED

            if exit_reason is None:
                points = current_price - trade.entry_price if is_long else trade.entry_price - current_price
                _, percent = self.risk_gate.should_scale_out(
                    trade.entry_price, current_price, trade.take_profit, trade.direction
                )
                updates.append(PositionUpdate(trade_id, current_price, points, percent))
                continue

            trade.exit_reason = exit_reason
            trade.exit_price = current_price
            trade.exit_time = now
            if is_long:
                trade.profit_loss_points = trade.exit_price - trade.entry_price
            else:
                trade.profit_loss_points = trade.entry_price - trade.exit_price
            trade.profit_loss_amount = trade.profit_loss_points * trade.position_size

            pnl = trade.profit_loss_points
            state = self.store.apply(lambda s: self.risk_gate.update_after_trade(s, pnl, now))

            logger.info("[paper_trader] TRADE CLOSED: %s", exit_reason)
            logger.info("[paper_trader]   Entry: %.2f -> Exit: %.2f", trade.entry_price, trade.exit_price)
            logger.info("[paper_trader]   P&L: %.1f points (%.0f INR)",
                        trade.profit_loss_points, trade.profit_loss_amount)
            logger.info("[paper_trader]   Daily P&L: %.1f / %g target", state.daily_pnl_points,
                        self.risk_gate.params.daily_profit_target_points)

            closed.append(trade)
            self.closed_trades.append(trade)
            del self.open_trades[trade_id]

        return closed, updates

    def get_statistics(self) -> Dict:
        """Aggregate figures derived only from the closed-trade ledger."""
        trades = self.closed_trades
        pnls = [t.profit_loss_points or 0.0 for t in trades]
        wins = [p for p in pnls if p > 0]
        losses = [p for p in pnls if p < 0]

        gross_win = sum(wins)
        gross_loss = abs(sum(losses))
        if gross_loss > 0:
            profit_factor = gross_win / gross_loss
        else:
            profit_factor = float("inf") if gross_win > 0 else 0.0

        return {
            "total_trades": len(trades),
            "wins": len(wins),
            "losses": len(losses),
            "win_rate": round(len(wins) / len(trades) * 100, 2) if trades else 0.0,
            "total_pnl": round(sum(pnls), 2),
            "avg_win": round(gross_win / len(wins), 2) if wins else 0.0,
            "avg_loss": round(sum(losses) / len(losses), 2) if losses else 0.0,
            "largest_win": round(max(wins), 2) if wins else 0.0,
            "largest_loss": round(min(losses), 2) if losses else 0.0,
            "profit_factor": round(profit_factor, 2) if profit_factor != float("inf") else profit_factor,
            "total_pnl_amount": round(sum(t.profit_loss_amount or 0.0 for t in trades), 2),
        }

    def reset_daily_state(self, now: Optional[datetime] = None) -> SessionState:
        """Zero daily counters for a new session and clear daily pauses."""
        today = trading_day_key(now or self.clock())
        state = self.store.apply(lambda s: self.risk_gate.reset_daily(s, today))
        logger.info("[paper_trader] daily state reset for %s", today.isoformat())
        return state
