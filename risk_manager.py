# risk_manager.py
"""
Risk Manager for the Crude SMC paper trader.

Enforces the daily plan:
- 1% account risk per trade, 1:2 minimum risk-reward
- 50 point daily profit target, 25 point daily loss limit
- two consecutive losses pause trading for an hour
- entries only inside the 18:00 - 20:30 IST window
- optional equity drawdown shield and a weekly capital lock

validate() never raises for a policy breach; it returns (is_valid, reason).
Session state is replaced, never mutated in place: update_after_trade and
the reset helpers return a new SessionState.
"""

import logging
import math
import threading
from dataclasses import asdict, dataclass, replace
from datetime import date, datetime, timedelta
from typing import Callable, Dict, Optional, Tuple

from config import RiskParameters
from market_hours import exchange_now, is_within_window


logger = logging.getLogger(__name__)

TRADING_MODE_PAPER = "PAPER"

MODE_NORMAL = "NORMAL"
MODE_GLASS = "GLASS"
MODE_EMERGENCY_LOCK = "EMERGENCY_LOCK"

PAUSE_PROFIT_TARGET = "Daily profit target reached. Waiting for next session."
PAUSE_DAILY_LOSS = "Max daily loss hit. Trading stopped for today."
PAUSE_CONSECUTIVE_LOSSES = "2 consecutive losses. Switching to demo mode for 1 hour."


@dataclass(frozen=True)
class SessionState:
    trading_mode: str = TRADING_MODE_PAPER
    is_trading_enabled: bool = True
    current_date: Optional[date] = None
    daily_pnl_points: float = 0.0
    trades_today: int = 0
    consecutive_losses: int = 0
    is_paused: bool = False
    pause_reason: Optional[str] = None
    pause_until: Optional[datetime] = None
    last_trade_time: Optional[datetime] = None
    operational_mode: str = MODE_NORMAL
    peak_balance: float = 0.0
    is_weekly_locked: bool = False
    weekly_pnl_points: float = 0.0

    def to_dict(self) -> Dict:
        d = asdict(self)
        for key in ("current_date", "pause_until", "last_trade_time"):
            if d[key] is not None:
                d[key] = d[key].isoformat()
        return d


class SessionStateStore:
    """
    Single owner of the shared SessionState.

    Readers get a snapshot; writers go through apply(), which runs the
    read-modify-write under one lock so trade validation and trade closure
    never interleave on the counters.
    """

    def __init__(self, state: Optional[SessionState] = None):
        self._state = state or SessionState()
        self._lock = threading.RLock()

    def snapshot(self) -> SessionState:
        with self._lock:
            return self._state

    def apply(self, fn: Callable[[SessionState], SessionState]) -> SessionState:
        with self._lock:
            self._state = fn(self._state)
            return self._state

    def replace(self, state: SessionState) -> None:
        with self._lock:
            self._state = state


class RiskGate:
    def __init__(self, params: Optional[RiskParameters] = None,
                 clock: Optional[Callable[[], datetime]] = None,
                 enforce_window: bool = True):
        self.params = params or RiskParameters()
        self.clock = clock or (lambda: exchange_now())
        self.enforce_window = enforce_window

    def initial_state(self, today: Optional[date] = None) -> SessionState:
        return SessionState(
            current_date=today,
            peak_balance=self.params.account_balance,
        )

    # ---- sizing ---------------------------------------------------------

    def calculate_position_size(self, account_balance: float, stop_loss_points: float) -> int:
        """
        Position size = (account balance * risk%) / stop loss points,
        floored and capped at the maximum lot count.
        """
        if stop_loss_points <= 0:
            return 0
        risk_amount = account_balance * (self.params.risk_per_trade_percent / 100)
        lots = math.floor(risk_amount / stop_loss_points)
        return max(0, min(lots, self.params.max_position_size_lots))

    def calculate_sl_tp(self, entry_price: float, direction: str,
                        atr: Optional[float] = None) -> Dict[str, float]:
        """
        Default stop is target / RR points; an ATR widens it to ATR * 1.5
        when that is larger. Take profit is the stop distance times RR.
        """
        default_sl = self.params.expected_stop_loss_points()
        sl_points = max(atr * 1.5, default_sl) if atr else default_sl
        tp_points = sl_points * self.params.risk_reward_ratio

        if direction == "BUY":
            stop_loss, take_profit = entry_price - sl_points, entry_price + tp_points
        else:
            stop_loss, take_profit = entry_price + sl_points, entry_price - tp_points

        return {
            "stop_loss": stop_loss,
            "take_profit": take_profit,
            "risk_reward_ratio": tp_points / sl_points,
        }

    def should_scale_out(self, entry_price: float, current_price: float,
                         take_profit: float, direction: str) -> Tuple[bool, int]:
        """
        Partial-profit advice: close 50% once half way to target, another
        25% from three quarters. Only favourable progress counts.
        """
        target_distance = abs(take_profit - entry_price)
        if target_distance == 0:
            return False, 0
        moved = current_price - entry_price if direction == "BUY" else entry_price - current_price
        if moved <= 0:
            return False, 0

        progress = moved / target_distance * 100
        if 50 <= progress < 75:
            return True, 50
        if 75 <= progress < 100:
            return True, 25
        return False, 0

    @staticmethod
    def adjust_position_for_regime(base_size: int, regime: str, volatility: str) -> int:
        multiplier = 1.0
        if regime == "ranging":
            multiplier *= 0.7
        if volatility == "high":
            multiplier *= 0.8
        if regime == "trending" and volatility == "low":
            multiplier *= 1.2
        return math.floor(base_size * multiplier)

    # ---- gating ---------------------------------------------------------

    def is_valid_trading_window(self, now: Optional[datetime] = None) -> bool:
        window = self.params.trading_window
        return is_within_window(now or self.clock(), window.start, window.end, window.timezone)

    def _window_label(self) -> str:
        window = self.params.trading_window
        zone = "IST" if window.timezone == "Asia/Kolkata" else window.timezone
        return f"{window.start} - {window.end} {zone}"

    def validate(self, signal, state: SessionState,
                 now: Optional[datetime] = None) -> Tuple[bool, Optional[str]]:
        """
        Check a signal against the risk policy. The first failing rule wins:
        enabled -> instrument -> paused -> daily target -> daily loss ->
        loss streak -> risk-reward -> SL/TP sanity -> SL width -> window ->
        drawdown -> weekly lock.

        Returns:
            (True, None) or (False, reason)
        """
        p = self.params

        if not state.is_trading_enabled:
            return False, "Trading disabled by system"

        if signal.symbol not in p.allowed_symbols:
            allowed = ", ".join(p.allowed_symbols)
            return False, f"Unauthorized Instrument: {signal.symbol}. Only {allowed} allowed."

        if state.is_paused:
            return False, f"System paused: {state.pause_reason}"

        if state.daily_pnl_points >= p.daily_profit_target_points:
            return False, f"Daily profit target of {p.daily_profit_target_points:g} points reached"

        if state.daily_pnl_points <= -p.max_daily_loss_points:
            return False, (
                f"Max daily loss of {p.max_daily_loss_points:g} points hit. Trading stopped for today."
            )

        if state.consecutive_losses >= p.max_consecutive_losses:
            return False, (
                f"{p.max_consecutive_losses} consecutive losses detected. "
                f"Switching to demo mode for 1 hour."
            )

        if signal.risk_reward_ratio < p.risk_reward_ratio:
            return False, (
                f"Risk-Reward ratio {signal.risk_reward_ratio:.2f} is below minimum {p.risk_reward_ratio:g}"
            )

        sl_points = abs(signal.entry_price - signal.stop_loss)
        tp_points = abs(signal.take_profit - signal.entry_price)
        if sl_points == 0 or tp_points == 0:
            return False, "Invalid stop loss or take profit"

        expected = p.expected_stop_loss_points()
        if sl_points > expected * 1.5:
            return False, f"Stop loss too wide: {sl_points:.0f} points (expected ~{expected:.0f})"

        if self.enforce_window and not self.is_valid_trading_window(now):
            return False, f"Outside trading window ({self._window_label()})"

        if p.max_equity_drawdown_percent and state.peak_balance > 0:
            equity = p.account_balance + state.daily_pnl_points * p.point_value
            drawdown = (state.peak_balance - equity) / state.peak_balance * 100
            if drawdown > p.max_equity_drawdown_percent:
                return False, (
                    f"Capital Shield: Drawdown {drawdown:.1f}% exceeds limit {p.max_equity_drawdown_percent:g}%"
                )

        if state.is_weekly_locked:
            return False, "Weekly Capital Lock is active. See you next week."

        return True, None

    # ---- state transitions ---------------------------------------------

    def update_after_trade(self, state: SessionState, pnl_points: float,
                           now: Optional[datetime] = None) -> SessionState:
        """
        Fold a closed trade into the session state and apply auto-pauses.
        A losing trade extends the loss streak; anything else resets it.
        """
        p = self.params
        now = now or self.clock()

        daily = state.daily_pnl_points + pnl_points
        weekly = state.weekly_pnl_points + pnl_points
        streak = state.consecutive_losses + 1 if pnl_points < 0 else 0
        equity = p.account_balance + daily * p.point_value

        changes = dict(
            daily_pnl_points=daily,
            weekly_pnl_points=weekly,
            trades_today=state.trades_today + 1,
            consecutive_losses=streak,
            last_trade_time=now,
            peak_balance=max(state.peak_balance, equity),
        )

        if daily >= p.daily_profit_target_points:
            changes.update(is_paused=True, pause_reason=PAUSE_PROFIT_TARGET, pause_until=None)
        if daily <= -p.max_daily_loss_points:
            changes.update(is_paused=True, pause_reason=PAUSE_DAILY_LOSS, pause_until=None)
        if streak >= p.max_consecutive_losses:
            changes.update(
                is_paused=True,
                pause_reason=PAUSE_CONSECUTIVE_LOSSES,
                pause_until=now + timedelta(minutes=p.cooldown_minutes),
            )

        if weekly <= -p.max_weekly_loss_points and not state.is_weekly_locked:
            changes["is_weekly_locked"] = True
            logger.warning("[risk] weekly loss %.1f points, capital lock engaged", weekly)

        new_state = replace(state, **changes)
        if new_state.is_paused and new_state.pause_reason != state.pause_reason:
            logger.warning("[risk] trading paused: %s", new_state.pause_reason)
        return new_state

    def release_cooldown(self, state: SessionState, now: Optional[datetime] = None) -> SessionState:
        """Lift an expired loss-streak pause and clear the streak."""
        now = now or self.clock()
        if not state.is_paused or state.pause_until is None or now < state.pause_until:
            return state
        logger.info("[risk] cooldown expired at %s, trading resumes", state.pause_until.isoformat())
        return replace(state, is_paused=False, pause_reason=None, pause_until=None, consecutive_losses=0)

    def reset_daily(self, state: SessionState, today: Optional[date] = None) -> SessionState:
        """Zero the daily counters and clear any pause; the weekly lock stays."""
        return replace(
            state,
            daily_pnl_points=0.0,
            trades_today=0,
            consecutive_losses=0,
            is_paused=False,
            pause_reason=None,
            pause_until=None,
            current_date=today,
        )

    def reset_weekly(self, state: SessionState) -> SessionState:
        return replace(state, weekly_pnl_points=0.0, is_weekly_locked=False)

    # ---- operational mode -----------------------------------------------

    @staticmethod
    def set_glass_mode(state: SessionState, enabled: bool) -> SessionState:
        """Read-only mode on or off. An emergency lock is left in place."""
        if state.operational_mode == MODE_EMERGENCY_LOCK:
            logger.warning("[risk] cannot toggle glass mode while in emergency lock")
            return state
        mode = MODE_GLASS if enabled else MODE_NORMAL
        logger.info("[risk] operational mode changed to %s", mode)
        return replace(state, operational_mode=mode)

    @staticmethod
    def emergency_lock(state: SessionState) -> SessionState:
        """Kill switch: lock the session and disable trading until restart."""
        logger.warning("[risk] EMERGENCY KILL SWITCH ACTIVATED")
        return replace(state, operational_mode=MODE_EMERGENCY_LOCK, is_trading_enabled=False)


def trading_block_reason(state: SessionState) -> Optional[str]:
    """Why the operational mode forbids new entries, or None in NORMAL mode."""
    if state.operational_mode == MODE_GLASS:
        return "System is in GLASS MODE (Read-Only)"
    if state.operational_mode == MODE_EMERGENCY_LOCK:
        return "System is in EMERGENCY LOCK"
    return None
