"""
Risk gate tests

Covers:
1. validate(): rule order and each rejection reason
2. Trading window boundaries
3. Position sizing, SL/TP, scale-out and regime adjustment
4. Session state transitions (pauses, weekly lock, cooldown, resets)
5. SessionStateStore under concurrent writers
"""

import threading
from dataclasses import replace
from datetime import date, datetime, timedelta

import pytest

from config import RiskParameters
from risk_manager import (
    MODE_EMERGENCY_LOCK,
    MODE_GLASS,
    MODE_NORMAL,
    PAUSE_CONSECUTIVE_LOSSES,
    PAUSE_DAILY_LOSS,
    PAUSE_PROFIT_TARGET,
    RiskGate,
    SessionState,
    SessionStateStore,
    trading_block_reason,
)
from strategy import TradeSignal

IN_WINDOW = datetime(2026, 1, 5, 19, 0)


def make_signal(**overrides):
    values = dict(
        symbol="CRUDEOILM",
        direction="BUY",
        entry_price=5000.0,
        stop_loss=4985.0,
        take_profit=5030.0,
        confidence=80.0,
        reason="test",
        risk_reward_ratio=2.0,
    )
    values.update(overrides)
    return TradeSignal(**values)


@pytest.fixture
def gate():
    return RiskGate(RiskParameters(allowed_symbols=("CRUDEOILM",)), clock=lambda: IN_WINDOW)


@pytest.fixture
def state(gate):
    return gate.initial_state(date(2026, 1, 5))


def test_clean_signal_passes(gate, state):
    assert gate.validate(make_signal(), state) == (True, None)
    assert state.peak_balance == 100000.0
    assert state.operational_mode == MODE_NORMAL


@pytest.mark.parametrize("signal_changes,state_changes,reason", [
    ({}, {"is_trading_enabled": False}, "Trading disabled by system"),
    ({"symbol": "CRUDEOIL"}, {}, "Unauthorized Instrument: CRUDEOIL. Only CRUDEOILM allowed."),
    ({}, {"is_paused": True, "pause_reason": "manual"}, "System paused: manual"),
    ({}, {"daily_pnl_points": 50.0}, "Daily profit target of 50 points reached"),
    ({}, {"daily_pnl_points": -25.0}, "Max daily loss of 25 points hit. Trading stopped for today."),
    ({}, {"consecutive_losses": 2}, "2 consecutive losses detected. Switching to demo mode for 1 hour."),
    ({"risk_reward_ratio": 1.5}, {}, "Risk-Reward ratio 1.50 is below minimum 2"),
    ({"stop_loss": 5000.0}, {}, "Invalid stop loss or take profit"),
    ({"stop_loss": 4960.0, "take_profit": 5080.0}, {}, "Stop loss too wide: 40 points (expected ~25)"),
    ({}, {"is_weekly_locked": True}, "Weekly Capital Lock is active. See you next week."),
])
def test_each_rule_rejects(gate, state, signal_changes, state_changes, reason):
    ok, got = gate.validate(make_signal(**signal_changes), replace(state, **state_changes))
    assert not ok
    assert got == reason


def test_first_failing_rule_wins(gate, state):
    bad = replace(state, is_trading_enabled=False, is_paused=True, pause_reason="x", daily_pnl_points=-30.0)
    ok, reason = gate.validate(make_signal(symbol="GOLD", risk_reward_ratio=1.0), bad)
    assert not ok
    assert reason == "Trading disabled by system"

    ok, reason = gate.validate(make_signal(symbol="GOLD"), replace(bad, is_trading_enabled=True))
    assert reason.startswith("Unauthorized Instrument")


@pytest.mark.parametrize("hour,minute,expected", [
    (18, 0, True),
    (19, 15, True),
    (20, 30, True),
    (17, 59, False),
    (20, 31, False),
    (10, 0, False),
])
def test_trading_window_boundaries(gate, state, hour, minute, expected):
    now = datetime(2026, 1, 5, hour, minute)
    assert gate.is_valid_trading_window(now) is expected
    ok, reason = gate.validate(make_signal(), state, now=now)
    assert ok is expected
    if not expected:
        assert reason == "Outside trading window (18:00 - 20:30 IST)"


def test_window_can_be_disabled(state):
    gate = RiskGate(RiskParameters(allowed_symbols=("CRUDEOILM",)), enforce_window=False)
    assert gate.validate(make_signal(), state, now=datetime(2026, 1, 5, 3, 0)) == (True, None)


def test_drawdown_shield(state):
    params = RiskParameters(allowed_symbols=("CRUDEOILM",), max_equity_drawdown_percent=5.0)
    gate = RiskGate(params, clock=lambda: IN_WINDOW)
    ok, reason = gate.validate(make_signal(), replace(state, peak_balance=110000.0))
    assert not ok
    assert reason == "Capital Shield: Drawdown 9.1% exceeds limit 5%"
    assert gate.validate(make_signal(), state) == (True, None)


def test_validate_does_not_touch_state(gate, state):
    before = state
    gate.validate(make_signal(risk_reward_ratio=1.0), state)
    assert state == before


def test_profit_target_pauses_session(gate, state):
    state = gate.update_after_trade(state, 30.0, IN_WINDOW)
    state = gate.update_after_trade(state, 20.0, IN_WINDOW)
    assert state.is_paused
    assert state.pause_reason == PAUSE_PROFIT_TARGET
    assert state.trades_today == 2
    ok, reason = gate.validate(make_signal(), state)
    assert not ok and reason.startswith("System paused")


def test_daily_loss_pauses_session(gate, state):
    state = gate.update_after_trade(state, -26.0, IN_WINDOW)
    assert state.is_paused
    assert state.pause_reason == PAUSE_DAILY_LOSS
    assert state.pause_until is None


def test_two_losses_start_cooldown(gate, state):
    state = gate.update_after_trade(state, -5.0, IN_WINDOW)
    assert not state.is_paused
    assert state.consecutive_losses == 1

    state = gate.update_after_trade(state, -5.0, IN_WINDOW)
    assert state.is_paused
    assert state.consecutive_losses == 2
    assert state.pause_reason == PAUSE_CONSECUTIVE_LOSSES
    assert state.pause_until == IN_WINDOW + timedelta(minutes=60)
    assert state.daily_pnl_points == -10.0


def test_win_resets_loss_streak(gate, state):
    state = gate.update_after_trade(state, -5.0, IN_WINDOW)
    state = gate.update_after_trade(state, 8.0, IN_WINDOW)
    assert state.consecutive_losses == 0


def test_cooldown_release(gate, state):
    state = gate.update_after_trade(state, -5.0, IN_WINDOW)
    state = gate.update_after_trade(state, -5.0, IN_WINDOW)

    early = gate.release_cooldown(state, IN_WINDOW + timedelta(minutes=30))
    assert early is state

    released = gate.release_cooldown(state, IN_WINDOW + timedelta(minutes=60))
    assert not released.is_paused
    assert released.pause_reason is None
    assert released.consecutive_losses == 0
    assert released.daily_pnl_points == -10.0


def test_weekly_lock_and_peak_balance(gate, state):
    state = replace(state, weekly_pnl_points=-70.0)
    locked = gate.update_after_trade(state, -10.0, IN_WINDOW)
    assert locked.is_weekly_locked
    assert locked.weekly_pnl_points == -80.0

    daily = gate.reset_daily(locked, date(2026, 1, 6))
    assert daily.is_weekly_locked, "Daily reset keeps the weekly lock"
    assert daily.daily_pnl_points == 0.0 and daily.trades_today == 0
    assert daily.current_date == date(2026, 1, 6)

    weekly = gate.reset_weekly(daily)
    assert not weekly.is_weekly_locked
    assert weekly.weekly_pnl_points == 0.0

    raised = gate.update_after_trade(gate.initial_state(), 10.0, IN_WINDOW)
    assert raised.peak_balance == 100200.0


def test_update_returns_new_state(gate, state):
    new_state = gate.update_after_trade(state, 10.0, IN_WINDOW)
    assert new_state is not state
    assert state.daily_pnl_points == 0.0
    assert state.trades_today == 0


def test_position_sizing():
    gate = RiskGate(RiskParameters(max_position_size_lots=100))
    assert gate.calculate_position_size(100000, 15) == 66
    assert gate.calculate_position_size(100000, 0) == 0
    assert RiskGate().calculate_position_size(100000, 15) == 5
    assert RiskGate().calculate_position_size(1000, 15) == 0


def test_calculate_sl_tp(gate):
    levels = gate.calculate_sl_tp(5000.0, "BUY")
    assert (levels["stop_loss"], levels["take_profit"]) == (4975.0, 5050.0)
    assert levels["risk_reward_ratio"] == 2.0

    levels = gate.calculate_sl_tp(5000.0, "BUY", atr=20.0)
    assert (levels["stop_loss"], levels["take_profit"]) == (4970.0, 5060.0)

    levels = gate.calculate_sl_tp(5000.0, "SELL")
    assert (levels["stop_loss"], levels["take_profit"]) == (5025.0, 4950.0)


@pytest.mark.parametrize("current,direction,take_profit,expected", [
    (5030.0, "BUY", 5060.0, (True, 50)),
    (5045.0, "BUY", 5060.0, (True, 25)),
    (5060.0, "BUY", 5060.0, (False, 0)),
    (5010.0, "BUY", 5060.0, (False, 0)),
    (4970.0, "BUY", 5060.0, (False, 0)),
    (4970.0, "SELL", 4940.0, (True, 50)),
    (5030.0, "SELL", 4940.0, (False, 0)),
])
def test_should_scale_out(gate, current, direction, take_profit, expected):
    assert gate.should_scale_out(5000.0, current, take_profit, direction) == expected


@pytest.mark.parametrize("regime,volatility,expected", [
    ("ranging", "medium", 3),
    ("trending", "low", 6),
    ("breakout", "high", 4),
    ("trending", "medium", 5),
])
def test_adjust_position_for_regime(regime, volatility, expected):
    assert RiskGate.adjust_position_for_regime(5, regime, volatility) == expected


def test_store_serializes_writers():
    store = SessionStateStore(SessionState())

    def bump():
        for _ in range(200):
            store.apply(lambda s: replace(s, trades_today=s.trades_today + 1))

    threads = [threading.Thread(target=bump) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert store.snapshot().trades_today == 1600


def test_state_to_dict_serializes_dates(gate):
    state = gate.update_after_trade(gate.initial_state(date(2026, 1, 5)), 5.0, IN_WINDOW)
    d = state.to_dict()
    assert d["current_date"] == "2026-01-05"
    assert d["last_trade_time"] == IN_WINDOW.isoformat()
    assert d["pause_until"] is None


def test_reaching_target_with_flat_trade_pauses(gate, state):
    state = gate.update_after_trade(replace(state, daily_pnl_points=50.0), 0.0, IN_WINDOW)
    assert state.is_paused
    assert "profit target" in state.pause_reason


def test_loss_streak_blocks_next_signal(gate, state):
    state = gate.update_after_trade(state, -5.0, IN_WINDOW)
    state = gate.update_after_trade(state, -5.0, IN_WINDOW)
    ok, reason = gate.validate(make_signal(), state)
    assert not ok
    assert "consecutive losses" in reason


def test_glass_mode_toggle(gate, state):
    glass = gate.set_glass_mode(state, True)
    assert glass.operational_mode == MODE_GLASS
    assert trading_block_reason(glass) == "System is in GLASS MODE (Read-Only)"
    assert state.operational_mode == MODE_NORMAL

    normal = gate.set_glass_mode(glass, False)
    assert normal.operational_mode == MODE_NORMAL
    assert trading_block_reason(normal) is None


def test_emergency_lock_holds(gate, state):
    locked = gate.emergency_lock(state)
    assert locked.operational_mode == MODE_EMERGENCY_LOCK
    assert not locked.is_trading_enabled
    assert trading_block_reason(locked) == "System is in EMERGENCY LOCK"

    assert gate.set_glass_mode(locked, False) is locked
    assert gate.set_glass_mode(locked, True).operational_mode == MODE_EMERGENCY_LOCK
