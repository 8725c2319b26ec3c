# config.py
"""
Configuration for the Crude SMC paper trader.

Environment-driven constants plus the tunable parameter objects used by
the risk gate and the signal engine.

Environment variables:
- SYMBOL: instrument traded by the session (default CRUDEOILM)
- ALLOW_CRUDEOIL_FULL: "true" also authorises the full-size CRUDEOIL contract
- TRADING_TIMEZONE: exchange time zone (default Asia/Kolkata)
- LOG_LEVEL: logging level for the CLI (default INFO)
- JOURNAL_PATH: trade journal location (default logs/trade_history.json)
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from typing import Any, Dict, Optional, Tuple


SYMBOL = os.environ.get("SYMBOL", "CRUDEOILM")
ALLOW_CRUDEOIL_FULL = os.environ.get("ALLOW_CRUDEOIL_FULL", "").lower() == "true"

TRADING_TIMEZONE = os.environ.get("TRADING_TIMEZONE", "Asia/Kolkata")
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
JOURNAL_PATH = os.environ.get("JOURNAL_PATH", os.path.join("logs", "trade_history.json"))

TIMEFRAMES = ("1m", "5m", "15m", "1h")

TIMEFRAME_SECONDS = {
    "1m": 60,
    "5m": 300,
    "15m": 900,
    "1h": 3600,
}

# MCX crude session, exchange-local time
MARKET_OPEN = "09:00"
MARKET_CLOSE = "23:30"


def default_allowed_symbols() -> Tuple[str, ...]:
    """Only the mini contract is authorised unless the full contract is enabled."""
    if ALLOW_CRUDEOIL_FULL:
        return ("CRUDEOILM", "CRUDEOIL")
    return ("CRUDEOILM",)


@dataclass(frozen=True)
class TradingWindow:
    """Daily window in which new entries are allowed (HH:MM, inclusive)."""
    start: str = "18:00"
    end: str = "20:30"
    timezone: str = TRADING_TIMEZONE


@dataclass
class RiskParameters:
    """
    Risk policy enforced by the risk gate.

    Defaults follow the 50-point daily plan:
    - 1% risk per trade, 1:2 minimum reward ratio
    - 50 point daily target, 25 point daily loss limit
    - pause for an hour after 2 consecutive losses
    """
    max_daily_loss_points: float = 25.0
    daily_profit_target_points: float = 50.0
    risk_reward_ratio: float = 2.0
    max_position_size_lots: int = 5
    account_balance: float = 100000.0
    risk_per_trade_percent: float = 1.0
    max_equity_drawdown_percent: Optional[float] = None

    max_consecutive_losses: int = 2
    cooldown_minutes: int = 60
    max_weekly_loss_points: float = 75.0
    point_value: float = 20.0

    allowed_symbols: Tuple[str, ...] = field(default_factory=default_allowed_symbols)
    trading_window: TradingWindow = field(default_factory=TradingWindow)

    def expected_stop_loss_points(self) -> float:
        """Stop distance implied by the daily target and the reward ratio."""
        return self.daily_profit_target_points / self.risk_reward_ratio

    def to_dict(self) -> Dict[str, Any]:
        """Convert parameters to dictionary."""
        d = {f.name: getattr(self, f.name) for f in fields(self)}
        d["allowed_symbols"] = list(self.allowed_symbols)
        d["trading_window"] = {
            "start": self.trading_window.start,
            "end": self.trading_window.end,
            "timezone": self.trading_window.timezone,
        }
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "RiskParameters":
        """Create parameters from dictionary, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        kwargs = {k: v for k, v in d.items() if k in known}
        if "allowed_symbols" in kwargs:
            kwargs["allowed_symbols"] = tuple(kwargs["allowed_symbols"])
        if isinstance(kwargs.get("trading_window"), dict):
            kwargs["trading_window"] = TradingWindow(**kwargs["trading_window"])
        return cls(**kwargs)


@dataclass
class StrategyParams:
    """
    Signal engine parameters.

    min_candles_* gate the analysis per timeframe; the 1h series has no
    minimum, a short 1h history simply reads as a neutral trend.
    """
    min_candles_1m: int = 100
    min_candles_5m: int = 50
    min_candles_15m: int = 30
    min_candles_1h: int = 0

    min_confidence: float = 60.0
    reward_multiple: float = 2.0

    fvg_stop_buffer: float = 5.0
    grab_stop_buffer: float = 10.0
    fvg_confidence: float = 0.85
    grab_confidence: float = 0.80
    recent_fvg_count: int = 3
    grab_recency_bars: int = 10

    premium_discount_lookback: int = 50
    liquidity_grab_lookback: int = 50
    swing_lookback: int = 5

    cache_size: int = 200
    symbol: str = SYMBOL

    def min_candles(self) -> Dict[str, int]:
        return {
            "1m": self.min_candles_1m,
            "5m": self.min_candles_5m,
            "15m": self.min_candles_15m,
            "1h": self.min_candles_1h,
        }

    def to_dict(self) -> Dict[str, Any]:
        """Convert parameters to dictionary."""
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "StrategyParams":
        """Create parameters from dictionary."""
        return cls(**{k: v for k, v in d.items() if hasattr(cls, k)})
