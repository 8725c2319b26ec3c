# structure.py
"""
Smart Money Concepts structure analysis for the Crude SMC paper trader.

- Swing points and trend (higher highs / lower lows)
- Break of Structure and Change of Character over the last 20 candles
- Premium / Discount zones around the range equilibrium
- Equal highs / lows (liquidity pools) and whether they were swept
- Market condition (trend, volatility, session, regime)
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from indicators import atr as average_true_range
from indicators import round_to_bucket
from market_hours import exchange_now


BULLISH = "bullish"
BEARISH = "bearish"
NEUTRAL = "neutral"

EQUAL_HIGHS = "equal_highs"
EQUAL_LOWS = "equal_lows"


@dataclass
class MarketStructure:
    trend: str = NEUTRAL
    last_bos: Optional[float] = None
    last_choch: Optional[float] = None
    higher_highs: List[float] = field(default_factory=list)
    lower_lows: List[float] = field(default_factory=list)


@dataclass(frozen=True)
class PriceZone:
    top: float
    bottom: float

    def contains(self, price: float) -> bool:
        return self.bottom <= price <= self.top


@dataclass(frozen=True)
class PremiumDiscountZone:
    premium: PriceZone
    equilibrium: float
    discount: PriceZone


@dataclass(frozen=True)
class LiquidityZone:
    type: str
    price: float
    occurrences: int
    is_swept: bool


@dataclass(frozen=True)
class MarketCondition:
    trend: str
    volatility: str
    session: str
    regime: str
    atr: float


def _is_swing_high(candles: Sequence, index: int, lookback: int) -> bool:
    high = candles[index].high
    for i in range(index - lookback, index + lookback + 1):
        if i == index or i < 0 or i >= len(candles):
            continue
        if candles[i].high > high:
            return False
    return True


def _is_swing_low(candles: Sequence, index: int, lookback: int) -> bool:
    low = candles[index].low
    for i in range(index - lookback, index + lookback + 1):
        if i == index or i < 0 or i >= len(candles):
            continue
        if candles[i].low < low:
            return False
    return True


def find_swing_points(candles: Sequence, lookback: int = 5) -> Tuple[List[Tuple[int, float]], List[Tuple[int, float]]]:
    """
    Find swing highs and lows.

    A swing high at i has no high above it within +/- lookback candles
    (ties allowed); swing lows mirror it. Only indices with a full window
    on both sides are considered.

    Returns:
        (swing_highs, swing_lows) as lists of (index, price)
    """
    swing_highs = []
    swing_lows = []
    for i in range(lookback, len(candles) - lookback):
        if _is_swing_high(candles, i, lookback):
            swing_highs.append((i, candles[i].high))
        if _is_swing_low(candles, i, lookback):
            swing_lows.append((i, candles[i].low))
    return swing_highs, swing_lows


def analyze_market_structure(candles: Sequence, swing_lookback: int = 5) -> MarketStructure:
    """
    Classify trend from swing structure and detect BOS / CHOCH.

    Swing highs are kept only while each one is higher than the last kept
    one (lows only while each is lower). Trend is bullish with >= 2 higher
    highs and < 2 lower lows, bearish for the mirror case, else neutral.
    """
    structure = MarketStructure()
    if not candles:
        return structure

    swing_highs, swing_lows = find_swing_points(candles, swing_lookback)
    for _, price in swing_highs:
        if not structure.higher_highs or price > structure.higher_highs[-1]:
            structure.higher_highs.append(price)
    for _, price in swing_lows:
        if not structure.lower_lows or price < structure.lower_lows[-1]:
            structure.lower_lows.append(price)

    # range of the 20 candles before the latest one
    recent = candles[-21:-1] if len(candles) > 1 else candles
    recent_high = max(c.high for c in recent)
    recent_low = min(c.low for c in recent)
    last_close = candles[-1].close

    if last_close > recent_high:
        structure.last_bos = recent_high
    elif last_close < recent_low:
        structure.last_bos = recent_low

    if len(candles) >= 5:
        midpoint = (recent_high + recent_low) / 2
        earlier_close = candles[-5].close
        if last_close < midpoint < earlier_close or last_close > midpoint > earlier_close:
            structure.last_choch = midpoint

    if len(structure.higher_highs) >= 2 and len(structure.lower_lows) < 2:
        structure.trend = BULLISH
    elif len(structure.lower_lows) >= 2 and len(structure.higher_highs) < 2:
        structure.trend = BEARISH

    return structure


def calculate_premium_discount_zones(candles: Sequence, lookback: int = 50) -> PremiumDiscountZone:
    """Split the high/low range of the last `lookback` candles at its midpoint."""
    recent = candles[-lookback:]
    high = max(c.high for c in recent)
    low = min(c.low for c in recent)
    equilibrium = low + (high - low) * 0.5
    return PremiumDiscountZone(
        premium=PriceZone(top=high, bottom=equilibrium),
        equilibrium=equilibrium,
        discount=PriceZone(top=equilibrium, bottom=low),
    )


def is_in_premium_zone(price: float, zones: PremiumDiscountZone) -> bool:
    return zones.premium.contains(price)


def is_in_discount_zone(price: float, zones: PremiumDiscountZone) -> bool:
    return zones.discount.contains(price)


def _is_swept(candles: Sequence, level: float, side: str) -> bool:
    for candle in candles[-10:]:
        if side == "high" and candle.high > level:
            return True
        if side == "low" and candle.low < level:
            return True
    return False


def detect_equal_highs_lows(candles: Sequence, tolerance: float = 0.001,
                            bucket: float = 5.0) -> List[LiquidityZone]:
    """
    Group highs and lows into `bucket`-point levels; a level touched at least
    twice is a liquidity pool. Each pool is tagged as equal highs and/or
    equal lows depending on which extremes sit within `tolerance` (fraction
    of price) of it, and as swept if any of the last 10 candles traded
    beyond it. Sorted by occurrences, most first.
    """
    touches = {}
    for i, candle in enumerate(candles):
        touches.setdefault(round_to_bucket(candle.high, bucket), []).append(i)
        touches.setdefault(round_to_bucket(candle.low, bucket), []).append(i)

    zones: List[LiquidityZone] = []
    for price, indices in touches.items():
        if len(indices) < 2:
            continue
        limit = tolerance * price
        if any(abs(candles[i].high - price) < limit for i in indices):
            zones.append(LiquidityZone(EQUAL_HIGHS, price, len(indices), _is_swept(candles, price, "high")))
        if any(abs(candles[i].low - price) < limit for i in indices):
            zones.append(LiquidityZone(EQUAL_LOWS, price, len(indices), _is_swept(candles, price, "low")))

    zones.sort(key=lambda z: z.occurrences, reverse=True)
    return zones


def _session_for_hour(hour: int) -> str:
    if hour < 9:
        return "closed"
    if hour < 12:
        return "morning"
    if hour < 17:
        return "afternoon"
    if hour < 22:
        return "evening"
    return "closed"


def determine_market_condition(candles: Sequence, now: Optional[datetime] = None,
                               swing_lookback: int = 5) -> MarketCondition:
    """
    Volatility is ATR(14) as a percentage of the mean of the last 20 closes:
    < 1% low, < 2% medium, else high. High volatility reads as a breakout
    regime, otherwise a neutral trend is ranging and anything else trending.
    """
    atr_value = average_true_range(candles, 14) or 0.0
    recent = candles[-20:]
    avg_price = sum(c.close for c in recent) / len(recent) if recent else 0.0
    volatility_percent = (atr_value / avg_price) * 100 if avg_price > 0 else 0.0

    if volatility_percent < 1:
        volatility = "low"
    elif volatility_percent < 2:
        volatility = "medium"
    else:
        volatility = "high"

    trend = analyze_market_structure(candles, swing_lookback).trend

    if volatility == "high":
        regime = "breakout"
    elif trend == NEUTRAL:
        regime = "ranging"
    else:
        regime = "trending"

    local = exchange_now(now)
    return MarketCondition(
        trend=trend,
        volatility=volatility,
        session=_session_for_hour(local.hour),
        regime=regime,
        atr=atr_value,
    )
