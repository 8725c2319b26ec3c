"""
Market structure tests

Covers:
1. Swing points and trend classification
2. Break of Structure / Change of Character
3. Premium / Discount zones
4. Equal highs / lows
5. Market condition
"""

from datetime import datetime

import pytest

from candles import Candle
from structure import (
    BEARISH,
    BULLISH,
    EQUAL_HIGHS,
    EQUAL_LOWS,
    NEUTRAL,
    analyze_market_structure,
    calculate_premium_discount_zones,
    detect_equal_highs_lows,
    determine_market_condition,
    find_swing_points,
    is_in_discount_zone,
    is_in_premium_zone,
)


def wave_candles(n, drift, sign=1, base=5000.0):
    """Triangle wave (period 12, amplitude 12) on a linear drift."""
    candles = []
    for k in range(n):
        t = k % 12
        w = t * 2 if t <= 6 else 12 - (t - 6) * 2
        mid = base + drift * k + sign * w
        candles.append(Candle(time=k * 60, open=mid, high=mid + 1, low=mid - 1, close=mid))
    return candles


def flat_candles(n, high=5010.0, low=4990.0, close=5000.0):
    return [Candle(time=i * 60, open=close, high=high, low=low, close=close) for i in range(n)]


def test_swing_points_on_wave():
    candles = wave_candles(60, drift=0.5)
    highs, lows = find_swing_points(candles, lookback=5)
    assert [i for i, _ in highs] == [6, 18, 30, 42, 54]
    assert [i for i, _ in lows] == [12, 24, 36, 48]


def test_rising_wave_is_bullish():
    structure = analyze_market_structure(wave_candles(60, drift=0.5))
    assert structure.trend == BULLISH
    assert len(structure.higher_highs) >= 2
    assert structure.higher_highs == sorted(structure.higher_highs)
    assert len(structure.lower_lows) < 2


def test_falling_wave_is_bearish():
    structure = analyze_market_structure(wave_candles(60, drift=-0.5, sign=-1))
    assert structure.trend == BEARISH
    assert len(structure.lower_lows) >= 2
    assert structure.lower_lows == sorted(structure.lower_lows, reverse=True)


def test_flat_market_is_neutral():
    structure = analyze_market_structure(flat_candles(40))
    assert structure.trend == NEUTRAL
    assert analyze_market_structure([]).trend == NEUTRAL


def test_bullish_break_of_structure():
    candles = flat_candles(25)
    candles.append(Candle(time=25 * 60, open=5000.0, high=5025.0, low=4999.0, close=5020.0))
    structure = analyze_market_structure(candles)
    assert structure.last_bos == 5010.0
    assert structure.last_choch is None


def test_bearish_break_of_structure():
    candles = flat_candles(25)
    candles.append(Candle(time=25 * 60, open=5000.0, high=5001.0, low=4975.0, close=4980.0))
    structure = analyze_market_structure(candles)
    assert structure.last_bos == 4990.0, "Close below the 20-candle low breaks it"
    assert structure.last_choch is None


def test_change_of_character_across_midpoint():
    candles = flat_candles(25, close=4995.0)
    candles.append(Candle(time=25 * 60, open=4996.0, high=5008.0, low=4995.0, close=5005.0))
    structure = analyze_market_structure(candles)
    assert structure.last_choch == 5000.0
    assert structure.last_bos is None


def test_premium_discount_zones():
    candles = flat_candles(30, high=5100.0, low=5000.0, close=5050.0)
    zones = calculate_premium_discount_zones(candles, 50)

    assert zones.equilibrium == 5050.0
    assert (zones.premium.bottom, zones.premium.top) == (5050.0, 5100.0)
    assert (zones.discount.bottom, zones.discount.top) == (5000.0, 5050.0)
    assert is_in_discount_zone(5020.0, zones) and not is_in_premium_zone(5020.0, zones)
    assert is_in_premium_zone(5080.0, zones) and not is_in_discount_zone(5080.0, zones)
    assert is_in_premium_zone(5050.0, zones) and is_in_discount_zone(5050.0, zones)
    assert not is_in_discount_zone(4990.0, zones)


def test_premium_discount_uses_lookback_window():
    candles = flat_candles(10, high=6000.0, low=4000.0) + flat_candles(50, high=5100.0, low=5000.0)
    zones = calculate_premium_discount_zones(candles, 50)
    assert zones.equilibrium == 5050.0


def test_equal_highs_and_lows():
    candles = [
        Candle(0, 5070.0, 5101.0, 5050.0, 5080.0),
        Candle(60, 5080.0, 5099.0, 5051.0, 5075.0),
        Candle(120, 5075.0, 5100.5, 5049.0, 5072.0),
    ]
    zones = detect_equal_highs_lows(candles)
    by_type = {z.type: z for z in zones}

    assert by_type[EQUAL_HIGHS].price == 5100.0
    assert by_type[EQUAL_HIGHS].occurrences == 3
    assert by_type[EQUAL_HIGHS].is_swept, "5101 traded above the 5100 pool"
    assert by_type[EQUAL_LOWS].price == 5050.0
    assert by_type[EQUAL_LOWS].is_swept
    assert [z.occurrences for z in zones] == sorted((z.occurrences for z in zones), reverse=True)


def test_market_condition_flat_evening():
    condition = determine_market_condition(flat_candles(40), now=datetime(2026, 1, 5, 19, 0))
    assert condition.trend == NEUTRAL
    assert condition.volatility == "low"
    assert condition.regime == "ranging"
    assert condition.session == "evening"
    assert condition.atr == pytest.approx(20.0)


@pytest.mark.parametrize("hour,session", [
    (8, "closed"), (10, "morning"), (14, "afternoon"), (18, "evening"), (23, "closed"),
])
def test_market_condition_session(hour, session):
    condition = determine_market_condition(flat_candles(20), now=datetime(2026, 1, 5, hour, 0))
    assert condition.session == session
