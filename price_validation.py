"""
Price Validation Module for the Crude SMC paper trader.

Validates raw ticks before they reach the candle aggregator, and checks
candle invariants when a candle is finalized or seeded from history.

Tick policy:
- Non-finite or non-positive prices are dropped
- Negative volume or negative timestamps are dropped
- Late ticks (bucket earlier than the live candle) follow the aggregator's
  late-tick policy: LATE_TICK_DROP discards them, LATE_TICK_CLAMP folds
  them into the live candle
"""

import math
from typing import Tuple


LATE_TICK_DROP = "drop"
LATE_TICK_CLAMP = "clamp"

LATE_TICK_POLICIES = (LATE_TICK_DROP, LATE_TICK_CLAMP)


def validate_tick(price: float, volume: float, time: int) -> Tuple[bool, str]:
    """
    Validate the fields of a raw tick.

    Args:
        price: Last traded price
        volume: Per-tick traded volume (already normalised to a delta)
        time: Tick time in epoch seconds

    Returns:
        Tuple of (is_valid, message)
    """
    if price is None or not math.isfinite(price):
        return False, f"Tick price {price} is not a finite number"

    if price <= 0:
        return False, f"Tick price {price} must be positive"

    if volume is None or volume < 0:
        return False, f"Tick volume {volume} must be non-negative"

    if time is None or time < 0:
        return False, f"Tick time {time} must be non-negative"

    return True, f"Tick {price} @ {time} accepted"


def validate_candle(
    time: int,
    open_price: float,
    high: float,
    low: float,
    close: float,
    bucket_seconds: int,
) -> Tuple[bool, str]:
    """
    Check the OHLC invariants of a candle.

    Args:
        time: Candle bucket start in epoch seconds
        open_price, high, low, close: Candle prices
        bucket_seconds: Timeframe length in seconds

    Returns:
        Tuple of (is_valid, message)
    """
    if high < low:
        return False, f"Candle {time}: high {high} below low {low}"

    if low > min(open_price, close):
        return False, f"Candle {time}: low {low} above body [{open_price}, {close}]"

    if high < max(open_price, close):
        return False, f"Candle {time}: high {high} below body [{open_price}, {close}]"

    if bucket_seconds > 0 and time % bucket_seconds != 0:
        return False, f"Candle {time} is not aligned to {bucket_seconds}s buckets"

    return True, f"Candle {time} within range [{low}, {high}]"
