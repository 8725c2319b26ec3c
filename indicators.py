# indicators.py
"""
Numeric helpers shared by the pattern and structure analyzers:
- True range / ATR
- Average volume over a window
- Price bucketing for level clustering
"""

import math
from typing import List, Optional, Sequence


def true_ranges(candles: Sequence) -> List[float]:
    """
    True range of every candle after the first.
    candles: oldest -> newest
    """
    trs = []
    for i in range(1, len(candles)):
        prev_close = candles[i - 1].close
        trs.append(max(
            candles[i].high - candles[i].low,
            abs(candles[i].high - prev_close),
            abs(candles[i].low - prev_close),
        ))
    return trs


def atr(candles: Sequence, period: int = 14) -> Optional[float]:
    """
    Simple-average ATR over the last `period` true ranges.
    Returns None when fewer than two candles are available.
    """
    trs = true_ranges(candles)
    if not trs:
        return None
    recent = trs[-period:]
    return sum(recent) / len(recent)


def average_volume(candles: Sequence, start: int, count: int) -> float:
    """
    Mean volume of candles[start:start + count], with the window clamped
    to the series. Returns 0.0 for an empty window.
    """
    valid_start = max(0, start)
    valid_end = min(valid_start + count, len(candles))
    if valid_end <= valid_start:
        return 0.0
    total = sum(candles[i].volume for i in range(valid_start, valid_end))
    return total / (valid_end - valid_start)


def round_to_bucket(price: float, bucket: float) -> float:
    """Round to the nearest multiple of `bucket`, halves rounding up."""
    return math.floor(price / bucket + 0.5) * bucket
