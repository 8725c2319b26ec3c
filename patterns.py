# patterns.py
"""
ICT Pattern Detection Module for the Crude SMC paper trader.

Pure functions over an ordered candle sequence (oldest -> newest):
- Fair Value Gaps (3-candle imbalances), unfilled only
- Order Blocks (last counter-trend candle before a breakout)
- Liquidity Grabs (sweep of a window extreme followed by a reversal)
- Breaker Blocks (broken support/resistance rejected from the other side)
- Institutional order flow (volume absorption)

Nothing here mutates its input; identical slices give identical output.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from indicators import average_volume, round_to_bucket


BULLISH = "bullish"
BEARISH = "bearish"

FVG_RETEST = "fvg_retest"
ORDER_BLOCK_SUPPORT = "order_block_support"
LIQUIDITY_GRAB_BULLISH = "liquidity_grab_bullish"
LIQUIDITY_GRAB_BEARISH = "liquidity_grab_bearish"
BREAKER_BLOCK_BULLISH = "breaker_block_bullish"
BREAKER_BLOCK_BEARISH = "breaker_block_bearish"
INSTITUTIONAL_BUYING = "institutional_buying"
INSTITUTIONAL_SELLING = "institutional_selling"

LIQUIDITY_GRAB_CONFIDENCE = 0.75
BREAKER_BLOCK_CONFIDENCE = 0.70


@dataclass(frozen=True)
class FairValueGap:
    type: str
    top: float
    bottom: float
    candle_index: int
    is_filled: bool = False

    def contains(self, price: float) -> bool:
        return self.bottom <= price <= self.top


@dataclass(frozen=True)
class OrderBlock:
    type: str
    price: float
    candle_index: int
    strength: float


@dataclass
class PatternDetection:
    type: str
    confidence: float
    price: float
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "confidence": round(self.confidence, 4),
            "price": self.price,
            "details": dict(self.details),
        }


def _gap_is_filled(gap_type: str, top: float, bottom: float, later: Sequence) -> bool:
    # Filled when a later low (bullish) or high (bearish) lands inside [bottom, top].
    for candle in later:
        if gap_type == BULLISH and bottom <= candle.low <= top:
            return True
        if gap_type == BEARISH and bottom <= candle.high <= top:
            return True
    return False


def detect_fair_value_gaps(candles: Sequence) -> List[FairValueGap]:
    """
    Detect unfilled Fair Value Gaps.

    Bullish: candles[i-2].high < candles[i].low, gap = [c[i-2].high, c[i].low]
    Bearish: candles[i-2].low > candles[i].high, gap = [c[i].high, c[i-2].low]

    Returns gaps in candle order.
    """
    gaps: List[FairValueGap] = []

    for i in range(2, len(candles)):
        current = candles[i]
        two_before = candles[i - 2]
        later = candles[i + 1:]

        if two_before.high < current.low:
            top, bottom = current.low, two_before.high
            if not _gap_is_filled(BULLISH, top, bottom, later):
                gaps.append(FairValueGap(BULLISH, top, bottom, i))

        if two_before.low > current.high:
            top, bottom = two_before.low, current.high
            if not _gap_is_filled(BEARISH, top, bottom, later):
                gaps.append(FairValueGap(BEARISH, top, bottom, i))

    return gaps


def _order_block_strength(candles: Sequence, index: int, block_type: str) -> float:
    """
    Blend of the block candle's volume against the 10 candles before the
    breakout candle (ratio capped at 2) and how many of the next 10 candles
    stayed on the right side of the block.
    """
    block = candles[index - 2]
    avg = average_volume(candles, index - 10, 10)
    volume_strength = min(block.volume / avg, 2.0) / 2.0 if avg > 0 else 0.0

    respected = 0
    for candle in candles[index:index + 10]:
        if block_type == BULLISH and candle.low >= block.low:
            respected += 1
        if block_type == BEARISH and candle.high <= block.high:
            respected += 1

    return (volume_strength + respected / 10.0) / 2.0


def detect_order_blocks(candles: Sequence, lookback: Optional[int] = None) -> List[OrderBlock]:
    """
    Detect Order Blocks.

    Bullish: down candle, then two up candles, the last closing above the
    down candle's high. The block price is the down candle's low.
    Bearish mirrors it, priced at the up candle's high.

    lookback limits the scan to the last `lookback` candles (None = all);
    candle indices always refer to the full sequence.
    """
    blocks: List[OrderBlock] = []
    start = 2 if lookback is None else max(2, len(candles) - lookback)

    for i in range(start, len(candles)):
        current = candles[i]
        previous = candles[i - 1]
        two_before = candles[i - 2]

        if (two_before.is_bearish
                and previous.is_bullish
                and current.is_bullish
                and current.close > two_before.high):
            blocks.append(OrderBlock(
                BULLISH, two_before.low, i - 2, _order_block_strength(candles, i, BULLISH)
            ))

        if (two_before.is_bullish
                and previous.is_bearish
                and current.is_bearish
                and current.close < two_before.low):
            blocks.append(OrderBlock(
                BEARISH, two_before.high, i - 2, _order_block_strength(candles, i, BEARISH)
            ))

    return blocks


def detect_liquidity_grabs(candles: Sequence, lookback: int = 50) -> List[PatternDetection]:
    """
    Detect liquidity grabs (stop hunts).

    For each candle i with a full window of `lookback` candles before it and
    at least three candles after it:
    - bullish: low sweeps below the window low, the next close is above the
      sweep candle's high and the one after closes higher still
    - bearish: mirrored around the window high

    details carry swept_level, reversal_strength and the candle index.
    """
    grabs: List[PatternDetection] = []

    for i in range(lookback, len(candles) - 3):
        window = candles[i - lookback:i]
        if not window:
            continue
        recent_high = max(c.high for c in window)
        recent_low = min(c.low for c in window)

        current = candles[i]
        next1 = candles[i + 1]
        next2 = candles[i + 2]

        if current.low < recent_low and next1.close > current.high and next2.close > next1.close:
            grabs.append(PatternDetection(
                type=LIQUIDITY_GRAB_BULLISH,
                confidence=LIQUIDITY_GRAB_CONFIDENCE,
                price=current.low,
                details={
                    "swept_level": recent_low,
                    "reversal_strength": (next2.close - current.low) / current.low,
                    "candle_index": i,
                },
            ))

        if current.high > recent_high and next1.close < current.low and next2.close < next1.close:
            grabs.append(PatternDetection(
                type=LIQUIDITY_GRAB_BEARISH,
                confidence=LIQUIDITY_GRAB_CONFIDENCE,
                price=current.high,
                details={
                    "swept_level": recent_high,
                    "reversal_strength": (current.high - next2.close) / current.high,
                    "candle_index": i,
                },
            ))

    return grabs


def _most_touched_level(values: Sequence[float], bucket: float = 10.0) -> Optional[Tuple[float, int]]:
    """Bucketed level with the most touches (first seen wins ties), or None below 2 touches."""
    counts: Dict[float, int] = {}
    for value in values:
        level = round_to_bucket(value, bucket)
        counts[level] = counts.get(level, 0) + 1

    best: Optional[Tuple[float, int]] = None
    for level, touches in counts.items():
        if touches >= 2 and (best is None or touches > best[1]):
            best = (level, touches)
    return best


def detect_breaker_blocks(candles: Sequence, tolerance: float = 0.002) -> List[PatternDetection]:
    """
    Detect Breaker Blocks.

    Bearish: the most-touched support (lows bucketed to 10) of the 20
    candles before i is closed through within 10 candles, then a red
    candle's high comes back within `tolerance` of the level within the
    next 10 candles.
    Bullish: the same around resistance (highs), closed above, then a green
    candle's low rejects it from above.
    """
    breakers: List[PatternDetection] = []
    seen = set()
    n = len(candles)

    for i in range(20, n - 5):
        window = candles[i - 20:i]

        support = _most_touched_level([c.low for c in window])
        if support is not None:
            hit = _find_breaker(candles, i, support[0], tolerance, bearish=True)
            if hit is not None:
                key = (BREAKER_BLOCK_BEARISH, support[0], hit[0])
                if key not in seen:
                    seen.add(key)
                    breakers.append(PatternDetection(
                        type=BREAKER_BLOCK_BEARISH,
                        confidence=BREAKER_BLOCK_CONFIDENCE,
                        price=support[0],
                        details={"broken_at": hit[0], "rejected_at": hit[1], "touches": support[1]},
                    ))

        resistance = _most_touched_level([c.high for c in window])
        if resistance is not None:
            hit = _find_breaker(candles, i, resistance[0], tolerance, bearish=False)
            if hit is not None:
                key = (BREAKER_BLOCK_BULLISH, resistance[0], hit[0])
                if key not in seen:
                    seen.add(key)
                    breakers.append(PatternDetection(
                        type=BREAKER_BLOCK_BULLISH,
                        confidence=BREAKER_BLOCK_CONFIDENCE,
                        price=resistance[0],
                        details={"broken_at": hit[0], "rejected_at": hit[1], "touches": resistance[1]},
                    ))

    return breakers


def _find_breaker(candles: Sequence, start: int, level: float, tolerance: float,
                  bearish: bool) -> Optional[Tuple[int, int]]:
    n = len(candles)
    for j in range(start, min(start + 10, n)):
        broken = candles[j].close < level if bearish else candles[j].close > level
        if not broken:
            continue
        for k in range(j + 1, min(j + 10, n)):
            candle = candles[k]
            if bearish:
                near = abs(candle.high - level) / level < tolerance
                rejected = candle.is_bearish
            else:
                near = abs(candle.low - level) / level < tolerance
                rejected = candle.is_bullish
            if near and rejected:
                return j, k
        return None
    return None


def detect_institutional_order_flow(candles: Sequence) -> List[PatternDetection]:
    """
    Flag high-volume absorption candles (volume > 2x the series average)
    closing in their own direction and beyond the previous close.
    """
    flow: List[PatternDetection] = []
    if not candles:
        return flow
    avg = sum(c.volume for c in candles) / len(candles)
    if avg <= 0:
        return flow

    for i in range(5, len(candles)):
        candle = candles[i]
        ratio = candle.volume / avg
        if ratio <= 2:
            continue

        if candle.is_bullish and candle.close > candles[i - 1].close:
            kind = INSTITUTIONAL_BUYING
        elif candle.is_bearish and candle.close < candles[i - 1].close:
            kind = INSTITUTIONAL_SELLING
        else:
            continue

        flow.append(PatternDetection(
            type=kind,
            confidence=min(ratio / 4.0, 1.0),
            price=candle.close,
            details={"volume_ratio": ratio, "candle_range": candle.high - candle.low},
        ))

    return flow
