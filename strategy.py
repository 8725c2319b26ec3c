# strategy.py
"""
ICT + SMC hybrid signal engine for the Crude SMC paper trader.

Multi-timeframe flow:
1. 1H and 15M trends must both be directional and agree
2. FVGs, order blocks and liquidity grabs are read off the 5M series
3. Premium/discount and equal highs/lows come from the 15M series
4. Longs need a discount price plus an FVG retest or a recent bullish
   grab; shorts mirror it in the premium zone
5. Confidence blends pattern strength, timeframe alignment and pattern count

Every pass returns an AnalysisResult with exactly one explanation.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from candles import Candle, CandleIntegrityError
from config import TIMEFRAMES, StrategyParams
from patterns import (
    BEARISH,
    BULLISH,
    FVG_RETEST,
    LIQUIDITY_GRAB_BEARISH,
    LIQUIDITY_GRAB_BULLISH,
    ORDER_BLOCK_SUPPORT,
    PatternDetection,
    detect_fair_value_gaps,
    detect_liquidity_grabs,
    detect_order_blocks,
)
from structure import (
    EQUAL_HIGHS,
    EQUAL_LOWS,
    NEUTRAL,
    LiquidityZone,
    MarketCondition,
    analyze_market_structure,
    calculate_premium_discount_zones,
    detect_equal_highs_lows,
    determine_market_condition,
    is_in_discount_zone,
    is_in_premium_zone,
)


logger = logging.getLogger(__name__)

LONG = "BUY"
SHORT = "SELL"

STRATEGY_NAME = "ICT+SMC Hybrid"
ENGINE_FAILURE = "Strategy engine internal failure"


@dataclass
class TradeSignal:
    symbol: str
    direction: str
    entry_price: float
    stop_loss: float
    take_profit: float
    confidence: float
    reason: str
    patterns_detected: List[PatternDetection] = field(default_factory=list)
    timeframe_bias: Dict[str, str] = field(default_factory=dict)
    risk_reward_ratio: float = 2.0
    strategy_name: str = STRATEGY_NAME

    @property
    def stop_loss_points(self) -> float:
        return abs(self.entry_price - self.stop_loss)

    @property
    def take_profit_points(self) -> float:
        return abs(self.take_profit - self.entry_price)

    def to_dict(self) -> Dict:
        return {
            "symbol": self.symbol,
            "direction": self.direction,
            "entry_price": self.entry_price,
            "stop_loss": self.stop_loss,
            "take_profit": self.take_profit,
            "confidence": round(self.confidence, 2),
            "reason": self.reason,
            "patterns_detected": [p.to_dict() for p in self.patterns_detected],
            "timeframe_bias": dict(self.timeframe_bias),
            "risk_reward_ratio": self.risk_reward_ratio,
            "strategy_name": self.strategy_name,
        }


@dataclass
class Opportunity:
    direction: str
    score: int
    reason: str
    missing_conditions: List[str] = field(default_factory=list)
    liquidity_targets: List[float] = field(default_factory=list)


@dataclass
class AnalysisResult:
    signal: Optional[TradeSignal] = None
    should_trade: bool = False
    explanation: str = ""
    opportunities: List[Opportunity] = field(default_factory=list)


def calculate_confidence(patterns: Sequence[PatternDetection], timeframe_bias: Dict[str, str],
                         direction: str) -> float:
    """
    avg(pattern confidence) * 50
    + (timeframes agreeing with direction / 4) * 30
    + min(pattern count * 5, 20), capped at 100
    """
    if not patterns:
        return 0.0
    avg = sum(p.confidence for p in patterns) / len(patterns)
    aligned = sum(1 for bias in timeframe_bias.values() if bias == direction)
    confidence = avg * 50 + (aligned / 4) * 30 + min(len(patterns) * 5, 20)
    return max(0.0, min(confidence, 100.0))


class SignalEngine:
    """Stateless analysis of one multi-timeframe candle snapshot."""

    def __init__(self, params: Optional[StrategyParams] = None):
        self.params = params or StrategyParams()

    def _has_enough_data(self, market_data: Dict[str, Sequence[Candle]]) -> Optional[str]:
        short = []
        for tf, minimum in self.params.min_candles().items():
            count = len(market_data.get(tf) or [])
            if minimum and count < minimum:
                short.append(f"{tf}: {count}/{minimum}")
        if short:
            return "Insufficient data for analysis (" + ", ".join(short) + ")"
        return None

    def analyze(self, market_data: Dict[str, Sequence[Candle]]) -> AnalysisResult:
        result = AnalysisResult()

        insufficient = self._has_enough_data(market_data)
        if insufficient:
            result.explanation = insufficient
            return result

        p = self.params
        tf1m = market_data.get("1m") or []
        tf5m = market_data.get("5m") or []
        tf15m = market_data.get("15m") or []
        tf1h = market_data.get("1h") or []

        current_price = tf1m[-1].close

        structure_1h = analyze_market_structure(tf1h, p.swing_lookback)
        structure_15m = analyze_market_structure(tf15m, p.swing_lookback)
        timeframe_bias = {
            "1h": structure_1h.trend,
            "15m": structure_15m.trend,
            "5m": analyze_market_structure(tf5m, p.swing_lookback).trend,
            "1m": analyze_market_structure(tf1m, p.swing_lookback).trend,
        }

        if structure_1h.trend == NEUTRAL:
            result.explanation = "Market condition is ranging/neutral (1H Trend)"
            return result
        if structure_15m.trend == NEUTRAL:
            result.explanation = "Market condition is ranging/neutral (15M Trend)"
            return result
        if structure_1h.trend != structure_15m.trend:
            result.explanation = (
                f"Timeframe mismatch: 1H is {structure_1h.trend} but 15M is {structure_15m.trend}"
            )
            return result

        overall = structure_1h.trend

        fvgs = detect_fair_value_gaps(tf5m)
        order_blocks = detect_order_blocks(tf5m)
        grabs = detect_liquidity_grabs(tf5m, p.liquidity_grab_lookback)

        zones = calculate_premium_discount_zones(tf15m, p.premium_discount_lookback)
        in_premium = is_in_premium_zone(current_price, zones)
        in_discount = is_in_discount_zone(current_price, zones)
        liquidity = detect_equal_highs_lows(tf15m)
        logger.debug("[strategy] %s trend, price %.2f, eq %.2f, %d fvgs, %d grabs, %d pools",
                     overall, current_price, zones.equilibrium, len(fvgs), len(grabs), len(liquidity))

        signal = None
        if overall == BULLISH and in_discount:
            signal = self._fvg_setup(BULLISH, current_price, fvgs, order_blocks, timeframe_bias)
            if signal is None:
                signal = self._grab_setup(BULLISH, current_price, grabs, len(tf5m), timeframe_bias)
        elif overall == BEARISH and in_premium:
            signal = self._fvg_setup(BEARISH, current_price, fvgs, order_blocks, timeframe_bias)
            if signal is None:
                signal = self._grab_setup(BEARISH, current_price, grabs, len(tf5m), timeframe_bias)

        result.opportunities = self._rank_opportunities(overall, in_premium, in_discount, current_price, liquidity)

        if signal is not None and signal.confidence >= p.min_confidence:
            result.signal = signal
            result.should_trade = True
            result.explanation = f"High confidence signal found: {signal.reason}"
            return result

        if overall == BULLISH and not in_discount:
            result.explanation = "Bullish trend but price is in Premium (expensive) - waiting for pullback"
        elif overall == BEARISH and not in_premium:
            result.explanation = "Bearish trend but price is in Discount (cheap) - waiting for bounce"
        elif signal is None:
            result.explanation = "No clear entry pattern (FVG/Liquidity Grab) detected at key level"
        else:
            result.explanation = (
                f"Signal confidence {signal.confidence:.0f} below threshold {p.min_confidence:.0f}: {signal.reason}"
            )
        return result

    def _build_signal(self, direction: str, price: float, stop_loss: float, reason: str,
                      patterns: List[PatternDetection], timeframe_bias: Dict[str, str]) -> TradeSignal:
        risk = abs(price - stop_loss)
        if direction == BULLISH:
            take_profit = price + risk * self.params.reward_multiple
        else:
            take_profit = price - risk * self.params.reward_multiple
        return TradeSignal(
            symbol=self.params.symbol,
            direction=LONG if direction == BULLISH else SHORT,
            entry_price=price,
            stop_loss=stop_loss,
            take_profit=take_profit,
            confidence=calculate_confidence(patterns, timeframe_bias, direction),
            reason=reason,
            patterns_detected=patterns,
            timeframe_bias=dict(timeframe_bias),
            risk_reward_ratio=self.params.reward_multiple,
        )

    def _fvg_setup(self, direction, price, fvgs, order_blocks, timeframe_bias) -> Optional[TradeSignal]:
        p = self.params
        recent = [g for g in fvgs if g.type == direction][-p.recent_fvg_count:]
        gap = next((g for g in reversed(recent) if g.contains(price)), None)
        if gap is None:
            return None

        patterns = [PatternDetection(
            type=FVG_RETEST,
            confidence=p.fvg_confidence,
            price=price,
            details={"fvg_top": gap.top, "fvg_bottom": gap.bottom, "candle_index": gap.candle_index},
        )]

        if direction == BULLISH:
            support = [ob for ob in order_blocks if ob.type == BULLISH and ob.price < price]
        else:
            support = [ob for ob in order_blocks if ob.type == BEARISH and ob.price > price]
        if support:
            block = support[-1]
            patterns.append(PatternDetection(
                type=ORDER_BLOCK_SUPPORT,
                confidence=block.strength,
                price=block.price,
                details={"candle_index": block.candle_index},
            ))

        if direction == BULLISH:
            stop_loss = gap.bottom - p.fvg_stop_buffer
            reason = "Bullish FVG retest in discount zone with bullish 1H trend"
        else:
            stop_loss = gap.top + p.fvg_stop_buffer
            reason = "Bearish FVG retest in premium zone with bearish 1H trend"
        return self._build_signal(direction, price, stop_loss, reason, patterns, timeframe_bias)

    def _grab_setup(self, direction, price, grabs, series_length, timeframe_bias) -> Optional[TradeSignal]:
        p = self.params
        kind = LIQUIDITY_GRAB_BULLISH if direction == BULLISH else LIQUIDITY_GRAB_BEARISH
        cutoff = series_length - p.grab_recency_bars
        recent = [g for g in grabs if g.type == kind and g.details.get("candle_index", -1) >= cutoff]
        if not recent:
            return None

        grab = recent[-1]
        level = grab.price or price
        patterns = [PatternDetection(
            type=kind,
            confidence=p.grab_confidence,
            price=level,
            details=dict(grab.details),
        )]

        if direction == BULLISH:
            stop_loss = level - p.grab_stop_buffer
            reason = "Bullish liquidity grab with reversal confirmation"
        else:
            stop_loss = level + p.grab_stop_buffer
            reason = "Bearish liquidity grab with reversal confirmation"
        return self._build_signal(direction, price, stop_loss, reason, patterns, timeframe_bias)

    @staticmethod
    def _liquidity_targets(zones: Sequence[LiquidityZone], price: float, direction: str) -> List[float]:
        """Unswept equal highs above price for longs, unswept equal lows below price for shorts."""
        if direction == LONG:
            return sorted(z.price for z in zones
                          if z.type == EQUAL_HIGHS and not z.is_swept and z.price > price)
        return sorted((z.price for z in zones
                       if z.type == EQUAL_LOWS and not z.is_swept and z.price < price), reverse=True)

    def _rank_opportunities(self, overall: str, in_premium: bool, in_discount: bool,
                            price: float, liquidity: Sequence[LiquidityZone]) -> List[Opportunity]:
        long_score = (80 if in_discount else 50) if overall == BULLISH else 20
        short_score = (80 if in_premium else 50) if overall == BEARISH else 20
        opportunities = [
            Opportunity(
                direction=LONG,
                score=long_score,
                reason="Trend alignment" if overall == BULLISH else "Counter-trend",
                missing_conditions=[] if in_discount else ["Price not in discount zone"],
                liquidity_targets=self._liquidity_targets(liquidity, price, LONG),
            ),
            Opportunity(
                direction=SHORT,
                score=short_score,
                reason="Trend alignment" if overall == BEARISH else "Counter-trend",
                missing_conditions=[] if in_premium else ["Price not in premium zone"],
                liquidity_targets=self._liquidity_targets(liquidity, price, SHORT),
            ),
        ]
        opportunities.sort(key=lambda o: o.score, reverse=True)
        return opportunities


class StrategyEngine:
    """
    Per-timeframe candle caches in front of a SignalEngine.

    The pipeline pushes confirmed candles in; run_analysis reads copies of
    the caches so analysis never sees a list that is being appended to.
    """

    def __init__(self, params: Optional[StrategyParams] = None, engine: Optional[SignalEngine] = None):
        self.params = params or StrategyParams()
        self.engine = engine or SignalEngine(self.params)
        self.caches: Dict[str, List[Candle]] = {tf: [] for tf in TIMEFRAMES}

    def update_cache(self, timeframe: str, candles: Sequence[Candle]) -> None:
        if timeframe in self.caches:
            self.caches[timeframe] = list(candles)[-self.params.cache_size:]

    def process_new_candle(self, timeframe: str, candle: Candle) -> None:
        """Append a confirmed candle, or replace the last one with the same time."""
        cache = self.caches.get(timeframe)
        if cache is None:
            return
        if cache and cache[-1].time == candle.time:
            cache[-1] = candle
        else:
            cache.append(candle)
        if len(cache) > self.params.cache_size:
            del cache[: len(cache) - self.params.cache_size]

    def get_cache(self, timeframe: str) -> List[Candle]:
        return list(self.caches.get(timeframe, []))

    def snapshot(self) -> Dict[str, List[Candle]]:
        return {tf: list(candles) for tf, candles in self.caches.items()}

    def analyze_snapshot(self, market_data: Dict[str, Sequence[Candle]]) -> AnalysisResult:
        """Run the engine on a snapshot; unexpected failures become a no-signal result."""
        try:
            return self.engine.analyze(market_data)
        except CandleIntegrityError:
            raise
        except Exception:
            logger.exception("[strategy] analysis pass failed")
            return AnalysisResult(explanation=ENGINE_FAILURE)

    def run_analysis(self) -> AnalysisResult:
        return self.analyze_snapshot(self.snapshot())

    def get_market_condition(self, now=None, candles: Optional[Sequence[Candle]] = None) -> MarketCondition:
        """Regime read off the 15m series (the cache unless candles are given)."""
        series = self.caches.get("15m", []) if candles is None else candles
        return determine_market_condition(series, now, self.params.swing_lookback)
