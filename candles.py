# candles.py
"""
Candle aggregation for the Crude SMC paper trader.

Turns a serialized tick stream into OHLCV candles per timeframe:
- exactly one live (open) candle per timeframe
- an ordered, capped list of confirmed (closed) candles
- finalization whenever a tick lands in a later bucket

Volume convention: ticks carry per-tick delta volume. Feeds that report
cumulative traded volume for the day go through CumulativeVolumeNormalizer
before reaching the aggregator.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Dict, Iterable, List, Optional, Sequence

from config import TIMEFRAME_SECONDS, TIMEFRAMES
from price_validation import (
    LATE_TICK_CLAMP,
    LATE_TICK_DROP,
    LATE_TICK_POLICIES,
    validate_candle,
    validate_tick,
)


logger = logging.getLogger(__name__)


class CandleIntegrityError(RuntimeError):
    """A candle broke its OHLC or bucket invariants; the aggregator is corrupt."""


@dataclass(frozen=True)
class Tick:
    price: float
    volume: float
    time: int


@dataclass
class Candle:
    time: int
    open: float
    high: float
    low: float
    close: float
    volume: float = 0
    is_live: bool = False

    @property
    def is_bullish(self) -> bool:
        return self.close > self.open

    @property
    def is_bearish(self) -> bool:
        return self.close < self.open

    def copy(self, **changes) -> "Candle":
        return replace(self, **changes)

    def to_dict(self) -> Dict:
        return {
            "time": self.time,
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "close": self.close,
            "volume": self.volume,
            "is_live": self.is_live,
        }


@dataclass
class CandleUpdate:
    """Outcome of folding one tick into a timeframe."""
    timeframe: str
    confirmed_candles: List[Candle]
    live_candle: Optional[Candle]
    new_candle_formed: bool = False
    last_confirmed: Optional[Candle] = None
    accepted: bool = True
    reason: str = ""


def timeframe_seconds(timeframe: str) -> int:
    """Bucket size in seconds for a timeframe label such as '5m'."""
    if timeframe in TIMEFRAME_SECONDS:
        return TIMEFRAME_SECONDS[timeframe]
    unit = timeframe[-1:]
    try:
        amount = int(timeframe[:-1])
    except ValueError:
        raise ValueError(f"Unknown timeframe: {timeframe}")
    multipliers = {"m": 60, "h": 3600, "d": 86400}
    if unit not in multipliers or amount <= 0:
        raise ValueError(f"Unknown timeframe: {timeframe}")
    return amount * multipliers[unit]


def check_candle(candle: Candle, bucket_seconds: int) -> None:
    """Raise CandleIntegrityError when a candle violates its invariants."""
    ok, message = validate_candle(
        candle.time, candle.open, candle.high, candle.low, candle.close, bucket_seconds
    )
    if not ok:
        raise CandleIntegrityError(message)


class CandleAggregator:
    """
    Aggregates ticks for a single timeframe.

    Ticks must be delivered in time order by a single producer. A tick whose
    bucket is earlier than the live candle's bucket is handled by the
    late-tick policy:
      - LATE_TICK_DROP: discarded, live candle untouched
      - LATE_TICK_CLAMP: price/volume folded into the live candle
    """

    def __init__(
        self,
        timeframe: str,
        max_history: int = 2000,
        late_tick_policy: str = LATE_TICK_DROP,
    ):
        if late_tick_policy not in LATE_TICK_POLICIES:
            raise ValueError(f"Unknown late tick policy: {late_tick_policy}")
        self._timeframe = timeframe
        self.bucket_seconds = timeframe_seconds(timeframe)
        self.max_history = max_history
        self.late_tick_policy = late_tick_policy

        self._confirmed: List[Candle] = []
        self._live: Optional[Candle] = None
        self._last_boundary: Optional[int] = None
        self.last_candle_close_time: Optional[int] = None

    @property
    def timeframe(self) -> str:
        return self._timeframe

    def bucket_start(self, time: int) -> int:
        return (int(time) // self.bucket_seconds) * self.bucket_seconds

    def _update(self, new_candle_formed: bool = False, last_confirmed: Optional[Candle] = None,
                accepted: bool = True, reason: str = "") -> CandleUpdate:
        return CandleUpdate(
            timeframe=self._timeframe,
            confirmed_candles=self.get_confirmed_candles(),
            live_candle=self.get_live_candle(),
            new_candle_formed=new_candle_formed,
            last_confirmed=last_confirmed,
            accepted=accepted,
            reason=reason,
        )

    def _finalize_live(self) -> Candle:
        confirmed = self._live.copy(is_live=False)
        check_candle(confirmed, self.bucket_seconds)
        self._confirmed.append(confirmed)
        if len(self._confirmed) > self.max_history:
            del self._confirmed[: len(self._confirmed) - self.max_history]
        self.last_candle_close_time = confirmed.time + self.bucket_seconds
        self._live = None
        logger.debug(
            "[candles] %s candle %d finalized O=%.2f H=%.2f L=%.2f C=%.2f V=%s",
            self._timeframe, confirmed.time, confirmed.open, confirmed.high,
            confirmed.low, confirmed.close, confirmed.volume,
        )
        return confirmed

    def late_reason(self, time: int) -> Optional[str]:
        """Why a tick at `time` is late for this timeframe, or None when it is not."""
        start = self.bucket_start(time)
        if self._live is not None and start < self._live.time:
            return f"Late tick for bucket {start} behind live candle {self._live.time}"
        if self._live is None and self.last_candle_close_time is not None \
                and start < self.last_candle_close_time:
            return f"Late tick for confirmed bucket {start}"
        return None

    def reject_tick(self, reason: str) -> CandleUpdate:
        return self._update(accepted=False, reason=reason)

    def clamp_tick(self, tick: Tick) -> CandleUpdate:
        """Fold a late tick's price and volume into the live candle."""
        if self._live is None:
            # bucket already confirmed; no live candle to clamp into
            return self.reject_tick(f"No live {self._timeframe} candle to clamp a late tick into")
        self._fold(self._live, tick)
        return self._update()

    def process_tick(self, tick: Tick) -> CandleUpdate:
        """Fold one tick into the live candle, finalizing it on a bucket change."""
        ok, message = validate_tick(tick.price, tick.volume, tick.time)
        if not ok:
            logger.warning("[candles] %s dropped malformed tick: %s", self._timeframe, message)
            return self.reject_tick(message)

        late = self.late_reason(tick.time)
        if late is not None:
            if self.late_tick_policy == LATE_TICK_CLAMP and self._live is not None:
                return self.clamp_tick(tick)
            logger.warning("[candles] %s dropped late tick: %s", self._timeframe, late)
            return self.reject_tick(late)

        start = self.bucket_start(tick.time)
        live = self._live

        new_candle_formed = self._last_boundary is not None and start != self._last_boundary
        self._last_boundary = start

        last_confirmed = None
        if live is not None and live.time != start:
            last_confirmed = self._finalize_live()
            live = None

        if live is None:
            self._live = Candle(
                time=start,
                open=tick.price,
                high=tick.price,
                low=tick.price,
                close=tick.price,
                volume=tick.volume,
                is_live=True,
            )
        else:
            self._fold(live, tick)

        return self._update(new_candle_formed=new_candle_formed, last_confirmed=last_confirmed)

    @staticmethod
    def _fold(live: Candle, tick: Tick) -> None:
        live.high = max(live.high, tick.price)
        live.low = min(live.low, tick.price)
        live.close = tick.price
        live.volume += tick.volume

    def initialize_history(self, candles: Iterable[Candle]) -> None:
        """Seed confirmed candles from historical data, replacing current state."""
        seeded = []
        for candle in sorted(candles, key=lambda c: c.time):
            confirmed = candle.copy(is_live=False)
            check_candle(confirmed, self.bucket_seconds)
            seeded.append(confirmed)
        self._confirmed = seeded[-self.max_history:] if self.max_history else seeded
        self._live = None
        if self._confirmed:
            last = self._confirmed[-1]
            self.last_candle_close_time = last.time + self.bucket_seconds
            self._last_boundary = last.time
        else:
            self.last_candle_close_time = None
            self._last_boundary = None
        logger.info("[candles] %s seeded with %d candles", self._timeframe, len(self._confirmed))

    def get_confirmed_candles(self) -> List[Candle]:
        return [c.copy() for c in self._confirmed]

    def get_live_candle(self) -> Optional[Candle]:
        return self._live.copy() if self._live is not None else None

    def get_all_candles(self) -> List[Candle]:
        """Confirmed candles followed by the live candle, for charting."""
        candles = self.get_confirmed_candles()
        if self._live is not None:
            candles.append(self._live.copy())
        return candles

    def get_last_confirmed_candle(self) -> Optional[Candle]:
        return self._confirmed[-1].copy() if self._confirmed else None

    def is_current_candle_confirmed(self) -> bool:
        return self._live is None


class MultiTimeframeAggregator:
    """
    One CandleAggregator per timeframe, fed from a single tick stream.

    Malformed and late ticks are judged once, against the finest timeframe,
    so every timeframe either takes a tick or drops it.
    """

    def __init__(
        self,
        timeframes: Sequence[str] = TIMEFRAMES,
        max_history: int = 2000,
        late_tick_policy: str = LATE_TICK_DROP,
    ):
        self.late_tick_policy = late_tick_policy
        self.aggregators: Dict[str, CandleAggregator] = {
            tf: CandleAggregator(tf, max_history=max_history, late_tick_policy=late_tick_policy)
            for tf in timeframes
        }

    def __getitem__(self, timeframe: str) -> CandleAggregator:
        return self.aggregators[timeframe]

    @property
    def finest(self) -> CandleAggregator:
        return min(self.aggregators.values(), key=lambda agg: agg.bucket_seconds)

    def process_tick(self, tick: Tick) -> Dict[str, CandleUpdate]:
        ok, message = validate_tick(tick.price, tick.volume, tick.time)
        if not ok:
            logger.warning("[candles] dropped malformed tick: %s", message)
            return {tf: agg.reject_tick(message) for tf, agg in self.aggregators.items()}

        finest = self.finest
        late = finest.late_reason(tick.time)
        if late is not None:
            if self.late_tick_policy == LATE_TICK_CLAMP and not finest.is_current_candle_confirmed():
                return {tf: agg.clamp_tick(tick) for tf, agg in self.aggregators.items()}
            logger.warning("[candles] dropped late tick on every timeframe: %s", late)
            return {tf: agg.reject_tick(late) for tf, agg in self.aggregators.items()}

        return {tf: agg.process_tick(tick) for tf, agg in self.aggregators.items()}

    def initialize_history(self, timeframe: str, candles: Iterable[Candle]) -> None:
        self.aggregators[timeframe].initialize_history(candles)

    def snapshot(self, include_live: bool = False) -> Dict[str, List[Candle]]:
        """
        Copy-on-read view of every timeframe. Analysis reads these copies,
        never the aggregator's own lists.
        """
        if include_live:
            return {tf: agg.get_all_candles() for tf, agg in self.aggregators.items()}
        return {tf: agg.get_confirmed_candles() for tf, agg in self.aggregators.items()}


class CumulativeVolumeNormalizer:
    """
    Converts a cumulative-for-the-day volume counter into per-tick deltas.

    The first observation yields 0. A counter that goes backwards (new
    session) restarts the baseline and yields the raw value.
    """

    def __init__(self):
        self._last: Optional[float] = None

    def reset(self) -> None:
        self._last = None

    def delta(self, cumulative_volume: float) -> float:
        if cumulative_volume is None or cumulative_volume < 0:
            return 0
        previous = self._last
        self._last = cumulative_volume
        if previous is None:
            return 0
        if cumulative_volume < previous:
            return cumulative_volume
        return cumulative_volume - previous

    def normalize(self, tick: Tick) -> Tick:
        return Tick(price=tick.price, volume=self.delta(tick.volume), time=tick.time)
