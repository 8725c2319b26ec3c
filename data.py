# data.py
"""
Data access layer for the Crude SMC paper trader.

- CSV candle / tick history via pandas (backfill and replay)
- candle -> tick expansion for replaying candle files through the pipeline
- deterministic synthetic MCX crude data for demos and tests

Candles are returned as candles.Candle objects, oldest first.
"""

import logging
import random
from typing import List, Optional, Sequence

import pandas as pd

from candles import Candle, Tick, timeframe_seconds


logger = logging.getLogger(__name__)

TIME_COLUMNS = ("time", "timestamp", "date", "datetime")
PRICE_COLUMNS = ("open", "high", "low", "close")


def _find_time_column(df: pd.DataFrame) -> str:
    for col in TIME_COLUMNS:
        if col in df.columns:
            return col
    raise ValueError(f"CSV needs one of the time columns {TIME_COLUMNS}, found {list(df.columns)}")


def _to_epoch_seconds(series: pd.Series) -> pd.Series:
    """Epoch seconds from numeric epochs (s or ms) or parseable datetimes (naive = UTC)."""
    if pd.api.types.is_numeric_dtype(series):
        values = series.astype("int64")
        if len(values) and values.abs().max() > 10 ** 11:
            values = values // 1000
        return values
    parsed = pd.to_datetime(series, utc=True)
    return (parsed - pd.Timestamp(0, tz="UTC")) // pd.Timedelta(seconds=1)


def _normalise_columns(df: pd.DataFrame) -> pd.DataFrame:
    df = df.copy()
    df.columns = [str(c).strip().lower() for c in df.columns]
    return df


def load_candles_csv(path: str) -> List[Candle]:
    """
    Load OHLC(V) candles from a CSV file.

    Accepts a time|timestamp|date|datetime column plus open/high/low/close
    and an optional volume column. Rows are sorted by time and duplicate
    timestamps keep the last row.
    """
    df = _normalise_columns(pd.read_csv(path))
    time_col = _find_time_column(df)
    missing = [c for c in PRICE_COLUMNS if c not in df.columns]
    if missing:
        raise ValueError(f"CSV {path} is missing price columns: {missing}")

    df["_epoch"] = _to_epoch_seconds(df[time_col])
    if "volume" not in df.columns:
        df["volume"] = 0
    df = df.dropna(subset=list(PRICE_COLUMNS))
    df = df.sort_values("_epoch", kind="stable").drop_duplicates(subset="_epoch", keep="last")

    candles = [
        Candle(
            time=int(row["_epoch"]),
            open=float(row["open"]),
            high=float(row["high"]),
            low=float(row["low"]),
            close=float(row["close"]),
            volume=float(row["volume"]),
        )
        for _, row in df.iterrows()
    ]
    logger.info("[data] loaded %d candles from %s", len(candles), path)
    return candles


def load_ticks_csv(path: str) -> List[Tick]:
    """
    Load ticks from a CSV file with a time column, a price (or ltp) column
    and an optional volume column. Order is preserved apart from a stable
    sort on time.
    """
    df = _normalise_columns(pd.read_csv(path))
    time_col = _find_time_column(df)
    price_col = "price" if "price" in df.columns else "ltp" if "ltp" in df.columns else None
    if price_col is None:
        raise ValueError(f"CSV {path} needs a price or ltp column")

    df["_epoch"] = _to_epoch_seconds(df[time_col])
    if "volume" not in df.columns:
        df["volume"] = 0
    df = df.sort_values("_epoch", kind="stable")

    ticks = [
        Tick(price=float(row[price_col]), volume=float(row["volume"]), time=int(row["_epoch"]))
        for _, row in df.iterrows()
    ]
    logger.info("[data] loaded %d ticks from %s", len(ticks), path)
    return ticks


def candles_to_ticks(candles: Sequence[Candle], ticks_per_candle: int = 4,
                     timeframe: str = "1m") -> List[Tick]:
    """
    Expand candles into a tick path inside each candle's bucket.

    Bullish bars trade open -> low -> high -> close, bearish bars
    open -> high -> low -> close. Volume is split evenly over the ticks.
    """
    bucket = timeframe_seconds(timeframe)
    points = max(4, ticks_per_candle)
    ticks: List[Tick] = []

    for candle in candles:
        if candle.close >= candle.open:
            path = [candle.open, candle.low, candle.high, candle.close]
        else:
            path = [candle.open, candle.high, candle.low, candle.close]
        while len(path) < points:
            path.insert(-1, candle.close)

        step = max(1, bucket // len(path))
        share = candle.volume / len(path)
        for n, price in enumerate(path):
            offset = min(n * step, bucket - 1)
            ticks.append(Tick(price=price, volume=share, time=candle.time + offset))

    return ticks


def generate_sample_candles(
    num_candles: int,
    timeframe: str = "1m",
    base_price: float = 5200.0,
    seed: Optional[int] = None,
    start_time: int = 1_700_000_000,
) -> List[Candle]:
    """
    Random-walk crude oil candles with a trend bias, volume spikes on large
    moves and the occasional gap. Same seed, same candles.
    """
    rng = random.Random(seed)
    bucket = timeframe_seconds(timeframe)
    start = (start_time // bucket) * bucket
    volatility = 0.0005 if timeframe == "1m" else 0.001 if timeframe == "5m" else 0.002
    trend_bias = 1 if rng.random() > 0.5 else -1

    candles: List[Candle] = []
    price = base_price
    for i in range(num_candles):
        trend_move = trend_bias * rng.random() * volatility * price
        noise = (rng.random() - 0.5) * 2 * volatility * price
        movement = trend_move + noise

        open_price = price
        close = open_price + movement
        spread = abs(movement) * (1 + rng.random())
        high = max(open_price, close) + spread * 0.5
        low = min(open_price, close) - spread * 0.5

        base_volume = 1000 + rng.random() * 2000
        spike = 2 if abs(movement) > price * volatility * 2 else 1

        candles.append(Candle(
            time=start + i * bucket,
            open=round(open_price, 2),
            high=round(high, 2),
            low=round(low, 2),
            close=round(close, 2),
            volume=int(base_volume * spike),
        ))
        price = close

        if rng.random() > 0.95 and i > 10:
            price += price * 0.003 * (1 if rng.random() > 0.5 else -1)

    return candles


def aggregate_candles(candles: Sequence[Candle], ratio: int) -> List[Candle]:
    """Merge every `ratio` consecutive candles into one."""
    merged: List[Candle] = []
    for i in range(0, len(candles), ratio):
        chunk = candles[i:i + ratio]
        if not chunk:
            continue
        merged.append(Candle(
            time=chunk[0].time,
            open=chunk[0].open,
            high=max(c.high for c in chunk),
            low=min(c.low for c in chunk),
            close=chunk[-1].close,
            volume=sum(c.volume for c in chunk),
        ))
    return merged


def inject_fair_value_gap(candles: Sequence[Candle], index: int = 30, size: float = 20.0) -> List[Candle]:
    """
    Return a copy with a bullish impulse at `index` (close = open + size)
    and the next candle opening 15 points above that close.
    """
    out = [c.copy() for c in candles]
    if index + 1 >= len(out):
        raise ValueError(f"Need at least {index + 2} candles to inject a gap at {index}")

    impulse = out[index]
    impulse.close = impulse.open + size
    impulse.high = max(impulse.high, impulse.close + 5)
    impulse.low = min(impulse.low, impulse.open)

    follow = out[index + 1]
    follow.open = impulse.close + 15
    follow.low = min(follow.open - 5, follow.close)
    follow.high = max(follow.high, follow.open, follow.close)
    return out
