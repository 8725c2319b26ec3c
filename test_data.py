"""
Data layer tests: CSV loading, candle -> tick expansion, synthetic data,
and the numeric helpers the analyzers share.
"""

import pytest

from candles import Candle, CandleAggregator
from data import (
    aggregate_candles,
    candles_to_ticks,
    generate_sample_candles,
    inject_fair_value_gap,
    load_candles_csv,
    load_ticks_csv,
)
from indicators import atr, average_volume, round_to_bucket, true_ranges
from patterns import BULLISH, detect_fair_value_gaps
from price_validation import validate_candle, validate_tick


def write_csv(tmp_path, name, text):
    path = tmp_path / name
    path.write_text(text)
    return str(path)


def test_load_candles_sorts_and_dedupes(tmp_path):
    path = write_csv(tmp_path, "c.csv", (
        "Timestamp,Open,High,Low,Close,Volume\n"
        "120,5001,5003,5000,5002,10\n"
        "60,5000,5002,4999,5001,12\n"
        "120,5001,5004,5000,5003,11\n"
    ))
    candles = load_candles_csv(path)
    assert [c.time for c in candles] == [60, 120]
    assert candles[1].close == 5003.0
    assert candles[0].volume == 12.0


def test_load_candles_parses_datetimes_and_millis(tmp_path):
    path = write_csv(tmp_path, "d.csv", (
        "datetime,open,high,low,close\n"
        "2023-11-14 22:13:00,5000,5001,4999,5000\n"
    ))
    assert load_candles_csv(path)[0].time == 1_699_999_980
    assert load_candles_csv(path)[0].volume == 0.0

    path = write_csv(tmp_path, "ms.csv", "time,open,high,low,close\n1699999980000,1,2,0.5,1.5\n")
    assert load_candles_csv(path)[0].time == 1_699_999_980


def test_load_candles_missing_columns(tmp_path):
    path = write_csv(tmp_path, "bad.csv", "time,open,close\n60,1,2\n")
    with pytest.raises(ValueError, match="missing price columns"):
        load_candles_csv(path)
    path = write_csv(tmp_path, "notime.csv", "open,high,low,close\n1,2,0.5,1.5\n")
    with pytest.raises(ValueError):
        load_candles_csv(path)


def test_load_ticks(tmp_path):
    path = write_csv(tmp_path, "t.csv", "time,ltp,volume\n70,5001,2\n60,5000,1\n")
    ticks = load_ticks_csv(path)
    assert [(t.time, t.price, t.volume) for t in ticks] == [(60, 5000.0, 1.0), (70, 5001.0, 2.0)]
    with pytest.raises(ValueError):
        load_ticks_csv(write_csv(tmp_path, "x.csv", "time,bid\n60,1\n"))


def test_candles_to_ticks_rebuild_the_candles():
    candles = [
        Candle(60, 100.0, 104.0, 99.0, 103.0, 8),
        Candle(120, 103.0, 105.0, 101.0, 102.0, 4),
    ]
    ticks = candles_to_ticks(candles)

    assert [t.price for t in ticks[:4]] == [100.0, 99.0, 104.0, 103.0]
    assert [t.price for t in ticks[4:]] == [103.0, 105.0, 101.0, 102.0]
    assert [t.time for t in ticks[:4]] == [60, 75, 90, 105]

    agg = CandleAggregator("1m")
    for tick in ticks:
        agg.process_tick(tick)
    rebuilt = agg.get_all_candles()
    assert [(c.open, c.high, c.low, c.close, c.volume) for c in rebuilt] == \
        [(c.open, c.high, c.low, c.close, c.volume) for c in candles]


def test_sample_candles_are_deterministic_and_valid():
    a = generate_sample_candles(200, seed=5)
    b = generate_sample_candles(200, seed=5)
    assert [c.to_dict() for c in a] == [c.to_dict() for c in b]
    assert a[0].time % 60 == 0
    for c in a:
        ok, message = validate_candle(c.time, c.open, c.high, c.low, c.close, 60)
        assert ok, message


def test_aggregate_candles():
    minutes = generate_sample_candles(10, seed=1, start_time=0)
    five = aggregate_candles(minutes, 5)
    assert len(five) == 2
    assert five[0].open == minutes[0].open
    assert five[0].close == minutes[4].close
    assert five[0].high == max(c.high for c in minutes[:5])
    assert five[1].volume == sum(c.volume for c in minutes[5:])


def test_injected_gap_is_detected():
    candles = [Candle(i * 300, 5000.0, 5003.0, 4997.0, 5000.0) for i in range(31)]
    candles.append(Candle(31 * 300, 5000.0, 5050.0, 4999.0, 5045.0))
    candles += [Candle(i * 300, 5050.0, 5053.0, 5047.0, 5050.0) for i in range(32, 60)]
    gapped = inject_fair_value_gap(candles, index=30, size=20.0)

    assert candles[30].close == 5000.0, "Input must not be modified"
    assert gapped[30].close == gapped[30].open + 20
    assert gapped[31].open == gapped[30].close + 15
    gaps = [g for g in detect_fair_value_gaps(gapped) if g.type == BULLISH]
    assert any(g.candle_index == 31 for g in gaps)

    with pytest.raises(ValueError):
        inject_fair_value_gap(candles[:10], index=30)


def test_indicators():
    candles = [
        Candle(0, 10.0, 12.0, 9.0, 11.0, 100),
        Candle(60, 11.0, 15.0, 10.0, 14.0, 200),
        Candle(120, 14.0, 14.5, 8.0, 9.0, 300),
    ]
    assert true_ranges(candles) == [5.0, 6.5]
    assert atr(candles) == pytest.approx(5.75)
    assert atr(candles[:1]) is None
    assert average_volume(candles, -5, 10) == 200.0
    assert average_volume(candles, 5, 10) == 0.0
    assert round_to_bucket(5102.5, 5) == 5105.0
    assert round_to_bucket(5102.4, 5) == 5100.0


@pytest.mark.parametrize("price,volume,time,ok", [
    (5000.0, 1, 60, True),
    (0.0, 1, 60, False),
    (float("nan"), 1, 60, False),
    (5000.0, -1, 60, False),
    (5000.0, 1, -1, False),
])
def test_validate_tick(price, volume, time, ok):
    assert validate_tick(price, volume, time)[0] is ok
