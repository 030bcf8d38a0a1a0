import math
import random

import pytest

from marketpulse import indicators
from marketpulse.models import Candle, MACDBias, MACDSample, RSIZone


def make_candles(closes, start=0, interval=60):
    return [Candle("XRPUSD", start + i * interval, c, c, c, c, 1.0) for i, c in enumerate(closes)]


def random_walk(n, seed=7, start=100.0):
    rng = random.Random(seed)
    prices = [start]
    for _ in range(n - 1):
        prices.append(max(0.1, prices[-1] * (1 + rng.uniform(-0.03, 0.03))))
    return prices


def test_sma():
    assert indicators.sma([1, 2, 3, 4, 5], 3) == pytest.approx([2, 3, 4])
    assert indicators.sma([1, 2], 3) == []


def test_ema_is_seeded_with_simple_average():
    # seed = (1+2+3)/3 = 2, multiplicateur 0.5
    assert indicators.ema([1, 2, 3, 4, 5], 3) == pytest.approx([2.0, 3.0, 4.0])
    assert indicators.ema([10, 20, 30], 3) == pytest.approx([20.0])
    assert indicators.ema([1, 2], 3) == []


def test_rsi_neutral_defaults():
    assert indicators.rsi([1.0] * 10) == 50.0  # historique insuffisant
    assert indicators.rsi([2.5] * 40) == 50.0  # série plate
    assert indicators.rsi(list(range(1, 40))) == 100.0


def test_rsi_stays_within_bounds():
    candles = make_candles(random_walk(300))
    series = indicators.rsi_series(candles)
    assert len(series) == len(candles) - 14
    assert series[0].time == candles[14].time
    assert all(0.0 <= s.value <= 100.0 for s in series)


def test_rsi_zone():
    assert indicators.rsi_zone(20) == RSIZone.OVERSOLD
    assert indicators.rsi_zone(80) == RSIZone.OVERBOUGHT
    assert indicators.rsi_zone(50) == RSIZone.NEUTRAL


def test_macd_histogram_is_line_minus_signal():
    candles = make_candles(random_walk(200, seed=3))
    samples = indicators.macd_series(candles)
    assert samples
    assert samples[0].time == candles[26 + 9 - 2].time
    for s in samples:
        assert s.histogram == s.line - s.signal

    latest = indicators.macd([c.close for c in candles])
    assert latest.line == pytest.approx(samples[-1].line)
    assert latest.signal == pytest.approx(samples[-1].signal)


def test_macd_short_history_is_neutral():
    assert indicators.macd_series(make_candles([1.0] * 34)) == []
    neutral = indicators.macd([1.0] * 10)
    assert (neutral.line, neutral.signal, neutral.histogram) == (0.0, 0.0, 0.0)
    assert indicators.macd_bias(neutral) == MACDBias.NEUTRAL


def test_macd_bias():
    assert indicators.macd_bias(MACDSample(0, 2.0, 1.0, 1.0)) == MACDBias.BULLISH
    assert indicators.macd_bias(MACDSample(0, 1.0, 2.0, -1.0)) == MACDBias.BEARISH


def test_bollinger():
    flat = indicators.bollinger([3.0] * 30)
    assert flat.upper == flat.middle == flat.lower == 3.0

    short = indicators.bollinger([1.0, 2.0])
    assert short.upper == short.middle == short.lower == 2.0

    closes = random_walk(60, seed=11)
    bands = indicators.bollinger(closes)
    window = closes[-20:]
    mean = sum(window) / 20
    std = math.sqrt(sum((x - mean) ** 2 for x in window) / 20)
    assert bands.middle == pytest.approx(mean)
    assert bands.upper == pytest.approx(mean + 2 * std)
    assert bands.lower == pytest.approx(mean - 2 * std)

    series = indicators.bollinger_series(make_candles(closes))
    assert len(series) == 41
    assert series[-1].upper == pytest.approx(bands.upper)


def test_vwap_returns_and_volatility():
    assert indicators.vwap([1.0, 3.0], [1.0, 3.0]) == pytest.approx(2.5)
    assert indicators.vwap([1.0, 3.0], [0.0, 0.0]) == pytest.approx(2.0)
    assert indicators.vwap([], []) == 0.0
    assert indicators.returns([100, 110, 99]) == pytest.approx([0.1, -0.1])
    assert indicators.volatility([]) == 0.0
    assert indicators.volatility([0.01, 0.01, 0.01]) == pytest.approx(0.0)


def test_support_resistance_finds_local_extrema():
    # Creux à 100 et sommet à 120, tous deux à l'index 15
    lows = [100.0 + abs(i - 15) for i in range(31)]
    highs = [120.0 - abs(i - 15) for i in range(31)]

    levels = indicators.support_resistance(highs, lows, lookback=10)
    assert levels.support == (100.0,)
    assert levels.resistance == (120.0,)
    assert list(levels.support) == sorted(levels.support, reverse=True)
    assert list(levels.resistance) == sorted(levels.resistance)
    assert len(levels.support) <= 3 and len(levels.resistance) <= 3


def test_short_histories_never_raise():
    assert indicators.rsi_series([]) == []
    assert indicators.macd_series([]) == []
    assert indicators.bollinger_series([]) == []
    assert indicators.bollinger([]).middle == 0.0
    assert indicators.support_resistance([], []).support == ()
