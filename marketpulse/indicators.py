"""
Indicateurs techniques (fonctions pures).
Toutes les fonctions tolèrent les historiques courts : valeur neutre ou liste vide, jamais d'exception.
"""
from typing import List, Sequence

import numpy as np
import pandas as pd

from marketpulse.models import (
    BollingerSample,
    Candle,
    IndicatorSample,
    MACDBias,
    MACDSample,
    RSIZone,
    SupportResistance,
)

RSI_NEUTRAL = 50.0


def sma(values: Sequence[float], period: int) -> List[float]:
    """Moyenne mobile simple. Le premier point correspond à l'index period-1."""
    if period <= 0 or len(values) < period:
        return []
    series = pd.Series(values, dtype=float)
    return series.rolling(window=period).mean().iloc[period - 1:].tolist()


def ema(values: Sequence[float], period: int) -> List[float]:
    """
    Moyenne mobile exponentielle, amorcée par la moyenne simple des `period` premières valeurs
    puis lissée avec le multiplicateur 2/(period+1).
    Le premier point correspond à l'index period-1.
    """
    if period <= 0 or len(values) < period:
        return []
    seed = float(np.mean(values[:period]))
    seeded = pd.Series([seed, *values[period:]], dtype=float)
    # adjust=False => y_t = (1-a)*y_{t-1} + a*x_t, avec y_0 = seed
    return seeded.ewm(alpha=2 / (period + 1), adjust=False).mean().tolist()


def _closes(candles: Sequence[Candle]) -> List[float]:
    return [c.close for c in candles]


def _rsi_from_averages(avg_gain: float, avg_loss: float) -> float:
    if avg_loss == 0:
        # Série plate => neutre ; uniquement des hausses => 100
        return RSI_NEUTRAL if avg_gain == 0 else 100.0
    rs = avg_gain / avg_loss
    return 100.0 - 100.0 / (1.0 + rs)


def _rsi_values(closes: Sequence[float], period: int) -> List[float]:
    """RSI de Wilder. Le premier point correspond à l'index `period`."""
    if period <= 0 or len(closes) < period + 1:
        return []
    changes = np.diff(np.asarray(closes, dtype=float))
    gains = np.where(changes > 0, changes, 0.0)
    losses = np.where(changes < 0, -changes, 0.0)

    avg_gain = float(gains[:period].mean())
    avg_loss = float(losses[:period].mean())
    values = [_rsi_from_averages(avg_gain, avg_loss)]

    for i in range(period, len(changes)):
        avg_gain = (avg_gain * (period - 1) + gains[i]) / period
        avg_loss = (avg_loss * (period - 1) + losses[i]) / period
        values.append(_rsi_from_averages(avg_gain, avg_loss))
    return values


def rsi_series(candles: Sequence[Candle], period: int = 14) -> List[IndicatorSample]:
    values = _rsi_values(_closes(candles), period)
    return [IndicatorSample(time=candles[period + i].time, value=v) for i, v in enumerate(values)]


def rsi(closes: Sequence[float], period: int = 14) -> float:
    """Dernière valeur du RSI (50 si l'historique est insuffisant)."""
    values = _rsi_values(closes, period)
    return values[-1] if values else RSI_NEUTRAL


def rsi_zone(value: float) -> RSIZone:
    if value < 30:
        return RSIZone.OVERSOLD
    if value > 70:
        return RSIZone.OVERBOUGHT
    return RSIZone.NEUTRAL


def _macd_values(closes: Sequence[float], fast: int, slow: int, signal: int):
    """Retourne (lignes, signaux) alignés sur la fin de la série, ou ([], []) si insuffisant."""
    if len(closes) < slow + signal or fast >= slow:
        return [], []
    fast_ema = ema(closes, fast)
    slow_ema = ema(closes, slow)
    offset = slow - fast
    line = [fast_ema[i + offset] - s for i, s in enumerate(slow_ema)]
    signal_line = ema(line, signal)
    return line[signal - 1:], signal_line


def macd_series(candles: Sequence[Candle], fast: int = 12, slow: int = 26, signal: int = 9) -> List[MACDSample]:
    lines, signals = _macd_values(_closes(candles), fast, slow, signal)
    start = slow + signal - 2
    samples = []
    for i, (line, sig) in enumerate(zip(lines, signals)):
        samples.append(MACDSample(time=candles[start + i].time, line=line, signal=sig, histogram=line - sig))
    return samples


def macd(closes: Sequence[float], fast: int = 12, slow: int = 26, signal: int = 9) -> MACDSample:
    """
    Dernier point MACD. `time` porte l'index de la dernière clôture.
    Neutre (0/0/0) si l'historique est insuffisant.
    """
    lines, signals = _macd_values(closes, fast, slow, signal)
    if not lines:
        return MACDSample(time=max(len(closes) - 1, 0), line=0.0, signal=0.0, histogram=0.0)
    line, sig = lines[-1], signals[-1]
    return MACDSample(time=len(closes) - 1, line=line, signal=sig, histogram=line - sig)


def macd_bias(sample: MACDSample) -> MACDBias:
    if sample.histogram > 0 and sample.line > sample.signal:
        return MACDBias.BULLISH
    if sample.histogram < 0 and sample.line < sample.signal:
        return MACDBias.BEARISH
    return MACDBias.NEUTRAL


def _bands(closes: Sequence[float], period: int, k: float):
    series = pd.Series(closes, dtype=float)
    middle = series.rolling(window=period).mean()
    # Écart-type de population (ddof=0)
    std = series.rolling(window=period).std(ddof=0)
    return middle + k * std, middle, middle - k * std


def bollinger_series(candles: Sequence[Candle], period: int = 20, k: float = 2.0) -> List[BollingerSample]:
    if period <= 0 or len(candles) < period:
        return []
    upper, middle, lower = _bands(_closes(candles), period, k)
    return [
        BollingerSample(time=candles[i].time, upper=float(upper[i]), middle=float(middle[i]), lower=float(lower[i]))
        for i in range(period - 1, len(candles))
    ]


def bollinger(closes: Sequence[float], period: int = 20, k: float = 2.0) -> BollingerSample:
    """Dernières bandes. Se réduisent à la dernière clôture si l'historique est trop court."""
    index = max(len(closes) - 1, 0)
    if period <= 0 or len(closes) < period:
        last = float(closes[-1]) if len(closes) else 0.0
        return BollingerSample(time=index, upper=last, middle=last, lower=last)
    window = np.asarray(closes[-period:], dtype=float)
    middle = float(window.mean())
    std = float(window.std())
    return BollingerSample(time=index, upper=middle + k * std, middle=middle, lower=middle - k * std)


def vwap(closes: Sequence[float], volumes: Sequence[float], window: int = 20) -> float:
    """VWAP sur les `window` dernières bougies (moyenne simple si le volume est nul)."""
    n = min(len(closes), len(volumes), window)
    if n == 0:
        return 0.0
    prices = np.asarray(closes[-n:], dtype=float)
    vols = np.asarray(volumes[-n:], dtype=float)
    total = vols.sum()
    if total <= 0:
        return float(prices.mean())
    return float((prices * vols).sum() / total)


def returns(values: Sequence[float]) -> List[float]:
    """Rendements simples (p_i - p_{i-1}) / p_{i-1}, en ignorant les prix nuls."""
    return [(values[i] - values[i - 1]) / values[i - 1] for i in range(1, len(values)) if values[i - 1] != 0]


def volatility(rets: Sequence[float]) -> float:
    """Écart-type de population des rendements (0 pour une entrée vide)."""
    if len(rets) == 0:
        return 0.0
    return float(np.std(np.asarray(rets, dtype=float)))


def support_resistance(highs: Sequence[float], lows: Sequence[float], lookback: int = 10) -> SupportResistance:
    """
    Supports = minima locaux des plus bas, résistances = maxima locaux des plus hauts,
    sur une fenêtre de ±lookback. On garde les trois plus récents :
    supports triés par ordre décroissant, résistances par ordre croissant.
    """
    supports: List[float] = []
    resistances: List[float] = []

    for i in range(lookback, len(lows) - lookback):
        window = lows[i - lookback:i + lookback + 1]
        if lows[i] <= min(window):
            supports.append(float(lows[i]))

    for i in range(lookback, len(highs) - lookback):
        window = highs[i - lookback:i + lookback + 1]
        if highs[i] >= max(window):
            resistances.append(float(highs[i]))

    return SupportResistance(
        support=tuple(sorted(supports[-3:], reverse=True)),
        resistance=tuple(sorted(resistances[-3:])),
    )
