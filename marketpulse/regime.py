from dataclasses import dataclass
from typing import Sequence

import numpy as np

from marketpulse.indicators import returns, volatility
from marketpulse.models import Candle, Level, MarketRegime, Trend


@dataclass(frozen=True)
class TrendFit:
    slope: float
    intercept: float
    r2: float


@dataclass(frozen=True)
class RegimeThresholds:
    trend_window: int = 50
    volatility_window: int = 20
    volume_window: int = 20
    # Pente relative (par bougie) au-delà de laquelle on parle de tendance
    trend_epsilon: float = 0.001
    volatility_high: float = 0.03
    volatility_medium: float = 0.015
    volume_high: float = 1.5
    volume_medium: float = 0.8
    volume_boost_ratio: float = 1.2
    max_confidence: float = 0.95


NEUTRAL_REGIME = MarketRegime(trend=Trend.SIDEWAYS, volatility=Level.LOW, volume=Level.MEDIUM, confidence=0.5)


def linear_trend(values: Sequence[float]) -> TrendFit:
    """Régression linéaire (moindres carrés) des valeurs contre leur index."""
    n = len(values)
    if n < 2:
        return TrendFit(0.0, float(values[0]) if n else 0.0, 0.0)
    y = np.asarray(values, dtype=float)
    x = np.arange(n, dtype=float)
    slope, intercept = np.polyfit(x, y, 1)

    ss_tot = float(((y - y.mean()) ** 2).sum())
    if ss_tot == 0:
        # Série plate : l'ajustement est parfait
        return TrendFit(0.0, float(intercept), 1.0)
    ss_res = float(((y - (slope * x + intercept)) ** 2).sum())
    return TrendFit(float(slope), float(intercept), 1.0 - ss_res / ss_tot)


def classify_regime(candles: Sequence[Candle], thresholds: RegimeThresholds = RegimeThresholds()) -> MarketRegime:
    """
    Classe le régime de marché courant :
    - tendance : pente OLS sur les 50 dernières clôtures, normalisée par le dernier prix ;
    - volatilité : écart-type des 20 derniers rendements simples ;
    - volume : dernier volume / moyenne des 20 derniers.
    """
    if len(candles) < 2:
        return NEUTRAL_REGIME
    t = thresholds

    closes = [c.close for c in candles]
    volumes = [c.volume for c in candles]

    fit = linear_trend(closes[-t.trend_window:])
    last_price = closes[-1]
    rel_slope = fit.slope / last_price if last_price else 0.0
    if rel_slope > t.trend_epsilon:
        trend = Trend.BULLISH
    elif rel_slope < -t.trend_epsilon:
        trend = Trend.BEARISH
    else:
        trend = Trend.SIDEWAYS

    vol = volatility(returns(closes)[-t.volatility_window:])
    if vol > t.volatility_high:
        vol_level = Level.HIGH
    elif vol > t.volatility_medium:
        vol_level = Level.MEDIUM
    else:
        vol_level = Level.LOW

    recent_volumes = volumes[-t.volume_window:]
    avg_volume = sum(recent_volumes) / len(recent_volumes)
    volume_ratio = volumes[-1] / avg_volume if avg_volume > 0 else 1.0
    if volume_ratio > t.volume_high:
        volume_level = Level.HIGH
    elif volume_ratio > t.volume_medium:
        volume_level = Level.MEDIUM
    else:
        volume_level = Level.LOW

    strength = min(abs(rel_slope) / t.trend_epsilon, 1.0)
    confidence = 0.5 + 0.25 * strength + (0.2 if volume_ratio > t.volume_boost_ratio else 0.0)

    return MarketRegime(
        trend=trend,
        volatility=vol_level,
        volume=volume_level,
        confidence=min(t.max_confidence, confidence),
        slope=rel_slope,
        r2=fit.r2,
        volatility_value=vol,
        volume_ratio=volume_ratio,
    )
