from dataclasses import dataclass
from typing import Callable, Dict, List, Sequence

from marketpulse.indicators import vwap
from marketpulse.models import (
    BollingerSample,
    Level,
    MACDSample,
    MarketRegime,
    Strategy,
    SupportResistance,
    Trend,
)


@dataclass(frozen=True)
class MarketContext:
    """Vue figée des indicateurs sur laquelle les stratégies calculent leur score."""
    price: float
    rsi: float
    macd: MACDSample
    bands: BollingerSample
    levels: SupportResistance
    closes: Sequence[float]
    volumes: Sequence[float]


def select_strategy(regime: MarketRegime) -> Strategy:
    if regime.trend == Trend.BULLISH and regime.volatility == Level.MEDIUM:
        return Strategy.MOMENTUM
    if regime.trend == Trend.SIDEWAYS and regime.volatility == Level.LOW:
        return Strategy.MEAN_REVERSION
    if regime.volume == Level.HIGH and regime.volatility == Level.HIGH:
        return Strategy.BREAKOUT
    return Strategy.VOLUME_PROFILE


def momentum_score(ctx: MarketContext) -> float:
    score = 0.0
    # Momentum RSI
    if 50 < ctx.rsi < 70:
        score += 0.3
    elif 30 < ctx.rsi < 50:
        score -= 0.3
    # Croisement MACD
    if ctx.macd.histogram > 0 and ctx.macd.line > ctx.macd.signal:
        score += 0.4
    elif ctx.macd.histogram < 0 and ctx.macd.line < ctx.macd.signal:
        score -= 0.4
    # Position dans les bandes de Bollinger
    if ctx.bands.middle < ctx.price < ctx.bands.upper:
        score += 0.3
    elif ctx.bands.lower < ctx.price < ctx.bands.middle:
        score -= 0.3
    return score


def mean_reversion_score(ctx: MarketContext) -> float:
    score = 0.0
    if ctx.rsi < 30:
        score += 0.6
    elif ctx.rsi > 70:
        score -= 0.6
    if ctx.price < ctx.bands.lower:
        score += 0.4
    elif ctx.price > ctx.bands.upper:
        score -= 0.4
    return score


def volume_ratio(volumes: Sequence[float], window: int) -> float:
    """Dernier volume rapporté à la moyenne des `window` derniers (1.0 si indéfini)."""
    recent = list(volumes[-window:])
    if not recent:
        return 1.0
    avg = sum(recent) / len(recent)
    return recent[-1] / avg if avg > 0 else 1.0


def breakout_score(ctx: MarketContext) -> float:
    score = 0.0
    ratio = volume_ratio(ctx.volumes, 10)
    if ctx.price > ctx.bands.upper and ratio > 1.5:
        score += 0.7
    elif ctx.price < ctx.bands.lower and ratio > 1.5:
        score -= 0.7
    if ctx.levels.resistance and ctx.price > ctx.levels.resistance[0] and ratio > 1.3:
        score += 0.3
    if ctx.levels.support and ctx.price < ctx.levels.support[0] and ratio > 1.3:
        score -= 0.3
    return score


def vwap_deviation(ctx: MarketContext, window: int = 20) -> float:
    reference = vwap(ctx.closes, ctx.volumes, window)
    return (ctx.price - reference) / reference if reference else 0.0


def volume_profile_score(ctx: MarketContext) -> float:
    deviation = vwap_deviation(ctx)
    if deviation > 0.01:
        return 0.4
    if deviation < -0.01:
        return -0.4
    return 0.0


SCORERS: Dict[Strategy, Callable[[MarketContext], float]] = {
    Strategy.MOMENTUM: momentum_score,
    Strategy.MEAN_REVERSION: mean_reversion_score,
    Strategy.BREAKOUT: breakout_score,
    Strategy.VOLUME_PROFILE: volume_profile_score,
}


def score(strategy: Strategy, ctx: MarketContext) -> float:
    return SCORERS[strategy](ctx)


def reasons(strategy: Strategy, strategy_score: float, regime: MarketRegime, ctx: MarketContext) -> List[str]:
    """Justifications lisibles accompagnant un signal."""
    out: List[str] = []
    if strategy == Strategy.MOMENTUM:
        out.append(f"🚀 Momentum : tendance {regime.trend.value}, force du signal {abs(strategy_score) * 100:.0f}%")
        if ctx.macd.histogram > 0:
            out.append("📈 Histogramme MACD positif : momentum haussier en construction")
        elif ctx.macd.histogram < 0:
            out.append("📉 Histogramme MACD négatif : momentum baissier en construction")
        if 50 < ctx.rsi < 70:
            out.append(f"⚡ RSI en zone haussière ({ctx.rsi:.1f}) sans sur-extension")
    elif strategy == Strategy.MEAN_REVERSION:
        out.append(f"🔄 Retour à la moyenne : volatilité {regime.volatility.value}, prix en extrême")
        if ctx.rsi < 30:
            out.append(f"📉 RSI survendu ({ctx.rsi:.1f}) : rebond probable")
        elif ctx.rsi > 70:
            out.append(f"📈 RSI suracheté ({ctx.rsi:.1f}) : correction probable")
        if ctx.price < ctx.bands.lower:
            out.append("🎯 Prix sous la bande de Bollinger basse")
        elif ctx.price > ctx.bands.upper:
            out.append("🎯 Prix au-dessus de la bande de Bollinger haute")
    elif strategy == Strategy.BREAKOUT:
        out.append(f"💥 Cassure : volume {regime.volume.value} (x{volume_ratio(ctx.volumes, 10):.2f}) confirmant le mouvement")
        out.append(f"🌊 Pic de volatilité ({regime.volatility.value})")
    else:
        out.append(f"📊 Profil de volume : écart au VWAP de {vwap_deviation(ctx) * 100:+.2f}%")
    return out
