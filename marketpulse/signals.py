import logging
import math
import time
from dataclasses import dataclass
from typing import Optional, Sequence

from marketpulse import indicators
from marketpulse.book import SignalBook
from marketpulse.config import Settings
from marketpulse.models import (
    Candle,
    IndicatorSnapshot,
    MarketRegime,
    SignalStrength,
    SignalType,
    StrategyMetrics,
    TradingSignal,
)
from marketpulse.patterns import detect_recent
from marketpulse.performance import PerformanceTracker
from marketpulse.regime import classify_regime
from marketpulse.strategies import MarketContext, reasons, score, select_strategy

logger = logging.getLogger("SignalGenerator")

MIN_STOP_DISTANCE = 0.02
REWARD_RISK = 2.0
RISK_WINDOW = 20
PATTERN_BARS = 3


@dataclass(frozen=True)
class RiskLevels:
    stop_loss: float
    take_profit: float
    stop_distance: float
    target_distance: float

    @property
    def risk_reward(self) -> float:
        return round(self.target_distance / self.stop_distance, 1)


def strength_for(value: float) -> SignalStrength:
    magnitude = abs(value)
    if magnitude < 0.4:
        return SignalStrength.WEAK
    if magnitude < 0.6:
        return SignalStrength.MEDIUM
    if magnitude < 0.8:
        return SignalStrength.STRONG
    return SignalStrength.VERY_STRONG


def compute_confidence(metrics: StrategyMetrics, value: float, regime: MarketRegime, settings: Settings) -> int:
    """
    Confiance = historique de la stratégie (win rate, sharpe) + force du signal + clarté du régime,
    bornée à [CONFIDENCE_MIN, CONFIDENCE_MAX].
    """
    raw = (
        metrics.win_rate * settings.CONFIDENCE_WEIGHT_WIN_RATE
        + abs(value) * settings.CONFIDENCE_WEIGHT_SCORE
        + regime.confidence * settings.CONFIDENCE_WEIGHT_REGIME
        + (metrics.sharpe_ratio / 3) * settings.CONFIDENCE_WEIGHT_SHARPE
    )
    bounded = min(settings.CONFIDENCE_MAX, max(settings.CONFIDENCE_MIN, raw))
    # L'arrondi ne doit pas sortir des bornes configurées
    return min(math.floor(settings.CONFIDENCE_MAX), max(math.ceil(settings.CONFIDENCE_MIN), round(bounded)))


def risk_levels(price: float, signal_type: SignalType, closes: Sequence[float]) -> RiskLevels:
    """Stop = max(2%, 2x volatilité des 20 derniers rendements), objectif = 2x stop."""
    vol = indicators.volatility(indicators.returns(closes[-(RISK_WINDOW + 1):]))
    stop = max(MIN_STOP_DISTANCE, 2 * vol)
    target = stop * REWARD_RISK
    if signal_type == SignalType.BUY:
        return RiskLevels(price * (1 - stop), price * (1 + target), stop, target)
    return RiskLevels(price * (1 + stop), price * (1 - target), stop, target)


class SignalGenerator:
    """
    Générateur multi-stratégies :
    régime -> sélection de stratégie -> score signé -> confiance pondérée par la performance passée.
    Un signal accepté est enregistré dans le SignalBook.
    """

    def __init__(self, settings: Settings, tracker: PerformanceTracker, book: SignalBook):
        self.settings = settings
        self.tracker = tracker
        self.book = book

    def generate(self, symbol: str, candles: Sequence[Candle], now: Optional[float] = None) -> Optional[TradingSignal]:
        now = time.time() if now is None else now
        s = self.settings

        if len(candles) < s.MIN_CANDLES_FOR_SIGNAL:
            logger.debug(f"⏳ {symbol}: historique insuffisant ({len(candles)}/{s.MIN_CANDLES_FOR_SIGNAL} bougies)")
            return None

        if self.book.active_count(symbol, now) >= s.MAX_ACTIVE_SIGNALS_PER_SYMBOL:
            logger.debug(f"🛡️ {symbol}: plafond de signaux actifs atteint")
            return None

        closes = [c.close for c in candles]
        volumes = [c.volume for c in candles]
        price = closes[-1]
        if price <= 0:
            logger.warning(f"⚠️ {symbol}: prix invalide ({price}), génération ignorée")
            return None

        regime = classify_regime(candles)
        rsi_value = indicators.rsi(closes)
        macd_sample = indicators.macd(closes)
        bands = indicators.bollinger(closes)
        levels = indicators.support_resistance([c.high for c in candles], [c.low for c in candles])

        ctx = MarketContext(
            price=price,
            rsi=rsi_value,
            macd=macd_sample,
            bands=bands,
            levels=levels,
            closes=closes,
            volumes=volumes,
        )
        strategy = select_strategy(regime)
        value = score(strategy, ctx)
        if abs(value) < s.SIGNAL_SCORE_THRESHOLD:
            logger.debug(f"💤 {symbol}: score {strategy.value} trop faible ({value:+.2f})")
            return None

        signal_type = SignalType.BUY if value > 0 else SignalType.SELL
        metrics = self.tracker.metrics_for(strategy)
        confidence = compute_confidence(metrics, value, regime, s)
        risk = risk_levels(price, signal_type, closes)

        patterns = detect_recent(candles, PATTERN_BARS)
        why = reasons(strategy, value, regime, ctx)
        why.extend(f"🕯️ {p.label} ({p.direction.value}, {p.confidence}%)" for p in patterns)

        signal = TradingSignal(
            symbol=symbol,
            type=signal_type,
            strength=strength_for(value),
            confidence=confidence,
            price=price,
            stop_loss=risk.stop_loss,
            take_profit=risk.take_profit,
            risk_reward=risk.risk_reward,
            timestamp=now,
            expires_at=now + s.SIGNAL_TTL_S,
            strategy=strategy,
            regime=regime,
            reasons=tuple(why),
            score=value,
            indicators=IndicatorSnapshot(
                rsi=rsi_value,
                rsi_zone=indicators.rsi_zone(rsi_value),
                macd_line=macd_sample.line,
                macd_signal=macd_sample.signal,
                macd_histogram=macd_sample.histogram,
                macd_bias=indicators.macd_bias(macd_sample),
                bb_upper=bands.upper,
                bb_middle=bands.middle,
                bb_lower=bands.lower,
            ),
            patterns=tuple(p.label for p in patterns),
            tags=(strategy.value, regime.trend.value, f"{regime.volatility.value}_vol"),
        )
        self.book.add(signal)
        return signal
