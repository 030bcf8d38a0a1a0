import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple


class SignalType(str, Enum):
    BUY = "buy"
    SELL = "sell"


class SignalStrength(str, Enum):
    WEAK = "weak"
    MEDIUM = "medium"
    STRONG = "strong"
    VERY_STRONG = "very_strong"


class Direction(str, Enum):
    BULLISH = "bullish"
    BEARISH = "bearish"


class Trend(str, Enum):
    BULLISH = "bullish"
    BEARISH = "bearish"
    SIDEWAYS = "sideways"


class Level(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class RSIZone(str, Enum):
    OVERSOLD = "oversold"
    OVERBOUGHT = "overbought"
    NEUTRAL = "neutral"


class MACDBias(str, Enum):
    BULLISH = "bullish"
    BEARISH = "bearish"
    NEUTRAL = "neutral"


class Strategy(str, Enum):
    MOMENTUM = "momentum"
    MEAN_REVERSION = "mean_reversion"
    BREAKOUT = "breakout"
    VOLUME_PROFILE = "volume_profile"


class Outcome(str, Enum):
    WIN = "win"
    LOSS = "loss"


class CloseReason(str, Enum):
    TARGET = "target"
    STOP = "stop"
    EXPIRY = "expiry"
    MANUAL = "manual"


class HistoryPeriod(str, Enum):
    ONE_MONTH = "1M"
    SIX_MONTHS = "6M"
    ONE_YEAR = "1Y"
    ALL = "ALL"


class FeedState(str, Enum):
    CONNECTING = "connecting"
    LIVE = "live"
    BACKOFF = "backoff"
    SYNTHETIC = "synthetic"
    STOPPED = "stopped"


@dataclass(frozen=True)
class Tick:
    """Un prix observé sur le flux amont (éphémère, jamais stocké)."""
    symbol: str
    timestamp: float  # secondes epoch
    price: float
    size: float = 0.0


@dataclass(frozen=True)
class Candle:
    """Représente une bougie OHLCV agrégée."""
    symbol: str
    time: int  # Début du bucket en secondes, aligné sur l'intervalle
    open: float
    high: float
    low: float
    close: float
    volume: float


@dataclass(frozen=True)
class CandleUpdate:
    symbol: str
    candle: Candle
    is_final: bool


@dataclass(frozen=True)
class IndicatorSample:
    time: int
    value: float


@dataclass(frozen=True)
class MACDSample:
    time: int
    line: float
    signal: float
    histogram: float


@dataclass(frozen=True)
class BollingerSample:
    time: int
    upper: float
    middle: float
    lower: float


@dataclass(frozen=True)
class PatternMatch:
    time: int
    label: str
    direction: Direction
    confidence: int  # 0-100
    description: str = ""


@dataclass(frozen=True)
class SupportResistance:
    support: Tuple[float, ...] = ()
    resistance: Tuple[float, ...] = ()


@dataclass(frozen=True)
class MarketRegime:
    trend: Trend
    volatility: Level
    volume: Level
    confidence: float  # 0-1
    slope: float = 0.0
    r2: float = 0.0
    volatility_value: float = 0.0
    volume_ratio: float = 1.0


@dataclass(frozen=True)
class IndicatorSnapshot:
    """Valeurs d'indicateurs figées au moment de l'émission d'un signal."""
    rsi: float
    rsi_zone: RSIZone
    macd_line: float
    macd_signal: float
    macd_histogram: float
    macd_bias: MACDBias
    bb_upper: float
    bb_middle: float
    bb_lower: float


@dataclass(frozen=True)
class TradingSignal:
    """Signal de trading directionnel avec paramètres de risque."""
    symbol: str
    type: SignalType
    strength: SignalStrength
    confidence: int
    price: float
    stop_loss: float
    take_profit: float
    risk_reward: float
    timestamp: float
    expires_at: float
    strategy: Strategy
    regime: MarketRegime
    reasons: Tuple[str, ...] = ()
    score: float = 0.0
    indicators: Optional[IndicatorSnapshot] = None
    patterns: Tuple[str, ...] = ()
    tags: Tuple[str, ...] = ()
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


@dataclass(frozen=True)
class StrategyMetrics:
    strategy: Strategy
    total_signals: int = 0
    win_rate: float = 0.5
    avg_pnl: float = 0.0
    sharpe_ratio: float = 1.0
    max_drawdown: float = 0.0
    last_updated: float = 0.0


@dataclass(frozen=True)
class SignalOutcome:
    signal_id: str
    symbol: str
    strategy: Strategy
    type: SignalType
    entry_price: float
    exit_price: float
    profit_loss: float
    outcome: Outcome
    reason: CloseReason
    target_hit: bool
    stop_hit: bool
    duration: float
    closed_at: float


@dataclass(frozen=True)
class SignalStats:
    total_signals: int
    successful_signals: int
    active_signals: int
    win_rate: float
    avg_confidence: float
    profitability: float


@dataclass(frozen=True)
class SignalFeed:
    signals: List[TradingSignal]
    stats: SignalStats


def neutral_metrics(strategy: Strategy) -> StrategyMetrics:
    """Priors neutres pour une stratégie sans historique clôturé."""
    return StrategyMetrics(strategy=strategy)
