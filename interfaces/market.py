from __future__ import annotations
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from marketpulse.models import (
    CandleUpdate,
    CloseReason,
    Direction,
    FeedState,
    Level,
    MACDBias,
    Outcome,
    RSIZone,
    SignalStrength,
    SignalType,
    Strategy,
    Trend,
)


class WireModel(BaseModel):
    """Schémas exposés aux consommateurs externes : camelCase sur le fil."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class CandleOut(WireModel):
    time: int; open: float; high: float; low: float; close: float; volume: float


class CandleEvent(WireModel):
    symbol: str
    candle: CandleOut
    is_final: bool

    @classmethod
    def from_update(cls, update: CandleUpdate) -> "CandleEvent":
        return cls(symbol=update.symbol, candle=CandleOut.model_validate(update.candle), is_final=update.is_final)


class RegimeOut(WireModel):
    trend: Trend; volatility: Level; volume: Level; confidence: float
    slope: float = 0.0
    r2: float = 0.0
    volatility_value: float = 0.0
    volume_ratio: float = 1.0


class IndicatorsOut(WireModel):
    rsi: float; rsi_zone: RSIZone
    macd_line: float; macd_signal: float; macd_histogram: float; macd_bias: MACDBias
    bb_upper: float; bb_middle: float; bb_lower: float


class SignalOut(WireModel):
    id: str
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
    regime: RegimeOut
    reasons: List[str] = []
    score: float = 0.0
    indicators: Optional[IndicatorsOut] = None
    patterns: List[str] = []
    tags: List[str] = []


class StatsOut(WireModel):
    total_signals: int; successful_signals: int; active_signals: int
    win_rate: float; avg_confidence: float; profitability: float


class SignalFeedOut(WireModel):
    signals: List[SignalOut]
    stats: StatsOut


class PatternOut(WireModel):
    time: int; label: str; direction: Direction; confidence: int
    description: str = ""


class MarketViewOut(WireModel):
    symbol: str
    price: float
    candles: int
    indicators: IndicatorsOut
    regime: RegimeOut
    support: List[float] = []
    resistance: List[float] = []


class StrategyMetricsOut(WireModel):
    strategy: Strategy
    total_signals: int; win_rate: float; avg_pnl: float
    sharpe_ratio: float; max_drawdown: float; last_updated: float


class CloseSignalRequest(WireModel):
    exit_price: float = Field(gt=0)


class OutcomeOut(WireModel):
    signal_id: str; symbol: str; strategy: Strategy; type: SignalType
    entry_price: float; exit_price: float; profit_loss: float
    outcome: Outcome; reason: CloseReason
    target_hit: bool; stop_hit: bool
    duration: float; closed_at: float


class HealthOut(WireModel):
    status: str
    feeds: Dict[str, FeedState]
