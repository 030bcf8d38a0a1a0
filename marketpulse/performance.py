import json
import logging
import os
import threading
import time
from dataclasses import asdict
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import numpy as np

from marketpulse.models import (
    CloseReason,
    Outcome,
    SignalOutcome,
    SignalStats,
    SignalType,
    Strategy,
    StrategyMetrics,
    TradingSignal,
    neutral_metrics,
)

logger = logging.getLogger("PerformanceTracker")


def max_drawdown(pnls: Sequence[float]) -> float:
    """Plus forte baisse pic -> creux de la courbe de P&L cumulée."""
    peak = 0.0
    equity = 0.0
    worst = 0.0
    for pnl in pnls:
        equity += pnl
        peak = max(peak, equity)
        worst = max(worst, peak - equity)
    return worst


class PerformanceTracker:
    """
    Suivi des issues des signaux clôturés et des métriques par stratégie.
    Seul mutateur des StrategyMetrics : les mises à jour sont sérialisées par un verrou,
    les lectures renvoient des snapshots immuables.
    """

    def __init__(self, state_path: Optional[str] = None):
        self.state_path = Path(state_path) if state_path else None
        self._outcomes: List[SignalOutcome] = []
        self._metrics: Dict[Strategy, StrategyMetrics] = {}
        self._lock = threading.Lock()
        self._load_state()

    # -------------------- Lecture -------------------- #
    def metrics_for(self, strategy: Strategy) -> StrategyMetrics:
        with self._lock:
            return self._metrics.get(strategy) or neutral_metrics(strategy)

    def all_metrics(self) -> List[StrategyMetrics]:
        return [self.metrics_for(s) for s in Strategy]

    def outcomes(self) -> List[SignalOutcome]:
        with self._lock:
            return list(self._outcomes)

    def stats(self, active_signals: Sequence[TradingSignal]) -> SignalStats:
        with self._lock:
            outcomes = list(self._outcomes)
        total = len(outcomes)
        wins = sum(1 for o in outcomes if o.outcome == Outcome.WIN)
        active = len(active_signals)
        return SignalStats(
            total_signals=total,
            successful_signals=wins,
            active_signals=active,
            win_rate=wins / total if total else 0.0,
            avg_confidence=sum(s.confidence for s in active_signals) / active if active else 0.0,
            profitability=sum(o.profit_loss for o in outcomes) / total if total else 0.0,
        )

    # -------------------- Écriture -------------------- #
    def record_close(
        self,
        signal: TradingSignal,
        exit_price: float,
        reason: Optional[CloseReason] = None,
        closed_at: Optional[float] = None,
    ) -> SignalOutcome:
        closed_at = time.time() if closed_at is None else closed_at

        if signal.type == SignalType.BUY:
            pnl = (exit_price - signal.price) / signal.price
            target_hit = exit_price >= signal.take_profit
            stop_hit = exit_price <= signal.stop_loss
        else:
            pnl = (signal.price - exit_price) / signal.price
            target_hit = exit_price <= signal.take_profit
            stop_hit = exit_price >= signal.stop_loss

        if target_hit:
            outcome = Outcome.WIN
        elif stop_hit:
            outcome = Outcome.LOSS
        else:
            outcome = Outcome.WIN if pnl > 0 else Outcome.LOSS

        if reason is None:
            reason = CloseReason.TARGET if target_hit else CloseReason.STOP if stop_hit else CloseReason.MANUAL

        result = SignalOutcome(
            signal_id=signal.id,
            symbol=signal.symbol,
            strategy=signal.strategy,
            type=signal.type,
            entry_price=signal.price,
            exit_price=exit_price,
            profit_loss=pnl,
            outcome=outcome,
            reason=reason,
            target_hit=target_hit,
            stop_hit=stop_hit,
            duration=max(0.0, closed_at - signal.timestamp),
            closed_at=closed_at,
        )

        with self._lock:
            self._outcomes.append(result)
            self._recompute(signal.strategy, closed_at)
            metrics = self._metrics[signal.strategy]
            self._save_state()

        logger.info(
            f"📊 {signal.strategy.value}: {outcome.value.upper()} {pnl * 100:+.2f}% "
            f"| win rate {metrics.win_rate:.0%} | sharpe {metrics.sharpe_ratio:.2f}"
        )
        return result

    def _recompute(self, strategy: Strategy, now: float):
        pnls = np.asarray([o.profit_loss for o in self._outcomes if o.strategy == strategy], dtype=float)
        if pnls.size == 0:
            self._metrics.pop(strategy, None)
            return
        wins = sum(1 for o in self._outcomes if o.strategy == strategy and o.outcome == Outcome.WIN)
        avg = float(pnls.mean())
        std = float(pnls.std())
        self._metrics[strategy] = StrategyMetrics(
            strategy=strategy,
            total_signals=int(pnls.size),
            win_rate=wins / pnls.size,
            avg_pnl=avg,
            sharpe_ratio=avg / std if std > 0 else 0.0,
            max_drawdown=max_drawdown(pnls.tolist()),
            last_updated=now,
        )

    # -------------------- Persistance -------------------- #
    def _load_state(self):
        if self.state_path is None or not self.state_path.exists():
            return
        try:
            with self.state_path.open("r", encoding="utf-8") as f:
                data = json.load(f)
        except Exception as e:
            logger.warning(f"⚠️ Impossible de charger l'état de performance: {e}")
            return

        if not isinstance(data, dict) or not isinstance(data.get("outcomes", []), list):
            logger.warning(f"⚠️ État de performance illisible ignoré ({self.state_path})")
            return

        for raw in data.get("outcomes", []):
            try:
                self._outcomes.append(SignalOutcome(
                    signal_id=str(raw["signal_id"]),
                    symbol=str(raw["symbol"]),
                    strategy=Strategy(raw["strategy"]),
                    type=SignalType(raw["type"]),
                    entry_price=float(raw["entry_price"]),
                    exit_price=float(raw["exit_price"]),
                    profit_loss=float(raw["profit_loss"]),
                    outcome=Outcome(raw["outcome"]),
                    reason=CloseReason(raw["reason"]),
                    target_hit=bool(raw["target_hit"]),
                    stop_hit=bool(raw["stop_hit"]),
                    duration=float(raw["duration"]),
                    closed_at=float(raw["closed_at"]),
                ))
            except (AttributeError, KeyError, TypeError, ValueError) as e:
                logger.warning(f"⚠️ Issue corrompue ignorée: {e}")

        for strategy in Strategy:
            last = max((o.closed_at for o in self._outcomes if o.strategy == strategy), default=0.0)
            self._recompute(strategy, last)
        logger.info(f"♻️ État restauré : {len(self._outcomes)} signaux clôturés")

    def _save_state(self):
        if self.state_path is None:
            return
        try:
            self.state_path.parent.mkdir(parents=True, exist_ok=True)
            payload = {"outcomes": [asdict(o) for o in self._outcomes]}
            tmp_path = self.state_path.with_suffix(".json.tmp")
            with tmp_path.open("w", encoding="utf-8") as f:
                json.dump(payload, f)
            os.replace(tmp_path, self.state_path)
        except Exception as e:
            logger.warning(f"⚠️ Sauvegarde d'état échouée: {e}")

    def save(self):
        with self._lock:
            self._save_state()
