import json

import pytest

from marketpulse.models import (
    CloseReason,
    Level,
    MarketRegime,
    Outcome,
    SignalStrength,
    SignalType,
    Strategy,
    Trend,
    TradingSignal,
)
from marketpulse.performance import PerformanceTracker, max_drawdown

NOW = 1_700_000_000.0


def make_signal(signal_type=SignalType.BUY, strategy=Strategy.MOMENTUM, confidence=60):
    buy = signal_type == SignalType.BUY
    return TradingSignal(
        symbol="XRPUSD",
        type=signal_type,
        strength=SignalStrength.MEDIUM,
        confidence=confidence,
        price=100.0,
        stop_loss=98.0 if buy else 102.0,
        take_profit=104.0 if buy else 96.0,
        risk_reward=2.0,
        timestamp=NOW,
        expires_at=NOW + 3600,
        strategy=strategy,
        regime=MarketRegime(Trend.BULLISH, Level.MEDIUM, Level.MEDIUM, 0.7),
    )


def test_neutral_priors_without_history():
    metrics = PerformanceTracker().metrics_for(Strategy.BREAKOUT)
    assert metrics.total_signals == 0
    assert metrics.win_rate == 0.5
    assert metrics.sharpe_ratio == 1.0


def test_buy_reaching_target_is_a_win():
    tracker = PerformanceTracker()
    outcome = tracker.record_close(make_signal(), 104.0, closed_at=NOW + 600)
    assert outcome.outcome == Outcome.WIN
    assert outcome.target_hit and not outcome.stop_hit
    assert outcome.reason == CloseReason.TARGET
    assert outcome.profit_loss == pytest.approx(0.04)
    assert outcome.duration == 600

    metrics = tracker.metrics_for(Strategy.MOMENTUM)
    assert metrics.total_signals == 1
    assert metrics.win_rate == 1.0


def test_sell_stopped_out_is_a_loss():
    outcome = PerformanceTracker().record_close(make_signal(SignalType.SELL), 102.0, CloseReason.STOP, NOW + 60)
    assert outcome.outcome == Outcome.LOSS
    assert outcome.stop_hit
    assert outcome.profit_loss == pytest.approx(-0.02)


def test_manual_close_uses_pnl_sign():
    tracker = PerformanceTracker()
    up = tracker.record_close(make_signal(), 101.0, closed_at=NOW + 60)
    down = tracker.record_close(make_signal(SignalType.SELL), 100.5, closed_at=NOW + 60)
    assert (up.outcome, up.reason) == (Outcome.WIN, CloseReason.MANUAL)
    assert down.outcome == Outcome.LOSS


def test_max_drawdown_on_cumulative_pnl():
    assert max_drawdown([0.1, -0.05, -0.1, 0.2]) == pytest.approx(0.15)
    assert max_drawdown([]) == 0.0
    assert max_drawdown([0.01, 0.02]) == 0.0


def test_sharpe_and_win_rate_are_recomputed():
    tracker = PerformanceTracker()
    tracker.record_close(make_signal(), 104.0, closed_at=NOW)
    tracker.record_close(make_signal(), 98.0, closed_at=NOW)

    metrics = tracker.metrics_for(Strategy.MOMENTUM)
    assert metrics.win_rate == 0.5
    # moyenne 0.01, écart-type 0.03
    assert metrics.sharpe_ratio == pytest.approx(1 / 3)
    assert metrics.max_drawdown == pytest.approx(0.02)
    assert tracker.metrics_for(Strategy.BREAKOUT).total_signals == 0


def test_stats():
    tracker = PerformanceTracker()
    tracker.record_close(make_signal(), 104.0, closed_at=NOW)
    tracker.record_close(make_signal(), 98.0, closed_at=NOW)
    tracker.record_close(make_signal(), 104.0, closed_at=NOW)

    stats = tracker.stats([make_signal(confidence=50), make_signal(confidence=70)])
    assert stats.total_signals == 3
    assert stats.successful_signals == 2
    assert stats.active_signals == 2
    assert stats.win_rate == pytest.approx(2 / 3)
    assert stats.avg_confidence == 60
    assert stats.profitability == pytest.approx(0.02)

    empty = PerformanceTracker().stats([])
    assert (empty.win_rate, empty.avg_confidence, empty.profitability) == (0.0, 0.0, 0.0)


def test_state_survives_restart(tmp_path):
    path = tmp_path / "state" / "performance.json"
    tracker = PerformanceTracker(str(path))
    tracker.record_close(make_signal(), 104.0, closed_at=NOW)
    tracker.record_close(make_signal(SignalType.SELL, Strategy.BREAKOUT), 102.0, closed_at=NOW)
    assert path.exists()

    restored = PerformanceTracker(str(path))
    assert len(restored.outcomes()) == 2
    assert restored.metrics_for(Strategy.MOMENTUM) == tracker.metrics_for(Strategy.MOMENTUM)
    assert restored.metrics_for(Strategy.BREAKOUT).win_rate == 0.0


def test_corrupt_state_is_ignored(tmp_path):
    path = tmp_path / "performance.json"
    path.write_text("{not json", encoding="utf-8")
    assert PerformanceTracker(str(path)).outcomes() == []

    path.write_text(json.dumps({"outcomes": [{"signal_id": "x"}]}), encoding="utf-8")
    assert PerformanceTracker(str(path)).outcomes() == []


def test_state_that_is_not_an_object_is_ignored(tmp_path):
    path = tmp_path / "performance.json"
    for content in ("[]", '"x"', '{"outcomes": 3}', '{"outcomes": ["x", 1, null]}'):
        path.write_text(content, encoding="utf-8")
        tracker = PerformanceTracker(str(path))
        assert tracker.outcomes() == []
        assert tracker.metrics_for(Strategy.MOMENTUM).win_rate == 0.5

    # L'état illisible est remplacé à la prochaine clôture
    path.write_text("[]", encoding="utf-8")
    tracker = PerformanceTracker(str(path))
    tracker.record_close(make_signal(), 104.0, closed_at=NOW)
    assert len(PerformanceTracker(str(path)).outcomes()) == 1
