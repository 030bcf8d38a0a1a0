import pytest

from marketpulse.synthetic import DEFAULT_START_PRICE, SyntheticMarket, generate_history


def test_prices_stay_positive():
    market = SyntheticMarket("XRPUSD", seed=5)
    for i in range(20_000):
        tick = market.next_tick(float(i))
        assert tick.price > 0
        assert tick.size > 0


def test_history_is_aligned_and_consistent():
    end = 1_700_000_123.0
    candles = generate_history("XRPUSD", 300, 60, end=end, seed=9)

    assert len(candles) == 300
    assert candles[0].open == DEFAULT_START_PRICE
    assert candles[-1].time == int(end // 60) * 60 - 60
    for prev, curr in zip(candles, candles[1:]):
        assert curr.time - prev.time == 60
        assert curr.open == prev.close
    for c in candles:
        assert c.time % 60 == 0
        assert c.low <= min(c.open, c.close) <= max(c.open, c.close) <= c.high
        assert c.low > 0
        assert c.volume > 0


def test_seeded_generation_is_deterministic():
    a = generate_history("XRPUSD", 50, 300, end=1_000_000.0, seed=42)
    b = generate_history("XRPUSD", 50, 300, end=1_000_000.0, seed=42)
    assert a == b
    assert generate_history("XRPUSD", 0, 60, end=1_000_000.0) == []


def test_invalid_start_price():
    with pytest.raises(ValueError):
        SyntheticMarket("XRPUSD", start_price=0)
