import asyncio
import random

from marketpulse.aggregator import CandleAggregator
from marketpulse.models import Candle, HistoryPeriod, Tick


def tick(t, price, size=1.0, symbol="XRPUSD"):
    return Tick(symbol=symbol, timestamp=t, price=price, size=size)


def test_ticks_in_same_bucket_then_rollover():
    agg = CandleAggregator(interval_s=60)

    first = agg.ingest(tick(0, 1.00))
    assert len(first) == 1 and not first[0].is_final
    agg.ingest(tick(10, 1.20))
    updates = agg.ingest(tick(50, 0.90))

    candle = updates[-1].candle
    assert candle.time == 0
    assert candle.open == 1.00
    assert candle.close == 0.90
    assert candle.high == 1.20
    assert candle.low == 0.90
    assert candle.volume == 3.0

    rollover = agg.ingest(tick(65, 1.05))
    assert [u.is_final for u in rollover] == [True, False]
    assert rollover[0].candle == candle
    new = rollover[1].candle
    assert new.time == 60
    assert new.open == new.high == new.low == new.close == 1.05
    assert agg.snapshot("XRPUSD") == [candle]


def test_out_of_order_tick_is_ignored():
    agg = CandleAggregator(interval_s=60)
    agg.ingest(tick(125, 2.0))
    before = agg.current("XRPUSD")

    assert agg.ingest(tick(30, 9.0)) == []
    assert agg.current("XRPUSD") == before
    assert agg.snapshot("XRPUSD") == []


def test_finalized_candles_respect_ohlc_invariants():
    rng = random.Random(42)
    agg = CandleAggregator(interval_s=60)
    price = 1.0
    t = 0.0
    for _ in range(2000):
        t += rng.uniform(0, 20)
        price = max(0.01, price + rng.uniform(-0.02, 0.02))
        agg.ingest(tick(t, price, rng.uniform(0, 5)))

    candles = agg.snapshot("XRPUSD")
    assert len(candles) > 10
    for c in candles:
        assert c.high >= max(c.open, c.close)
        assert c.low <= min(c.open, c.close)
        assert c.time % 60 == 0
    times = [c.time for c in candles]
    assert times == sorted(set(times))


def test_buffer_evicts_oldest():
    agg = CandleAggregator(interval_s=60, buffer_size=3)
    for i in range(6):
        agg.ingest(tick(i * 60, 1.0 + i))
    assert [c.time for c in agg.snapshot("XRPUSD")] == [120, 180, 240]


def test_symbols_are_independent():
    agg = CandleAggregator(interval_s=60)
    agg.ingest(tick(0, 1.0, symbol="XRPUSD"))
    agg.ingest(tick(70, 50.0, symbol="BTCUSD"))
    assert agg.ingest(tick(5, 1.1, symbol="XRPUSD"))[0].candle.time == 0
    assert sorted(agg.symbols()) == ["BTCUSD", "XRPUSD"]


def test_seed_keeps_aligned_increasing_history():
    agg = CandleAggregator(interval_s=60)
    agg.ingest(tick(600, 1.0))
    candles = [
        Candle("XRPUSD", 120, 1, 1, 1, 1, 1),
        Candle("XRPUSD", 60, 1, 1, 1, 1, 1),
        Candle("XRPUSD", 90, 1, 1, 1, 1, 1),  # non aligné
        Candle("XRPUSD", 120, 2, 2, 2, 2, 2),  # doublon
        Candle("XRPUSD", 600, 1, 1, 1, 1, 1),  # chevauche la bougie ouverte
    ]
    assert agg.seed("XRPUSD", candles) == 2
    assert [c.time for c in agg.snapshot("XRPUSD")] == [60, 120]
    assert len(agg.snapshot("XRPUSD", include_open=True)) == 3


def test_history_by_period_and_range():
    day = 86400
    agg = CandleAggregator(interval_s=day, buffer_size=1000)
    agg.seed("XRPUSD", [Candle("XRPUSD", d * day, 1, 1, 1, 1, 1) for d in range(400)])
    now = 400 * day

    assert len(agg.history("XRPUSD", HistoryPeriod.ONE_MONTH, now=now)) == 30
    assert len(agg.history("XRPUSD", HistoryPeriod.SIX_MONTHS, now=now)) == 180
    assert len(agg.history("XRPUSD", HistoryPeriod.ONE_YEAR, now=now)) == 365
    assert len(agg.history("XRPUSD", HistoryPeriod.ALL, now=now)) == 400

    ranged = agg.history("XRPUSD", start=10 * day, end=12 * day)
    assert [c.time for c in ranged] == [10 * day, 11 * day, 12 * day]
    assert agg.history("UNKNOWN", HistoryPeriod.ALL) == []


def test_process_tick_fans_out_to_listeners_and_queue():
    async def scenario():
        queue = asyncio.Queue()
        agg = CandleAggregator(interval_s=60, output_queue=queue)
        seen = []
        agg.add_listener(seen.append)
        agg.add_listener(lambda u: 1 / 0)  # un listener en échec ne bloque pas les autres

        await agg.process_tick(tick(0, 1.0))
        await agg.process_tick(tick(61, 1.1))
        return seen, [queue.get_nowait() for _ in range(queue.qsize())]

    seen, queued = asyncio.run(scenario())
    assert [u.is_final for u in seen] == [False, True, False]
    assert queued == seen
