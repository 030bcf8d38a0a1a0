import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Dict, List, Optional, Set

import websockets

from marketpulse import indicators
from marketpulse.aggregator import CandleAggregator
from marketpulse.book import SignalBook
from marketpulse.config import Settings
from marketpulse.feed import FeedConnector
from marketpulse.history import KrakenHistoryClient, warmup
from marketpulse.models import (
    Candle,
    CandleUpdate,
    CloseReason,
    FeedState,
    HistoryPeriod,
    IndicatorSnapshot,
    MarketRegime,
    PatternMatch,
    SignalFeed,
    SignalOutcome,
    StrategyMetrics,
    SupportResistance,
    Tick,
    TradingSignal,
)
from marketpulse.patterns import detect_all
from marketpulse.performance import PerformanceTracker
from marketpulse.regime import classify_regime
from marketpulse.signals import SignalGenerator

logger = logging.getLogger("MarketAnalytics")

SUBSCRIBER_QUEUE_SIZE = 1000
PATTERN_SCAN_CANDLES = 200


class UnknownSymbolError(LookupError):
    pass


class SignalNotFoundError(LookupError):
    pass


@dataclass(frozen=True)
class MarketView:
    """Lecture instantanée des indicateurs d'un instrument."""
    symbol: str
    price: float
    candles: int
    indicators: IndicatorSnapshot
    regime: MarketRegime
    levels: SupportResistance


class MarketAnalyticsService:
    """
    Conteneur d'état explicite : agrégateur, signaux actifs, suivi de performance,
    générateur et un connecteur par instrument. Aucune variable globale.
    """

    def __init__(
        self,
        settings: Settings,
        connect=websockets.connect,
        sleep=asyncio.sleep,
        history_client: Optional[KrakenHistoryClient] = None,
        tracker: Optional[PerformanceTracker] = None,
    ):
        self.settings = settings
        self.aggregator = CandleAggregator(settings.CANDLE_INTERVAL_S, settings.CANDLE_BUFFER_SIZE)
        self.aggregator.add_listener(self._publish)
        self.book = SignalBook()
        self.tracker = tracker or PerformanceTracker(settings.state_path)
        self.generator = SignalGenerator(settings, self.tracker, self.book)
        self.history_client = history_client or KrakenHistoryClient(settings.REST_URL)

        self.connectors: Dict[str, FeedConnector] = {}
        for pair in settings.pairs:
            connector = FeedConnector(pair, settings, connect=connect, sleep=sleep)
            connector.on_tick(self.handle_tick)
            self.connectors[connector.symbol] = connector

        self._subscribers: Dict[Optional[str], Set[asyncio.Queue]] = {}
        self._tasks: List[asyncio.Task] = []

    # -------------------- Cycle de vie -------------------- #
    async def start(self, warm: bool = True):
        logger.info(f"🚀 Démarrage du moteur d'analyse ({', '.join(self.connectors)})...")
        if warm:
            for connector in self.connectors.values():
                await warmup(self.aggregator, connector.pair, self.settings, client=self.history_client)

        for symbol, connector in self.connectors.items():
            self._tasks.append(asyncio.create_task(connector.run(), name=f"feed-{symbol}"))
        self._tasks.append(asyncio.create_task(self._generation_loop(), name="signal-generation"))
        logger.info("⚡ Moteur initialisé")

    async def stop(self):
        logger.info("🛑 Arrêt du moteur d'analyse...")
        for connector in self.connectors.values():
            await connector.stop()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        self.tracker.save()
        logger.info("👋 Fermeture propre...")

    # -------------------- Flux -------------------- #
    async def handle_tick(self, tick: Tick, now: Optional[float] = None) -> List[CandleUpdate]:
        """Agrégation + diffusion aux abonnés + règlement des signaux actifs."""
        updates = await self.aggregator.process_tick(tick)
        if not updates:
            return updates
        now = time.time() if now is None else now
        settlements = self.book.settle(
            tick.symbol, updates[-1].candle, now, price=tick.price, price_time=tick.timestamp
        )
        for settlement in settlements:
            self.tracker.record_close(settlement.signal, settlement.exit_price, settlement.reason, settlement.closed_at)
        return updates

    def subscribe(self, symbol: Optional[str] = None, maxsize: int = SUBSCRIBER_QUEUE_SIZE) -> asyncio.Queue:
        """File bornée d'événements bougie (tous les symboles si symbol=None)."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._subscribers.setdefault(symbol, set()).add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue):
        for queues in self._subscribers.values():
            queues.discard(queue)

    def _publish(self, update: CandleUpdate):
        targets = self._subscribers.get(update.symbol, set()) | self._subscribers.get(None, set())
        for queue in targets:
            try:
                queue.put_nowait(update)
            except asyncio.QueueFull:
                logger.warning(f"⚠️ File d'abonné pleine ({update.symbol}), événement bougie ignoré.")

    # -------------------- Génération -------------------- #
    async def run_generation_cycle(self, now: Optional[float] = None) -> List[TradingSignal]:
        """Un cycle de génération, hors de la boucle d'événements, sur un snapshot figé."""
        emitted = []
        for symbol in self.connectors:
            candles = self.aggregator.snapshot(symbol)
            try:
                signal = await asyncio.to_thread(self.generator.generate, symbol, candles, now)
            except Exception as e:
                logger.error(f"❌ Erreur génération {symbol}: {e}")
                continue
            if signal:
                emitted.append(signal)
        return emitted

    async def _generation_loop(self):
        logger.info(f"🧠 Démarrage du générateur de signaux (toutes les {self.settings.SIGNAL_INTERVAL_S:.0f}s)...")
        while True:
            try:
                await self.run_generation_cycle()
                await asyncio.sleep(self.settings.SIGNAL_INTERVAL_S)
            except asyncio.CancelledError:
                break

    # -------------------- Requêtes -------------------- #
    def symbols(self) -> List[str]:
        return list(self.connectors)

    def _require(self, symbol: str) -> str:
        key = symbol.upper()
        if key not in self.connectors:
            raise UnknownSymbolError(symbol)
        return key

    def history(
        self,
        symbol: str,
        period: Optional[HistoryPeriod] = None,
        start: Optional[int] = None,
        end: Optional[int] = None,
        now: Optional[float] = None,
    ) -> List[Candle]:
        return self.aggregator.history(self._require(symbol), period=period, start=start, end=end, now=now)

    def signal_feed(self, symbol: Optional[str] = None, now: Optional[float] = None) -> SignalFeed:
        if symbol is not None:
            symbol = self._require(symbol)
        active = self.book.active(now=now)
        signals = [s for s in active if symbol is None or s.symbol == symbol]
        return SignalFeed(signals=signals, stats=self.tracker.stats(active))

    def patterns(self, symbol: str, limit: int = PATTERN_SCAN_CANDLES) -> List[PatternMatch]:
        candles = self.aggregator.snapshot(self._require(symbol))
        return detect_all(candles[-limit:])

    def indicators(self, symbol: str) -> Optional[MarketView]:
        key = self._require(symbol)
        candles = self.aggregator.snapshot(key, include_open=True)
        if not candles:
            return None
        closes = [c.close for c in candles]
        rsi_value = indicators.rsi(closes)
        macd_sample = indicators.macd(closes)
        bands = indicators.bollinger(closes)
        return MarketView(
            symbol=key,
            price=closes[-1],
            candles=len(candles),
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
            regime=classify_regime(candles),
            levels=indicators.support_resistance([c.high for c in candles], [c.low for c in candles]),
        )

    def strategy_metrics(self) -> List[StrategyMetrics]:
        return self.tracker.all_metrics()

    def feed_states(self) -> Dict[str, FeedState]:
        return {symbol: c.state for symbol, c in self.connectors.items()}

    def close_signal(self, signal_id: str, exit_price: float, now: Optional[float] = None) -> SignalOutcome:
        """Clôture manuelle d'un signal actif."""
        signal = self.book.remove(signal_id)
        if signal is None:
            raise SignalNotFoundError(signal_id)
        now = time.time() if now is None else now
        return self.tracker.record_close(signal, exit_price, CloseReason.MANUAL, now)
