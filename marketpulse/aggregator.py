import asyncio
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, Iterable, List, Optional

from marketpulse.models import Candle, CandleUpdate, HistoryPeriod, Tick

logger = logging.getLogger("Aggregator")

PERIOD_SPANS_S: Dict[HistoryPeriod, Optional[int]] = {
    HistoryPeriod.ONE_MONTH: 30 * 86400,
    HistoryPeriod.SIX_MONTHS: 180 * 86400,
    HistoryPeriod.ONE_YEAR: 365 * 86400,
    HistoryPeriod.ALL: None,
}


@dataclass
class _OpenCandle:
    """Bougie en cours (mutable), jamais exposée telle quelle."""
    start: int
    o: float
    h: float
    l: float
    c: float
    v: float

    def freeze(self, symbol: str) -> Candle:
        return Candle(symbol=symbol, time=self.start, open=self.o, high=self.h, low=self.l, close=self.c, volume=self.v)


class _SymbolBook:
    def __init__(self, buffer_size: int):
        self.open: Optional[_OpenCandle] = None
        self.closed: Deque[Candle] = deque(maxlen=buffer_size)


class CandleAggregator:
    """
    Agrégateur de ticks en bougies temporelles (Time Bars).
    Une seule bougie ouverte par symbole + un buffer circulaire de bougies finalisées.
    Toutes les mutations et lectures passent par un verrou : les snapshots
    peuvent être pris depuis un thread de calcul sans voir de bougie à moitié mise à jour.
    """

    def __init__(self, interval_s: int = 60, buffer_size: int = 10_000, output_queue: Optional[asyncio.Queue] = None):
        self.interval_s = interval_s
        self.buffer_size = buffer_size
        self.output_queue = output_queue
        self._books: Dict[str, _SymbolBook] = {}
        self._listeners: List[Callable[[CandleUpdate], None]] = []
        self._lock = threading.Lock()

    def bucket(self, timestamp: float) -> int:
        # Ex: 125.4 // 60 * 60 = 120
        return int(timestamp // self.interval_s) * self.interval_s

    def add_listener(self, listener: Callable[[CandleUpdate], None]):
        self._listeners.append(listener)

    def _get_book(self, symbol: str) -> _SymbolBook:
        if symbol not in self._books:
            self._books[symbol] = _SymbolBook(self.buffer_size)
        return self._books[symbol]

    def ingest(self, tick: Tick) -> List[CandleUpdate]:
        """
        Intègre un tick dans la bougie courante.
        Retourne les mises à jour produites : [finale, nouvelle] au changement de bucket,
        [courante] dans le même bucket, [] pour un tick hors ordre.
        """
        start = self.bucket(tick.timestamp)
        price = tick.price
        qty = tick.size

        with self._lock:
            book = self._get_book(tick.symbol)
            current = book.open

            if current is None:
                last_closed = book.closed[-1].time if book.closed else None
                if last_closed is not None and start <= last_closed:
                    return []
                book.open = _OpenCandle(start, price, price, price, price, qty)
                return [CandleUpdate(tick.symbol, book.open.freeze(tick.symbol), False)]

            if start < current.start:
                # Tick en retard : pas de régression de bucket
                logger.debug(f"⏪ Tick hors ordre ignoré {tick.symbol} ({start} < {current.start})")
                return []

            if start > current.start:
                # 1. Clôturer la bougie précédente
                final = current.freeze(tick.symbol)
                book.closed.append(final)
                # 2. Démarrer une nouvelle bougie avec le tick actuel
                book.open = _OpenCandle(start, price, price, price, price, qty)
                return [
                    CandleUpdate(tick.symbol, final, True),
                    CandleUpdate(tick.symbol, book.open.freeze(tick.symbol), False),
                ]

            # Mise à jour de la bougie courante (OHLCV)
            current.h = max(current.h, price)
            current.l = min(current.l, price)
            current.c = price
            current.v += qty
            return [CandleUpdate(tick.symbol, current.freeze(tick.symbol), False)]

    async def process_tick(self, tick: Tick) -> List[CandleUpdate]:
        """Ingestion + diffusion des mises à jour aux listeners et à la queue de sortie."""
        updates = self.ingest(tick)
        for update in updates:
            for listener in self._listeners:
                try:
                    listener(update)
                except Exception as e:
                    logger.error(f"❌ Listener bougie en échec ({tick.symbol}): {e}")
            if self.output_queue is not None:
                await self.output_queue.put(update)
        return updates

    def seed(self, symbol: str, candles: Iterable[Candle]) -> int:
        """
        Précharge un historique de bougies finalisées.
        Seules les bougies alignées, strictement croissantes et antérieures à la bougie ouverte sont gardées.
        """
        accepted = 0
        with self._lock:
            book = self._get_book(symbol)
            last = book.closed[-1].time if book.closed else None
            limit = book.open.start if book.open else None
            for c in sorted(candles, key=lambda x: x.time):
                if c.time % self.interval_s != 0:
                    continue
                if last is not None and c.time <= last:
                    continue
                if limit is not None and c.time >= limit:
                    break
                if c.symbol != symbol:
                    c = Candle(symbol, c.time, c.open, c.high, c.low, c.close, c.volume)
                book.closed.append(c)
                last = c.time
                accepted += 1
        logger.info(f"📚 {symbol}: {accepted} bougies préchargées")
        return accepted

    def snapshot(self, symbol: str, include_open: bool = False) -> List[Candle]:
        """Copie immuable de l'historique (et éventuellement de la bougie ouverte)."""
        with self._lock:
            book = self._books.get(symbol)
            if book is None:
                return []
            candles = list(book.closed)
            if include_open and book.open is not None:
                candles.append(book.open.freeze(symbol))
            return candles

    def current(self, symbol: str) -> Optional[Candle]:
        with self._lock:
            book = self._books.get(symbol)
            if book is None or book.open is None:
                return None
            return book.open.freeze(symbol)

    def symbols(self) -> List[str]:
        with self._lock:
            return list(self._books.keys())

    def history(
        self,
        symbol: str,
        period: Optional[HistoryPeriod] = None,
        start: Optional[int] = None,
        end: Optional[int] = None,
        now: Optional[float] = None,
    ) -> List[Candle]:
        """
        Bougies couvrant une période (1M/6M/1Y/ALL) ou une plage explicite [start, end].
        La plage explicite est prioritaire sur la période.
        """
        candles = self.snapshot(symbol, include_open=True)
        if start is None and end is None:
            span = PERIOD_SPANS_S[period or HistoryPeriod.ALL]
            if span is None:
                return candles
            ref = now if now is not None else time.time()
            start = self.bucket(ref - span)
        lo = start if start is not None else float("-inf")
        hi = end if end is not None else float("inf")
        return [c for c in candles if lo <= c.time <= hi]
