import logging
import threading
import time
from dataclasses import dataclass
from typing import Dict, List, Optional

from marketpulse.models import Candle, CloseReason, SignalType, TradingSignal

logger = logging.getLogger("SignalBook")


@dataclass(frozen=True)
class Settlement:
    signal: TradingSignal
    exit_price: float
    reason: CloseReason
    closed_at: float


class SignalBook:
    """
    Ensemble des signaux actifs.
    L'expiration est évaluée à la lecture (jamais de mutation d'un signal) ;
    les signaux expirés ne sont retirés qu'au règlement, pour que leur issue soit enregistrée.
    """

    def __init__(self):
        self._signals: Dict[str, TradingSignal] = {}
        self._lock = threading.Lock()

    def add(self, signal: TradingSignal):
        with self._lock:
            self._signals[signal.id] = signal
        logger.info(
            f"⚡ SIGNAL {signal.type.value.upper()} {signal.symbol} @ {signal.price:.4f} "
            f"| {signal.strategy.value} | confiance {signal.confidence}%"
        )

    def active(self, symbol: Optional[str] = None, now: Optional[float] = None) -> List[TradingSignal]:
        now = time.time() if now is None else now
        with self._lock:
            signals = list(self._signals.values())
        return sorted(
            (s for s in signals if not s.is_expired(now) and (symbol is None or s.symbol == symbol)),
            key=lambda s: s.timestamp,
        )

    def active_count(self, symbol: str, now: Optional[float] = None) -> int:
        return len(self.active(symbol, now))

    def get(self, signal_id: str) -> Optional[TradingSignal]:
        with self._lock:
            return self._signals.get(signal_id)

    def remove(self, signal_id: str) -> Optional[TradingSignal]:
        with self._lock:
            return self._signals.pop(signal_id, None)

    def settle(
        self,
        symbol: str,
        candle: Candle,
        now: Optional[float] = None,
        price: Optional[float] = None,
        price_time: Optional[float] = None,
    ) -> List[Settlement]:
        """
        Règle les signaux actifs du symbole contre une bougie :
        objectif touché -> sortie au take-profit, stop touché -> sortie au stop-loss
        (le stop l'emporte si les deux sont touchés), expiré -> sortie à la clôture.

        Un signal émis après l'ouverture de la bougie n'a pas vu ses extrêmes :
        il est évalué sur le dernier prix (`price`, la clôture par défaut), et un
        prix horodaté avant l'émission du signal (`price_time`) est ignoré.
        """
        now = time.time() if now is None else now
        last = candle.close if price is None else price
        settled: List[Settlement] = []
        with self._lock:
            for signal in list(self._signals.values()):
                if signal.symbol != symbol:
                    continue
                if signal.timestamp <= candle.time:
                    bounds = (candle.low, candle.high)
                elif price_time is None or price_time >= signal.timestamp:
                    bounds = (last, last)
                else:
                    # Prix antérieur au signal : seule l'expiration est évaluée
                    bounds = None

                stop_hit = target_hit = False
                if bounds is not None:
                    low, high = bounds
                    if signal.type == SignalType.BUY:
                        stop_hit = low <= signal.stop_loss
                        target_hit = high >= signal.take_profit
                    else:
                        stop_hit = high >= signal.stop_loss
                        target_hit = low <= signal.take_profit

                if stop_hit:
                    result = Settlement(signal, signal.stop_loss, CloseReason.STOP, now)
                elif target_hit:
                    result = Settlement(signal, signal.take_profit, CloseReason.TARGET, now)
                elif signal.is_expired(now):
                    result = Settlement(signal, candle.close, CloseReason.EXPIRY, now)
                else:
                    continue
                del self._signals[signal.id]
                settled.append(result)

        for s in settled:
            logger.info(f"🏁 Signal {s.signal.id[:8]} {symbol} clôturé ({s.reason.value}) @ {s.exit_price:.4f}")
        return settled

    def __len__(self) -> int:
        with self._lock:
            return len(self._signals)
