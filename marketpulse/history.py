import logging
import time
from typing import List, Optional

import httpx

from marketpulse.aggregator import CandleAggregator
from marketpulse.config import Settings, normalize_symbol
from marketpulse.models import Candle
from marketpulse.synthetic import generate_history

logger = logging.getLogger("HistoryLoader")


class HistoryError(RuntimeError):
    """Réponse REST inexploitable (erreur Kraken ou format inattendu)."""


class KrakenHistoryClient:
    """
    Client REST pour l'historique OHLC public de Kraken.
    Format d'une ligne : [time, open, high, low, close, vwap, volume, count].
    """

    def __init__(self, base_url: str = "https://api.kraken.com", timeout: float = 5.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    async def fetch_ohlc(self, pair: str, interval_s: int, since: Optional[int] = None) -> List[Candle]:
        """Bougies finalisées, ordre croissant. La dernière ligne (bougie encore ouverte) est écartée."""
        symbol = normalize_symbol(pair)
        params = {"pair": symbol, "interval": interval_s // 60}
        if since is not None:
            params["since"] = since

        async with httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self.transport) as client:
            resp = await client.get("/0/public/OHLC", params=params)
            resp.raise_for_status()
            data = resp.json()

        if data.get("error"):
            raise HistoryError(f"Kraken: {', '.join(data['error'])}")
        result = data.get("result") or {}
        rows = next((v for k, v in result.items() if k != "last" and isinstance(v, list)), None)
        if rows is None:
            raise HistoryError(f"Aucune série OHLC dans la réponse pour {pair}")

        candles = []
        for row in rows[:-1]:
            try:
                candles.append(Candle(
                    symbol=symbol,
                    time=int(row[0]),
                    open=float(row[1]),
                    high=float(row[2]),
                    low=float(row[3]),
                    close=float(row[4]),
                    volume=float(row[6]),
                ))
            except (IndexError, TypeError, ValueError) as e:
                logger.warning(f"⚠️ Ligne OHLC corrompue ignorée ({pair}): {e}")
        return candles


async def warmup(
    aggregator: CandleAggregator,
    pair: str,
    settings: Settings,
    client: Optional[KrakenHistoryClient] = None,
    now: Optional[float] = None,
) -> int:
    """
    Précharge l'agrégateur pour que le générateur puisse tourner immédiatement.
    Historique de l'exchange si possible, sinon WARMUP_CANDLES bougies synthétiques.
    """
    symbol = normalize_symbol(pair)
    now = time.time() if now is None else now

    if settings.WARMUP_FROM_EXCHANGE:
        client = client or KrakenHistoryClient(settings.REST_URL)
        try:
            candles = await client.fetch_ohlc(pair, settings.CANDLE_INTERVAL_S)
            if candles:
                logger.info(f"🔥 Warm-up {pair}: {len(candles)} bougies récupérées depuis l'exchange")
                return aggregator.seed(symbol, candles[-settings.CANDLE_BUFFER_SIZE:])
            logger.warning(f"⚠️ Warm-up {pair}: historique vide")
        except Exception as e:
            logger.warning(f"⚠️ Impossible de charger l'historique pour {pair} depuis l'exchange: {e}")

    candles = generate_history(symbol, settings.WARMUP_CANDLES, settings.CANDLE_INTERVAL_S, end=now)
    return aggregator.seed(symbol, candles)
