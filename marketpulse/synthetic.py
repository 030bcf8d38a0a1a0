import logging
from typing import List, Optional

import numpy as np

from marketpulse.models import Candle, Tick

logger = logging.getLogger("SyntheticMarket")

DEFAULT_START_PRICE = 2.45
BASE_VOLATILITY = 0.005
SHOCK_PROBABILITY = 0.001
SHOCK_AMPLITUDE = 0.025
BASE_VOLUME = 2_000_000.0
# Un tick (1s) bouge nettement moins qu'une bougie complète
TICK_SCALE = 0.1


class SyntheticMarket:
    """
    Marché simulé : marche aléatoire + composante de tendance.
    La tendance s'inverse tous les 3000-8000 pas (force et volatilité re-tirées),
    avec de rares chocs (0.1% de chance, jusqu'à ±2.5%).
    Utilisé en repli quand le flux live est indisponible.
    """

    def __init__(self, symbol: str, start_price: float = DEFAULT_START_PRICE, seed: Optional[int] = None):
        if start_price <= 0:
            raise ValueError(f"start_price doit être positif ({start_price})")
        self.symbol = symbol
        self.price = float(start_price)
        self.rng = np.random.default_rng(seed)
        self.trend_direction = 1
        self.trend_strength = 0.0001
        self.volatility = BASE_VOLATILITY
        self._steps_to_flip = self._draw_flip()

    def _draw_flip(self) -> int:
        return int(self.rng.integers(3000, 8001))

    def _flip_trend(self):
        self.trend_direction *= -1
        self.trend_strength = float(self.rng.uniform(0.0001, 0.0006))
        # Volatilité bornée pour éviter la dérive multiplicative
        self.volatility = float(np.clip(self.volatility * self.rng.uniform(0.5, 1.5), 0.001, 0.02))
        self._steps_to_flip = self._draw_flip()

    def step(self, scale: float = 1.0) -> float:
        """Fait avancer le marché d'un pas. Retourne le mouvement relatif appliqué."""
        self._steps_to_flip -= 1
        if self._steps_to_flip <= 0:
            self._flip_trend()

        trend_move = self.trend_direction * self.trend_strength
        random_move = self.rng.uniform(-1.0, 1.0) * self.volatility
        move = scale * (trend_move + random_move)

        if self.rng.random() < SHOCK_PROBABILITY:
            move = self.rng.uniform(-SHOCK_AMPLITUDE, SHOCK_AMPLITUDE)

        # exp() garde le prix strictement positif
        self.price = self.price * float(np.exp(move))
        return move

    def next_tick(self, timestamp: float) -> Tick:
        move = self.step(TICK_SCALE)
        size = float(self.rng.uniform(10.0, 1000.0) * (1 + abs(move) * 100))
        return Tick(symbol=self.symbol, timestamp=timestamp, price=self.price, size=size)

    def next_candle(self, time: int) -> Candle:
        open_ = self.price
        move = self.step()
        close = self.price

        # Mèches réalistes : 10-50% du corps
        body = abs(close - open_)
        wick = body * self.rng.uniform(0.1, 0.5)
        high = max(open_, close) + wick * self.rng.random()
        low = min(open_, close) - wick * self.rng.random()
        low = max(low, min(open_, close) * 0.5)

        volume = BASE_VOLUME * self.rng.uniform(0.3, 1.7) + abs(move) * 50_000
        return Candle(self.symbol, time, open_, high, low, close, float(volume))


def generate_history(
    symbol: str,
    count: int,
    interval: int,
    end: float,
    start_price: float = DEFAULT_START_PRICE,
    seed: Optional[int] = None,
) -> List[Candle]:
    """
    Génère `count` bougies finalisées, alignées sur l'intervalle,
    la dernière se terminant avant le bucket contenant `end`.
    """
    if count <= 0:
        return []
    market = SyntheticMarket(symbol, start_price=start_price, seed=seed)
    last_start = int(end // interval) * interval - interval
    first_start = last_start - (count - 1) * interval
    candles = [market.next_candle(first_start + i * interval) for i in range(count)]
    logger.info(f"🧪 {symbol}: {len(candles)} bougies synthétiques générées")
    return candles
