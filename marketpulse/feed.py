import asyncio
import inspect
import logging
import time
from typing import Awaitable, Callable, List, Optional, Set, Union

import orjson
import websockets

from marketpulse.config import Settings, normalize_symbol
from marketpulse.models import FeedState, Tick
from marketpulse.synthetic import DEFAULT_START_PRICE, SyntheticMarket

logger = logging.getLogger("FeedConnector")

TickHandler = Callable[[Tick], Union[None, Awaitable[None]]]

# Événements de service Kraken : comptent comme trafic, ne produisent pas de tick
SERVICE_EVENTS = {"heartbeat", "systemStatus", "subscriptionStatus", "pong"}


class BackoffPolicy:
    """
    Backoff exponentiel borné : delay(n) = min(base * 2^n, cap).
    Le compteur est remis à zéro après chaque connexion réussie.
    """

    def __init__(self, base: float = 1.0, cap: float = 30.0, max_attempts: int = 5):
        self.base = base
        self.cap = cap
        self.max_attempts = max_attempts
        self.attempt = 0

    def delay(self, attempt: int) -> float:
        return min(self.base * (2 ** attempt), self.cap)

    def next_delay(self) -> float:
        d = self.delay(self.attempt)
        self.attempt += 1
        return d

    def reset(self):
        self.attempt = 0

    @property
    def exhausted(self) -> bool:
        return self.attempt >= self.max_attempts


class KrakenMessageParser:
    """
    Normalise les trames WebSocket Kraken (API v1) en ticks.
    - ticker : [channelID, {"c": [prix, volume], ...}, "ticker", "XRP/USD"]
    - ohlc   : [channelID, [time, etime, open, high, low, close, vwap, volume, count], "ohlc-1", "XRP/USD"]
    Les trames malformées sont ignorées avec un warning.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self.clock = clock

    def parse(self, raw: Union[str, bytes]) -> List[Tick]:
        try:
            payload = orjson.loads(raw)
        except orjson.JSONDecodeError:
            logger.warning("⚠️ Trame non JSON ignorée")
            return []

        if isinstance(payload, dict):
            self._on_event(payload)
            return []

        if not isinstance(payload, list) or len(payload) < 4:
            logger.warning(f"⚠️ Trame inattendue ignorée: {str(payload)[:120]}")
            return []

        channel = payload[-2]
        symbol = normalize_symbol(str(payload[-1]))
        data = payload[1]
        try:
            if channel == "ticker":
                last_trade = data["c"]
                return [Tick(symbol=symbol, timestamp=self.clock(), price=float(last_trade[0]), size=float(last_trade[1]))]
            if isinstance(channel, str) and channel.startswith("ohlc"):
                # Le volume est porté par le ticker : le tick OHLC ne sert qu'au prix
                return [Tick(symbol=symbol, timestamp=float(data[0]), price=float(data[5]), size=0.0)]
        except (KeyError, IndexError, TypeError, ValueError) as e:
            logger.warning(f"⚠️ Trame {channel} malformée ignorée ({e})")
            return []

        logger.debug(f"Canal ignoré: {channel}")
        return []

    def _on_event(self, payload: dict):
        event = payload.get("event")
        if event == "subscriptionStatus" and payload.get("status") == "error":
            logger.warning(f"⚠️ Abonnement refusé: {payload.get('errorMessage')}")
        elif event == "error":
            logger.warning(f"⚠️ Erreur Kraken: {payload.get('errorMessage')}")
        elif event not in SERVICE_EVENTS:
            logger.warning(f"⚠️ Événement inconnu ignoré: {event}")


class FeedConnector:
    """
    Connexion WebSocket résiliente pour un instrument.
    - Abonnement ticker + ohlc à l'ouverture.
    - Keepalive ping/pong du client websockets + watchdog sur le silence radio.
    - Reconnexion avec backoff exponentiel ; au-delà du nombre maximal de tentatives,
      bascule définitive sur le générateur synthétique.
    """

    def __init__(
        self,
        pair: str,
        settings: Settings,
        connect=websockets.connect,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        synthetic: Optional[SyntheticMarket] = None,
    ):
        self.pair = pair.strip().upper()
        self.symbol = normalize_symbol(pair)
        self.settings = settings
        self._connect = connect
        self._sleep = sleep
        self._synthetic = synthetic
        self.parser = KrakenMessageParser()
        self.backoff = BackoffPolicy(settings.BACKOFF_BASE_S, settings.BACKOFF_CAP_S, settings.MAX_RECONNECT_ATTEMPTS)
        self.state = FeedState.STOPPED
        self.running = False
        self.last_message_time = 0.0
        self.last_price: Optional[float] = None
        self._handlers: List[TickHandler] = []
        self._timers: Set[asyncio.Task] = set()
        self._ws = None

    def on_tick(self, handler: TickHandler):
        self._handlers.append(handler)

    def _subscriptions(self) -> List[bytes]:
        interval_min = self.settings.CANDLE_INTERVAL_S // 60
        return [
            orjson.dumps({"event": "subscribe", "pair": [self.pair], "subscription": {"name": "ticker"}}),
            orjson.dumps({"event": "subscribe", "pair": [self.pair], "subscription": {"name": "ohlc", "interval": interval_min}}),
        ]

    async def run(self):
        """Boucle principale : connexion, écoute, reconnexion, repli synthétique."""
        self.running = True
        logger.info(f"📡 Connexion WebSocket {self.settings.FEED_URL} pour {self.pair}...")

        while self.running:
            if self.backoff.exhausted:
                await self._run_synthetic()
                break

            self.state = FeedState.CONNECTING
            try:
                async with self._connect(
                    self.settings.FEED_URL,
                    ping_interval=self.settings.HEARTBEAT_INTERVAL_S,
                    ping_timeout=self.settings.PONG_TIMEOUT_S,
                ) as ws:
                    self._ws = ws
                    self.backoff.reset()
                    self.state = FeedState.LIVE
                    logger.info(f"✅ WebSocket connecté ({self.pair}).")
                    for frame in self._subscriptions():
                        await ws.send(frame.decode())
                    self.last_message_time = time.monotonic()
                    self._start_timer(self._watchdog(ws))
                    try:
                        async for message in ws:
                            if not self.running:
                                break
                            self.last_message_time = time.monotonic()
                            await self._dispatch(self.parser.parse(message))
                    finally:
                        self._cancel_timers()
                        self._ws = None
                if self.running:
                    logger.warning(f"⚠️ Connexion fermée par le serveur ({self.pair}).")

            except (websockets.ConnectionClosed, asyncio.TimeoutError, OSError) as e:
                logger.warning(f"⚠️ Déconnexion WebSocket {self.pair} ({e}).")
            except asyncio.CancelledError:
                logger.info(f"🛑 Arrêt du connecteur {self.pair} demandé.")
                break
            except Exception as e:
                logger.error(f"❌ Erreur inattendue dans le connecteur {self.pair}: {e}")

            if not self.running or self.backoff.exhausted:
                continue
            delay = self.backoff.next_delay()
            if self.backoff.exhausted:
                # Dernière tentative échouée : repli synthétique immédiat
                continue
            self.state = FeedState.BACKOFF
            logger.warning(
                f"⏳ Reconnexion {self.pair} dans {delay:.1f}s "
                f"(tentative {self.backoff.attempt}/{self.backoff.max_attempts})"
            )
            try:
                await self._sleep(delay)
            except asyncio.CancelledError:
                break

        self.running = False
        self._cancel_timers()
        self.state = FeedState.STOPPED
        logger.info(f"🛑 Connecteur {self.pair} arrêté.")

    async def stop(self):
        """Arrêt propre : ferme la socket et annule les timers."""
        self.running = False
        self._cancel_timers()
        ws = self._ws
        if ws is not None:
            try:
                await ws.close()
            except Exception as e:
                logger.debug(f"Fermeture socket {self.pair}: {e}")

    async def _watchdog(self, ws):
        """Ferme la socket si aucun trafic n'a été vu depuis heartbeat + pong timeout."""
        timeout = self.settings.HEARTBEAT_INTERVAL_S + self.settings.PONG_TIMEOUT_S
        check_every = min(1.0, timeout / 4)
        while self.running:
            await asyncio.sleep(check_every)
            silence = time.monotonic() - self.last_message_time
            if silence > timeout:
                logger.error(f"🚨 WATCHDOG {self.pair}: aucun trafic depuis {silence:.1f}s. Reset de la connexion.")
                await ws.close()
                return

    def _start_timer(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._timers.add(task)
        task.add_done_callback(self._timers.discard)
        return task

    def _cancel_timers(self):
        for task in list(self._timers):
            task.cancel()
        self._timers.clear()

    async def _run_synthetic(self):
        """Repli permanent : ne lève jamais, dégrade seulement le réalisme des données."""
        self.state = FeedState.SYNTHETIC
        logger.warning(
            f"🧪 {self.pair}: {self.backoff.max_attempts} tentatives épuisées, bascule sur le générateur synthétique."
        )
        market = self._synthetic or SyntheticMarket(self.symbol, start_price=self.last_price or DEFAULT_START_PRICE)
        while self.running:
            try:
                await self._dispatch([market.next_tick(time.time())])
            except Exception as e:
                logger.error(f"❌ Générateur synthétique {self.pair}: {e}")
            try:
                await self._sleep(self.settings.SYNTHETIC_TICK_INTERVAL_S)
            except asyncio.CancelledError:
                break

    async def _dispatch(self, ticks: List[Tick]):
        for tick in ticks:
            self.last_price = tick.price
            for handler in self._handlers:
                try:
                    result = handler(tick)
                    if inspect.isawaitable(result):
                        await result
                except Exception as e:
                    logger.error(f"❌ Handler de tick en échec ({tick.symbol}): {e}")
