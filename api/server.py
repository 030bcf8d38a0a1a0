import asyncio
import logging
from typing import List, Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect

from core.errors import InvalidPeriod, InvalidRange, SignalNotFound, SymbolNotFound
from interfaces.market import (
    CandleEvent,
    CandleOut,
    CloseSignalRequest,
    HealthOut,
    IndicatorsOut,
    MarketViewOut,
    OutcomeOut,
    PatternOut,
    RegimeOut,
    SignalFeedOut,
    StrategyMetricsOut,
)
from marketpulse.models import CandleUpdate, HistoryPeriod
from marketpulse.service import MarketAnalyticsService, SignalNotFoundError

logger = logging.getLogger("API")


def _parse_period(period: Optional[str]) -> Optional[HistoryPeriod]:
    if period is None:
        return None
    try:
        return HistoryPeriod(period.upper())
    except ValueError:
        raise InvalidPeriod(period)


def create_app(service: MarketAnalyticsService) -> FastAPI:
    """Expose le moteur d'analyse : requêtes REST + flux de bougies en WebSocket."""
    app = FastAPI(title="MarketPulse")

    def require_symbol(symbol: str) -> str:
        key = symbol.upper()
        if key not in service.symbols():
            raise SymbolNotFound(symbol)
        return key

    @app.get("/health", response_model=HealthOut)
    async def health():
        return HealthOut(status="ok", feeds=service.feed_states())

    @app.get("/symbols", response_model=List[str])
    async def symbols():
        return service.symbols()

    @app.get("/candles/{symbol}", response_model=List[CandleOut])
    async def candles(symbol: str, period: Optional[str] = None, start: Optional[int] = None, end: Optional[int] = None):
        key = require_symbol(symbol)
        parsed = _parse_period(period)
        if start is not None and end is not None and start > end:
            raise InvalidRange(start, end)
        return [CandleOut.model_validate(c) for c in service.history(key, period=parsed, start=start, end=end)]

    @app.get("/signals", response_model=SignalFeedOut)
    async def signals(symbol: Optional[str] = None):
        if symbol is not None:
            symbol = require_symbol(symbol)
        return SignalFeedOut.model_validate(service.signal_feed(symbol))

    @app.post("/signals/{signal_id}/close", response_model=OutcomeOut)
    async def close_signal(signal_id: str, req: CloseSignalRequest):
        try:
            outcome = service.close_signal(signal_id, req.exit_price)
        except SignalNotFoundError:
            raise SignalNotFound(signal_id)
        logger.info(f"✋ Signal {signal_id[:8]} clôturé manuellement @ {req.exit_price}")
        return OutcomeOut.model_validate(outcome)

    @app.get("/patterns/{symbol}", response_model=List[PatternOut])
    async def patterns(symbol: str):
        return [PatternOut.model_validate(p) for p in service.patterns(require_symbol(symbol))]

    @app.get("/indicators/{symbol}", response_model=Optional[MarketViewOut])
    async def indicators(symbol: str):
        view = service.indicators(require_symbol(symbol))
        if view is None:
            return None
        return MarketViewOut(
            symbol=view.symbol,
            price=view.price,
            candles=view.candles,
            indicators=IndicatorsOut.model_validate(view.indicators),
            regime=RegimeOut.model_validate(view.regime),
            support=list(view.levels.support),
            resistance=list(view.levels.resistance),
        )

    @app.get("/strategies", response_model=List[StrategyMetricsOut])
    async def strategies():
        return [StrategyMetricsOut.model_validate(m) for m in service.strategy_metrics()]

    @app.websocket("/ws/candles/{symbol}")
    async def candle_stream(websocket: WebSocket, symbol: str):
        key = symbol.upper()
        if key not in service.symbols():
            await websocket.close(code=4404)
            return

        await websocket.accept()
        queue = service.subscribe(key)

        async def pump():
            # État initial : la bougie en cours, s'il y en a une
            current = service.aggregator.current(key)
            if current is not None:
                await websocket.send_text(CandleEvent.from_update(CandleUpdate(key, current, False)).model_dump_json(by_alias=True))
            while True:
                update = await queue.get()
                await websocket.send_text(CandleEvent.from_update(update).model_dump_json(by_alias=True))

        pump_task = asyncio.create_task(pump())
        try:
            while True:
                # Garder la connexion active ("ping" côté client), détecter la déconnexion
                await websocket.receive_text()
        except WebSocketDisconnect:
            pass
        except Exception as e:
            logger.warning(f"⚠️ Erreur WebSocket {key}: {e}")
        finally:
            pump_task.cancel()
            service.unsubscribe(queue)

    return app
