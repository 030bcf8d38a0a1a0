import asyncio
import logging
import sys

import uvicorn

from api.server import create_app
from core.logger import configure_logging
from marketpulse.config import ConfigurationError, Settings, load_config
from marketpulse.service import MarketAnalyticsService

logger = logging.getLogger("MarketPulse")


async def main(settings: Settings):
    """
    Point d'entrée principal : moteur d'analyse + API dans la même boucle d'événements.
    """
    service = MarketAnalyticsService(settings)
    app = create_app(service)
    server = uvicorn.Server(uvicorn.Config(
        app,
        host=settings.API_HOST,
        port=settings.API_PORT,
        log_level=settings.LOG_LEVEL.lower(),
        loop="none",
    ))

    await service.start()
    logger.info(f"🌐 API disponible sur http://{settings.API_HOST}:{settings.API_PORT}")
    try:
        await server.serve()
    except asyncio.CancelledError:
        logger.info("🛑 Arrêt demandé...")
    except Exception:
        logger.exception("❌ Erreur critique, arrêt du moteur...")
    finally:
        await service.stop()


if __name__ == "__main__":
    try:
        settings = load_config()
    except ConfigurationError as e:
        # Échec immédiat, avant toute ingestion
        print(f"❌ Configuration invalide: {e}", file=sys.stderr)
        sys.exit(1)

    configure_logging(settings.LOG_LEVEL)
    if sys.platform != "win32":
        import uvloop
        uvloop.install()
    asyncio.run(main(settings))
