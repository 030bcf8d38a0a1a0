import logging
import sys

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"

# Bibliothèques trop bavardes en INFO
NOISY_LOGGERS = ("httpx", "httpcore", "websockets")


def configure_logging(level: str = "INFO"):
    """Configuration unique du logging (stdout), à appeler au démarrage du process."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
